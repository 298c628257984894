import json
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.utils import timezone

from core.admin import ApprovedTutorAdminForm
from core.chat_commands import (
    LOGIN_REQUIRED,
    CreateTutoringRequest,
    CreateTutorProfile,
    InvalidCommandArguments,
    SearchTutors,
    UnknownCommand,
    VerifyOtp,
    execute_command,
    parse_command,
)
from core.chat_llm import ChatCompletionError, LlmChat, sanitize_history
from core.chat_rules import (
    STEP_COMPLETE,
    STEP_GREETING,
    STEP_STUDENT_NAME,
    STEP_STUDENT_SELECT,
    STEP_STUDENT_SUBJECT,
    STEP_TUTOR_CODE,
    STEP_TUTOR_NAME,
    STEP_TUTOR_PHONE,
    STEP_TUTOR_SUBJECTS,
    detect_subject,
    detect_subjects,
    handle_with_rules,
)
from core.matching_logic import filter_tutors, haversine_km, rank_tutors, search_providers
from core.models import ApprovedTutor, PhoneVerification, SessionOffer, TutoringRequest, TutorProfile, UserProfile
from core.offers import (
    NotAllowed,
    OfferAlreadyResponded,
    OfferConflict,
    TutorUnavailable,
    cancel_request,
    create_offer,
    respond_to_offer,
)
from core.onboarding import PhoneRequired, TutorNotApproved, change_role, ensure_tutor_approved
from core.otp import OtpError, hash_otp, send_otp, verify_otp
from core.phone import (
    digits_only,
    format_phone,
    format_phone_display,
    is_valid_length,
    parse_full_phone,
    phone_variants,
)
from core.sms import SmsDeliveryError, notify, send_sms


User = get_user_model()


def make_student(username, phone=None, name="Estudiante"):
    user = User.objects.create_user(username=username)
    UserProfile.objects.create(user=user, name=name, phone=phone, role="ESTUDIANTE")
    return user


def make_tutor(username, phone, name, subjects=("MATEMATICAS",), **profile_fields):
    user = User.objects.create_user(username=username)
    UserProfile.objects.create(user=user, name=name, phone=phone, role="TUTOR")
    profile_fields.setdefault("grade_levels", ["SECUNDARIA", "PREPARATORIA"])
    TutorProfile.objects.create(user=user, subjects=list(subjects), **profile_fields)
    return user


class PhoneNormalizationTests(TestCase):
    def test_format_phone_strips_everything_but_digits(self):
        self.assertEqual(format_phone("+503 1234-5678"), "+50312345678")
        self.assertEqual(digits_only("(55) 1234 5678"), "5512345678")
        self.assertEqual(format_phone(""), "")

    def test_phone_variants_cover_both_storage_forms(self):
        self.assertEqual(phone_variants("+50312345678"), ["+50312345678", "50312345678"])
        self.assertEqual(phone_variants(None), [])

    def test_length_window(self):
        self.assertFalse(is_valid_length("12345"))
        self.assertTrue(is_valid_length("+50312345678"))
        self.assertFalse(is_valid_length("1" * 16))

    def test_parse_prefers_longest_dial_code(self):
        country, local = parse_full_phone("+50312345678")
        self.assertEqual(country["code"], "SV")
        self.assertEqual(local, "12345678")

    def test_display_format_per_country(self):
        self.assertEqual(format_phone_display("+525512345678"), "+52 55 1234 5678")
        self.assertEqual(format_phone_display("+50312345678"), "+503 1234 5678")


@override_settings(OTP_DEV_CODE="482913")
class OtpFlowTests(TestCase):
    def test_send_otp_stores_only_a_hash(self):
        message = send_otp("+503 1234 5678")

        self.assertEqual(message, "Código enviado (modo desarrollo)")
        verification = PhoneVerification.objects.get(phone="50312345678")
        self.assertEqual(verification.code_hash, hash_otp("482913"))
        self.assertNotEqual(verification.code_hash, "482913")
        self.assertFalse(verification.used)

    def test_send_otp_replaces_previous_codes(self):
        send_otp("+50312345678")
        send_otp("+50312345678")
        self.assertEqual(PhoneVerification.objects.filter(phone="50312345678").count(), 1)

    def test_send_otp_rejects_missing_and_short_numbers(self):
        with self.assertRaisesMessage(OtpError, "Número de teléfono requerido"):
            send_otp("")
        with self.assertRaisesMessage(OtpError, "Número de teléfono inválido"):
            send_otp("12345")

    def test_verify_creates_student_and_consumes_codes(self):
        send_otp("+50312345678")

        user, created = verify_otp("+50312345678", "482913")

        self.assertTrue(created)
        self.assertEqual(user.userprofile.role, "ESTUDIANTE")
        self.assertEqual(user.userprofile.phone, "+50312345678")
        self.assertIsNotNone(user.userprofile.phone_verified_at)
        self.assertFalse(user.has_usable_password())
        self.assertFalse(PhoneVerification.objects.filter(phone="50312345678").exists())

        with self.assertRaisesMessage(OtpError, "Código inválido o expirado"):
            verify_otp("+50312345678", "482913")

    def test_verify_rejects_wrong_and_expired_codes(self):
        send_otp("+50312345678")
        with self.assertRaisesMessage(OtpError, "Código inválido o expirado"):
            verify_otp("+50312345678", "000001")

        PhoneVerification.objects.update(expires_at=timezone.now() - timedelta(minutes=1))
        with self.assertRaisesMessage(OtpError, "Código inválido o expirado"):
            verify_otp("+50312345678", "482913")
        self.assertFalse(User.objects.exists())

    def test_verify_matches_existing_profile_stored_without_plus(self):
        existing = make_student("legacy", phone="50312345678", name="Legacy")
        send_otp("+50312345678")

        user, created = verify_otp("503 1234 5678", "482913")

        self.assertFalse(created)
        self.assertEqual(user.id, existing.id)
        self.assertEqual(UserProfile.objects.get(user=existing).phone, "+50312345678")

    def test_test_phone_uses_fixed_code_without_storing_it(self):
        self.assertEqual(send_otp("+11111111111"), "Código enviado (número de prueba)")
        self.assertFalse(PhoneVerification.objects.exists())

        with self.assertRaises(OtpError):
            verify_otp("+11111111111", "123456")

        user, created = verify_otp("+11111111111", "000000")
        self.assertTrue(created)
        self.assertEqual(user.userprofile.phone, "+11111111111")

    def test_missing_inputs(self):
        with self.assertRaisesMessage(OtpError, "Teléfono y código requeridos"):
            verify_otp("+50312345678", "")


class SmsNotificationTests(TestCase):
    def test_send_sms_without_provider_is_simulated(self):
        with self.assertLogs("core.sms", level="INFO") as logs:
            self.assertTrue(send_sms("50312345678", "Hola"))
        self.assertIn("SMS SIMULADO", "\n".join(logs.output))

    def test_notify_skips_empty_recipient(self):
        self.assertFalse(notify("", "Hola"))

    @patch("core.sms.send_sms", side_effect=SmsDeliveryError("carrier down"))
    def test_notify_swallows_delivery_errors(self, _mock_send):
        self.assertFalse(notify("+50312345678", "Hola"))


class TutorGateTests(TestCase):
    def setUp(self):
        self.user = make_student("gate", phone="+50370000000")
        self.profile = self.user.userprofile

    def test_promotion_requires_whitelist(self):
        with self.assertRaises(TutorNotApproved):
            change_role(self.user, "TUTOR")
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.role, "ESTUDIANTE")

    def test_promotion_requires_phone(self):
        user = make_student("nophone")
        with self.assertRaises(PhoneRequired):
            change_role(user, "TUTOR")

    def test_whitelist_match_ignores_formatting_and_stamps_first_use_once(self):
        approved = ApprovedTutor.objects.create(phone="50370000000", name="Gate")

        change_role(self.user, "TUTOR")

        self.profile.refresh_from_db()
        approved.refresh_from_db()
        self.assertEqual(self.profile.role, "TUTOR")
        first_use = approved.used_at
        self.assertIsNotNone(first_use)

        ensure_tutor_approved(self.profile)
        approved.refresh_from_db()
        self.assertEqual(approved.used_at, first_use)

    def test_demotion_is_always_allowed(self):
        ApprovedTutor.objects.create(phone="50370000000")
        change_role(self.user, "TUTOR")
        change_role(self.user, "ESTUDIANTE")
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.role, "ESTUDIANTE")

    def test_admin_whitelist_entry_is_stored_as_digits(self):
        form = ApprovedTutorAdminForm(data={"phone": "+503 7000 0000", "name": "Gate", "notes": "", "used_at": ""})
        self.assertTrue(form.is_valid(), form.errors)
        approved = form.save()

        self.assertEqual(approved.phone, "50370000000")
        change_role(self.user, "TUTOR")
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.role, "TUTOR")

    def test_admin_whitelist_form_rejects_phone_without_digits(self):
        form = ApprovedTutorAdminForm(data={"phone": "+ -", "name": "", "notes": "", "used_at": ""})
        self.assertFalse(form.is_valid())
        self.assertIn("phone", form.errors)

    def test_whitelist_model_normalizes_phone_on_save(self):
        approved = ApprovedTutor.objects.create(phone="+503 (7000) 0000")
        self.assertEqual(approved.phone, "50370000000")

    def test_deleting_tutor_profile_reverts_role(self):
        tutor = make_tutor("former", "+50370000009", "Former")
        TutorProfile.objects.get(user=tutor).delete()
        self.assertEqual(UserProfile.objects.get(user=tutor).role, "ESTUDIANTE")


class MatchingTests(TestCase):
    def test_haversine_one_degree_at_equator(self):
        self.assertAlmostEqual(haversine_km(0, 0, 0, 1), 111.19, places=1)
        self.assertEqual(haversine_km(13.7, -89.2, 13.7, -89.2), 0)

    def test_filter_tutors_by_subject_grade_and_activity(self):
        profiles = [
            SimpleNamespace(user_id=1, is_active=True, subjects=["MATEMATICAS"], grade_levels=["SECUNDARIA"]),
            SimpleNamespace(user_id=2, is_active=False, subjects=["MATEMATICAS"], grade_levels=["SECUNDARIA"]),
            SimpleNamespace(user_id=3, is_active=True, subjects=["FISICA"], grade_levels=["SECUNDARIA"]),
            SimpleNamespace(user_id=4, is_active=True, subjects=["MATEMATICAS"], grade_levels=["UNIVERSIDAD"]),
            SimpleNamespace(user_id=5, is_active=True, subjects=["MATEMATICAS"], grade_levels=["SECUNDARIA"]),
        ]
        result = filter_tutors(profiles, "MATEMATICAS", grade_level="SECUNDARIA", exclude_user_ids=[5])
        self.assertEqual([profile.user_id for profile in result], [1])

    def test_rank_puts_nearest_first_and_unlocated_last(self):
        student = make_student("ranker")
        request = TutoringRequest.objects.create(student=student, subject="MATEMATICAS", lat=13.69, lng=-89.19)
        far = make_tutor("far", "+50370000001", "Far", lat=14.63, lng=-90.51)
        near = make_tutor("near", "+50370000002", "Near", lat=13.70, lng=-89.20)
        nowhere = make_tutor("nowhere", "+50370000003", "Nowhere", rating=Decimal("5.00"))

        ranked = rank_tutors(request, TutorProfile.objects.all())

        self.assertEqual([item.profile.user_id for item in ranked], [near.id, far.id, nowhere.id])
        self.assertIsNone(ranked[-1].distance_km)
        self.assertLess(ranked[0].distance_km, ranked[1].distance_km)

    def test_rank_without_coordinates_orders_by_rating_then_sessions(self):
        student = make_student("quality")
        request = TutoringRequest.objects.create(student=student, subject="MATEMATICAS")
        low = make_tutor("low", "+50370000011", "Low", rating=Decimal("4.50"))
        busy = make_tutor("busy", "+50370000012", "Busy", rating=Decimal("4.90"), completed_sessions=50)
        top = make_tutor("top", "+50370000013", "Top", rating=Decimal("4.90"), completed_sessions=80)

        ranked = rank_tutors(request, TutorProfile.objects.all())

        self.assertEqual([item.profile.user_id for item in ranked], [top.id, busy.id, low.id])

    def test_search_providers_is_deterministic_and_paged(self):
        student = make_student("pager")
        request = TutoringRequest.objects.create(student=student, subject="MATEMATICAS")
        for index in range(4):
            make_tutor(f"t{index}", f"+5037000002{index}", f"Tutor {index}", completed_sessions=index)
        make_tutor("phys", "+50370000029", "Physics", subjects=("FISICA",))

        first = search_providers(request, skip=0, limit=3)
        again = search_providers(request, skip=0, limit=3)
        rest = search_providers(request, skip=3, limit=3)

        self.assertEqual(first["total"], 4)
        self.assertTrue(first["hasMore"])
        self.assertEqual(len(first["providers"]), 3)
        self.assertEqual(first, again)
        self.assertEqual(len(rest["providers"]), 1)
        self.assertFalse(rest["hasMore"])
        self.assertEqual(first["providers"][0]["name"], "Tutor 3")

    def test_search_providers_skips_tutors_already_offered(self):
        student = make_student("offered")
        request = TutoringRequest.objects.create(student=student, subject="MATEMATICAS")
        tutor = make_tutor("taken", "+50370000031", "Taken")
        SessionOffer.objects.create(request=request, tutor=tutor)

        self.assertEqual(search_providers(request)["total"], 0)


@patch("core.offers.notify")
class OfferWorkflowTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.student = make_student("alumno", phone="+50312345678", name="Alumno")
        cls.other_student = make_student("otro", phone="+50312345679")
        cls.tutor = make_tutor("carlos", "+525512345001", "Carlos Ramírez")
        cls.second_tutor = make_tutor("maria", "+525512345002", "María González")

    def setUp(self):
        self.request = TutoringRequest.objects.create(student=self.student, subject="MATEMATICAS")

    def test_offer_moves_request_to_pending_and_notifies_tutor(self, mock_notify):
        offer = create_offer(self.student, self.request.id, self.tutor.id)

        self.request.refresh_from_db()
        self.assertEqual(offer.status, "ENVIADO")
        self.assertEqual(self.request.status, "PENDIENTE")
        recipient, body = mock_notify.call_args[0]
        self.assertEqual(recipient, "+525512345001")
        self.assertIn("Alumno necesita ayuda con Matemáticas", body)

    def test_duplicate_offer_conflicts(self, _mock_notify):
        create_offer(self.student, self.request.id, self.tutor.id)
        with self.assertRaises(OfferConflict):
            create_offer(self.student, self.request.id, self.tutor.id)
        self.assertEqual(SessionOffer.objects.filter(request=self.request).count(), 1)

    def test_only_owner_can_offer(self, _mock_notify):
        with self.assertRaises(NotAllowed):
            create_offer(self.other_student, self.request.id, self.tutor.id)

    def test_inactive_tutor_is_unavailable(self, _mock_notify):
        TutorProfile.objects.filter(user=self.tutor).update(is_active=False)
        with self.assertRaises(TutorUnavailable):
            create_offer(self.student, self.request.id, self.tutor.id)

    def test_accept_confirms_request_and_rejects_siblings(self, mock_notify):
        first = create_offer(self.student, self.request.id, self.tutor.id)
        second = create_offer(self.student, self.request.id, self.second_tutor.id)

        offer, message = respond_to_offer(self.tutor, first.id, "accept")

        self.assertEqual(message, "¡Cita confirmada!")
        self.assertEqual(offer.status, "ACEPTADO")
        self.assertIsNotNone(offer.responded_at)
        self.request.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(self.request.status, "CONFIRMADO")
        self.assertEqual(second.status, "RECHAZADO")
        self.assertEqual(
            SessionOffer.objects.filter(request=self.request, status="ACEPTADO").count(),
            1,
        )
        self.assertEqual(mock_notify.call_args[0][0], "+50312345678")

        with self.assertRaises(OfferAlreadyResponded):
            respond_to_offer(self.second_tutor, second.id, "accept")
        with self.assertRaises(OfferConflict):
            create_offer(self.student, self.request.id, make_tutor("late", "+525512345009", "Late").id)

    def test_only_the_addressed_tutor_may_respond(self, _mock_notify):
        offer = create_offer(self.student, self.request.id, self.tutor.id)
        with self.assertRaises(NotAllowed):
            respond_to_offer(self.second_tutor, offer.id, "accept")

    def test_rejecting_last_offer_reopens_request_for_new_offers(self, _mock_notify):
        offer = create_offer(self.student, self.request.id, self.tutor.id)

        _offer, message = respond_to_offer(self.tutor, offer.id, "reject")

        self.assertEqual(message, "Oferta rechazada")
        self.request.refresh_from_db()
        self.assertEqual(self.request.status, "RECHAZADO")

        create_offer(self.student, self.request.id, self.second_tutor.id)
        self.request.refresh_from_db()
        self.assertEqual(self.request.status, "PENDIENTE")

    def test_rejection_keeps_pending_while_other_offers_wait(self, _mock_notify):
        offer = create_offer(self.student, self.request.id, self.tutor.id)
        create_offer(self.student, self.request.id, self.second_tutor.id)

        respond_to_offer(self.tutor, offer.id, "reject")

        self.request.refresh_from_db()
        self.assertEqual(self.request.status, "PENDIENTE")

    def test_cancel_rejects_waiting_offers_and_closes_request(self, _mock_notify):
        offer = create_offer(self.student, self.request.id, self.tutor.id)

        cancel_request(self.student, self.request.id)

        offer.refresh_from_db()
        self.request.refresh_from_db()
        self.assertEqual(offer.status, "RECHAZADO")
        self.assertEqual(self.request.status, "CANCELADO")
        with self.assertRaises(OfferConflict):
            cancel_request(self.student, self.request.id)
        with self.assertRaises(OfferAlreadyResponded):
            respond_to_offer(self.tutor, offer.id, "accept")


class ChatCommandTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.tutor = make_tutor(
            "carlos",
            "+525512345001",
            "Carlos Ramírez",
            subjects=("MATEMATICAS", "CALCULO"),
            scheduling_link="https://cal.example.com/carlos",
        )

    def test_parse_rejects_unknown_functions_and_bad_subjects(self):
        with self.assertRaises(UnknownCommand):
            parse_command("delete_everything", {})
        with self.assertRaises(InvalidCommandArguments):
            parse_command("search_tutors", {"subject": "ASTROLOGIA"})

    def test_parse_builds_typed_commands_with_defaults(self):
        command = parse_command("create_tutor_profile", {"subjects": ["matematicas"]})
        self.assertIsInstance(command, CreateTutorProfile)
        self.assertEqual(command.subjects, ["MATEMATICAS"])
        self.assertEqual(command.grade_levels, ["SECUNDARIA", "PREPARATORIA"])

    def test_search_is_available_without_login(self):
        outcome = execute_command(SearchTutors(subject="MATEMATICAS"))
        self.assertTrue(outcome.payload["success"])
        self.assertEqual(outcome.payload["tutors"][0]["name"], "Carlos Ramírez")
        self.assertIn("Cálculo", outcome.payload["tutors"][0]["subjects"])

    def test_search_without_results_says_so(self):
        outcome = execute_command(SearchTutors(subject="HISTORIA"))
        self.assertEqual(outcome.payload["tutors"], [])
        self.assertIn("Historia", outcome.payload["message"])

    def test_parse_rejects_impossible_preferred_time(self):
        with self.assertRaisesMessage(InvalidCommandArguments, "Fecha inválida"):
            parse_command("create_tutoring_request", {"subject": "MATEMATICAS", "preferred_time": "2025-02-30T10:00:00"})
        with self.assertRaisesMessage(InvalidCommandArguments, "Fecha inválida"):
            parse_command("create_tutoring_request", {"subject": "MATEMATICAS", "preferred_time": "mañana"})

    def test_parse_keeps_a_valid_preferred_time(self):
        command = parse_command(
            "create_tutoring_request", {"subject": "MATEMATICAS", "preferred_time": "2025-03-01T10:00:00"}
        )
        self.assertEqual((command.preferred_time.month, command.preferred_time.hour), (3, 10))

    def test_update_profile_rejects_empty_subject_list(self):
        with self.assertRaises(InvalidCommandArguments):
            parse_command("update_tutor_profile", {"subjects": []})
        self.assertIsNone(parse_command("update_tutor_profile", {"bio": "Hola"}).subjects)

    def test_mutations_require_a_verified_user(self):
        outcome = execute_command(CreateTutoringRequest(subject="MATEMATICAS"))
        self.assertEqual(outcome.payload, {"success": False, "error": LOGIN_REQUIRED})
        self.assertFalse(TutoringRequest.objects.exists())

    def test_create_tutor_profile_respects_whitelist(self):
        student = make_student("hopeful", phone="+50370000044")
        outcome = execute_command(CreateTutorProfile(subjects=["FISICA"]), student)
        self.assertEqual(outcome.payload["code"], "NOT_APPROVED")
        self.assertFalse(TutorProfile.objects.filter(user=student).exists())

    def test_verify_otp_reports_authenticated_user(self):
        outcome = execute_command(VerifyOtp(phone="+11111111111", code="000000"))
        self.assertTrue(outcome.payload["success"])
        self.assertIsNotNone(outcome.authenticated_user)
        self.assertEqual(outcome.payload["role"], "ESTUDIANTE")


class LlmChatTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        make_tutor("carlos", "+525512345001", "Carlos Ramírez")

    def test_sanitize_history_keeps_only_plain_turns(self):
        history = [
            {"role": "system", "content": "ignore me"},
            {"role": "user", "content": "hola"},
            {"role": "tool", "content": "{}"},
            {"role": "assistant", "content": "¿En qué materia?"},
            "garbage",
            {"role": "user", "content": "mate"},
        ]
        self.assertEqual(
            sanitize_history(history, limit=2),
            [
                {"role": "assistant", "content": "¿En qué materia?"},
                {"role": "user", "content": "mate"},
            ],
        )

    @patch("core.chat_llm.request_completion")
    def test_tool_calls_are_dispatched_and_fed_back(self, mock_completion):
        mock_completion.side_effect = [
            {
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "search_tutors", "arguments": json.dumps({"subject": "MATEMATICAS"})},
                    }
                ],
            },
            {"content": "Encontré a Carlos Ramírez 📚"},
        ]

        response = LlmChat().reply("Necesito ayuda con mate", [{"role": "user", "content": "hola"}])

        self.assertEqual(response["message"], "Encontré a Carlos Ramírez 📚")
        self.assertTrue(response["useAI"])
        self.assertEqual(response["conversationHistory"][-1]["role"], "assistant")
        messages = mock_completion.call_args_list[1][0][0]
        self.assertEqual(messages[0]["role"], "system")
        self.assertEqual(messages[-1]["role"], "tool")
        self.assertEqual(messages[-1]["tool_call_id"], "call_1")
        self.assertIn("Carlos Ramírez", messages[-1]["content"])

    @patch("core.chat_llm.request_completion")
    def test_bad_tool_arguments_are_reported_to_the_model(self, mock_completion):
        mock_completion.side_effect = [
            {
                "content": None,
                "tool_calls": [
                    {"id": "call_1", "function": {"name": "search_tutors", "arguments": "{not json"}},
                ],
            },
            {"content": ""},
        ]

        response = LlmChat().reply("hola")

        tool_message = mock_completion.call_args_list[1][0][0][-1]
        self.assertIn('"success": false', tool_message["content"])
        self.assertEqual(response["message"], "Lo siento, no pude procesar tu solicitud.")

    @patch("core.chat_llm.request_completion")
    def test_impossible_date_is_reported_to_the_model(self, mock_completion):
        arguments = json.dumps({"subject": "MATEMATICAS", "preferred_time": "2025-02-30T10:00:00"})
        mock_completion.side_effect = [
            {
                "content": None,
                "tool_calls": [
                    {"id": "call_1", "function": {"name": "create_tutoring_request", "arguments": arguments}},
                ],
            },
            {"content": "¿Qué fecha te queda bien?"},
        ]

        response = LlmChat(user=make_student("dates")).reply("el 30 de febrero")

        tool_message = mock_completion.call_args_list[1][0][0][-1]
        self.assertIn("Fecha inválida", tool_message["content"])
        self.assertEqual(response["message"], "¿Qué fecha te queda bien?")
        self.assertFalse(TutoringRequest.objects.exists())

    @patch("core.chat_llm.execute_command", side_effect=RuntimeError("boom"))
    @patch("core.chat_llm.request_completion")
    def test_unexpected_tool_error_becomes_completion_error(self, mock_completion, _mock_execute):
        mock_completion.return_value = {
            "content": None,
            "tool_calls": [
                {"id": "call_1", "function": {"name": "get_tutor_profile", "arguments": "{}"}},
            ],
        }

        with self.assertLogs("core.chat_llm", level="ERROR"):
            with self.assertRaises(ChatCompletionError):
                LlmChat().reply("mi perfil")

    @patch("core.chat_llm.request_completion")
    def test_verify_tool_call_authenticates_the_chat(self, mock_completion):
        mock_completion.side_effect = [
            {
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_1",
                        "function": {
                            "name": "verify_otp",
                            "arguments": json.dumps({"phone": "+11111111111", "code": "000000"}),
                        },
                    }
                ],
            },
            {"content": "¡Listo!"},
        ]

        chat = LlmChat()
        chat.reply("mi código es 000000")

        self.assertIsNotNone(chat.authenticated_user)
        self.assertEqual(chat.authenticated_user.userprofile.phone, "+11111111111")


class RuleBasedChatTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        make_tutor(
            "carlos",
            "+525512345001",
            "Carlos Ramírez",
            scheduling_link="https://cal.example.com/carlos",
        )

    def test_subject_detection_is_accent_insensitive(self):
        self.assertEqual(detect_subject("Matemáticas"), "MATEMATICAS")
        self.assertEqual(detect_subject("Ciencias de la Computación"), "CIENCIAS_COMPUTACION")
        self.assertEqual(detect_subject("cocina"), "OTRO")
        self.assertEqual(detect_subjects("Matemáticas, Física y Inglés"), ["MATEMATICAS", "FISICA", "INGLES"])

    def test_malformed_state_restarts_the_conversation(self):
        for state in (
            {"step": "greeting", "data": "x"},
            {"step": STEP_STUDENT_SELECT, "data": ["tutors"]},
            {"step": 7, "data": {}},
            "student_select",
        ):
            response = handle_with_rules("hola", state)
            self.assertEqual(response["conversationState"]["step"], STEP_GREETING)

    def test_selection_ignores_malformed_tutor_options(self):
        for tutors in ("{\"name\": \"x\"}", json.dumps(["Carlos", 3]), json.dumps([{"name": 5}]), "no-json", 42):
            state = {"step": STEP_STUDENT_SELECT, "data": {"subject": "MATEMATICAS", "tutors": tutors}}
            response = handle_with_rules("1", state)
            self.assertEqual(response["conversationState"]["step"], STEP_COMPLETE)

    def test_unrecognized_greeting_offers_quick_replies(self):
        response = handle_with_rules("Hola")
        self.assertEqual(response["conversationState"]["step"], STEP_GREETING)
        self.assertEqual(len(response["quickReplies"]), 2)

    def test_student_flow_ends_with_booking_marker(self):
        response = handle_with_rules("Necesito ayuda con una materia 📚")
        self.assertEqual(response["conversationState"]["step"], STEP_STUDENT_NAME)

        response = handle_with_rules("Luis", response["conversationState"])
        self.assertEqual(response["conversationState"]["step"], STEP_STUDENT_SUBJECT)
        self.assertIn("Luis", response["message"])

        response = handle_with_rules("Matemáticas", response["conversationState"])
        self.assertEqual(response["conversationState"]["step"], STEP_STUDENT_SELECT)
        self.assertIn("{{BOOK_BUTTON:Carlos:https://cal.example.com/carlos}}", response["message"])
        self.assertEqual(response["quickReplies"], ["1"])

        response = handle_with_rules("1", response["conversationState"])
        self.assertEqual(response["conversationState"]["step"], STEP_COMPLETE)
        self.assertIn("Has seleccionado a Carlos Ramírez", response["message"])

    def test_student_subject_without_tutors_stays_on_subject_step(self):
        state = {"step": STEP_STUDENT_SUBJECT, "role": "student", "data": {"name": "Luis"}}
        response = handle_with_rules("Historia", state)
        self.assertEqual(response["conversationState"]["step"], STEP_STUDENT_SUBJECT)
        self.assertIn("No hay tutores disponibles para Historia", response["message"])

    def test_tutor_flow_refuses_numbers_outside_the_whitelist(self):
        response = handle_with_rules("Quiero ser tutor voluntario 🎓")
        self.assertEqual(response["conversationState"]["step"], STEP_TUTOR_PHONE)

        response = handle_with_rules("+503 7000 0000", response["conversationState"])
        self.assertEqual(response["conversationState"]["step"], STEP_GREETING)
        self.assertIn("forms.gle", response["message"])
        self.assertFalse(PhoneVerification.objects.exists())

    @override_settings(OTP_DEV_CODE="654321")
    def test_tutor_flow_verifies_phone_and_creates_profile(self):
        ApprovedTutor.objects.create(phone="50370000000", name="Ana")

        response = handle_with_rules("Quiero ser tutor voluntario 🎓")
        response = handle_with_rules("+503 7000 0000", response["conversationState"])
        self.assertEqual(response["conversationState"]["step"], STEP_TUTOR_CODE)

        response = handle_with_rules("000000", response["conversationState"])
        self.assertEqual(response["conversationState"]["step"], STEP_TUTOR_CODE)
        self.assertNotIn("auth", response)

        response = handle_with_rules("654321", response["conversationState"])
        self.assertEqual(response["conversationState"]["step"], STEP_TUTOR_NAME)
        self.assertIn("access", response["auth"])
        user = User.objects.get(userprofile__phone="+50370000000")

        response = handle_with_rules("Ana", response["conversationState"], user)
        self.assertEqual(response["conversationState"]["step"], STEP_TUTOR_SUBJECTS)

        response = handle_with_rules("Matemáticas, Física", response["conversationState"], user)
        self.assertEqual(response["conversationState"]["step"], STEP_COMPLETE)

        profile = UserProfile.objects.get(user=user)
        self.assertEqual(profile.role, "TUTOR")
        self.assertEqual(profile.name, "Ana")
        tutor_profile = TutorProfile.objects.get(user=user)
        self.assertEqual(tutor_profile.subjects, ["MATEMATICAS", "FISICA"])
        self.assertEqual(tutor_profile.grade_levels, ["SECUNDARIA", "PREPARATORIA"])
