import json
import warnings
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import override_settings
from rest_framework.schemas.openapi import SchemaGenerator
from rest_framework.test import APITestCase

from core.chat_llm import ChatCompletionError
from core.models import ApprovedTutor, SessionOffer, TutoringRequest, TutorProfile, UserProfile
from core.schema import ADMIN_KEY_PATHS, PUBLIC_PATHS


User = get_user_model()

ADMIN_KEY = "test-admin-key"


def make_user(username, phone=None, name="", role="ESTUDIANTE"):
    user = User.objects.create_user(username=username)
    UserProfile.objects.create(user=user, name=name, phone=phone, role=role)
    return user


def make_tutor(username, phone, name, subjects=("MATEMATICAS",), **profile_fields):
    user = make_user(username, phone=phone, name=name, role="TUTOR")
    profile_fields.setdefault("grade_levels", ["SECUNDARIA", "PREPARATORIA"])
    TutorProfile.objects.create(user=user, subjects=list(subjects), **profile_fields)
    return user


class ApiAutomationCoverageTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.student = make_user("coverage_student", phone="+50312340000", name="Coverage")
        cls.tutor = make_tutor("coverage_tutor", "+50312340001", "Coverage Tutor")
        cls.tutoring_request = TutoringRequest.objects.create(student=cls.student, subject="MATEMATICAS")
        cls.offer = SessionOffer.objects.create(request=cls.tutoring_request, tutor=cls.tutor)

    def _schema_paths(self):
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", message="You have a duplicated operationId in your OpenAPI schema*")
            schema = SchemaGenerator(title="Chamba Tutorías API").get_schema(public=True)
        return schema.get("paths", {}) if schema else {}

    def _resolve_path(self, schema_path):
        if schema_path.startswith("/api/offers/"):
            endpoint_id = self.offer.id
        else:
            endpoint_id = self.tutoring_request.id
        return schema_path.replace("{id}", str(endpoint_id)).replace("{pk}", str(endpoint_id))

    def test_public_and_admin_paths_are_part_of_the_schema(self):
        paths = set(self._schema_paths())
        self.assertTrue(PUBLIC_PATHS.issubset(paths), PUBLIC_PATHS - paths)
        self.assertTrue(ADMIN_KEY_PATHS.issubset(paths), ADMIN_KEY_PATHS - paths)
        self.assertIn("/api/jobs/{id}/providers/", paths)
        self.assertIn("/api/offers/{id}/respond/", paths)

    def test_all_protected_operations_reject_unauthenticated_requests(self):
        paths = self._schema_paths()
        for schema_path, operations in sorted(paths.items()):
            if schema_path in PUBLIC_PATHS:
                continue

            for method in sorted([m.upper() for m in operations.keys() if m in {"get", "post", "put", "patch", "delete"}]):
                self.client.force_authenticate(user=None)
                path = self._resolve_path(schema_path)
                response = getattr(self.client, method.lower())(path, {}, format="json")
                expected = {401} if schema_path in ADMIN_KEY_PATHS else {401, 403}
                self.assertIn(
                    response.status_code,
                    expected,
                    f"Expected unauth rejection for {schema_path} {method}, got {response.status_code}",
                )

    def test_schema_view_tags_operations(self):
        response = self.client.get("/api/schema/")
        self.assertEqual(response.status_code, 200)
        schema = json.loads(response.content)
        self.assertEqual(schema["paths"]["/api/admin/tutors/"]["get"]["tags"], ["Admin"])
        self.assertEqual(schema["paths"]["/api/admin/tutors/"]["get"]["security"], [{"AdminKey": []}])
        self.assertNotIn("security", schema["paths"]["/api/auth/send-otp/"]["post"])


@override_settings(OTP_DEV_CODE="482913")
class PhoneLoginApiTests(APITestCase):
    def test_send_otp_validation(self):
        response = self.client.post("/api/auth/send-otp/", {}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("phone", response.data)

        response = self.client.post("/api/auth/send-otp/", {"phone": "12345"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["detail"], "Número de teléfono inválido")

    def test_login_creates_student_and_returns_tokens(self):
        response = self.client.post("/api/auth/send-otp/", {"phone": "+50312345678"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["success"])

        response = self.client.post(
            "/api/auth/verify-otp/",
            {"phone": "+50312345678", "code": "000000"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["detail"], "Código inválido o expirado")

        response = self.client.post(
            "/api/auth/verify-otp/",
            {"phone": "+50312345678", "code": "482913"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["created"])
        self.assertEqual(response.data["user"]["role"], "ESTUDIANTE")
        self.assertEqual(response.data["user"]["phone"], "+50312345678")
        self.assertIn("access", response.data)
        self.assertIn("refresh", response.data)

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")
        me = self.client.get("/api/user/")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.data["phone_display"], "+503 1234 5678")
        self.assertIsNone(me.data["tutor_profile"])

        refreshed = self.client.post("/api/token/refresh/", {"refresh": response.data["refresh"]}, format="json")
        self.assertEqual(refreshed.status_code, 200)
        self.assertIn("access", refreshed.data)

    def test_test_number_logs_in_with_fixed_code(self):
        response = self.client.post("/api/auth/send-otp/", {"phone": "+11111111111"}, format="json")
        self.assertEqual(response.data["message"], "Código enviado (número de prueba)")

        response = self.client.post(
            "/api/auth/verify-otp/",
            {"phone": "+11111111111", "code": "000000"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["user"]["phone"], "+11111111111")


class UserApiTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.user = make_user("user_api", phone="+50370000000", name="Ana")
        cls.no_phone = make_user("user_no_phone")

    def setUp(self):
        self.client.force_authenticate(user=self.user)

    def test_patch_updates_name_and_email_but_not_phone(self):
        response = self.client.patch(
            "/api/user/",
            {"name": "Ana López", "email": "ana@example.com", "phone": "+50399999999"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["name"], "Ana López")
        self.assertEqual(response.data["email"], "ana@example.com")
        self.assertEqual(response.data["phone"], "+50370000000")

        response = self.client.patch("/api/user/", {"name": "A"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_role_change_to_tutor_requires_whitelist(self):
        response = self.client.patch("/api/user/role/", {"role": "TUTOR"}, format="json")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data["code"], "NOT_APPROVED")

        ApprovedTutor.objects.create(phone="50370000000", name="Ana")
        response = self.client.patch("/api/user/role/", {"role": "TUTOR"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["role"], "TUTOR")
        self.assertIsNotNone(ApprovedTutor.objects.get(phone="50370000000").used_at)

        response = self.client.patch("/api/user/role/", {"role": "ESTUDIANTE"}, format="json")
        self.assertEqual(response.data["role"], "ESTUDIANTE")

    def test_role_change_without_phone_and_invalid_role(self):
        self.client.force_authenticate(user=self.no_phone)
        response = self.client.patch("/api/user/role/", {"role": "TUTOR"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "PHONE_REQUIRED")

        response = self.client.patch("/api/user/role/", {"role": "ADMIN"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_tutor_profile_self_service_goes_through_whitelist(self):
        payload = {"subjects": ["MATEMATICAS", "FISICA"], "bio": "Ingeniera"}
        response = self.client.post("/api/tutor/profile/", payload, format="json")
        self.assertEqual(response.status_code, 403)
        self.assertFalse(TutorProfile.objects.exists())

        ApprovedTutor.objects.create(phone="50370000000")
        response = self.client.post("/api/tutor/profile/", payload, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["user"]["role"], "TUTOR")
        self.assertEqual(response.data["profile"]["subjects"], ["MATEMATICAS", "FISICA"])

        response = self.client.post("/api/tutor/profile/", {"bio": "Ingeniera civil"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["profile"]["bio"], "Ingeniera civil")
        self.assertEqual(response.data["profile"]["subjects"], ["MATEMATICAS", "FISICA"])

        response = self.client.get("/api/tutor/profile/")
        self.assertEqual(response.data["bio"], "Ingeniera civil")

    def test_tutor_profile_rejects_unknown_subjects_and_empty_creation(self):
        ApprovedTutor.objects.create(phone="50370000000")
        response = self.client.post("/api/tutor/profile/", {"subjects": ["ASTROLOGIA"]}, format="json")
        self.assertEqual(response.status_code, 400)
        response = self.client.post("/api/tutor/profile/", {"bio": "sin materias"}, format="json")
        self.assertEqual(response.status_code, 400)


@patch("core.offers.notify")
class TutoringMarketplaceApiTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.student = make_user("student_api", phone="+50312345678", name="Luis")
        cls.intruder = make_user("intruder_api", phone="+50312345679", name="Otro")
        cls.carlos = make_tutor("carlos_api", "+525512345001", "Carlos Ramírez", completed_sessions=156)
        cls.maria = make_tutor("maria_api", "+525512345002", "María González", completed_sessions=112)
        cls.sleeping = make_tutor("sleeping_api", "+525512345003", "Inactive", is_active=False)
        cls.physics = make_tutor("physics_api", "+525512345004", "Physics", subjects=("FISICA",))

    def _create_request(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.post(
            "/api/jobs/",
            {"subject": "MATEMATICAS", "grade_level": "SECUNDARIA", "topic": "Ecuaciones"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        return response.data["id"]

    def test_end_to_end_booking(self, mock_notify):
        request_id = self._create_request()
        self.assertEqual(TutoringRequest.objects.get(id=request_id).status, "BORRADOR")

        response = self.client.get(f"/api/jobs/{request_id}/providers/?skip=0&limit=3")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([p["name"] for p in response.data["providers"]], ["Carlos Ramírez", "María González"])
        self.assertFalse(response.data["hasMore"])
        self.assertEqual(response.data["total"], 2)

        response = self.client.post(
            "/api/offers/",
            {"jobRequestId": request_id, "providerId": self.carlos.id},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], "ENVIADO")
        offer_id = response.data["id"]
        self.assertEqual(TutoringRequest.objects.get(id=request_id).status, "PENDIENTE")
        mock_notify.assert_called_once()

        response = self.client.post(
            "/api/offers/",
            {"jobRequestId": request_id, "providerId": self.carlos.id},
            format="json",
        )
        self.assertEqual(response.status_code, 409)

        response = self.client.get(f"/api/jobs/{request_id}/providers/")
        self.assertEqual([p["name"] for p in response.data["providers"]], ["María González"])

        self.client.force_authenticate(user=self.carlos)
        inbox = self.client.get("/api/offers/tutor/?status=enviado")
        self.assertEqual(inbox.status_code, 200)
        self.assertEqual(len(inbox.data), 1)
        self.assertEqual(inbox.data[0]["request"]["student"]["name"], "Luis")

        detail = self.client.get(f"/api/jobs/{request_id}/")
        self.assertEqual(detail.status_code, 200)

        response = self.client.post(f"/api/offers/{offer_id}/respond/", {"action": "accept"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["message"], "¡Cita confirmada!")
        self.assertEqual(response.data["offer"]["status"], "ACEPTADO")
        self.assertEqual(TutoringRequest.objects.get(id=request_id).status, "CONFIRMADO")

        response = self.client.post(f"/api/offers/{offer_id}/respond/", {"action": "accept"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["detail"], "Esta oferta ya fue respondida")

    def test_request_list_and_detail_are_private(self, _mock_notify):
        request_id = self._create_request()

        response = self.client.get("/api/jobs/")
        self.assertEqual([item["id"] for item in response.data], [request_id])

        self.client.force_authenticate(user=self.intruder)
        self.assertEqual(self.client.get("/api/jobs/").data, [])
        self.assertEqual(self.client.get(f"/api/jobs/{request_id}/").status_code, 403)
        self.assertEqual(self.client.get(f"/api/jobs/{request_id}/providers/").status_code, 403)
        response = self.client.post(
            "/api/offers/",
            {"jobRequestId": request_id, "providerId": self.carlos.id},
            format="json",
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.client.get("/api/jobs/999999/").status_code, 404)

    def test_unavailable_tutors_cannot_receive_offers(self, _mock_notify):
        request_id = self._create_request()
        for tutor in (self.sleeping, self.intruder):
            response = self.client.post(
                "/api/offers/",
                {"jobRequestId": request_id, "providerId": tutor.id},
                format="json",
            )
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.data["detail"], "Tutor no disponible")

    def test_reject_then_reoffer_and_cancel(self, _mock_notify):
        request_id = self._create_request()
        offer = self.client.post(
            "/api/offers/",
            {"jobRequestId": request_id, "providerId": self.carlos.id},
            format="json",
        ).data

        self.client.force_authenticate(user=self.maria)
        response = self.client.post(f"/api/offers/{offer['id']}/respond/", {"action": "reject"}, format="json")
        self.assertEqual(response.status_code, 403)

        self.client.force_authenticate(user=self.carlos)
        response = self.client.post(f"/api/offers/{offer['id']}/respond/", {"action": "maybe"}, format="json")
        self.assertEqual(response.status_code, 400)
        response = self.client.post(f"/api/offers/{offer['id']}/respond/", {"action": "reject"}, format="json")
        self.assertEqual(response.data["message"], "Oferta rechazada")
        self.assertEqual(TutoringRequest.objects.get(id=request_id).status, "RECHAZADO")

        self.client.force_authenticate(user=self.student)
        response = self.client.post(
            "/api/offers/",
            {"jobRequestId": request_id, "providerId": self.maria.id},
            format="json",
        )
        self.assertEqual(response.status_code, 201)

        response = self.client.patch(f"/api/jobs/{request_id}/", {"status": "CONFIRMADO"}, format="json")
        self.assertEqual(response.status_code, 400)
        response = self.client.patch(f"/api/jobs/{request_id}/", {"status": "CANCELADO"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], "CANCELADO")
        self.assertEqual(SessionOffer.objects.get(id=response.data["offers"][-1]["id"]).status, "RECHAZADO")

        response = self.client.post(
            "/api/offers/",
            {"jobRequestId": request_id, "providerId": self.physics.id},
            format="json",
        )
        self.assertEqual(response.status_code, 409)

    def test_inbox_is_for_tutors_only(self, _mock_notify):
        self.client.force_authenticate(user=self.student)
        response = self.client.get("/api/offers/tutor/")
        self.assertEqual(response.status_code, 403)


class ChatApiTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        make_tutor("carlos_chat", "+525512345001", "Carlos Ramírez", scheduling_link="https://cal.example.com/c")

    def test_message_is_required(self):
        response = self.client.post("/api/chat/", {}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_rules_answer_when_llm_is_not_configured(self):
        response = self.client.post("/api/chat/", {"message": "Hola"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["conversationState"]["step"], "greeting")
        self.assertIn("quickReplies", response.data)
        self.assertNotIn("useAI", response.data)

    @override_settings(OPENAI_API_KEY="sk-test")
    @patch("core.chat_llm.request_completion", side_effect=ChatCompletionError("timeout"))
    def test_llm_failure_falls_back_to_rules(self, _mock_completion):
        response = self.client.post("/api/chat/", {"message": "Necesito ayuda"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["conversationState"]["step"], "student_name")

    def test_malformed_conversation_state_restarts_instead_of_failing(self):
        response = self.client.post(
            "/api/chat/",
            {"message": "hola", "conversationState": {"step": "greeting", "data": "x"}},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["conversationState"], {"step": "greeting", "data": {}})

    @override_settings(OPENAI_API_KEY="sk-test")
    @patch("core.chat_llm.execute_command", side_effect=RuntimeError("boom"))
    @patch("core.chat_llm.request_completion")
    def test_tool_failure_falls_back_to_rules(self, mock_completion, _mock_execute):
        mock_completion.return_value = {
            "content": None,
            "tool_calls": [{"id": "call_1", "function": {"name": "get_tutor_profile", "arguments": "{}"}}],
        }
        with self.assertLogs("core.chat_llm", level="ERROR"):
            response = self.client.post("/api/chat/", {"message": "Necesito ayuda"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["conversationState"]["step"], "student_name")

    @override_settings(OPENAI_API_KEY="sk-test")
    @patch("core.chat_llm.request_completion")
    def test_llm_verification_returns_session_tokens(self, mock_completion):
        mock_completion.side_effect = [
            {
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_1",
                        "type": "function",
                        "function": {
                            "name": "verify_otp",
                            "arguments": json.dumps({"phone": "+11111111111", "code": "000000"}),
                        },
                    }
                ],
            },
            {"content": "¡Listo, ya estás verificado!"},
        ]

        response = self.client.post(
            "/api/chat/",
            {
                "message": "mi código es 000000",
                "conversationHistory": [{"role": "assistant", "content": "¿Cuál es tu código?"}],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["useAI"])
        self.assertEqual(response.data["message"], "¡Listo, ya estás verificado!")
        self.assertIn("access", response.data["auth"])
        self.assertEqual(len(response.data["conversationHistory"]), 3)

    @override_settings(OTP_DEV_CODE="654321")
    def test_rule_based_tutor_onboarding_across_requests(self):
        ApprovedTutor.objects.create(phone="50370000000", name="Ana")

        response = self.client.post("/api/chat/", {"message": "Quiero ser tutor voluntario"}, format="json")
        state = response.data["conversationState"]
        response = self.client.post(
            "/api/chat/",
            {"message": "+503 7000 0000", "conversationState": state},
            format="json",
        )
        state = response.data["conversationState"]
        response = self.client.post("/api/chat/", {"message": "654321", "conversationState": state}, format="json")
        state = response.data["conversationState"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['auth']['access']}")

        response = self.client.post("/api/chat/", {"message": "Ana", "conversationState": state}, format="json")
        state = response.data["conversationState"]
        response = self.client.post(
            "/api/chat/",
            {"message": "Inglés", "conversationState": state},
            format="json",
        )

        self.assertEqual(response.data["conversationState"]["step"], "complete")
        profile = TutorProfile.objects.get(user__userprofile__phone="+50370000000")
        self.assertEqual(profile.subjects, ["INGLES"])


class CatalogApiTests(APITestCase):
    def test_catalogs_are_public(self):
        response = self.client.get("/api/catalog/subjects/")
        self.assertEqual(response.status_code, 200)
        self.assertIn({"value": "MATEMATICAS", "label": "Matemáticas"}, response.data["subjects"])
        self.assertEqual(len(response.data["grade_levels"]), 6)

        response = self.client.get("/api/catalog/countries/")
        codes = [country["code"] for country in response.data["countries"]]
        self.assertIn("SV", codes)
        self.assertIn("MX", codes)


class AdminApiTests(APITestCase):
    def setUp(self):
        self.client.credentials(HTTP_X_ADMIN_KEY=ADMIN_KEY)

    def test_missing_or_wrong_key_is_unauthorized(self):
        self.client.credentials()
        self.assertEqual(self.client.get("/api/admin/tutors/").status_code, 401)
        self.client.credentials(HTTP_X_ADMIN_KEY="wrong")
        self.assertEqual(self.client.get("/api/admin/tutor-profiles/").status_code, 401)

    def test_whitelist_crud(self):
        response = self.client.post("/api/admin/tutors/", {"name": "Sin teléfono"}, format="json")
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/admin/tutors/",
            {"phone": "+503 7000-0000", "name": "Ana", "notes": "Entrevista ok"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["phone"], "50370000000")
        entry_id = response.data["id"]

        response = self.client.post("/api/admin/tutors/", {"phone": "50370000000"}, format="json")
        self.assertEqual(response.status_code, 409)

        response = self.client.get("/api/admin/tutors/")
        self.assertFalse(response.data[0]["hasSignedUp"])
        self.assertIsNone(response.data[0]["signedUpUser"])

        signed_up = make_user("ana_admin", phone="+50370000000", name="Ana")
        response = self.client.get("/api/admin/tutors/")
        self.assertTrue(response.data[0]["hasSignedUp"])
        self.assertEqual(response.data[0]["signedUpUser"]["id"], signed_up.id)

        response = self.client.put("/api/admin/tutors/", {"id": entry_id, "notes": "Actualizado"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["notes"], "Actualizado")

        self.assertEqual(self.client.delete("/api/admin/tutors/").status_code, 400)
        self.assertEqual(self.client.delete("/api/admin/tutors/?phone=50370000000").status_code, 200)
        self.assertFalse(ApprovedTutor.objects.exists())
        self.assertEqual(self.client.delete(f"/api/admin/tutors/?id={entry_id}").status_code, 404)

    def test_tutor_profile_curation(self):
        payload = {
            "name": "Lucía Pérez",
            "phone": "+503 7000 0001",
            "email": "lucia@example.com",
            "subjects": ["MATEMATICAS"],
            "schedulingLink": "https://cal.example.com/lucia",
        }
        response = self.client.post("/api/admin/tutor-profiles/", payload, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["grade_levels"], ["SECUNDARIA", "PREPARATORIA"])
        self.assertTrue(response.data["is_verified"])
        self.assertEqual(response.data["user"]["role"], "TUTOR")
        self.assertEqual(response.data["user"]["phone"], "+50370000001")
        profile_id = response.data["id"]
        user_id = response.data["user"]["id"]

        approved = ApprovedTutor.objects.get(phone="50370000001")
        self.assertEqual(approved.notes, "Creado desde admin panel")
        self.assertIsNotNone(approved.used_at)

        response = self.client.post("/api/admin/tutor-profiles/", payload, format="json")
        self.assertEqual(response.status_code, 409)

        response = self.client.put(
            "/api/admin/tutor-profiles/",
            {"id": profile_id, "name": "Lucía P.", "isActive": False, "gradeLevels": ["UNIVERSIDAD"]},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data["is_active"])
        self.assertEqual(response.data["grade_levels"], ["UNIVERSIDAD"])
        self.assertEqual(response.data["user"]["name"], "Lucía P.")

        response = self.client.get("/api/admin/tutor-profiles/")
        self.assertEqual(len(response.data), 1)

        response = self.client.delete(f"/api/admin/tutor-profiles/?id={profile_id}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(UserProfile.objects.get(user_id=user_id).role, "ESTUDIANTE")
        self.assertEqual(self.client.delete(f"/api/admin/tutor-profiles/?id={profile_id}").status_code, 404)

    def test_tutor_profile_creation_promotes_existing_student(self):
        student = make_user("existing_student", phone="50370000002", name="Pedro")
        response = self.client.post(
            "/api/admin/tutor-profiles/",
            {"name": "Pedro Ruiz", "phone": "+50370000002", "subjects": ["HISTORIA"]},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["user"]["id"], student.id)
        profile = UserProfile.objects.get(user=student)
        self.assertEqual(profile.role, "TUTOR")
        self.assertEqual(profile.phone, "+50370000002")
        self.assertEqual(profile.name, "Pedro Ruiz")
