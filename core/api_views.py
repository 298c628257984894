import logging

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, PermissionDenied
from rest_framework.generics import GenericAPIView
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from .auth import build_auth_token_payload
from .catalog import DEFAULT_GRADE_LEVELS, get_countries, get_grade_levels, get_subjects
from .chat_llm import ChatCompletionError, LlmChat, llm_is_configured
from .chat_rules import handle_with_rules
from .matching_logic import search_providers
from .models import ApprovedTutor, SessionOffer, TutoringRequest, TutorProfile, UserProfile
from .offers import OfferWorkflowError, cancel_request, create_offer, respond_to_offer
from .onboarding import PhoneRequired, TutorNotApproved, change_role, save_own_tutor_profile
from .otp import OtpError, ensure_username, send_otp, verify_otp
from .permissions import (
    ROLE_TUTOR,
    HasAdminKey,
    IsAuthenticatedWithAppRole,
    IsTutorRole,
)
from .phone import digits_only, format_phone, phone_variants
from .serializers import (
    AdminTutorProfileCreateSerializer,
    AdminTutorProfileUpdateSerializer,
    ApprovedTutorSerializer,
    ChatMessageSerializer,
    CurrentUserSerializer,
    OfferCreateSerializer,
    OfferRespondSerializer,
    RequestStatusUpdateSerializer,
    RoleUpdateSerializer,
    SendOtpSerializer,
    SessionOfferSerializer,
    TutorInboxOfferSerializer,
    TutoringRequestSerializer,
    TutorProfileSerializer,
    UserUpdateSerializer,
    VerifyOtpSerializer,
)
from .sms import SmsDeliveryError

logger = logging.getLogger(__name__)

User = get_user_model()


def workflow_error_response(exc):
    return Response({"detail": exc.detail}, status=exc.status_code)


def gate_error_response(exc):
    http_status = status.HTTP_403_FORBIDDEN if isinstance(exc, TutorNotApproved) else status.HTTP_400_BAD_REQUEST
    return Response({"detail": exc.detail, "code": exc.code}, status=http_status)


def parse_int_param(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class SendOtpView(GenericAPIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    serializer_class = SendOtpSerializer

    def post(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            message = send_otp(serializer.validated_data["phone"])
        except OtpError as exc:
            return Response({"detail": exc.detail}, status=status.HTTP_400_BAD_REQUEST)
        except SmsDeliveryError:
            logger.exception("OTP delivery failed")
            return Response(
                {"detail": "Error al enviar el código"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response({"success": True, "message": message})


class VerifyOtpView(GenericAPIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    serializer_class = VerifyOtpSerializer

    def post(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            user, created = verify_otp(
                serializer.validated_data["phone"],
                serializer.validated_data["code"],
            )
        except OtpError as exc:
            return Response({"detail": exc.detail}, status=status.HTTP_400_BAD_REQUEST)
        profile = user.userprofile
        return Response(
            {
                "success": True,
                "created": created,
                "user": {
                    "id": user.id,
                    "phone": profile.phone,
                    "name": profile.name,
                    "role": profile.role,
                },
                **build_auth_token_payload(user),
            }
        )


class LogoutView(APIView):
    permission_classes = [IsAuthenticatedWithAppRole]

    def post(self, request):
        return Response({"message": "Logout acknowledged on server."})


class CurrentUserView(GenericAPIView):
    permission_classes = [IsAuthenticatedWithAppRole]
    serializer_class = UserUpdateSerializer

    def get(self, request):
        return Response(CurrentUserSerializer(request.user).data)

    def patch(self, request):
        serializer = self.get_serializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user = request.user
        if "name" in data:
            UserProfile.objects.filter(user=user).update(name=data["name"].strip(), updated_at=timezone.now())
        if "email" in data:
            user.email = data["email"].strip().lower()
            user.save(update_fields=["email"])
        return Response(CurrentUserSerializer(user).data)


class UserRoleView(GenericAPIView):
    permission_classes = [IsAuthenticatedWithAppRole]
    serializer_class = RoleUpdateSerializer

    def patch(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            change_role(request.user, serializer.validated_data["role"])
        except (PhoneRequired, TutorNotApproved) as exc:
            return gate_error_response(exc)
        return Response(CurrentUserSerializer(request.user).data)


class TutorProfileView(GenericAPIView):
    permission_classes = [IsAuthenticatedWithAppRole]
    serializer_class = TutorProfileSerializer

    def get(self, request):
        profile = TutorProfile.objects.filter(user=request.user).first()
        return Response(TutorProfileSerializer(profile).data if profile else None)

    def post(self, request):
        instance = TutorProfile.objects.filter(user=request.user).first()
        serializer = self.get_serializer(instance, data=request.data, partial=instance is not None)
        serializer.is_valid(raise_exception=True)
        try:
            profile, created = save_own_tutor_profile(request.user, serializer.validated_data)
        except (PhoneRequired, TutorNotApproved) as exc:
            return gate_error_response(exc)
        return Response(
            {
                "user": CurrentUserSerializer(request.user).data,
                "profile": TutorProfileSerializer(profile).data,
            },
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class TutoringRequestViewSet(
    mixins.ListModelMixin,
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    queryset = TutoringRequest.objects.all().prefetch_related("offers").order_by("-created_at")
    serializer_class = TutoringRequestSerializer
    permission_classes = [IsAuthenticatedWithAppRole]

    def get_queryset(self):
        return super().get_queryset().filter(student=self.request.user)

    def perform_create(self, serializer):
        serializer.save(student=self.request.user, status="BORRADOR")

    def _get_request(self, pk):
        tutoring_request = TutoringRequest.objects.filter(pk=pk).first()
        if not tutoring_request:
            raise NotFound("Solicitud no encontrada")
        return tutoring_request

    def retrieve(self, request, *args, **kwargs):
        tutoring_request = self._get_request(kwargs.get("pk"))
        user = request.user
        visible = TutoringRequest.objects.filter(
            Q(student=user) | Q(offers__tutor=user),
            pk=tutoring_request.pk,
        ).exists()
        if not visible:
            raise PermissionDenied("No autorizado")
        return Response(self.get_serializer(tutoring_request).data)

    def partial_update(self, request, *args, **kwargs):
        serializer = RequestStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            tutoring_request = cancel_request(request.user, kwargs.get("pk"))
        except OfferWorkflowError as exc:
            return workflow_error_response(exc)
        return Response(self.get_serializer(tutoring_request).data)

    @action(detail=True, methods=["get"], url_path="providers")
    def providers(self, request, pk=None):
        tutoring_request = self._get_request(pk)
        if tutoring_request.student_id != request.user.id:
            raise PermissionDenied("No autorizado")
        skip = parse_int_param(request.query_params.get("skip"), 0)
        limit = parse_int_param(request.query_params.get("limit"), 3)
        return Response(search_providers(tutoring_request, skip=skip, limit=limit))


class OfferCreateView(GenericAPIView):
    permission_classes = [IsAuthenticatedWithAppRole]
    serializer_class = OfferCreateSerializer

    def post(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            offer = create_offer(
                request.user,
                serializer.validated_data["jobRequestId"],
                serializer.validated_data["providerId"],
            )
        except OfferWorkflowError as exc:
            return workflow_error_response(exc)
        return Response(SessionOfferSerializer(offer).data, status=status.HTTP_201_CREATED)


class OfferRespondView(GenericAPIView):
    permission_classes = [IsAuthenticatedWithAppRole]
    serializer_class = OfferRespondSerializer

    def post(self, request, pk):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            offer, message = respond_to_offer(request.user, pk, serializer.validated_data["action"])
        except OfferWorkflowError as exc:
            return workflow_error_response(exc)
        return Response({"offer": SessionOfferSerializer(offer).data, "message": message})


class TutorOfferInboxView(GenericAPIView):
    permission_classes = [IsTutorRole]
    serializer_class = TutorInboxOfferSerializer

    def get(self, request):
        offers = (
            SessionOffer.objects.filter(tutor=request.user)
            .select_related("request", "request__student")
            .order_by("-sent_at")
        )
        status_filter = str(request.query_params.get("status", "")).strip().upper()
        if status_filter:
            offers = offers.filter(status=status_filter)
        return Response(self.get_serializer(offers, many=True).data)


class ChatView(GenericAPIView):
    permission_classes = [AllowAny]
    serializer_class = ChatMessageSerializer

    def post(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        message = serializer.validated_data["message"]
        user = request.user if request.user.is_authenticated else None

        if llm_is_configured():
            chat = LlmChat(user=user)
            try:
                response = chat.reply(message, serializer.validated_data.get("conversationHistory") or [])
            except ChatCompletionError as exc:
                logger.warning("OpenAI error, falling back to rules: %s", exc)
            else:
                if chat.authenticated_user is not None:
                    response["auth"] = build_auth_token_payload(chat.authenticated_user)
                return Response(response)

        return Response(
            handle_with_rules(message, serializer.validated_data.get("conversationState"), user)
        )


class CatalogSubjectsView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, _request):
        return Response({"subjects": get_subjects(), "grade_levels": get_grade_levels()})


class CatalogCountriesView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, _request):
        return Response({"countries": get_countries()})


def signed_up_profiles_by_phone():
    profiles = UserProfile.objects.exclude(phone__isnull=True).exclude(phone="")
    return {digits_only(profile.phone): profile for profile in profiles}


class AdminApprovedTutorView(APIView):
    permission_classes = [HasAdminKey]
    authentication_classes = []

    def get(self, request):
        signed_up = signed_up_profiles_by_phone()
        payload = []
        for approved in ApprovedTutor.objects.all().order_by("-created_at", "-id"):
            profile = signed_up.get(approved.phone)
            item = ApprovedTutorSerializer(approved).data
            item["hasSignedUp"] = profile is not None
            item["signedUpUser"] = (
                {"id": profile.user_id, "name": profile.name, "role": profile.role} if profile else None
            )
            payload.append(item)
        return Response(payload)

    def post(self, request):
        if not digits_only(request.data.get("phone")):
            return Response({"detail": "Número de teléfono requerido"}, status=status.HTTP_400_BAD_REQUEST)
        serializer = ApprovedTutorSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        if ApprovedTutor.objects.filter(phone=serializer.validated_data["phone"]).exists():
            return Response(
                {"detail": "Este número ya está en la lista"},
                status=status.HTTP_409_CONFLICT,
            )
        approved = serializer.save()
        logger.info("Approved tutor phone %s added", approved.phone)
        return Response(ApprovedTutorSerializer(approved).data, status=status.HTTP_201_CREATED)

    def put(self, request):
        approved = ApprovedTutor.objects.filter(id=parse_int_param(request.data.get("id"), 0)).first()
        if not approved:
            return Response({"detail": "Tutor no encontrado"}, status=status.HTTP_404_NOT_FOUND)
        serializer = ApprovedTutorSerializer(approved, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        new_phone = serializer.validated_data.get("phone")
        if new_phone and ApprovedTutor.objects.filter(phone=new_phone).exclude(id=approved.id).exists():
            return Response(
                {"detail": "Este número ya está en la lista"},
                status=status.HTTP_409_CONFLICT,
            )
        approved = serializer.save()
        return Response(ApprovedTutorSerializer(approved).data)

    def delete(self, request):
        entry_id = request.query_params.get("id")
        phone = request.query_params.get("phone")
        if entry_id:
            queryset = ApprovedTutor.objects.filter(id=parse_int_param(entry_id, 0))
        elif phone:
            queryset = ApprovedTutor.objects.filter(phone=digits_only(phone))
        else:
            return Response({"detail": "Se requiere id o phone"}, status=status.HTTP_400_BAD_REQUEST)
        deleted, _ = queryset.delete()
        if not deleted:
            return Response({"detail": "Tutor no encontrado"}, status=status.HTTP_404_NOT_FOUND)
        return Response({"success": True})


def admin_tutor_profile_payload(tutor_profile):
    data = TutorProfileSerializer(tutor_profile).data
    profile = UserProfile.objects.filter(user_id=tutor_profile.user_id).first()
    data["user"] = {
        "id": tutor_profile.user_id,
        "name": profile.name if profile else "",
        "phone": profile.phone if profile else None,
        "email": tutor_profile.user.email,
        "role": profile.role if profile else None,
    }
    return data


class AdminTutorProfileView(APIView):
    permission_classes = [HasAdminKey]
    authentication_classes = []

    def get(self, request):
        profiles = TutorProfile.objects.select_related("user").order_by("-created_at", "-id")
        return Response([admin_tutor_profile_payload(profile) for profile in profiles])

    def post(self, request):
        serializer = AdminTutorProfileCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        phone = format_phone(data.pop("phone"))
        name = data.pop("name").strip()
        email = (data.pop("email", "") or "").strip().lower()
        data.setdefault("grade_levels", list(DEFAULT_GRADE_LEVELS))

        with transaction.atomic():
            profile = UserProfile.objects.select_related("user").filter(phone__in=phone_variants(phone)).first()
            if profile:
                user = profile.user
                if TutorProfile.objects.filter(user=user).exists():
                    return Response(
                        {"detail": "Este usuario ya tiene un perfil de tutor"},
                        status=status.HTTP_409_CONFLICT,
                    )
                profile.name = name or profile.name
                profile.phone = phone
                profile.role = ROLE_TUTOR
                profile.save(update_fields=["name", "phone", "role", "updated_at"])
            else:
                user = User.objects.create_user(username=ensure_username(digits_only(phone)))
                user.set_unusable_password()
                user.save(update_fields=["password"])
                UserProfile.objects.create(user=user, name=name, phone=phone, role=ROLE_TUTOR)
            if email:
                user.email = email
                user.save(update_fields=["email"])

            tutor_profile = TutorProfile.objects.create(user=user, is_verified=True, **data)
            ApprovedTutor.objects.get_or_create(
                phone=digits_only(phone),
                defaults={
                    "name": name,
                    "notes": "Creado desde admin panel",
                    "used_at": timezone.now(),
                },
            )
        logger.info("Tutor profile %s created from admin panel", tutor_profile.id)
        return Response(admin_tutor_profile_payload(tutor_profile), status=status.HTTP_201_CREATED)

    def put(self, request):
        serializer = AdminTutorProfileUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        tutor_profile = TutorProfile.objects.select_related("user").filter(id=data.pop("id")).first()
        if not tutor_profile:
            return Response({"detail": "Perfil no encontrado"}, status=status.HTTP_404_NOT_FOUND)

        name = data.pop("name", None)
        with transaction.atomic():
            if name is not None:
                UserProfile.objects.filter(user_id=tutor_profile.user_id).update(
                    name=name.strip(),
                    updated_at=timezone.now(),
                )
            for key, value in data.items():
                setattr(tutor_profile, key, value)
            if data:
                tutor_profile.save(update_fields=[*data.keys(), "updated_at"])
        return Response(admin_tutor_profile_payload(tutor_profile))

    def delete(self, request):
        tutor_profile = TutorProfile.objects.filter(id=parse_int_param(request.query_params.get("id"), 0)).first()
        if not tutor_profile:
            return Response({"detail": "Perfil no encontrado"}, status=status.HTTP_404_NOT_FOUND)
        tutor_profile.delete()
        return Response({"success": True})
