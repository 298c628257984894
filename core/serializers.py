from django.contrib.auth import get_user_model
from rest_framework import serializers

from .catalog import GRADE_LEVEL_CODES, SUBJECT_CODES, subject_label
from .models import ApprovedTutor, SessionOffer, TutoringRequest, TutorProfile, UserProfile
from .phone import digits_only, format_phone_display


User = get_user_model()

REQUIRED_PHONE = {"required": "Número de teléfono requerido", "blank": "Número de teléfono requerido"}


def validate_codes(values, allowed, label):
    invalid = [value for value in values if value not in allowed]
    if invalid:
        raise serializers.ValidationError(f"{label} inválido(s): {', '.join(map(str, invalid))}")
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def user_profile_for(user):
    return UserProfile.objects.filter(user=user).first()


class TutorProfileSerializer(serializers.ModelSerializer):
    class Meta:
        model = TutorProfile
        fields = [
            "id",
            "user",
            "subjects",
            "grade_levels",
            "bio",
            "education",
            "experience",
            "specialties",
            "languages",
            "scheduling_link",
            "rating",
            "total_reviews",
            "completed_sessions",
            "is_active",
            "is_verified",
            "lat",
            "lng",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "user",
            "rating",
            "total_reviews",
            "completed_sessions",
            "is_verified",
            "created_at",
            "updated_at",
        ]

    def validate_subjects(self, value):
        if not value:
            raise serializers.ValidationError("Selecciona al menos una materia")
        return validate_codes(value, SUBJECT_CODES, "Materia")

    def validate_grade_levels(self, value):
        return validate_codes(value or [], GRADE_LEVEL_CODES, "Nivel académico")

    def validate_specialties(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError("Se esperaba una lista")
        return [str(item).strip() for item in value if str(item).strip()]

    def validate_languages(self, value):
        return self.validate_specialties(value)

    def validate(self, attrs):
        if self.instance is None and not attrs.get("subjects"):
            raise serializers.ValidationError({"subjects": "Selecciona al menos una materia"})
        return attrs


class CurrentUserSerializer(serializers.Serializer):
    def to_representation(self, user):
        profile = user_profile_for(user)
        tutor_profile = TutorProfile.objects.filter(user=user).first()
        return {
            "id": user.id,
            "name": profile.name if profile else "",
            "email": user.email,
            "phone": profile.phone if profile else None,
            "phone_display": format_phone_display(profile.phone) if profile and profile.phone else "",
            "role": profile.role if profile else None,
            "phone_verified_at": profile.phone_verified_at if profile else None,
            "created_at": profile.created_at if profile else user.date_joined,
            "tutor_profile": TutorProfileSerializer(tutor_profile).data if tutor_profile else None,
        }


class SendOtpSerializer(serializers.Serializer):
    phone = serializers.CharField(max_length=32, error_messages=REQUIRED_PHONE)


class VerifyOtpSerializer(serializers.Serializer):
    phone = serializers.CharField(
        max_length=32,
        error_messages={"required": "Teléfono y código requeridos", "blank": "Teléfono y código requeridos"},
    )
    code = serializers.CharField(
        max_length=12,
        error_messages={"required": "Teléfono y código requeridos", "blank": "Teléfono y código requeridos"},
    )


class UserUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(
        min_length=2,
        max_length=150,
        required=False,
        error_messages={"min_length": "El nombre debe tener al menos 2 caracteres"},
    )
    email = serializers.EmailField(required=False, allow_blank=True)


class RoleUpdateSerializer(serializers.Serializer):
    role = serializers.ChoiceField(
        choices=UserProfile.ROLE_CHOICES,
        error_messages={"invalid_choice": "Rol inválido", "required": "Rol inválido"},
    )


class TutorSummarySerializer(serializers.Serializer):
    def to_representation(self, user):
        profile = user_profile_for(user)
        tutor_profile = TutorProfile.objects.filter(user=user).first()
        return {
            "id": user.id,
            "name": profile.name if profile else "",
            "phone": profile.phone if profile else None,
            "tutor_profile": TutorProfileSerializer(tutor_profile).data if tutor_profile else None,
        }


class SessionOfferSerializer(serializers.ModelSerializer):
    tutor_detail = serializers.SerializerMethodField()

    class Meta:
        model = SessionOffer
        fields = ["id", "request", "tutor", "tutor_detail", "status", "sent_at", "responded_at"]
        read_only_fields = fields

    def get_tutor_detail(self, obj):
        return TutorSummarySerializer(obj.tutor).data


class TutoringRequestSerializer(serializers.ModelSerializer):
    subject_label = serializers.SerializerMethodField()
    offers = SessionOfferSerializer(many=True, read_only=True)

    class Meta:
        model = TutoringRequest
        fields = [
            "id",
            "student",
            "subject",
            "subject_label",
            "grade_level",
            "preferred_time",
            "topic",
            "lat",
            "lng",
            "status",
            "offers",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "student", "status", "offers", "created_at", "updated_at"]

    def get_subject_label(self, obj):
        return subject_label(obj.subject)

    def validate_topic(self, value):
        return (value or "").strip()


class RequestStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=[("CANCELADO", "Cancelado")],
        error_messages={"invalid_choice": "Solo puedes cancelar la solicitud"},
    )


class OfferCreateSerializer(serializers.Serializer):
    jobRequestId = serializers.IntegerField(min_value=1)
    providerId = serializers.IntegerField(min_value=1)


class OfferRespondSerializer(serializers.Serializer):
    action = serializers.ChoiceField(
        choices=[("accept", "accept"), ("reject", "reject")],
        error_messages={"invalid_choice": "Acción inválida"},
    )


class TutorInboxOfferSerializer(serializers.ModelSerializer):
    request = serializers.SerializerMethodField()

    class Meta:
        model = SessionOffer
        fields = ["id", "status", "sent_at", "responded_at", "request"]

    def get_request(self, obj):
        req = obj.request
        student_profile = user_profile_for(req.student)
        return {
            "id": req.id,
            "subject": req.subject,
            "subject_label": subject_label(req.subject),
            "grade_level": req.grade_level,
            "preferred_time": req.preferred_time,
            "topic": req.topic,
            "status": req.status,
            "student": {
                "id": req.student_id,
                "name": student_profile.name if student_profile else "",
                "phone": student_profile.phone if student_profile else None,
            },
        }


class ChatMessageSerializer(serializers.Serializer):
    message = serializers.CharField(
        max_length=2000,
        error_messages={"required": "El mensaje es requerido", "blank": "El mensaje es requerido"},
    )
    conversationState = serializers.JSONField(required=False)
    conversationHistory = serializers.ListField(child=serializers.JSONField(), required=False)


class ApprovedTutorSerializer(serializers.ModelSerializer):
    class Meta:
        model = ApprovedTutor
        fields = ["id", "phone", "name", "notes", "used_at", "created_at"]
        read_only_fields = ["id", "used_at", "created_at"]
        extra_kwargs = {"phone": {"validators": []}}

    def validate_phone(self, value):
        clean = digits_only(value)
        if not clean:
            raise serializers.ValidationError("Número de teléfono requerido")
        return clean


class AdminTutorProfileCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=150)
    phone = serializers.CharField(max_length=32)
    email = serializers.EmailField(required=False, allow_blank=True)
    subjects = serializers.ListField(child=serializers.CharField(), allow_empty=False)
    gradeLevels = serializers.ListField(child=serializers.CharField(), required=False, source="grade_levels")
    bio = serializers.CharField(max_length=500, required=False, allow_blank=True)
    education = serializers.CharField(max_length=255, required=False, allow_blank=True)
    experience = serializers.CharField(required=False, allow_blank=True)
    schedulingLink = serializers.URLField(max_length=500, required=False, allow_blank=True, source="scheduling_link")
    isActive = serializers.BooleanField(required=False, source="is_active")

    def validate_phone(self, value):
        if not digits_only(value):
            raise serializers.ValidationError("Número de teléfono requerido")
        return value

    def validate_subjects(self, value):
        return validate_codes(value, SUBJECT_CODES, "Materia")

    def validate_gradeLevels(self, value):
        return validate_codes(value, GRADE_LEVEL_CODES, "Nivel académico")


class AdminTutorProfileUpdateSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField(max_length=150, required=False)
    subjects = serializers.ListField(child=serializers.CharField(), required=False, allow_empty=False)
    gradeLevels = serializers.ListField(child=serializers.CharField(), required=False, source="grade_levels")
    bio = serializers.CharField(max_length=500, required=False, allow_blank=True)
    education = serializers.CharField(max_length=255, required=False, allow_blank=True)
    experience = serializers.CharField(required=False, allow_blank=True)
    schedulingLink = serializers.URLField(max_length=500, required=False, allow_blank=True, source="scheduling_link")
    isActive = serializers.BooleanField(required=False, source="is_active")
    isVerified = serializers.BooleanField(required=False, source="is_verified")

    def validate_subjects(self, value):
        return validate_codes(value, SUBJECT_CODES, "Materia")

    def validate_gradeLevels(self, value):
        return validate_codes(value, GRADE_LEVEL_CODES, "Nivel académico")
