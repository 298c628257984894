import logging

from django.db import transaction
from django.utils import timezone

from .models import ApprovedTutor, TutorProfile, UserProfile
from .permissions import ROLE_STUDENT, ROLE_TUTOR
from .phone import digits_only

logger = logging.getLogger(__name__)

NOT_APPROVED_MESSAGE = (
    "Tu número no está autorizado para registrarse como tutor. "
    "Contacta al equipo de Chamba para solicitar acceso."
)
PHONE_REQUIRED_MESSAGE = "Se requiere un número de teléfono verificado para ser tutor"


class PhoneRequired(Exception):
    code = "PHONE_REQUIRED"

    def __init__(self, detail=PHONE_REQUIRED_MESSAGE):
        super().__init__(detail)
        self.detail = detail


class TutorNotApproved(Exception):
    code = "NOT_APPROVED"

    def __init__(self, detail=NOT_APPROVED_MESSAGE):
        super().__init__(detail)
        self.detail = detail


def find_approved_tutor(phone):
    clean = digits_only(phone)
    if not clean:
        return None
    return ApprovedTutor.objects.filter(phone=clean).first()


def ensure_tutor_approved(profile):
    """Raise unless ``profile``'s phone is whitelisted; stamps first use."""
    if not profile.phone:
        raise PhoneRequired()
    approved = find_approved_tutor(profile.phone)
    if not approved:
        logger.info("Tutor promotion refused for %s: not whitelisted", profile.phone)
        raise TutorNotApproved()
    if approved.used_at is None:
        approved.used_at = timezone.now()
        approved.save(update_fields=["used_at"])
    return approved


def change_role(user, role):
    profile, _ = UserProfile.objects.get_or_create(user=user)
    if role == profile.role:
        return profile
    with transaction.atomic():
        if role == ROLE_TUTOR:
            ensure_tutor_approved(profile)
        profile.role = role
        profile.save(update_fields=["role", "updated_at"])
    return profile


TUTOR_PROFILE_FIELDS = (
    "subjects",
    "grade_levels",
    "bio",
    "education",
    "experience",
    "specialties",
    "languages",
    "scheduling_link",
    "is_active",
    "lat",
    "lng",
)


def save_own_tutor_profile(user, data):
    """Create or update ``user``'s tutor profile, promoting the user to tutor."""
    profile, _ = UserProfile.objects.get_or_create(user=user)
    values = {key: data[key] for key in TUTOR_PROFILE_FIELDS if key in data}
    with transaction.atomic():
        if profile.role != ROLE_TUTOR:
            ensure_tutor_approved(profile)
            profile.role = ROLE_TUTOR
            profile.save(update_fields=["role", "updated_at"])
        tutor_profile, created = TutorProfile.objects.update_or_create(user=user, defaults=values)
    return tutor_profile, created


def revert_to_student(user):
    updated = UserProfile.objects.filter(user=user, role=ROLE_TUTOR).update(
        role=ROLE_STUDENT,
        updated_at=timezone.now(),
    )
    return bool(updated)
