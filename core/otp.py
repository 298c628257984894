import logging
from datetime import timedelta
from hashlib import sha256
from random import randint

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from .models import PhoneVerification, UserProfile
from .phone import digits_only, format_phone, is_valid_length, phone_variants
from .sms import log_simulated, otp_message, send_sms, sms_provider_is_configured

logger = logging.getLogger(__name__)

User = get_user_model()


class OtpError(Exception):
    def __init__(self, detail):
        super().__init__(detail)
        self.detail = detail


def generate_otp() -> str:
    return f"{randint(0, 999999):06d}"


def hash_otp(otp: str) -> str:
    return sha256(str(otp).encode("utf-8")).hexdigest()


def otp_expiry(minutes: int = None):
    if minutes is None:
        minutes = settings.OTP_EXPIRY_MINUTES
    return timezone.now() + timedelta(minutes=minutes)


def is_test_phone(phone) -> bool:
    return digits_only(phone) == digits_only(settings.TEST_PHONE)


def ensure_username(base: str) -> str:
    base = (base or "user").strip().lower().replace(" ", "_")
    candidate = base
    index = 1
    while User.objects.filter(username=candidate).exists():
        index += 1
        candidate = f"{base}_{index}"
    return candidate


def send_otp(phone):
    """Issue a code for ``phone`` and return the user-facing status message."""
    if not str(phone or "").strip():
        raise OtpError("Número de teléfono requerido")
    if not is_valid_length(phone):
        raise OtpError("Número de teléfono inválido")

    formatted = format_phone(phone)
    if is_test_phone(phone):
        log_simulated(
            "TEST NUMBER - OTP SIMULADO",
            [f"Para: {formatted}", f"Código de prueba: {settings.TEST_OTP_CODE}"],
        )
        return "Código enviado (número de prueba)"

    clean = digits_only(phone)
    code = (settings.OTP_DEV_CODE or "").strip() or generate_otp()
    with transaction.atomic():
        PhoneVerification.objects.filter(phone=clean).delete()
        PhoneVerification.objects.create(
            phone=clean,
            code_hash=hash_otp(code),
            expires_at=otp_expiry(),
        )

    if sms_provider_is_configured():
        send_sms(formatted, otp_message(code))
        return "Código enviado"
    log_simulated("OTP SIMULADO", [f"Para: {formatted}", f"Código: {code}"])
    return "Código enviado (modo desarrollo)"


def upsert_verified_user(phone):
    formatted = format_phone(phone)
    now = timezone.now()
    profile = UserProfile.objects.select_related("user").filter(phone__in=phone_variants(phone)).first()
    if profile:
        profile.phone = formatted
        profile.phone_verified_at = now
        profile.save(update_fields=["phone", "phone_verified_at", "updated_at"])
        return profile.user, False

    user = User.objects.create_user(username=ensure_username(digits_only(phone)))
    user.set_unusable_password()
    user.save(update_fields=["password"])
    UserProfile.objects.create(
        user=user,
        phone=formatted,
        phone_verified_at=now,
        role="ESTUDIANTE",
    )
    return user, True


def verify_otp(phone, code):
    """Check ``code`` for ``phone`` and return ``(user, created)``."""
    code = str(code or "").strip()
    if not str(phone or "").strip() or not code:
        raise OtpError("Teléfono y código requeridos")

    if is_test_phone(phone):
        if code != settings.TEST_OTP_CODE:
            raise OtpError(f"Código inválido (usa {settings.TEST_OTP_CODE} para número de prueba)")
        with transaction.atomic():
            return upsert_verified_user(phone)

    clean = digits_only(phone)
    with transaction.atomic():
        verification = (
            PhoneVerification.objects.select_for_update()
            .filter(
                phone=clean,
                code_hash=hash_otp(code),
                expires_at__gt=timezone.now(),
                used=False,
            )
            .order_by("-created_at", "-id")
            .first()
        )
        if not verification:
            raise OtpError("Código inválido o expirado")
        verification.used = True
        verification.save(update_fields=["used"])

        user, created = upsert_verified_user(phone)
        PhoneVerification.objects.filter(phone=clean).delete()

    logger.info("Phone %s verified (new user: %s)", format_phone(phone), created)
    return user, created
