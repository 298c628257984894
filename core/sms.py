import base64
import json
import logging
import urllib.error
import urllib.parse
import urllib.request

from django.conf import settings

from .phone import format_phone

logger = logging.getLogger(__name__)

FRAME = "═" * 43


class SmsDeliveryError(Exception):
    pass


def _get_twilio_config():
    account_sid = (settings.TWILIO_ACCOUNT_SID or "").strip()
    auth_token = (settings.TWILIO_AUTH_TOKEN or "").strip()
    from_number = (settings.TWILIO_FROM_NUMBER or "").strip()
    if not account_sid or not auth_token or not from_number:
        return None
    return {
        "account_sid": account_sid,
        "auth_token": auth_token,
        "from_number": from_number,
    }


def sms_provider_is_configured():
    return _get_twilio_config() is not None


def _send_with_twilio(config, to, body):
    url = f"https://api.twilio.com/2010-04-01/Accounts/{config['account_sid']}/Messages.json"
    data = urllib.parse.urlencode(
        {"To": to, "From": config["from_number"], "Body": body}
    ).encode("utf-8")
    basic = base64.b64encode(
        f"{config['account_sid']}:{config['auth_token']}".encode("utf-8")
    ).decode("utf-8")
    request = urllib.request.Request(url, data=data, method="POST")
    request.add_header("Authorization", f"Basic {basic}")
    request.add_header("Content-Type", "application/x-www-form-urlencoded")
    try:
        with urllib.request.urlopen(request, timeout=20) as response:
            payload = json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        try:
            detail = json.loads(exc.read().decode("utf-8"))
        except ValueError:
            detail = {"message": exc.reason}
        raise SmsDeliveryError(detail.get("message") or "Unable to send SMS.") from exc
    except urllib.error.URLError as exc:
        raise SmsDeliveryError(str(exc.reason)) from exc
    return payload.get("sid", "")


def log_simulated(title, lines):
    logger.info("\n%s\n📱 %s\n%s\n%s", FRAME, title, "\n".join(lines), FRAME)


def send_sms(to, body):
    """Deliver ``body`` to ``to``; simulated through the log when no provider is set."""
    recipient = format_phone(to)
    config = _get_twilio_config()
    if config is None:
        log_simulated("SMS SIMULADO", [f"Para: {recipient}", f"Mensaje: {body}"])
        return True
    sid = _send_with_twilio(config, recipient, body)
    logger.info("SMS sent to %s (sid=%s)", recipient, sid)
    return True


def notify(to, body):
    """Best-effort notification; delivery failures are logged, never raised."""
    if not to:
        logger.info("Skipping notification without recipient phone.")
        return False
    try:
        return send_sms(to, body)
    except SmsDeliveryError as exc:
        logger.warning("Notification to %s failed: %s", to, exc)
        return False


def _app_url(path=""):
    return f"{settings.PUBLIC_APP_URL.rstrip('/')}{path}"


def otp_message(code):
    return f"Tu código de verificación de Chamba Tutorías es: {code}"


def tutor_new_request_message(tutor_name, student_name, subject):
    return (
        f"¡Hola {tutor_name}! 👋\n\n{student_name} necesita ayuda con {subject}.\n\n"
        f"Revisa tu dashboard para más detalles: {_app_url('/proveedor/dashboard')}\n\n"
        "¡Gracias por ser parte de Chamba Tutorías! 🎓"
    )


def student_confirmation_message(student_name, tutor_name, subject):
    return (
        f"¡Hola {student_name}! 🎉\n\n{tutor_name} ha aceptado tu solicitud de tutoría en {subject}.\n\n"
        f"Revisa los detalles en tu dashboard: {_app_url('/cliente/solicitudes')}\n\n"
        "¡Que tengas una excelente sesión! 📚"
    )


def student_rejection_message(student_name, tutor_name, subject):
    return (
        f"¡Hola {student_name}!\n\nLamentamos informarte que {tutor_name} no está disponible "
        f"para tu solicitud de tutoría en {subject} en este momento.\n\n"
        f"No te preocupes, puedes buscar otros tutores disponibles en: {_app_url()}\n\n"
        "¡Gracias por usar Chamba Tutorías! 📚"
    )
