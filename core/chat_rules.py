import json
import logging
import unicodedata

from django.conf import settings

from .auth import build_auth_token_payload
from .catalog import DEFAULT_GRADE_LEVELS, grade_level_label, subject_label
from .matching_logic import search_tutors
from .models import TutorProfile, UserProfile
from .onboarding import PhoneRequired, TutorNotApproved, find_approved_tutor, save_own_tutor_profile
from .otp import OtpError, send_otp, verify_otp
from .permissions import ROLE_TUTOR
from .phone import format_phone, is_valid_length
from .sms import SmsDeliveryError

logger = logging.getLogger(__name__)

STEP_GREETING = "greeting"
STEP_STUDENT_NAME = "student_name"
STEP_STUDENT_SUBJECT = "student_subject"
STEP_STUDENT_SELECT = "student_select"
STEP_COMPLETE = "complete"
STEP_TUTOR_PHONE = "tutor_phone"
STEP_TUTOR_CODE = "tutor_code"
STEP_TUTOR_NAME = "tutor_name"
STEP_TUTOR_SUBJECTS = "tutor_subjects"

TUTOR_KEYWORDS = ("tutor", "voluntario", "ensenar", "registrar", "inscribir")
EDIT_KEYWORDS = ("editar", "modificar", "cambiar", "actualizar", "mi perfil")
STUDENT_KEYWORDS = ("ayuda", "necesito", "matematicas", "ciencias", "ingles", "materia")

# Checked in order; the first match wins for a single subject.
SUBJECT_KEYWORDS = [
    ("ciencias de la computacion", "CIENCIAS_COMPUTACION"),
    ("computacion", "CIENCIAS_COMPUTACION"),
    ("matematicas", "MATEMATICAS"),
    ("mate", "MATEMATICAS"),
    ("algebra", "ALGEBRA"),
    ("calculo", "CALCULO"),
    ("fisica", "FISICA"),
    ("quimica", "QUIMICA"),
    ("biologia", "BIOLOGIA"),
    ("ciencia", "FISICA"),
    ("ingles", "INGLES"),
    ("espanol", "ESPANOL"),
    ("historia", "HISTORIA"),
    ("geografia", "GEOGRAFIA"),
    ("programacion", "PROGRAMACION"),
    ("economia", "ECONOMIA"),
    ("contabilidad", "CONTABILIDAD"),
    ("estadistica", "ESTADISTICA"),
]

SUBJECT_QUICK_REPLIES = ["Matemáticas", "Ciencias", "Inglés", "Otra materia"]
WELCOME_QUICK_REPLIES = [
    "Necesito ayuda con una materia 📚",
    "Quiero ser tutor voluntario 🎓",
]
SEPARATOR = "\n\n─────────────────\n\n"


def normalize_text(value):
    decomposed = unicodedata.normalize("NFKD", str(value or "").lower().strip())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def contains_any(text, keywords):
    return any(keyword in text for keyword in keywords)


def detect_subject(text):
    normalized = normalize_text(text)
    for keyword, code in SUBJECT_KEYWORDS:
        if keyword in normalized:
            return code
    return "OTRO"


def detect_subjects(text):
    found = []
    for chunk in normalize_text(text).replace(" y ", ",").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        for keyword, code in SUBJECT_KEYWORDS:
            if keyword in chunk:
                if code not in found:
                    found.append(code)
                break
    return found


def initial_state():
    return {"step": STEP_GREETING, "data": {}}


def reply(message, state, quick_replies=None, **extra):
    response = {"message": message, "conversationState": state}
    if quick_replies:
        response["quickReplies"] = quick_replies
    response.update(extra)
    return response


def welcome_message():
    return (
        "¡Hola! 👋 Soy tu asistente de Chamba Tutorías.\n\n"
        "Ofrecemos tutorías GRATUITAS con voluntarios.\n\n"
        "¿En qué te puedo ayudar?"
    )


def signup_instructions():
    return (
        "Para ser tutor voluntario en Chamba:\n\n"
        f"1️⃣ Llena el formulario de registro:\n   👉 {settings.TUTOR_SIGNUP_FORM_URL}\n\n"
        f"2️⃣ O envía un WhatsApp al {settings.WHATSAPP_NUMBER} escribiendo \"Tutor\" y tu nombre.\n\n"
        "Te contactaremos pronto para completar tu registro. "
        "¡Gracias por querer ser parte de este proyecto! 💪"
    )


def edit_profile_instructions():
    return (
        "Para modificar tu perfil de tutor:\n\n"
        f"1️⃣ Envía un WhatsApp al {settings.WHATSAPP_NUMBER} con los cambios que quieres hacer.\n\n"
        f"2️⃣ O llena el formulario de cambios:\n   👉 {settings.TUTOR_SIGNUP_FORM_URL}\n\n"
        "¡Te ayudaremos a actualizar tu información! 📝"
    )


def _is_authenticated(user):
    return bool(user is not None and getattr(user, "is_authenticated", False))


def _user_profile(user):
    if not _is_authenticated(user):
        return None
    return UserProfile.objects.filter(user=user).first()


def format_tutor_option(index, tutor):
    subjects = ", ".join(tutor["subjects"])
    grade_levels = ", ".join(grade_level_label(level) for level in tutor["grade_levels"])
    bio = tutor.get("bio") or "Tutor voluntario dedicado a ayudar estudiantes."
    first_name = tutor["name"].split(" ")[0]
    if tutor.get("scheduling_link"):
        book = f"\n\n{{{{BOOK_BUTTON:{first_name}:{tutor['scheduling_link']}}}}}"
    else:
        book = f"\n\n👉 Responde \"{index}\" para conectar con {first_name}"
    return (
        f"{index}️⃣ **{tutor['name']}**\n\n{bio}\n\n"
        f"   • Materias: {subjects}\n   • Nivel académico: {grade_levels}{book}"
    )


def _start_tutor_branch(user):
    profile = _user_profile(user)
    if profile and profile.role == ROLE_TUTOR and TutorProfile.objects.filter(user=user).exists():
        return reply(
            f"¡Ya eres tutor en Chamba! 🎓\n\n{edit_profile_instructions()}",
            initial_state(),
        )
    if profile and profile.phone:
        if not find_approved_tutor(profile.phone):
            return reply(f"¡Qué bueno que quieres ayudar! 🎓 {signup_instructions()}", initial_state())
        return reply(
            "¡Qué bueno que quieres ayudar! 🎓 Tu número está aprobado.\n\n¿Cómo te llamas?",
            {"step": STEP_TUTOR_NAME, "role": "tutor", "data": {"phone": profile.phone}},
        )
    return reply(
        "¡Qué bueno que quieres ayudar! 🎓\n\n"
        "Escribe tu número de WhatsApp con código de país (ej. +503 1234 5678) "
        "para verificar si ya estás en nuestra lista de tutores aprobados.",
        {"step": STEP_TUTOR_PHONE, "role": "tutor", "data": {}},
    )


def _greeting(text, state, user):
    if contains_any(text, TUTOR_KEYWORDS):
        return _start_tutor_branch(user)
    if contains_any(text, EDIT_KEYWORDS):
        return reply(edit_profile_instructions(), initial_state())
    if contains_any(text, STUDENT_KEYWORDS):
        return reply(
            "¡Genial! Te ayudo a encontrar un tutor 📚\n\n¿Cuál es tu nombre?",
            {"step": STEP_STUDENT_NAME, "role": "student", "data": {}},
        )
    return reply(welcome_message(), state, WELCOME_QUICK_REPLIES)


def _student_name(message, state):
    name = message.strip()
    return reply(
        f"¡Mucho gusto, {name}! 👋\n\n¿En qué materia necesitas ayuda?",
        {**state, "step": STEP_STUDENT_SUBJECT, "data": {**state["data"], "name": name}},
        SUBJECT_QUICK_REPLIES,
    )


def _student_subject(message, state):
    subject = detect_subject(message)
    result = search_tutors(subject, max_results=3)
    tutors = result.get("tutors") or []
    if result.get("success") and tutors:
        options = SEPARATOR.join(
            format_tutor_option(index, tutor) for index, tutor in enumerate(tutors, start=1)
        )
        return reply(
            f"🔍 Encontré {len(tutors)} tutores disponibles:\n\n{options}{SEPARATOR}"
            "¿Con cuál te gustaría agendar?",
            {
                **state,
                "step": STEP_STUDENT_SELECT,
                "data": {**state["data"], "subject": subject, "tutors": json.dumps(tutors)},
            },
            [str(index) for index in range(1, len(tutors) + 1)],
        )
    return reply(
        f"😔 No hay tutores disponibles para {subject_label(subject)} en este momento.\n\n"
        "¿Te gustaría buscar otra materia?",
        {**state, "step": STEP_STUDENT_SUBJECT, "data": {**state["data"], "subject": subject}},
        SUBJECT_QUICK_REPLIES[:3],
    )


def stored_tutors(data):
    """Tutor options saved in the conversation state; anything malformed reads as none."""
    try:
        tutors = json.loads(data.get("tutors") or "[]")
    except (TypeError, ValueError):
        return []
    if not isinstance(tutors, list):
        return []
    return [tutor for tutor in tutors if isinstance(tutor, dict)]


def _student_select(text, state):
    try:
        selection = int(text.split()[0]) if text else 0
    except ValueError:
        selection = 0
    tutors = stored_tutors(state["data"])

    if not 1 <= selection <= max(len(tutors), 1) or selection > 3:
        return reply("Por favor elige una opción (1, 2 o 3)", state, ["1", "2", "3"])

    tutor_name = "el tutor"
    first_name = "Tutor"
    scheduling_link = ""
    if selection <= len(tutors):
        selected = tutors[selection - 1]
        tutor_name = str(selected.get("name") or tutor_name)
        first_name = tutor_name.split(" ")[0]
        scheduling_link = str(selected.get("scheduling_link") or "")

    if scheduling_link:
        booking = f"\n\n{{{{BOOK_BUTTON:{first_name}:{scheduling_link}}}}}"
    else:
        booking = (
            "\n\nContacta al equipo de Chamba para coordinar tu sesión:\n"
            f"👉 WhatsApp: {settings.WHATSAPP_NUMBER}"
        )
    return reply(
        f"¡Excelente elección! 🎉\n\nHas seleccionado a {tutor_name}.{booking}\n\n"
        "Recuerda: ¡Las tutorías son GRATIS! 🎓\n\n¿Puedo ayudarte con algo más?",
        {"step": STEP_COMPLETE, "data": {**state["data"], "selection": str(selection)}},
        ["Buscar otro tutor", "Eso es todo, gracias"],
    )


def _complete(text):
    if contains_any(text, ("buscar", "otro", "otra")):
        return reply(
            "¡Claro! ¿En qué materia necesitas ayuda?",
            {"step": STEP_STUDENT_SUBJECT, "role": "student", "data": {}},
            SUBJECT_QUICK_REPLIES,
        )
    return reply(
        "¡Gracias por usar Chamba Tutorías! 🎓\n\n"
        "Si necesitas algo más, solo escríbeme. ¡Mucho éxito con tu aprendizaje! 💪",
        initial_state(),
    )


def _tutor_phone(message, state):
    if not is_valid_length(message):
        return reply(
            "Ese número no parece válido. Escríbelo con código de país, por ejemplo +503 1234 5678.",
            state,
        )
    phone = format_phone(message)
    if not find_approved_tutor(phone):
        return reply(
            f"Tu número todavía no está en nuestra lista de tutores aprobados. {signup_instructions()}",
            initial_state(),
        )
    try:
        send_otp(phone)
    except (OtpError, SmsDeliveryError) as exc:
        logger.warning("Chat OTP send failed for %s: %s", phone, exc)
        return reply("No pudimos enviar el código. Intenta de nuevo en unos minutos.", state)
    return reply(
        f"Te enviamos un código de 6 dígitos al {phone}. Escríbelo aquí para continuar.",
        {**state, "step": STEP_TUTOR_CODE, "data": {**state["data"], "phone": phone}},
    )


def _tutor_code(message, state):
    phone = str(state["data"].get("phone") or "")
    try:
        verified_user, _created = verify_otp(phone, message.strip())
    except OtpError as exc:
        return reply(f"{exc.detail}. Intenta de nuevo.", state)
    return reply(
        "¡Teléfono verificado! ✅\n\n¿Cómo te llamas?",
        {**state, "step": STEP_TUTOR_NAME},
        auth=build_auth_token_payload(verified_user),
    )


def _tutor_name(message, state):
    name = message.strip()
    return reply(
        f"¡Mucho gusto, {name}! ¿Qué materias puedes enseñar? Escríbelas separadas por comas.",
        {**state, "step": STEP_TUTOR_SUBJECTS, "data": {**state["data"], "name": name}},
        SUBJECT_QUICK_REPLIES[:3],
    )


def _tutor_subjects(message, state, user):
    if not _is_authenticated(user):
        return reply(
            "Tu sesión no está activa. Verifica tu teléfono de nuevo para continuar.",
            {"step": STEP_TUTOR_PHONE, "role": "tutor", "data": {}},
        )
    subjects = detect_subjects(message)
    if not subjects:
        return reply(
            "No reconocí ninguna materia. Escríbelas separadas por comas, por ejemplo: Matemáticas, Física.",
            state,
        )
    try:
        save_own_tutor_profile(
            user,
            {"subjects": subjects, "grade_levels": list(DEFAULT_GRADE_LEVELS)},
        )
    except (PhoneRequired, TutorNotApproved) as exc:
        return reply(f"{exc.detail}\n\n{signup_instructions()}", initial_state())

    name = str(state["data"].get("name") or "")
    if name:
        UserProfile.objects.filter(user=user, name="").update(name=name)
    labels = ", ".join(subject_label(code) for code in subjects)
    return reply(
        f"¡Listo! 🎉 Tu perfil de tutor está activo para: {labels}.\n\n"
        "Los estudiantes ya pueden encontrarte. ¡Gracias por ayudar! 💪",
        {"step": STEP_COMPLETE, "role": "tutor", "data": {}},
    )


def handle_with_rules(message, state=None, user=None):
    """Advance the scripted dialogue one turn and return the chat response."""
    if not isinstance(state, dict) or not isinstance(state.get("step"), str):
        state = initial_state()
    data = state.get("data") or {}
    if not isinstance(data, dict):
        state, data = initial_state(), {}
    state = {**state, "data": dict(data)}
    text = normalize_text(message)
    step = state["step"]

    if step == STEP_GREETING:
        return _greeting(text, state, user)
    if step == STEP_STUDENT_NAME:
        return _student_name(message, state)
    if step == STEP_STUDENT_SUBJECT:
        return _student_subject(message, state)
    if step == STEP_STUDENT_SELECT:
        return _student_select(text, state)
    if step == STEP_COMPLETE:
        return _complete(text)
    if step == STEP_TUTOR_PHONE:
        return _tutor_phone(message, state)
    if step == STEP_TUTOR_CODE:
        return _tutor_code(message, state)
    if step == STEP_TUTOR_NAME:
        return _tutor_name(message, state)
    if step == STEP_TUTOR_SUBJECTS:
        return _tutor_subjects(message, state, user)
    return reply(welcome_message(), initial_state(), WELCOME_QUICK_REPLIES)
