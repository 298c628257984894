"""Functions the chat assistant may invoke, as a closed set of command types."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union

from django.utils.dateparse import parse_datetime

from .catalog import DEFAULT_GRADE_LEVELS, GRADE_LEVEL_CODES, SUBJECT_CHOICES, SUBJECT_CODES, subject_label
from .matching_logic import search_tutors
from .models import TutoringRequest, TutorProfile
from .onboarding import PhoneRequired, TutorNotApproved, save_own_tutor_profile
from .otp import OtpError, send_otp, verify_otp
from .sms import SmsDeliveryError

logger = logging.getLogger(__name__)

LOGIN_REQUIRED = "Necesitas verificar tu teléfono antes de continuar."


class UnknownCommand(Exception):
    pass


class InvalidCommandArguments(Exception):
    pass


@dataclass(frozen=True)
class SearchTutors:
    subject: str
    grade_level: Optional[str] = None
    max_results: int = 3


@dataclass(frozen=True)
class CreateTutorProfile:
    subjects: List[str]
    grade_levels: List[str] = field(default_factory=lambda: list(DEFAULT_GRADE_LEVELS))
    bio: str = ""
    education: str = ""
    scheduling_link: str = ""


@dataclass(frozen=True)
class UpdateTutorProfile:
    subjects: Optional[List[str]] = None
    grade_levels: Optional[List[str]] = None
    bio: Optional[str] = None
    education: Optional[str] = None
    scheduling_link: Optional[str] = None
    is_active: Optional[bool] = None


@dataclass(frozen=True)
class GetTutorProfile:
    pass


@dataclass(frozen=True)
class CreateTutoringRequest:
    subject: str
    grade_level: str = ""
    topic: str = ""
    preferred_time: Optional[datetime] = None


@dataclass(frozen=True)
class SendOtp:
    phone: str


@dataclass(frozen=True)
class VerifyOtp:
    phone: str
    code: str


ChatCommand = Union[
    SearchTutors,
    CreateTutorProfile,
    UpdateTutorProfile,
    GetTutorProfile,
    CreateTutoringRequest,
    SendOtp,
    VerifyOtp,
]


@dataclass
class CommandOutcome:
    payload: dict
    authenticated_user: object = None


def _subject(value, required=True):
    code = str(value or "").strip().upper()
    if not code and not required:
        return None
    if code not in SUBJECT_CODES:
        raise InvalidCommandArguments(f"Materia inválida: {value}")
    return code


def _grade_level(value):
    code = str(value or "").strip().upper()
    if not code:
        return None
    if code not in GRADE_LEVEL_CODES:
        raise InvalidCommandArguments(f"Nivel académico inválido: {value}")
    return code


def _code_list(values, validator):
    if values is None:
        return None
    if not isinstance(values, list):
        raise InvalidCommandArguments("Se esperaba una lista")
    return [validator(item) for item in values]


def _positive_int(value, default):
    if value in (None, ""):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidCommandArguments(f"Número inválido: {value}") from exc
    return max(number, 1)


def _text(value):
    return str(value or "").strip()


def _datetime(value):
    text = _text(value)
    if not text:
        return None
    try:
        parsed = parse_datetime(text)
    except ValueError as exc:
        raise InvalidCommandArguments("Fecha inválida") from exc
    if parsed is None:
        raise InvalidCommandArguments("Fecha inválida")
    return parsed


def parse_command(name, arguments) -> ChatCommand:
    args = arguments if isinstance(arguments, dict) else {}
    if name == "search_tutors":
        return SearchTutors(
            subject=_subject(args.get("subject")),
            grade_level=_grade_level(args.get("grade_level")),
            max_results=_positive_int(args.get("max_results"), 3),
        )
    if name == "create_tutor_profile":
        subjects = _code_list(args.get("subjects"), _subject)
        if not subjects:
            raise InvalidCommandArguments("Se requiere al menos una materia")
        grade_levels = _code_list(args.get("grade_levels"), _grade_level) or list(DEFAULT_GRADE_LEVELS)
        return CreateTutorProfile(
            subjects=subjects,
            grade_levels=grade_levels,
            bio=_text(args.get("bio"))[:500],
            education=_text(args.get("education")),
            scheduling_link=_text(args.get("scheduling_link")),
        )
    if name == "update_tutor_profile":
        is_active = args.get("is_active")
        subjects = _code_list(args.get("subjects"), _subject)
        if subjects is not None and not subjects:
            raise InvalidCommandArguments("Se requiere al menos una materia")
        return UpdateTutorProfile(
            subjects=subjects,
            grade_levels=_code_list(args.get("grade_levels"), _grade_level),
            bio=_text(args["bio"])[:500] if "bio" in args else None,
            education=_text(args["education"]) if "education" in args else None,
            scheduling_link=_text(args["scheduling_link"]) if "scheduling_link" in args else None,
            is_active=bool(is_active) if is_active is not None else None,
        )
    if name == "get_tutor_profile":
        return GetTutorProfile()
    if name == "create_tutoring_request":
        return CreateTutoringRequest(
            subject=_subject(args.get("subject")),
            grade_level=_grade_level(args.get("grade_level")) or "",
            topic=_text(args.get("topic")),
            preferred_time=_datetime(args.get("preferred_time")),
        )
    if name == "send_otp":
        return SendOtp(phone=_text(args.get("phone")))
    if name == "verify_otp":
        return VerifyOtp(phone=_text(args.get("phone")), code=_text(args.get("code")))
    raise UnknownCommand(name)


def _is_authenticated(user):
    return bool(user is not None and getattr(user, "is_authenticated", False))


def _profile_payload(profile):
    return {
        "id": profile.id,
        "subjects": [subject_label(code) for code in profile.subjects or []],
        "grade_levels": list(profile.grade_levels or []),
        "bio": profile.bio,
        "education": profile.education,
        "scheduling_link": profile.scheduling_link,
        "is_active": profile.is_active,
        "rating": float(profile.rating or 0),
        "completed_sessions": profile.completed_sessions,
    }


def _failure(error):
    return CommandOutcome({"success": False, "error": error})


def execute_command(command: ChatCommand, user=None) -> CommandOutcome:
    if isinstance(command, SearchTutors):
        return CommandOutcome(
            search_tutors(command.subject, command.grade_level, command.max_results)
        )

    if isinstance(command, SendOtp):
        try:
            message = send_otp(command.phone)
        except OtpError as exc:
            return _failure(exc.detail)
        except SmsDeliveryError:
            logger.exception("OTP delivery failed from chat")
            return _failure("Error al enviar el código")
        return CommandOutcome({"success": True, "message": message})

    if isinstance(command, VerifyOtp):
        try:
            verified_user, created = verify_otp(command.phone, command.code)
        except OtpError as exc:
            return _failure(exc.detail)
        return CommandOutcome(
            {
                "success": True,
                "message": "Teléfono verificado",
                "new_user": created,
                "role": verified_user.userprofile.role,
            },
            authenticated_user=verified_user,
        )

    if not _is_authenticated(user):
        return _failure(LOGIN_REQUIRED)

    if isinstance(command, GetTutorProfile):
        profile = TutorProfile.objects.filter(user=user).first()
        if not profile:
            return _failure("No tienes un perfil de tutor")
        return CommandOutcome({"success": True, "profile": _profile_payload(profile)})

    if isinstance(command, CreateTutorProfile):
        if TutorProfile.objects.filter(user=user).exists():
            return _failure("Ya tienes un perfil de tutor")
        try:
            profile, _created = save_own_tutor_profile(
                user,
                {
                    "subjects": command.subjects,
                    "grade_levels": command.grade_levels,
                    "bio": command.bio,
                    "education": command.education,
                    "scheduling_link": command.scheduling_link,
                },
            )
        except (PhoneRequired, TutorNotApproved) as exc:
            return CommandOutcome({"success": False, "error": exc.detail, "code": exc.code})
        return CommandOutcome({"success": True, "profile": _profile_payload(profile)})

    if isinstance(command, UpdateTutorProfile):
        profile = TutorProfile.objects.filter(user=user).first()
        if not profile:
            return _failure("No tienes un perfil de tutor")
        changes = {
            key: value
            for key, value in (
                ("subjects", command.subjects),
                ("grade_levels", command.grade_levels),
                ("bio", command.bio),
                ("education", command.education),
                ("scheduling_link", command.scheduling_link),
                ("is_active", command.is_active),
            )
            if value is not None
        }
        for key, value in changes.items():
            setattr(profile, key, value)
        if changes:
            profile.save(update_fields=[*changes.keys(), "updated_at"])
        return CommandOutcome({"success": True, "profile": _profile_payload(profile)})

    if isinstance(command, CreateTutoringRequest):
        tutoring_request = TutoringRequest.objects.create(
            student=user,
            subject=command.subject,
            grade_level=command.grade_level,
            topic=command.topic,
            preferred_time=command.preferred_time,
        )
        return CommandOutcome(
            {
                "success": True,
                "request": {
                    "id": tutoring_request.id,
                    "subject": subject_label(tutoring_request.subject),
                    "status": tutoring_request.status,
                },
            }
        )

    raise UnknownCommand(type(command).__name__)


def function_catalogue():
    subjects = [code for code, _label in SUBJECT_CHOICES]
    grade_levels = sorted(GRADE_LEVEL_CODES)
    subject_list = {"type": "array", "items": {"type": "string", "enum": subjects}}
    grade_list = {"type": "array", "items": {"type": "string", "enum": grade_levels}}
    definitions = [
        (
            "search_tutors",
            "Busca tutores voluntarios disponibles para una materia específica",
            {
                "subject": {"type": "string", "enum": subjects, "description": "Materia que busca el estudiante"},
                "grade_level": {"type": "string", "enum": grade_levels, "description": "Nivel académico del estudiante"},
                "max_results": {"type": "number", "description": "Número máximo de resultados (default 3)"},
            },
            ["subject"],
        ),
        (
            "create_tutor_profile",
            "Crea el perfil de tutor del usuario verificado (requiere estar en la lista de tutores aprobados)",
            {
                "subjects": subject_list,
                "grade_levels": grade_list,
                "bio": {"type": "string"},
                "education": {"type": "string"},
                "scheduling_link": {"type": "string"},
            },
            ["subjects"],
        ),
        (
            "update_tutor_profile",
            "Actualiza campos del perfil de tutor del usuario verificado",
            {
                "subjects": subject_list,
                "grade_levels": grade_list,
                "bio": {"type": "string"},
                "education": {"type": "string"},
                "scheduling_link": {"type": "string"},
                "is_active": {"type": "boolean"},
            },
            [],
        ),
        ("get_tutor_profile", "Obtiene el perfil de tutor del usuario verificado", {}, []),
        (
            "create_tutoring_request",
            "Registra una solicitud de tutoría para el estudiante verificado",
            {
                "subject": {"type": "string", "enum": subjects},
                "grade_level": {"type": "string", "enum": grade_levels},
                "topic": {"type": "string", "description": "Tema específico"},
                "preferred_time": {"type": "string", "description": "Fecha y hora ISO 8601"},
            },
            ["subject"],
        ),
        (
            "send_otp",
            "Envía un código de verificación al teléfono (con código de país)",
            {"phone": {"type": "string"}},
            ["phone"],
        ),
        (
            "verify_otp",
            "Verifica el código enviado al teléfono",
            {"phone": {"type": "string"}, "code": {"type": "string"}},
            ["phone", "code"],
        ),
    ]
    return [
        {
            "type": "function",
            "function": {
                "name": name,
                "description": description,
                "parameters": {"type": "object", "properties": properties, "required": required},
            },
        }
        for name, description, properties, required in definitions
    ]
