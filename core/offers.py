"""Offer workflow for tutoring requests.

Request lifecycle::

    BORRADOR --offer--> PENDIENTE --accept--> CONFIRMADO
                            |
                            +--last offer rejected--> RECHAZADO --offer--> PENDIENTE

BORRADOR, PENDIENTE and RECHAZADO may be cancelled (CANCELADO). CONFIRMADO,
CANCELADO and COMPLETADO take no further offers.
"""
import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from .catalog import subject_label
from .models import SessionOffer, TutoringRequest, TutorProfile, UserProfile
from .permissions import ROLE_TUTOR
from .sms import (
    notify,
    student_confirmation_message,
    student_rejection_message,
    tutor_new_request_message,
)

logger = logging.getLogger(__name__)

REQUEST_DRAFT = "BORRADOR"
REQUEST_PENDING = "PENDIENTE"
REQUEST_CONFIRMED = "CONFIRMADO"
REQUEST_REJECTED = "RECHAZADO"
REQUEST_CANCELLED = "CANCELADO"
REQUEST_COMPLETED = "COMPLETADO"

OFFER_SENT = "ENVIADO"
OFFER_ACCEPTED = "ACEPTADO"
OFFER_REJECTED = "RECHAZADO"

OPEN_FOR_OFFERS = {REQUEST_DRAFT, REQUEST_PENDING, REQUEST_REJECTED}
CANCELLABLE = {REQUEST_DRAFT, REQUEST_PENDING, REQUEST_REJECTED}

ACTION_ACCEPT = "accept"
ACTION_REJECT = "reject"


class OfferWorkflowError(Exception):
    status_code = 400
    default_detail = "Operación no permitida"

    def __init__(self, detail=None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class RequestNotFound(OfferWorkflowError):
    status_code = 404
    default_detail = "Solicitud no encontrada"


class OfferNotFound(OfferWorkflowError):
    status_code = 404
    default_detail = "Oferta no encontrada"


class NotAllowed(OfferWorkflowError):
    status_code = 403
    default_detail = "No autorizado"


class TutorUnavailable(OfferWorkflowError):
    default_detail = "Tutor no disponible"


class OfferConflict(OfferWorkflowError):
    status_code = 409
    default_detail = "Ya existe una oferta para este tutor"


class OfferAlreadyResponded(OfferWorkflowError):
    default_detail = "Esta oferta ya fue respondida"


def display_name(user, fallback):
    profile = UserProfile.objects.filter(user_id=user.id).first()
    if profile and profile.name:
        return profile.name
    return user.get_full_name() or fallback


def user_phone(user):
    profile = UserProfile.objects.filter(user_id=user.id).first()
    return profile.phone if profile else ""


def create_offer(student, request_id, tutor_id):
    """Offer ``request_id`` to ``tutor_id`` and move the request to PENDIENTE."""
    with transaction.atomic():
        tutoring_request = (
            TutoringRequest.objects.select_for_update().filter(id=request_id).first()
        )
        if not tutoring_request:
            raise RequestNotFound()
        if tutoring_request.student_id != student.id:
            raise NotAllowed()

        tutor_profile = (
            TutorProfile.objects.select_related("user", "user__userprofile")
            .filter(user_id=tutor_id)
            .first()
        )
        if (
            not tutor_profile
            or not tutor_profile.is_active
            or getattr(getattr(tutor_profile.user, "userprofile", None), "role", None) != ROLE_TUTOR
        ):
            raise TutorUnavailable()

        if tutoring_request.status not in OPEN_FOR_OFFERS:
            raise OfferConflict("Esta solicitud ya no acepta nuevas ofertas")
        if SessionOffer.objects.filter(request=tutoring_request, tutor_id=tutor_id).exists():
            raise OfferConflict()

        try:
            with transaction.atomic():
                offer = SessionOffer.objects.create(
                    request=tutoring_request,
                    tutor_id=tutor_id,
                    status=OFFER_SENT,
                )
        except IntegrityError as exc:
            raise OfferConflict() from exc

        tutoring_request.status = REQUEST_PENDING
        tutoring_request.save(update_fields=["status", "updated_at"])

    tutor = tutor_profile.user
    notify(
        user_phone(tutor),
        tutor_new_request_message(
            display_name(tutor, "Tutor"),
            display_name(student, "Un estudiante"),
            subject_label(tutoring_request.subject),
        ),
    )
    logger.info("Offer %s created for request %s", offer.id, tutoring_request.id)
    return offer


def respond_to_offer(tutor, offer_id, action):
    """Apply ``action`` (accept or reject) to the tutor's own offer."""
    if action not in {ACTION_ACCEPT, ACTION_REJECT}:
        raise OfferWorkflowError("Acción inválida")

    notify_student_with = None
    with transaction.atomic():
        offer = SessionOffer.objects.filter(id=offer_id).first()
        if not offer:
            raise OfferNotFound()
        if offer.tutor_id != tutor.id:
            raise NotAllowed()

        tutoring_request = TutoringRequest.objects.select_for_update().get(id=offer.request_id)
        offer = SessionOffer.objects.select_for_update().get(id=offer_id)
        if offer.status != OFFER_SENT:
            raise OfferAlreadyResponded()

        now = timezone.now()
        if action == ACTION_ACCEPT:
            already_accepted = (
                SessionOffer.objects.filter(request=tutoring_request, status=OFFER_ACCEPTED)
                .exclude(id=offer.id)
                .exists()
            )
            if already_accepted or tutoring_request.status not in OPEN_FOR_OFFERS:
                raise OfferConflict("Esta solicitud ya no está disponible")

            offer.status = OFFER_ACCEPTED
            offer.responded_at = now
            offer.save(update_fields=["status", "responded_at"])
            tutoring_request.status = REQUEST_CONFIRMED
            tutoring_request.save(update_fields=["status", "updated_at"])
            SessionOffer.objects.filter(
                request=tutoring_request,
                status=OFFER_SENT,
            ).exclude(id=offer.id).update(status=OFFER_REJECTED, responded_at=now)
            notify_student_with = student_confirmation_message
            message = "¡Cita confirmada!"
        else:
            offer.status = OFFER_REJECTED
            offer.responded_at = now
            offer.save(update_fields=["status", "responded_at"])
            still_pending = SessionOffer.objects.filter(
                request=tutoring_request,
                status=OFFER_SENT,
            ).exists()
            if not still_pending:
                tutoring_request.status = REQUEST_REJECTED
                tutoring_request.save(update_fields=["status", "updated_at"])
                notify_student_with = student_rejection_message
            message = "Oferta rechazada"

    if notify_student_with is not None:
        student = tutoring_request.student
        notify(
            user_phone(student),
            notify_student_with(
                display_name(student, "Estudiante"),
                display_name(tutor, "El tutor"),
                subject_label(tutoring_request.subject),
            ),
        )
    logger.info("Offer %s %s by tutor %s", offer.id, offer.status, tutor.id)
    return offer, message


def cancel_request(student, request_id):
    with transaction.atomic():
        tutoring_request = (
            TutoringRequest.objects.select_for_update().filter(id=request_id).first()
        )
        if not tutoring_request:
            raise RequestNotFound()
        if tutoring_request.student_id != student.id:
            raise NotAllowed()
        if tutoring_request.status not in CANCELLABLE:
            raise OfferConflict(
                f"No se puede cancelar una solicitud en estado {tutoring_request.status}"
            )

        SessionOffer.objects.filter(
            request=tutoring_request,
            status=OFFER_SENT,
        ).update(status=OFFER_REJECTED, responded_at=timezone.now())
        tutoring_request.status = REQUEST_CANCELLED
        tutoring_request.save(update_fields=["status", "updated_at"])
    return tutoring_request
