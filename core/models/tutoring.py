from django.conf import settings
from django.db import models

from ..catalog import GRADE_LEVEL_CHOICES, SUBJECT_CHOICES


class TutoringRequest(models.Model):
    STATUS_CHOICES = [
        ('BORRADOR', 'Borrador'),
        ('PENDIENTE', 'Pendiente'),
        ('CONFIRMADO', 'Confirmado'),
        ('RECHAZADO', 'Rechazado'),
        ('CANCELADO', 'Cancelado'),
        ('COMPLETADO', 'Completado'),
    ]

    student = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='tutoring_requests',
    )
    subject = models.CharField(max_length=30, choices=SUBJECT_CHOICES)
    grade_level = models.CharField(max_length=20, choices=GRADE_LEVEL_CHOICES, blank=True)
    preferred_time = models.DateTimeField(null=True, blank=True)
    topic = models.TextField(blank=True)
    lat = models.FloatField(null=True, blank=True)
    lng = models.FloatField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='BORRADOR')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Request #{self.id} {self.subject} ({self.status})"


class SessionOffer(models.Model):
    STATUS_CHOICES = [
        ('ENVIADO', 'Enviado'),
        ('ACEPTADO', 'Aceptado'),
        ('RECHAZADO', 'Rechazado'),
    ]

    request = models.ForeignKey(TutoringRequest, on_delete=models.CASCADE, related_name='offers')
    tutor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='received_offers',
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='ENVIADO')
    sent_at = models.DateTimeField(auto_now_add=True)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['request', 'tutor'], name='unique_offer_per_request_tutor'),
        ]

    def __str__(self) -> str:
        return f"Offer #{self.id} (req {self.request_id} → tutor {self.tutor_id})"
