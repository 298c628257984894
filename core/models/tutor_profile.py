from django.conf import settings
from django.db import models


class TutorProfile(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='tutor_profile',
    )
    subjects = models.JSONField(default=list, blank=True)
    grade_levels = models.JSONField(default=list, blank=True)
    bio = models.CharField(max_length=500, blank=True)
    education = models.CharField(max_length=255, blank=True)
    experience = models.TextField(blank=True)
    specialties = models.JSONField(default=list, blank=True)
    languages = models.JSONField(default=list, blank=True)
    scheduling_link = models.URLField(max_length=500, blank=True)
    rating = models.DecimalField(max_digits=3, decimal_places=2, default=5)
    total_reviews = models.PositiveIntegerField(default=0)
    completed_sessions = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    is_verified = models.BooleanField(default=False)
    lat = models.FloatField(null=True, blank=True)
    lng = models.FloatField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Tutor profile #{self.id} (user {self.user_id})"
