from django.db import models

from ..phone import digits_only


class ApprovedTutor(models.Model):
    phone = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=150, blank=True)
    notes = models.TextField(blank=True)
    used_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def save(self, *args, **kwargs):
        # Whitelist lookups compare digits only.
        self.phone = digits_only(self.phone)
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.phone} ({self.name or '-'})"
