import logging

from django.db.models.signals import post_delete
from django.dispatch import receiver

from .models import TutorProfile
from .onboarding import revert_to_student

logger = logging.getLogger(__name__)


@receiver(post_delete, sender=TutorProfile)
def revert_role_on_profile_delete(sender, instance: TutorProfile, **kwargs):
    if revert_to_student(instance.user_id):
        logger.info("User %s reverted to ESTUDIANTE after tutor profile removal", instance.user_id)
