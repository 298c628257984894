from .approved_tutor import ApprovedTutor
from .phone_verification import PhoneVerification
from .tutor_profile import TutorProfile
from .tutoring import SessionOffer, TutoringRequest
from .user_profile import UserProfile

__all__ = [
    'ApprovedTutor',
    'PhoneVerification',
    'TutorProfile',
    'TutoringRequest',
    'SessionOffer',
    'UserProfile',
]
