from django.contrib.auth.models import update_last_login
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import RefreshToken

from .models import UserProfile


def get_user_role_value(user):
    profile = UserProfile.objects.filter(user=user).first()
    if profile and profile.role:
        return profile.role
    return ""


def get_user_phone_value(user):
    profile = UserProfile.objects.filter(user=user).first()
    return profile.phone if profile and profile.phone else ""


def build_auth_token_payload(user):
    role = get_user_role_value(user)
    phone = get_user_phone_value(user)
    refresh = RefreshToken.for_user(user)
    refresh["role"] = role
    refresh["phone"] = phone
    access = refresh.access_token
    access["role"] = role
    access["phone"] = phone
    if api_settings.UPDATE_LAST_LOGIN:
        update_last_login(None, user)
    return {
        "refresh": str(refresh),
        "access": str(access),
    }
