from django.conf import settings
from django.utils.crypto import constant_time_compare
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.permissions import BasePermission


ROLE_STUDENT = "ESTUDIANTE"
ROLE_TUTOR = "TUTOR"
APP_ROLES = {ROLE_STUDENT, ROLE_TUTOR}


class AdminKeyRequired(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "No autorizado"
    default_code = "not_authorized"


def user_role(user):
    if not user or not user.is_authenticated:
        return None
    return getattr(getattr(user, "userprofile", None), "role", None)


def has_valid_admin_key(request):
    expected = (getattr(settings, "ADMIN_SECRET_KEY", "") or "").strip()
    provided = (request.headers.get("x-admin-key") or "").strip()
    if not expected or not provided:
        return False
    return constant_time_compare(provided, expected)


class IsAuthenticatedWithAppRole(BasePermission):
    def has_permission(self, request, view):
        role = user_role(request.user)
        return bool(role in APP_ROLES)


class IsTutorRole(BasePermission):
    message = "Solo los tutores pueden ver sus ofertas"

    def has_permission(self, request, view):
        return user_role(request.user) == ROLE_TUTOR


class HasAdminKey(BasePermission):
    def has_permission(self, request, view):
        if not has_valid_admin_key(request):
            raise AdminKeyRequired()
        return True
