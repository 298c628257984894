from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api_views import (
    AdminApprovedTutorView,
    AdminTutorProfileView,
    CatalogCountriesView,
    CatalogSubjectsView,
    ChatView,
    CurrentUserView,
    LogoutView,
    OfferCreateView,
    OfferRespondView,
    SendOtpView,
    TutorOfferInboxView,
    TutoringRequestViewSet,
    TutorProfileView,
    UserRoleView,
    VerifyOtpView,
)

router = DefaultRouter()
router.register(r"jobs", TutoringRequestViewSet, basename="tutoring-request")

urlpatterns = [
    path("auth/send-otp/", SendOtpView.as_view(), name="auth-send-otp"),
    path("auth/verify-otp/", VerifyOtpView.as_view(), name="auth-verify-otp"),
    path("auth/logout/", LogoutView.as_view(), name="auth-logout"),
    path("user/", CurrentUserView.as_view(), name="current-user"),
    path("user/role/", UserRoleView.as_view(), name="user-role"),
    path("tutor/profile/", TutorProfileView.as_view(), name="tutor-profile"),
    path("offers/", OfferCreateView.as_view(), name="offer-create"),
    path("offers/tutor/", TutorOfferInboxView.as_view(), name="offer-tutor-inbox"),
    path("offers/<int:pk>/respond/", OfferRespondView.as_view(), name="offer-respond"),
    path("chat/", ChatView.as_view(), name="chat"),
    path("catalog/subjects/", CatalogSubjectsView.as_view(), name="catalog-subjects"),
    path("catalog/countries/", CatalogCountriesView.as_view(), name="catalog-countries"),
    path("admin/tutors/", AdminApprovedTutorView.as_view(), name="admin-tutors"),
    path("admin/tutor-profiles/", AdminTutorProfileView.as_view(), name="admin-tutor-profiles"),
    path("", include(router.urls)),
]
