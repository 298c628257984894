from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List

from .catalog import subject_label
from .models import SessionOffer, TutoringRequest, TutorProfile
from .permissions import ROLE_TUTOR

EARTH_RADIUS_KM = 6371.0
DEFAULT_PAGE_SIZE = 3


@dataclass
class RankedTutor:
    profile: TutorProfile
    distance_km: float | None


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def _has_coordinates(item) -> bool:
    return item.lat is not None and item.lng is not None


def filter_tutors(
    profiles: Iterable[TutorProfile],
    subject: str,
    grade_level: str | None = None,
    exclude_user_ids: Iterable[int] = (),
) -> List[TutorProfile]:
    excluded = set(exclude_user_ids)
    filtered = []
    for profile in profiles:
        if not profile.is_active:
            continue
        if profile.user_id in excluded:
            continue
        if subject not in (profile.subjects or []):
            continue
        if grade_level and grade_level not in (profile.grade_levels or []):
            continue
        filtered.append(profile)
    return filtered


def _quality_key(profile: TutorProfile):
    return (-float(profile.rating or 0), -(profile.completed_sessions or 0), profile.id)


def rank_tutors(req: TutoringRequest, profiles: Iterable[TutorProfile]) -> List[RankedTutor]:
    """Nearest first when both sides have coordinates, then by rating and sessions.

    Tutors without a location keep ``distance_km=None`` and follow the located
    ones. Coordinates come from the stored lat/lng only; there is no geocoding.
    """
    ranked = []
    for profile in profiles:
        distance = None
        if _has_coordinates(req) and _has_coordinates(profile):
            distance = round(haversine_km(req.lat, req.lng, profile.lat, profile.lng), 2)
        ranked.append(RankedTutor(profile=profile, distance_km=distance))

    ranked.sort(
        key=lambda item: (
            item.distance_km is None,
            item.distance_km if item.distance_km is not None else 0,
            _quality_key(item.profile),
        )
    )
    return ranked


def candidate_pool():
    return TutorProfile.objects.filter(
        is_active=True,
        user__userprofile__role=ROLE_TUTOR,
    ).select_related("user", "user__userprofile")


def serialize_candidate(item: RankedTutor) -> dict:
    profile = item.profile
    user_profile = getattr(profile.user, "userprofile", None)
    return {
        "id": profile.user_id,
        "name": getattr(user_profile, "name", "") or "Tutor",
        "phone": getattr(user_profile, "phone", "") or "",
        "distance": item.distance_km,
        "profile": {
            "id": profile.id,
            "subjects": profile.subjects,
            "grade_levels": profile.grade_levels,
            "bio": profile.bio,
            "education": profile.education,
            "scheduling_link": profile.scheduling_link,
            "rating": float(profile.rating or 0),
            "completed_sessions": profile.completed_sessions,
            "is_verified": profile.is_verified,
        },
    }


def search_providers(req: TutoringRequest, skip: int = 0, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    skip = max(int(skip or 0), 0)
    limit = max(int(limit or DEFAULT_PAGE_SIZE), 1)
    offered = SessionOffer.objects.filter(request=req).values_list("tutor_id", flat=True)
    candidates = filter_tutors(
        candidate_pool(),
        req.subject,
        grade_level=req.grade_level or None,
        exclude_user_ids=offered,
    )
    ranked = rank_tutors(req, candidates)
    page = ranked[skip:skip + limit]
    return {
        "providers": [serialize_candidate(item) for item in page],
        "hasMore": len(ranked) > skip + limit,
        "total": len(ranked),
    }


def search_tutors(subject: str, grade_level: str | None = None, max_results: int = 3) -> dict:
    """Directory lookup used by the chat assistant."""
    max_results = max(int(max_results or 3), 1)
    profiles = sorted(
        filter_tutors(candidate_pool(), subject, grade_level=grade_level),
        key=_quality_key,
    )[:max_results]
    if not profiles:
        return {
            "success": True,
            "tutors": [],
            "message": f"No hay tutores disponibles para {subject_label(subject)} en este momento",
        }
    return {
        "success": True,
        "tutors": [
            {
                "id": profile.id,
                "user_id": profile.user_id,
                "name": getattr(getattr(profile.user, "userprofile", None), "name", "") or "Tutor",
                "subjects": [subject_label(code) for code in profile.subjects or []],
                "grade_levels": list(profile.grade_levels or []),
                "rating": float(profile.rating or 5),
                "bio": profile.bio or None,
                "education": profile.education or None,
                "scheduling_link": profile.scheduling_link or None,
                "completed_sessions": profile.completed_sessions,
            }
            for profile in profiles
        ],
    }
