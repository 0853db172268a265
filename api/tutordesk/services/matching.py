"""Requirement-to-tutor relevance rules.

Matching is boolean: a requirement is either shown to a tutor or it is not.
Both rules fail open when the tutor side (or the requirement location) is
missing, so tutors with incomplete profiles still see the whole pool.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class TutorMatchContext:
    subjects: tuple[str, ...] = field(default_factory=tuple)
    city: str | None = None
    area: str | None = None

    @classmethod
    def from_profiles(
        cls,
        tutor_profile: Mapping[str, Any] | None,
        user_profile: Mapping[str, Any] | None,
    ) -> TutorMatchContext:
        raw_subjects = (tutor_profile or {}).get("subjects") or []
        subjects = tuple(subject for subject in raw_subjects if isinstance(subject, str))
        profile = user_profile or {}
        return cls(
            subjects=subjects,
            city=_as_text(profile.get("city")),
            area=_as_text(profile.get("area")),
        )


def subject_matches(tutor_subjects: Iterable[str] | None, requirement_subject: str | None) -> bool:
    folded_subjects = [_fold(subject) for subject in tutor_subjects or ()]
    folded_subjects = [subject for subject in folded_subjects if subject]
    if not folded_subjects:
        return True

    # "" is a substring of every subject, so a blank requirement subject never matches.
    wanted = _fold(requirement_subject)
    if not wanted:
        return False

    return any(wanted in subject or subject in wanted for subject in folded_subjects)


def location_matches(
    tutor_city: str | None,
    tutor_area: str | None,
    requirement_location: str | None,
) -> bool:
    city = _fold(tutor_city)
    location = _fold(requirement_location)
    if not city or not location:
        return True

    if city in location or location in city:
        return True

    area = _fold(tutor_area)
    return bool(area) and area in location


def requirement_matches(context: TutorMatchContext, requirement: Mapping[str, Any]) -> bool:
    if not subject_matches(context.subjects, requirement.get("subject")):
        return False
    return location_matches(context.city, context.area, requirement.get("location"))


def filter_requirements(
    context: TutorMatchContext,
    requirements: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    return [dict(requirement) for requirement in requirements if requirement_matches(context, requirement)]


def _fold(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().casefold()


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
