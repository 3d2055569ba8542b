"""Absence classification and the pooled success rule.

Everything here is a pure function of its inputs so the tiers can be tested
against their boundaries without a database.
"""
import enum
import uuid
from collections.abc import Iterable
from typing import Protocol

from focusroom.errors import ValidationError

MEDIUM_THRESHOLD_SECONDS = 30
LARGE_THRESHOLD_SECONDS = 120
CATASTROPHIC_THRESHOLD_SECONDS = 300

# Shared by every participant of a session, not per participant
POOLED_BUDGET_SECONDS = 300

BUDGET_EXCEEDED_REASON = "Total violations exceeded 5 minute limit"


class ViolationCategory(str, enum.Enum):
    MINOR = "minor"
    MEDIUM = "medium"
    LARGE = "large"
    CATASTROPHIC = "catastrophic"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {category: i for i, category in enumerate(ViolationCategory)}


class ViolationLike(Protocol):
    user_id: uuid.UUID
    duration_seconds: int


def classify(duration_seconds: int) -> ViolationCategory:
    """Map an absence duration to its tier. Lower bounds are inclusive."""
    if duration_seconds < 0:
        raise ValidationError("Violation duration cannot be negative")
    if duration_seconds < MEDIUM_THRESHOLD_SECONDS:
        return ViolationCategory.MINOR
    if duration_seconds < LARGE_THRESHOLD_SECONDS:
        return ViolationCategory.MEDIUM
    if duration_seconds < CATASTROPHIC_THRESHOLD_SECONDS:
        return ViolationCategory.LARGE
    return ViolationCategory.CATASTROPHIC


def is_catastrophic(duration_seconds: int) -> bool:
    return classify(duration_seconds) is ViolationCategory.CATASTROPHIC


def total_violation_seconds(violations: Iterable[ViolationLike]) -> int:
    return sum(v.duration_seconds or 0 for v in violations)


def is_successful(
    violations: Iterable[ViolationLike], participants: Iterable[uuid.UUID] = ()
) -> bool:
    """Pooled budget check across all participants.

    ``participants`` is accepted for symmetry with the session record; the
    budget does not depend on who caused the absence.
    """
    violations = list(violations)
    if any(is_catastrophic(v.duration_seconds or 0) for v in violations):
        return False
    return total_violation_seconds(violations) < POOLED_BUDGET_SECONDS


def failure_reason(violations: Iterable[ViolationLike]) -> str | None:
    """Default fail reason when the pooled check fails, else None."""
    if is_successful(violations):
        return None
    return BUDGET_EXCEEDED_REASON


def summarize_by_participant(violations: Iterable[ViolationLike]) -> list[dict]:
    """Per-user violation breakdown, least total absence first."""
    by_user: dict[uuid.UUID, dict] = {}
    for v in violations:
        entry = by_user.setdefault(v.user_id, {
            "user_id": v.user_id,
            "count": 0,
            "total_seconds": 0,
            "by_category": {category.value: 0 for category in ViolationCategory},
        })
        seconds = v.duration_seconds or 0
        entry["count"] += 1
        entry["total_seconds"] += seconds
        entry["by_category"][classify(seconds).value] += 1

    return sorted(by_user.values(), key=lambda e: e["total_seconds"])
