"""
Accessibility grading: weighted penalty plus hard caps.

Bump GRADING_VERSION whenever the formula changes. The version is stored with
every persisted score so stale grades can be recomputed lazily.
"""
from typing import Optional

from accessaudit.features.scan.schemas.scan import GradeResult, ViolationCounts

GRADING_VERSION = 2

SEVERITY_WEIGHTS = {
    "critical": 25,
    "serious": 12,
    "moderate": 5,
    "minor": 1,
}

CRITICAL_CAP = 55
SERIOUS_CAP = 72
MODERATE_CAP = 85
MODERATE_CAP_THRESHOLD = 3

GRADE_BOUNDARIES = (
    (90, "A"),
    (80, "B"),
    (70, "C"),
    (60, "D"),
)


def _hard_cap(counts: ViolationCounts) -> Optional[int]:
    # Most severe category present wins
    if counts.critical > 0:
        return CRITICAL_CAP
    if counts.serious > 0:
        return SERIOUS_CAP
    if counts.moderate >= MODERATE_CAP_THRESHOLD:
        return MODERATE_CAP
    return None


def letter_for_score(score: int) -> str:
    for floor, letter in GRADE_BOUNDARIES:
        if score >= floor:
            return letter
    return "F"


def calculate_grade(counts: ViolationCounts) -> GradeResult:
    penalty = sum(getattr(counts, severity) * weight for severity, weight in SEVERITY_WEIGHTS.items())
    score = max(0, 100 - penalty)

    cap = _hard_cap(counts)
    if cap is not None:
        score = min(score, cap)

    return GradeResult(score=score, grade=letter_for_score(score))


def needs_regrade(stored_version: Optional[int]) -> bool:
    return stored_version != GRADING_VERSION


def regrade(counts: ViolationCounts, stored_version: Optional[int]) -> Optional[GradeResult]:
    """Recompute a persisted grade if it was produced by an older formula, else None."""
    if not needs_regrade(stored_version):
        return None
    return calculate_grade(counts)
