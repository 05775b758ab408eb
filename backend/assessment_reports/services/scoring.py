"""
Score aggregation helpers.

Pure functions shared by the report generator and the peer-norm
calculator. Nothing here touches the database.

The one rule everything in this module honors: a score of 0 is a real
score. Missing data is represented by None (or by the row being absent),
never by 0, and 0 is never treated as "no data". Every check below is
therefore an explicit `is None` test, not a truthiness test.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

RATER_TYPES = ("peer", "direct_report", "supervisor", "self", "other")

# Free-text group roles → rater type
ROLE_ALIASES = {
    "peer": "peer",
    "colleague": "peer",
    "direct_report": "direct_report",
    "directreport": "direct_report",
    "subordinate": "direct_report",
    "supervisor": "supervisor",
    "manager": "supervisor",
    "boss": "supervisor",
    "self": "self",
}


def map_role_to_rater_type(role: Optional[str]) -> str:
    """Map a group member's free-text role to one of RATER_TYPES."""
    if not role:
        return "other"
    return ROLE_ALIASES.get(role.strip().lower(), "other")


def classify_rater(
    rater_id: UUID,
    subject_id: UUID,
    roles_by_profile: dict[UUID, Optional[str]],
) -> str:
    """Rater type of one completed assignment's author.

    Rating yourself is always "self", whatever the group says.
    Raters who aren't in the group fall into "other".
    """
    if rater_id == subject_id:
        return "self"
    return map_role_to_rater_type(roles_by_profile.get(rater_id))


def mean(values: Iterable[float]) -> Optional[float]:
    """Arithmetic mean, or None for an empty input. Zeros count."""
    values = list(values)
    if not values:
        return None
    return sum(values) / len(values)


@dataclass
class ScoreContribution:
    """One rater's score for one dimension."""
    assignment_id: UUID
    dimension_id: UUID
    rater_type: str
    score: float


@dataclass
class DimensionAggregate:
    dimension_id: UUID
    overall_score: float
    rater_breakdown: dict[str, Optional[float]]
    contribution_count: int


def empty_breakdown() -> dict[str, Optional[float]]:
    """Rater breakdown with every bucket unknown (used by partial reports)."""
    breakdown: dict[str, Optional[float]] = {"all_raters": None}
    for rater_type in RATER_TYPES:
        breakdown[rater_type] = None
    return breakdown


def aggregate_dimension(
    dimension_id: UUID, contributions: list[ScoreContribution]
) -> Optional[DimensionAggregate]:
    """Aggregate every contribution for one dimension.

    Returns None when nothing was contributed, so the caller can tell an
    unscored dimension apart from one that scored 0.
    """
    scores = [c.score for c in contributions if c.score is not None]
    overall = mean(scores)
    if overall is None:
        return None

    by_type: dict[str, list[float]] = defaultdict(list)
    for c in contributions:
        if c.score is not None:
            by_type[c.rater_type].append(c.score)

    breakdown = empty_breakdown()
    breakdown["all_raters"] = overall
    for rater_type in RATER_TYPES:
        breakdown[rater_type] = mean(by_type.get(rater_type, []))

    return DimensionAggregate(
        dimension_id=dimension_id,
        overall_score=overall,
        rater_breakdown=breakdown,
        contribution_count=len(scores),
    )


def report_overall_score(dimension_scores: Iterable[float]) -> float:
    """Mean of the dimension scores; 0 when there are no dimensions."""
    result = mean(dimension_scores)
    return 0.0 if result is None else result


def needs_improvement(
    score: float,
    benchmark: Optional[float],
    geonorm: Optional[float],
) -> bool:
    """True when the score trails the industry benchmark or the peer norm."""
    if benchmark is not None and score < benchmark:
        return True
    if geonorm is not None and score < geonorm:
        return True
    return False
