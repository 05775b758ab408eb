"""
Peer-norm ("geonorm") calculator.

A geonorm is the average score on a dimension across the other members of
a rating group, used as a reference line next to the subject's own score.

Population: completed assignments of the same assessment whose author is a
member of the group, excluding the subject (so a person is never compared
against a norm that contains their own self-rating).
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from assessment_reports.config import settings
from assessment_reports.models import AssignmentDimensionScore
from assessment_reports.services.report_repository import ReportRepository
from assessment_reports.services.scoring import mean

logger = logging.getLogger(__name__)


@dataclass
class GeoNorm:
    avg_score: float
    participant_count: int


def compute_geonorms(
    scores: Iterable[AssignmentDimensionScore],
    dimension_ids: Iterable[UUID],
    min_participants: int = 1,
) -> dict[UUID, GeoNorm]:
    """Average the population's scores per dimension.

    Dimensions with fewer than min_participants contributing assignments
    are left out of the result (their norm is unknown, not 0).
    """
    wanted = set(dimension_ids)
    by_dimension: dict[UUID, list[float]] = defaultdict(list)
    for row in scores:
        if row.dimension_id in wanted and row.avg_score is not None:
            by_dimension[row.dimension_id].append(row.avg_score)

    norms = {}
    for dimension_id, values in by_dimension.items():
        if len(values) < max(min_participants, 1):
            continue
        norms[dimension_id] = GeoNorm(avg_score=mean(values), participant_count=len(values))
    return norms


async def calculate_geonorms(
    repo: ReportRepository,
    group_id: Optional[UUID],
    assessment_id: UUID,
    dimension_ids: list[UUID],
    exclude_profile_id: Optional[UUID] = None,
) -> dict[UUID, GeoNorm]:
    """Geonorm per dimension for a rating group. Empty when there's no group."""
    if group_id is None:
        return {}

    members = await repo.list_group_members(group_id)
    member_ids = sorted(
        {m.profile_id for m in members if m.profile_id != exclude_profile_id}, key=str
    )
    if not member_ids:
        return {}

    assignments = await repo.list_completed_assignments_by_users(member_ids, assessment_id)
    scores = await repo.list_dimension_scores([a.id for a in assignments], dimension_ids)
    norms = compute_geonorms(scores, dimension_ids, settings.GEONORM_MIN_PARTICIPANTS)

    logger.debug(
        "Geonorm for group %s: %d assignments, %d dimensions with a norm",
        group_id, len(assignments), len(norms),
    )
    return norms
