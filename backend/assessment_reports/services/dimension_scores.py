"""
Dimension score refresh.

Recomputes assignment_dimension_scores for one assignment from its raw
answers. Run it whenever an assignment is (re)completed; the report
generator only ever reads the precomputed rows.

Scoring rules:
- multiple_choice: the answer stores an anchor index; the score is that
  anchor's value (an unusable index or value scores 0)
- slider: the answer is the number itself (unparseable scores 0)
- anything else (free text) is not scored

A leaf dimension scores the mean of its answers. A parent scores the mean
of its scored children. A dimension with nothing scored beneath it gets no
row at all, so "not answered" never turns into a 0.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_reports.errors import NotFoundError
from assessment_reports.models import Answer, AssignmentDimensionScore, Dimension, Field
from assessment_reports.models.models import utc_now
from assessment_reports.services.report_generator import ASSIGNMENT_NOT_FOUND, parse_assignment_id
from assessment_reports.services.report_repository import ReportRepository
from assessment_reports.services.scoring import mean

logger = logging.getLogger(__name__)

SCORED_FIELD_TYPES = ("multiple_choice", "slider")


@dataclass
class ComputedScore:
    avg_score: float
    answer_count: int


def score_answer(field_type: str, value: Optional[str], anchors: Optional[list[dict[str, Any]]]) -> Optional[float]:
    """Numeric score of one answer, or None for unscored field types."""
    if field_type == "multiple_choice":
        try:
            index = int(value)
            if index < 0:
                return 0.0
            return float((anchors or [])[index]["value"])
        except (TypeError, ValueError, IndexError, KeyError):
            return 0.0
    if field_type == "slider":
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0
    return None


def compute_dimension_scores(
    dimensions: list[Dimension],
    answer_scores: dict[UUID, list[float]],
) -> dict[UUID, ComputedScore]:
    """Roll answer scores up the dimension tree.

    Args:
        dimensions: Every dimension of the assessment.
        answer_scores: Scored answers keyed by the dimension of their field.
    """
    children: dict[UUID, list[UUID]] = defaultdict(list)
    for d in dimensions:
        if d.parent_id is not None:
            children[d.parent_id].append(d.id)

    computed: dict[UUID, Optional[ComputedScore]] = {}

    def visit(dimension_id: UUID, path: frozenset) -> Optional[ComputedScore]:
        if dimension_id in computed:
            return computed[dimension_id]
        if dimension_id in path:
            return None  # cycle in the tree; treat as unscored

        child_ids = children.get(dimension_id, [])
        if child_ids:
            child_scores = [visit(c, path | {dimension_id}) for c in child_ids]
            scored = [c for c in child_scores if c is not None]
            result = None
            if scored:
                result = ComputedScore(
                    avg_score=mean(c.avg_score for c in scored),
                    answer_count=sum(c.answer_count for c in scored),
                )
        else:
            values = answer_scores.get(dimension_id, [])
            result = ComputedScore(mean(values), len(values)) if values else None

        computed[dimension_id] = result
        return result

    for d in dimensions:
        visit(d.id, frozenset())
    return {k: v for k, v in computed.items() if v is not None}


async def refresh_dimension_scores(
    db: AsyncSession, assignment_id: Union[str, UUID]
) -> list[AssignmentDimensionScore]:
    """Recompute and upsert every dimension score of an assignment."""
    repo = ReportRepository(db)
    assignment = await repo.get_assignment(parse_assignment_id(assignment_id))
    if assignment is None:
        raise NotFoundError(ASSIGNMENT_NOT_FOUND)

    dimensions = await repo.list_dimensions(assignment.assessment_id)

    result = await db.execute(
        select(Answer.value, Field.type, Field.anchors, Field.dimension_id)
        .join(Field, Field.id == Answer.field_id)
        .where(
            Answer.assignment_id == assignment.id,
            Field.type.in_(SCORED_FIELD_TYPES),
            Field.dimension_id.is_not(None),
        )
    )
    answer_scores: dict[UUID, list[float]] = defaultdict(list)
    for value, field_type, anchors, dimension_id in result.all():
        answer_scores[dimension_id].append(score_answer(field_type, value, anchors))

    computed = compute_dimension_scores(dimensions, answer_scores)

    existing_result = await db.execute(
        select(AssignmentDimensionScore).where(
            AssignmentDimensionScore.assignment_id == assignment.id
        )
    )
    existing = {row.dimension_id: row for row in existing_result.scalars().all()}

    rows = []
    for dimension in dimensions:
        score = computed.get(dimension.id)
        row = existing.get(dimension.id)
        if score is None:
            if row is not None:
                await db.delete(row)
            continue
        if row is None:
            row = AssignmentDimensionScore(assignment_id=assignment.id, dimension_id=dimension.id)
            db.add(row)
        row.avg_score = score.avg_score
        row.answer_count = score.answer_count
        row.calculated_at = utc_now()
        rows.append(row)

    await db.commit()
    logger.info("🔢 Refreshed %d dimension scores for assignment %s", len(rows), assignment.id)
    return rows


async def get_dimension_scores(
    db: AsyncSession, assignment_id: Union[str, UUID]
) -> list[tuple[AssignmentDimensionScore, Dimension]]:
    """Stored dimension scores of an assignment, without recomputing them."""
    repo = ReportRepository(db)
    assignment = await repo.get_assignment(parse_assignment_id(assignment_id))
    if assignment is None:
        raise NotFoundError(ASSIGNMENT_NOT_FOUND)

    result = await db.execute(
        select(AssignmentDimensionScore, Dimension)
        .join(Dimension, Dimension.id == AssignmentDimensionScore.dimension_id)
        .where(AssignmentDimensionScore.assignment_id == assignment.id)
        .order_by(Dimension.name, Dimension.id)
    )
    return [(score, dimension) for score, dimension in result.all()]
