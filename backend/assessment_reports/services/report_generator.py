"""
Score aggregation engine.

Turns the precomputed per-(assignment, dimension) scores of everyone who
rated a subject into one report document, then upserts it into
report_data. Steps:

1. Load the assignment, its assessment and the subject (target, or the
   assignment's own user when there is no target)
2. Resolve the rating group (explicit group_id, else the target's group,
   else for non-360 assessments the subject's own membership)
3. Load the completed peer assignments, falling back from group-scoped to
   unscoped before giving up. No group at all means no peers
4. Load the root dimensions
5. No completed peers → partial report (every score 0, every bucket None)
6. Otherwise classify each rater, aggregate per dimension and rater type,
   merge benchmarks, geonorms, free-text answers and feedback

Scores of exactly 0 are real scores everywhere in this pipeline: they are
counted, averaged and reported like any other value.
"""

import logging
from collections import defaultdict
from typing import Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from assessment_reports.errors import NotFoundError
from assessment_reports.models import Assessment, Assignment, Dimension, Group
from assessment_reports.models.models import utc_now
from assessment_reports.schemas.reports import (
    DimensionReport,
    ParticipantResponseSummary,
    RaterBreakdown,
    ReportDocument,
)
from assessment_reports.services.feedback import select_feedback
from assessment_reports.services.geonorm import calculate_geonorms
from assessment_reports.services.report_repository import ReportRepository
from assessment_reports.services.scoring import (
    ScoreContribution,
    aggregate_dimension,
    classify_rater,
    empty_breakdown,
    needs_improvement,
    report_overall_score,
)

logger = logging.getLogger(__name__)

ASSIGNMENT_NOT_FOUND = "Assignment not found"


def parse_assignment_id(assignment_id: Union[str, UUID]) -> UUID:
    """Assignment ids arrive as opaque strings; a malformed one can't exist."""
    if isinstance(assignment_id, UUID):
        return assignment_id
    try:
        return UUID(str(assignment_id))
    except ValueError:
        raise NotFoundError(ASSIGNMENT_NOT_FOUND)


def root_dimension_map(dimensions: list[Dimension]) -> dict[UUID, UUID]:
    """Map every dimension id to the id of its root ancestor."""
    parents = {d.id: d.parent_id for d in dimensions}
    roots: dict[UUID, UUID] = {}
    for dimension_id in parents:
        current, seen = dimension_id, set()
        while parents.get(current) is not None and current not in seen:
            seen.add(current)
            current = parents[current]
        roots[dimension_id] = current
    return roots


class ReportGenerator:
    """Builds and stores the report for one assignment."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = ReportRepository(db)

    async def generate(self, assignment_id: Union[str, UUID]) -> ReportDocument:
        assignment = await self.repo.get_assignment(parse_assignment_id(assignment_id))
        if assignment is None:
            raise NotFoundError(ASSIGNMENT_NOT_FOUND)

        assessment = await self.repo.get_assessment(assignment.assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment not found")

        subject_id = assignment.target_id or assignment.user_id
        target = await self.repo.get_profile(assignment.target_id)
        subject = target or await self.repo.get_profile(assignment.user_id)

        group = await self._resolve_group(assignment, assessment, subject_id)
        peers = await self._load_peer_assignments(assignment, subject_id, group)

        all_dimensions = await self.repo.list_dimensions(assessment.id)
        if not all_dimensions:
            raise NotFoundError(
                "This assessment has no dimensions configured. "
                "Please add dimensions to the assessment before generating reports."
            )
        roots = [d for d in all_dimensions if d.parent_id is None]
        if not roots:
            raise NotFoundError("This assessment has no top-level dimensions")

        members = await self.repo.list_group_members(group.id) if group else []
        industry_id = await self.repo.resolve_industry_id(subject_id, assignment.user_id)
        benchmarks = await self.repo.get_benchmarks([d.id for d in roots], industry_id)
        feedback_entries = await self.repo.list_feedback_entries(assessment.id)

        if not peers:
            logger.info("📭 No completed responses for %s yet, building partial report", assignment.id)
            sections = self._partial_sections(roots, benchmarks, feedback_entries)
            summary = ParticipantResponseSummary(completed=0, total=len(members))
            partial = True
        else:
            sections = await self._scored_sections(
                assessment.id, subject_id, group, members, peers,
                roots, all_dimensions, benchmarks, feedback_entries,
            )
            summary = ParticipantResponseSummary(
                completed=len(peers), total=max(len(members), len(peers))
            )
            partial = False

        overall_score = 0.0 if partial else report_overall_score(s.overall_score for s in sections)
        report_feedback = select_feedback(feedback_entries, None, None)

        document = ReportDocument(
            assignment_id=str(assignment.id),
            assessment_id=str(assessment.id),
            assessment_title=assessment.title,
            target_id=str(target.id) if target else None,
            target_name=target.name if target else None,
            target_email=target.email if target else None,
            subject_id=str(subject_id),
            subject_name=subject.name if subject else None,
            subject_email=subject.email if subject else None,
            group_id=str(group.id) if group else None,
            group_name=group.name if group else None,
            overall_score=overall_score,
            overall_feedback=report_feedback.overall_feedback,
            partial=partial,
            participant_response_summary=summary,
            dimensions=sections,
            generated_at=utc_now(),
        )

        await self.repo.upsert_report(assignment.id, overall_score, document.to_storage())
        logger.info(
            "📊 Report for assignment %s: %d sections, overall %.2f%s",
            assignment.id, len(sections), overall_score, " (partial)" if partial else "",
        )
        return document

    async def _resolve_group(
        self, assignment: Assignment, assessment: Assessment, subject_id: UUID
    ) -> Optional[Group]:
        """Explicit group, else the subject's 360 group.

        Outside a 360 a subject has no group built around them, so the
        group of the subject's own membership is used instead.
        """
        if assignment.group_id is not None:
            group = await self.repo.get_group(assignment.group_id)
            if group is not None:
                return group
        group = await self.repo.find_group_for_target(subject_id)
        if group is None and not assessment.is_360:
            group = await self.repo.find_group_for_member(subject_id)
        return group

    async def _load_peer_assignments(
        self, assignment: Assignment, subject_id: UUID, group: Optional[Group]
    ) -> list[Assignment]:
        if group is None:
            logger.info("👥 No rating group for assignment %s", assignment.id)
            return []
        peers = await self.repo.list_completed_peer_assignments(
            subject_id, assignment.assessment_id, group.id
        )
        if peers:
            return peers
        # Assignments may carry no group_id at all
        logger.debug("No completed assignments scoped to group %s, trying unscoped", group.id)
        return await self.repo.list_completed_peer_assignments(
            subject_id, assignment.assessment_id
        )

    def _partial_sections(self, roots, benchmarks, feedback_entries) -> list[DimensionReport]:
        sections = []
        for dimension in roots:
            feedback = select_feedback(feedback_entries, dimension.id, None)
            sections.append(
                DimensionReport(
                    dimension_id=str(dimension.id),
                    dimension_name=dimension.name,
                    dimension_code=dimension.code,
                    description=dimension.description,
                    overall_score=0.0,
                    rater_breakdown=RaterBreakdown.model_validate(empty_breakdown()),
                    industry_benchmark=benchmarks.get(dimension.id),
                    geonorm=None,
                    geonorm_participant_count=0,
                    improvement_needed=False,
                    text_feedback=[],
                    overall_feedback=feedback.overall_feedback,
                    overall_feedback_id=feedback.overall_feedback_id,
                )
            )
        return sections

    async def _scored_sections(
        self, assessment_id, subject_id, group, members, peers,
        roots, all_dimensions, benchmarks, feedback_entries,
    ) -> list[DimensionReport]:
        roles_by_profile = {m.profile_id: m.role for m in members}
        rater_types = {
            a.id: classify_rater(a.user_id, subject_id, roles_by_profile) for a in peers
        }

        root_ids = [d.id for d in roots]
        score_rows = await self.repo.list_dimension_scores(list(rater_types), root_ids)
        contributions: dict[UUID, list[ScoreContribution]] = defaultdict(list)
        for row in score_rows:
            contributions[row.dimension_id].append(
                ScoreContribution(
                    assignment_id=row.assignment_id,
                    dimension_id=row.dimension_id,
                    rater_type=rater_types[row.assignment_id],
                    score=row.avg_score,
                )
            )

        geonorms = await calculate_geonorms(
            self.repo, group.id if group else None, assessment_id, root_ids,
            exclude_profile_id=subject_id,
        )
        text_feedback = await self._text_feedback(list(rater_types), all_dimensions)

        sections = []
        for dimension in roots:
            aggregate = aggregate_dimension(dimension.id, contributions.get(dimension.id, []))
            if aggregate is None:
                # Nobody scored this dimension; omit it rather than report a fake 0
                continue

            benchmark = benchmarks.get(dimension.id)
            norm = geonorms.get(dimension.id)
            geonorm = norm.avg_score if norm is not None else None
            feedback = select_feedback(feedback_entries, dimension.id, aggregate.overall_score)

            sections.append(
                DimensionReport(
                    dimension_id=str(dimension.id),
                    dimension_name=dimension.name,
                    dimension_code=dimension.code,
                    description=dimension.description,
                    overall_score=aggregate.overall_score,
                    rater_breakdown=RaterBreakdown.model_validate(aggregate.rater_breakdown),
                    industry_benchmark=benchmark,
                    geonorm=geonorm,
                    geonorm_participant_count=norm.participant_count if norm is not None else 0,
                    improvement_needed=needs_improvement(
                        aggregate.overall_score, benchmark, geonorm
                    ),
                    text_feedback=text_feedback.get(dimension.id, []),
                    overall_feedback=feedback.overall_feedback,
                    overall_feedback_id=feedback.overall_feedback_id,
                    specific_feedback=feedback.specific_feedback,
                    specific_feedback_id=feedback.specific_feedback_id,
                )
            )
        return sections

    async def _text_feedback(
        self, assignment_ids: list[UUID], all_dimensions: list[Dimension]
    ) -> dict[UUID, list[str]]:
        """Free-text answers grouped by the root dimension of their field."""
        roots = root_dimension_map(all_dimensions)
        grouped: dict[UUID, list[str]] = defaultdict(list)
        for answer, field in await self.repo.list_text_answers(assignment_ids):
            if field.dimension_id is None or not answer.value or not answer.value.strip():
                continue
            root_id = roots.get(field.dimension_id)
            if root_id is not None:
                grouped[root_id].append(answer.value.strip())
        return grouped


async def generate_report(db: AsyncSession, assignment_id: Union[str, UUID]) -> ReportDocument:
    """Generate (or regenerate) and store the report for an assignment.

    Raises:
        NotFoundError: The assignment or its assessment doesn't exist, or the
            assessment has no root dimensions.
    """
    return await ReportGenerator(db).generate(assignment_id)
