"""
Read/write access to everything the report generator needs.

The generator never builds queries itself; it asks this repository. That
keeps the aggregation logic readable and gives the tests a single place
where the data access rules live (completed-only, root dimensions only,
group fallback, etc.).
"""

import logging
import uuid
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_reports.database import dialect_insert
from assessment_reports.models import (
    Answer,
    Assessment,
    Assignment,
    AssignmentDimensionScore,
    Benchmark,
    Client,
    Dimension,
    FeedbackEntry,
    Field,
    Group,
    GroupMember,
    Profile,
    ReportData,
)
from assessment_reports.models.models import utc_now

logger = logging.getLogger(__name__)

TEXT_FIELD_TYPES = ("text_input", "rich_text")


class ReportRepository:
    """Query gateway bound to one AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Core records ---

    async def get_assignment(self, assignment_id: UUID) -> Optional[Assignment]:
        result = await self.db.execute(
            select(Assignment).where(Assignment.id == assignment_id)
        )
        return result.scalar_one_or_none()

    async def get_assessment(self, assessment_id: UUID) -> Optional[Assessment]:
        result = await self.db.execute(
            select(Assessment).where(Assessment.id == assessment_id)
        )
        return result.scalar_one_or_none()

    async def get_profile(self, profile_id: Optional[UUID]) -> Optional[Profile]:
        if profile_id is None:
            return None
        result = await self.db.execute(select(Profile).where(Profile.id == profile_id))
        return result.scalar_one_or_none()

    # --- Rating groups ---

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        result = await self.db.execute(select(Group).where(Group.id == group_id))
        return result.scalar_one_or_none()

    async def find_group_for_target(self, target_id: UUID) -> Optional[Group]:
        """Oldest group built around this target."""
        result = await self.db.execute(
            select(Group)
            .where(Group.target_id == target_id)
            .order_by(Group.created_at, Group.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_group_for_member(self, profile_id: UUID) -> Optional[Group]:
        """Oldest group the profile belongs to."""
        result = await self.db.execute(
            select(Group)
            .join(GroupMember, GroupMember.group_id == Group.id)
            .where(GroupMember.profile_id == profile_id)
            .order_by(Group.created_at, Group.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_group_members(self, group_id: UUID) -> list[GroupMember]:
        result = await self.db.execute(
            select(GroupMember).where(GroupMember.group_id == group_id)
        )
        return list(result.scalars().all())

    # --- Assignments ---

    async def list_completed_peer_assignments(
        self,
        subject_id: UUID,
        assessment_id: UUID,
        group_id: Optional[UUID] = None,
    ) -> list[Assignment]:
        """Completed assignments that rate the subject.

        That's every assignment targeting the subject, plus the subject's own
        untargeted (self) assignment. Optionally scoped to one rating group.
        """
        query = select(Assignment).where(
            Assignment.assessment_id == assessment_id,
            Assignment.completed.is_(True),
            or_(
                Assignment.target_id == subject_id,
                and_(Assignment.target_id.is_(None), Assignment.user_id == subject_id),
            ),
        )
        if group_id is not None:
            query = query.where(Assignment.group_id == group_id)
        result = await self.db.execute(query.order_by(Assignment.created_at, Assignment.id))
        return list(result.scalars().all())

    async def list_completed_assignments_by_users(
        self, user_ids: list[UUID], assessment_id: UUID
    ) -> list[Assignment]:
        if not user_ids:
            return []
        result = await self.db.execute(
            select(Assignment).where(
                Assignment.assessment_id == assessment_id,
                Assignment.completed.is_(True),
                Assignment.user_id.in_(user_ids),
            )
        )
        return list(result.scalars().all())

    # --- Dimensions & scores ---

    async def list_dimensions(self, assessment_id: UUID) -> list[Dimension]:
        result = await self.db.execute(
            select(Dimension)
            .where(Dimension.assessment_id == assessment_id)
            .order_by(Dimension.name, Dimension.id)
        )
        return list(result.scalars().all())

    async def list_dimension_scores(
        self, assignment_ids: list[UUID], dimension_ids: list[UUID]
    ) -> list[AssignmentDimensionScore]:
        if not assignment_ids or not dimension_ids:
            return []
        result = await self.db.execute(
            select(AssignmentDimensionScore).where(
                AssignmentDimensionScore.assignment_id.in_(assignment_ids),
                AssignmentDimensionScore.dimension_id.in_(dimension_ids),
            )
        )
        return list(result.scalars().all())

    async def list_text_answers(
        self, assignment_ids: list[UUID]
    ) -> list[tuple[Answer, Field]]:
        """Free-text answers with their field, oldest first."""
        if not assignment_ids:
            return []
        result = await self.db.execute(
            select(Answer, Field)
            .join(Field, Field.id == Answer.field_id)
            .where(
                Answer.assignment_id.in_(assignment_ids),
                Field.type.in_(TEXT_FIELD_TYPES),
            )
            .order_by(Answer.created_at, Answer.id)
        )
        return [(answer, field) for answer, field in result.all()]

    # --- Benchmarks & feedback (non-fatal) ---

    async def resolve_industry_id(self, *profile_ids: Optional[UUID]) -> Optional[UUID]:
        """Industry of the first profile whose client has one."""
        for profile_id in profile_ids:
            if profile_id is None:
                continue
            result = await self.db.execute(
                select(Client.industry_id)
                .join(Profile, Profile.client_id == Client.id)
                .where(Profile.id == profile_id)
            )
            industry_id = result.scalar_one_or_none()
            if industry_id is not None:
                return industry_id
        return None

    async def get_benchmarks(
        self, dimension_ids: list[UUID], industry_id: Optional[UUID]
    ) -> dict[UUID, float]:
        """Benchmark value per dimension. Lookup errors degrade to no benchmarks.

        The lookup runs in a SAVEPOINT: a failure rolls back only the
        savepoint, so the caller's transaction and loaded objects survive.
        """
        if industry_id is None or not dimension_ids:
            return {}
        try:
            async with self.db.begin_nested():
                result = await self.db.execute(
                    select(Benchmark).where(
                        Benchmark.dimension_id.in_(dimension_ids),
                        Benchmark.industry_id == industry_id,
                    )
                )
                benchmarks = result.scalars().all()
        except SQLAlchemyError as e:
            logger.warning("⚠️ Benchmark lookup failed, continuing without: %s", e)
            return {}
        return {b.dimension_id: b.value for b in benchmarks}

    async def list_feedback_entries(self, assessment_id: UUID) -> list[FeedbackEntry]:
        """Feedback library for an assessment. Lookup errors degrade to none."""
        try:
            async with self.db.begin_nested():
                result = await self.db.execute(
                    select(FeedbackEntry)
                    .where(FeedbackEntry.assessment_id == assessment_id)
                    .order_by(FeedbackEntry.created_at, FeedbackEntry.id)
                )
                entries = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.warning("⚠️ Feedback lookup failed, continuing without: %s", e)
            return []
        return entries

    # --- Report persistence ---

    async def get_report_data(self, assignment_id: UUID) -> Optional[ReportData]:
        result = await self.db.execute(
            select(ReportData)
            .where(ReportData.assignment_id == assignment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert_report(
        self, assignment_id: UUID, overall_score: float, document: dict
    ) -> ReportData:
        """Write the score columns; pdf_* columns are left as they are.

        A single INSERT ... ON CONFLICT (assignment_id) DO UPDATE, so two
        generators racing on the same assignment both succeed and the last
        write wins.
        """
        now = utc_now()
        stmt = dialect_insert(self.db, ReportData).values(
            id=uuid.uuid4(),
            assignment_id=assignment_id,
            overall_score=overall_score,
            report=document,
            calculated_at=now,
            created_at=now,
            updated_at=now,
        )
        await self.db.execute(
            stmt.on_conflict_do_update(
                index_elements=[ReportData.assignment_id],
                set_={
                    "overall_score": stmt.excluded.overall_score,
                    "report": stmt.excluded.report,
                    "calculated_at": stmt.excluded.calculated_at,
                    "updated_at": now,
                },
            )
        )
        await self.db.commit()
        return await self.get_report_data(assignment_id)
