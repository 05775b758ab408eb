"""
SQLAlchemy models for assessments, responses, scores and rendered reports.

Column types are the portable SQLAlchemy ones (Uuid, JSON, DateTime with
timezone) so the same models run on PostgreSQL in production and on SQLite
in the test suite. JSON columns become JSONB on PostgreSQL.

Table overview:
    industries, clients, profiles          who is being assessed, and where
    assessments, dimensions, fields        what is being measured
    groups, group_members                  who rates whom (360 rating groups)
    assignments, answers                   one rater's responses
    assignment_dimension_scores            per-(assignment, dimension) averages
    dimension_industry_benchmarks          industry reference scores
    feedback_library                       narrative feedback, banded by score
    report_data                            generated report + PDF render state
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from assessment_reports.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Industry(Base):
    __tablename__ = "industries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255))


class Client(Base):
    """A tenant organization. Its industry scopes benchmark lookups."""

    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255))
    industry_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("industries.id"), nullable=True
    )


class Profile(Base):
    """A user. Also the subject ("target") of 360 assessments."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[str] = mapped_column(String(255))
    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("clients.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Assessment(Base):
    __tablename__ = "assessments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255))
    is_360: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Dimension(Base):
    """A scored facet of an assessment.

    Dimensions form a tree via parent_id. Only roots (parent_id IS NULL)
    become report sections; children roll up into their root.
    """

    __tablename__ = "dimensions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    assessment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assessments.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    code: Mapped[str] = mapped_column(String(50))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("dimensions.id", ondelete="CASCADE"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Field(Base):
    """A question. Multiple choice answers store an anchor index."""

    __tablename__ = "fields"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    assessment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assessments.id", ondelete="CASCADE"), index=True
    )
    dimension_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("dimensions.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(50))  # multiple_choice, slider, text_input, rich_text
    content: Mapped[str] = mapped_column(Text, default="")
    order: Mapped[int] = mapped_column(Integer, default=0)
    # [{"name": "Strongly agree", "value": 5}, ...]
    anchors: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)


class Group(Base):
    """The rating group around one 360 target."""

    __tablename__ = "groups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("clients.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255))
    target_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class GroupMember(Base):
    __tablename__ = "group_members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("groups.id", ondelete="CASCADE"), index=True
    )
    profile_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id"))
    role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # free text


class Assignment(Base):
    """One user's instance of taking an assessment, optionally about a target."""

    __tablename__ = "assignments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id"), index=True)
    assessment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assessments.id"), index=True
    )
    target_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=True, index=True
    )
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("groups.id"), nullable=True
    )
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class Answer(Base):
    __tablename__ = "answers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assignments.id", ondelete="CASCADE"), index=True
    )
    field_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("fields.id"))
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=True
    )
    # Anchor index, slider number or free text, always stored as text
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class AssignmentDimensionScore(Base):
    """Precomputed average score of one assignment on one dimension."""

    __tablename__ = "assignment_dimension_scores"

    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assignments.id", ondelete="CASCADE"), primary_key=True
    )
    dimension_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("dimensions.id", ondelete="CASCADE"), primary_key=True
    )
    avg_score: Mapped[float] = mapped_column(Float)
    answer_count: Mapped[int] = mapped_column(Integer, default=0)
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class Benchmark(Base):
    __tablename__ = "dimension_industry_benchmarks"
    __table_args__ = (UniqueConstraint("dimension_id", "industry_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    dimension_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("dimensions.id", ondelete="CASCADE")
    )
    industry_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("industries.id"))
    value: Mapped[float] = mapped_column(Float)


class FeedbackEntry(Base):
    """Narrative feedback.

    type "overall": at most one per (assessment, dimension), shown regardless
    of score. dimension_id NULL means report-level overall feedback.
    type "specific": shown when the score falls inside [min_score, max_score];
    a NULL bound is unbounded on that side.
    """

    __tablename__ = "feedback_library"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    assessment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assessments.id", ondelete="CASCADE"), index=True
    )
    dimension_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("dimensions.id", ondelete="CASCADE"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(20))
    feedback: Mapped[str] = mapped_column(Text)  # HTML
    min_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class ReportData(Base):
    """The generated report for one assignment plus its PDF render state.

    Score columns are owned by the scoring engine, pdf_* columns by the
    render queue and worker. Neither writer touches the other's columns.
    """

    __tablename__ = "report_data"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assignments.id", ondelete="CASCADE"), unique=True
    )

    # --- Scores ---
    overall_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    report: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    calculated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- PDF render state ---
    pdf_status: Mapped[str] = mapped_column(String(20), default="not_requested", index=True)
    pdf_storage_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    pdf_generated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    pdf_version: Mapped[int] = mapped_column(Integer, default=1)
    pdf_last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pdf_job_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
