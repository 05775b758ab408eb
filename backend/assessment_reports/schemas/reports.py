"""
Pydantic schemas for the Reports API.

ReportDocument is also the exact shape stored in report_data.report and
read by the report viewer page that the PDF worker renders.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RaterBreakdown(BaseModel):
    """Mean score per rater type. None means no rater of that type scored."""
    model_config = ConfigDict(populate_by_name=True)

    all_raters: Optional[float] = None
    peer: Optional[float] = None
    direct_report: Optional[float] = None
    supervisor: Optional[float] = None
    self_rating: Optional[float] = Field(default=None, alias="self")
    other: Optional[float] = None


class ParticipantResponseSummary(BaseModel):
    completed: int
    total: int


class DimensionReport(BaseModel):
    """One report section (a root dimension)."""
    dimension_id: str
    dimension_name: str
    dimension_code: str
    description: Optional[str] = None
    overall_score: float
    rater_breakdown: RaterBreakdown
    industry_benchmark: Optional[float] = None
    geonorm: Optional[float] = None
    geonorm_participant_count: int = 0
    improvement_needed: bool = False
    text_feedback: list[str] = []
    overall_feedback: Optional[str] = None
    overall_feedback_id: Optional[str] = None
    specific_feedback: Optional[str] = None
    specific_feedback_id: Optional[str] = None


class ReportDocument(BaseModel):
    """The full scored report for one assignment."""
    assignment_id: str
    assessment_id: str
    assessment_title: str
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    target_email: Optional[str] = None
    # Who the report is about: the target, or the assignment's own user
    subject_id: Optional[str] = None
    subject_name: Optional[str] = None
    subject_email: Optional[str] = None
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    overall_score: float
    overall_feedback: Optional[str] = None
    partial: bool = False
    participant_response_summary: ParticipantResponseSummary
    dimensions: list[DimensionReport]
    generated_at: datetime

    def to_storage(self) -> dict:
        """JSON-safe dict for the report_data.report column."""
        return self.model_dump(mode="json", by_alias=True)


class DimensionScoreResponse(BaseModel):
    assignment_id: UUID
    dimension_id: UUID
    avg_score: float
    answer_count: int
    calculated_at: datetime

    model_config = {"from_attributes": True}


class StoredDimensionScore(DimensionScoreResponse):
    dimension_name: str
    dimension_code: str
    parent_id: Optional[UUID] = None


class StoredScoresResponse(BaseModel):
    """Dimension scores as last refreshed; nothing is recomputed."""
    assignment_id: UUID
    scores: list[StoredDimensionScore]


class PdfStatusResponse(BaseModel):
    """PDF render state of one report."""
    assignment_id: UUID
    status: str
    storage_path: Optional[str] = None
    generated_at: Optional[datetime] = None
    version: int = 1
    last_error: Optional[str] = None
    job_id: Optional[UUID] = None


class PdfQueueRequest(BaseModel):
    assignment_ids: list[UUID]


class PdfQueueError(BaseModel):
    assignment_id: UUID
    error: str


class PdfQueueResponse(BaseModel):
    queued: list[UUID]
    skipped: list[UUID]
    errors: list[PdfQueueError]


class PdfUrlResponse(BaseModel):
    assignment_id: UUID
    url: str
    version: int
    expires_in: int
