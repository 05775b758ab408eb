"""
PDF render job queue.

The queue is the pdf_* columns of report_data; there's no separate jobs
table. A record moves through:

    not_requested → queued → generating → ready
                                        ↘ failed
    (anything) → queued                   re-render requested

The only contended step is the worker's claim (queued → generating). It's
a single conditional UPDATE ... WHERE pdf_status = 'queued', so when two
pollers race for the same record exactly one of them sees a row updated.
Completion writes are guarded the same way on 'generating', so a worker
that lost its record to a re-queue mid-render can't overwrite the new
request.
"""

import logging
import uuid
from enum import Enum
from typing import Iterable, Optional, Union
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_reports.database import dialect_insert
from assessment_reports.errors import InvalidPdfTransition, JobNotAllowed, NotFoundError
from assessment_reports.models import Assignment, ReportData
from assessment_reports.models.models import utc_now
from assessment_reports.services.report_generator import ASSIGNMENT_NOT_FOUND, parse_assignment_id

logger = logging.getLogger(__name__)

# Bulk requests are capped to keep one call from flooding the worker
MAX_BULK_QUEUE = 100


class PdfStatus(str, Enum):
    NOT_REQUESTED = "not_requested"
    QUEUED = "queued"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    PdfStatus.NOT_REQUESTED: {PdfStatus.QUEUED},
    PdfStatus.QUEUED: {PdfStatus.QUEUED, PdfStatus.GENERATING},
    PdfStatus.GENERATING: {PdfStatus.QUEUED, PdfStatus.READY, PdfStatus.FAILED},
    PdfStatus.READY: {PdfStatus.QUEUED},
    PdfStatus.FAILED: {PdfStatus.QUEUED},
}

# Statuses where a plain request has nothing to do
ACTIVE_STATUSES = {PdfStatus.QUEUED, PdfStatus.GENERATING, PdfStatus.READY}


def check_transition(current: Union[str, PdfStatus], target: Union[str, PdfStatus]) -> None:
    """Raise InvalidPdfTransition unless current → target is allowed."""
    current, target = PdfStatus(current), PdfStatus(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidPdfTransition(current.value, target.value)


def storage_path_for(assignment_id: Union[str, UUID], version: int) -> str:
    """Object key of a rendered report inside the PDF bucket."""
    return f"{assignment_id}/v{version}.pdf"


class PdfJobQueue:
    """All reads and writes of the pdf_* columns go through here."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_record(self, assignment_id: UUID) -> Optional[ReportData]:
        result = await self.db.execute(
            select(ReportData)
            .where(ReportData.assignment_id == assignment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_status(self, assignment_id: Union[str, UUID]) -> dict:
        """Current render state. A report with no row is not_requested."""
        assignment_id = parse_assignment_id(assignment_id)
        record = await self._get_record(assignment_id)
        if record is None:
            return {
                "assignment_id": assignment_id,
                "status": PdfStatus.NOT_REQUESTED.value,
                "storage_path": None,
                "generated_at": None,
                "version": 1,
                "last_error": None,
                "job_id": None,
            }
        return {
            "assignment_id": record.assignment_id,
            "status": record.pdf_status,
            "storage_path": record.pdf_storage_path,
            "generated_at": record.pdf_generated_at,
            "version": record.pdf_version or 1,
            "last_error": record.pdf_last_error,
            "job_id": record.pdf_job_id,
        }

    async def request_render(
        self,
        assignment_id: Union[str, UUID],
        regenerate: bool = False,
        new_version: bool = False,
    ) -> tuple[ReportData, bool]:
        """Queue a render for a completed assignment.

        Idempotent: a record that is already queued, generating or ready is
        returned untouched unless regenerate or new_version is set. A
        re-render keeps pdf_version, so it overwrites the same artifact. With
        new_version a report that already has an artifact moves to the next
        version, and the old PDF stays addressable at its own path.

        Returns:
            (record, queued) where queued says whether anything changed.
        """
        assignment_id = parse_assignment_id(assignment_id)
        result = await self.db.execute(select(Assignment).where(Assignment.id == assignment_id))
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise NotFoundError(ASSIGNMENT_NOT_FOUND)
        if not assignment.completed:
            raise JobNotAllowed("Assignment must be completed before generating a PDF")

        # Create the row if it's missing; a concurrent request may beat us to it
        await self.db.execute(
            dialect_insert(self.db, ReportData)
            .values(
                id=uuid.uuid4(),
                assignment_id=assignment_id,
                pdf_status=PdfStatus.NOT_REQUESTED.value,
                pdf_version=1,
            )
            .on_conflict_do_nothing(index_elements=[ReportData.assignment_id])
        )
        record = await self._get_record(assignment_id)

        current = PdfStatus(record.pdf_status or PdfStatus.NOT_REQUESTED.value)
        if current in ACTIVE_STATUSES and not (regenerate or new_version):
            await self.db.commit()
            logger.info("⏭️ PDF for %s already %s, not re-queued", assignment_id, current.value)
            return record, False

        check_transition(current, PdfStatus.QUEUED)
        if new_version and record.pdf_storage_path:
            record.pdf_version = (record.pdf_version or 1) + 1
        record.pdf_status = PdfStatus.QUEUED.value
        record.pdf_job_id = uuid.uuid4()
        record.pdf_last_error = None
        await self.db.commit()
        await self.db.refresh(record)

        logger.info("📥 Queued PDF v%d for assignment %s", record.pdf_version, assignment_id)
        return record, True

    async def queue_many(self, assignment_ids: Iterable[Union[str, UUID]]) -> dict:
        """Bulk request_render. Failures are reported per id, not raised."""
        unique_ids = list(dict.fromkeys(assignment_ids))
        if not unique_ids:
            raise ValueError("assignment_ids must not be empty")
        if len(unique_ids) > MAX_BULK_QUEUE:
            raise ValueError(f"Maximum {MAX_BULK_QUEUE} assignments per request")

        outcome = {"queued": [], "skipped": [], "errors": []}
        for assignment_id in unique_ids:
            try:
                _, queued = await self.request_render(assignment_id)
            except (NotFoundError, JobNotAllowed) as e:
                await self.db.rollback()
                outcome["errors"].append({"assignment_id": assignment_id, "error": e.message})
                continue
            outcome["queued" if queued else "skipped"].append(assignment_id)
        return outcome

    async def next_queued(self) -> Optional[ReportData]:
        """Oldest queued record, by last update."""
        result = await self.db.execute(
            select(ReportData)
            .where(ReportData.pdf_status == PdfStatus.QUEUED.value)
            .order_by(ReportData.updated_at, ReportData.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _transition(
        self, assignment_id: UUID, expected: PdfStatus, target: PdfStatus, **values
    ) -> bool:
        check_transition(expected, target)
        result = await self.db.execute(
            update(ReportData)
            .where(
                ReportData.assignment_id == assignment_id,
                ReportData.pdf_status == expected.value,
            )
            .values(pdf_status=target.value, updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def claim(self, assignment_id: UUID) -> bool:
        """queued → generating. False means another worker got there first."""
        return await self._transition(assignment_id, PdfStatus.QUEUED, PdfStatus.GENERATING)

    async def mark_ready(self, assignment_id: UUID, version: int, storage_path: str) -> bool:
        return await self._transition(
            assignment_id,
            PdfStatus.GENERATING,
            PdfStatus.READY,
            pdf_storage_path=storage_path,
            pdf_generated_at=utc_now(),
            pdf_version=version,
            pdf_last_error=None,
        )

    async def mark_failed(self, assignment_id: UUID, error: str) -> bool:
        return await self._transition(
            assignment_id, PdfStatus.GENERATING, PdfStatus.FAILED, pdf_last_error=error
        )
