"""
Reports API endpoints.

1. POST /reports/generate/{assignment_id}: Score and store the report
2. GET  /reports/{assignment_id}: Stored report document
3. POST /reports/scores/{assignment_id}/refresh: Recompute dimension scores from answers
4. GET  /reports/scores/{assignment_id}: Stored dimension scores
5. GET  /reports/{assignment_id}/pdf: PDF render status
6. POST /reports/{assignment_id}/pdf: Request a PDF render
7. POST /reports/pdf/queue: Request renders for many assignments
8. GET  /reports/{assignment_id}/pdf/url: Download URL of a ready PDF
9. GET  /reports/{assignment_id}/export/csv: Report as CSV
10. GET /reports/{assignment_id}/export/xlsx: Report as an Excel workbook

Rendering itself happens in the PDF worker process. The client requests a
render, then polls the status endpoint until it reads ready (or failed).
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_reports.config import settings
from assessment_reports.database import get_db
from assessment_reports.schemas.reports import (
    DimensionScoreResponse,
    PdfQueueRequest,
    PdfQueueResponse,
    PdfStatusResponse,
    PdfUrlResponse,
    ReportDocument,
    StoredDimensionScore,
    StoredScoresResponse,
)
from assessment_reports.services.dimension_scores import get_dimension_scores, refresh_dimension_scores
from assessment_reports.services.pdf_jobs import PdfJobQueue, PdfStatus
from assessment_reports.services.report_formatting import export_report_csv, export_report_xlsx
from assessment_reports.services.report_generator import generate_report, parse_assignment_id
from assessment_reports.services.report_repository import ReportRepository
from assessment_reports.services.storage import get_storage_service

router = APIRouter(prefix="/api/v1/reports", tags=["reports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.post("/generate/{assignment_id}", response_model=ReportDocument)
async def generate(assignment_id: str, db: AsyncSession = Depends(get_db)):
    """Score the assignment's report and store it.

    Safe to call repeatedly; each call recomputes from current data. With
    no completed responses yet, the report comes back with partial=true.
    """
    return await generate_report(db, assignment_id)


@router.get("/scores/{assignment_id}", response_model=StoredScoresResponse)
async def get_scores(assignment_id: str, db: AsyncSession = Depends(get_db)):
    """The assignment's stored per-dimension scores, as last refreshed."""
    rows = await get_dimension_scores(db, assignment_id)
    return StoredScoresResponse(
        assignment_id=parse_assignment_id(assignment_id),
        scores=[
            StoredDimensionScore(
                assignment_id=score.assignment_id,
                dimension_id=score.dimension_id,
                avg_score=score.avg_score,
                answer_count=score.answer_count,
                calculated_at=score.calculated_at,
                dimension_name=dimension.name,
                dimension_code=dimension.code,
                parent_id=dimension.parent_id,
            )
            for score, dimension in rows
        ],
    )


@router.post("/scores/{assignment_id}/refresh", response_model=list[DimensionScoreResponse])
async def refresh_scores(assignment_id: str, db: AsyncSession = Depends(get_db)):
    """Recompute the assignment's per-dimension scores from its answers."""
    return await refresh_dimension_scores(db, assignment_id)


@router.post("/pdf/queue", response_model=PdfQueueResponse)
async def queue_pdfs(request: PdfQueueRequest, db: AsyncSession = Depends(get_db)):
    """Request PDF renders for up to 100 assignments at once."""
    try:
        return await PdfJobQueue(db).queue_many(request.assignment_ids)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{assignment_id}")
async def get_report(assignment_id: str, db: AsyncSession = Depends(get_db)):
    """The stored report document, as last generated."""
    record = await ReportRepository(db).get_report_data(parse_assignment_id(assignment_id))
    if not record or record.report is None:
        raise HTTPException(status_code=404, detail="Report not generated yet")
    return record.report


@router.get("/{assignment_id}/pdf", response_model=PdfStatusResponse)
async def get_pdf_status(assignment_id: str, db: AsyncSession = Depends(get_db)):
    return await PdfJobQueue(db).get_status(assignment_id)


@router.post("/{assignment_id}/pdf", response_model=PdfStatusResponse)
async def request_pdf(
    assignment_id: str,
    regenerate: bool = False,
    new_version: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """Queue a PDF render.

    Already queued, generating or ready → returned as is. Pass
    regenerate=true to render again over the same version, or
    new_version=true to render into the next version.
    """
    queue = PdfJobQueue(db)
    record, _ = await queue.request_render(
        assignment_id, regenerate=regenerate, new_version=new_version
    )
    return await queue.get_status(record.assignment_id)


@router.get("/{assignment_id}/pdf/url", response_model=PdfUrlResponse)
async def get_pdf_url(assignment_id: str, db: AsyncSession = Depends(get_db)):
    """Download URL for a ready PDF (presigned when stored in S3)."""
    status = await PdfJobQueue(db).get_status(assignment_id)
    if status["status"] != PdfStatus.READY.value or not status["storage_path"]:
        raise HTTPException(status_code=404, detail="PDF not ready")

    storage = get_storage_service()
    url = await storage.get_file_url(
        settings.REPORTS_PDF_BUCKET,
        status["storage_path"],
        expires_in=settings.PDF_URL_EXPIRY_SECONDS,
    )
    return PdfUrlResponse(
        assignment_id=status["assignment_id"],
        url=url,
        version=status["version"],
        expires_in=settings.PDF_URL_EXPIRY_SECONDS,
    )


@router.get("/{assignment_id}/export/csv")
async def export_csv(assignment_id: str, db: AsyncSession = Depends(get_db)):
    """Download the stored report as CSV."""
    record = await ReportRepository(db).get_report_data(parse_assignment_id(assignment_id))
    if not record or record.report is None:
        raise HTTPException(status_code=404, detail="Report not generated yet")

    return Response(
        content=export_report_csv(record.report),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="report-{assignment_id}.csv"'
        },
    )


@router.get("/{assignment_id}/export/xlsx")
async def export_xlsx(assignment_id: str, db: AsyncSession = Depends(get_db)):
    """Download the stored report as an Excel workbook."""
    record = await ReportRepository(db).get_report_data(parse_assignment_id(assignment_id))
    if not record or record.report is None:
        raise HTTPException(status_code=404, detail="Report not generated yet")

    return Response(
        content=export_report_xlsx(record.report),
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="report-{assignment_id}.xlsx"'
        },
    )
