"""
PDF render worker.

A single long-running process that polls report_data for queued renders:

    poll → claim (queued → generating) → render viewer page → upload PDF
         → ready   (or failed, with the error message, on any exception)

One job is in flight at a time. A failed job stays failed until someone
re-queues it; there is no automatic retry.

Run with:
    python -m assessment_reports.workers.pdf_worker            # poll forever
    python -m assessment_reports.workers.pdf_worker --once     # one poll, then exit
"""

import argparse
import asyncio
import logging
import os
import signal
import socket
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from assessment_reports.config import configure_logging, settings
from assessment_reports.database import AsyncSessionLocal
from assessment_reports.errors import RenderFailure
from assessment_reports.services.pdf_jobs import PdfJobQueue, storage_path_for
from assessment_reports.services.pdf_renderer import (
    PlaywrightRenderer,
    ReportRenderer,
    build_view_url,
)
from assessment_reports.services.storage import StorageService, get_storage_service

logger = logging.getLogger(__name__)


async def _fail_in_new_session(
    queue: PdfJobQueue, session_factory, assignment_id: UUID, error: str
) -> bool:
    """Record a failure after the job's own session could not write.

    The broken session is rolled back first so it releases the row, then
    generating → failed is written through a fresh session.
    """
    try:
        await queue.db.rollback()
    except SQLAlchemyError as e:
        logger.warning("⚠️ Rollback of the job session for %s failed: %s", assignment_id, e)
    async with session_factory() as db:
        return await PdfJobQueue(db).mark_failed(assignment_id, error)


async def _process_job(
    queue: PdfJobQueue,
    assignment_id: UUID,
    version: int,
    renderer: ReportRenderer,
    storage: StorageService,
    session_factory=AsyncSessionLocal,
) -> bool:
    """Render and upload one claimed job. Returns True when it ended ready.

    Every path ends in exactly one completion write (ready or failed). If
    that write itself errors, the failure is written once more through a
    fresh session so the record never stays generating.
    """
    try:
        url = build_view_url(str(assignment_id))
        pdf = await renderer.render(url, settings.PDF_READY_SELECTOR)
        if not pdf:
            raise RenderFailure("Renderer returned an empty document")

        path = storage_path_for(assignment_id, version)
        await storage.upload_bytes(
            settings.REPORTS_PDF_BUCKET, path, pdf, content_type="application/pdf", upsert=True
        )
    except Exception as e:
        logger.error("❌ PDF job for %s failed: %s", assignment_id, e)
        error = str(e) or e.__class__.__name__
        try:
            await queue.db.rollback()
            recorded = await queue.mark_failed(assignment_id, error)
        except SQLAlchemyError as db_error:
            logger.error("❌ Could not record failure of %s, retrying: %s", assignment_id, db_error)
            recorded = await _fail_in_new_session(queue, session_factory, assignment_id, error)
        if not recorded:
            logger.warning("⚠️ %s was re-queued while rendering; failure not recorded", assignment_id)
        return False

    try:
        ready = await queue.mark_ready(assignment_id, version, path)
    except SQLAlchemyError as e:
        logger.error("❌ Could not mark %s ready: %s", assignment_id, e)
        await _fail_in_new_session(
            queue, session_factory, assignment_id, f"Could not record the rendered PDF: {e}"
        )
        return False
    if not ready:
        logger.warning("⚠️ %s was re-queued while rendering; leaving the new request queued", assignment_id)
        return False
    logger.info("✅ PDF ready for %s at %s/%s", assignment_id, settings.REPORTS_PDF_BUCKET, path)
    return True


async def poll_once(
    renderer: ReportRenderer,
    storage: StorageService,
    session_factory=AsyncSessionLocal,
) -> Optional[UUID]:
    """Pick up and process the oldest queued job, if any.

    Returns the assignment id that was processed, or None when the queue
    was empty or another worker claimed the job first.
    """
    async with session_factory() as db:
        queue = PdfJobQueue(db)
        record = await queue.next_queued()
        if record is None:
            return None

        assignment_id = record.assignment_id
        version = record.pdf_version or 1
        if not await queue.claim(assignment_id):
            logger.info("🤝 Job for %s was claimed by another worker", assignment_id)
            return None

        logger.info("🛠️ Claimed PDF job for %s (v%d)", assignment_id, version)
        await _process_job(queue, assignment_id, version, renderer, storage, session_factory)
        return assignment_id


async def run_worker(
    loop: bool = True,
    sleep_seconds: Optional[float] = None,
    renderer: Optional[ReportRenderer] = None,
    storage: Optional[StorageService] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    worker_id = f"{socket.gethostname()}:{os.getpid()}"
    sleep_seconds = settings.PDF_POLL_INTERVAL_SECONDS if sleep_seconds is None else sleep_seconds
    renderer = renderer or PlaywrightRenderer()
    storage = storage or get_storage_service()
    stop_event = stop_event or asyncio.Event()

    logger.info("🚀 PDF worker %s started (poll every %ss)", worker_id, sleep_seconds)
    while not stop_event.is_set():
        try:
            processed = await poll_once(renderer, storage)
        except SQLAlchemyError as e:
            # Database hiccups shouldn't kill the worker; try again next poll
            logger.error("❌ Poll failed: %s", e)
            processed = None

        if not loop:
            break
        if processed is None:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=sleep_seconds)
            except asyncio.TimeoutError:
                pass

    logger.info("👋 PDF worker %s stopped", worker_id)
    return 0


async def _run_until_signalled(loop: bool, sleep_seconds: Optional[float]) -> int:
    stop_event = asyncio.Event()
    event_loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            event_loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass  # Windows: fall back to KeyboardInterrupt
    return await run_worker(loop=loop, sleep_seconds=sleep_seconds, stop_event=stop_event)


def main() -> int:
    parser = argparse.ArgumentParser(description="Report PDF render worker")
    parser.add_argument("--once", action="store_true", help="Process at most one job and exit")
    parser.add_argument(
        "--sleep", type=float, default=None,
        help="Seconds between polls when the queue is empty (default: PDF_POLL_INTERVAL_SECONDS)",
    )
    args = parser.parse_args()

    configure_logging()
    return asyncio.run(_run_until_signalled(loop=not args.once, sleep_seconds=args.sleep))


if __name__ == "__main__":
    raise SystemExit(main())
