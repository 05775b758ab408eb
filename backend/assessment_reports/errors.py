"""
Domain errors and their HTTP mapping.

Services raise these; the API turns them into JSON responses with the same
{"detail": ...} shape FastAPI uses for HTTPException, so clients only ever
parse one error format.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ReportError(Exception):
    """Base class for report pipeline errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ReportError):
    """A required record (assignment, assessment, dimension) is missing."""

    status_code = 404


class JobNotAllowed(ReportError):
    """A render was requested for an assignment that can't be rendered yet."""

    status_code = 400


class InvalidPdfTransition(ReportError):
    """Attempted a pdf_status change the state machine doesn't allow."""

    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid PDF status transition: {current} -> {target}")
        self.current = current
        self.target = target


class RenderFailure(ReportError):
    """The headless renderer could not produce a usable document."""


class StorageError(ReportError):
    """The artifact store rejected an upload or lookup."""


async def report_error_handler(request: Request, exc: ReportError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("❌ %s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReportError, report_error_handler)
