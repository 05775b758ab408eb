"""
Assessment Reports FastAPI application

Entry point for the report API. It:
1. Creates the FastAPI app instance
2. Configures logging and CORS
3. Registers the reports router and domain error handlers
4. Creates missing tables on startup

Run with:
    uvicorn assessment_reports.main:app --reload --port 8000

The PDF worker is a separate process:
    python -m assessment_reports.workers.pdf_worker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assessment_reports.config import configure_logging, settings
from assessment_reports.database import init_db
from assessment_reports.errors import register_error_handlers
from assessment_reports.routers import reports

# Import models so SQLAlchemy registers them with Base.metadata
# before init_db() calls create_all()
import assessment_reports.models  # noqa: F401

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    configure_logging()
    logger.info("🚀 Starting Assessment Reports API...")
    await init_db()
    logger.info("✅ Database tables created/verified")

    yield

    # --- Shutdown ---
    logger.info("👋 Shutting down...")


app = FastAPI(
    title="Assessment Reports API",
    description="Assessment report scoring and PDF rendering",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)
app.include_router(reports.router)


# --- Health Check Endpoints ---

@app.get("/", tags=["health"])
async def root():
    """Root endpoint: confirms the API is alive."""
    return {
        "service": "Assessment Reports",
        "status": "running",
        "version": "1.0.0",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Health check: verifies database connectivity."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    from assessment_reports.database import AsyncSessionLocal

    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        db_status = f"error: {str(e)}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "environment": settings.APP_ENV,
    }
