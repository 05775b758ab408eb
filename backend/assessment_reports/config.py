"""
Application configuration loaded from environment variables.

Uses Pydantic Settings to:
1. Read from .env file automatically
2. Validate all required values exist at startup
3. Provide type-safe access to the API, the scoring engine and the PDF worker

Usage:
    from assessment_reports.config import settings
    print(settings.DATABASE_URL)

Note: We use a custom validator that prefers .env values over empty shell
environment variables, so an exported-but-blank SERVICE_ROLE_TOKEN does not
shadow the real value in the .env file.
"""

import logging

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All application configuration in one place."""

    model_config = SettingsConfigDict(
        env_file=".env",        # Load from .env file
        env_file_encoding="utf-8",
        case_sensitive=True,     # ENV_VAR must match exactly
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def prefer_dotenv_over_empty_env(cls, data):
        """If an env var is empty but .env has a value, use the .env value.

        Pydantic Settings prioritizes real env vars over .env file values,
        so an empty exported variable would win over a filled-in .env entry.
        """
        from dotenv import dotenv_values

        dotenv_vals = dotenv_values(".env")
        for key, dotenv_value in dotenv_vals.items():
            if dotenv_value and (key not in data or not data.get(key)):
                data[key] = dotenv_value
        return data

    # --- Database ---
    DATABASE_URL: str

    # --- Application ---
    APP_ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000"

    # --- Report viewer ---
    # The worker renders {APP_BASE_URL}/reports/{assignment_id}/view
    APP_BASE_URL: str = "http://localhost:3000"
    SERVICE_ROLE_TOKEN: str = ""

    # --- Storage ---
    STORAGE_BACKEND: str = "local"  # "local" or "s3"
    LOCAL_STORAGE_PATH: str = "uploads"
    REPORTS_PDF_BUCKET: str = "reports-pdf"
    PDF_URL_EXPIRY_SECONDS: int = 3600

    # --- AWS ---
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-west-2"

    # --- PDF worker ---
    PDF_POLL_INTERVAL_SECONDS: float = 5.0
    PDF_READY_SELECTOR: str = "[data-report-loaded]"
    PDF_PAGE_SELECTOR: str = ".page-container"
    PDF_NAVIGATION_TIMEOUT_MS: int = 60_000
    PDF_READY_TIMEOUT_MS: int = 30_000
    PDF_VIEWPORT_WIDTH: int = 1920
    PDF_MAX_VIEWPORT_HEIGHT: int = 50_000
    CHROMIUM_EXECUTABLE_PATH: str = ""

    # --- Scoring ---
    GEONORM_MIN_PARTICIPANTS: int = 1

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process or the worker."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # boto3 and asyncio are chatty at INFO
    for noisy in ("botocore", "boto3", "urllib3", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# Singleton instance; import this everywhere
settings = Settings()
