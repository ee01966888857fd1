"""Configuration for the Clinician Assistant backend using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PACKAGE_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _PACKAGE_DIR.parent.parent  # src/clinician_assistant/ → project root


class Settings(BaseSettings):
    """All backend settings, loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Databases
    # ------------------------------------------------------------------
    records_db_path: Path = _PROJECT_ROOT / "database" / "clinical_records.sqlite"
    conversations_db_path: Path = _PROJECT_ROOT / "database" / "conversations.sqlite"
    store_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Query pipeline
    # ------------------------------------------------------------------
    expiring_budget_days: int = Field(default=30, ge=1)
    patient_search_limit: int = Field(default=25, ge=1)

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    log_redact_identifiers: bool = True

    # ------------------------------------------------------------------
    # Observability: off | logfire | otel
    # ------------------------------------------------------------------
    observability: Literal["off", "logfire", "otel"] = "off"
    otel_service_name: str = "clinician-assistant"
    otel_exporter_otlp_endpoint: str = "http://localhost:4318"
    otel_console_exporter: bool = False

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    cors_allow_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("observability", mode="before")
    @classmethod
    def _lower_mode(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------
    def validate_runtime(self) -> None:
        """Check that the records database exists.

        Call this at application startup (not at import time) so that
        tests can override settings before validation runs.
        """
        if not self.records_db_path.exists():
            raise FileNotFoundError(
                f"Records database not found at {self.records_db_path}. "
                "Run scripts/seed_demo.py or set RECORDS_DB_PATH."
            )


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings singleton."""
    return Settings()
