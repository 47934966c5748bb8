"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - Every behaviour switch of a form session has a default here
    - get_settings() is cached (lru_cache) — single instance per process
    - Delays and thresholds are non-negative milliseconds

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - FORMKEEPER_ prefix so host applications can keep their own settings alongside
"""

from datetime import timedelta
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from formkeeper.core.domain_types import (
    DEFAULT_AUTOSAVE_DELAY_MS,
    DEFAULT_DUPLICATE_SUBMISSION_THRESHOLD_MS,
)


class Settings(BaseSettings):
    """Form session defaults from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="FORMKEEPER_", case_sensitive=False,
        extra="ignore",
    )

    # Autosave
    default_autosave_delay_ms: int = DEFAULT_AUTOSAVE_DELAY_MS

    # Submission
    duplicate_submission_threshold_ms: int = DEFAULT_DUPLICATE_SUBMISSION_THRESHOLD_MS
    prevent_duplicate_submissions: bool = True

    # Normalization (string fields only, applied right before submit)
    auto_trim_strings: bool = True
    auto_normalize_whitespace: bool = True

    # Change tracking
    track_changes: bool = True

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator(
        "default_autosave_delay_ms", "duplicate_submission_threshold_ms",
    )
    @classmethod
    def non_negative_ms(cls, v: int) -> int:
        if v < 0:
            raise ValueError("delay must be >= 0 milliseconds")
        return v

    @property
    def default_autosave_delay(self) -> timedelta:
        return timedelta(milliseconds=self.default_autosave_delay_ms)

    @property
    def duplicate_submission_threshold(self) -> timedelta:
        return timedelta(milliseconds=self.duplicate_submission_threshold_ms)


@lru_cache
def get_settings() -> Settings:
    return Settings()
