"""Configuration management for the generation polling and live translation core."""

from pathlib import Path
from typing import NamedTuple, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from common.schemas import JobKind


class PollingBudget(NamedTuple):
    """Timing budget applied to one kind of generation job."""

    interval_seconds: float
    max_attempts: int
    max_not_found: int


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Image generation polling
    image_poll_interval_seconds: float = Field(
        default=3.0, env="IMAGE_POLL_INTERVAL_SECONDS"
    )
    image_max_attempts: int = Field(default=30, env="IMAGE_MAX_ATTEMPTS")
    image_max_not_found: int = Field(
        default=12, env="IMAGE_MAX_NOT_FOUND"
    )  # Consecutive NOT_FOUND responses tolerated before failing

    # Video generation polling
    video_poll_interval_seconds: float = Field(
        default=5.0, env="VIDEO_POLL_INTERVAL_SECONDS"
    )
    video_max_attempts: int = Field(default=60, env="VIDEO_MAX_ATTEMPTS")
    video_max_not_found: int = Field(default=15, env="VIDEO_MAX_NOT_FOUND")

    # Live translation
    translation_debounce_ms: int = Field(
        default=750, env="TRANSLATION_DEBOUNCE_MS"
    )  # Interim text must be stable this long before it is translated
    translation_cooldown_ms: int = Field(
        default=1000, env="TRANSLATION_COOLDOWN_MS"
    )  # Identical text within this window reuses the previous output
    translation_target_language: str = Field(
        default="en", env="TRANSLATION_TARGET_LANGUAGE"
    )

    # Orchestrator
    finished_job_history: int = Field(
        default=100, env="FINISHED_JOB_HISTORY"
    )  # Finished job snapshots kept for get_job(); oldest are evicted first

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    third_party_log_level: str = Field(
        default="WARNING", env="THIRD_PARTY_LOG_LEVEL"
    )

    @field_validator(
        "image_poll_interval_seconds",
        "video_poll_interval_seconds",
        "image_max_attempts",
        "video_max_attempts",
        "image_max_not_found",
        "video_max_not_found",
        "finished_job_history",
    )
    @classmethod
    def validate_positive(cls, v: Union[int, float]) -> Union[int, float]:
        """
        Reject zero or negative polling budgets and history sizes.

        Args:
            v: Interval, attempt budget or history size

        Returns:
            The value unchanged

        Raises:
            ValueError: If the value is not positive
        """
        if v <= 0:
            raise ValueError(f"Budget values must be positive, got {v}")
        return v

    @field_validator("translation_debounce_ms", "translation_cooldown_ms")
    @classmethod
    def validate_non_negative_ms(cls, v: int) -> int:
        """Reject negative translation windows."""
        if v < 0:
            raise ValueError(f"Translation windows cannot be negative, got {v}")
        return v

    @property
    def translation_debounce_seconds(self) -> float:
        return self.translation_debounce_ms / 1000.0

    @property
    def translation_cooldown_seconds(self) -> float:
        return self.translation_cooldown_ms / 1000.0

    def polling_budget(self, kind: Union[JobKind, str]) -> PollingBudget:
        """
        Get the polling budget for a job kind.

        Args:
            kind: Job kind (image or video)

        Returns:
            PollingBudget with interval, max attempts and not-found threshold
        """
        if JobKind(kind) == JobKind.VIDEO:
            return PollingBudget(
                interval_seconds=self.video_poll_interval_seconds,
                max_attempts=self.video_max_attempts,
                max_not_found=self.video_max_not_found,
            )
        return PollingBudget(
            interval_seconds=self.image_poll_interval_seconds,
            max_attempts=self.image_max_attempts,
            max_not_found=self.image_max_not_found,
        )

    class Config:
        # This file is in src/common/, so go up 2 levels to project root
        _project_root = Path(__file__).parent.parent.parent
        env_file = str(_project_root / ".env")
        case_sensitive = False


# Global settings instance
settings = Settings()
