"""Runtime settings for the scheduling engine."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Recurrence expansion
    EXPANSION_CAP: int = 10_000

    # Drag-and-drop grid
    SNAP_MINUTES: int = 30
    DEFAULT_DURATION_MINUTES: int = 60

    # Conflict detection
    SUGGESTION_STEP_MINUTES: int = 15
    MAX_SUGGESTIONS: int = 3
    HIGH_OVERLAP_RATIO: float = 0.75
    MEDIUM_OVERLAP_RATIO: float = 0.25

    DEFAULT_TIME_ZONE: str = "UTC"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="WEEKPLAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
