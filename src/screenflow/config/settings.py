"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="SCREENFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    database_path: Path = Field(Path(".screenflow") / "screening.db")

    # Project defaults (each project may override these)
    default_quorum_size: int = Field(2, ge=1, description="Distinct reviewers needed per study and phase")
    default_blind_screening: bool = Field(True, description="Hide peer verdicts until quorum is met")

    # AI suggestions
    ai_confidence_threshold: float = Field(80.0, ge=0.0, le=100.0)
    system_reviewer_id: str = Field("system:ai", min_length=1)

    # Queue
    queue_page_size: int = Field(25, ge=1, le=500)
    priority_venue_boost: List[str] = Field(default_factory=list)
    priority_keyword_boost: List[str] = Field(default_factory=list)

    # Logging
    log_level: str = Field("INFO")
    log_format: str = Field("json", pattern="^(json|text)$")

    @field_validator("database_path")
    @classmethod
    def _create_parent(cls, v: Path) -> Path:
        if str(v) != ":memory:":
            v.parent.mkdir(parents=True, exist_ok=True)
        return v


# Instantiate global settings
settings = Settings()
