"""
Configuration management for the answer evaluation engine.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration.
"""

import json
from functools import lru_cache
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The AI scoring provider is optional: without an API key every
    open-ended answer is deferred straight to a human reviewer.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # AI Scoring Provider (OpenAI-compatible endpoint)
    # ==========================================================================
    ai_api_key: str | None = Field(
        default=None,
        description="API key for the AI scoring provider",
    )

    ai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for the AI scoring provider",
    )

    ai_model: str = Field(
        default="gpt-4o-mini",
        description="Model used to score open-ended answers",
    )

    ai_temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Temperature for AI scoring (0.0 = deterministic)",
    )

    ai_timeout_seconds: float = Field(
        default=20.0,
        gt=0.0,
        le=300.0,
        description="Deadline for a single AI scoring call",
    )

    ai_confidence_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="AI scores below this confidence still require human review",
    )

    ai_prepass_enabled: bool = Field(
        default=True,
        description="Run the AI pre-pass on open-ended answers when a key is configured",
    )

    # ==========================================================================
    # Grading Configuration
    # ==========================================================================
    fuzzy_match_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Similarity above which a short free-text answer is accepted",
    )

    high_weight_skills: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("writing", "speaking"),
        description="Skills whose flagged answers are reviewed first",
    )

    pass_percentage: float = Field(
        default=60.0,
        ge=0.0,
        le=100.0,
        description="Minimum attempt percentage counted as a pass",
    )

    # ==========================================================================
    # Storage & Logging
    # ==========================================================================
    database_url: str = Field(
        default="sqlite:///./answer_engine.db",
        description="SQLAlchemy URL of the answer store",
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level for the command line",
    )

    @field_validator("ai_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/")

    @field_validator("high_weight_skills", mode="before")
    @classmethod
    def split_skills(cls, v: Any) -> Any:
        """Accept a comma separated list as well as a JSON array."""
        if isinstance(v, str) and v.strip().startswith("["):
            return tuple(json.loads(v))
        if isinstance(v, str):
            return tuple(s.strip() for s in v.split(",") if s.strip())
        return v

    @field_validator("high_weight_skills")
    @classmethod
    def normalize_skills(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Skills are compared case-insensitively."""
        return tuple(s.lower() for s in v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def ai_enabled(self) -> bool:
        """Whether open-ended answers get an AI pre-pass."""
        return self.ai_prepass_enabled and bool(self.ai_api_key)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
