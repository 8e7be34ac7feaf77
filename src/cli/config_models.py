"""Pydantic configuration models for the learning engine."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class PathsConfig(BaseModel):
    """File paths configuration."""

    db_path: Path = Path("~/.scribe/learning.db")
    log_file: Path = Path("~/.scribe/learning.log")

    @model_validator(mode="after")
    def expand_paths(self):
        """Expand ~ in all paths."""
        self.db_path = self.db_path.expanduser()
        self.log_file = self.log_file.expanduser()
        return self


class LearningConfig(BaseModel):
    """Pattern extraction, scoring and application."""

    half_life_days: float = 30.0
    min_occurrences: int = 3
    min_confidence: float = 0.5
    max_pattern_tokens: int = 6
    scope_patterns_to_mode: bool = True
    excluded_contexts: list[str] = Field(default_factory=list)

    @field_validator("half_life_days")
    @classmethod
    def validate_half_life(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"half_life_days must be positive, got {v}")
        return v

    @field_validator("min_confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"min_confidence must be 0-1, got {v}")
        return v

    @field_validator("min_occurrences", "max_pattern_tokens")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be at least 1, got {v}")
        return v


class ABConfig(BaseModel):
    """A/B preference sampling."""

    enabled: bool = True
    sample_budget: int = 50
    max_words: int = 20

    @field_validator("sample_budget")
    @classmethod
    def validate_budget(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"sample_budget must be >= 0, got {v}")
        return v


class ProfileConfig(BaseModel):
    """Stylistic preference profile."""

    style_threshold: float = 0.5
    min_samples: int = 5
    ab_signal_weight: float = 0.5
    apply_adjustments: bool = True

    @field_validator("style_threshold", "ab_signal_weight")
    @classmethod
    def validate_unit(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"must be 0-1, got {v}")
        return v


class SyncConfig(BaseModel):
    """Remote sync. Disabled unless a remote URL is configured."""

    enabled: bool = False
    remote_url: Optional[str] = None
    api_key: Optional[str] = None
    initial_backoff: float = 1.0
    max_backoff: float = 60.0
    max_retries: int = 8
    drain_interval: float = 30.0
    pull_interval: float = 300.0
    request_timeout: float = 10.0
    request_attempts: int = 2

    @model_validator(mode="after")
    def validate_remote(self):
        if self.enabled and not self.remote_url:
            raise ValueError("sync.enabled requires sync.remote_url")
        if self.max_backoff < self.initial_backoff:
            raise ValueError("sync.max_backoff must be >= sync.initial_backoff")
        return self


VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file_level: str = "DEBUG"
    json_format: bool = False

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Must be one of {VALID_LOG_LEVELS}")
        return v_upper


class EngineConfig(BaseModel):
    """Main configuration model."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    ab: ABConfig = Field(default_factory=ABConfig)
    profile: ProfileConfig = Field(default_factory=ProfileConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def expand_env_vars(self):
        """Expand ${VAR} patterns in the sync API key."""
        key = self.sync.api_key
        if key and key.startswith("${") and key.endswith("}"):
            self.sync.api_key = os.getenv(key[2:-1], "")
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        return self.model_dump(mode="python")
