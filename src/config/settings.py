# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for scheduling, caching, persistence and logging
options. Durations are configured in milliseconds; the *_s properties give
seconds for the runtime components.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from quicksight.core.errors import PrefetchError


class ConfigurationError(PrefetchError):
    """Raised when configuration is internally inconsistent."""

    kind = "configuration"


def _default_weights() -> dict[str, float]:
    return {"distance": 100.0, "popularity": 50.0, "recency": 30.0}


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Scheduling ===
    max_concurrent_requests: int = 3
    fetch_timeout_ms: int = 30_000
    prefetch_batch_limit: int = 12
    min_visible_fraction: float = 0.1
    prefetch_mode: Literal["fast", "normal", "extended"] = "fast"
    on_demand_mode: Literal["fast", "normal", "extended"] = "normal"

    # === Priority ===
    priority_weights: dict[str, float] = Field(default_factory=_default_weights)

    # === Cache ===
    cache_capacity: int = 100
    default_ttl_ms: int = 3_600_000
    sweep_interval_ms: int = 300_000

    # === Persistence ===
    persistence_backend: Literal["none", "json", "sqlite"] = "none"
    persistence_root: Path = Path("~/.quicksight/cache")

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator(
        "max_concurrent_requests",
        "fetch_timeout_ms",
        "prefetch_batch_limit",
        "cache_capacity",
        "default_ttl_ms",
        "sweep_interval_ms",
    )
    @classmethod
    def validate_positive(cls, v: int, info) -> int:  # noqa: N805
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    @field_validator("priority_weights")
    @classmethod
    def validate_weights(cls, v: dict[str, float]) -> dict[str, float]:  # noqa: N805
        negative = sorted(name for name, w in v.items() if w < 0)
        if negative:
            raise ValueError(f"priority weights must be >= 0: {', '.join(negative)}")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.priority_weights.get("distance", 0.0) <= 0.0:
            errors.append("PRIORITY_WEIGHTS must give 'distance' a positive weight")

        if not 0.0 <= self.min_visible_fraction <= 1.0:
            errors.append("MIN_VISIBLE_FRACTION must be within [0, 1]")

        if self.prefetch_batch_limit > self.cache_capacity:
            errors.append("PREFETCH_BATCH_LIMIT must not exceed CACHE_CAPACITY")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def default_ttl_s(self) -> float:
        return self.default_ttl_ms / 1000.0

    @property
    def fetch_timeout_s(self) -> float:
        return self.fetch_timeout_ms / 1000.0

    @property
    def sweep_interval_s(self) -> float:
        return self.sweep_interval_ms / 1000.0


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or embedding).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
