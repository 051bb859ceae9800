# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for stage endpoints, budgets, retry policy,
storage backend, single-flight guard and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === STAGES ===
    stage_base_url: str = "http://localhost:54321/functions/v1"
    stage_api_key: str = ""
    stage_timeout_s: float = 30.0
    stage_extraction_endpoint: str = "research-agent"
    stage_normalization_endpoint: str = "resolver-agent"
    stage_validation_endpoint: str = "critic-agent"
    stage_policy_endpoint: str = "arbiter-agent"

    # === Budget ===
    pipeline_max_stage_calls: int = 5
    pipeline_max_latency_ms: int = 60_000

    # === Retry ===
    retry_max_retries: int = 5
    retry_base_delay_s: float = 1.0
    retry_backoff_factor: float = 2.0
    retry_jitter: bool = False

    # === Input bounds ===
    min_document_chars: int = 20
    max_document_chars: int = 1_000_000

    # === Auth / rate limit ===
    api_key: str = ""
    rate_limit_enabled: bool = False
    rate_limit_requests: int = 10
    rate_limit_window_s: int = 60
    rate_limit_backend: Literal["memory", "redis"] = "memory"
    rate_limit_redis_url: str = ""

    # === Run ledger ===
    ledger_backend: Literal["sqlite", "memory"] = "sqlite"
    ledger_path: Path = Path("~/.factgraph/ledger.db")

    # === Single-flight guard ===
    guard_lock_key: str = "pipeline:coordinator"
    guard_lease_ttl_s: int = 900
    reaper_timeout_minutes: int = 10

    # === Chunking ===
    chunk_size_words: int = 400
    chunk_overlap_words: int = 50

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5

    # --- Validators ---

    @field_validator("chunk_overlap_words")
    @classmethod
    def validate_chunk_overlap(cls, v: int) -> int:  # noqa: N805
        if v < 0:
            raise ValueError("chunk_overlap_words must be >= 0")
        return v

    @field_validator("pipeline_max_stage_calls", "pipeline_max_latency_ms")
    @classmethod
    def validate_budget(cls, v: int) -> int:  # noqa: N805
        if v <= 0:
            raise ValueError("budget limits must be > 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.chunk_overlap_words >= self.chunk_size_words:
            errors.append("CHUNK_OVERLAP_WORDS must be < CHUNK_SIZE_WORDS")

        if self.min_document_chars >= self.max_document_chars:
            errors.append("MIN_DOCUMENT_CHARS must be < MAX_DOCUMENT_CHARS")

        if self.rate_limit_backend == "redis" and not self.rate_limit_redis_url:
            errors.append("RATE_LIMIT_BACKEND=redis requires RATE_LIMIT_REDIS_URL")

        if self.guard_lease_ttl_s * 1000 < self.pipeline_max_latency_ms:
            errors.append(
                "GUARD_LEASE_TTL_S must cover PIPELINE_MAX_LATENCY_MS"
            )

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def stage_endpoints(self) -> dict[str, str]:
        """Endpoint path per stage name."""
        return {
            "extraction": self.stage_extraction_endpoint,
            "normalization": self.stage_normalization_endpoint,
            "validation": self.stage_validation_endpoint,
            "policy": self.stage_policy_endpoint,
        }


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
