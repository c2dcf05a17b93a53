"""Settings for the optisync engine.

Retry limits, backoff bounds and circuit-breaker thresholds are operational
knobs: the same client code runs against a local dev server and a
rate-limited production API. ``SyncSettings`` reads them from ``OPTISYNC_*``
environment variables (and ``.env``) so they can change without code edits.

Fields
──────
max_retries               : Retries after the first attempt (total calls ≤ max_retries + 1)
base_delay_ms             : Backoff delay for the first retry
max_delay_ms              : Upper bound on any single backoff delay
jitter                    : Scale each delay by a uniform factor in [0.5, 1.0]
breaker_failure_threshold : Consecutive failures that open a circuit
breaker_recovery_timeout  : Seconds an open circuit waits before a trial call
batch_max_concurrency     : Simultaneous lifecycles in ``submit_batch``
serialize_per_identity    : One lifecycle at a time per (data_type, id)
log_level / json_logs     : structlog configuration
service_name              : ``service`` field on every log line

Example::

    $ export OPTISYNC_MAX_RETRIES=5
    $ export OPTISYNC_BREAKER_RECOVERY_TIMEOUT=30
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Environment-driven configuration for the sync engine."""

    model_config = SettingsConfigDict(
        env_prefix="OPTISYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Retry ────────────────────────────────────────────────────
    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: float = Field(default=1000.0, ge=0)
    max_delay_ms: float = Field(default=10000.0, ge=0)
    jitter: bool = True

    # ── Circuit breaker ──────────────────────────────────────────
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_recovery_timeout: float = Field(default=60.0, ge=0)

    # ── Coordinator ──────────────────────────────────────────────
    batch_max_concurrency: int = Field(default=10, ge=1)
    serialize_per_identity: bool = False

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None
    service_name: str = "optisync"

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> SyncSettings:
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self


@lru_cache(maxsize=1)
def get_settings() -> SyncSettings:
    """Return the process-wide settings instance (loaded once)."""
    return SyncSettings()


__all__ = ["SyncSettings", "get_settings"]
