"""
optisync.core — ambient primitives shared by the sync engine.

Modules
-------
errors      Typed error hierarchy with retry semantics
result      SyncResult / BatchResult envelopes
logging     structlog configuration and helpers
settings    pydantic-settings configuration (OPTISYNC_* env vars)
"""

from optisync.core.errors import (
    AuthError,
    CircuitOpenError,
    ClientError,
    ConflictError,
    ErrorCategory,
    InvalidTransitionError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    SyncError,
    TimeoutError,
    TransientError,
    ValidationError,
)
from optisync.core.logging import LogContext, configure_logging, get_logger
from optisync.core.result import BatchOutcome, BatchResult, FailureReason, SyncResult
from optisync.core.settings import SyncSettings, get_settings

__all__ = [
    # errors
    "ErrorCategory",
    "SyncError",
    "TransientError",
    "NetworkError",
    "TimeoutError",
    "RateLimitError",
    "ServerError",
    "ClientError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "AuthError",
    "CircuitOpenError",
    "InvalidTransitionError",
    # result
    "FailureReason",
    "SyncResult",
    "BatchOutcome",
    "BatchResult",
    # logging
    "configure_logging",
    "get_logger",
    "LogContext",
    # settings
    "SyncSettings",
    "get_settings",
]
