"""
Structured error types for optisync.

Remote operations fail in many ways: a dropped connection, a 503 from an
overloaded server, a validation error on the payload, a duplicate key. The
sync engine has to decide, for each failure, whether another attempt can
possibly succeed. Plain exceptions only carry a message, and matching on
message text breaks as soon as the wording or the locale changes.

SyncError and its subclasses carry the decision with them:

- **Category:** What kind of failure (network, server, validation, ...)
- **Retryable:** Whether the same call may succeed after a delay
- **Code:** Stable machine-readable identifier (the category value by default)
- **Retry-after:** Optional server hint in seconds
- **Context:** Free-form metadata for logs (endpoint, record id, ...)
- **Cause:** Chained underlying exception

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                        SyncError                             │
        │      (category, retryable, code, retry_after, context)       │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  TransientError          ClientError          CircuitOpenError│
        │  (retryable=True)        (retryable=False)    (CIRCUIT_OPEN) │
        │       │                       │                              │
        │  NetworkError            ValidationError                     │
        │  TimeoutError            ConflictError                       │
        │  RateLimitError          NotFoundError                       │
        │  ServerError             AuthError                           │
        │                                                              │
        │  InvalidTransitionError  (INTERNAL, programming error)       │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> error = NetworkError("connection reset by peer")
    >>> error.retryable
    True
    >>> error.category
    <ErrorCategory.NETWORK: 'NETWORK'>

    >>> error = ConflictError("invoice number already exists")
    >>> error.retryable
    False
    >>> error.to_dict()["code"]
    'CONFLICT'

Usage:
    from optisync.core.errors import NetworkError, ValidationError

    async def save_note():
        try:
            response = await client.post("/notes", json=payload)
        except httpx.ConnectError as e:
            raise NetworkError("notes API unreachable", cause=e)
        if response.status_code == 422:
            raise ValidationError(response.json()["detail"])
        return response.json()
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories used for retry decisions and result reporting.

    Retryable categories: NETWORK, TIMEOUT, RATE_LIMIT, SERVER.
    Everything else is terminal for the operation that raised it.
    """

    # Transient (retryable)
    NETWORK = "NETWORK"           # Connection refused/reset, DNS
    TIMEOUT = "TIMEOUT"           # Request or read timeout
    RATE_LIMIT = "RATE_LIMIT"     # 429, quota exhausted
    SERVER = "SERVER"             # 5xx

    # Terminal client errors
    VALIDATION = "VALIDATION"     # Bad payload, 400/422
    CONFLICT = "CONFLICT"         # Duplicate resource, 409
    NOT_FOUND = "NOT_FOUND"       # 404
    AUTH = "AUTH"                 # 401/403, permission denied

    # Synthetic
    CIRCUIT_OPEN = "CIRCUIT_OPEN"  # Call never dispatched

    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Unclassified

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_CATEGORIES


RETRYABLE_CATEGORIES = frozenset(
    {
        ErrorCategory.NETWORK,
        ErrorCategory.TIMEOUT,
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.SERVER,
    }
)


class SyncError(Exception):
    """
    Base exception for all optisync errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance when a remote operation knows better.

    Attributes:
        message: Human-readable message (also ``str(error)``)
        category: ErrorCategory for classification
        retryable: Whether the operation may be retried
        code: Stable error code, defaults to the category value
        retry_after: Optional server-suggested wait in seconds
        context: Extra metadata for logging
        cause: Underlying exception, also set as ``__cause__``
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        code: str | None = None,
        retry_after: float | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = self.default_category if category is None else category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.code = code or self.category.value
        self.retry_after = retry_after
        self.context: dict[str, Any] = {**(context or {})}
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SyncError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Log-friendly view; optional fields appear only when set."""
        data: dict[str, Any] = dict(
            error_type=type(self).__name__,
            message=self.message,
            category=self.category.value,
            code=self.code,
            retryable=self.retryable,
        )
        optional = {
            "retry_after": self.retry_after,
            "context": dict(self.context) or None,
            "cause": None if self.cause is None else str(self.cause),
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Retryable)
# =============================================================================


class TransientError(SyncError):
    """
    Temporary failure that may succeed on retry.

    Use when the same call, made again after a delay, has a reasonable chance
    of succeeding: dropped connections, timeouts, throttling, 5xx responses.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Connection-level failure."""

    default_category = ErrorCategory.NETWORK


class TimeoutError(TransientError):
    """Remote call timed out."""

    default_category = ErrorCategory.TIMEOUT


class RateLimitError(TransientError):
    """Remote side is throttling requests."""

    default_category = ErrorCategory.RATE_LIMIT

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)


class ServerError(TransientError):
    """5xx-class server failure."""

    default_category = ErrorCategory.SERVER

    def __init__(self, message: str, *, status_code: int = 500, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code


# =============================================================================
# CLIENT ERRORS (Never retryable)
# =============================================================================


class ClientError(SyncError):
    """
    The request itself is wrong; repeating it cannot help.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class ValidationError(ClientError):
    """Payload rejected by the remote validator."""

    default_category = ErrorCategory.VALIDATION


class ConflictError(ClientError):
    """Duplicate resource or version conflict."""

    default_category = ErrorCategory.CONFLICT


class NotFoundError(ClientError):
    """Target entity does not exist remotely."""

    default_category = ErrorCategory.NOT_FOUND


class AuthError(ClientError):
    """Authentication or authorization failure."""

    default_category = ErrorCategory.AUTH


# =============================================================================
# SYNTHETIC / INTERNAL
# =============================================================================


class CircuitOpenError(SyncError):
    """
    Raised in place of a remote call when the circuit breaker is open.

    Distinct from a real remote failure: the remote operation was never
    invoked for the attempt that produced this error.
    """

    default_category = ErrorCategory.CIRCUIT_OPEN
    default_retryable = False

    def __init__(self, circuit_key: str, message: str | None = None, **kwargs: Any):
        super().__init__(
            message or f"Circuit '{circuit_key}' is open - too many recent failures",
            **kwargs,
        )
        self.circuit_key = circuit_key
        self.context.setdefault("circuit_key", circuit_key)


class InvalidTransitionError(SyncError):
    """A PendingOperation was asked to leave a terminal state."""

    default_category = ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "RETRYABLE_CATEGORIES",
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
]
