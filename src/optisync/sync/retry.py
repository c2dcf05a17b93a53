"""Retry Scheduler — retryability classification and backoff delays.

Two pure decisions the coordinator makes after a failed remote call:

1. ``is_retryable(error)`` ─ can another attempt possibly succeed?
2. ``compute_delay(index, config)`` ─ how long to wait before it?

Classification prefers structure over wording. Errors that carry their own
verdict (``SyncError.retryable``, an HTTP status) are trusted first; message
patterns are the fallback for opaque errors from legacy callers. Anything
that matches nothing is treated as terminal.

Backoff::

    delay_ms = min(max_delay_ms, base_delay_ms * 2 ** index) * jitter_factor
    jitter_factor ~ U[0.5, 1.0]          (1.0 when jitter is disabled)

``index`` is zero-based: the first retry waits ``compute_delay(0, ...)``.

Example:
    >>> config = RetryConfig(max_retries=3, base_delay_ms=100, max_delay_ms=1000, jitter=False)
    >>> [compute_delay(i, config) for i in range(5)]
    [100.0, 200.0, 400.0, 800.0, 1000.0]
    >>> is_retryable(ConnectionResetError("peer reset"))
    True
    >>> is_retryable(Exception("permission denied"))
    False
"""

from __future__ import annotations

import asyncio
import random
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from optisync.core.errors import ErrorCategory, SyncError

RetryPredicate = Callable[[BaseException], bool]


@dataclass(frozen=True)
class RetryConfig:
    """Retry limits and backoff bounds for one mutation.

    Attributes:
        max_retries: Retries after the first attempt (total calls ≤ max_retries + 1)
        base_delay_ms: Delay before the first retry
        max_delay_ms: Cap on any single delay (applied before jitter)
        jitter: Scale delays by a uniform factor in [0.5, 1.0]
        retry_if: Optional predicate that replaces the default classifier
    """

    max_retries: int = 3
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 10000.0
    jitter: bool = True
    retry_if: RetryPredicate | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be non-negative")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> RetryConfig:
        values = {
            "max_retries": settings.max_retries,
            "base_delay_ms": settings.base_delay_ms,
            "max_delay_ms": settings.max_delay_ms,
            "jitter": settings.jitter,
        }
        values.update(overrides)
        return cls(**values)

    def should_retry(self, attempts: int, error: BaseException) -> bool:
        """Whether attempt number ``attempts + 1`` may be made after ``error``."""
        if attempts - 1 >= self.max_retries:
            return False
        return is_retryable(error, self.retry_if)


# =============================================================================
# CLASSIFICATION
# =============================================================================


_NON_RETRYABLE_PATTERNS: list[tuple[re.Pattern[str], ErrorCategory]] = [
    (re.compile(r"invalid email", re.I), ErrorCategory.VALIDATION),
    (re.compile(r"validation", re.I), ErrorCategory.VALIDATION),
    (re.compile(r"bad request", re.I), ErrorCategory.VALIDATION),
    (re.compile(r"already exists", re.I), ErrorCategory.CONFLICT),
    (re.compile(r"duplicate", re.I), ErrorCategory.CONFLICT),
    (re.compile(r"conflict", re.I), ErrorCategory.CONFLICT),
    (re.compile(r"not found", re.I), ErrorCategory.NOT_FOUND),
    (re.compile(r"permission denied", re.I), ErrorCategory.AUTH),
    (re.compile(r"unauthori[sz]ed", re.I), ErrorCategory.AUTH),
    (re.compile(r"forbidden", re.I), ErrorCategory.AUTH),
]

_RETRYABLE_PATTERNS: list[tuple[re.Pattern[str], ErrorCategory]] = [
    (re.compile(r"rate limit", re.I), ErrorCategory.RATE_LIMIT),
    (re.compile(r"too many requests", re.I), ErrorCategory.RATE_LIMIT),
    (re.compile(r"timed? ?out", re.I), ErrorCategory.TIMEOUT),
    (re.compile(r"network", re.I), ErrorCategory.NETWORK),
    (re.compile(r"connection", re.I), ErrorCategory.NETWORK),
    (re.compile(r"temporar", re.I), ErrorCategory.SERVER),
    (re.compile(r"service unavailable", re.I), ErrorCategory.SERVER),
    (re.compile(r"internal server error", re.I), ErrorCategory.SERVER),
    (re.compile(r"\b50[234]\b"), ErrorCategory.SERVER),
]


def _status_code(error: BaseException) -> int | None:
    """HTTP status carried by the error or its ``response``, if any."""
    for holder in (error, getattr(error, "response", None)):
        if holder is None:
            continue
        for attr in ("status_code", "status"):
            value = getattr(holder, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None


def _category_for_status(status: int) -> ErrorCategory | None:
    if status == 429:
        return ErrorCategory.RATE_LIMIT
    if status in (408, 425):
        return ErrorCategory.TIMEOUT
    if 500 <= status <= 599:
        return ErrorCategory.SERVER
    if status in (401, 403):
        return ErrorCategory.AUTH
    if status == 404:
        return ErrorCategory.NOT_FOUND
    if status == 409:
        return ErrorCategory.CONFLICT
    if 400 <= status <= 499:
        return ErrorCategory.VALIDATION
    return None


def categorize(error: BaseException) -> ErrorCategory:
    """Map any exception to an ErrorCategory.

    Order: SyncError category → HTTP status → built-in transport exception
    types → message patterns (terminal patterns first) → UNKNOWN.
    """
    if isinstance(error, SyncError):
        return error.category

    status = _status_code(error)
    if status is not None:
        category = _category_for_status(status)
        if category is not None:
            return category

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorCategory.NETWORK

    message = str(error)
    for pattern, category in _NON_RETRYABLE_PATTERNS:
        if pattern.search(message):
            return category
    for pattern, category in _RETRYABLE_PATTERNS:
        if pattern.search(message):
            return category

    return ErrorCategory.UNKNOWN


def is_retryable(error: BaseException, predicate: RetryPredicate | None = None) -> bool:
    """Decide whether a failed remote call is worth another attempt.

    Args:
        error: The failure raised by the remote operation
        predicate: Caller-supplied classifier; overrides the default entirely

    Returns:
        True for transient categories (network, timeout, rate limit, 5xx);
        False for client errors, circuit-open and anything unclassified.
    """
    if predicate is not None:
        return bool(predicate(error))
    if isinstance(error, SyncError):
        return error.retryable
    return categorize(error).retryable


# =============================================================================
# BACKOFF
# =============================================================================


def compute_delay(
    attempt_index: int,
    config: RetryConfig,
    rng: random.Random | None = None,
) -> float:
    """Backoff delay in milliseconds before retry number ``attempt_index + 1``.

    The un-jittered delay is non-decreasing in ``attempt_index`` and never
    exceeds ``config.max_delay_ms``; jitter only ever scales it down.
    """
    if attempt_index < 0:
        raise ValueError("attempt_index must be >= 0")

    # Cap the exponent so huge indices don't overflow float math.
    exponent = min(attempt_index, 62)
    delay = min(config.max_delay_ms, config.base_delay_ms * (2 ** exponent))

    if config.jitter:
        delay *= (rng or random).uniform(0.5, 1.0)

    return float(delay)


__all__ = [
    "RetryConfig",
    "RetryPredicate",
    "categorize",
    "is_retryable",
    "compute_delay",
]
