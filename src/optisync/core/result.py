"""
Result envelopes for sync operations.

The coordinator never raises past its public surface for remote failures.
Every mutation resolves to a ``SyncResult`` and every batch to a
``BatchResult``, so callers handle success and failure explicitly and a
batch with one bad item still reports on the others.

A failed result always says *why* it failed, which is what a caller needs
to tell these apart:

- ``NON_RETRYABLE``     ─ remote failed with a terminal error, never retried
- ``RETRIES_EXHAUSTED`` ─ transient failures until ``max_retries`` ran out
- ``CIRCUIT_OPEN``      ─ breaker rejected the attempt (possibly the first)
- ``CANCELLED``         ─ the awaiting task was cancelled mid-flight

Examples:
    >>> result = SyncResult.ok({"id": "n-1"}, attempts=1, operation_id="op-1")
    >>> result.success, result.attempts
    (True, 1)
    >>> result.to_dict()["data"]
    {'id': 'n-1'}

    >>> failed = SyncResult.fail(
    ...     "permission denied",
    ...     error_code="AUTH",
    ...     failure_reason=FailureReason.NON_RETRYABLE,
    ...     attempts=1,
    ... )
    >>> failed.retried
    False
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class FailureReason(str, Enum):
    """Why a mutation ended in rollback."""

    NON_RETRYABLE = "non_retryable"
    RETRIES_EXHAUSTED = "retries_exhausted"
    CIRCUIT_OPEN = "circuit_open"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class SyncResult(Generic[T]):
    """Outcome of one optimistic mutation.

    Attributes:
        success: True when the remote operation committed
        data: Server-returned value on success (None for deletes)
        error: Human-readable terminal error message on failure
        error_code: Error category/code of the terminal error
        failure_reason: Why the mutation rolled back
        attempts: Remote invocations made (0 when the breaker short-circuited)
        operation_id: Identifier of the PendingOperation
        record_id: Identity of the affected record
        status: Terminal PendingOperation status value
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    failure_reason: FailureReason | None = None
    attempts: int = 0
    operation_id: str | None = None
    record_id: str | None = None
    status: str | None = None

    @classmethod
    def ok(cls, data: T | None = None, **kwargs: Any) -> SyncResult[T]:
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def fail(cls, error: str, **kwargs: Any) -> SyncResult[T]:
        return cls(success=False, error=error, **kwargs)

    @property
    def retried(self) -> bool:
        """True when more than one remote invocation was made."""
        return self.attempts > 1

    @property
    def circuit_open(self) -> bool:
        return self.failure_reason is FailureReason.CIRCUIT_OPEN

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logs / API responses, omitting empty fields."""
        out: dict[str, Any] = {"success": self.success, "attempts": self.attempts}
        for key in ("data", "error", "error_code", "operation_id", "record_id", "status"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        if self.failure_reason is not None:
            out["failure_reason"] = self.failure_reason.value
        return out


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    """One item of a batch, tagged with its identity."""

    operation_id: str
    data_type: str
    record_id: str | None
    result: SyncResult[Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "data_type": self.data_type,
            "record_id": self.record_id,
            **self.result.to_dict(),
        }


@dataclass
class BatchResult:
    """Aggregate of independently-run batch items."""

    successful: list[BatchOutcome] = field(default_factory=list)
    failed: list[BatchOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": [o.to_dict() for o in self.successful],
            "failed": [o.to_dict() for o in self.failed],
        }


__all__ = ["FailureReason", "SyncResult", "BatchOutcome", "BatchResult"]
