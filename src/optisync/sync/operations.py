"""PendingOperation — the unit of work tracked through one mutation.

::

    PendingOperation
      ├── operation_id        ─ unique per submit
      ├── data_type / record_id
      ├── kind                ─ create / update / delete
      ├── speculative_payload ─ value applied before the server answers
      ├── original_snapshot   ─ store state before apply (None for create)
      ├── attempts            ─ remote invocations so far
      └── status              ─ pending → succeeded | rolled_back

Terminal states are final: once ``succeeded`` or ``rolled_back`` the
operation accepts no further attempts or transitions.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from optisync.core.errors import InvalidTransitionError
from optisync.sync.store import DomainRecord


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OperationStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self is not OperationStatus.PENDING


def new_operation_id() -> str:
    return f"op_{uuid.uuid4().hex[:12]}"


@dataclass
class PendingOperation:
    """Lifecycle state of one submitted mutation."""

    data_type: str
    kind: OperationKind
    record_id: str
    speculative_payload: Any
    original_snapshot: DomainRecord[Any] | None = None
    original_position: int | None = None
    circuit_key: str | None = None
    operation_id: str = field(default_factory=new_operation_id)
    status: OperationStatus = OperationStatus.PENDING
    attempts: int = 0
    last_error: BaseException | None = None
    created_at: float = field(default_factory=time.time)
    in_flight: bool = field(default=False, init=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def begin_attempt(self) -> int:
        """Mark a remote invocation as started and return its attempt number."""
        self._require_pending("begin_attempt")
        if self.in_flight:
            raise InvalidTransitionError(
                f"operation {self.operation_id} already has an attempt in flight"
            )
        self.in_flight = True
        self.attempts += 1
        return self.attempts

    def settle_attempt(self, error: BaseException | None = None) -> None:
        """Mark the in-flight invocation as resolved (error=None) or rejected."""
        self.in_flight = False
        if error is not None:
            self.last_error = error

    def mark_succeeded(self) -> None:
        self._require_pending("mark_succeeded")
        self.status = OperationStatus.SUCCEEDED

    def mark_rolled_back(self, error: BaseException | None = None) -> None:
        self._require_pending("mark_rolled_back")
        if error is not None:
            self.last_error = error
        self.in_flight = False
        self.status = OperationStatus.ROLLED_BACK

    def _require_pending(self, action: str) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"cannot {action}: operation {self.operation_id} is {self.status.value}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "data_type": self.data_type,
            "record_id": self.record_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "circuit_key": self.circuit_key,
            "in_flight": self.in_flight,
            "created_at": self.created_at,
            "last_error": str(self.last_error) if self.last_error is not None else None,
        }


__all__ = [
    "OperationKind",
    "OperationStatus",
    "PendingOperation",
    "new_operation_id",
]
