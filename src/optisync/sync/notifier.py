"""Event Notifier — synchronous fan-out of lifecycle events.

Consumers (a UI list, a cache, a test spy) subscribe per data type and are
told as mutations move through their lifecycle::

    applied ──► [retry_scheduled ...] ──► committed
                                     └──► rolled_back

Delivery is synchronous and in subscription order. A listener that raises
is logged and skipped; the remaining listeners still receive the event.
Listeners must tolerate duplicate delivery.

``subscribe("*", listener)`` receives events of every data type, after the
type-specific listeners.

Usage::

    notifier = EventNotifier()
    unsubscribe = notifier.subscribe("notes", lambda e: print(e.event_type))
    notifier.publish("notes", SyncEvent(SyncEventType.APPLIED, "notes", ...))
    unsubscribe()
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from optisync.core.logging import get_logger

logger = get_logger(__name__)

WILDCARD = "*"


class SyncEventType(str, Enum):
    APPLIED = "applied"
    RETRY_SCHEDULED = "retry_scheduled"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class SyncEvent:
    """One lifecycle transition of a mutation.

    Attributes:
        event_type: Which transition happened
        data_type: Type of the affected record
        operation_id: PendingOperation identifier
        record_id: Identity of the affected record (server id on commit)
        kind: create / update / delete
        data: Payload relevant to the transition (speculative value on
            applied, server value on committed, restored value on rolled_back)
        attempt: Attempt number the event refers to
        error: Error message (retry_scheduled, rolled_back)
        delay_ms: Backoff before the next attempt (retry_scheduled)
    """

    event_type: SyncEventType
    data_type: str
    operation_id: str
    record_id: str | None = None
    kind: str | None = None
    data: Any = None
    attempt: int = 0
    error: str | None = None
    delay_ms: float | None = None
    previous_record_id: str | None = None
    timestamp: float = field(default_factory=time.time)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "data_type": self.data_type,
            "operation_id": self.operation_id,
            "record_id": self.record_id,
            "previous_record_id": self.previous_record_id,
            "kind": self.kind,
            "data": self.data,
            "attempt": self.attempt,
            "error": self.error,
            "delay_ms": self.delay_ms,
            "timestamp": self.timestamp,
        }


Listener = Callable[[SyncEvent], Any]


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    data_type: str
    listener: Listener


class EventNotifier:
    """Publish/subscribe registry keyed by data type."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, dict[str, Subscription]] = {}
        self._lock = threading.RLock()

    def subscribe(self, data_type: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for ``data_type`` (or ``"*"``).

        Returns:
            An idempotent ``unsubscribe()`` callable.
        """
        sub = Subscription(
            id=f"sub_{uuid.uuid4().hex[:12]}",
            data_type=data_type,
            listener=listener,
        )
        with self._lock:
            self._subscriptions.setdefault(data_type, {})[sub.id] = sub

        def unsubscribe() -> None:
            self._remove(data_type, sub.id)

        return unsubscribe

    def publish(self, data_type: str, event: SyncEvent) -> int:
        """Deliver ``event`` to every current listener of ``data_type``.

        Returns:
            Number of listeners that handled the event without raising.
        """
        with self._lock:
            targets = list(self._subscriptions.get(data_type, {}).values())
            if data_type != WILDCARD:
                targets += list(self._subscriptions.get(WILDCARD, {}).values())

        delivered = 0
        for sub in targets:
            try:
                sub.listener(event)
            except Exception as e:
                logger.warning(
                    "notifier.listener_failed",
                    subscription_id=sub.id,
                    data_type=data_type,
                    event_type=getattr(getattr(event, "event_type", None), "value", None),
                    error=str(e),
                    exc_info=True,
                )
            else:
                delivered += 1
        return delivered

    def listener_count(self, data_type: str | None = None) -> int:
        with self._lock:
            if data_type is not None:
                return len(self._subscriptions.get(data_type, {}))
            return sum(len(subs) for subs in self._subscriptions.values())

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    def _remove(self, data_type: str, sub_id: str) -> None:
        with self._lock:
            subs = self._subscriptions.get(data_type)
            if subs is None:
                return
            subs.pop(sub_id, None)
            if not subs:
                del self._subscriptions[data_type]


__all__ = [
    "WILDCARD",
    "SyncEventType",
    "SyncEvent",
    "Listener",
    "Subscription",
    "EventNotifier",
]
