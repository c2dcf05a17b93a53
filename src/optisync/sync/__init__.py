"""optisync.sync — the resilient optimistic synchronization engine.

MODULE MAP (recommended reading order)
──────────────────────────────────────
 1. store.py            ─ RecordStore, DomainRecord
 2. circuit_breaker.py  ─ CircuitBreaker, CircuitBreakerRegistry
 3. retry.py            ─ RetryConfig, is_retryable, compute_delay
 4. notifier.py         ─ EventNotifier, SyncEvent
 5. operations.py       ─ PendingOperation state machine
 6. coordinator.py      ─ OptimisticSyncCoordinator (THE public API)
"""

from optisync.sync.circuit_breaker import (
    BreakerStats,
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from optisync.sync.coordinator import (
    BatchOperation,
    DataTypeSync,
    OptimisticSyncCoordinator,
    default_identity,
)
from optisync.sync.notifier import EventNotifier, SyncEvent, SyncEventType
from optisync.sync.operations import OperationKind, OperationStatus, PendingOperation
from optisync.sync.retry import RetryConfig, categorize, compute_delay, is_retryable
from optisync.sync.store import DomainRecord, RecordStore

__all__ = [
    "RecordStore",
    "DomainRecord",
    "CircuitState",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "BreakerStats",
    "RetryConfig",
    "categorize",
    "compute_delay",
    "is_retryable",
    "EventNotifier",
    "SyncEvent",
    "SyncEventType",
    "OperationKind",
    "OperationStatus",
    "PendingOperation",
    "OptimisticSyncCoordinator",
    "DataTypeSync",
    "BatchOperation",
    "default_identity",
]
