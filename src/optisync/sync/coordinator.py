"""Optimistic Mutation Coordinator — apply now, confirm later, undo on failure.

WHY
───
A client that waits for the server before showing a change feels slow; a
client that shows the change and forgets about it lies when the server says
no. The coordinator applies each mutation to the local RecordStore
immediately, drives the remote call through retries and the circuit
breaker, and then either commits the server's value or restores the exact
pre-mutation snapshot.

ARCHITECTURE
────────────
::

    submit(data_type, kind, payload, remote_operation)
      │
      ├─ snapshot ◄── RecordStore.get          (skipped for create)
      ├─ apply    ──► RecordStore.upsert/remove ──► notifier: applied
      │
      └─ loop ───────────────────────────────────────────────────────┐
           CircuitBreakerRegistry.is_open(key)? ── yes ──► rollback  │
           await remote_operation()                                  │
             ├─ ok   ──► record_success ──► commit ──► committed     │
             └─ fail ──► record_failure                              │
                   retryable and retries left?                       │
                     ├─ yes ──► retry_scheduled ──► sleep(delay) ────┘
                     └─ no  ──► rollback ──► rolled_back

Every path ends in a terminal status and a SyncResult; the store never keeps
a speculative value for an operation that has given up.

Related modules:
    store.py            ─ RecordStore (shared mutable state)
    circuit_breaker.py  ─ CircuitBreakerRegistry (shared mutable state)
    retry.py            ─ is_retryable / compute_delay
    notifier.py         ─ EventNotifier
    operations.py       ─ PendingOperation state machine

Example::

    coordinator = OptimisticSyncCoordinator()
    notes = coordinator.for_type("notes")

    result = await notes.optimistic_create(
        {"title": "Call vendor"},
        lambda: api.create_note({"title": "Call vendor"}),
    )
    if not result.success:
        print(result.error, result.failure_reason, result.attempts)
"""

from __future__ import annotations

import asyncio
import inspect
import random
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from optisync.core.errors import CircuitOpenError, ErrorCategory, SyncError
from optisync.core.logging import LogContext, get_logger
from optisync.core.result import BatchOutcome, BatchResult, FailureReason, SyncResult
from optisync.core.settings import SyncSettings, get_settings
from optisync.sync.circuit_breaker import CircuitBreakerRegistry
from optisync.sync.notifier import EventNotifier, Listener, SyncEvent, SyncEventType
from optisync.sync.operations import (
    OperationKind,
    OperationStatus,
    PendingOperation,
    new_operation_id,
)
from optisync.sync.retry import RetryConfig, categorize, compute_delay, is_retryable
from optisync.sync.store import DomainRecord, RecordStore

logger = get_logger(__name__)

RemoteOperation = Callable[[], Awaitable[Any] | Any]
IdentityResolver = Callable[[Any], str | None]
Sleep = Callable[[float], Awaitable[Any]]


def default_identity(payload: Any) -> str | None:
    """Read ``id`` or ``_id`` from a mapping or an object."""
    if payload is None:
        return None
    for attr in ("id", "_id"):
        if isinstance(payload, Mapping):
            value = payload.get(attr)
        else:
            value = getattr(payload, attr, None)
        if value is not None and value != "":
            return str(value)
    return None


def _error_message(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


def _error_code(error: BaseException) -> str:
    if isinstance(error, SyncError):
        return error.code
    return categorize(error).value


@dataclass
class BatchOperation:
    """One mutation inside ``submit_batch``."""

    data_type: str
    kind: OperationKind | str
    payload: Any
    remote_operation: RemoteOperation
    record_id: str | None = None
    circuit_key: str | None = None
    retry_config: RetryConfig | None = None
    operation_id: str | None = None
    original_data: Any = None


class OptimisticSyncCoordinator:
    """Runs optimistic mutations against one authoritative remote source.

    Parameters
    ----------
    store : RecordStore, optional
        Local mirror to mutate. A fresh store is created if omitted.
    breakers : CircuitBreakerRegistry, optional
        Breaker state owned by this coordinator (never a global).
    notifier : EventNotifier, optional
        Receives applied / retry_scheduled / committed / rolled_back.
    retry_config : RetryConfig, optional
        Default retry policy; ``submit`` may override per call.
    settings : SyncSettings, optional
        Source of defaults for anything not passed explicitly.
    sleep : coroutine function, optional
        Backoff wait in seconds (default ``asyncio.sleep``).
    rng : random.Random, optional
        Jitter source.
    identity : callable, optional
        Extracts a record id from a payload or server value.
    """

    def __init__(
        self,
        store: RecordStore[Any] | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        notifier: EventNotifier | None = None,
        retry_config: RetryConfig | None = None,
        *,
        settings: SyncSettings | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
        identity: IdentityResolver = default_identity,
        serialize_per_identity: bool | None = None,
        batch_max_concurrency: int | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.store: RecordStore[Any] = store if store is not None else RecordStore()
        self.breakers = breakers or CircuitBreakerRegistry.from_settings(settings)
        self.notifier = notifier or EventNotifier()
        self.retry_config = retry_config or RetryConfig.from_settings(settings)
        self._sleep = sleep
        self._rng = rng
        self._identity = identity
        self._serialize = (
            settings.serialize_per_identity
            if serialize_per_identity is None
            else serialize_per_identity
        )
        self._batch_max_concurrency = batch_max_concurrency or settings.batch_max_concurrency
        self._pending: dict[str, PendingOperation] = {}
        self._identity_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._identity_waiters: dict[tuple[str, str], int] = {}

    # ── Public surface ───────────────────────────────────────────────

    async def submit(
        self,
        data_type: str,
        kind: OperationKind | str,
        payload: Any,
        remote_operation: RemoteOperation,
        *,
        record_id: str | None = None,
        circuit_key: str | None = None,
        retry_config: RetryConfig | None = None,
        operation_id: str | None = None,
        original_data: Any = None,
    ) -> SyncResult[Any]:
        """Apply ``payload`` optimistically and reconcile with the remote.

        Args:
            data_type: Record type tag (e.g. ``"notes"``)
            kind: create / update / delete
            payload: Speculative value (for delete, the record being deleted)
            remote_operation: Zero-argument callable returning the server value
                (awaitable or plain)
            record_id: Explicit identity; otherwise read from ``payload``
            circuit_key: Breaker key; defaults to ``data_type``
            retry_config: Per-call retry policy
            operation_id: Caller-chosen id; generated if omitted
            original_data: Snapshot to restore if the store holds no record

        Returns:
            SyncResult with the committed server value or the terminal error.
            An update/delete without a resolvable record id fails with
            ``error_code="INTERNAL"`` and zero attempts; nothing is applied.

        Raises:
            ValueError: ``kind`` is not a known OperationKind.
        """
        kind = OperationKind(kind)
        operation_id = operation_id or new_operation_id()
        try:
            resolved_id = record_id or self._identity(payload)
        except Exception as e:
            return self._reject(
                data_type, kind, operation_id, f"identity resolution failed: {_error_message(e)}"
            )
        if resolved_id is None:
            if kind is not OperationKind.CREATE:
                message = f"{kind.value} on {data_type!r} requires a record id"
                return self._reject(data_type, kind, operation_id, message)
            resolved_id = f"tmp-{uuid.uuid4().hex[:12]}"

        op = PendingOperation(
            data_type=data_type,
            kind=kind,
            record_id=resolved_id,
            speculative_payload=payload,
            circuit_key=circuit_key or data_type,
            operation_id=operation_id,
        )
        config = retry_config or self.retry_config

        async with LogContext(operation_id=op.operation_id, data_type=data_type):
            if self._serialize and kind is not OperationKind.CREATE:
                async with self._identity_lock(data_type, resolved_id):
                    return await self._run(op, remote_operation, config, original_data)
            return await self._run(op, remote_operation, config, original_data)

    async def optimistic_create(
        self, data_type: str, data: Any, remote_operation: RemoteOperation, **kwargs: Any
    ) -> SyncResult[Any]:
        return await self.submit(data_type, OperationKind.CREATE, data, remote_operation, **kwargs)

    async def optimistic_update(
        self,
        data_type: str,
        record_id: str,
        data: Any,
        remote_operation: RemoteOperation,
        original_data: Any = None,
        **kwargs: Any,
    ) -> SyncResult[Any]:
        return await self.submit(
            data_type,
            OperationKind.UPDATE,
            data,
            remote_operation,
            record_id=record_id,
            original_data=original_data,
            **kwargs,
        )

    async def optimistic_delete(
        self,
        data_type: str,
        record_id: str,
        data: Any,
        remote_operation: RemoteOperation,
        **kwargs: Any,
    ) -> SyncResult[None]:
        return await self.submit(
            data_type,
            OperationKind.DELETE,
            data,
            remote_operation,
            record_id=record_id,
            original_data=data,
            **kwargs,
        )

    async def submit_batch(self, operations: Iterable[BatchOperation]) -> BatchResult:
        """Run each operation's lifecycle concurrently and independently.

        One item's failure (or even an unexpected exception) never affects
        another's outcome. Outcomes keep submission order.
        """
        items = list(operations)
        operation_ids = [item.operation_id or new_operation_id() for item in items]

        sem = asyncio.Semaphore(self._batch_max_concurrency)
        logger.info("batch.start", items=len(items), max_concurrency=self._batch_max_concurrency)

        async def _run_one(item: BatchOperation, operation_id: str) -> SyncResult[Any]:
            async with sem:
                return await self.submit(
                    item.data_type,
                    item.kind,
                    item.payload,
                    item.remote_operation,
                    record_id=item.record_id,
                    circuit_key=item.circuit_key,
                    retry_config=item.retry_config,
                    operation_id=operation_id,
                    original_data=item.original_data,
                )

        results = await asyncio.gather(
            *[_run_one(item, op_id) for item, op_id in zip(items, operation_ids)],
            return_exceptions=True,
        )

        batch = BatchResult()
        for item, operation_id, result in zip(items, operation_ids, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(
                    "batch.item_error",
                    operation_id=operation_id,
                    data_type=item.data_type,
                    error=_error_message(result),
                )
                result = SyncResult.fail(
                    _error_message(result),
                    error_code=ErrorCategory.INTERNAL.value,
                    failure_reason=FailureReason.NON_RETRYABLE,
                    operation_id=operation_id,
                    record_id=item.record_id,
                )
            outcome = BatchOutcome(
                operation_id=operation_id,
                data_type=item.data_type,
                record_id=result.record_id or item.record_id,
                result=result,
            )
            (batch.successful if result.success else batch.failed).append(outcome)

        logger.info(
            "batch.complete",
            total=batch.total,
            succeeded=len(batch.successful),
            failed=len(batch.failed),
        )
        return batch

    def for_type(self, data_type: str) -> DataTypeSync:
        """Facade with ``data_type`` bound, for per-collection consumers."""
        return DataTypeSync(self, data_type)

    def subscribe(self, data_type: str, listener: Listener) -> Callable[[], None]:
        return self.notifier.subscribe(data_type, listener)

    # ── Pending registry ─────────────────────────────────────────────

    def pending_operations(self, data_type: str | None = None) -> list[PendingOperation]:
        """In-flight operations, oldest first."""
        ops = list(self._pending.values())
        if data_type is not None:
            ops = [op for op in ops if op.data_type == data_type]
        return ops

    def has_pending_operations(self, data_type: str | None = None) -> bool:
        return bool(self.pending_operations(data_type))

    def get_pending(self, operation_id: str) -> PendingOperation | None:
        return self._pending.get(operation_id)

    # ── Lifecycle ────────────────────────────────────────────────────

    async def _run(
        self,
        op: PendingOperation,
        remote_operation: RemoteOperation,
        config: RetryConfig,
        original_data: Any,
    ) -> SyncResult[Any]:
        self._capture_snapshot(op, original_data)
        self._pending[op.operation_id] = op
        try:
            self._apply(op)
            return await self._drive(op, remote_operation, config)
        finally:
            self._unregister(op)

    async def _drive(
        self,
        op: PendingOperation,
        remote_operation: RemoteOperation,
        config: RetryConfig,
    ) -> SyncResult[Any]:
        key = op.circuit_key or op.data_type

        while True:
            if self.breakers.is_open(key):
                error = CircuitOpenError(key)
                logger.warning("sync.circuit_open", circuit_key=key, attempts=op.attempts)
                return self._rollback(op, error, FailureReason.CIRCUIT_OPEN)

            attempt = op.begin_attempt()
            try:
                value = remote_operation()
                if inspect.isawaitable(value):
                    value = await value
            except asyncio.CancelledError:
                op.settle_attempt()
                self.breakers.release_trial(key)
                self._rollback(op, asyncio.CancelledError("cancelled"), FailureReason.CANCELLED)
                raise
            except Exception as e:
                op.settle_attempt(e)
                self.breakers.record_failure(key)

                # retry_if and the jitter source are caller code
                try:
                    retry = config.should_retry(op.attempts, e)
                    retryable = retry or is_retryable(e, config.retry_if)
                    delay_ms = compute_delay(op.attempts - 1, config, self._rng) if retry else 0.0
                except Exception as internal:
                    return self._abort(op, internal, stage="classify")

                if not retry:
                    reason = (
                        FailureReason.RETRIES_EXHAUSTED
                        if retryable
                        else FailureReason.NON_RETRYABLE
                    )
                    return self._rollback(op, e, reason)

                logger.info(
                    "sync.retry_scheduled",
                    attempt=attempt,
                    max_retries=config.max_retries,
                    delay_ms=round(delay_ms, 1),
                    error=_error_message(e),
                )
                self._emit(op, SyncEventType.RETRY_SCHEDULED, data=op.speculative_payload,
                           error=_error_message(e), delay_ms=delay_ms)
                try:
                    await self._sleep(delay_ms / 1000.0)
                except asyncio.CancelledError:
                    self._rollback(op, asyncio.CancelledError("cancelled"), FailureReason.CANCELLED)
                    raise
                except Exception as internal:
                    return self._abort(op, internal, stage="backoff")
                continue
            else:
                op.settle_attempt()
                self.breakers.record_success(key)
                try:
                    server_value, record_id = self._resolve_commit(op, value)
                except Exception as internal:
                    return self._abort(op, internal, stage="commit")
                return self._commit(op, server_value, record_id)

    def _capture_snapshot(self, op: PendingOperation, original_data: Any) -> None:
        if op.kind is OperationKind.CREATE:
            return
        existing = self.store.get(op.data_type, op.record_id)
        if existing is not None:
            op.original_snapshot = existing
            op.original_position = self.store.position(op.data_type, op.record_id)
        elif original_data is not None:
            op.original_snapshot = DomainRecord(op.data_type, op.record_id, original_data)

    def _apply(self, op: PendingOperation) -> None:
        if op.kind is OperationKind.DELETE:
            self.store.remove(op.data_type, op.record_id)
        else:
            self.store.upsert(
                op.data_type,
                DomainRecord(op.data_type, op.record_id, op.speculative_payload),
            )
        logger.debug("sync.applied", kind=op.kind.value, record_id=op.record_id)
        self._emit(op, SyncEventType.APPLIED, data=op.speculative_payload)

    def _resolve_commit(self, op: PendingOperation, value: Any) -> tuple[Any, str]:
        """Server value to store and the id it lives under. Touches no state."""
        if op.kind is OperationKind.DELETE:
            return None, op.record_id
        server_value = value if value is not None else op.speculative_payload
        return server_value, self._identity(server_value) or op.record_id

    def _commit(self, op: PendingOperation, data: Any, record_id: str) -> SyncResult[Any]:
        previous_id: str | None = None

        if op.kind is not OperationKind.DELETE:
            record = DomainRecord(op.data_type, record_id, data)
            if record_id != op.record_id:
                previous_id = op.record_id
                position = self.store.position(op.data_type, op.record_id)
                self.store.remove(op.data_type, op.record_id)
                self.store.upsert(op.data_type, record, position=position)
            else:
                self.store.upsert(op.data_type, record)

        op.record_id = record_id
        op.mark_succeeded()
        self._unregister(op)
        logger.info(
            "sync.committed",
            kind=op.kind.value,
            record_id=record_id,
            attempts=op.attempts,
        )
        self._emit(op, SyncEventType.COMMITTED, data=data, previous_record_id=previous_id)
        return SyncResult.ok(
            data,
            attempts=op.attempts,
            operation_id=op.operation_id,
            record_id=record_id,
            status=op.status.value,
        )

    def _abort(self, op: PendingOperation, error: Exception, *, stage: str) -> SyncResult[Any]:
        logger.error(
            "sync.internal_error",
            stage=stage,
            record_id=op.record_id,
            error_type=type(error).__name__,
            error=_error_message(error),
        )
        return self._rollback(
            op, error, FailureReason.NON_RETRYABLE, error_code=ErrorCategory.INTERNAL.value
        )

    def _rollback(
        self,
        op: PendingOperation,
        error: BaseException,
        reason: FailureReason,
        *,
        error_code: str | None = None,
    ) -> SyncResult[Any]:
        snapshot = op.original_snapshot
        if snapshot is not None:
            self.store.upsert(op.data_type, snapshot, position=op.original_position)
        else:
            self.store.remove(op.data_type, op.record_id)

        op.mark_rolled_back(error)
        self._unregister(op)
        message = _error_message(error)
        if error_code is None:
            error_code = (
                ErrorCategory.INTERNAL.value
                if reason is FailureReason.CANCELLED
                else _error_code(error)
            )
        logger.warning(
            "sync.rolled_back",
            kind=op.kind.value,
            record_id=op.record_id,
            attempts=op.attempts,
            reason=reason.value,
            error=message,
        )
        self._emit(
            op,
            SyncEventType.ROLLED_BACK,
            data=snapshot.payload if snapshot is not None else None,
            error=message,
        )
        return SyncResult.fail(
            message,
            error_code=error_code,
            failure_reason=reason,
            attempts=op.attempts,
            operation_id=op.operation_id,
            record_id=op.record_id,
            status=OperationStatus.ROLLED_BACK.value,
        )

    def _reject(
        self, data_type: str, kind: OperationKind, operation_id: str, message: str
    ) -> SyncResult[Any]:
        """Fail a submission that never reached the store."""
        logger.warning("sync.rejected", data_type=data_type, kind=kind.value, error=message)
        return SyncResult.fail(
            message,
            error_code=ErrorCategory.INTERNAL.value,
            failure_reason=FailureReason.NON_RETRYABLE,
            operation_id=operation_id,
        )

    def _unregister(self, op: PendingOperation) -> None:
        if self._pending.get(op.operation_id) is op:
            del self._pending[op.operation_id]


    def _emit(self, op: PendingOperation, event_type: SyncEventType, **fields: Any) -> None:
        self.notifier.publish(
            op.data_type,
            SyncEvent(
                event_type=event_type,
                data_type=op.data_type,
                operation_id=op.operation_id,
                record_id=op.record_id,
                kind=op.kind.value,
                attempt=op.attempts,
                **fields,
            ),
        )

    @asynccontextmanager
    async def _identity_lock(self, data_type: str, record_id: str) -> AsyncIterator[None]:
        key = (data_type, record_id)
        lock = self._identity_locks.setdefault(key, asyncio.Lock())
        self._identity_waiters[key] = self._identity_waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._identity_waiters[key] -= 1
            if self._identity_waiters[key] == 0:
                del self._identity_waiters[key]
                del self._identity_locks[key]


class DataTypeSync:
    """Coordinator view bound to one data type.

    Mirrors the per-collection surface a UI list needs: the three optimistic
    mutations, a subscription, the pending set and the current records.
    """

    def __init__(self, coordinator: OptimisticSyncCoordinator, data_type: str) -> None:
        self.coordinator = coordinator
        self.data_type = data_type

    async def optimistic_create(
        self, data: Any, remote_operation: RemoteOperation, **kwargs: Any
    ) -> SyncResult[Any]:
        return await self.coordinator.optimistic_create(
            self.data_type, data, remote_operation, **kwargs
        )

    async def optimistic_update(
        self,
        record_id: str,
        data: Any,
        remote_operation: RemoteOperation,
        original_data: Any = None,
        **kwargs: Any,
    ) -> SyncResult[Any]:
        return await self.coordinator.optimistic_update(
            self.data_type, record_id, data, remote_operation, original_data, **kwargs
        )

    async def optimistic_delete(
        self, record_id: str, data: Any, remote_operation: RemoteOperation, **kwargs: Any
    ) -> SyncResult[None]:
        return await self.coordinator.optimistic_delete(
            self.data_type, record_id, data, remote_operation, **kwargs
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.coordinator.subscribe(self.data_type, listener)

    def pending_operations(self) -> list[PendingOperation]:
        return self.coordinator.pending_operations(self.data_type)

    def has_pending_operations(self) -> bool:
        return self.coordinator.has_pending_operations(self.data_type)

    def list(self) -> list[DomainRecord[Any]]:
        return self.coordinator.store.list(self.data_type)


__all__ = [
    "RemoteOperation",
    "BatchOperation",
    "OptimisticSyncCoordinator",
    "DataTypeSync",
    "default_identity",
]
