"""Record Store — in-memory mirror of domain entities.

Holds the latest known value for each ``(data_type, id)``. The coordinator
writes speculative values here before the server answers and restores the
snapshot if it never does. Nothing else writes to it.

Insertion order per data type is kept (dict order) so list views stay
stable; updating an existing record keeps its position.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from dataclasses import dataclass, replace
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class DomainRecord(Generic[T]):
    """An entity payload with its identity and type tag."""

    data_type: str
    id: str
    payload: T

    def with_payload(self, payload: T) -> DomainRecord[T]:
        return replace(self, payload=payload)


class RecordStore(Generic[T]):
    """Addressable mapping ``(data_type, id) → DomainRecord``.

    Thread-safe: every method takes an internal lock, so the store can be
    shared with worker threads if the coordinator is driven from more than
    one event loop.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, DomainRecord[T]]] = {}
        self._lock = threading.RLock()

    def get(self, data_type: str, record_id: str) -> DomainRecord[T] | None:
        with self._lock:
            return self._records.get(data_type, {}).get(record_id)

    def upsert(
        self,
        data_type: str,
        record: DomainRecord[T],
        *,
        position: int | None = None,
    ) -> None:
        """Insert or overwrite a record.

        Args:
            data_type: Type bucket; must match ``record.data_type``
            record: Record to store
            position: Insert at this index in the type's order instead of
                appending. Ignored when the record already exists.
        """
        if record.data_type != data_type:
            raise ValueError(
                f"record data_type {record.data_type!r} does not match {data_type!r}"
            )
        with self._lock:
            bucket = self._records.setdefault(data_type, {})
            if position is None or record.id in bucket:
                bucket[record.id] = record
                return
            items = list(bucket.items())
            items.insert(max(0, position), (record.id, record))
            self._records[data_type] = dict(items)

    def remove(self, data_type: str, record_id: str) -> DomainRecord[T] | None:
        """Remove and return a record, or None if absent."""
        with self._lock:
            bucket = self._records.get(data_type)
            if bucket is None:
                return None
            removed = bucket.pop(record_id, None)
            if not bucket:
                del self._records[data_type]
            return removed

    def position(self, data_type: str, record_id: str) -> int | None:
        """Index of a record within its type's insertion order."""
        with self._lock:
            for index, key in enumerate(self._records.get(data_type, {})):
                if key == record_id:
                    return index
            return None

    def list(self, data_type: str) -> list[DomainRecord[T]]:
        """Snapshot of a type's records in insertion order."""
        with self._lock:
            return list(self._records.get(data_type, {}).values())

    def data_types(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def clear(self, data_type: str | None = None) -> None:
        with self._lock:
            if data_type is None:
                self._records.clear()
            else:
                self._records.pop(data_type, None)

    def count(self, data_type: str | None = None) -> int:
        with self._lock:
            if data_type is not None:
                return len(self._records.get(data_type, {}))
            return sum(len(bucket) for bucket in self._records.values())

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, key: tuple[str, str]) -> bool:
        data_type, record_id = key
        return self.get(data_type, record_id) is not None

    def __iter__(self) -> Iterator[DomainRecord[T]]:
        with self._lock:
            snapshot = [r for bucket in self._records.values() for r in bucket.values()]
        return iter(snapshot)


__all__ = ["DomainRecord", "RecordStore"]
