"""FastAPI Router — operational inspection of a running coordinator.

ARCHITECTURE
────────────
::

    create_sync_router(coordinator) → APIRouter
      GET    /sync/breakers               ─ per-key breaker stats
      POST   /sync/breakers/reset         ─ reset every breaker
      POST   /sync/breakers/{key}/reset   ─ reset one breaker (404 if unknown)
      GET    /sync/pending                ─ in-flight operations (?data_type=)

The router holds no state of its own; every call reads or resets the
coordinator's CircuitBreakerRegistry and pending registry.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from optisync.sync.coordinator import OptimisticSyncCoordinator
from optisync.sync.circuit_breaker import BreakerStats
from optisync.sync.operations import PendingOperation

# === PYDANTIC MODELS FOR API ===


class BreakerStatsResponse(BaseModel):
    """One circuit breaker."""

    key: str
    failures: int
    state: str
    is_open: bool
    last_failure_time: float | None = None
    rejected: int = 0

    @classmethod
    def from_stats(cls, stats: BreakerStats) -> BreakerStatsResponse:
        return cls(**stats.to_dict())


class BreakerResetResponse(BaseModel):
    key: str
    reset: bool = True


class BreakerResetAllResponse(BaseModel):
    reset: int


class PendingOperationResponse(BaseModel):
    """An in-flight mutation."""

    operation_id: str
    data_type: str
    record_id: str
    kind: str
    status: str
    attempts: int
    circuit_key: str | None = None
    in_flight: bool = False
    created_at: float
    last_error: str | None = None

    @classmethod
    def from_operation(cls, op: PendingOperation) -> PendingOperationResponse:
        return cls(**op.to_dict())


# === ROUTER FACTORY ===


def create_sync_router(
    coordinator: OptimisticSyncCoordinator,
    prefix: str = "/sync",
    tags: list[str] | None = None,
) -> APIRouter:
    """Create the admin router bound to ``coordinator``.

    Example::

        app = FastAPI()
        app.include_router(create_sync_router(coordinator))
    """
    router = APIRouter(prefix=prefix, tags=tags or ["sync"])
    breakers = coordinator.breakers

    @router.get("/breakers", response_model=list[BreakerStatsResponse])
    def list_breakers() -> list[BreakerStatsResponse]:
        """Stats for every circuit breaker the coordinator has seen."""
        return [BreakerStatsResponse.from_stats(s) for s in breakers.get_stats()]

    @router.post("/breakers/reset", response_model=BreakerResetAllResponse)
    def reset_all_breakers() -> BreakerResetAllResponse:
        return BreakerResetAllResponse(reset=breakers.reset_all())

    @router.post("/breakers/{key}/reset", response_model=BreakerResetResponse)
    def reset_breaker(key: str) -> BreakerResetResponse:
        if not breakers.reset(key):
            raise HTTPException(status_code=404, detail=f"Circuit breaker not found: {key}")
        return BreakerResetResponse(key=key)

    @router.get("/pending", response_model=list[PendingOperationResponse])
    def list_pending(
        data_type: str | None = Query(None, description="Filter by data type"),
    ) -> list[PendingOperationResponse]:
        return [
            PendingOperationResponse.from_operation(op)
            for op in coordinator.pending_operations(data_type)
        ]

    return router


__all__ = [
    "create_sync_router",
    "BreakerStatsResponse",
    "BreakerResetResponse",
    "BreakerResetAllResponse",
    "PendingOperationResponse",
]
