"""
CLI: ``optisync simulate`` — run one scripted mutation end to end.

The remote side is an in-process fake that fails the first ``--fail``
calls of every run with ``--error`` and then succeeds. Backoff waits are
skipped, so a full retry sequence finishes instantly while the event
timeline, result and breaker stats are exactly what a real run produces.
"""

from __future__ import annotations

import asyncio
from typing import Any

import typer

from optisync.cli.utils import console, print_dict, print_json, print_table
from optisync.core.result import SyncResult
from optisync.core.settings import get_settings
from optisync.sync.circuit_breaker import CircuitBreakerRegistry
from optisync.sync.coordinator import OptimisticSyncCoordinator
from optisync.sync.notifier import SyncEvent
from optisync.sync.operations import OperationKind
from optisync.sync.retry import RetryConfig
from optisync.sync.store import DomainRecord

DATA_TYPE = "records"
RECORD_ID = "rec-1"


async def _no_sleep(seconds: float) -> None:
    return None


class ScriptedRemote:
    """Fails the first ``failures`` calls with ``message``, then succeeds."""

    def __init__(self, failures: int, message: str, kind: OperationKind) -> None:
        self.failures = failures
        self.message = message
        self.kind = kind
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(self.message)
        if self.kind is OperationKind.DELETE:
            return None
        record_id = "srv-1" if self.kind is OperationKind.CREATE else RECORD_ID
        return {"id": record_id, "value": self.calls}


def run_simulation(
    *,
    kind: OperationKind,
    failures: int,
    message: str,
    max_retries: int,
    breaker_threshold: int,
    repeat: int,
) -> tuple[list[SyncResult[Any]], list[SyncEvent], OptimisticSyncCoordinator]:
    """Run ``repeat`` mutations sharing one coordinator; return results and events."""
    settings = get_settings()
    coordinator = OptimisticSyncCoordinator(
        breakers=CircuitBreakerRegistry(
            failure_threshold=breaker_threshold,
            recovery_timeout=settings.breaker_recovery_timeout,
        ),
        retry_config=RetryConfig(max_retries=max_retries, base_delay_ms=0, max_delay_ms=0),
        settings=settings,
        sleep=_no_sleep,
    )
    if kind is not OperationKind.CREATE:
        coordinator.store.upsert(
            DATA_TYPE, DomainRecord(DATA_TYPE, RECORD_ID, {"id": RECORD_ID, "value": 0})
        )

    events: list[SyncEvent] = []
    coordinator.subscribe(DATA_TYPE, events.append)

    async def _run() -> list[SyncResult[Any]]:
        results = []
        for n in range(repeat):
            remote = ScriptedRemote(failures, message, kind)
            payload: dict[str, Any] = {"value": f"speculative-{n + 1}"}
            if kind is not OperationKind.CREATE:
                payload["id"] = RECORD_ID
            results.append(
                await coordinator.submit(
                    DATA_TYPE, kind, payload, remote, circuit_key="simulated-api"
                )
            )
        return results

    return asyncio.run(_run()), events, coordinator


def simulate(
    kind: OperationKind = typer.Option(OperationKind.UPDATE, "--kind", "-k", help="Mutation kind."),
    fail: int = typer.Option(0, "--fail", "-f", min=0, help="Leading remote failures per run."),
    error: str = typer.Option("network error", "--error", "-e", help="Failure message."),
    max_retries: int = typer.Option(3, "--max-retries", min=0),
    breaker_threshold: int = typer.Option(5, "--breaker-threshold", min=1),
    repeat: int = typer.Option(1, "--repeat", "-n", min=1, help="Sequential runs sharing breakers."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Simulate an optimistic mutation against a scripted remote."""
    results, events, coordinator = run_simulation(
        kind=kind,
        failures=fail,
        message=error,
        max_retries=max_retries,
        breaker_threshold=breaker_threshold,
        repeat=repeat,
    )
    stats = [s.to_dict() for s in coordinator.breakers.get_stats()]

    if json_out:
        print_json(
            {
                "results": [r.to_dict() for r in results],
                "events": [e.to_dict() for e in events],
                "breakers": stats,
            }
        )
    else:
        print_table(
            [
                {
                    "operation": e.operation_id,
                    "event": e.event_type.value,
                    "attempt": e.attempt,
                    "record": e.record_id,
                    "error": e.error,
                }
                for e in events
            ],
            title="Events",
        )
        for n, result in enumerate(results, start=1):
            print_dict(result.to_dict(), title=f"Result {n}")
        print_table(stats, title="Circuit breakers")

    if not results[-1].success:
        if not json_out:
            console.print("[bold red]mutation rolled back[/bold red]")
        raise typer.Exit(code=1)
