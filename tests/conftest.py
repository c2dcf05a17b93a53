"""
Shared pytest fixtures for optisync tests.

This module provides:
- A controllable clock for circuit-breaker timing
- A recording listener and a recording (zero-delay) sleep
- A scripted remote operation factory
- A coordinator wired to all of the above with explicit settings

Usage:
    Fixtures are auto-discovered by pytest; request them by name.

    @pytest.mark.asyncio
    async def test_commit(coordinator, scripted_remote):
        remote = scripted_remote({"id": "n-1"})
        result = await coordinator.optimistic_create("notes", {"title": "x"}, remote)
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure optisync package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from optisync.core.settings import SyncSettings
from optisync.sync import (
    CircuitBreakerRegistry,
    EventNotifier,
    OptimisticSyncCoordinator,
    RecordStore,
    RetryConfig,
    SyncEvent,
)


# =============================================================================
# Test doubles
# =============================================================================


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingListener:
    """Listener that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[SyncEvent] = []

    def __call__(self, event: SyncEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.event_type.value for e in self.events]

    def of_type(self, event_type: str) -> list[SyncEvent]:
        return [e for e in self.events if e.event_type.value == event_type]


class RecordingSleep:
    """Zero-delay replacement for ``asyncio.sleep`` that remembers its waits."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class ScriptedRemote:
    """Remote operation that plays back a script of outcomes.

    Each call consumes the next step: exceptions are raised, anything else is
    returned. The last step repeats once the script runs out.
    """

    def __init__(self, *steps: Any) -> None:
        if not steps:
            steps = (None,)
        self.steps = list(steps)
        self.calls = 0

    async def __call__(self) -> Any:
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1
        if isinstance(step, BaseException):
            raise step
        return step


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def scripted_remote():
    """Factory: ``scripted_remote(RuntimeError("network error"), {"id": "x"})``."""
    return ScriptedRemote


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(
        _env_file=None,
        max_retries=3,
        base_delay_ms=1000,
        max_delay_ms=10000,
        jitter=False,
        breaker_failure_threshold=5,
        breaker_recovery_timeout=60.0,
        batch_max_concurrency=10,
        serialize_per_identity=False,
    )


@pytest.fixture
def breakers(clock: FakeClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(failure_threshold=5, recovery_timeout=60.0, clock=clock)


@pytest.fixture
def coordinator(
    settings: SyncSettings,
    breakers: CircuitBreakerRegistry,
    sleep: RecordingSleep,
) -> OptimisticSyncCoordinator:
    return OptimisticSyncCoordinator(
        store=RecordStore(),
        breakers=breakers,
        notifier=EventNotifier(),
        retry_config=RetryConfig.from_settings(settings),
        settings=settings,
        sleep=sleep,
    )
