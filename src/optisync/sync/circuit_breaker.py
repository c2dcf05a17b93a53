"""Per-key circuit breakers for remote operations.

Stops dispatching calls to an endpoint that keeps failing, for a cooldown
period, instead of letting every pending mutation hammer it through its own
retry loop.

States:
    CLOSED: Normal operation, calls pass through
    OPEN: Failing fast, calls rejected until the recovery timeout elapses
    HALF_OPEN: One trial call in flight; its outcome closes or reopens

::

    closed ──(failures ≥ threshold)──► open ──(timeout elapsed)──► half_open
      ▲                                 ▲                              │
      └───────────(success)─────────────┼──────────────────────────────┤
                                        └──────────(failure)───────────┘

Unlike a process-wide registry, a ``CircuitBreakerRegistry`` is an explicit
object: each coordinator owns (or is given) one, so independent instances
and tests never share breaker state.

Example:
    >>> registry = CircuitBreakerRegistry(failure_threshold=5, recovery_timeout=60.0)
    >>> if not registry.is_open("billing-api"):
    ...     try:
    ...         result = call_billing()
    ...         registry.record_success("billing-api")
    ...     except Exception:
    ...         registry.record_failure("billing-api")
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from optisync.core.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Rejecting calls
    HALF_OPEN = "half_open"  # One trial call permitted


@dataclass(frozen=True, slots=True)
class BreakerStats:
    """Point-in-time view of one breaker, for admin inspection."""

    key: str
    failures: int
    state: CircuitState
    is_open: bool
    last_failure_time: float | None
    rejected: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "failures": self.failures,
            "state": self.state.value,
            "is_open": self.is_open,
            "last_failure_time": self.last_failure_time,
            "rejected": self.rejected,
        }


@dataclass
class CircuitBreaker:
    """State machine for a single operation class.

    Attributes:
        key: Operation-class identifier (e.g. a logical endpoint name)
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds to wait after the last failure before a trial
        clock: Time source in seconds; injectable for tests
    """

    key: str
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    clock: Clock = time.time

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_time: float | None = field(default=None, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _rejected: int = field(default=0, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    @property
    def state(self) -> CircuitState:
        """Current state without triggering the open → half_open transition."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        return self._last_failure_time

    def is_open(self) -> bool:
        """Return True if a call must not be dispatched now.

        An open breaker whose recovery timeout has elapsed moves to half-open
        and grants the caller the single trial call (returns False). Until
        that trial's outcome is recorded, every other caller is rejected.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return False

            if self._state == CircuitState.OPEN:
                elapsed = self.clock() - (self._last_failure_time or 0.0)
                if elapsed > self.recovery_timeout:
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._trial_in_flight = True
                    return False
                self._rejected += 1
                return True

            # Half-open
            if self._trial_in_flight:
                self._rejected += 1
                return True
            self._trial_in_flight = True
            return False

    def record_success(self) -> None:
        """Reset the failure count and close the breaker."""
        with self._lock:
            self._failure_count = 0
            self._trial_in_flight = False
            if self._state != CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Count a failure; open on threshold or on a failed half-open trial."""
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self.clock()
            self._trial_in_flight = False

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)

    def release_trial(self) -> None:
        """Give back a half-open trial whose call never produced an outcome."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False

    def reset(self) -> None:
        """Force the breaker closed with a clean history."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._trial_in_flight = False

    def stats(self) -> BreakerStats:
        with self._lock:
            return BreakerStats(
                key=self.key,
                failures=self._failure_count,
                state=self._state,
                is_open=self._state != CircuitState.CLOSED,
                last_failure_time=self._last_failure_time,
                rejected=self._rejected,
            )

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            logger.warning(
                "breaker.opened",
                circuit_key=self.key,
                previous=old_state.value,
                failures=self._failure_count,
            )
        else:
            logger.info(
                "breaker.transition",
                circuit_key=self.key,
                previous=old_state.value,
                state=new_state.value,
            )


class CircuitBreakerRegistry:
    """Keyed collection of circuit breakers sharing one configuration.

    Breakers are created lazily on the first recorded failure or success;
    asking ``is_open`` about an unknown key never allocates state.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Clock = time.time,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: Any, clock: Clock = time.time) -> CircuitBreakerRegistry:
        return cls(
            failure_threshold=settings.breaker_failure_threshold,
            recovery_timeout=settings.breaker_recovery_timeout,
            clock=clock,
        )

    def get(self, key: str) -> CircuitBreaker | None:
        with self._lock:
            return self._breakers.get(key)

    def get_or_create(self, key: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    key=key,
                    failure_threshold=self.failure_threshold,
                    recovery_timeout=self.recovery_timeout,
                    clock=self.clock,
                )
                self._breakers[key] = breaker
            return breaker

    def is_open(self, key: str) -> bool:
        breaker = self.get(key)
        if breaker is None:
            return False
        return breaker.is_open()

    def record_success(self, key: str) -> None:
        self.get_or_create(key).record_success()

    def record_failure(self, key: str) -> None:
        self.get_or_create(key).record_failure()

    def release_trial(self, key: str) -> None:
        breaker = self.get(key)
        if breaker is not None:
            breaker.release_trial()

    def state(self, key: str) -> CircuitState:
        breaker = self.get(key)
        return breaker.state if breaker is not None else CircuitState.CLOSED

    # ── Admin surface ────────────────────────────────────────────────

    def get_stats(self) -> list[BreakerStats]:
        """Stats for every known key, in creation order."""
        with self._lock:
            breakers = list(self._breakers.values())
        return [b.stats() for b in breakers]

    def reset(self, key: str) -> bool:
        """Forget a key's state. Returns False if the key was unknown."""
        with self._lock:
            removed = self._breakers.pop(key, None)
        if removed is not None:
            logger.info("breaker.reset", circuit_key=key)
        return removed is not None

    def reset_all(self) -> int:
        """Forget every key. Returns how many breakers were dropped."""
        with self._lock:
            count = len(self._breakers)
            self._breakers.clear()
        logger.info("breaker.reset_all", count=count)
        return count

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._breakers)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


__all__ = [
    "CircuitState",
    "BreakerStats",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
]
