from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(slots=True)
class BreakerState:
    state: CircuitState = CircuitState.CLOSED
    failures: deque[float] = field(default_factory=deque)
    last_transition_at: float = 0.0
    probe_in_flight: bool = False
    generation: int = 0


@dataclass(frozen=True, slots=True)
class Admission:
    """Ticket handed out by ``acquire``; outcomes are reported against it."""

    generation: int
    probe: bool = False


class CircuitBreaker:
    """Per-provider health state machine.

    CLOSED -> OPEN when ``failure_threshold`` failures land inside
    ``window_seconds``. OPEN -> HALF_OPEN once ``open_duration_seconds`` have
    passed, handing out a single probe slot. Only the probe's outcome closes
    or re-opens the circuit; outcomes of calls admitted before the circuit
    opened are ignored while it is OPEN or HALF_OPEN. All transitions happen
    under one lock.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        open_duration_seconds: float = 30.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = max(1, failure_threshold)
        self.window_seconds = window_seconds
        self.open_duration_seconds = max(0.0, open_duration_seconds)
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self.state = BreakerState(last_transition_at=clock())

    def _transition(self, new_state: CircuitState, now: float) -> None:
        self.state.state = new_state
        self.state.last_transition_at = now
        self.state.probe_in_flight = False
        self.state.generation += 1
        if new_state is CircuitState.CLOSED:
            self.state.failures.clear()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        failures = self.state.failures
        while failures and failures[0] <= cutoff:
            failures.popleft()

    def _cooled_down(self, now: float) -> bool:
        return now - self.state.last_transition_at >= self.open_duration_seconds

    def _holds_probe(self, admission: Admission | None) -> bool:
        return (
            admission is not None
            and admission.probe
            and admission.generation == self.state.generation
            and self.state.state is CircuitState.HALF_OPEN
        )

    def acquire(self) -> Admission | None:
        """Gate one call. In HALF_OPEN only the first caller gets through."""
        if not self.enabled:
            return Admission(generation=self.state.generation)
        with self._lock:
            now = self._clock()
            if self.state.state is CircuitState.CLOSED:
                return Admission(generation=self.state.generation)
            if self.state.state is CircuitState.OPEN:
                if not self._cooled_down(now):
                    return None
                self._transition(CircuitState.HALF_OPEN, now)
            if self.state.probe_in_flight:
                return None
            self.state.probe_in_flight = True
            return Admission(generation=self.state.generation, probe=True)

    def allow(self) -> bool:
        return self.acquire() is not None

    def peek_state(self) -> CircuitState:
        """Current state without claiming the probe slot."""
        if not self.enabled:
            return CircuitState.CLOSED
        with self._lock:
            if self.state.state is CircuitState.OPEN and self._cooled_down(self._clock()):
                return CircuitState.HALF_OPEN
            return self.state.state

    def record_success(self, admission: Admission | None = None) -> CircuitState:
        if not self.enabled:
            return CircuitState.CLOSED
        with self._lock:
            if self.state.state is CircuitState.CLOSED:
                self.state.failures.clear()
            elif self._holds_probe(admission):
                self._transition(CircuitState.CLOSED, self._clock())
            return self.state.state

    def record_failure(self, admission: Admission | None = None) -> CircuitState:
        if not self.enabled:
            return CircuitState.CLOSED
        with self._lock:
            now = self._clock()
            if self.state.state is CircuitState.CLOSED:
                self.state.failures.append(now)
                self._prune(now)
                if len(self.state.failures) >= self.failure_threshold:
                    self._transition(CircuitState.OPEN, now)
            elif self._holds_probe(admission):
                self._transition(CircuitState.OPEN, now)
            return self.state.state

    def release(self, admission: Admission | None) -> None:
        """Free the HALF_OPEN slot of a probe that ended without an outcome."""
        with self._lock:
            if self._holds_probe(admission):
                self.state.probe_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._transition(CircuitState.CLOSED, self._clock())

    @property
    def failure_count(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self.state.failures)

    def snapshot(self) -> dict:
        with self._lock:
            now = self._clock()
            self._prune(now)
            return {
                "state": self.state.state.value,
                "enabled": self.enabled,
                "failure_count": len(self.state.failures),
                "last_transition_at": self.state.last_transition_at,
                "seconds_in_state": round(now - self.state.last_transition_at, 3),
                "open_duration_seconds": self.open_duration_seconds,
            }


class BreakerRegistry:
    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        open_duration_seconds: float = 30.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.enabled = enabled
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def for_key(self, key: str) -> CircuitBreaker:
        with self._lock:
            if key not in self._breakers:
                self._breakers[key] = CircuitBreaker(
                    failure_threshold=self.failure_threshold,
                    window_seconds=self.window_seconds,
                    open_duration_seconds=self.open_duration_seconds,
                    enabled=self.enabled,
                    clock=self._clock,
                )
            return self._breakers[key]

    def snapshot(self) -> dict[str, dict]:
        with self._lock:
            breakers = dict(self._breakers)
        return {k: b.snapshot() for k, b in breakers.items()}
