from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class CircuitPhase(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    cooldown_seconds: float = 60.0
    failure_window_seconds: float = 60.0


@dataclass(frozen=True)
class CircuitBreakerState:
    phase: CircuitPhase
    failure_count: int
    success_count: int
    opened_at: float | None


class CircuitOpenError(Exception):
    def __init__(self, name: str, next_attempt_time: datetime, retry_after: float):
        self.name = name
        self.next_attempt_time = next_attempt_time
        self.retry_after = retry_after
        super().__init__(
            f"Circuit '{name}' is open; next attempt at {next_attempt_time.isoformat(timespec='seconds')} "
            f"(retry after {retry_after:.1f}s)"
        )


class CircuitBreaker:
    """Fail-fast wrapper around a single remote endpoint.

    Failures are tracked in a sliding time window while closed. Once open, the
    breaker rejects calls without invoking the operation until the cooldown
    has elapsed; the next call then runs as the only half-open probe.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock

        self._phase = CircuitPhase.CLOSED
        self._failures: deque[float] = deque()
        self._success_count = 0
        self._opened_at: float | None = None
        self._probe_in_flight = False
        self._last_state_change = datetime.now(UTC)

        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_rejections = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def phase(self) -> CircuitPhase:
        return self._phase

    @property
    def state(self) -> CircuitBreakerState:
        self._prune_failures(self._clock())
        return CircuitBreakerState(
            phase=self._phase,
            failure_count=len(self._failures),
            success_count=self._success_count,
            opened_at=self._opened_at,
        )

    async def execute(self, operation: Callable[[], Awaitable[T]], timeout: float | None = None) -> T:
        self._total_calls += 1
        now = self._clock()

        if self._phase == CircuitPhase.OPEN:
            remaining = self._cooldown_remaining(now)
            if remaining > 0:
                self._reject(remaining)
            self._transition(CircuitPhase.HALF_OPEN)

        is_probe = self._phase == CircuitPhase.HALF_OPEN
        if is_probe:
            if self._probe_in_flight:
                self._reject(0.0)
            self._probe_in_flight = True

        try:
            if timeout is not None:
                result = await asyncio.wait_for(operation(), timeout=timeout)
            else:
                result = await operation()
        except Exception as ex:
            self._on_failure(ex, is_probe)
            raise
        finally:
            if is_probe:
                self._probe_in_flight = False

        self._on_success(is_probe)
        return result

    def reset(self) -> None:
        logger.info(f"Circuit '{self._name}' reset")
        self._failures.clear()
        self._success_count = 0
        self._opened_at = None
        self._probe_in_flight = False
        self._transition(CircuitPhase.CLOSED)

    def force_open(self) -> None:
        logger.warning(f"Circuit '{self._name}' forced open")
        self._open()

    def force_closed(self) -> None:
        logger.warning(f"Circuit '{self._name}' forced closed")
        self.reset()

    def get_metrics(self) -> dict[str, Any]:
        state = self.state
        return {
            "name": self._name,
            "phase": state.phase.value,
            "total_calls": self._total_calls,
            "total_failures": self._total_failures,
            "total_successes": self._total_successes,
            "total_rejections": self._total_rejections,
            "failure_count": state.failure_count,
            "success_count": state.success_count,
            "opened_at": state.opened_at,
            "last_state_change": self._last_state_change.isoformat(timespec="seconds"),
        }

    def _on_success(self, is_probe: bool) -> None:
        self._total_successes += 1
        if is_probe and self._phase == CircuitPhase.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self._config.success_threshold:
                self._failures.clear()
                self._opened_at = None
                self._transition(CircuitPhase.CLOSED)

    def _on_failure(self, error: BaseException, is_probe: bool) -> None:
        self._total_failures += 1
        now = self._clock()
        kind = "timeout" if isinstance(error, TimeoutError) else type(error).__name__

        if is_probe and self._phase == CircuitPhase.HALF_OPEN:
            logger.warning(f"Circuit '{self._name}' probe failed ({kind}); reopening")
            self._open()
            return

        if is_probe or self._phase != CircuitPhase.CLOSED:
            # Stale outcome from an earlier phase; only the totals see it.
            return

        self._failures.append(now)
        self._prune_failures(now)
        logger.debug(
            f"Circuit '{self._name}' failure {len(self._failures)}/{self._config.failure_threshold} ({kind})"
        )
        if len(self._failures) >= self._config.failure_threshold:
            logger.warning(
                f"Circuit '{self._name}' opening after {len(self._failures)} failures "
                f"in {self._config.failure_window_seconds:.0f}s"
            )
            self._open()

    def _open(self) -> None:
        self._opened_at = self._clock()
        self._success_count = 0
        self._failures.clear()
        self._transition(CircuitPhase.OPEN)

    def _reject(self, retry_after: float) -> None:
        self._total_rejections += 1
        next_attempt = datetime.now(UTC) + timedelta(seconds=retry_after)
        raise CircuitOpenError(self._name, next_attempt, retry_after)

    def _cooldown_remaining(self, now: float) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self._opened_at + self._config.cooldown_seconds - now)

    def _prune_failures(self, now: float) -> None:
        horizon = now - self._config.failure_window_seconds
        while self._failures and self._failures[0] <= horizon:
            self._failures.popleft()

    def _transition(self, phase: CircuitPhase) -> None:
        if phase == self._phase:
            return
        logger.info(f"Circuit '{self._name}': {self._phase.value} -> {phase.value}")
        self._phase = phase
        self._last_state_change = datetime.now(UTC)
        self._success_count = 0


class CircuitBreakerRegistry:
    """One breaker per remote endpoint, shared by every session."""

    def __init__(self, config: CircuitBreakerConfig | None = None, *, clock: Callable[[], float] = time.monotonic):
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, endpoint: str) -> CircuitBreaker:
        breaker = self._breakers.get(endpoint)
        if breaker is None:
            breaker = CircuitBreaker(endpoint, self._config, clock=self._clock)
            self._breakers[endpoint] = breaker
        return breaker

    def endpoints(self) -> list[str]:
        return sorted(self._breakers)

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

    def get_metrics(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.get_metrics() for name, breaker in sorted(self._breakers.items())}
