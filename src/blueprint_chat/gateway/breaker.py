"""Circuit breaker guarding calls to a failing dependency."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import TypeVar

from blueprint_chat.config import BreakerConfig
from blueprint_chat.errors import CircuitOpenError
from blueprint_chat.obs.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Failure-counting state machine around async operations.

    States:
    - CLOSED: calls pass through; any success resets the failure count.
    - OPEN: entered when the failure count reaches `failure_threshold`. Calls
      fail immediately with `CircuitOpenError` until `reset_timeout` seconds
      have passed since the last failure.
    - HALF_OPEN: the first call after the cooldown runs as a trial. Success
      closes the circuit, failure re-opens it. Other callers arriving while the
      trial is in flight fail fast. A cancelled trial counts as neither: the
      circuit returns to OPEN and the next caller becomes the trial.

    State changes are serialized with an `asyncio.Lock`; the wrapped operation
    itself runs outside the lock. `clock` returns epoch seconds and is
    injectable so tests can drive the cooldown deterministically.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at = 0.0
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        name: str,
        config: BreakerConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> CircuitBreaker:
        return cls(
            name,
            failure_threshold=config.failure_threshold,
            reset_timeout=config.reset_timeout_seconds,
            clock=clock,
        )

    @property
    def last_failure_at(self) -> float:
        return self._last_failure_at

    def get_state(self) -> CircuitState:
        return self._state

    def get_failure_count(self) -> int:
        return self._failure_count

    def next_retry_at(self) -> datetime:
        return datetime.fromtimestamp(self._last_failure_at + self.reset_timeout, tz=timezone.utc)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` under breaker protection.

        Raises:
            CircuitOpenError: the circuit is open (or a trial is already
                running); `operation` is not invoked.
            Exception: whatever `operation` raised, unchanged.
        """
        async with self._lock:
            is_trial = self._admit()

        try:
            result = await operation()
        except asyncio.CancelledError:
            # Not a dependency failure; a cancelled trial hands the slot back.
            if is_trial:
                self._abandon_trial()
            raise
        except Exception:
            async with self._lock:
                self._record_failure(is_trial)
            raise

        async with self._lock:
            self._record_success(is_trial)
        return result

    def reset(self) -> None:
        old_state = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at = 0.0
        self._trial_in_flight = False
        if old_state is not CircuitState.CLOSED:
            logger.info(
                "[CircuitBreaker:%s] State changed: %s -> CLOSED (forced reset)",
                self.name,
                old_state.value,
            )

    def _admit(self) -> bool:
        if self._state is CircuitState.CLOSED:
            return False
        if self._state is CircuitState.HALF_OPEN and self._trial_in_flight:
            raise self._open_error()
        elapsed = self._clock() - self._last_failure_at
        if self._state is CircuitState.OPEN and elapsed < self.reset_timeout:
            raise self._open_error()
        self._transition(CircuitState.HALF_OPEN)
        self._trial_in_flight = True
        return True

    def _open_error(self) -> CircuitOpenError:
        retry_in = self._last_failure_at + self.reset_timeout - self._clock()
        return CircuitOpenError(self.name, self.next_retry_at(), retry_in=retry_in)

    def _abandon_trial(self) -> None:
        # Failure count and cooldown are left as they were, so the next
        # caller is admitted as a fresh trial.
        self._trial_in_flight = False
        self._transition(CircuitState.OPEN)

    def _record_success(self, is_trial: bool) -> None:
        if is_trial:
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)
        self._failure_count = 0

    def _record_failure(self, is_trial: bool) -> None:
        self._failure_count += 1
        self._last_failure_at = self._clock()
        if is_trial:
            self._trial_in_flight = False
            self._transition(CircuitState.OPEN)
        elif self._state is CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        if self._state is new_state:
            return
        logger.info(
            "[CircuitBreaker:%s] State changed: %s -> %s",
            self.name,
            self._state.value,
            new_state.value,
        )
        self._state = new_state
