"""
LifeSync Backend: Circuit Breaker
===================================

What:  Per-gateway circuit breaker guarding the upstream LLM API.
How:   In-memory state machine, mutated under a lock because many concurrent
       report requests share one gateway instance.
Who:   Consulted by ResilientApiClient before every attempt; fed with the
       outcome of every attempt.

State Machine:
    CLOSED (normal operation)
        → failure: consecutive_failures += 1
        → consecutive_failures >= threshold: OPEN
        → success: consecutive_failures = 0

    OPEN (rejecting all calls, no network traffic)
        → before_call within cooldown: CircuitBreakerOpenError
        → before_call after cooldown: HALF_OPEN, caller becomes the probe

    HALF_OPEN (one probe in flight)
        → other callers: CircuitBreakerOpenError
        → probe success: CLOSED
        → probe failure: OPEN (cooldown restarts)
        → probe cancelled: slot released, next caller probes

Scope: single process. Each worker keeps its own state.
"""

import logging
import math
import threading
import time
from enum import Enum
from typing import Callable, Optional

from lifesync.exceptions import CircuitBreakerOpenError
from lifesync.schemas.usage import CircuitSnapshot

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            failure_threshold: Consecutive failed attempts before opening
            recovery_timeout: Seconds the circuit stays open before a probe
            clock: Monotonic seconds source (injectable for tests)
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def is_open(self) -> bool:
        """True while calls would be rejected without a network attempt."""
        with self._lock:
            if self._state is CircuitState.OPEN:
                return self._remaining() > 0
            return self._state is CircuitState.HALF_OPEN and self._probe_in_flight

    def _remaining(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(self.recovery_timeout - (self._clock() - self._opened_at), 0.0)

    def before_call(self) -> bool:
        """
        Admit or reject one attempt.

        Returns:
            True when the caller was admitted as the HalfOpen probe and must
            either report an outcome or call release_probe().

        Raises:
            CircuitBreakerOpenError: Circuit open within cooldown, or a
                HalfOpen probe is already in flight.
        """
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return False

            if self._state is CircuitState.OPEN:
                remaining = self._remaining()
                if remaining > 0:
                    raise CircuitBreakerOpenError(recovery_time=max(math.ceil(remaining), 1))
                logger.info(
                    "Circuit breaker transitioning to HALF_OPEN after %.1fs",
                    self._clock() - (self._opened_at or 0.0),
                )
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = True
                return True

            # HALF_OPEN
            if self._probe_in_flight:
                raise CircuitBreakerOpenError(recovery_time=1)
            self._probe_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = None
            self._probe_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1

            if self._state is CircuitState.HALF_OPEN:
                logger.warning("Circuit breaker returning to OPEN (probe failed)")
                self._open()
            elif (
                self._state is CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                logger.warning(
                    "Circuit breaker OPENING after %d consecutive failures",
                    self._consecutive_failures,
                )
                self._open()

    def release_probe(self) -> None:
        """Give back the HalfOpen probe slot when the probe was cancelled."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN and self._probe_in_flight:
                self._probe_in_flight = False
                logger.info("Circuit breaker probe cancelled; slot released")

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._probe_in_flight = False

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            retry_after = None
            if self._state is CircuitState.OPEN:
                retry_after = math.ceil(self._remaining())
            return CircuitSnapshot(
                state=self._state.value,
                consecutive_failures=self._consecutive_failures,
                opened_at=self._opened_at,
                retry_after_seconds=retry_after,
            )
