"""Per-client circuit breaker.

One breaker is shared by every call of a client. It gates each attempt before
the retry policy sees it and learns from the classified outcome afterwards.
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from sturdy.exceptions import (
    ApiError,
    NetworkError,
    RequestTimeoutError,
    ServiceUnavailableError,
    SturdyError,
)
from sturdy.models import CircuitBreakerInfo

logger = logging.getLogger(__name__)

StateListener = Callable[["CircuitState", "CircuitState"], None]


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitPermit:
    """Admission handed to one attempt.

    ``ticket`` is set only when the attempt holds the half-open trial; only
    that holder can give the trial back.
    """

    ticket: Optional[int] = None

    @property
    def is_trial(self) -> bool:
        return self.ticket is not None


@dataclass
class CircuitBreakerMetrics:
    """Counters kept since creation or the last reset."""

    successes: int = 0
    failures: int = 0
    rejections: int = 0
    trials: int = 0
    transitions: int = 0

    def reset(self) -> None:
        self.successes = self.failures = self.rejections = self.trials = 0


def is_dependency_failure(error: SturdyError) -> bool:
    """Whether an error says the remote side is unhealthy.

    Transport failures and 5xx responses count against the breaker. Other 4xx
    responses prove the server is answering and count as successes, as do
    non-retryable network errors such as a body that fails ``response_model``.
    """
    if isinstance(error, ServiceUnavailableError):
        return not error.from_circuit
    if isinstance(error, ApiError):
        return error.code >= 500
    if isinstance(error, NetworkError):
        return error.can_retry
    return isinstance(error, RequestTimeoutError)


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    - CLOSED: attempts pass; ``failure_threshold`` consecutive failures open
      the circuit and stamp the failure time.
    - OPEN: attempts are refused without touching the network until
      ``recovery_timeout`` seconds have passed since the last failure.
    - HALF_OPEN: exactly one trial attempt is let through; success closes the
      circuit, failure re-opens it with a fresh timestamp.

    Every read-modify-write happens under one lock, so concurrent callers
    cannot both claim the half-open trial. The lock is never held while
    waiting on I/O.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        on_state_change: Optional[StateListener] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening circuit.
            recovery_timeout: Seconds to wait before allowing a trial.
            on_state_change: Called with ``(old, new)`` on every transition.
            clock: Monotonic time source, injectable for tests.
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.RLock()
        self._listeners: List[StateListener] = []
        if on_state_change is not None:
            self._listeners.append(on_state_change)

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._trial_ticket: Optional[int] = None
        self._tickets = itertools.count(1)
        self._metrics = CircuitBreakerMetrics()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures since the last success."""
        return self._failure_count

    @property
    def last_failure_time(self) -> Optional[float]:
        return self._last_failure_time

    @property
    def metrics(self) -> CircuitBreakerMetrics:
        return self._metrics

    def is_open(self) -> bool:
        return self._state is CircuitState.OPEN

    def is_closed(self) -> bool:
        return self._state is CircuitState.CLOSED

    def is_half_open(self) -> bool:
        return self._state is CircuitState.HALF_OPEN

    def _move(self, new_state: CircuitState) -> None:
        # caller holds the lock
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        self._metrics.transitions += 1
        if new_state is CircuitState.CLOSED:
            self._failure_count = 0
        if new_state is not CircuitState.HALF_OPEN:
            self._trial_ticket = None

        logger.info(
            f"Circuit {old_state.value} -> {new_state.value}",
            extra={"failure_count": self._failure_count},
        )
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error(f"Error in state change listener: {e}")

    def acquire(self) -> Optional[CircuitPermit]:
        """Claim permission for one attempt.

        Returns:
            A permit if the attempt may be sent, else None. Past the recovery
            timeout an OPEN circuit turns HALF_OPEN and hands its single trial
            to this caller; the permit then carries the trial ticket.
        """
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return CircuitPermit()

            if self._state is CircuitState.OPEN:
                since = self._clock() - (self._last_failure_time or 0.0)
                if self._last_failure_time is None or since >= self.recovery_timeout:
                    self._move(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN and self._trial_ticket is None:
                self._trial_ticket = next(self._tickets)
                self._metrics.trials += 1
                return CircuitPermit(ticket=self._trial_ticket)

            self._metrics.rejections += 1
            return None

    def can_execute(self) -> bool:
        """Like :meth:`acquire`, for callers that never give a trial back."""
        return self.acquire() is not None

    def rejection(self) -> ServiceUnavailableError:
        """Error handed to callers while the circuit refuses attempts."""
        return ServiceUnavailableError(
            message="Circuit breaker is open",
            retry_after=self.recovery_timeout,
            from_circuit=True,
        )

    def record_success(self) -> None:
        with self._lock:
            self._metrics.successes += 1
            self._failure_count = 0
            if self._state is CircuitState.HALF_OPEN:
                self._move(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._metrics.failures += 1
            self._failure_count += 1
            self._last_failure_time = self._clock()
            if self._state is CircuitState.HALF_OPEN or (
                self._state is CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._move(CircuitState.OPEN)

    def record_outcome(self, error: Optional[SturdyError]) -> None:
        """Record a completed attempt; ``None`` means success."""
        if error is not None and is_dependency_failure(error):
            self.record_failure()
        else:
            self.record_success()

    def release(self, permit: CircuitPermit) -> None:
        """Give back the half-open trial of an attempt that never completed.

        Permits issued while CLOSED, or for an earlier trial, change nothing.
        """
        with self._lock:
            if (
                permit.is_trial
                and self._state is CircuitState.HALF_OPEN
                and self._trial_ticket == permit.ticket
            ):
                self._trial_ticket = None

    def reset(self) -> None:
        """Force the circuit closed and forget past failures."""
        with self._lock:
            self._move(CircuitState.CLOSED)
            self._failure_count = 0
            self._last_failure_time = None
            self._trial_ticket = None
            self._metrics.reset()

    def get_state(self) -> CircuitBreakerInfo:
        """Snapshot of the current state."""
        with self._lock:
            return CircuitBreakerInfo(
                state=self._state.value,
                failure_count=self._failure_count,
                failure_threshold=self.failure_threshold,
                last_failure_time=self._last_failure_time,
                recovery_timeout=self.recovery_timeout,
            )

    def add_state_change_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_state_change_listener(self, listener: StateListener) -> None:
        self._listeners.remove(listener)
