"""Retry policy with exponential backoff for Sturdy."""

import random
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional

from tenacity import RetryCallState, retry_if_exception
from tenacity.wait import wait_base

from sturdy.exceptions import SturdyError

JITTER_RANGE = (0.5, 1.5)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff schedule.

    Attempt indexes are 0-based: attempt 0 is the first send. With
    ``max_attempts=3`` a call makes at most four sends.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts cannot be negative")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays cannot be negative")
        if self.multiplier <= 1.0:
            raise ValueError("multiplier must be greater than 1.0")

    def without_jitter(self) -> "RetryPolicy":
        """Copy of this policy with jitter disabled."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            multiplier=self.multiplier,
            jitter=False,
        )

    def base_delay(self, attempt: int) -> float:
        """Delay in seconds before jitter is applied."""
        if attempt == 0:
            return min(self.initial_delay, self.max_delay)
        try:
            delay = self.initial_delay * (self.multiplier ** attempt)
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)

    def delay_for_attempt(self, attempt: int) -> float:
        """Delay in seconds to wait after attempt ``attempt`` failed."""
        delay = self.base_delay(attempt)
        if self.jitter:
            delay *= random.uniform(*JITTER_RANGE)
        return delay

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


def parse_retry_after(header_value: Optional[str]) -> Optional[float]:
    """Seconds to wait according to a ``Retry-After`` value.

    Accepts delta-seconds or an HTTP date; dates in the past give 0. Returns
    None for a missing or unreadable value.
    """
    if header_value is None:
        return None

    header_value = header_value.strip()
    try:
        return max(0.0, float(header_value))
    except ValueError:
        pass

    try:
        retry_date = parsedate_to_datetime(header_value)
    except (ValueError, TypeError):
        return None
    if retry_date.tzinfo is None:
        retry_date = retry_date.replace(tzinfo=timezone.utc)
    delta = (retry_date - datetime.now(timezone.utc)).total_seconds()
    return max(0.0, delta)


def is_retryable_error(exc: BaseException) -> bool:
    """Tenacity predicate: only classified, retryable errors are retried."""
    return isinstance(exc, SturdyError) and exc.is_retryable()


retry_if_retryable = retry_if_exception(is_retryable_error)


class wait_for_policy(wait_base):
    """Tenacity wait strategy driven by a :class:`RetryPolicy`.

    Waits ``max(policy delay, error.retry_after())`` so a server hint can
    stretch the backoff but never shorten it.
    """

    def __init__(self, policy: RetryPolicy) -> None:
        self.policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        attempt = retry_state.attempt_number - 1
        delay = self.policy.delay_for_attempt(attempt)

        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        if isinstance(error, SturdyError):
            hint = error.retry_after()
            if hint is not None and hint > delay:
                delay = hint
        return delay


@dataclass
class RetryStatistics:
    """Per-attempt outcomes and backoff sleeps seen by one executor."""

    outcomes: Counter = field(default_factory=Counter)
    status_codes: List[int] = field(default_factory=list)
    delays: List[float] = field(default_factory=list)

    @property
    def total_attempts(self) -> int:
        return sum(self.outcomes.values())

    @property
    def successful_attempts(self) -> int:
        return self.outcomes["success"]

    @property
    def failed_attempts(self) -> int:
        return self.outcomes["failure"]

    @property
    def total_delay(self) -> float:
        return sum(self.delays)

    @property
    def average_delay(self) -> float:
        return self.total_delay / len(self.delays) if self.delays else 0.0

    def record_attempt(self, success: bool, status_code: Optional[int] = None) -> None:
        self.outcomes["success" if success else "failure"] += 1
        if status_code is not None:
            self.status_codes.append(status_code)

    def record_delay(self, delay: float) -> None:
        """Note a backoff sleep; zero-length waits are ignored."""
        if delay > 0:
            self.delays.append(delay)

    def reset(self) -> None:
        self.outcomes.clear()
        self.status_codes.clear()
        self.delays.clear()
