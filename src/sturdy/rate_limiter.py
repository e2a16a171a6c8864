"""Client-side fixed-window rate limiter.

Self-throttling only: the server remains the authority. Because the window is
fixed, up to twice the capacity can pass in a short span straddling a window
boundary.
"""

import time
import threading
import logging
from typing import Callable

from sturdy.exceptions import RateLimitError

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0


class RateLimiter:
    """Fixed-window token counter gating request issuance."""

    def __init__(
        self,
        requests_per_minute: int,
        window: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            requests_per_minute: Tokens available in each window.
            window: Window length in seconds.
            clock: Monotonic time source, injectable for tests.
        """
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        self.capacity = requests_per_minute
        self.window = window
        self._clock = clock
        self._tokens = requests_per_minute
        self._window_start = clock()
        self._rejected = 0
        self._lock = threading.Lock()
        logger.debug(
            f"RateLimiter initialized: {requests_per_minute} requests / {window:g}s"
        )

    @property
    def tokens_remaining(self) -> int:
        return self._tokens

    @property
    def window_start(self) -> float:
        return self._window_start

    @property
    def rejected(self) -> int:
        return self._rejected

    def _roll_window(self, now: float) -> None:
        if now - self._window_start >= self.window:
            self._tokens = self.capacity
            self._window_start = now

    def try_acquire(self) -> bool:
        """Consume one token if available.

        Returns:
            True if the request may be sent now.
        """
        with self._lock:
            self._roll_window(self._clock())
            if self._tokens > 0:
                self._tokens -= 1
                return True
            self._rejected += 1
            return False

    def time_until_reset(self) -> float:
        """Seconds until the current window ends."""
        with self._lock:
            elapsed = self._clock() - self._window_start
            return max(0.0, self.window - elapsed)

    def refund(self, window_start: float) -> None:
        """Return a token taken in ``window_start`` whose attempt never ran."""
        with self._lock:
            if window_start == self._window_start and self._tokens < self.capacity:
                self._tokens += 1

    def rejection(self) -> RateLimitError:
        """Error returned to callers when no token is available."""
        return RateLimitError(
            message="Client-side rate limit reached",
            retry_after=self.time_until_reset(),
            local=True,
        )

    def reset(self) -> None:
        """Refill and start a new window now."""
        with self._lock:
            self._tokens = self.capacity
            self._window_start = self._clock()
