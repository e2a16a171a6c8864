"""Tests for the client-side rate limiter."""

import pytest

from sturdy.exceptions import RateLimitError
from sturdy.rate_limiter import RateLimiter


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_capacity_per_window(self, clock):
        """Test requests_per_minute + 1 requests inside a minute: last one rejected."""
        limiter = RateLimiter(requests_per_minute=5, clock=clock)

        results = [limiter.try_acquire() for _ in range(6)]

        assert results == [True] * 5 + [False]
        assert limiter.rejected == 1

    def test_refills_after_window(self, clock):
        """Test capacity is restored once the window elapses."""
        limiter = RateLimiter(requests_per_minute=2, clock=clock)
        limiter.try_acquire()
        limiter.try_acquire()
        assert limiter.try_acquire() is False

        clock.advance(60.0)

        assert limiter.try_acquire() is True
        assert limiter.tokens_remaining == 1
        assert limiter.window_start == clock.now

    def test_no_refill_inside_window(self, clock):
        limiter = RateLimiter(requests_per_minute=1, clock=clock)
        limiter.try_acquire()

        clock.advance(59.9)

        assert limiter.try_acquire() is False

    def test_time_until_reset(self, clock):
        limiter = RateLimiter(requests_per_minute=1, clock=clock)

        clock.advance(45.0)

        assert limiter.time_until_reset() == pytest.approx(15.0)

    def test_rejection_error(self, clock):
        """Test the synthesized error carries the wait until the next window."""
        limiter = RateLimiter(requests_per_minute=1, clock=clock)
        clock.advance(20.0)

        error = limiter.rejection()

        assert isinstance(error, RateLimitError)
        assert error.local is True
        assert error.is_retryable() is True
        assert error.retry_after() == pytest.approx(40.0)

    def test_refund_same_window(self, clock):
        """Test a cancelled attempt gives its token back."""
        limiter = RateLimiter(requests_per_minute=3, clock=clock)
        limiter.try_acquire()
        window = limiter.window_start

        limiter.refund(window)

        assert limiter.tokens_remaining == 3

    def test_refund_after_window_rolled_is_ignored(self, clock):
        limiter = RateLimiter(requests_per_minute=3, clock=clock)
        limiter.try_acquire()
        stale = limiter.window_start
        clock.advance(60.0)
        limiter.try_acquire()

        limiter.refund(stale)

        assert limiter.tokens_remaining == 2

    def test_refund_never_exceeds_capacity(self, clock):
        limiter = RateLimiter(requests_per_minute=2, clock=clock)

        limiter.refund(limiter.window_start)

        assert limiter.tokens_remaining == 2

    def test_reset(self, clock):
        limiter = RateLimiter(requests_per_minute=1, clock=clock)
        limiter.try_acquire()

        limiter.reset()

        assert limiter.try_acquire() is True

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            RateLimiter(requests_per_minute=0)
