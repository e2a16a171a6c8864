"""Pytest configuration and fixtures for Sturdy tests."""

from unittest.mock import AsyncMock, Mock

import pytest
import respx

from sturdy.models import ClientConfig

BASE_URL = "https://api.example.com"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Fake monotonic clock for breaker and limiter."""
    return FakeClock()


@pytest.fixture
def base_url():
    """Base URL for testing."""
    return BASE_URL


@pytest.fixture
def client_config():
    """Deterministic configuration: no jitter, 1s/2s/4s backoff."""
    return ClientConfig(
        base_url=BASE_URL,
        retry_attempts=3,
        retry_delay=1.0,
        retry_multiplier=2.0,
        retry_jitter=False,
    )


@pytest.fixture
def api():
    """respx router scoped to the test API."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
        yield router


@pytest.fixture
def sleep():
    """Recording replacement for blocking backoff sleeps."""
    return Mock(return_value=None)


@pytest.fixture
def async_sleep():
    """Recording replacement for async backoff sleeps."""
    return AsyncMock(return_value=None)


def slept(mock) -> list:
    """Delays a sleep mock was called with, in order."""
    return [call.args[0] for call in mock.call_args_list]
