"""Tests for configuration and telemetry models."""

import pydantic
import pytest

from sturdy.models import AttemptEvent, CircuitBreakerSettings, ClientConfig, ClientStats


class TestClientConfig:
    """Tests for ClientConfig."""

    def test_defaults(self):
        config = ClientConfig(base_url="https://api.example.com/")

        assert config.base_url == "https://api.example.com"
        assert config.timeout == 30.0
        assert config.retry_attempts == 3
        assert config.rate_limit_per_minute is None
        assert config.circuit_breaker is None
        assert config.pool.max_total_connections == 100

    def test_retry_policy(self):
        config = ClientConfig(
            base_url="https://api.example.com",
            retry_attempts=5,
            retry_delay=0.5,
            max_retry_delay=8.0,
            retry_multiplier=3.0,
            retry_jitter=False,
        )

        policy = config.retry_policy()

        assert policy.max_attempts == 5
        assert policy.initial_delay == 0.5
        assert policy.max_delay == 8.0
        assert policy.multiplier == 3.0
        assert policy.jitter is False

    def test_total_timeout(self):
        """Test worst case is every timeout plus every backoff delay."""
        config = ClientConfig(
            base_url="https://api.example.com",
            timeout=10.0,
            connect_timeout=5.0,
            retry_attempts=2,
            retry_delay=1.0,
            retry_multiplier=2.0,
        )

        assert config.total_timeout() == 10.0 + (1.0 + 10.0) + (2.0 + 10.0)

    def test_frozen(self):
        config = ClientConfig(base_url="https://api.example.com")

        with pytest.raises(pydantic.ValidationError):
            config.timeout = 5.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"base_url": "api.example.com"},
            {"base_url": "ftp://api.example.com"},
            {"timeout": 0},
            {"timeout": 5.0, "connect_timeout": 10.0},
            {"retry_multiplier": 1.0},
            {"retry_attempts": -1},
            {"retry_delay": 10.0, "max_retry_delay": 5.0},
            {"rate_limit_per_minute": 0},
        ],
    )
    def test_invalid_values(self, overrides):
        """Test bad configuration is refused at construction."""
        values = {"base_url": "https://api.example.com", **overrides}

        with pytest.raises(pydantic.ValidationError):
            ClientConfig(**values)

    def test_api_key_hidden_from_repr(self):
        config = ClientConfig(base_url="https://api.example.com", api_key="sk-live-123")

        assert "sk-live-123" not in repr(config)

    def test_circuit_breaker_settings(self):
        config = ClientConfig(
            base_url="https://api.example.com",
            circuit_breaker=CircuitBreakerSettings(failure_threshold=3, recovery_timeout=30),
        )

        assert config.circuit_breaker.failure_threshold == 3


class TestClientStats:
    """Tests for ClientStats."""

    def test_success_rate(self):
        stats = ClientStats(total_requests=4, successful_requests=3)

        assert stats.success_rate == 0.75

    def test_success_rate_without_requests(self):
        assert ClientStats().success_rate == 0.0

    def test_running_average_response_time(self):
        stats = ClientStats()
        for duration in (1.0, 2.0, 3.0):
            stats.total_attempts += 1
            stats.record_response_time(duration)

        assert stats.average_response_time == pytest.approx(2.0)


class TestAttemptEvent:
    def test_succeeded(self):
        event = AttemptEvent(
            operation="GET /x",
            method="GET",
            url="https://api.example.com/x",
            attempt=0,
            elapsed_seconds=0.1,
            outcome="success",
            status_code=200,
        )

        assert event.succeeded is True
