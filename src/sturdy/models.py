"""Pydantic models for Sturdy configuration and telemetry."""

from typing import Optional, Dict, Any
from enum import Enum
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sturdy._version import __version__
from sturdy.retry import RetryPolicy


class HTTPMethod(str, Enum):
    """HTTP methods."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class PoolSettings(BaseModel):
    """Connection pool settings handed to httpx."""

    model_config = ConfigDict(frozen=True)

    max_connections_per_host: int = Field(default=10, ge=1, description="Max keepalive connections")
    max_total_connections: int = Field(default=100, ge=1, description="Max connection pool size")
    idle_timeout: float = Field(default=30.0, gt=0, description="Idle connection expiry in seconds")
    pool_timeout: Optional[float] = Field(
        default=None, description="Seconds to wait for a free connection (None waits forever)"
    )


class CircuitBreakerSettings(BaseModel):
    """Settings for the per-client circuit breaker."""

    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout: float = Field(default=30.0, gt=0)


class ClientConfig(BaseModel):
    """Immutable configuration for a Sturdy client."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(..., description="Base URL for API requests")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    connect_timeout: float = Field(default=10.0, gt=0, description="Connection timeout")
    retry_attempts: int = Field(default=3, ge=0, le=20, description="Retries after the first attempt")
    retry_delay: float = Field(default=1.0, ge=0, description="Initial backoff in seconds")
    max_retry_delay: float = Field(default=60.0, ge=0, description="Backoff ceiling in seconds")
    retry_multiplier: float = Field(default=2.0, gt=1.0, description="Backoff growth factor")
    retry_jitter: bool = True
    rate_limit_per_minute: Optional[int] = Field(default=None, ge=1)
    circuit_breaker: Optional[CircuitBreakerSettings] = None
    pool: PoolSettings = Field(default_factory=PoolSettings)
    api_key: Optional[str] = Field(default=None, repr=False)
    user_agent: str = f"sturdy-python/{__version__}"
    default_headers: Dict[str, str] = Field(default_factory=dict)
    verify_ssl: bool = True
    follow_redirects: bool = True
    max_redirects: int = Field(default=10, ge=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop the trailing slash."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("base_url must be an absolute http:// or https:// URL")
        return v.rstrip("/")

    @model_validator(mode="after")
    def check_timeouts(self) -> "ClientConfig":
        if self.connect_timeout > self.timeout:
            raise ValueError("connect_timeout cannot be greater than timeout")
        if self.retry_delay > self.max_retry_delay:
            raise ValueError("retry_delay cannot be greater than max_retry_delay")
        return self

    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy described by this configuration."""
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            initial_delay=self.retry_delay,
            max_delay=self.max_retry_delay,
            multiplier=self.retry_multiplier,
            jitter=self.retry_jitter,
        )

    def total_timeout(self) -> float:
        """Worst-case seconds for one logical call, ignoring jitter."""
        policy = self.retry_policy().without_jitter()
        total = self.timeout
        for attempt in range(self.retry_attempts):
            total += policy.delay_for_attempt(attempt) + self.timeout
        return total


class CircuitBreakerInfo(BaseModel):
    """Information about circuit breaker state."""

    state: str
    failure_count: int
    failure_threshold: int
    last_failure_time: Optional[float] = None
    recovery_timeout: float


class AttemptEvent(BaseModel):
    """One send attempt, as reported to attempt hooks."""

    operation: str
    method: str
    url: str
    attempt: int = Field(ge=0)
    elapsed_seconds: float
    outcome: str
    status_code: Optional[int] = None
    error_kind: Optional[str] = None
    request_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == "success"


class ClientStats(BaseModel):
    """Statistics for the client."""

    total_requests: int = 0
    total_attempts: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_retries: int = 0
    circuit_breaker_rejections: int = 0
    rate_limiter_rejections: int = 0
    average_response_time: float = 0.0

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    def record_response_time(self, duration: float) -> None:
        """Fold one completed send into the running average."""
        completed = self.total_attempts
        if completed <= 1:
            self.average_response_time = duration
            return
        self.average_response_time += (duration - self.average_response_time) / completed

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump()
