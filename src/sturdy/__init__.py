"""
Sturdy - Resilient client core for JSON/HTTP APIs.

A request-execution engine featuring:
- Error classification into a closed set of variants
- Exponential backoff with jitter, honoring Retry-After
- Circuit breaker and client-side rate limiter
- Cursor-based streaming pagination
- Secure logging with credential redaction
"""

from sturdy._version import __version__
from sturdy.client import SturdyClient
from sturdy.async_client import AsyncSturdyClient
from sturdy.executor import ApiResponse
from sturdy.retry import RetryPolicy
from sturdy.circuit_breaker import CircuitBreaker, CircuitPermit, CircuitState
from sturdy.rate_limiter import RateLimiter
from sturdy.pagination import AsyncPageStream, PageStream
from sturdy.models import (
    AttemptEvent,
    CircuitBreakerSettings,
    ClientConfig,
    ClientStats,
    PoolSettings,
)
from sturdy.exceptions import (
    ErrorKind,
    SturdyError,
    NotFoundError,
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
    ApiError,
    ValidationError,
    NetworkError,
    RequestTimeoutError,
    ConflictError,
    ServiceUnavailableError,
    RetryExhausted,
    InvalidRequestError,
    QuotaExceededError,
    UnexpectedError,
)
from sturdy.logging import LogConfig, RequestLogger, setup_logging

__author__ = "Sturdy Contributors"

__all__ = [
    "__version__",
    # Clients
    "SturdyClient",
    "AsyncSturdyClient",
    "ApiResponse",
    # Configuration
    "ClientConfig",
    "PoolSettings",
    "CircuitBreakerSettings",
    "ClientStats",
    "AttemptEvent",
    # Resilience
    "RetryPolicy",
    "CircuitBreaker",
    "CircuitState",
    "CircuitPermit",
    "RateLimiter",
    # Pagination
    "AsyncPageStream",
    "PageStream",
    # Exceptions
    "ErrorKind",
    "SturdyError",
    "NotFoundError",
    "AuthenticationError",
    "AuthorizationError",
    "RateLimitError",
    "ApiError",
    "ValidationError",
    "NetworkError",
    "RequestTimeoutError",
    "ConflictError",
    "ServiceUnavailableError",
    "RetryExhausted",
    "InvalidRequestError",
    "QuotaExceededError",
    "UnexpectedError",
    # Logging
    "LogConfig",
    "RequestLogger",
    "setup_logging",
]
