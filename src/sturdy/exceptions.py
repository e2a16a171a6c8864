"""Error variants raised by Sturdy.

Every failure surfaced by the client is exactly one of the classes below.
``is_retryable()``, ``status_code()`` and ``retry_after()`` read only the
instance's own attributes, so they can be evaluated anywhere without
consulting the client that produced the error.
"""

from enum import Enum
from typing import Any, ClassVar, Optional


class ErrorKind(str, Enum):
    """Tag identifying the error variant."""
    NOT_FOUND = "not_found"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    API = "api"
    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CONFLICT = "conflict"
    SERVICE_UNAVAILABLE = "service_unavailable"
    RETRY_EXHAUSTED = "retry_exhausted"
    INVALID_REQUEST = "invalid_request"
    QUOTA_EXCEEDED = "quota_exceeded"
    OTHER = "other"


class SturdyError(Exception):
    """Base exception for all Sturdy errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.OTHER
    retryable: ClassVar[bool] = False
    http_status: ClassVar[Optional[int]] = None

    def __init__(self, message: str, *args: Any) -> None:
        self.message = message
        super().__init__(message, *args)

    def is_retryable(self) -> bool:
        """Whether another attempt of the same request may succeed."""
        return self.retryable

    def status_code(self) -> Optional[int]:
        """HTTP status associated with this error, if any."""
        return self.http_status

    def retry_after(self) -> Optional[float]:
        """Server-requested delay in seconds before retrying, if any."""
        return None

    def __str__(self) -> str:
        return self.message


class UnexpectedError(SturdyError):
    """Raised for failures that fit no other category."""


class NotFoundError(SturdyError):
    """Raised when the resource does not exist (404)."""

    kind = ErrorKind.NOT_FOUND
    http_status = 404

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message)


class AuthenticationError(SturdyError):
    """Raised when authentication fails (401)."""

    kind = ErrorKind.AUTHENTICATION
    http_status = 401

    def __init__(
        self,
        message: str = "Unauthorized - check your API credentials",
    ) -> None:
        super().__init__(message)


class AuthorizationError(SturdyError):
    """Raised when authorization fails (403)."""

    kind = ErrorKind.AUTHORIZATION
    http_status = 403

    def __init__(self, message: str = "Forbidden - insufficient permissions") -> None:
        super().__init__(message)


class _RetryAfterMixin:
    _retry_after: Optional[float]

    def retry_after(self) -> Optional[float]:
        return self._retry_after


class RateLimitError(_RetryAfterMixin, SturdyError):
    """Raised when the server (or the local limiter) throttles a request."""

    kind = ErrorKind.RATE_LIMIT
    retryable = True
    http_status = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        local: bool = False,
    ) -> None:
        self._retry_after = retry_after
        self.local = local
        if retry_after is not None:
            message = f"{message}. Retry after {retry_after:g}s"
        super().__init__(message)


class ConflictError(_RetryAfterMixin, SturdyError):
    """Raised on a resource conflict (409)."""

    kind = ErrorKind.CONFLICT
    retryable = True
    http_status = 409

    def __init__(
        self,
        message: str = "Resource conflict",
        retry_after: Optional[float] = None,
    ) -> None:
        self._retry_after = retry_after
        super().__init__(message)


class ServiceUnavailableError(_RetryAfterMixin, SturdyError):
    """Raised on 503, and when an open circuit breaker rejects a request.

    Both cases share this class; ``from_circuit`` tells them
    apart when it matters.
    """

    kind = ErrorKind.SERVICE_UNAVAILABLE
    retryable = True
    http_status = 503

    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        retry_after: Optional[float] = None,
        from_circuit: bool = False,
    ) -> None:
        self._retry_after = retry_after
        self.from_circuit = from_circuit
        super().__init__(message)


class ApiError(SturdyError):
    """Raised for any other 4xx/5xx response."""

    kind = ErrorKind.API

    def __init__(
        self,
        code: int,
        message: str,
        details: Optional[Any] = None,
        request_id: Optional[str] = None,
    ) -> None:
        self.code = code
        self.details = details
        self.request_id = request_id
        super().__init__(message)

    def __str__(self) -> str:
        return f"API error {self.code}: {self.message}"

    def is_retryable(self) -> bool:
        return 500 <= self.code <= 599

    def status_code(self) -> Optional[int]:
        return self.code


class ValidationError(SturdyError):
    """Raised when the server rejects the payload (422)."""

    kind = ErrorKind.VALIDATION
    http_status = 422

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        code: Optional[str] = None,
    ) -> None:
        self.field = field
        self.code = code
        super().__init__(message)


class NetworkError(SturdyError):
    """Raised when the exchange fails below the HTTP status level."""

    kind = ErrorKind.NETWORK
    DEFAULT_RETRY_AFTER: ClassVar[float] = 1.0

    def __init__(
        self,
        message: str,
        is_timeout: bool = False,
        can_retry: bool = True,
    ) -> None:
        self.is_timeout = is_timeout
        self.can_retry = can_retry
        super().__init__(message)

    def is_retryable(self) -> bool:
        return self.can_retry

    def retry_after(self) -> Optional[float]:
        # floor for tight reconnect loops
        return self.DEFAULT_RETRY_AFTER


class RequestTimeoutError(SturdyError):
    """Raised when the transport gives up waiting."""

    kind = ErrorKind.TIMEOUT
    retryable = True
    http_status = 408

    def __init__(
        self,
        duration: Optional[float] = None,
        operation: str = "http_request",
        message: Optional[str] = None,
    ) -> None:
        self.duration = duration
        self.operation = operation
        if message is None:
            message = f"Operation '{operation}' timed out"
            if duration is not None:
                message += f" after {duration:g}s"
        super().__init__(message)


class InvalidRequestError(SturdyError):
    """Raised before sending when the request itself cannot be built."""

    kind = ErrorKind.INVALID_REQUEST
    http_status = 400


class QuotaExceededError(SturdyError):
    """Raised when an account quota is used up until ``reset_time``."""

    kind = ErrorKind.QUOTA_EXCEEDED

    def __init__(
        self,
        message: str = "Quota exceeded",
        reset_time: Optional[float] = None,
    ) -> None:
        self.reset_time = reset_time
        super().__init__(message)


class RetryExhausted(SturdyError):
    """Raised when every permitted attempt failed.

    ``last_error`` is the classified failure of the final attempt; status code
    and retry hint are delegated to it. The wrapper itself is never retried.
    """

    kind = ErrorKind.RETRY_EXHAUSTED

    def __init__(
        self,
        attempts: int,
        operation: str,
        last_error: SturdyError,
    ) -> None:
        self.attempts = attempts
        self.operation = operation
        self.last_error = last_error
        super().__init__(
            f"'{operation}' failed after {attempts} attempts: {last_error}"
        )

    def status_code(self) -> Optional[int]:
        return self.last_error.status_code()

    def retry_after(self) -> Optional[float]:
        return self.last_error.retry_after()
