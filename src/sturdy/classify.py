"""Map raw transport outcomes onto Sturdy error variants."""

import json
from functools import lru_cache
from typing import Any, Optional

import httpx
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from sturdy.exceptions import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InvalidRequestError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    ServiceUnavailableError,
    SturdyError,
    ValidationError,
)
from sturdy.retry import parse_retry_after


def classify_transport_error(
    exc: Exception,
    timeout: Optional[float] = None,
    operation: str = "http_request",
) -> SturdyError:
    """Classify an exception raised by httpx before a response arrived."""
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(duration=timeout, operation=operation)
    if isinstance(exc, httpx.ConnectError):
        return NetworkError(f"Connection failed: {exc}", can_retry=True)
    if isinstance(exc, (httpx.UnsupportedProtocol, httpx.InvalidURL)):
        return InvalidRequestError(f"Invalid request URL: {exc}")
    if isinstance(exc, httpx.StreamError):
        return NetworkError(f"Request body cannot be replayed: {exc}", can_retry=False)
    if isinstance(exc, httpx.TooManyRedirects):
        return NetworkError(str(exc), can_retry=False)
    return NetworkError(str(exc) or type(exc).__name__, can_retry=True)


def _parse_json(text: str) -> Optional[Any]:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def _validation_error(body: Optional[Any]) -> ValidationError:
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            first = errors[0]
            return ValidationError(
                message=str(first.get("message") or "Validation failed"),
                field=first.get("field"),
                code=first.get("code"),
            )
        if isinstance(body.get("message"), str):
            return ValidationError(message=body["message"])
    return ValidationError()


def classify_error_response(response: httpx.Response) -> SturdyError:
    """Classify a completed exchange with a non-success status."""
    status = response.status_code
    retry_after = parse_retry_after(response.headers.get("Retry-After"))
    text = response.text
    body = _parse_json(text)

    if status == 401:
        return AuthenticationError()
    if status == 403:
        return AuthorizationError()
    if status == 404:
        return NotFoundError()
    if status == 409:
        return ConflictError(retry_after=retry_after)
    if status == 422:
        return _validation_error(body)
    if status == 429:
        return RateLimitError(retry_after=retry_after)
    if status == 503:
        return ServiceUnavailableError(retry_after=retry_after)

    request_id = response.headers.get("X-Request-ID")
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return ApiError(status, body["message"], details=body, request_id=request_id)
    return ApiError(
        status,
        text or response.reason_phrase or "Unknown error",
        request_id=request_id,
    )


@lru_cache(maxsize=256)
def _cached_adapter(tp: Any) -> TypeAdapter:
    return TypeAdapter(tp)


def type_adapter(tp: Any) -> TypeAdapter:
    """Shared ``TypeAdapter`` for ``tp``; unhashable types get a fresh one."""
    try:
        return _cached_adapter(tp)
    except TypeError:
        return TypeAdapter(tp)


def decode_success_body(
    response: httpx.Response,
    adapter: Optional[TypeAdapter] = None,
) -> Any:
    """Decode a 2xx body, optionally validating it against ``adapter``.

    An empty body decodes to ``None``. Malformed JSON is retryable, a schema
    mismatch is not.
    """
    if not response.content:
        return None
    try:
        data = response.json()
    except ValueError as e:
        raise NetworkError(
            f"Failed to parse JSON response: {e}", can_retry=True
        ) from e
    if adapter is None:
        return data
    return validate_item(adapter, data)


def validate_item(adapter: TypeAdapter, data: Any) -> Any:
    """Validate decoded JSON against a pydantic ``TypeAdapter``."""
    try:
        return adapter.validate_python(data)
    except PydanticValidationError as e:
        raise NetworkError(
            f"Failed to deserialize response: {e}", can_retry=False
        ) from e
