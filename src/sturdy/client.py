"""Synchronous Sturdy API client."""

from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from sturdy.async_client import httpx_client_options, resolve_config
from sturdy.circuit_breaker import CircuitBreaker
from sturdy.executor import ApiResponse, AttemptHook, RequestExecutor
from sturdy.logging import LogConfig, RequestLogger
from sturdy.middleware import MiddlewareChain
from sturdy.models import ClientConfig, ClientStats
from sturdy.pagination import ON_ITEM_ERROR_RAISE, PageStream, count_query, parse_count
from sturdy.rate_limiter import RateLimiter


class SturdyClient:
    """Blocking API client with retries, circuit breaking and rate limiting.

    Same behavior as :class:`~sturdy.async_client.AsyncSturdyClient`, on
    ``httpx.Client`` with ``time.sleep`` backoff. Pagination streams are plain
    generators.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        circuit_breaker: Optional[CircuitBreaker] = None,
        rate_limiter: Optional[RateLimiter] = None,
        log_config: Optional[LogConfig] = None,
        middleware: Optional[MiddlewareChain] = None,
        on_attempt: Optional[List[AttemptHook]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        transport: Optional[httpx.BaseTransport] = None,
        **overrides: Any,
    ) -> None:
        """Create a client.

        Args:
            config: Client configuration; built from ``overrides`` when omitted.
            circuit_breaker: Breaker to share instead of the configured one.
            rate_limiter: Limiter to share instead of the configured one.
            log_config: Logging and redaction settings.
            middleware: Replaces the default middleware chain.
            on_attempt: Callbacks receiving every attempt event.
            sleep: Function used for backoff waits.
            transport: Custom httpx transport.
            **overrides: ``ClientConfig`` fields.
        """
        self.config = resolve_config(config, overrides)
        self.request_logger = RequestLogger(log_config)
        self._http = httpx.Client(transport=transport, **httpx_client_options(self.config))
        self._executor = RequestExecutor(
            self._http,
            self.config,
            sleep=sleep,
            circuit_breaker=circuit_breaker,
            rate_limiter=rate_limiter,
            middleware=middleware,
            request_logger=self.request_logger,
            on_attempt=on_attempt,
        )

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        return self._executor.circuit_breaker

    @property
    def rate_limiter(self) -> Optional[RateLimiter]:
        return self._executor.rate_limiter

    def add_attempt_hook(self, hook: AttemptHook) -> None:
        self._executor.add_attempt_hook(hook)

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        content: Optional[Union[bytes, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        response_model: Any = None,
        operation: Optional[str] = None,
    ) -> ApiResponse:
        """Run one logical call and return the full response envelope.

        Args:
            method: HTTP method.
            endpoint: Path relative to ``base_url`` or an absolute URL.
            params: Query parameters.
            json: JSON-serializable body, encoded once.
            content: Raw body as bytes or str.
            headers: Extra headers; they win over the client's own.
            timeout: Per-attempt timeout overriding the configured one.
            response_model: Type the decoded body is validated against.
            operation: Name used in logs, events and errors.

        Returns:
            The successful :class:`ApiResponse`.

        Raises:
            SturdyError: On any failure, see :mod:`sturdy.exceptions`.
        """
        context = self._executor.build_request(
            method,
            endpoint,
            params=params,
            json=json,
            content=content,
            headers=headers,
            timeout=timeout,
            operation=operation,
        )
        return self._executor.execute(context, response_model=response_model)

    def get_response(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        operation: Optional[str] = None,
        **kwargs: Any,
    ) -> ApiResponse:
        return self.request("GET", endpoint, params=params, operation=operation, **kwargs)

    def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        response_model: Any = None,
        **kwargs: Any,
    ) -> Any:
        """GET ``endpoint`` and return the decoded body."""
        return self.request(
            "GET", endpoint, params=params, response_model=response_model, **kwargs
        ).data

    def post(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        response_model: Any = None,
        **kwargs: Any,
    ) -> Any:
        """POST ``json`` and return the decoded body."""
        return self.request(
            "POST", endpoint, json=json, response_model=response_model, **kwargs
        ).data

    def put(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        response_model: Any = None,
        **kwargs: Any,
    ) -> Any:
        return self.request(
            "PUT", endpoint, json=json, response_model=response_model, **kwargs
        ).data

    def patch(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        response_model: Any = None,
        **kwargs: Any,
    ) -> Any:
        return self.request(
            "PATCH", endpoint, json=json, response_model=response_model, **kwargs
        ).data

    def delete(
        self,
        endpoint: str,
        response_model: Any = None,
        **kwargs: Any,
    ) -> Any:
        return self.request(
            "DELETE", endpoint, response_model=response_model, **kwargs
        ).data

    def stream(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        item_type: Any = None,
        on_item_error: str = ON_ITEM_ERROR_RAISE,
    ) -> PageStream:
        """Lazily iterate the items of every page of a list endpoint."""
        return PageStream(
            self, endpoint, params=params, item_type=item_type, on_item_error=on_item_error
        )

    def collect_all(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        item_type: Any = None,
        on_item_error: str = ON_ITEM_ERROR_RAISE,
    ) -> List[Any]:
        return self.stream(endpoint, params, item_type, on_item_error).collect_all()

    def count(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> int:
        """Ask a list endpoint for its total with a single count-only request."""
        response = self.get_response(
            endpoint, params=count_query(params), operation=f"count {endpoint}"
        )
        return parse_count(response.data)

    def get_retry_delays(self) -> List[float]:
        """Backoff sleeps of the most recent call, in order."""
        return self._executor.get_retry_delays()

    def get_retry_stats(self) -> Dict[str, Any]:
        return self._executor.get_retry_stats()

    def get_stats(self) -> ClientStats:
        return self._executor.get_stats()

    def reset_stats(self) -> None:
        """Zero every counter; breaker and limiter state are kept."""
        self._executor.reset_stats()

    def close(self) -> None:
        """Release pooled connections."""
        self._http.close()

    def __enter__(self) -> "SturdyClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
