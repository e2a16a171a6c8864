"""Asynchronous Sturdy API client."""

from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from sturdy.circuit_breaker import CircuitBreaker
from sturdy.executor import ApiResponse, AsyncRequestExecutor, AttemptHook
from sturdy.logging import LogConfig, RequestLogger
from sturdy.middleware import MiddlewareChain
from sturdy.models import ClientConfig, ClientStats
from sturdy.pagination import (
    ON_ITEM_ERROR_RAISE,
    AsyncPageStream,
    count_query,
    parse_count,
)
from sturdy.rate_limiter import RateLimiter


def resolve_config(config: Optional[ClientConfig], overrides: Dict[str, Any]) -> ClientConfig:
    """Merge keyword overrides into ``config``, validating the result."""
    if config is None:
        return ClientConfig(**overrides)
    if not overrides:
        return config
    return ClientConfig(**{**config.model_dump(), **overrides})


def httpx_client_options(config: ClientConfig) -> Dict[str, Any]:
    """Keyword arguments shared by ``httpx.Client`` and ``httpx.AsyncClient``.

    httpx pools per client rather than per host, so the per-host setting caps
    the number of idle connections kept alive.
    """
    pool = config.pool
    return dict(
        timeout=httpx.Timeout(
            config.timeout,
            connect=config.connect_timeout,
            pool=pool.pool_timeout,
        ),
        limits=httpx.Limits(
            max_connections=pool.max_total_connections,
            max_keepalive_connections=pool.max_connections_per_host,
            keepalive_expiry=pool.idle_timeout,
        ),
        verify=config.verify_ssl,
        follow_redirects=config.follow_redirects,
        max_redirects=config.max_redirects,
    )


class AsyncSturdyClient:
    """Async API client with retries, circuit breaking and rate limiting.

    Features:
    - Exponential backoff with jitter, honoring ``Retry-After``
    - Optional circuit breaker and client-side rate limiter
    - Typed responses through pydantic
    - Cursor-based streaming pagination
    - Secure logging with credential redaction

    Example:
        async with AsyncSturdyClient(base_url="https://api.example.com") as client:
            user = await client.get("/users/1", response_model=User)
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
        sleep: Optional[Callable[[float], Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
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
            sleep: Awaitable used for backoff waits.
            transport: Custom httpx transport.
            **overrides: ``ClientConfig`` fields.
        """
        self.config = resolve_config(config, overrides)
        self.request_logger = RequestLogger(log_config)
        self._http = httpx.AsyncClient(
            transport=transport, **httpx_client_options(self.config)
        )
        self._executor = AsyncRequestExecutor(
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

    async def request(
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
        """Run one logical call and return the full response envelope."""
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
        return await self._executor.execute(context, response_model=response_model)

    async def get_response(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        operation: Optional[str] = None,
        **kwargs: Any,
    ) -> ApiResponse:
        """GET returning the envelope; used by pagination."""
        return await self.request("GET", endpoint, params=params, operation=operation, **kwargs)

    async def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        response_model: Any = None,
        **kwargs: Any,
    ) -> Any:
        """GET ``endpoint`` and return the decoded body."""
        response = await self.request(
            "GET", endpoint, params=params, response_model=response_model, **kwargs
        )
        return response.data

    async def post(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        response_model: Any = None,
        **kwargs: Any,
    ) -> Any:
        """POST ``json`` and return the decoded body."""
        response = await self.request(
            "POST", endpoint, json=json, response_model=response_model, **kwargs
        )
        return response.data

    async def put(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        response_model: Any = None,
        **kwargs: Any,
    ) -> Any:
        """PUT ``json`` and return the decoded body."""
        response = await self.request(
            "PUT", endpoint, json=json, response_model=response_model, **kwargs
        )
        return response.data

    async def patch(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        response_model: Any = None,
        **kwargs: Any,
    ) -> Any:
        """PATCH with ``json`` and return the decoded body."""
        response = await self.request(
            "PATCH", endpoint, json=json, response_model=response_model, **kwargs
        )
        return response.data

    async def delete(
        self,
        endpoint: str,
        response_model: Any = None,
        **kwargs: Any,
    ) -> Any:
        """DELETE ``endpoint``; returns the decoded body, if any."""
        response = await self.request(
            "DELETE", endpoint, response_model=response_model, **kwargs
        )
        return response.data

    def stream(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        item_type: Any = None,
        on_item_error: str = ON_ITEM_ERROR_RAISE,
    ) -> AsyncPageStream:
        """Lazily iterate the items of every page of a list endpoint.

        Nothing is fetched until iteration starts.
        """
        return AsyncPageStream(
            self, endpoint, params=params, item_type=item_type, on_item_error=on_item_error
        )

    async def collect_all(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        item_type: Any = None,
        on_item_error: str = ON_ITEM_ERROR_RAISE,
    ) -> List[Any]:
        """Fetch every page of a list endpoint into memory."""
        return await self.stream(endpoint, params, item_type, on_item_error).collect_all()

    async def count(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> int:
        """Ask a list endpoint for its total with a single count-only request."""
        response = await self.get_response(
            endpoint, params=count_query(params), operation=f"count {endpoint}"
        )
        return parse_count(response.data)

    def get_retry_delays(self) -> List[float]:
        """Get retry delays from the last request."""
        return self._executor.get_retry_delays()

    def get_retry_stats(self) -> Dict[str, Any]:
        return self._executor.get_retry_stats()

    def get_stats(self) -> ClientStats:
        return self._executor.get_stats()

    def reset_stats(self) -> None:
        self._executor.reset_stats()

    async def close(self) -> None:
        """Release pooled connections."""
        await self._http.aclose()

    async def __aenter__(self) -> "AsyncSturdyClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
