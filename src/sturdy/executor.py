"""Request execution engine: breaker, limiter, send, classify, retry.

``AsyncRequestExecutor`` runs each logical call as one task that yields during
I/O and backoff. ``RequestExecutor`` is the blocking twin used by the sync
client. Both share the gating, accounting and error-wrapping logic below and
let tenacity drive the attempt loop.
"""

import asyncio
import json as jsonlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import urljoin

import httpx
from pydantic import TypeAdapter
from tenacity import AsyncRetrying, RetryCallState, Retrying, stop_after_attempt

from sturdy.circuit_breaker import CircuitBreaker, CircuitPermit, CircuitState
from sturdy.classify import (
    classify_error_response,
    classify_transport_error,
    decode_success_body,
    type_adapter,
)
from sturdy.exceptions import (
    InvalidRequestError,
    NetworkError,
    RetryExhausted,
    SturdyError,
)
from sturdy.logging import RequestLogger
from sturdy.middleware import (
    MiddlewareChain,
    RequestContext,
    ResponseContext,
    create_default_middleware_chain,
)
from sturdy.models import AttemptEvent, ClientConfig, ClientStats, HTTPMethod
from sturdy.rate_limiter import RateLimiter
from sturdy.retry import RetryPolicy, RetryStatistics, retry_if_retryable, wait_for_policy

logger = logging.getLogger(__name__)

AttemptHook = Callable[[AttemptEvent], None]

_TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError)


@dataclass
class ApiResponse:
    """Successful result of a logical call."""

    status_code: int
    headers: httpx.Headers
    data: Any
    request_id: Optional[str] = None
    url: Optional[str] = None
    attempts: int = 1
    elapsed: float = 0.0
    retry_delays: List[float] = field(default_factory=list)


@dataclass
class _Call:
    """Per-call mutable state shared by the attempts of one execute()."""

    context: RequestContext
    adapter: Optional[TypeAdapter] = None
    attempts: int = 0
    delays: List[float] = field(default_factory=list)


def encode_json_body(payload: Any) -> bytes:
    """Encode a JSON body once so every attempt replays the same bytes."""
    try:
        return jsonlib.dumps(payload, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"Request body is not JSON serializable: {e}") from e


class _ExecutorBase:
    """State and bookkeeping shared by the async and sync executors."""

    def __init__(
        self,
        config: ClientConfig,
        retry_policy: Optional[RetryPolicy] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        rate_limiter: Optional[RateLimiter] = None,
        middleware: Optional[MiddlewareChain] = None,
        request_logger: Optional[RequestLogger] = None,
        on_attempt: Optional[List[AttemptHook]] = None,
    ) -> None:
        self.config = config
        self.retry_policy = retry_policy or config.retry_policy()
        self.request_logger = request_logger or RequestLogger()

        if circuit_breaker is None and config.circuit_breaker is not None:
            circuit_breaker = CircuitBreaker(
                failure_threshold=config.circuit_breaker.failure_threshold,
                recovery_timeout=config.circuit_breaker.recovery_timeout,
            )
        self.circuit_breaker = circuit_breaker
        if self.circuit_breaker is not None:
            self.circuit_breaker.add_state_change_listener(self._on_breaker_transition)

        if rate_limiter is None and config.rate_limit_per_minute is not None:
            rate_limiter = RateLimiter(config.rate_limit_per_minute)
        self.rate_limiter = rate_limiter

        self.middleware = middleware or create_default_middleware_chain(
            config, self.request_logger
        )
        self._attempt_hooks: List[AttemptHook] = [self.request_logger.log_attempt]
        self._attempt_hooks.extend(on_attempt or [])

        self._stats = ClientStats()
        self._retry_stats = RetryStatistics()
        self._retry_delays: List[float] = []

    def add_attempt_hook(self, hook: AttemptHook) -> None:
        """Register a callback receiving every :class:`AttemptEvent`."""
        self._attempt_hooks.append(hook)

    def _on_breaker_transition(self, old: CircuitState, new: CircuitState) -> None:
        self.request_logger.log_circuit_breaker_event(old.value, new.value)

    def build_url(self, endpoint: str) -> str:
        """Build full URL from an endpoint path or an absolute URL."""
        if not endpoint:
            raise InvalidRequestError("Endpoint cannot be empty")
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return urljoin(self.config.base_url + "/", endpoint.lstrip("/"))

    def build_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        content: Optional[Union[bytes, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        operation: Optional[str] = None,
    ) -> RequestContext:
        """Prepare a replayable request and run it through the middleware."""
        if json is not None and content is not None:
            raise InvalidRequestError("Pass either json or content, not both")

        if json is not None:
            body: Optional[bytes] = encode_json_body(json)
        elif content is None:
            body = None
        elif isinstance(content, bytes):
            body = content
        elif isinstance(content, str):
            body = content.encode("utf-8")
        else:
            raise NetworkError(
                "Request body is not replayable across retries", can_retry=False
            )

        try:
            method = HTTPMethod(method.upper()).value
        except ValueError:
            raise InvalidRequestError(f"Unsupported HTTP method: {method}") from None

        context = RequestContext(
            method=method,
            url=self.build_url(endpoint),
            operation=operation or f"{method} {endpoint}",
            headers=dict(headers or {}),
            params=params,
            content=body,
            timeout=timeout,
        )
        return self.middleware.process_request(context)

    def _new_call(self, context: RequestContext, response_model: Any) -> _Call:
        self._stats.total_requests += 1
        adapter = type_adapter(response_model) if response_model is not None else None
        return _Call(context=context, adapter=adapter)

    def _gate(
        self,
    ) -> Tuple[Optional[SturdyError], Optional[CircuitPermit], Optional[float]]:
        """Consult breaker then limiter.

        Returns:
            ``(rejection, permit, window)``: the synthesized error if the
            attempt may not be sent, the breaker permit it holds, and the
            limiter window its token was taken from.
        """
        permit = None
        if self.circuit_breaker is not None:
            permit = self.circuit_breaker.acquire()
            if permit is None:
                self._stats.circuit_breaker_rejections += 1
                return self.circuit_breaker.rejection(), None, None

        if self.rate_limiter is None:
            return None, permit, None
        if not self.rate_limiter.try_acquire():
            self._release(permit, None)
            self._stats.rate_limiter_rejections += 1
            return self.rate_limiter.rejection(), None, None
        return None, permit, self.rate_limiter.window_start

    def _release(self, permit: Optional[CircuitPermit], window: Optional[float]) -> None:
        """Undo the accounting of an attempt that never completed."""
        if self.circuit_breaker is not None and permit is not None:
            self.circuit_breaker.release(permit)
        if self.rate_limiter is not None and window is not None:
            self.rate_limiter.refund(window)

    def _emit(
        self,
        call: _Call,
        attempt: int,
        elapsed: float,
        outcome: str,
        status_code: Optional[int] = None,
        error: Optional[SturdyError] = None,
    ) -> None:
        event = AttemptEvent(
            operation=call.context.operation,
            method=call.context.method,
            url=call.context.url,
            attempt=attempt,
            elapsed_seconds=elapsed,
            outcome=outcome,
            status_code=status_code,
            error_kind=error.kind.value if error is not None else None,
            request_id=call.context.request_id,
        )
        for hook in self._attempt_hooks:
            try:
                hook(event)
            except Exception as e:
                logger.error(f"Error in attempt hook: {e}")

    def _rejected(self, call: _Call, attempt: int, error: SturdyError) -> SturdyError:
        self._emit(call, attempt, 0.0, outcome="rejected", error=error)
        return error

    def _settle_failure(
        self,
        call: _Call,
        attempt: int,
        started: float,
        error: SturdyError,
        status_code: Optional[int] = None,
    ) -> SturdyError:
        elapsed = time.monotonic() - started
        if self.circuit_breaker is not None:
            self.circuit_breaker.record_outcome(error)
        self._stats.total_attempts += 1
        self._stats.record_response_time(elapsed)
        self._retry_stats.record_attempt(success=False, status_code=status_code)
        self._emit(call, attempt, elapsed, "failure", status_code, error)
        return error

    def _complete(
        self,
        call: _Call,
        attempt: int,
        started: float,
        response: httpx.Response,
    ) -> ApiResponse:
        """Classify a finished exchange; raise on error, else build the result."""
        if not response.is_success:
            error = classify_error_response(response)
            raise self._settle_failure(call, attempt, started, error, response.status_code)

        try:
            data = decode_success_body(response, call.adapter)
        except NetworkError as error:
            raise self._settle_failure(
                call, attempt, started, error, response.status_code
            ) from error.__cause__

        elapsed = time.monotonic() - started
        if self.circuit_breaker is not None:
            self.circuit_breaker.record_success()
        self._stats.total_attempts += 1
        self._stats.record_response_time(elapsed)
        self._retry_stats.record_attempt(success=True, status_code=response.status_code)
        self._emit(call, attempt, elapsed, "success", response.status_code)

        return ApiResponse(
            status_code=response.status_code,
            headers=response.headers,
            data=data,
            request_id=response.headers.get("X-Request-ID", call.context.request_id),
            url=str(response.url),
            attempts=call.attempts,
            elapsed=time.monotonic() - call.context.start_time,
            retry_delays=list(call.delays),
        )

    def _transport_failure(
        self,
        call: _Call,
        attempt: int,
        started: float,
        exc: Exception,
    ) -> SturdyError:
        timeout = call.context.timeout or self.config.timeout
        error = classify_transport_error(exc, timeout, call.context.operation)
        return self._settle_failure(call, attempt, started, error)

    def _timeout(self, call: _Call) -> Any:
        if call.context.timeout is None:
            return httpx.USE_CLIENT_DEFAULT
        return call.context.timeout

    def _retrying_kwargs(self, call: _Call) -> Dict[str, Any]:
        def before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            error = retry_state.outcome.exception() if retry_state.outcome else None
            self._stats.total_retries += 1
            self._retry_stats.record_delay(delay)
            call.delays.append(delay)
            self.request_logger.log_retry(
                attempt=retry_state.attempt_number,
                max_attempts=self.retry_policy.max_attempts,
                delay=delay,
                reason=str(error),
                request_id=call.context.request_id,
            )

        return dict(
            stop=stop_after_attempt(self.retry_policy.max_attempts + 1),
            wait=wait_for_policy(self.retry_policy),
            retry=retry_if_retryable,
            before_sleep=before_sleep,
            reraise=True,
        )

    def _final_error(self, call: _Call, error: SturdyError) -> SturdyError:
        """Error surfaced to the caller once the attempt loop has stopped.

        A failure on the very first attempt is returned as-is; later failures
        are wrapped so the caller can see how many attempts were spent.
        """
        final: SturdyError = error
        if call.attempts > 1 and not isinstance(error, RetryExhausted):
            final = RetryExhausted(
                attempts=call.attempts,
                operation=call.context.operation,
                last_error=error,
            )
        self._stats.failed_requests += 1
        self._retry_delays = list(call.delays)
        self.middleware.process_error(call.context, final)
        return final

    def _succeeded(self, call: _Call, result: ApiResponse) -> ApiResponse:
        self._stats.successful_requests += 1
        self._retry_delays = list(call.delays)
        self.middleware.process_response(
            call.context,
            ResponseContext(
                status_code=result.status_code,
                headers=dict(result.headers),
                elapsed=result.elapsed,
            ),
        )
        return result

    def get_retry_delays(self) -> List[float]:
        """Backoff sleeps of the most recently finished call.

        With concurrent calls use ``ApiResponse.retry_delays`` instead; each
        response carries the delays of its own call.
        """
        return self._retry_delays.copy()

    def get_stats(self) -> ClientStats:
        """Get executor statistics."""
        return self._stats

    def get_retry_stats(self) -> Dict[str, Any]:
        """Get a flat summary of call and retry statistics."""
        summary = self._stats.as_dict()
        summary["avg_retries"] = (
            self._stats.total_retries / self._stats.total_requests
            if self._stats.total_requests > 0 else 0
        )
        summary["average_delay"] = self._retry_stats.average_delay
        summary["total_delay"] = self._retry_stats.total_delay
        return summary

    def reset_stats(self) -> None:
        """Reset all statistics."""
        self._stats = ClientStats()
        self._retry_stats.reset()


class AsyncRequestExecutor(_ExecutorBase):
    """Runs logical calls on an ``httpx.AsyncClient``."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        config: ClientConfig,
        sleep: Optional[Callable[[float], Any]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(config, **kwargs)
        self._http = http
        self._sleep = sleep or self._default_sleep

    @staticmethod
    async def _default_sleep(seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def _attempt(self, call: _Call) -> ApiResponse:
        attempt = call.attempts
        call.attempts += 1

        rejection, permit, window = self._gate()
        if rejection is not None:
            raise self._rejected(call, attempt, rejection)

        context = call.context
        started = time.monotonic()
        try:
            response = await self._http.request(
                context.method,
                context.url,
                params=context.params,
                content=context.content,
                headers=context.headers,
                timeout=self._timeout(call),
            )
        except _TRANSPORT_ERRORS as exc:
            raise self._transport_failure(call, attempt, started, exc) from exc
        except BaseException:
            self._release(permit, window)
            raise
        return self._complete(call, attempt, started, response)

    async def execute(
        self,
        context: RequestContext,
        response_model: Any = None,
    ) -> ApiResponse:
        """Run one logical call to completion.

        Raises:
            SturdyError: the first attempt's error, or ``RetryExhausted``
                wrapping the last error once more than one attempt was made.
        """
        call = self._new_call(context, response_model)
        retrying = AsyncRetrying(sleep=self._sleep, **self._retrying_kwargs(call))
        try:
            result = await retrying(self._attempt, call)
        except SturdyError as error:
            final = self._final_error(call, error)
            if final is error:
                raise
            raise final from error
        return self._succeeded(call, result)


class RequestExecutor(_ExecutorBase):
    """Runs logical calls on a blocking ``httpx.Client``."""

    def __init__(
        self,
        http: httpx.Client,
        config: ClientConfig,
        sleep: Optional[Callable[[float], None]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(config, **kwargs)
        self._http = http
        self._sleep = sleep or self._default_sleep

    @staticmethod
    def _default_sleep(seconds: float) -> None:
        time.sleep(seconds)

    def _attempt(self, call: _Call) -> ApiResponse:
        attempt = call.attempts
        call.attempts += 1

        rejection, permit, window = self._gate()
        if rejection is not None:
            raise self._rejected(call, attempt, rejection)

        context = call.context
        started = time.monotonic()
        try:
            response = self._http.request(
                context.method,
                context.url,
                params=context.params,
                content=context.content,
                headers=context.headers,
                timeout=self._timeout(call),
            )
        except _TRANSPORT_ERRORS as exc:
            raise self._transport_failure(call, attempt, started, exc) from exc
        except BaseException:
            self._release(permit, window)
            raise
        return self._complete(call, attempt, started, response)

    def execute(
        self,
        context: RequestContext,
        response_model: Any = None,
    ) -> ApiResponse:
        """Blocking counterpart of :meth:`AsyncRequestExecutor.execute`."""
        call = self._new_call(context, response_model)
        retrying = Retrying(sleep=self._sleep, **self._retrying_kwargs(call))
        try:
            result = retrying(self._attempt, call)
        except SturdyError as error:
            final = self._final_error(call, error)
            if final is error:
                raise
            raise final from error
        return self._succeeded(call, result)
