"""Request/response interceptors.

A :class:`MiddlewareChain` sees each logical call at most three times:
``process_request`` once before the first attempt (every retry reuses the
resulting headers and request id), then ``process_response`` with the
successful result or ``process_error`` with the terminal error.
"""

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from sturdy._version import __version__
from sturdy.logging import RequestLogger
from sturdy.models import ClientConfig

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class RequestContext:
    """A logical call on its way out.

    ``content`` holds the encoded body so every attempt sends identical bytes.
    """

    method: str
    url: str
    operation: str = "http_request"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    content: Optional[bytes] = None
    timeout: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    start_time: float = field(default_factory=time.monotonic)

    @property
    def request_id(self) -> Optional[str]:
        return self.headers.get(REQUEST_ID_HEADER)


@dataclass
class ResponseContext:
    """Summary of a successful call handed back through the chain."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    elapsed: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)


class Middleware(ABC):
    """Base interceptor; only ``process_request`` is mandatory."""

    @abstractmethod
    def process_request(self, context: RequestContext) -> RequestContext:
        """Adjust the call before its first attempt."""

    def process_response(
        self,
        request: RequestContext,
        response: ResponseContext,
    ) -> ResponseContext:
        return response

    def process_error(self, request: RequestContext, error: Exception) -> None:
        """Observe the error a call finally failed with."""


class MiddlewareChain:
    """Ordered interceptors: requests run front to back, results back to front."""

    def __init__(self, *middleware: Middleware) -> None:
        self._items: List[Middleware] = list(middleware)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._items)

    def add(self, middleware: Middleware) -> "MiddlewareChain":
        """Append ``middleware`` and return the chain."""
        self._items.append(middleware)
        return self

    def remove(self, middleware: Middleware) -> bool:
        """Drop ``middleware``; False if it was never added."""
        if middleware not in self._items:
            return False
        self._items.remove(middleware)
        return True

    def process_request(self, context: RequestContext) -> RequestContext:
        for item in self._items:
            context = item.process_request(context)
        return context

    def process_response(
        self,
        request: RequestContext,
        response: ResponseContext,
    ) -> ResponseContext:
        for item in reversed(self._items):
            response = item.process_response(request, response)
        return response

    def process_error(self, request: RequestContext, error: Exception) -> None:
        for item in reversed(self._items):
            item.process_error(request, error)


def generate_request_id() -> str:
    """Client-side request id: epoch millis plus a random suffix."""
    return f"sturdy-{int(time.time() * 1000)}-{uuid.uuid4().hex}"


class ClientHeadersMiddleware(Middleware):
    """Adds the headers every Sturdy request carries.

    Headers passed for the individual call take precedence.
    """

    def __init__(self, config: ClientConfig) -> None:
        self.config = config

    def process_request(self, context: RequestContext) -> RequestContext:
        headers = {
            "Accept": "application/json",
            "User-Agent": self.config.user_agent,
            "X-Client-Version": __version__,
            **self.config.default_headers,
        }
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        headers[REQUEST_ID_HEADER] = generate_request_id()
        headers.update(context.headers)
        context.headers = headers
        return context


class ContentTypeMiddleware(Middleware):
    """Labels request bodies that carry no explicit Content-Type."""

    def __init__(self, default_content_type: str = "application/json") -> None:
        self.default_content_type = default_content_type

    def process_request(self, context: RequestContext) -> RequestContext:
        if context.content is not None:
            context.headers.setdefault("Content-Type", self.default_content_type)
        return context


class TimingMiddleware(Middleware):
    """Stores whole-call time, backoff included, as ``total_elapsed``."""

    def process_request(self, context: RequestContext) -> RequestContext:
        context.metadata["timing_start"] = time.monotonic()
        return context

    def process_response(
        self,
        request: RequestContext,
        response: ResponseContext,
    ) -> ResponseContext:
        started = request.metadata.get("timing_start", request.start_time)
        response.metadata["total_elapsed"] = time.monotonic() - started
        return response


class LoggingMiddleware(Middleware):
    """Logs call start and terminal errors through a :class:`RequestLogger`."""

    def __init__(self, request_logger: Optional[RequestLogger] = None) -> None:
        self.request_logger = request_logger or RequestLogger()

    def process_request(self, context: RequestContext) -> RequestContext:
        self.request_logger.log_request(
            method=context.method,
            url=context.url,
            headers=context.headers,
            request_id=context.request_id,
        )
        return context

    def process_error(self, request: RequestContext, error: Exception) -> None:
        self.request_logger.log_error(
            error,
            request_id=request.request_id,
            context={"operation": request.operation},
        )


def create_default_middleware_chain(
    config: ClientConfig,
    request_logger: Optional[RequestLogger] = None,
) -> MiddlewareChain:
    """Timing, client headers, content type, then logging."""
    return MiddlewareChain(
        TimingMiddleware(),
        ClientHeadersMiddleware(config),
        ContentTypeMiddleware(),
        LoggingMiddleware(request_logger),
    )
