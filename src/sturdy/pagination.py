"""Cursor-based pagination over ``{"data": [...], "next_page": ...}`` listings.

A stream fetches the first page at ``endpoint`` with the initial query, then
follows the server-supplied cursor verbatim with no query re-attached. It ends
on an empty ``data`` array or when no cursor is given. Streams keep no resume
state; iterating again starts over from the first page.
"""

import logging
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Dict,
    Generic,
    Iterator,
    List,
    Optional,
    TypeVar,
)

import httpx
from pydantic import ValidationError as PydanticValidationError

from sturdy.classify import type_adapter
from sturdy.exceptions import NetworkError

if TYPE_CHECKING:
    from sturdy.async_client import AsyncSturdyClient
    from sturdy.client import SturdyClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

CURSOR_FIELDS = ("next_page", "next")
COUNT_ONLY_PARAM = "count_only"
COUNT_FIELDS = ("count", "total")

ON_ITEM_ERROR_RAISE = "raise"
ON_ITEM_ERROR_SKIP = "skip"


@dataclass
class Page:
    """One decoded page of a listing."""

    items: List[Any]
    next_cursor: Optional[str]

    @property
    def is_last(self) -> bool:
        return not self.items or self.next_cursor is None


def parse_page(payload: Any) -> Page:
    """Split a list envelope into its items and the next cursor.

    The first non-empty string among ``next_page`` and ``next`` is the cursor.
    A missing ``data`` field reads as an empty page.
    """
    if not isinstance(payload, dict):
        raise NetworkError(
            f"Expected a JSON object list envelope, got {type(payload).__name__}",
            can_retry=False,
        )

    data = payload.get("data")
    if data is None:
        data = []
    elif not isinstance(data, list):
        raise NetworkError("List envelope field 'data' is not an array", can_retry=False)

    cursor = None
    for name in CURSOR_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value:
            cursor = value
            break
    return Page(items=data, next_cursor=cursor)


def resolve_cursor(page_url: Optional[str], cursor: Optional[str]) -> Optional[str]:
    """Absolute URL of the next page.

    A relative cursor is resolved against the URL of the page that returned
    it, the way a browser resolves a link. Absolute cursors pass unchanged.
    """
    if cursor is None or page_url is None:
        return cursor
    return str(httpx.URL(page_url).join(cursor))


def parse_count(payload: Any) -> int:
    """Read the total from a count-only response."""
    if isinstance(payload, dict):
        for name in COUNT_FIELDS:
            value = payload.get(name)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    raise NetworkError("Count response carries no integer 'count'", can_retry=False)


def count_query(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    query = dict(params or {})
    query[COUNT_ONLY_PARAM] = "true"
    return query


def _check_item_error_policy(on_item_error: str) -> None:
    if on_item_error not in (ON_ITEM_ERROR_RAISE, ON_ITEM_ERROR_SKIP):
        raise ValueError(f"on_item_error must be 'raise' or 'skip', not {on_item_error!r}")


class _ItemDecoder(Generic[T]):
    """Turns raw page items into ``item_type`` instances under one error policy.

    ``"raise"`` stops the stream at the first bad item; ``"skip"`` logs and
    drops bad items on every page alike.
    """

    def __init__(self, item_type: Any = None, on_item_error: str = ON_ITEM_ERROR_RAISE) -> None:
        _check_item_error_policy(on_item_error)
        self.adapter = type_adapter(item_type) if item_type is not None else None
        self.on_item_error = on_item_error
        self.skipped = 0

    def decode(self, items: List[Any]) -> Iterator[T]:
        for raw in items:
            if self.adapter is None:
                yield raw
                continue
            try:
                item = self.adapter.validate_python(raw)
            except PydanticValidationError as e:
                if self.on_item_error == ON_ITEM_ERROR_RAISE:
                    raise NetworkError(f"Failed to parse item: {e}", can_retry=False) from e
                self.skipped += 1
                logger.warning(f"Skipping undecodable item: {e}")
                continue
            yield item


class AsyncPageStream(Generic[T]):
    """Lazy async sequence of items across every page of a listing."""

    def __init__(
        self,
        client: "AsyncSturdyClient",
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        item_type: Any = None,
        on_item_error: str = ON_ITEM_ERROR_RAISE,
    ) -> None:
        self._client = client
        self.endpoint = endpoint
        self.params = dict(params or {})
        self._item_type = item_type
        self._on_item_error = on_item_error
        _check_item_error_policy(on_item_error)

    async def pages(self) -> AsyncIterator[Page]:
        """Yield raw pages, following cursors until the listing ends."""
        url: Optional[str] = self.endpoint
        params: Optional[Dict[str, Any]] = self.params or None
        number = 0
        while url is not None:
            response = await self._client.get_response(
                url, params=params, operation=f"stream {self.endpoint}"
            )
            page = parse_page(response.data)
            number += 1
            self._client.request_logger.log_page(url, number, len(page.items), not page.is_last)
            yield page
            if page.is_last:
                return
            url, params = resolve_cursor(response.url, page.next_cursor), None

    async def __aiter__(self) -> AsyncIterator[T]:
        decoder: _ItemDecoder[T] = _ItemDecoder(self._item_type, self._on_item_error)
        async for page in self.pages():
            for item in decoder.decode(page.items):
                yield item

    async def collect_all(self) -> List[T]:
        """Drain every page into memory."""
        return [item async for item in self]


class PageStream(Generic[T]):
    """Blocking counterpart of :class:`AsyncPageStream`."""

    def __init__(
        self,
        client: "SturdyClient",
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        item_type: Any = None,
        on_item_error: str = ON_ITEM_ERROR_RAISE,
    ) -> None:
        self._client = client
        self.endpoint = endpoint
        self.params = dict(params or {})
        self._item_type = item_type
        self._on_item_error = on_item_error
        _check_item_error_policy(on_item_error)

    def pages(self) -> Iterator[Page]:
        url: Optional[str] = self.endpoint
        params: Optional[Dict[str, Any]] = self.params or None
        number = 0
        while url is not None:
            response = self._client.get_response(
                url, params=params, operation=f"stream {self.endpoint}"
            )
            page = parse_page(response.data)
            number += 1
            self._client.request_logger.log_page(url, number, len(page.items), not page.is_last)
            yield page
            if page.is_last:
                return
            url, params = resolve_cursor(response.url, page.next_cursor), None

    def __iter__(self) -> Iterator[T]:
        decoder: _ItemDecoder[T] = _ItemDecoder(self._item_type, self._on_item_error)
        for page in self.pages():
            yield from decoder.decode(page.items)

    def collect_all(self) -> List[T]:
        """Drain every page into memory."""
        return list(self)

