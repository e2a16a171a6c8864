"""Tests for cursor-based pagination."""

import httpx
import pytest
from pydantic import BaseModel

from conftest import BASE_URL
from sturdy import AsyncSturdyClient, SturdyClient
from sturdy.exceptions import NetworkError, NotFoundError, RetryExhausted
from sturdy.pagination import Page, count_query, parse_count, parse_page, resolve_cursor


class Item(BaseModel):
    id: str


NEXT_URL = f"{BASE_URL}/items?cursor=c2"


class TestParsePage:
    """Tests for list envelope parsing."""

    def test_next_page_cursor(self):
        page = parse_page({"data": [1, 2], "next_page": NEXT_URL})

        assert page == Page(items=[1, 2], next_cursor=NEXT_URL)
        assert page.is_last is False

    def test_next_page_takes_precedence_over_next(self):
        page = parse_page({"data": [1], "next_page": "a", "next": "b"})

        assert page.next_cursor == "a"

    def test_falls_back_to_next(self):
        page = parse_page({"data": [1], "next_page": None, "next": "b"})

        assert page.next_cursor == "b"

    def test_missing_cursor_is_last(self):
        assert parse_page({"data": [1]}).is_last is True

    def test_empty_data_is_last_even_with_cursor(self):
        assert parse_page({"data": [], "next_page": NEXT_URL}).is_last is True

    def test_missing_data_reads_as_empty(self):
        assert parse_page({"next_page": NEXT_URL}).items == []

    @pytest.mark.parametrize("payload", [[1, 2], "text", None, {"data": {"a": 1}}])
    def test_malformed_envelope(self, payload):
        with pytest.raises(NetworkError):
            parse_page(payload)


class TestResolveCursor:
    """Tests for turning a cursor into the next page URL."""

    PAGE_URL = "https://api.example.com/v1/orders?limit=2"

    def test_absolute_cursor_unchanged(self):
        assert resolve_cursor(self.PAGE_URL, NEXT_URL) == NEXT_URL

    def test_root_relative_cursor_keeps_base_path_once(self):
        assert resolve_cursor(self.PAGE_URL, "/v1/orders?cursor=2") == (
            "https://api.example.com/v1/orders?cursor=2"
        )

    def test_query_only_cursor_replaces_query(self):
        assert resolve_cursor(self.PAGE_URL, "?cursor=2") == (
            "https://api.example.com/v1/orders?cursor=2"
        )

    def test_no_cursor(self):
        assert resolve_cursor(self.PAGE_URL, None) is None


class TestCount:
    def test_count_query_adds_flag(self):
        assert count_query({"status": "open"}) == {"status": "open", "count_only": "true"}
        assert count_query(None) == {"count_only": "true"}

    def test_parse_count(self):
        assert parse_count({"count": 42}) == 42
        assert parse_count({"total": 7}) == 7

    @pytest.mark.parametrize("payload", [{}, {"count": "42"}, {"count": True}, [3]])
    def test_parse_count_rejects_garbage(self, payload):
        with pytest.raises(NetworkError):
            parse_count(payload)


class TestAsyncStream:
    """Tests for AsyncPageStream through the client."""

    async def test_items_in_order_across_pages(self, api, client_config, async_sleep):
        """Test two pages [a, b] and [c] stream as a, b, c."""
        route = api.get("/items").mock(
            side_effect=[
                httpx.Response(200, json={"data": ["a", "b"], "next_page": NEXT_URL}),
                httpx.Response(200, json={"data": ["c"], "next_page": None}),
            ]
        )

        async with AsyncSturdyClient(client_config, sleep=async_sleep) as client:
            items = [item async for item in client.stream("/items", {"limit": 2})]

        assert items == ["a", "b", "c"]
        first, second = (call.request for call in route.calls)
        assert first.url.params["limit"] == "2"
        assert str(second.url) == NEXT_URL

    async def test_empty_first_page(self, api, client_config, async_sleep):
        route = api.get("/items").mock(
            return_value=httpx.Response(200, json={"data": [], "next_page": NEXT_URL})
        )

        async with AsyncSturdyClient(client_config, sleep=async_sleep) as client:
            items = await client.collect_all("/items")

        assert items == []
        assert route.call_count == 1

    async def test_stream_is_lazy(self, api, client_config, async_sleep):
        route = api.get("/items").mock(return_value=httpx.Response(200, json={"data": []}))

        async with AsyncSturdyClient(client_config, sleep=async_sleep) as client:
            client.stream("/items")

        assert not route.called

    async def test_iterating_twice_starts_over(self, api, client_config, async_sleep):
        route = api.get("/items").mock(return_value=httpx.Response(200, json={"data": ["a"]}))

        async with AsyncSturdyClient(client_config, sleep=async_sleep) as client:
            stream = client.stream("/items")
            assert await stream.collect_all() == ["a"]
            assert await stream.collect_all() == ["a"]

        assert route.call_count == 2

    async def test_typed_items(self, api, client_config, async_sleep):
        api.get("/items").mock(
            return_value=httpx.Response(200, json={"data": [{"id": "a"}, {"id": "b"}]})
        )

        async with AsyncSturdyClient(client_config, sleep=async_sleep) as client:
            items = await client.collect_all("/items", item_type=Item)

        assert items == [Item(id="a"), Item(id="b")]

    async def test_bad_item_raises_by_default(self, api, client_config, async_sleep):
        """Test the first undecodable item ends the stream."""
        api.get("/items").mock(
            return_value=httpx.Response(200, json={"data": [{"id": "a"}, {"nope": 1}, {"id": "c"}]})
        )
        seen = []

        async with AsyncSturdyClient(client_config, sleep=async_sleep) as client:
            with pytest.raises(NetworkError) as exc_info:
                async for item in client.stream("/items", item_type=Item):
                    seen.append(item)

        assert seen == [Item(id="a")]
        assert exc_info.value.can_retry is False

    async def test_bad_items_skipped_on_every_page(self, api, client_config, async_sleep):
        """Test skip mode drops bad items on the first page and later pages alike."""
        api.get("/items").mock(
            side_effect=[
                httpx.Response(
                    200, json={"data": [{"bad": 1}, {"id": "a"}], "next_page": NEXT_URL}
                ),
                httpx.Response(200, json={"data": [{"id": "b"}, {"bad": 2}]}),
            ]
        )

        async with AsyncSturdyClient(client_config, sleep=async_sleep) as client:
            items = await client.collect_all("/items", item_type=Item, on_item_error="skip")

        assert items == [Item(id="a"), Item(id="b")]

    async def test_unknown_error_policy(self, client_config):
        async with AsyncSturdyClient(client_config) as client:
            with pytest.raises(ValueError):
                client.stream("/items", on_item_error="ignore")

    async def test_page_errors_always_raise(self, api, client_config, async_sleep):
        api.get("/items").mock(
            side_effect=[
                httpx.Response(200, json={"data": ["a"], "next_page": NEXT_URL}),
                httpx.Response(404),
            ]
        )

        async with AsyncSturdyClient(client_config, sleep=async_sleep) as client:
            with pytest.raises(NotFoundError):
                await client.collect_all("/items", on_item_error="skip")

    async def test_page_fetch_is_retried(self, api, client_config, async_sleep):
        api.get("/items").mock(
            side_effect=[
                httpx.Response(200, json={"data": ["a"], "next_page": NEXT_URL}),
                httpx.Response(503),
                httpx.Response(200, json={"data": ["b"]}),
            ]
        )

        async with AsyncSturdyClient(client_config, sleep=async_sleep) as client:
            assert await client.collect_all("/items") == ["a", "b"]

        assert async_sleep.call_count == 1

    async def test_count(self, api, client_config, async_sleep):
        route = api.get("/items", params={"count_only": "true"}).mock(
            return_value=httpx.Response(200, json={"count": 42})
        )

        async with AsyncSturdyClient(client_config, sleep=async_sleep) as client:
            assert await client.count("/items", {"status": "open"}) == 42

        assert route.call_count == 1
        assert route.calls.last.request.url.params["status"] == "open"


class TestSyncStream:
    """Tests for PageStream through the blocking client."""

    def test_items_in_order_across_pages(self, api, client_config, sleep):
        route = api.get("/items").mock(
            side_effect=[
                httpx.Response(200, json={"data": ["a", "b"], "next": NEXT_URL}),
                httpx.Response(200, json={"data": ["c"]}),
            ]
        )

        with SturdyClient(client_config, sleep=sleep) as client:
            assert list(client.stream("/items", {"limit": 2})) == ["a", "b", "c"]

        assert str(route.calls.last.request.url) == NEXT_URL

    def test_pages(self, api, client_config, sleep):
        api.get("/items").mock(
            side_effect=[
                httpx.Response(200, json={"data": ["a"], "next_page": NEXT_URL}),
                httpx.Response(200, json={"data": ["b"]}),
            ]
        )

        with SturdyClient(client_config, sleep=sleep) as client:
            pages = list(client.stream("/items").pages())

        assert [page.items for page in pages] == [["a"], ["b"]]
        assert pages[-1].is_last

    def test_collect_all_skip(self, api, client_config, sleep):
        api.get("/items").mock(
            return_value=httpx.Response(200, json={"data": [{"id": "a"}, {"id": None}]})
        )

        with SturdyClient(client_config, sleep=sleep) as client:
            items = client.collect_all("/items", item_type=Item, on_item_error="skip")

        assert items == [Item(id="a")]

    def test_count_uses_total_field(self, api, client_config, sleep):
        api.get("/items").mock(return_value=httpx.Response(200, json={"total": 9}))

        with SturdyClient(client_config, sleep=sleep) as client:
            assert client.count("/items") == 9

    def test_failing_page_exhausts_retries(self, api, base_url, sleep):
        api.get("/items").mock(return_value=httpx.Response(500))

        with SturdyClient(base_url=base_url, retry_attempts=1, sleep=sleep) as client:
            with pytest.raises(RetryExhausted):
                client.collect_all("/items")


class TestRelativeCursors:
    """Relative cursors resolve against the page that returned them."""

    async def test_async_stream_under_base_path(self, api, async_sleep):
        route = api.get("/v1/orders").mock(
            side_effect=[
                httpx.Response(200, json={"data": [1], "next_page": "/v1/orders?cursor=2"}),
                httpx.Response(200, json={"data": [2]}),
            ]
        )

        async with AsyncSturdyClient(base_url=f"{BASE_URL}/v1", sleep=async_sleep) as client:
            items = await client.collect_all("/orders", {"limit": 1})

        assert items == [1, 2]
        assert str(route.calls.last.request.url) == f"{BASE_URL}/v1/orders?cursor=2"

    def test_sync_stream_under_base_path(self, api, sleep):
        route = api.get("/v1/orders").mock(
            side_effect=[
                httpx.Response(200, json={"data": [1], "next": "/v1/orders?cursor=2"}),
                httpx.Response(200, json={"data": [2]}),
            ]
        )

        with SturdyClient(base_url=f"{BASE_URL}/v1", sleep=sleep) as client:
            assert client.collect_all("/orders") == [1, 2]

        assert str(route.calls.last.request.url) == f"{BASE_URL}/v1/orders?cursor=2"
