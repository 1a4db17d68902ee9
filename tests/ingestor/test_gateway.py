"""Tests for the market data gateway."""

import time

import httpx
import pytest

from polymarket_copy_tracker.ingestor.gateway import (
    MarketDataClient,
    MarketDataError,
    MarketDataResponseError,
    MarketDataTransientError,
    RateLimiter,
    RetryError,
    with_retry,
)

DATA_API = "https://data-api.test"
GAMMA_API = "https://gamma-api.test"


def _activity(index: int, **overrides: object) -> dict:
    record = {
        "transactionHash": f"0xtx{index}",
        "timestamp": 1_700_000_000 + index,
        "type": "TRADE",
        "side": "BUY",
        "size": 100,
        "price": 0.5,
        "asset": f"asset-{index}",
        "conditionId": "0xcond",
        "outcome": "Yes",
    }
    record.update(overrides)
    return record


def _client(handler, **kwargs) -> MarketDataClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MarketDataClient(
        data_api_url=DATA_API,
        gamma_api_url=GAMMA_API,
        requests_per_second=100,
        retry_base_delay=0,
        http_client=http_client,
        **kwargs,
    )


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.mark.asyncio
    async def test_acquire_no_wait_first_call(self) -> None:
        """First call should not wait."""
        limiter = RateLimiter(max_requests_per_second=10)
        start = time.monotonic()
        await limiter.acquire()
        elapsed = time.monotonic() - start

        assert elapsed < 0.05

    @pytest.mark.asyncio
    async def test_acquire_enforces_rate(self) -> None:
        """Subsequent calls should be rate limited."""
        limiter = RateLimiter(max_requests_per_second=10)  # 100ms between calls

        await limiter.acquire()
        start = time.monotonic()
        await limiter.acquire()
        elapsed = time.monotonic() - start

        assert elapsed >= 0.08


class TestWithRetry:
    """Tests for retry decorator."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0)
        async def succeed() -> str:
            nonlocal call_count
            call_count += 1
            return "success"

        assert await succeed() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_success_after_retries(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0)
        async def succeed_eventually() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise MarketDataTransientError("Not yet")
            return "success"

        assert await succeed_eventually() == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries(self) -> None:
        """Raises RetryError after exhausting retries."""

        @with_retry(max_retries=2, base_delay=0)
        async def always_fails() -> str:
            raise MarketDataTransientError("Always fails")

        with pytest.raises(RetryError) as exc_info:
            await always_fails()

        assert "3 attempts failed" in str(exc_info.value)
        assert isinstance(exc_info.value.last_exception, MarketDataTransientError)
        assert isinstance(exc_info.value, MarketDataError)

    @pytest.mark.asyncio
    async def test_non_transient_not_retried(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0)
        async def fail_permanently() -> str:
            nonlocal call_count
            call_count += 1
            raise MarketDataError("Not retried", status_code=404)

        with pytest.raises(MarketDataError):
            await fail_permanently()

        assert call_count == 1


class TestFetchActivity:
    """Tests for MarketDataClient.fetch_activity."""

    @pytest.mark.asyncio
    async def test_single_page(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[_activity(1), _activity(2)])

        async with _client(handler) as client:
            activities = await client.fetch_activity("0xtrader", limit=1000)

        assert [a.transaction_hash for a in activities] == ["0xtx1", "0xtx2"]
        assert activities[0].timestamp_ms == 1_700_000_001_000
        assert len(seen) == 1
        params = seen[0].url.params
        assert seen[0].url.path == "/activity"
        assert params["user"] == "0xtrader"
        assert params["limit"] == "500"
        assert params["offset"] == "0"
        assert params["sortBy"] == "TIMESTAMP"
        assert params["sortDirection"] == "DESC"

    @pytest.mark.asyncio
    async def test_pages_until_limit(self) -> None:
        offsets: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            offset = int(request.url.params["offset"])
            page_limit = int(request.url.params["limit"])
            offsets.append(str(offset))
            return httpx.Response(200, json=[_activity(offset + i) for i in range(page_limit)])

        async with _client(handler, page_size=2) as client:
            activities = await client.fetch_activity("0xtrader", limit=5)

        assert len(activities) == 5
        assert offsets == ["0", "2", "4"]

    @pytest.mark.asyncio
    async def test_stops_on_short_page(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json=[_activity(1)])

        async with _client(handler, page_size=2) as client:
            activities = await client.fetch_activity("0xtrader", limit=10)

        assert len(activities) == 1
        assert calls == 1

    @pytest.mark.asyncio
    async def test_malformed_records_are_skipped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[_activity(1), {"type": "TRADE"}, _activity(2, price="bad")],
            )

        async with _client(handler) as client:
            activities = await client.fetch_activity("0xtrader", limit=100)

        assert [a.transaction_hash for a in activities] == ["0xtx1"]

    @pytest.mark.asyncio
    async def test_unexpected_shape(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": "nope"})

        async with _client(handler) as client:
            with pytest.raises(MarketDataResponseError):
                await client.fetch_activity("0xtrader", limit=100)

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        async with _client(handler) as client:
            with pytest.raises(MarketDataResponseError):
                await client.fetch_activity("0xtrader", limit=100)

    @pytest.mark.asyncio
    async def test_retries_transient_status(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(429)
            return httpx.Response(200, json=[_activity(1)])

        async with _client(handler) as client:
            activities = await client.fetch_activity("0xtrader", limit=100)

        assert len(activities) == 1
        assert calls == 2

    @pytest.mark.asyncio
    async def test_retries_network_error_then_gives_up(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler, max_retries=2) as client:
            with pytest.raises(RetryError):
                await client.fetch_activity("0xtrader", limit=100)

        assert calls == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400)

        async with _client(handler) as client:
            with pytest.raises(MarketDataError) as exc_info:
                await client.fetch_activity("0xtrader", limit=100)

        assert exc_info.value.status_code == 400
        assert calls == 1


class TestFetchMarketResolutions:
    """Tests for MarketDataClient.fetch_market_resolutions."""

    @staticmethod
    def _market(condition_id: str) -> dict:
        return {
            "conditionId": condition_id,
            "closed": True,
            "outcomes": '["Yes", "No"]',
            "outcomePrices": '["1", "0"]',
        }

    @pytest.mark.asyncio
    async def test_batches_and_dedupes(self) -> None:
        batches: list[list[str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            ids = request.url.params.get_list("condition_ids")
            batches.append(ids)
            return httpx.Response(200, json=[self._market(cid) for cid in ids])

        async with _client(handler, resolution_batch_size=2) as client:
            resolutions = await client.fetch_market_resolutions(["0xc", "0xa", "0xb", "0xa", ""])

        assert batches == [["0xa", "0xb"], ["0xc"]]
        assert [r.condition_id for r in resolutions] == ["0xa", "0xb", "0xc"]

    @pytest.mark.asyncio
    async def test_no_ids_no_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("unexpected request")

        async with _client(handler) as client:
            assert await client.fetch_market_resolutions([]) == []

    @pytest.mark.asyncio
    async def test_malformed_market_skipped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[self._market("0xa"), {"conditionId": "0xb", "outcomes": '["Yes"]'}],
            )

        async with _client(handler) as client:
            resolutions = await client.fetch_market_resolutions(["0xa", "0xb"])

        assert [r.condition_id for r in resolutions] == ["0xa"]

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with _client(handler, max_retries=1) as client:
            with pytest.raises(RetryError) as exc_info:
                await client.fetch_market_resolutions(["0xa"])

        assert isinstance(exc_info.value.last_exception, MarketDataTransientError)
        assert exc_info.value.last_exception.status_code == 503


class TestClientConstruction:
    """Tests for MarketDataClient argument validation."""

    def test_rejects_non_positive_page_size(self) -> None:
        with pytest.raises(ValueError):
            MarketDataClient(page_size=0)

    def test_rejects_non_positive_batch_size(self) -> None:
        with pytest.raises(ValueError):
            MarketDataClient(resolution_batch_size=0)
