"""Read-only market data gateway with rate limiting and retry logic.

Wraps two upstream HTTP APIs:

- Data API ``/activity``: a trader's activity feed, most recent first.
- Gamma API ``/markets``: market resolution state by condition ID.

Both are consumed through ``httpx.AsyncClient``. Every request passes
through a shared rate limiter; transient failures (429/5xx, network
errors, timeouts) are retried with exponential backoff.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from functools import wraps
from typing import Any, ParamSpec, Protocol, TypeVar

import httpx

from polymarket_copy_tracker.ingestor.models import Activity, MarketResolution, RecordParseError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Constants
DEFAULT_DATA_API_URL = "https://data-api.polymarket.com"
DEFAULT_GAMMA_API_URL = "https://gamma-api.polymarket.com"
DEFAULT_REQUESTS_PER_SECOND = 2.0
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_PAGE_SIZE = 500
DEFAULT_RESOLUTION_BATCH_SIZE = 50

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class MarketDataError(Exception):
    """Base exception for market data gateway errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MarketDataTransientError(MarketDataError):
    """Raised for retryable/transient errors (e.g., 429/5xx, network issues)."""


class MarketDataResponseError(MarketDataError):
    """Raised when an upstream response has an unexpected shape."""


class RetryError(MarketDataError):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


class RateLimiter:
    """Minimum-interval rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                wait_time = self._min_interval - elapsed
                await asyncio.sleep(wait_time)
            self._last_request_time = time.monotonic()


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (MarketDataTransientError,),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for adding retry logic with exponential backoff to coroutines.

    Args:
        max_retries: Maximum number of retry attempts after the first call.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.

    Returns:
        Decorated coroutine function with retry logic.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt == max_retries:
                        break

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        max_retries + 1,
                        str(e),
                        delay,
                    )
                    await asyncio.sleep(delay)

            raise RetryError(
                f"All {max_retries + 1} attempts failed for {getattr(func, '__name__', 'request')}",
                last_exception=last_exception,
            )

        return wrapper

    return decorator


class MarketDataGateway(Protocol):
    """Read-only access to trader activity and market resolutions."""

    async def fetch_activity(self, trader_address: str, limit: int) -> list[Activity]: ...

    async def fetch_market_resolutions(
        self, condition_ids: Iterable[str]
    ) -> list[MarketResolution]: ...


class MarketDataClient:
    """HTTP client for the Polymarket Data and Gamma APIs.

    Requests are rate limited per client instance and transient errors are
    retried with exponential backoff. Malformed records in otherwise valid
    responses are skipped and counted rather than failing the whole call.

    Example:
        ```python
        async with MarketDataClient() as client:
            feed = await client.fetch_activity("0xabc...", limit=1000)
            markets = await client.fetch_market_resolutions({t.condition_id for t in feed})
        ```
    """

    def __init__(
        self,
        *,
        data_api_url: str = DEFAULT_DATA_API_URL,
        gamma_api_url: str = DEFAULT_GAMMA_API_URL,
        requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        page_size: int = DEFAULT_PAGE_SIZE,
        resolution_batch_size: int = DEFAULT_RESOLUTION_BATCH_SIZE,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the market data client.

        Args:
            data_api_url: Data API base URL.
            gamma_api_url: Gamma API base URL.
            requests_per_second: Rate limit for API requests.
            timeout_seconds: Per-request timeout.
            max_retries: Maximum retry attempts for transient failures.
            retry_base_delay: Initial backoff delay in seconds.
            page_size: Records requested per activity page.
            resolution_batch_size: Condition IDs per resolution request.
            http_client: Optional pre-built client (owned by the caller).
        """
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if resolution_batch_size <= 0:
            raise ValueError("resolution_batch_size must be positive")

        self._data_api_url = data_api_url.rstrip("/")
        self._gamma_api_url = gamma_api_url.rstrip("/")
        self._page_size = page_size
        self._resolution_batch_size = resolution_batch_size
        self._rate_limiter = RateLimiter(requests_per_second)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._get_json = with_retry(
            max_retries=max_retries,
            base_delay=retry_base_delay,
            retry_on=(MarketDataTransientError,),
        )(self._get_json_once)

        logger.info(
            "Initialized MarketDataClient with data_api=%s, gamma_api=%s, rate_limit=%.1f req/s",
            self._data_api_url,
            self._gamma_api_url,
            requests_per_second,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "MarketDataClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _get_json_once(self, url: str, params: list[tuple[str, str]]) -> Any:
        """Perform one rate-limited GET and decode the JSON body."""
        await self._rate_limiter.acquire()
        try:
            response = await self._client.get(url, params=params)
        except httpx.TransportError as e:
            raise MarketDataTransientError(f"Request to {url} failed: {e}") from e

        status = response.status_code
        if status in RETRY_STATUS_CODES:
            raise MarketDataTransientError(f"{url} returned HTTP {status}", status_code=status)
        if status >= 400:
            raise MarketDataError(f"{url} returned HTTP {status}", status_code=status)

        try:
            return response.json()
        except ValueError as e:
            raise MarketDataResponseError(f"{url} returned a non-JSON body") from e

    async def fetch_activity(self, trader_address: str, limit: int) -> list[Activity]:
        """Fetch a trader's activity feed, most recent first.

        Pages through the feed with ``limit``/``offset`` until ``limit``
        records have been read or the feed is exhausted.

        Args:
            trader_address: Trader wallet address.
            limit: Maximum number of records to return.

        Returns:
            Parsed activity records in feed order.

        Raises:
            MarketDataError: If any page fails to load.
        """
        url = f"{self._data_api_url}/activity"
        activities: list[Activity] = []
        skipped = 0
        offset = 0

        while offset < limit:
            page_limit = min(self._page_size, limit - offset)
            params = [
                ("user", trader_address),
                ("limit", str(page_limit)),
                ("offset", str(offset)),
                ("sortBy", "TIMESTAMP"),
                ("sortDirection", "DESC"),
            ]
            page = await self._get_json(url, params)
            if not isinstance(page, list):
                raise MarketDataResponseError("Unexpected activity response shape")

            for raw in page:
                try:
                    activities.append(Activity.from_dict(raw))
                except RecordParseError as e:
                    skipped += 1
                    logger.debug("Quarantined activity record: %s", e)

            offset += len(page)
            if len(page) < page_limit:
                break

        if skipped:
            logger.warning(
                "Skipped %d malformed activity records for %s",
                skipped,
                trader_address,
            )
        logger.debug("Fetched %d activity records for %s", len(activities), trader_address)
        return activities

    async def fetch_market_resolutions(
        self, condition_ids: Iterable[str]
    ) -> list[MarketResolution]:
        """Fetch resolution state for a set of markets.

        Args:
            condition_ids: Condition IDs to look up. Duplicates and empty
                values are ignored.

        Returns:
            One record per market found. Markets missing upstream are
            simply absent from the result.

        Raises:
            MarketDataError: If any batch fails to load.
        """
        ids = sorted({cid for cid in condition_ids if cid})
        url = f"{self._gamma_api_url}/markets"
        resolutions: list[MarketResolution] = []
        skipped = 0

        for start in range(0, len(ids), self._resolution_batch_size):
            chunk = ids[start : start + self._resolution_batch_size]
            params = [("condition_ids", cid) for cid in chunk]
            payload = await self._get_json(url, params)
            if not isinstance(payload, list):
                raise MarketDataResponseError("Unexpected markets response shape")

            for raw in payload:
                try:
                    resolutions.append(MarketResolution.from_dict(raw))
                except RecordParseError as e:
                    skipped += 1
                    logger.debug("Quarantined market record: %s", e)

        if skipped:
            logger.warning("Skipped %d malformed market records", skipped)
        return resolutions
