"""Data ingestion layer - read-only access to Polymarket activity and resolutions."""

from polymarket_copy_tracker.ingestor.gateway import (
    MarketDataClient,
    MarketDataError,
    MarketDataGateway,
    MarketDataResponseError,
    MarketDataTransientError,
    RateLimiter,
    RetryError,
    with_retry,
)
from polymarket_copy_tracker.ingestor.models import (
    Activity,
    MarketResolution,
    RecordParseError,
    normalize_timestamp_ms,
)

__all__ = [
    "Activity",
    "MarketDataClient",
    "MarketDataError",
    "MarketDataGateway",
    "MarketDataResponseError",
    "MarketDataTransientError",
    "MarketResolution",
    "RateLimiter",
    "RecordParseError",
    "RetryError",
    "normalize_timestamp_ms",
    "with_retry",
]
