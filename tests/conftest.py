"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import Any

import pytest

from polymarket_copy_tracker.copytrade.models import Run, RunConfiguration
from polymarket_copy_tracker.ingestor.gateway import MarketDataError
from polymarket_copy_tracker.ingestor.models import Activity, MarketResolution
from polymarket_copy_tracker.storage.database import DatabaseManager
from polymarket_copy_tracker.storage.repos import RunStore

TRADER_ADDRESS = "0x1234567890abcdef1234567890abcdef12345678"
CREATED_AT_MS = 1_700_000_000_000
CONDITION_ID = "0x" + "c" * 64


class FakeGateway:
    """In-memory market data gateway.

    ``activities`` is returned (truncated to the requested limit) by
    ``fetch_activity``; ``resolutions`` maps condition IDs to records.
    Setting ``activity_error`` / ``resolution_error`` makes the matching
    call raise.
    """

    def __init__(self) -> None:
        self.activities: list[Activity] = []
        self.resolutions: dict[str, MarketResolution] = {}
        self.activity_error: MarketDataError | None = None
        self.resolution_error: MarketDataError | None = None
        self.activity_calls: list[tuple[str, int]] = []
        self.resolution_calls: list[set[str]] = []

    async def fetch_activity(self, trader_address: str, limit: int) -> list[Activity]:
        self.activity_calls.append((trader_address, limit))
        if self.activity_error is not None:
            raise self.activity_error
        return list(self.activities[:limit])

    async def fetch_market_resolutions(self, condition_ids: Iterable[str]) -> list[MarketResolution]:
        ids = set(condition_ids)
        self.resolution_calls.append(ids)
        if self.resolution_error is not None:
            raise self.resolution_error
        return [self.resolutions[cid] for cid in sorted(ids) if cid in self.resolutions]

    def resolve(self, condition_id: str, winner: str, loser: str = "No") -> None:
        """Mark a market closed with ``winner`` priced at 1."""
        self.resolutions[condition_id] = MarketResolution(
            condition_id=condition_id,
            closed=True,
            outcome_prices=(Decimal("1"), Decimal("0")),
            outcomes=(winner, loser),
        )


@pytest.fixture
def trader_address() -> str:
    """Sample trader wallet address."""
    return TRADER_ADDRESS


@pytest.fixture
def make_activity() -> Callable[..., Activity]:
    """Factory for BUY trade activity events."""

    def _make(
        tx: str = "0xtx1",
        *,
        asset: str = "asset-yes",
        side: str = "BUY",
        type: str = "TRADE",
        size: str = "100",
        price: str = "0.40",
        timestamp_ms: int = CREATED_AT_MS + 60_000,
        condition_id: str = CONDITION_ID,
        outcome: str = "Yes",
    ) -> Activity:
        return Activity(
            transaction_hash=tx,
            timestamp_ms=timestamp_ms,
            type=type,
            side=side,
            size=Decimal(size),
            price=Decimal(price),
            asset=asset,
            condition_id=condition_id,
            outcome=outcome,
            market="Will it happen?",
            slug="will-it-happen",
        )

    return _make


@pytest.fixture
def config_record(trader_address: str) -> dict[str, Any]:
    """Raw camelCase configuration record."""
    return {
        "id": "run-1",
        "name": "Whale",
        "traderAddress": trader_address,
        "minTriggerAmount": 0,
        "minPrice": 0,
        "maxPrice": 1,
        "initialBudget": 100,
        "fixedBetAmount": 10,
    }


@pytest.fixture
def make_run(config_record: dict[str, Any]) -> Callable[..., Run]:
    """Factory for fresh runs created at CREATED_AT_MS."""

    def _make(**overrides: Any) -> Run:
        record = {**config_record, **overrides}
        return Run.from_configuration(RunConfiguration.from_dict(record), created_at=CREATED_AT_MS)

    return _make


@pytest.fixture
def fake_gateway() -> FakeGateway:
    """Fresh in-memory gateway."""
    return FakeGateway()


@pytest.fixture
async def db_manager():
    """DatabaseManager on an in-memory SQLite database with the schema created."""
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def run_store(db_manager: DatabaseManager) -> RunStore:
    """RunStore backed by the in-memory database."""
    return RunStore(db_manager)
