"""Tests for database connection management."""

import pytest
from sqlalchemy import text
from sqlalchemy.pool import StaticPool

from polymarket_copy_tracker.storage.database import DatabaseManager, _normalize_async_database_url


class TestNormalizeUrl:
    """Tests for async driver selection."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgresql://u:p@host/db", "postgresql+asyncpg://u:p@host/db"),
            ("postgresql+asyncpg://u:p@host/db", "postgresql+asyncpg://u:p@host/db"),
            ("sqlite:///copy-trades.db", "sqlite+aiosqlite:///copy-trades.db"),
            ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
        ],
    )
    def test_normalize(self, url: str, expected: str) -> None:
        assert _normalize_async_database_url(url) == expected


class TestDatabaseManager:
    """Tests for DatabaseManager."""

    def test_engine_options(self) -> None:
        assert DatabaseManager("postgresql+asyncpg://u:p@host/db", pool_size=3)._engine_options() == {
            "pool_size": 3,
            "max_overflow": 10,
        }
        assert DatabaseManager("sqlite+aiosqlite:///runs.db")._engine_options() == {}
        memory = DatabaseManager("sqlite+aiosqlite:///:memory:")._engine_options()
        assert memory["poolclass"] is StaticPool

    @staticmethod
    async def _count(db_manager: DatabaseManager) -> int:
        async with db_manager.get_async_session() as session:
            return (await session.execute(text("SELECT COUNT(*) FROM copy_trade_runs"))).scalar_one()

    @staticmethod
    async def _insert(db_manager: DatabaseManager) -> None:
        async with db_manager.get_async_session() as session:
            await session.execute(
                text(
                    "INSERT INTO copy_trade_runs (id, name, trader_address, initial_budget, "
                    "current_budget, fixed_bet_amount, min_trigger_amount, min_price, max_price, "
                    "is_active, created_at_ms, last_checked_ms, position, updated_at) VALUES "
                    "('r', 'r', '0xabc', 1, 1, 1, 0, 0, 1, 1, 0, 0, 0, '2026-01-01')"
                )
            )

    @pytest.mark.asyncio
    async def test_session_commits(self, db_manager: DatabaseManager) -> None:
        await self._insert(db_manager)

        assert await self._count(db_manager) == 1

    @pytest.mark.asyncio
    async def test_session_rolls_back_on_error(self, db_manager: DatabaseManager) -> None:
        await self._insert(db_manager)

        with pytest.raises(RuntimeError):
            async with db_manager.get_async_session() as session:
                await session.execute(text("DELETE FROM copy_trade_runs"))
                raise RuntimeError("boom")

        assert await self._count(db_manager) == 1

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self) -> None:
        manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
        await manager.init_schema_async()

        await manager.dispose_async()
        await manager.dispose_async()
