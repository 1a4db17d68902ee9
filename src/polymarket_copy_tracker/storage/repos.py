"""Repository pattern implementations for data access.

This module provides the data access abstraction for copy-trade runs and
their trades, plus the RunStore facade used by the cycle orchestrator.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Iterable
from contextlib import AbstractAsyncContextManager, AsyncExitStack, asynccontextmanager
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select

from polymarket_copy_tracker.copytrade.models import (
    OriginalTradeSnapshot,
    Run,
    RunConfiguration,
    Trade,
    TradeStatus,
    now_ms,
)
from polymarket_copy_tracker.storage.locks import RunLocker, RunLockManager
from polymarket_copy_tracker.storage.models import CopyTradeModel, CopyTradeRunModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from polymarket_copy_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


def _trade_to_model(run_id: str, trade: Trade, position: int) -> CopyTradeModel:
    return CopyTradeModel(
        run_id=run_id,
        trade_id=trade.id,
        transaction_hash=trade.transaction_hash,
        asset=trade.asset,
        condition_id=trade.condition_id,
        outcome=trade.outcome,
        market=trade.market,
        slug=trade.slug,
        icon=trade.icon,
        price=trade.price,
        amount=trade.amount,
        status=trade.status.value,
        pnl=trade.pnl,
        timestamp_ms=trade.timestamp,
        original_json=json.dumps(trade.original.to_dict()) if trade.original else None,
        position=position,
    )


def _trade_from_model(model: CopyTradeModel) -> Trade:
    original = None
    if model.original_json:
        original = OriginalTradeSnapshot.from_dict(json.loads(model.original_json))
    return Trade(
        id=model.trade_id,
        transaction_hash=model.transaction_hash,
        asset=model.asset,
        condition_id=model.condition_id,
        outcome=model.outcome,
        market=model.market,
        price=Decimal(model.price),
        amount=Decimal(model.amount),
        timestamp=model.timestamp_ms,
        status=TradeStatus(model.status),
        pnl=Decimal(model.pnl) if model.pnl is not None else None,
        slug=model.slug,
        icon=model.icon,
        original=original,
    )


def _apply_run_fields(model: CopyTradeRunModel, run: Run) -> None:
    model.name = run.name
    model.trader_address = run.trader_address
    model.initial_budget = run.initial_budget
    model.current_budget = run.current_budget
    model.fixed_bet_amount = run.fixed_bet_amount
    model.min_trigger_amount = run.min_trigger_amount
    model.min_price = run.min_price
    model.max_price = run.max_price
    model.is_active = run.is_active
    model.created_at_ms = run.created_at
    model.last_checked_ms = run.last_checked


def _run_from_model(model: CopyTradeRunModel, trades: list[CopyTradeModel]) -> Run:
    return Run(
        id=model.id,
        name=model.name,
        trader_address=model.trader_address,
        initial_budget=Decimal(model.initial_budget),
        current_budget=Decimal(model.current_budget),
        fixed_bet_amount=Decimal(model.fixed_bet_amount),
        min_trigger_amount=Decimal(model.min_trigger_amount),
        min_price=Decimal(model.min_price),
        max_price=Decimal(model.max_price),
        created_at=model.created_at_ms,
        last_checked=model.last_checked_ms,
        is_active=model.is_active,
        trades=[_trade_from_model(t) for t in trades],
    )


class RunRepository:
    """Repository for copy-trade runs and their trades."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _load_trades(self, run_ids: list[str] | None = None) -> dict[str, list[CopyTradeModel]]:
        stmt = select(CopyTradeModel).order_by(CopyTradeModel.run_id, CopyTradeModel.position)
        if run_ids is not None:
            stmt = stmt.where(CopyTradeModel.run_id.in_(run_ids))
        result = await self.session.execute(stmt)
        grouped: dict[str, list[CopyTradeModel]] = defaultdict(list)
        for model in result.scalars():
            grouped[model.run_id].append(model)
        return grouped

    async def list_all(self) -> list[Run]:
        """Return all runs in collection order, with their trades."""
        result = await self.session.execute(
            select(CopyTradeRunModel).order_by(CopyTradeRunModel.position, CopyTradeRunModel.id)
        )
        run_models = list(result.scalars())
        trades = await self._load_trades()
        return [_run_from_model(m, trades.get(m.id, [])) for m in run_models]

    async def get_by_id(self, run_id: str) -> Run | None:
        model = await self.session.get(CopyTradeRunModel, run_id)
        if model is None:
            return None
        trades = await self._load_trades([run_id])
        return _run_from_model(model, trades.get(run_id, []))

    async def list_ids(self) -> set[str]:
        result = await self.session.execute(select(CopyTradeRunModel.id))
        return set(result.scalars())

    async def _next_position(self) -> int:
        result = await self.session.execute(select(func.max(CopyTradeRunModel.position)))
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    def _add_trades(self, run: Run) -> None:
        self.session.add_all(
            [_trade_to_model(run.id, trade, position) for position, trade in enumerate(run.trades)]
        )

    async def save_run(self, run: Run) -> None:
        """Replace one run and all its trades."""
        await self.session.execute(delete(CopyTradeModel).where(CopyTradeModel.run_id == run.id))

        model = await self.session.get(CopyTradeRunModel, run.id)
        if model is None:
            model = CopyTradeRunModel(id=run.id, position=await self._next_position())
            self.session.add(model)
        _apply_run_fields(model, run)
        await self.session.flush()
        self._add_trades(run)
        await self.session.flush()

    async def replace_all(self, runs: Iterable[Run]) -> int:
        """Replace the whole collection of runs.

        Returns:
            Number of runs written.
        """
        runs = list(runs)
        ids = [r.id for r in runs]
        if len(ids) != len(set(ids)):
            raise ValueError("Run ids must be unique")

        await self.session.execute(delete(CopyTradeModel))
        await self.session.execute(delete(CopyTradeRunModel))
        await self.session.flush()
        self.session.expunge_all()

        for position, run in enumerate(runs):
            model = CopyTradeRunModel(id=run.id, position=position)
            _apply_run_fields(model, run)
            self.session.add(model)
        await self.session.flush()
        for run in runs:
            self._add_trades(run)
        await self.session.flush()
        return len(runs)

    async def create_missing(
        self,
        configurations: Iterable[RunConfiguration],
        *,
        created_at: int,
    ) -> list[Run]:
        """Create runs for configurations that have none yet.

        Returns:
            The newly created runs.
        """
        existing = await self.list_ids()
        position = await self._next_position()
        created: list[Run] = []
        for config in configurations:
            if config.id in existing:
                continue
            run = Run.from_configuration(config, created_at=created_at)
            model = CopyTradeRunModel(id=run.id, position=position)
            _apply_run_fields(model, run)
            self.session.add(model)
            existing.add(config.id)
            position += 1
            created.append(run)
        await self.session.flush()
        return created


class RunStore:
    """Durable store of copy-trade runs.

    Each public method runs in its own transaction. ``lock`` guards a
    run's read-modify-write across the calls of one cycle.

    Example:
        ```python
        store = RunStore(DatabaseManager("sqlite+aiosqlite:///copy-trades.db"))
        async with store.lock(run_id):
            run = await store.get_by_id(run_id)
            ...
            await store.save_run(run)
        ```
    """

    def __init__(self, db: DatabaseManager, locks: RunLocker | None = None) -> None:
        self._db = db
        self._locks = locks or RunLockManager()

    def lock(self, run_id: str) -> AbstractAsyncContextManager[None]:
        """Exclusive section for one run id (async context manager)."""
        return self._locks.lock(run_id)

    async def load(self) -> list[Run]:
        async with self._db.get_async_session() as session:
            return await RunRepository(session).list_all()

    @asynccontextmanager
    async def _lock_many(self, run_ids: Iterable[str]) -> AsyncIterator[None]:
        # Always acquired in sorted order.
        async with AsyncExitStack() as stack:
            for run_id in sorted(set(run_ids)):
                await stack.enter_async_context(self.lock(run_id))
            yield

    async def save(self, runs: Iterable[Run]) -> int:
        """Replace the whole collection.

        Holds the lock of every run in the old and the new collection, so
        an in-flight cycle never overwrites the replacement.
        """
        runs = list(runs)
        async with self._db.get_async_session() as session:
            existing = await RunRepository(session).list_ids()
        async with self._lock_many(existing | {r.id for r in runs}):
            async with self._db.get_async_session() as session:
                count = await RunRepository(session).replace_all(runs)
        logger.info("Saved %d copy-trade runs", count)
        return count

    async def get_by_id(self, run_id: str) -> Run | None:
        async with self._db.get_async_session() as session:
            return await RunRepository(session).get_by_id(run_id)

    async def save_run(self, run: Run) -> None:
        async with self._db.get_async_session() as session:
            await RunRepository(session).save_run(run)
        logger.debug("Saved run %s with %d trades", run.id, len(run.trades))

    async def upsert_from_configurations(
        self,
        configurations: Iterable[RunConfiguration | dict[str, Any]],
        *,
        created_at: int | None = None,
    ) -> list[Run]:
        """Create runs for unseen configurations; existing runs are untouched.

        Raises:
            ConfigurationError: If a configuration record is invalid.
        """
        configs = [RunConfiguration.coerce(c) for c in configurations]
        async with self._db.get_async_session() as session:
            created = await RunRepository(session).create_missing(
                configs, created_at=now_ms() if created_at is None else created_at
            )
        if created:
            logger.info("Initialized %d new copy-trade runs", len(created))
        return created

    async def export_snapshot(self) -> list[dict[str, Any]]:
        """Serialize the whole collection to its JSON snapshot form."""
        return [run.to_dict() for run in await self.load()]

    async def import_snapshot(self, records: Iterable[dict[str, Any]]) -> int:
        """Replace the whole collection from a JSON snapshot.

        Raises:
            CopyTradeError: If any record is malformed. Nothing is written.
        """
        runs = [Run.from_dict(r) for r in records]
        return await self.save(runs)


@asynccontextmanager
async def open_run_store(db: DatabaseManager, locks: RunLocker | None = None) -> AsyncIterator[RunStore]:
    """Create the schema if needed and yield a RunStore, disposing connections on exit."""
    await db.init_schema_async()
    try:
        yield RunStore(db, locks)
    finally:
        await db.dispose_async()
