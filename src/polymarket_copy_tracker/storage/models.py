"""SQLAlchemy models for persistent storage.

This module defines the database schema for copy-trade runs and their
mirrored trades.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class CopyTradeRunModel(Base):
    """One copy-trade run (monitored trader configuration + budget state)."""

    __tablename__ = "copy_trade_runs"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    trader_address: Mapped[str] = mapped_column(Text, nullable=False)

    initial_budget: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False)
    current_budget: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False)
    fixed_bet_amount: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False)
    min_trigger_amount: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False)
    min_price: Mapped[Decimal] = mapped_column(Numeric(20, 10), nullable=False)
    max_price: Mapped[Decimal] = mapped_column(Numeric(20, 10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_checked_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Order of the run within the collection.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("idx_copy_trade_runs_trader", "trader_address"),)


class CopyTradeModel(Base):
    """A mirrored trade belonging to a run."""

    __tablename__ = "copy_trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("copy_trade_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    trade_id: Mapped[str] = mapped_column(Text, nullable=False)

    transaction_hash: Mapped[str] = mapped_column(Text, nullable=False)
    asset: Mapped[str] = mapped_column(Text, nullable=False)
    condition_id: Mapped[str] = mapped_column(Text, nullable=False, default="")
    outcome: Mapped[str] = mapped_column(Text, nullable=False)
    market: Mapped[str] = mapped_column(Text, nullable=False, default="")
    slug: Mapped[str] = mapped_column(Text, nullable=False, default="")
    icon: Mapped[str] = mapped_column(Text, nullable=False, default="")

    price: Mapped[Decimal] = mapped_column(Numeric(20, 10), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False)
    status: Mapped[str] = mapped_column(String(8), nullable=False)  # open/won/lost
    pnl: Mapped[Decimal | None] = mapped_column(Numeric(30, 6), nullable=True)

    timestamp_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # JSON snapshot of the source event (side/size/price/type).
    original_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Display order within the run (0 = most recent).
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("run_id", "transaction_hash", "asset", name="uq_copy_trades_run_tx_asset"),
        Index("idx_copy_trades_run_status", "run_id", "status"),
        Index("idx_copy_trades_condition", "condition_id"),
    )
