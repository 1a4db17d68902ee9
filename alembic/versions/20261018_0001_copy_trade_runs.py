"""Copy-trade runs and their mirrored trades.

Revision ID: 001_copy_trade_runs
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_copy_trade_runs"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Runs table
    op.create_table(
        "copy_trade_runs",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("trader_address", sa.Text(), nullable=False),
        sa.Column("initial_budget", sa.Numeric(30, 6), nullable=False),
        sa.Column("current_budget", sa.Numeric(30, 6), nullable=False),
        sa.Column("fixed_bet_amount", sa.Numeric(30, 6), nullable=False),
        sa.Column("min_trigger_amount", sa.Numeric(30, 6), nullable=False),
        sa.Column("min_price", sa.Numeric(20, 10), nullable=False),
        sa.Column("max_price", sa.Numeric(20, 10), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at_ms", sa.BigInteger(), nullable=False),
        sa.Column("last_checked_ms", sa.BigInteger(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_copy_trade_runs_trader", "copy_trade_runs", ["trader_address"])

    # Trades table
    op.create_table(
        "copy_trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("run_id", sa.Text(), nullable=False),
        sa.Column("trade_id", sa.Text(), nullable=False),
        sa.Column("transaction_hash", sa.Text(), nullable=False),
        sa.Column("asset", sa.Text(), nullable=False),
        sa.Column("condition_id", sa.Text(), nullable=False),
        sa.Column("outcome", sa.Text(), nullable=False),
        sa.Column("market", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("icon", sa.Text(), nullable=False),
        sa.Column("price", sa.Numeric(20, 10), nullable=False),
        sa.Column("amount", sa.Numeric(30, 6), nullable=False),
        sa.Column("status", sa.String(8), nullable=False),
        sa.Column("pnl", sa.Numeric(30, 6), nullable=True),
        sa.Column("timestamp_ms", sa.BigInteger(), nullable=False),
        sa.Column("original_json", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["run_id"], ["copy_trade_runs.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "run_id", "transaction_hash", "asset", name="uq_copy_trades_run_tx_asset"
        ),
    )
    op.create_index("idx_copy_trades_run_status", "copy_trades", ["run_id", "status"])
    op.create_index("idx_copy_trades_condition", "copy_trades", ["condition_id"])


def downgrade() -> None:
    op.drop_index("idx_copy_trades_condition", table_name="copy_trades")
    op.drop_index("idx_copy_trades_run_status", table_name="copy_trades")
    op.drop_table("copy_trades")
    op.drop_index("idx_copy_trade_runs_trader", table_name="copy_trade_runs")
    op.drop_table("copy_trade_runs")
