"""Performance statistics for copy-trade runs."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from polymarket_copy_tracker.copytrade.models import Run, TradeStatus

ZERO = Decimal("0")


@dataclass(frozen=True)
class RunStats:
    """Aggregate performance of one run.

    ``win_rate`` and ``roi`` are percentages. Both are zero when there is
    nothing to divide by.
    """

    total_trades: int
    open_trades: int
    wins: int
    losses: int
    total_pnl: Decimal
    current_budget: Decimal
    initial_budget: Decimal

    @property
    def closed_trades(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> Decimal:
        if self.closed_trades == 0:
            return ZERO
        return Decimal(self.wins) * 100 / Decimal(self.closed_trades)

    @property
    def avg_pnl(self) -> Decimal:
        if self.closed_trades == 0:
            return ZERO
        return self.total_pnl / Decimal(self.closed_trades)

    @property
    def roi(self) -> Decimal:
        if self.initial_budget <= 0:
            return ZERO
        return self.total_pnl * 100 / self.initial_budget


def compute_run_stats(run: Run) -> RunStats:
    """Compute statistics from the run's trades."""
    wins = sum(1 for t in run.trades if t.status == TradeStatus.WON)
    losses = sum(1 for t in run.trades if t.status == TradeStatus.LOST)
    total_pnl = sum((t.pnl or ZERO for t in run.settled_trades), ZERO)
    return RunStats(
        total_trades=len(run.trades),
        open_trades=len(run.open_trades),
        wins=wins,
        losses=losses,
        total_pnl=total_pnl,
        current_budget=run.available_budget(),
        initial_budget=run.initial_budget,
    )
