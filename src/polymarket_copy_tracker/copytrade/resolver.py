"""Trade resolver - settles open trades whose markets have resolved."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from polymarket_copy_tracker.copytrade.models import Run, Trade, TradeStatus
from polymarket_copy_tracker.ingestor.gateway import MarketDataGateway
from polymarket_copy_tracker.ingestor.models import MarketResolution

logger = logging.getLogger(__name__)

WINNING_PRICE = Decimal("1")


def determine_winning_outcome(resolution: MarketResolution) -> str | None:
    """Return the label of the outcome priced at exactly 1.

    Returns:
        The winning label, or None if the market is not closed or no
        outcome is priced at exactly 1.
    """
    if not resolution.closed:
        return None
    for price, label in zip(resolution.outcome_prices, resolution.outcomes, strict=True):
        if price == WINNING_PRICE:
            return label
    return None


@dataclass
class ResolutionResult:
    """Trades settled in one resolve pass.

    Attributes:
        settled: Settled copies of previously open trades.
        budget_returned: Sum of payouts of the won trades.
    """

    settled: list[Trade] = field(default_factory=list)
    budget_returned: Decimal = Decimal("0")

    @property
    def won(self) -> int:
        return sum(1 for t in self.settled if t.status == TradeStatus.WON)

    @property
    def lost(self) -> int:
        return sum(1 for t in self.settled if t.status == TradeStatus.LOST)


class TradeResolver:
    """Checks open trades against market resolutions.

    A trade wins iff its outcome label equals the outcome priced at
    exactly 1. Markets that are unclosed, missing, or ambiguously priced
    leave their trades open for the next pass.
    """

    def __init__(self, gateway: MarketDataGateway) -> None:
        self._gateway = gateway

    async def resolve(self, run: Run) -> ResolutionResult:
        """Compute settlements for the run's open trades.

        The run is not modified; apply the result with
        ``Run.apply_settlements``.

        Raises:
            MarketDataError: If resolutions cannot be fetched. No trade is
                settled in that case.
        """
        open_trades = run.open_trades
        if not open_trades:
            return ResolutionResult()

        condition_ids = {t.condition_id for t in open_trades if t.condition_id}
        if not condition_ids:
            logger.debug("Run %s has %d open trades without condition IDs", run.name, len(open_trades))
            return ResolutionResult()

        resolutions = await self._gateway.fetch_market_resolutions(condition_ids)
        winners: dict[str, str] = {}
        for resolution in resolutions:
            winner = determine_winning_outcome(resolution)
            if winner is not None:
                winners[resolution.condition_id] = winner
            elif resolution.closed:
                logger.info(
                    "Market %s is closed without an outcome priced at 1; leaving trades open",
                    resolution.condition_id,
                )

        result = ResolutionResult()
        for trade in open_trades:
            winner = winners.get(trade.condition_id)
            if winner is None:
                continue
            if trade.price <= 0:
                logger.warning("Trade %s has non-positive price %s; leaving open", trade.id, trade.price)
                continue
            settled = trade.settle(won=trade.outcome == winner)
            result.settled.append(settled)
            if settled.status == TradeStatus.WON:
                result.budget_returned += settled.amount + (settled.pnl or Decimal("0"))

        if result.settled:
            logger.info(
                "Resolved %d trades for %s (%d won, %d lost), returning %s",
                len(result.settled),
                run.name,
                result.won,
                result.lost,
                result.budget_returned,
            )
        return result
