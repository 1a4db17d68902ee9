"""Trade scanner - discovers and admits new mirrored trades for a run.

The scanner reads the trader's activity feed, keeps the qualifying BUY
events that have not been mirrored yet, and admits as many as the run's
recomputed budget allows. It never mutates the run; the caller appends
the returned trades and persists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from polymarket_copy_tracker.copytrade.models import (
    DEFAULT_OUTCOME_LABEL,
    OriginalTradeSnapshot,
    Run,
    Trade,
    TradeStatus,
    now_ms as current_time_ms,
)
from polymarket_copy_tracker.ingestor.gateway import MarketDataGateway
from polymarket_copy_tracker.ingestor.models import Activity

logger = logging.getLogger(__name__)

# Scan depth grows with run age so long-running runs still see their whole window.
DAY_MS = 24 * 60 * 60 * 1000
BASE_ACTIVITY_LIMIT = 1000
ACTIVITY_LIMIT_TIERS: tuple[tuple[int, int], ...] = (
    (7 * DAY_MS, 10_000),
    (3 * DAY_MS, 5_000),
    (1 * DAY_MS, 2_000),
)
DEFAULT_MAX_ACTIVITY_LIMIT = 10_000


def activity_scan_limit(run: Run, now_ms: int, max_limit: int = DEFAULT_MAX_ACTIVITY_LIMIT) -> int:
    """Number of activity records to read for a run of a given age.

    Args:
        run: The run being scanned.
        now_ms: Current time in epoch milliseconds.
        max_limit: Upper bound on the returned limit.

    Returns:
        1000 for runs up to a day old, then 2000, 5000 and 10000 past
        one, three and seven days, capped at ``max_limit``.
    """
    age_ms = max(0, now_ms - run.created_at)
    limit = BASE_ACTIVITY_LIMIT
    for min_age_ms, tier_limit in ACTIVITY_LIMIT_TIERS:
        if age_ms > min_age_ms:
            limit = tier_limit
            break
    return max(1, min(limit, max_limit))


@dataclass
class FilterCounts:
    """How many feed events each filter rejected."""

    not_buy_trade: int = 0
    before_created_at: int = 0
    duplicate: int = 0
    below_min_amount: int = 0
    outside_price_range: int = 0

    @property
    def total_rejected(self) -> int:
        return (
            self.not_buy_trade
            + self.before_created_at
            + self.duplicate
            + self.below_min_amount
            + self.outside_price_range
        )


@dataclass
class ScanResult:
    """Outcome of scanning one run.

    Attributes:
        new_trades: Open trades to append to the run, in feed order.
        total_matching: Qualifying events found, admitted or not.
        filter_counts: Rejections per filter.
        fetched: Number of activity records read.
    """

    new_trades: list[Trade] = field(default_factory=list)
    total_matching: int = 0
    filter_counts: FilterCounts = field(default_factory=FilterCounts)
    fetched: int = 0

    @property
    def skipped_for_budget(self) -> int:
        """Qualifying events not admitted because the budget ran out."""
        return self.total_matching - len(self.new_trades)


def select_candidates(run: Run, activities: list[Activity]) -> tuple[list[Activity], FilterCounts]:
    """Filter the feed to qualifying events not yet mirrored, in feed order.

    Events are de-duplicated against the run's trades and against earlier
    events of the same feed.
    """
    counts = FilterCounts()
    seen = run.dedup_keys()
    candidates: list[Activity] = []

    for activity in activities:
        if not activity.is_buy_trade:
            counts.not_buy_trade += 1
            continue
        if activity.timestamp_ms < run.created_at:
            counts.before_created_at += 1
            continue
        if activity.dedup_key in seen:
            counts.duplicate += 1
            continue
        if activity.notional_value < run.min_trigger_amount:
            counts.below_min_amount += 1
            continue
        if activity.price <= 0 or not run.min_price <= activity.price <= run.max_price:
            counts.outside_price_range += 1
            continue
        seen.add(activity.dedup_key)
        candidates.append(activity)

    return candidates, counts


def admission_count(available_budget: Decimal, fixed_bet_amount: Decimal) -> int:
    """How many fixed-size stakes fit into the available budget."""
    if fixed_bet_amount <= 0:
        raise ValueError("fixed_bet_amount must be positive")
    return int(max(Decimal("0"), available_budget) // fixed_bet_amount)


def build_trade(run: Run, activity: Activity) -> Trade:
    """Materialize an open mirrored trade from an activity event."""
    return Trade(
        id=f"{run.id}-{activity.transaction_hash}-{activity.asset}",
        transaction_hash=activity.transaction_hash,
        asset=activity.asset,
        condition_id=activity.condition_id,
        outcome=activity.outcome or DEFAULT_OUTCOME_LABEL,
        market=activity.market,
        price=activity.price,
        amount=run.fixed_bet_amount,
        timestamp=activity.timestamp_ms,
        status=TradeStatus.OPEN,
        slug=activity.slug,
        icon=activity.icon,
        original=OriginalTradeSnapshot(
            side=activity.side,
            size=activity.size,
            price=activity.price,
            type=activity.type,
        ),
    )


class TradeScanner:
    """Discovers new qualifying trades for a run.

    Example:
        ```python
        scanner = TradeScanner(gateway)
        result = await scanner.scan(run)
        run.add_trades(result.new_trades)
        ```
    """

    def __init__(
        self,
        gateway: MarketDataGateway,
        *,
        max_activity_limit: int = DEFAULT_MAX_ACTIVITY_LIMIT,
    ) -> None:
        self._gateway = gateway
        self._max_activity_limit = max_activity_limit

    async def scan(self, run: Run, now_ms: int | None = None) -> ScanResult:
        """Scan the trader's feed and build the trades the budget admits.

        Args:
            run: Run to scan for. Not modified.
            now_ms: Current time in epoch milliseconds (defaults to now).

        Returns:
            ScanResult with the admitted trades and reporting counters.

        Raises:
            MarketDataError: If the activity feed cannot be fetched.
        """
        now = current_time_ms() if now_ms is None else now_ms
        limit = activity_scan_limit(run, now, self._max_activity_limit)
        activities = await self._gateway.fetch_activity(run.trader_address, limit)

        candidates, counts = select_candidates(run, activities)
        available = run.available_budget()
        affordable = admission_count(available, run.fixed_bet_amount)
        admitted = candidates[:affordable]

        result = ScanResult(
            new_trades=[build_trade(run, a) for a in admitted],
            total_matching=len(candidates),
            filter_counts=counts,
            fetched=len(activities),
        )

        logger.info(
            "Scanned %s: fetched=%d matching=%d admitted=%d skipped_for_budget=%d available=%s",
            run.name,
            result.fetched,
            result.total_matching,
            len(result.new_trades),
            result.skipped_for_budget,
            available,
        )
        logger.debug(
            "Filter breakdown for %s: not_buy_trade=%d before_created_at=%d duplicate=%d "
            "below_min_amount=%d outside_price_range=%d",
            run.name,
            counts.not_buy_trade,
            counts.before_created_at,
            counts.duplicate,
            counts.below_min_amount,
            counts.outside_price_range,
        )
        return result
