"""Data models for copy-trade runs and mirrored trades.

A Run is one monitored trader configuration plus its simulation state.
Each Trade mirrors exactly one qualifying BUY event from the trader's
activity feed, staked at the run's fixed bet amount.

Serialized form (``to_dict``/``from_dict``) uses the camelCase keys of the
JSON snapshot format, so exported snapshots stay readable by older tools
and older snapshots (numeric money fields, second-resolution timestamps,
missing optional fields) load cleanly.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from polymarket_copy_tracker.ingestor.models import (
    RecordParseError,
    normalize_timestamp_ms,
)

# USDC has 6 decimals.
MONEY_QUANTUM = Decimal("0.000001")

DEFAULT_OUTCOME_LABEL = "Unknown"


class CopyTradeError(Exception):
    """Base exception for copy-trade errors."""


class ConfigurationError(CopyTradeError):
    """Raised when a run configuration record is invalid."""


class TradeAlreadySettledError(CopyTradeError):
    """Raised when settling a trade that is already won or lost."""


class DuplicateTradeError(CopyTradeError):
    """Raised when adding a trade whose dedup key already exists in the run."""


class TradeStatus(str, Enum):
    """Lifecycle status of a mirrored trade."""

    OPEN = "open"
    WON = "won"
    LOST = "lost"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(datetime.now(UTC).timestamp() * 1000)


def to_decimal(value: Any, field_name: str) -> Decimal:
    """Convert a JSON number or numeric string to Decimal.

    Raises:
        ConfigurationError: If the value is missing or not numeric.
    """
    if value is None or isinstance(value, bool):
        raise ConfigurationError(f"{field_name} is required")
    try:
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigurationError(f"{field_name} must be numeric, got {value!r}") from e
    if not result.is_finite():
        raise ConfigurationError(f"{field_name} must be finite, got {value!r}")
    return result


def quantize_money(amount: Decimal) -> Decimal:
    """Round a money amount to USDC precision."""
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_EVEN)


def _require_text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None or not str(value).strip():
        raise ConfigurationError(f"{key} is required")
    return str(value).strip()


@dataclass(frozen=True)
class RunConfiguration:
    """An externally supplied copy-trade configuration.

    Attributes:
        id: Stable run identifier.
        name: Display name.
        trader_address: Trader wallet address to mirror.
        min_trigger_amount: Minimum original notional (size * price) to qualify.
        min_price: Inclusive lower bound on the original fill price.
        max_price: Inclusive upper bound on the original fill price.
        initial_budget: Starting simulated budget.
        fixed_bet_amount: Stake per mirrored trade.
    """

    id: str
    name: str
    trader_address: str
    min_trigger_amount: Decimal
    min_price: Decimal
    max_price: Decimal
    initial_budget: Decimal
    fixed_bet_amount: Decimal

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigurationError("id is required")
        if not self.trader_address:
            raise ConfigurationError(f"traderAddress is required for {self.id}")
        if self.fixed_bet_amount <= 0:
            raise ConfigurationError(f"fixedBetAmount must be positive for {self.id}")
        if self.initial_budget < 0:
            raise ConfigurationError(f"initialBudget must not be negative for {self.id}")
        if self.min_trigger_amount < 0:
            raise ConfigurationError(f"minTriggerAmount must not be negative for {self.id}")
        for label, price in (("minPrice", self.min_price), ("maxPrice", self.max_price)):
            if not Decimal("0") <= price <= Decimal("1"):
                raise ConfigurationError(f"{label} must be within [0, 1] for {self.id}")
        if self.min_price > self.max_price:
            raise ConfigurationError(f"minPrice must not exceed maxPrice for {self.id}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunConfiguration:
        """Create a RunConfiguration from a camelCase configuration record.

        Raises:
            ConfigurationError: If required fields are missing or invalid.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration record must be an object")
        run_id = _require_text(data, "id")
        return cls(
            id=run_id,
            name=str(data.get("name") or run_id),
            trader_address=_require_text(data, "traderAddress"),
            min_trigger_amount=to_decimal(data.get("minTriggerAmount", 0), "minTriggerAmount"),
            min_price=to_decimal(data.get("minPrice", 0), "minPrice"),
            max_price=to_decimal(data.get("maxPrice", 1), "maxPrice"),
            initial_budget=to_decimal(data.get("initialBudget"), "initialBudget"),
            fixed_bet_amount=to_decimal(data.get("fixedBetAmount"), "fixedBetAmount"),
        )

    @classmethod
    def coerce(cls, value: RunConfiguration | dict[str, Any]) -> RunConfiguration:
        """Return ``value`` as a RunConfiguration, parsing raw records."""
        if isinstance(value, cls):
            return value
        return cls.from_dict(value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "traderAddress": self.trader_address,
            "minTriggerAmount": str(self.min_trigger_amount),
            "minPrice": str(self.min_price),
            "maxPrice": str(self.max_price),
            "initialBudget": str(self.initial_budget),
            "fixedBetAmount": str(self.fixed_bet_amount),
        }


@dataclass(frozen=True)
class OriginalTradeSnapshot:
    """Compact snapshot of the source activity event."""

    side: str
    size: Decimal
    price: Decimal
    type: str

    def to_dict(self) -> dict[str, str]:
        return {
            "side": self.side,
            "size": str(self.size),
            "price": str(self.price),
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OriginalTradeSnapshot:
        return cls(
            side=str(data.get("side") or ""),
            size=Decimal(str(data.get("size") or "0")),
            price=Decimal(str(data.get("price") or "0")),
            type=str(data.get("type") or ""),
        )


@dataclass(frozen=True)
class Trade:
    """A mirrored position: one simulated stake on one outcome of one market.

    Trades are immutable values. Settlement returns a new Trade; once a
    trade is won or lost, settling it again raises TradeAlreadySettledError.
    """

    id: str
    transaction_hash: str
    asset: str
    condition_id: str
    outcome: str
    market: str
    price: Decimal
    amount: Decimal
    timestamp: int
    status: TradeStatus = TradeStatus.OPEN
    pnl: Decimal | None = None
    slug: str = ""
    icon: str = ""
    original: OriginalTradeSnapshot | None = None

    @property
    def dedup_key(self) -> tuple[str, str]:
        """Key identifying the mirrored real-world event: (transaction hash, asset)."""
        return (self.transaction_hash, self.asset)

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    @property
    def is_settled(self) -> bool:
        return self.status in (TradeStatus.WON, TradeStatus.LOST)

    def payout_if_won(self) -> Decimal:
        """Payout of a winning trade: the stake divided by the fill price."""
        if self.price <= 0:
            raise ValueError(f"Trade {self.id} has non-positive price {self.price}")
        return quantize_money(self.amount / self.price)

    def settle(self, won: bool) -> Trade:
        """Return a settled copy of this trade.

        Args:
            won: True if the trade's outcome is the winning outcome.

        Returns:
            The trade with status won/lost and pnl populated.

        Raises:
            TradeAlreadySettledError: If the trade is not open.
        """
        if not self.is_open:
            raise TradeAlreadySettledError(f"Trade {self.id} is already {self.status.value}")
        if won:
            return replace(self, status=TradeStatus.WON, pnl=self.payout_if_won() - self.amount)
        return replace(self, status=TradeStatus.LOST, pnl=-self.amount)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "transactionHash": self.transaction_hash,
            "asset": self.asset,
            "conditionId": self.condition_id,
            "outcome": self.outcome,
            "market": self.market,
            "slug": self.slug,
            "price": str(self.price),
            "amount": str(self.amount),
            "timestamp": self.timestamp,
            "status": self.status.value,
        }
        if self.icon:
            data["icon"] = self.icon
        if self.pnl is not None:
            data["pnl"] = str(self.pnl)
        if self.original is not None:
            data["originalTrade"] = self.original.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], run_id: str | None = None) -> Trade:
        """Create a Trade from its snapshot form.

        Records without an id get the synthetic id of a scanned trade,
        built from ``run_id``, the transaction hash and the asset.

        Raises:
            CopyTradeError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise CopyTradeError("Trade record must be an object")
        try:
            status = TradeStatus(str(data.get("status") or TradeStatus.OPEN.value))
            transaction_hash = str(data["transactionHash"])
            timestamp = normalize_timestamp_ms(data["timestamp"])
            price = to_decimal(data.get("price"), "price")
            amount = to_decimal(data.get("amount"), "amount")
        except (KeyError, ValueError, ConfigurationError, RecordParseError) as e:
            raise CopyTradeError(f"Invalid trade record {data.get('id')!r}: {e}") from e

        # Open trades in older snapshots carry pnl 0; only settled trades have one.
        pnl = None
        if status != TradeStatus.OPEN and data.get("pnl") is not None:
            pnl = Decimal(str(data["pnl"]))

        asset = str(data.get("asset") or "")
        trade_id = data.get("id")
        if not trade_id:
            prefix = f"{run_id}-" if run_id else ""
            trade_id = f"{prefix}{transaction_hash}-{asset}"

        original = data.get("originalTrade")
        return cls(
            id=str(trade_id),
            transaction_hash=transaction_hash,
            asset=asset,
            condition_id=str(data.get("conditionId") or ""),
            outcome=str(data.get("outcome") or DEFAULT_OUTCOME_LABEL),
            market=str(data.get("market") or ""),
            price=price,
            amount=amount,
            timestamp=timestamp,
            status=status,
            pnl=pnl,
            slug=str(data.get("slug") or ""),
            icon=str(data.get("icon") or ""),
            original=OriginalTradeSnapshot.from_dict(original) if isinstance(original, dict) else None,
        )


@dataclass
class Run:
    """A copy-trade run: one monitored trader configuration and its ledger.

    ``current_budget`` is a cached value. The authoritative figure is
    ``available_budget()``, recomputed from the trades:
    initial budget + settled pnl - stake of open trades.

    Example:
        ```python
        run = Run.from_configuration(config, created_at=now_ms())
        run.add_trades(scan_result.new_trades)
        run.apply_settlements(resolution.settled)
        assert run.current_budget == run.available_budget()
        ```
    """

    id: str
    name: str
    trader_address: str
    initial_budget: Decimal
    current_budget: Decimal
    fixed_bet_amount: Decimal
    min_trigger_amount: Decimal
    min_price: Decimal
    max_price: Decimal
    created_at: int
    last_checked: int
    is_active: bool = True
    trades: list[Trade] = field(default_factory=list)

    @classmethod
    def from_configuration(cls, config: RunConfiguration, *, created_at: int) -> Run:
        """Create a fresh run with no trades from a configuration."""
        return cls(
            id=config.id,
            name=config.name,
            trader_address=config.trader_address,
            initial_budget=config.initial_budget,
            current_budget=config.initial_budget,
            fixed_bet_amount=config.fixed_bet_amount,
            min_trigger_amount=config.min_trigger_amount,
            min_price=config.min_price,
            max_price=config.max_price,
            created_at=created_at,
            last_checked=created_at,
        )

    @property
    def open_trades(self) -> list[Trade]:
        return [t for t in self.trades if t.is_open]

    @property
    def settled_trades(self) -> list[Trade]:
        return [t for t in self.trades if t.is_settled]

    def dedup_keys(self) -> set[tuple[str, str]]:
        return {t.dedup_key for t in self.trades}

    def available_budget(self) -> Decimal:
        """Recompute the budget from the trade collection."""
        settled_pnl = sum((t.pnl or Decimal("0") for t in self.settled_trades), Decimal("0"))
        open_stake = sum((t.amount for t in self.open_trades), Decimal("0"))
        return self.initial_budget + settled_pnl - open_stake

    def reconcile_budget(self) -> Decimal:
        """Overwrite the cached budget with the recomputed one.

        Returns:
            The difference between the recomputed and the previous cached value.
        """
        available = self.available_budget()
        drift = available - self.current_budget
        self.current_budget = available
        return drift

    def add_trades(self, trades: Iterable[Trade]) -> None:
        """Prepend newly admitted trades (most recent first).

        Raises:
            DuplicateTradeError: If a trade's dedup key is already present.
        """
        new_trades = list(trades)
        seen = self.dedup_keys()
        for trade in new_trades:
            if trade.dedup_key in seen:
                raise DuplicateTradeError(
                    f"Run {self.id} already mirrors {trade.transaction_hash}/{trade.asset}"
                )
            seen.add(trade.dedup_key)
        self.trades = new_trades + self.trades
        self.reconcile_budget()

    def apply_settlements(self, settled: Iterable[Trade]) -> int:
        """Replace open trades with their settled copies.

        Returns:
            Number of trades replaced.

        Raises:
            TradeAlreadySettledError: If a referenced trade is no longer open.
        """
        by_id = {t.id: t for t in settled}
        if not by_id:
            return 0

        updated: list[Trade] = []
        applied = 0
        for trade in self.trades:
            replacement = by_id.get(trade.id)
            if replacement is None:
                updated.append(trade)
                continue
            if not trade.is_open:
                raise TradeAlreadySettledError(f"Trade {trade.id} is already {trade.status.value}")
            updated.append(replacement)
            applied += 1

        self.trades = updated
        self.reconcile_budget()
        return applied

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "traderAddress": self.trader_address,
            "initialBudget": str(self.initial_budget),
            "currentBudget": str(self.current_budget),
            "fixedBetAmount": str(self.fixed_bet_amount),
            "minTriggerAmount": str(self.min_trigger_amount),
            "minPrice": str(self.min_price),
            "maxPrice": str(self.max_price),
            "isActive": self.is_active,
            "createdAt": self.created_at,
            "lastChecked": self.last_checked,
            "trades": [t.to_dict() for t in self.trades],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Run:
        """Create a Run from its snapshot form.

        Raises:
            CopyTradeError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise CopyTradeError("Run record must be an object")
        config = RunConfiguration.from_dict(data)
        try:
            created_at = normalize_timestamp_ms(data["createdAt"])
        except (KeyError, RecordParseError) as e:
            raise CopyTradeError(f"Run {config.id} has no valid createdAt") from e

        trades = [Trade.from_dict(t, config.id) for t in data.get("trades") or []]
        ids: set[str] = set()
        keys: set[tuple[str, str]] = set()
        for trade in trades:
            if trade.id in ids or trade.dedup_key in keys:
                raise CopyTradeError(
                    f"Run {config.id} repeats trade {trade.transaction_hash}/{trade.asset}"
                )
            ids.add(trade.id)
            keys.add(trade.dedup_key)

        last_checked = data.get("lastChecked")
        current_budget = data.get("currentBudget")
        return cls(
            id=config.id,
            name=config.name,
            trader_address=config.trader_address,
            initial_budget=config.initial_budget,
            current_budget=(
                to_decimal(current_budget, "currentBudget")
                if current_budget is not None
                else config.initial_budget
            ),
            fixed_bet_amount=config.fixed_bet_amount,
            min_trigger_amount=config.min_trigger_amount,
            min_price=config.min_price,
            max_price=config.max_price,
            created_at=created_at,
            last_checked=(
                normalize_timestamp_ms(last_checked) if last_checked is not None else created_at
            ),
            is_active=bool(data.get("isActive", True)),
            trades=trades,
        )
