"""Data models for the market data gateway.

Records returned by the upstream Data API and Gamma API are parsed into
closed, validated shapes here. Timestamps are normalized to epoch
milliseconds once, at parse time, so callers never re-guess the unit.
"""

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

# Epoch values below this are treated as seconds (10^10 s is in the year 2286).
SECONDS_THRESHOLD = 10_000_000_000

TRADE_ACTIVITY_TYPE = "TRADE"
BUY_SIDE = "BUY"


class RecordParseError(ValueError):
    """Raised when an upstream record is missing required fields or is malformed."""


def normalize_timestamp_ms(value: Any) -> int:
    """Normalize an epoch timestamp in seconds or milliseconds to milliseconds.

    Args:
        value: Epoch timestamp as int, float or numeric string.

    Returns:
        Epoch timestamp in milliseconds.

    Raises:
        RecordParseError: If the value is not numeric.
    """
    if isinstance(value, bool):
        raise RecordParseError(f"Invalid timestamp: {value!r}")
    try:
        ts = float(value)
    except (TypeError, ValueError) as e:
        raise RecordParseError(f"Invalid timestamp: {value!r}") from e
    if ts < SECONDS_THRESHOLD:
        ts *= 1000.0
    return int(ts)


def _to_decimal(value: Any, field_name: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise RecordParseError(f"Missing or invalid {field_name}")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise RecordParseError(f"Invalid {field_name}: {value!r}") from e


def _require_str(data: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if value:
            return str(value)
    raise RecordParseError(f"Missing required field {keys[0]}")


def _parse_bool(value: Any, field_name: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0", ""):
            return False
    elif isinstance(value, int):
        return value != 0
    raise RecordParseError(f"Invalid {field_name}: {value!r}")


def _parse_string_list(value: Any, field_name: str) -> tuple[str, ...]:
    # Gamma returns these as JSON-encoded strings, e.g. '["Yes", "No"]'.
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise RecordParseError(f"Invalid {field_name}: {value!r}") from e
    if not isinstance(value, list):
        raise RecordParseError(f"Invalid {field_name}: expected a list")
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class Activity:
    """A single entry of a trader's activity feed.

    Only TRADE entries carry the full set of trade fields; other activity
    types (REDEEM, SPLIT, MERGE, ...) are kept with zeroed economics so the
    feed order is preserved.
    """

    transaction_hash: str
    timestamp_ms: int
    type: str
    side: str
    size: Decimal
    price: Decimal
    asset: str
    condition_id: str
    outcome: str = ""
    market: str = ""
    slug: str = ""
    icon: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Activity":
        """Create an Activity from a Data API `/activity` record.

        Raises:
            RecordParseError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise RecordParseError("Activity record must be an object")

        transaction_hash = _require_str(data, "transactionHash", "transaction_hash")
        if "timestamp" not in data:
            raise RecordParseError("Missing required field timestamp")
        timestamp_ms = normalize_timestamp_ms(data["timestamp"])
        activity_type = _require_str(data, "type").upper()

        if activity_type != TRADE_ACTIVITY_TYPE:
            return cls(
                transaction_hash=transaction_hash,
                timestamp_ms=timestamp_ms,
                type=activity_type,
                side=str(data.get("side") or "").upper(),
                size=Decimal("0"),
                price=Decimal("0"),
                asset=str(data.get("asset") or ""),
                condition_id=str(data.get("conditionId") or ""),
                outcome=str(data.get("outcome") or ""),
                market=str(data.get("title") or data.get("market") or ""),
                slug=str(data.get("slug") or ""),
                icon=str(data.get("icon") or ""),
            )

        return cls(
            transaction_hash=transaction_hash,
            timestamp_ms=timestamp_ms,
            type=activity_type,
            side=_require_str(data, "side").upper(),
            size=_to_decimal(data.get("size"), "size"),
            price=_to_decimal(data.get("price"), "price"),
            asset=_require_str(data, "asset", "asset_id"),
            condition_id=str(data.get("conditionId") or data.get("condition_id") or ""),
            outcome=str(data.get("outcome") or ""),
            market=str(data.get("title") or data.get("market") or ""),
            slug=str(data.get("slug") or ""),
            icon=str(data.get("icon") or ""),
        )

    @property
    def is_buy_trade(self) -> bool:
        """Return True if this is a BUY trade."""
        return self.type == TRADE_ACTIVITY_TYPE and self.side == BUY_SIDE

    @property
    def notional_value(self) -> Decimal:
        """Return the notional value of the trade (size * price)."""
        return self.size * self.price

    @property
    def dedup_key(self) -> tuple[str, str]:
        """Key identifying the real-world event: (transaction hash, asset)."""
        return (self.transaction_hash, self.asset)


@dataclass(frozen=True)
class MarketResolution:
    """Resolution state of a market, keyed by condition ID.

    `outcome_prices` and `outcomes` are aligned by position.
    """

    condition_id: str
    closed: bool
    outcome_prices: tuple[Decimal, ...]
    outcomes: tuple[str, ...]
    question: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MarketResolution":
        """Create a MarketResolution from a Gamma API `/markets` record.

        Raises:
            RecordParseError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise RecordParseError("Market record must be an object")

        condition_id = _require_str(data, "conditionId", "condition_id")
        raw_prices = data.get("outcomePrices")
        raw_outcomes = data.get("outcomes")

        prices: tuple[Decimal, ...] = ()
        outcomes: tuple[str, ...] = ()
        if raw_prices is not None:
            prices = tuple(
                _to_decimal(p, "outcomePrices") for p in _parse_string_list(raw_prices, "outcomePrices")
            )
        if raw_outcomes is not None:
            outcomes = _parse_string_list(raw_outcomes, "outcomes")
        if len(prices) != len(outcomes):
            raise RecordParseError(
                f"Market {condition_id} has {len(prices)} prices for {len(outcomes)} outcomes"
            )

        return cls(
            condition_id=condition_id,
            closed=_parse_bool(data.get("closed"), "closed"),
            outcome_prices=prices,
            outcomes=outcomes,
            question=str(data.get("question") or ""),
        )
