"""Tests for copy-trade run and trade models."""

from decimal import Decimal

import pytest

from polymarket_copy_tracker.copytrade.models import (
    ConfigurationError,
    CopyTradeError,
    DuplicateTradeError,
    Run,
    RunConfiguration,
    Trade,
    TradeAlreadySettledError,
    TradeStatus,
    quantize_money,
)


def _trade(
    tx: str = "0xtx1", *, asset: str = "asset-yes", amount: str = "10", price: str = "0.40"
) -> Trade:
    return Trade(
        id=f"run-1-{tx}-{asset}",
        transaction_hash=tx,
        asset=asset,
        condition_id="0xcond",
        outcome="Yes",
        market="Will it happen?",
        price=Decimal(price),
        amount=Decimal(amount),
        timestamp=1_700_000_060_000,
    )


class TestRunConfiguration:
    """Tests for RunConfiguration validation."""

    def test_from_dict(self, config_record: dict) -> None:
        config = RunConfiguration.from_dict(config_record)

        assert config.id == "run-1"
        assert config.name == "Whale"
        assert config.initial_budget == Decimal("100")
        assert config.fixed_bet_amount == Decimal("10")
        assert config.max_price == Decimal("1")

    def test_defaults(self, trader_address: str) -> None:
        config = RunConfiguration.from_dict(
            {"id": "r", "traderAddress": trader_address, "initialBudget": "50", "fixedBetAmount": "5"}
        )

        assert config.name == "r"
        assert config.min_trigger_amount == Decimal("0")
        assert config.min_price == Decimal("0")
        assert config.max_price == Decimal("1")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"fixedBetAmount": 0},
            {"fixedBetAmount": -5},
            {"initialBudget": -1},
            {"minTriggerAmount": -1},
            {"minPrice": 0.8, "maxPrice": 0.2},
            {"maxPrice": 1.5},
            {"minPrice": -0.1},
            {"initialBudget": "lots"},
            {"initialBudget": "NaN"},
            {"fixedBetAmount": None},
            {"traderAddress": ""},
            {"id": "  "},
        ],
    )
    def test_invalid(self, config_record: dict, overrides: dict) -> None:
        with pytest.raises(ConfigurationError):
            RunConfiguration.from_dict({**config_record, **overrides})

    def test_not_an_object(self) -> None:
        with pytest.raises(ConfigurationError):
            RunConfiguration.from_dict("run-1")  # type: ignore[arg-type]

    def test_coerce_passes_instances_through(self, config_record: dict) -> None:
        config = RunConfiguration.from_dict(config_record)
        assert RunConfiguration.coerce(config) is config
        assert RunConfiguration.coerce(config_record) == config


class TestTradeSettlement:
    """Tests for Trade settlement arithmetic."""

    def test_win(self) -> None:
        """10 staked at 0.40 pays 25, a profit of 15."""
        settled = _trade().settle(won=True)

        assert settled.status == TradeStatus.WON
        assert settled.pnl == Decimal("15")
        assert settled.amount + settled.pnl == Decimal("25")

    def test_loss(self) -> None:
        settled = _trade().settle(won=False)

        assert settled.status == TradeStatus.LOST
        assert settled.pnl == Decimal("-10")

    def test_settle_returns_copy(self) -> None:
        trade = _trade()
        trade.settle(won=True)

        assert trade.is_open
        assert trade.pnl is None

    def test_settling_twice_raises(self) -> None:
        settled = _trade().settle(won=False)
        with pytest.raises(TradeAlreadySettledError):
            settled.settle(won=True)

    def test_payout_is_quantized(self) -> None:
        trade = _trade(price="0.3")

        assert trade.payout_if_won() == quantize_money(Decimal("10") / Decimal("0.3"))
        assert trade.payout_if_won() == Decimal("33.333333")

    def test_payout_requires_positive_price(self) -> None:
        with pytest.raises(ValueError):
            _trade(price="0").payout_if_won()


class TestTradeSerialization:
    """Tests for Trade snapshot form."""

    def test_open_trade_has_no_pnl_key(self) -> None:
        data = _trade().to_dict()

        assert "pnl" not in data
        assert data["status"] == "open"
        assert data["transactionHash"] == "0xtx1"
        assert data["amount"] == "10"

    def test_from_dict_legacy_record(self) -> None:
        """Older snapshots carry numbers, second timestamps and pnl 0 on open trades."""
        trade = Trade.from_dict(
            {
                "id": "t1",
                "transactionHash": "0xtx1",
                "asset": "a",
                "conditionId": "0xcond",
                "market": "m",
                "price": 0.4,
                "amount": 10,
                "timestamp": 1_700_000_060,
                "status": "open",
                "pnl": 0,
            }
        )

        assert trade.outcome == "Unknown"
        assert trade.timestamp == 1_700_000_060_000
        assert trade.pnl is None
        assert trade.price == Decimal("0.4")

    def test_from_dict_settled(self) -> None:
        original = _trade().settle(won=True)
        restored = Trade.from_dict(original.to_dict())

        assert restored == original

    def test_from_dict_invalid(self) -> None:
        with pytest.raises(CopyTradeError):
            Trade.from_dict({"id": "t1", "timestamp": 1, "price": 0.4, "amount": 10})
        with pytest.raises(CopyTradeError):
            Trade.from_dict(
                {"transactionHash": "0x", "timestamp": 1, "price": 0.4, "amount": 10, "status": "pending"}
            )


class TestRunBudget:
    """Tests for Run budget bookkeeping."""

    def test_from_configuration(self, make_run) -> None:
        run = make_run()

        assert run.current_budget == Decimal("100")
        assert run.trades == []
        assert run.last_checked == run.created_at

    def test_add_trades_prepends_and_reconciles(self, make_run) -> None:
        run = make_run()
        run.add_trades([_trade("0xtx1")])
        run.add_trades([_trade("0xtx2"), _trade("0xtx3")])

        assert [t.transaction_hash for t in run.trades] == ["0xtx2", "0xtx3", "0xtx1"]
        assert run.current_budget == Decimal("70")
        assert run.available_budget() == Decimal("70")

    def test_add_duplicate_raises(self, make_run) -> None:
        run = make_run()
        run.add_trades([_trade("0xtx1")])

        with pytest.raises(DuplicateTradeError):
            run.add_trades([_trade("0xtx1")])
        with pytest.raises(DuplicateTradeError):
            run.add_trades([_trade("0xtx2"), _trade("0xtx2")])
        assert len(run.trades) == 1

    def test_same_hash_different_asset_is_not_duplicate(self, make_run) -> None:
        run = make_run()
        run.add_trades([_trade("0xtx1", asset="yes"), _trade("0xtx1", asset="no")])

        assert len(run.trades) == 2

    def test_apply_settlements(self, make_run) -> None:
        run = make_run()
        first, second = _trade("0xtx1"), _trade("0xtx2")
        run.add_trades([first, second])

        applied = run.apply_settlements([first.settle(won=True), second.settle(won=False)])

        assert applied == 2
        # 100 + 15 - 10
        assert run.current_budget == Decimal("105")
        assert [t.status for t in run.trades] == [TradeStatus.WON, TradeStatus.LOST]

    def test_apply_settlement_to_settled_trade_raises(self, make_run) -> None:
        run = make_run()
        trade = _trade()
        run.add_trades([trade])
        run.apply_settlements([trade.settle(won=False)])

        with pytest.raises(TradeAlreadySettledError):
            run.apply_settlements([trade.settle(won=True)])

    def test_reconcile_corrects_drift(self, make_run) -> None:
        run = make_run()
        run.add_trades([_trade()])
        run.current_budget = Decimal("12.34")

        drift = run.reconcile_budget()

        assert drift == Decimal("77.66")
        assert run.current_budget == Decimal("90")

    def test_available_budget_can_go_negative(self, make_run) -> None:
        run = make_run(initialBudget=5)
        run.add_trades([_trade()])

        assert run.available_budget() == Decimal("-5")


class TestRunSerialization:
    """Tests for Run snapshot form."""

    def test_round_trip(self, make_run) -> None:
        run = make_run()
        trade = _trade()
        run.add_trades([trade, _trade("0xtx2")])
        run.apply_settlements([trade.settle(won=True)])

        restored = Run.from_dict(run.to_dict())

        assert restored == run

    def test_from_dict_defaults(self, config_record: dict) -> None:
        run = Run.from_dict({**config_record, "createdAt": 1_700_000_000})

        assert run.created_at == 1_700_000_000_000
        assert run.last_checked == run.created_at
        assert run.current_budget == Decimal("100")
        assert run.is_active is True

    def test_from_dict_requires_created_at(self, config_record: dict) -> None:
        with pytest.raises(CopyTradeError):
            Run.from_dict(config_record)

    @staticmethod
    def _legacy_trade(asset: str, **extra: object) -> dict:
        return {
            "transactionHash": "0xtx",
            "asset": asset,
            "conditionId": "0xcond",
            "outcome": "Yes",
            "price": 0.5,
            "amount": 10,
            "timestamp": 1_700_000_060,
            **extra,
        }

    def test_trades_without_ids_get_synthetic_ids(self, config_record: dict) -> None:
        run = Run.from_dict(
            {
                **config_record,
                "createdAt": 1_700_000_000,
                "trades": [self._legacy_trade("A"), self._legacy_trade("B")],
            }
        )

        assert [t.id for t in run.trades] == ["run-1-0xtx-A", "run-1-0xtx-B"]
        run.apply_settlements([run.trades[0].settle(won=True)])
        assert [(t.asset, t.status) for t in run.trades] == [
            ("A", TradeStatus.WON),
            ("B", TradeStatus.OPEN),
        ]

    @pytest.mark.parametrize(
        "trades",
        [
            [{"asset": "A"}, {"asset": "A"}],
            [{"asset": "A", "id": "t1"}, {"asset": "B", "id": "t1"}],
        ],
    )
    def test_from_dict_rejects_repeated_trades(self, config_record: dict, trades: list) -> None:
        record = {
            **config_record,
            "createdAt": 1_700_000_000,
            "trades": [self._legacy_trade(**t) for t in trades],
        }

        with pytest.raises(CopyTradeError, match="repeats trade"):
            Run.from_dict(record)
