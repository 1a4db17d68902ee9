"""Tests for the scheduled copy-trade service."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from polymarket_copy_tracker.alerter.telegram import LogNotifier, TelegramNotifier
from polymarket_copy_tracker.config import Settings, clear_settings_cache
from polymarket_copy_tracker.service import CopyTradeService, ServiceState
from polymarket_copy_tracker.storage.locks import RedisRunLockManager, RunLockManager


@pytest.fixture
def settings_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, config_record: dict):
    """Environment with one inline configuration and no .env file."""
    monkeypatch.chdir(tmp_path)
    for name in ("DATABASE_URL", "REDIS_URL", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "DRY_RUN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CONFIGURATIONS", json.dumps([config_record]))
    monkeypatch.setenv("SCHEDULER_INTERVAL_SECONDS", "3600")
    clear_settings_cache()
    yield monkeypatch
    clear_settings_cache()


@pytest.fixture
def settings(settings_env) -> Settings:
    return Settings()


@pytest.fixture
def notifier() -> LogNotifier:
    return LogNotifier()


@pytest.fixture
def service(settings, db_manager, fake_gateway, notifier) -> CopyTradeService:
    return CopyTradeService(
        settings,
        db_manager=db_manager,
        gateway=fake_gateway,
        notifier=notifier,
    )


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestRunOnce:
    """Tests for CopyTradeService.run_once."""

    @pytest.mark.asyncio
    async def test_processes_configurations(self, service, fake_gateway, make_activity) -> None:
        fake_gateway.activities = [make_activity(f"0xtx{i}") for i in range(3)]

        report = await service.run_once()

        assert [c.run_id for c in report.cycles] == ["run-1"]
        assert report.new_trades == 3
        assert service.stats.ticks_completed == 1
        assert service.stats.trades_admitted == 3
        runs = await service.load_runs()
        assert len(runs[0].trades) == 3

    @pytest.mark.asyncio
    async def test_malformed_configuration_document(self, settings_env, db_manager, fake_gateway) -> None:
        settings_env.setenv("CONFIGURATIONS", "{not json")
        service = CopyTradeService(Settings(), db_manager=db_manager, gateway=fake_gateway)

        report = await service.run_once()

        assert report.cycles == []
        assert service.stats.errors == 1
        assert service.stats.ticks_completed == 0
        await service.close()

    @pytest.mark.asyncio
    async def test_invalid_configuration_counts_as_error(
        self, settings_env, db_manager, fake_gateway, config_record
    ) -> None:
        bad = {**config_record, "id": "bad", "fixedBetAmount": 0}
        settings_env.setenv("CONFIGURATIONS", json.dumps([bad, config_record]))
        service = CopyTradeService(Settings(), db_manager=db_manager, gateway=fake_gateway)

        report = await service.run_once()

        assert len(report.cycles) == 1
        assert service.stats.errors == 1
        assert "fixedBetAmount" in service.stats.last_error
        await service.close()


class TestLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_start_runs_first_tick_immediately(self, service, notifier) -> None:
        await service.start()
        try:
            assert service.state == ServiceState.RUNNING
            assert service.is_running
            await _wait_for(lambda: service.stats.ticks_completed >= 1)
        finally:
            await service.stop()

        assert service.state == ServiceState.STOPPED
        assert notifier.sent[0].startswith("🤖 *Bot Started*")
        assert "Monitoring 1 trader\n" in notifier.sent[0]
        assert "Checking every 60 minutes" in notifier.sent[0]

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, service) -> None:
        await service.start()
        try:
            with pytest.raises(RuntimeError):
                await service.start()
        finally:
            await service.stop()

    @pytest.mark.asyncio
    async def test_stop_when_stopped_is_noop(self, service) -> None:
        await service.stop()
        assert service.state == ServiceState.STOPPED

    @pytest.mark.asyncio
    async def test_context_manager(self, service) -> None:
        async with service:
            assert service.is_running
        assert service.state == ServiceState.STOPPED

    @pytest.mark.asyncio
    async def test_injected_database_is_not_disposed(self, service, db_manager) -> None:
        await service.run_once()
        await service.close()

        async with db_manager.get_async_session():
            pass
        assert db_manager._async_engine is not None


class TestComponentSelection:
    """Tests for notifier and lock selection."""

    def test_dry_run_uses_log_notifier(self, settings) -> None:
        service = CopyTradeService(settings, dry_run=True)
        assert isinstance(service._build_notifier(), LogNotifier)

    @pytest.mark.asyncio
    async def test_telegram_when_configured(self, settings_env) -> None:
        settings_env.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        settings_env.setenv("TELEGRAM_CHAT_ID", "-100")
        service = CopyTradeService(Settings(), dry_run=False)

        notifier = service._build_notifier()

        assert isinstance(notifier, TelegramNotifier)
        await service.close()

    def test_unconfigured_telegram_falls_back_to_log(self, settings) -> None:
        service = CopyTradeService(settings, dry_run=False)
        assert isinstance(service._build_notifier(), LogNotifier)

    def test_in_process_locks_without_redis(self, settings) -> None:
        assert isinstance(CopyTradeService(settings)._build_locks(), RunLockManager)

    def test_redis_locks_with_client(self, settings) -> None:
        service = CopyTradeService(settings, redis=AsyncMock())
        assert isinstance(service._build_locks(), RedisRunLockManager)
