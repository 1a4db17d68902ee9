"""Scheduled copy-trade service.

This module provides the CopyTradeService class that wires together the
run store, market data gateway and notifier, and runs one check tick
immediately on start and then on a fixed interval.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from polymarket_copy_tracker.alerter.formatter import CycleSummaryFormatter
from polymarket_copy_tracker.alerter.telegram import LogNotifier, Notifier, TelegramNotifier
from polymarket_copy_tracker.config import Settings, get_settings
from polymarket_copy_tracker.copytrade.configurations import load_configurations
from polymarket_copy_tracker.copytrade.cycle import CopyTradeCycle, TickReport
from polymarket_copy_tracker.copytrade.models import ConfigurationError, Run
from polymarket_copy_tracker.ingestor.gateway import MarketDataClient, MarketDataGateway
from polymarket_copy_tracker.storage.database import DatabaseManager
from polymarket_copy_tracker.storage.locks import RedisRunLockManager, RunLocker, RunLockManager
from polymarket_copy_tracker.storage.repos import RunStore

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    """Service lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class ServiceStats:
    """Statistics for the service."""

    started_at: datetime | None = None
    ticks_completed: int = 0
    cycles_run: int = 0
    trades_admitted: int = 0
    trades_resolved: int = 0
    errors: int = 0
    last_tick_at: datetime | None = None
    last_error: str | None = None


class CopyTradeService:
    """Runs copy-trade check ticks on a schedule.

    Each tick reloads the configurations, so edits to the configuration
    file take effect on the next tick. Ticks never overlap: the next wait
    starts only after the previous tick completed.

    Example:
        ```python
        from polymarket_copy_tracker.config import get_settings
        from polymarket_copy_tracker.service import CopyTradeService

        service = CopyTradeService(get_settings())

        await service.start()
        # Service ticks until stop() is called
        await service.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        db_manager: DatabaseManager | None = None,
        gateway: MarketDataGateway | None = None,
        notifier: Notifier | None = None,
        redis: Redis | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, log notifications instead of sending them.
                Overrides settings.dry_run.
            db_manager: Database manager (created from settings if omitted).
            gateway: Market data gateway (created from settings if omitted).
            notifier: Notification channel (created from settings if omitted).
            redis: Redis client for distributed run locks.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = ServiceState.STOPPED
        self._stats = ServiceStats()

        self._db_manager = db_manager
        self._gateway = gateway
        self._notifier = notifier
        self._redis = redis
        self._owned: list[Any] = []

        self._store: RunStore | None = None
        self._cycle: CopyTradeCycle | None = None
        self._formatter = CycleSummaryFormatter()

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ServiceState:
        """Current service state."""
        return self._state

    @property
    def stats(self) -> ServiceStats:
        """Current service statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if the service is running."""
        return self._state == ServiceState.RUNNING

    def _build_notifier(self) -> Notifier:
        telegram = self._settings.telegram
        if self._dry_run:
            return LogNotifier(dry_run=True)
        if telegram.enabled and telegram.bot_token and telegram.chat_id:
            notifier = TelegramNotifier(telegram.bot_token.get_secret_value(), telegram.chat_id)
            self._owned.append(notifier)
            logger.info("Telegram notifications enabled")
            return notifier
        logger.warning("No notification channel configured")
        return LogNotifier(dry_run=False)

    def _build_locks(self) -> RunLocker:
        redis_settings = self._settings.redis
        if self._redis is None and redis_settings.url:
            self._redis = Redis.from_url(redis_settings.url)
            self._owned.append(self._redis)
        if self._redis is None:
            return RunLockManager()
        logger.info("Using Redis run locks")
        return RedisRunLockManager(
            self._redis,
            timeout_seconds=redis_settings.lock_timeout_seconds,
            blocking_timeout_seconds=redis_settings.lock_blocking_timeout_seconds,
        )

    async def _initialize_components(self) -> None:
        """Create any component not injected and prepare the schema."""
        if self._cycle is not None:
            return
        settings = self._settings

        if self._db_manager is None:
            self._db_manager = DatabaseManager(settings.database.url)
            self._owned.append(self._db_manager)
        await self._db_manager.init_schema_async()

        if self._gateway is None:
            polymarket = settings.polymarket
            client = MarketDataClient(
                data_api_url=polymarket.data_api_url,
                gamma_api_url=polymarket.gamma_api_url,
                requests_per_second=polymarket.requests_per_second,
                timeout_seconds=polymarket.request_timeout_seconds,
                max_retries=polymarket.max_retries,
                page_size=polymarket.activity_page_size,
                resolution_batch_size=polymarket.resolution_batch_size,
            )
            self._owned.append(client)
            self._gateway = client

        if self._notifier is None:
            self._notifier = self._build_notifier()

        self._store = RunStore(self._db_manager, self._build_locks())
        self._cycle = CopyTradeCycle(
            self._store,
            self._gateway,
            self._notifier,
            self._formatter,
            max_activity_limit=settings.polymarket.max_activity_limit,
        )

    def load_configurations(self) -> list[dict[str, Any]]:
        """Load the current configuration records.

        Raises:
            ConfigurationError: If the configuration document is malformed.
        """
        source = self._settings.config_source
        return load_configurations(source.path, inline=source.inline)

    async def run_once(self) -> TickReport:
        """Run a single tick over all configurations."""
        await self._initialize_components()
        assert self._cycle is not None

        try:
            configurations = self.load_configurations()
        except ConfigurationError as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Could not load configurations: %s", e)
            return TickReport()

        report = await self._cycle.run_tick(
            configurations,
            pause_seconds=self._settings.scheduler.config_pause_seconds,
        )
        self._stats.ticks_completed += 1
        self._stats.cycles_run += len(report.cycles)
        self._stats.trades_admitted += report.new_trades
        self._stats.trades_resolved += report.resolved
        failures = len(report.failed_runs) + len(report.configuration_errors)
        if failures:
            self._stats.errors += failures
            self._stats.last_error = next(
                iter({**report.failed_runs, **report.configuration_errors}.values())
            )
        self._stats.last_tick_at = datetime.now(UTC)
        return report

    async def load_runs(self) -> list[Run]:
        """Load every stored run."""
        await self._initialize_components()
        assert self._store is not None
        return await self._store.load()

    async def _announce_start(self) -> None:
        assert self._notifier is not None
        try:
            count = len(self.load_configurations())
        except ConfigurationError:
            count = 0
        text = self._formatter.format_service_started(count, self._settings.scheduler.interval_seconds)
        try:
            await self._notifier.send(text)
        except Exception:
            logger.exception("Failed to send start notification")

    async def start(self) -> None:
        """Start the service.

        Initializes components and schedules the tick loop; the first
        tick runs immediately.

        Raises:
            RuntimeError: If the service is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != ServiceState.STOPPED:
            raise RuntimeError(f"Cannot start service in state {self._state}")

        self._state = ServiceState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting copy-trade service...")

        try:
            await self._initialize_components()
            await self._announce_start()
            self._loop_task = asyncio.create_task(self._run_loop())
            self._stats.started_at = datetime.now(UTC)
            self._state = ServiceState.RUNNING
            logger.info(
                "Copy-trade service started (interval=%.0fs)",
                self._settings.scheduler.interval_seconds,
            )
        except Exception as e:
            self._state = ServiceState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start service: %s", e)
            await self._cleanup()
            raise

    async def _run_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.scheduler.interval_seconds
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.exception("Tick failed")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass

    async def stop(self) -> None:
        """Stop the service gracefully.

        An in-flight tick is cancelled; its run is left as last persisted.
        """
        if self._state == ServiceState.STOPPED:
            return

        self._state = ServiceState.STOPPING
        logger.info("Stopping copy-trade service...")

        if self._stop_event:
            self._stop_event.set()

        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        await self._cleanup()

        self._state = ServiceState.STOPPED
        logger.info("Copy-trade service stopped")

    async def close(self) -> None:
        """Release resources without going through the lifecycle (one-shot use)."""
        await self._cleanup()

    async def _cleanup(self) -> None:
        """Clean up resources created by this service."""
        for resource in reversed(self._owned):
            if isinstance(resource, DatabaseManager):
                await resource.dispose_async()
            elif isinstance(resource, Redis):
                await resource.aclose()
            else:
                await resource.close()
            if resource is self._db_manager:
                self._db_manager = None
            elif resource is self._gateway:
                self._gateway = None
            elif resource is self._notifier:
                self._notifier = None
            elif resource is self._redis:
                self._redis = None
        self._owned.clear()
        self._cycle = None
        self._store = None
        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the service and run until stopped or cancelled."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> CopyTradeService:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
