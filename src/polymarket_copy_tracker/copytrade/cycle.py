"""Cycle orchestrator - one full check cycle per run.

Each cycle runs, under the run's lock:

    Resolve -> Scan -> Resolve -> Persist -> Notify

The first resolve pass settles anything that resolved since the last
tick so the budget is correct before new admissions. The second pass
catches markets that resolved while scanning. The run is written back
once per cycle.

Sub-step failures are contained:

- A failed resolve pass is skipped; the cycle continues.
- A failed scan skips admission and the second resolve pass; progress
  from the first pass is still persisted.
- An invalid configuration fails only its own run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from polymarket_copy_tracker.alerter.formatter import CycleSummaryFormatter
from polymarket_copy_tracker.alerter.telegram import Notifier
from polymarket_copy_tracker.copytrade.models import (
    ConfigurationError,
    Run,
    RunConfiguration,
    now_ms,
)
from polymarket_copy_tracker.copytrade.resolver import TradeResolver
from polymarket_copy_tracker.copytrade.scanner import DEFAULT_MAX_ACTIVITY_LIMIT, TradeScanner
from polymarket_copy_tracker.copytrade.stats import RunStats, compute_run_stats
from polymarket_copy_tracker.ingestor.gateway import MarketDataError, MarketDataGateway
from polymarket_copy_tracker.storage.repos import RunStore

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """What one cycle did to one run."""

    run_id: str
    run_name: str
    created_run: bool = False
    new_trades: int = 0
    total_matching: int = 0
    skipped_for_budget: int = 0
    won: int = 0
    lost: int = 0
    errors: list[str] = field(default_factory=list)
    persisted: bool = False
    notified: bool = False
    stats: RunStats | None = None

    @property
    def resolved(self) -> int:
        return self.won + self.lost

    @property
    def changed(self) -> bool:
        """True if trades were added or settled."""
        return self.new_trades > 0 or self.resolved > 0


@dataclass
class TickReport:
    """Outcome of processing every configuration once."""

    cycles: list[CycleReport] = field(default_factory=list)
    configuration_errors: dict[str, str] = field(default_factory=dict)
    failed_runs: dict[str, str] = field(default_factory=dict)

    @property
    def new_trades(self) -> int:
        return sum(c.new_trades for c in self.cycles)

    @property
    def resolved(self) -> int:
        return sum(c.resolved for c in self.cycles)


def _record_label(record: RunConfiguration | dict[str, Any]) -> str:
    if isinstance(record, RunConfiguration):
        return record.name or record.id
    if isinstance(record, dict):
        return str(record.get("name") or record.get("id") or "<unnamed>")
    return "<invalid>"


class CopyTradeCycle:
    """Runs check cycles for copy-trade runs.

    Example:
        ```python
        cycle = CopyTradeCycle(store, gateway, notifier)
        report = await cycle.run_tick(load_configurations("configurations.json"))
        ```
    """

    def __init__(
        self,
        store: RunStore,
        gateway: MarketDataGateway,
        notifier: Notifier,
        formatter: CycleSummaryFormatter | None = None,
        *,
        max_activity_limit: int = DEFAULT_MAX_ACTIVITY_LIMIT,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the cycle orchestrator.

        Args:
            store: Durable run store.
            gateway: Market data gateway shared by scanner and resolver.
            notifier: Delivery channel for cycle summaries.
            formatter: Message formatter.
            max_activity_limit: Upper bound on activity records per scan.
            clock: Source of the current time in epoch milliseconds.
        """
        self._store = store
        self._notifier = notifier
        self._formatter = formatter or CycleSummaryFormatter()
        self._clock = clock
        self._scanner = TradeScanner(gateway, max_activity_limit=max_activity_limit)
        self._resolver = TradeResolver(gateway)

    async def _notify(self, text: str) -> bool:
        try:
            return await self._notifier.send(text)
        except Exception:
            logger.exception("Notifier raised while sending a message")
            return False

    async def _ensure_run(self, config: RunConfiguration, report: CycleReport) -> Run:
        run = await self._store.get_by_id(config.id)
        if run is not None:
            return run
        created = await self._store.upsert_from_configurations([config], created_at=self._clock())
        run = created[0] if created else await self._store.get_by_id(config.id)
        if run is None:
            raise RuntimeError(f"Run {config.id} could not be created")
        report.created_run = bool(created)
        logger.info("Created copy-trade run %s for %s", run.id, run.trader_address)
        return run

    async def _resolve_pass(self, run: Run, report: CycleReport, label: str) -> None:
        try:
            result = await self._resolver.resolve(run)
        except MarketDataError as e:
            logger.warning("Resolve pass %s failed for %s: %s", label, run.name, e)
            report.errors.append(f"Resolve ({label}) failed: {e}")
            return
        run.apply_settlements(result.settled)
        report.won += result.won
        report.lost += result.lost

    async def run_cycle(self, config: RunConfiguration | dict[str, Any]) -> CycleReport:
        """Run one full cycle for a configuration.

        Raises:
            ConfigurationError: If the configuration record is invalid.
        """
        config = RunConfiguration.coerce(config)
        async with self._store.lock(config.id):
            report = await self._run_locked(config)

        if report.changed and report.stats is not None:
            text = self._formatter.format_cycle_summary(
                report.run_name,
                new_trades=report.new_trades,
                skipped_for_budget=report.skipped_for_budget,
                won=report.won,
                lost=report.lost,
                stats=report.stats,
            )
            report.notified = await self._notify(text)
        if report.errors:
            await self._notify(self._formatter.format_cycle_error(report.run_name, report.errors))
        return report

    async def _run_locked(self, config: RunConfiguration) -> CycleReport:
        report = CycleReport(run_id=config.id, run_name=config.name)
        run = await self._ensure_run(config, report)
        report.run_name = run.name
        logger.info("Starting check cycle for %s", run.name)

        await self._resolve_pass(run, report, "1")

        scan_failed = False
        try:
            scan = await self._scanner.scan(run, now_ms=self._clock())
        except MarketDataError as e:
            scan_failed = True
            logger.warning("Scan failed for %s: %s", run.name, e)
            report.errors.append(f"Scan failed: {e}")
        else:
            run.add_trades(scan.new_trades)
            report.new_trades = len(scan.new_trades)
            report.total_matching = scan.total_matching
            report.skipped_for_budget = scan.skipped_for_budget

        if not scan_failed:
            await self._resolve_pass(run, report, "2")

        drift = run.reconcile_budget()
        if drift:
            logger.warning("Corrected budget drift of %s for %s", drift, run.name)
        run.last_checked = self._clock()
        await self._store.save_run(run)
        report.persisted = True
        report.stats = compute_run_stats(run)

        logger.info(
            "%s: %d new, %d resolved (%dW/%dL), budget %s, %d trades",
            run.name,
            report.new_trades,
            report.resolved,
            report.won,
            report.lost,
            run.current_budget,
            len(run.trades),
        )
        return report

    async def run_tick(
        self,
        configurations: Sequence[RunConfiguration | dict[str, Any]],
        *,
        pause_seconds: float = 0.0,
    ) -> TickReport:
        """Run one cycle per configuration, sequentially.

        A failing configuration never stops the others.

        Args:
            configurations: Configuration records to process.
            pause_seconds: Pause between successive configurations.
        """
        tick = TickReport()
        for index, record in enumerate(configurations):
            if index and pause_seconds > 0:
                await asyncio.sleep(pause_seconds)

            label = _record_label(record)
            try:
                tick.cycles.append(await self.run_cycle(record))
            except ConfigurationError as e:
                logger.error("Skipping invalid configuration %s: %s", label, e)
                tick.configuration_errors[label] = str(e)
            except Exception as e:
                logger.exception("Check cycle failed for %s", label)
                tick.failed_runs[label] = str(e)
                await self._notify(self._formatter.format_cycle_error(label, [str(e)]))

        logger.info(
            "Tick complete: %d cycles, %d new trades, %d resolved, %d failed, %d invalid",
            len(tick.cycles),
            tick.new_trades,
            tick.resolved,
            len(tick.failed_runs),
            len(tick.configuration_errors),
        )
        return tick
