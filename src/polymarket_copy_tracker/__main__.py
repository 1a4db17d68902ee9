"""Command-line entry point.

Usage:
    python -m polymarket_copy_tracker run
    python -m polymarket_copy_tracker check
    python -m polymarket_copy_tracker status
    python -m polymarket_copy_tracker export runs.json
    python -m polymarket_copy_tracker import runs.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from redis.asyncio import Redis

from polymarket_copy_tracker import __version__
from polymarket_copy_tracker.alerter.formatter import CycleSummaryFormatter
from polymarket_copy_tracker.config import Settings, get_settings
from polymarket_copy_tracker.copytrade.models import CopyTradeError
from polymarket_copy_tracker.service import CopyTradeService
from polymarket_copy_tracker.storage.database import DatabaseManager
from polymarket_copy_tracker.storage.locks import RedisRunLockManager
from polymarket_copy_tracker.storage.repos import RunStore, open_run_store

logger = logging.getLogger("polymarket_copy_tracker")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="polymarket-copy-tracker",
        description="Simulated copy-trading of Polymarket traders",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Log notifications instead of sending them (overrides DRY_RUN)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("run", help="Run the scheduled service until interrupted")
    subparsers.add_parser("check", help="Run a single check tick over all configurations")
    status = subparsers.add_parser("status", help="Print statistics for every run")
    status.add_argument(
        "--detailed",
        action="store_true",
        help="Include average P&L and ROI",
    )
    subparsers.add_parser("init-db", help="Create the database schema")
    export = subparsers.add_parser("export", help="Write all runs to a JSON snapshot")
    export.add_argument("path", type=Path, help="Destination file ('-' for stdout)")
    import_ = subparsers.add_parser("import", help="Replace all runs from a JSON snapshot")
    import_.add_argument("path", type=Path, help="Snapshot file to read")
    return parser.parse_args(argv)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def _open_store(settings: Settings) -> AsyncIterator[RunStore]:
    """Open the run store with the same run locks the service uses."""
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    locks = None
    if redis is not None:
        locks = RedisRunLockManager(
            redis,
            timeout_seconds=settings.redis.lock_timeout_seconds,
            blocking_timeout_seconds=settings.redis.lock_blocking_timeout_seconds,
        )
    try:
        async with open_run_store(DatabaseManager(settings.database.url), locks) as store:
            yield store
    finally:
        if redis is not None:
            await redis.aclose()


async def _run(settings: Settings, dry_run: bool | None) -> int:
    service = CopyTradeService(settings, dry_run=dry_run)
    await service.run()
    return 0


async def _check(settings: Settings, dry_run: bool | None) -> int:
    service = CopyTradeService(settings, dry_run=dry_run)
    try:
        report = await service.run_once()
    finally:
        await service.close()

    print(
        f"{len(report.cycles)} runs checked, {report.new_trades} new trades, "
        f"{report.resolved} resolved"
    )
    for label, error in {**report.configuration_errors, **report.failed_runs}.items():
        print(f"  {label}: {error}", file=sys.stderr)
    return 1 if report.failed_runs or report.configuration_errors else 0


async def _status(settings: Settings, detailed: bool) -> int:
    formatter = CycleSummaryFormatter("detailed" if detailed else "compact")
    async with _open_store(settings) as store:
        runs = await store.load()
    print(formatter.format_status(runs))
    return 0


async def _init_db(settings: Settings) -> int:
    async with _open_store(settings):
        pass
    print("Database schema ready")
    return 0


async def _export(settings: Settings, path: Path) -> int:
    async with _open_store(settings) as store:
        records = await store.export_snapshot()
    text = json.dumps(records, indent=2)
    if str(path) == "-":
        print(text)
    else:
        path.write_text(text + "\n", encoding="utf-8")
        print(f"Exported {len(records)} runs to {path}")
    return 0


async def _import(settings: Settings, path: Path) -> int:
    try:
        records = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Could not read snapshot %s: %s", path, e)
        return 1
    if not isinstance(records, list):
        logger.error("Snapshot %s must contain a JSON list of runs", path)
        return 1

    async with _open_store(settings) as store:
        try:
            count = await store.import_snapshot(records)
        except (CopyTradeError, ValueError) as e:
            logger.error("Snapshot %s rejected: %s", path, e)
            return 1
    print(f"Imported {count} runs from {path}")
    return 0


async def _dispatch(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "run":
        return await _run(settings, args.dry_run)
    if args.command == "check":
        return await _check(settings, args.dry_run)
    if args.command == "status":
        return await _status(settings, args.detailed)
    if args.command == "init-db":
        return await _init_db(settings)
    if args.command == "export":
        return await _export(settings, args.path)
    if args.command == "import":
        return await _import(settings, args.path)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Entry point"""
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings)
    logger.debug("Settings: %s", settings.redacted_summary())

    try:
        return asyncio.run(_dispatch(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
