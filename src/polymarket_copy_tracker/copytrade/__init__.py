"""Copy-trade engine - scanning, admission and resolution.

The check cycle lives in ``polymarket_copy_tracker.copytrade.cycle``.
"""

from polymarket_copy_tracker.copytrade.configurations import (
    load_configurations,
    save_configurations,
)
from polymarket_copy_tracker.copytrade.models import (
    ConfigurationError,
    CopyTradeError,
    DuplicateTradeError,
    OriginalTradeSnapshot,
    Run,
    RunConfiguration,
    Trade,
    TradeAlreadySettledError,
    TradeStatus,
)
from polymarket_copy_tracker.copytrade.resolver import (
    ResolutionResult,
    TradeResolver,
    determine_winning_outcome,
)
from polymarket_copy_tracker.copytrade.scanner import (
    FilterCounts,
    ScanResult,
    TradeScanner,
    activity_scan_limit,
)
from polymarket_copy_tracker.copytrade.stats import RunStats, compute_run_stats

__all__ = [
    "ConfigurationError",
    "CopyTradeError",
    "DuplicateTradeError",
    "FilterCounts",
    "OriginalTradeSnapshot",
    "ResolutionResult",
    "Run",
    "RunConfiguration",
    "RunStats",
    "ScanResult",
    "Trade",
    "TradeAlreadySettledError",
    "TradeResolver",
    "TradeScanner",
    "TradeStatus",
    "activity_scan_limit",
    "compute_run_stats",
    "determine_winning_outcome",
    "load_configurations",
    "save_configurations",
]
