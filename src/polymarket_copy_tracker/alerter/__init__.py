"""Alerter module - notification formatting and delivery."""

from polymarket_copy_tracker.alerter.formatter import (
    CycleSummaryFormatter,
    escape_markdown,
    format_pnl,
    format_usdc,
    truncate_address,
)
from polymarket_copy_tracker.alerter.telegram import (
    LogNotifier,
    Notifier,
    NotifierError,
    TelegramNotifier,
)

__all__ = [
    "CycleSummaryFormatter",
    "LogNotifier",
    "Notifier",
    "NotifierError",
    "TelegramNotifier",
    "escape_markdown",
    "format_pnl",
    "format_usdc",
    "truncate_address",
]
