"""Notification message formatter.

This module turns cycle outcomes and run statistics into Telegram
Markdown messages.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import Literal

from polymarket_copy_tracker.copytrade.models import Run
from polymarket_copy_tracker.copytrade.stats import RunStats, compute_run_stats

# Characters with meaning in Telegram's legacy Markdown mode.
_MARKDOWN_SPECIAL_CHARS = ("_", "*", "`", "[")


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an Ethereum address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def format_usdc(amount: Decimal) -> str:
    """Format a USDC amount with commas and 2 decimal places."""
    if amount < 0:
        return f"-${-amount:,.2f}"
    return f"${amount:,.2f}"


def format_pnl(amount: Decimal) -> str:
    """Format a signed profit/loss, e.g. +$15.00 or -$10.00."""
    if amount > 0:
        return f"+{format_usdc(amount)}"
    return format_usdc(amount)


def format_percent(value: Decimal) -> str:
    return f"{value:.1f}%"


def escape_markdown(text: str) -> str:
    """Escape characters that Telegram's legacy Markdown would interpret."""
    for char in _MARKDOWN_SPECIAL_CHARS:
        text = text.replace(char, f"\\{char}")
    return text


class CycleSummaryFormatter:
    """Formats cycle outcomes into Telegram Markdown messages.

    Supports two verbosity levels:
    - compact: counts, win rate, budget and total P&L
    - detailed: adds average P&L per closed trade and ROI
    """

    def __init__(
        self,
        verbosity: Literal["compact", "detailed"] = "compact",
    ) -> None:
        """Initialize the formatter.

        Args:
            verbosity: Level of detail in formatted messages.
        """
        self.verbosity = verbosity

    def _stats_lines(self, stats: RunStats) -> list[str]:
        lines = [
            f"Win Rate: {format_percent(stats.win_rate)}",
            f"Total Trades: {stats.total_trades} ({stats.closed_trades} closed)",
            f"Budget: {format_usdc(stats.current_budget)}",
            f"Total P&L: {format_pnl(stats.total_pnl)}",
        ]
        if self.verbosity == "detailed":
            lines.append(f"Avg P&L: {format_pnl(stats.avg_pnl)}")
            lines.append(f"ROI: {format_percent(stats.roi)}")
        return lines

    def format_cycle_summary(
        self,
        run_name: str,
        *,
        new_trades: int,
        skipped_for_budget: int,
        won: int,
        lost: int,
        stats: RunStats,
    ) -> str:
        """Format the summary of one cycle that added or settled trades."""
        lines = [f"🔔 *Update: {escape_markdown(run_name)}*", ""]

        if new_trades > 0:
            lines.append(f"🆕 New Trades: *{new_trades}*")
            if skipped_for_budget > 0:
                lines.append(f"⚠️ {skipped_for_budget} skipped (no budget)")

        resolved = won + lost
        if resolved > 0:
            lines.append(f"✅ Resolved: {resolved} ({won}W/{lost}L)")

        lines.append("")
        lines.append("📊 *Current Stats*")
        lines.extend(self._stats_lines(stats))
        return "\n".join(lines).strip()

    def format_cycle_error(self, run_name: str, errors: Sequence[str]) -> str:
        """Format the failure report of one cycle."""
        body = "\n".join(escape_markdown(e) for e in errors) or "Unknown error"
        return f"❌ *Error: {escape_markdown(run_name)}*\n\n{body}"

    def format_service_started(self, run_count: int, interval_seconds: float) -> str:
        """Format the message sent when the scheduled service starts."""
        plural = "" if run_count == 1 else "s"
        minutes = interval_seconds / 60
        if minutes >= 1 and float(minutes).is_integer():
            every = f"{int(minutes)} minute{'' if minutes == 1 else 's'}"
        else:
            every = f"{interval_seconds:g} seconds"
        return f"🤖 *Bot Started*\n\nMonitoring {run_count} trader{plural}\nChecking every {every}"

    def format_status(self, runs: Sequence[Run]) -> str:
        """Format the statistics of every run."""
        if not runs:
            return "📋 *Status*\n\nNo copy-trade runs configured"

        lines = ["📋 *Status*", ""]
        for index, run in enumerate(runs, start=1):
            stats = compute_run_stats(run)
            lines.append(f"{index}. *{escape_markdown(run.name)}* `{truncate_address(run.trader_address)}`")
            lines.extend(f"   {line}" for line in self._stats_lines(stats))
            lines.append(f"   Open: {stats.open_trades}")
            lines.append("")
        return "\n".join(lines).strip()
