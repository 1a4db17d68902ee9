"""Loading and saving run configurations.

Configurations are a JSON list of camelCase records:
``{id, name, traderAddress, minTriggerAmount, minPrice, maxPrice,
initialBudget, fixedBetAmount}``. They are returned as raw records so
that one invalid entry only fails its own run's cycle.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from polymarket_copy_tracker.copytrade.models import ConfigurationError, RunConfiguration

logger = logging.getLogger(__name__)


def _parse_document(text: str, source: str) -> list[dict[str, Any]]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{source} is not valid JSON: {e}") from e
    if isinstance(payload, dict) and isinstance(payload.get("configurations"), list):
        payload = payload["configurations"]
    if not isinstance(payload, list):
        raise ConfigurationError(f"{source} must hold a JSON list of configurations")
    records = [r for r in payload if isinstance(r, dict)]
    if len(records) != len(payload):
        logger.warning("Ignored %d non-object entries in %s", len(payload) - len(records), source)
    return records


def load_configurations(
    path: Path | str | None = None,
    *,
    inline: str | None = None,
) -> list[dict[str, Any]]:
    """Load raw configuration records.

    Args:
        path: JSON file to read. A missing file yields no configurations.
        inline: Inline JSON document; takes precedence over ``path``.

    Returns:
        Configuration records in document order.

    Raises:
        ConfigurationError: If the document is not a JSON list.
    """
    if inline:
        return _parse_document(inline, "CONFIGURATIONS")
    if path is None:
        return []

    file_path = Path(path)
    if not file_path.exists():
        logger.warning("Configuration file %s not found; no runs configured", file_path)
        return []
    return _parse_document(file_path.read_text(encoding="utf-8"), str(file_path))


def save_configurations(
    path: Path | str,
    configurations: Iterable[RunConfiguration | dict[str, Any]],
) -> int:
    """Validate and write configurations to a JSON file.

    The file is replaced atomically.

    Returns:
        Number of configurations written.

    Raises:
        ConfigurationError: If any configuration is invalid or ids repeat.
    """
    validated = [RunConfiguration.coerce(c) for c in configurations]
    ids = [c.id for c in validated]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate configuration ids: {', '.join(duplicates)}")

    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump([c.to_dict() for c in validated], fh, indent=2)
            fh.write("\n")
        os.replace(tmp_name, file_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("Saved %d configurations to %s", len(validated), file_path)
    return len(validated)
