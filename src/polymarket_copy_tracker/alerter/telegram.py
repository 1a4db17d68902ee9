"""Telegram notification delivery.

Delivery is best effort: ``send`` reports success as a bool and never
raises, so a notification failure can not affect the cycle that produced
it.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
DEFAULT_TIMEOUT_SECONDS = 10.0
# Telegram rejects messages longer than this.
MAX_MESSAGE_LENGTH = 4096
DEFAULT_HISTORY_SIZE = 100


class Notifier(Protocol):
    """Delivers a Markdown text message."""

    async def send(self, text: str) -> bool: ...


class NotifierError(Exception):
    """Raised internally when the Telegram API rejects a message."""


class TelegramNotifier:
    """Sends messages to one chat through the Telegram Bot API.

    Example:
        ```python
        notifier = TelegramNotifier(bot_token="123:abc", chat_id="-100123")
        delivered = await notifier.send("🔔 *Update: Whale*")
        ```
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        api_url: str = TELEGRAM_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            bot_token: Bot token from @BotFather.
            chat_id: Chat to deliver messages to.
            api_url: Bot API base URL.
            timeout_seconds: Per-request timeout.
            http_client: Optional pre-built client (owned by the caller).
        """
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._api_url = api_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> TelegramNotifier:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _send_message(self, text: str) -> None:
        url = f"{self._api_url}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": text[:MAX_MESSAGE_LENGTH],
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        try:
            response = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            # The URL carries the bot token; report only the exception type.
            raise NotifierError(f"Telegram request failed ({type(e).__name__})") from None

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("ok", False):
            description = body.get("description") or f"HTTP {response.status_code}"
            raise NotifierError(f"Telegram API error: {description}")

    async def send(self, text: str) -> bool:
        """Send a message.

        Returns:
            True if Telegram accepted the message, False otherwise.
        """
        try:
            await self._send_message(text)
        except NotifierError as e:
            logger.warning("Failed to send Telegram message: %s", e)
            return False
        logger.info("Telegram notification sent")
        return True


class LogNotifier:
    """Notifier that only logs messages (used for dry runs and when Telegram is not configured)."""

    def __init__(self, *, dry_run: bool = True, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._dry_run = dry_run
        # Most recent messages only.
        self.sent: deque[str] = deque(maxlen=history_size)

    async def send(self, text: str) -> bool:
        self.sent.append(text)
        if self._dry_run:
            logger.info("[DRY RUN] Would send notification: %s", text.splitlines()[0] if text else "")
        else:
            logger.info("Telegram not configured; notification: %s", text.splitlines()[0] if text else "")
        return True
