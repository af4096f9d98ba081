"""Telegram delivery for alerts.

Alerts are posted as plain text. Their bodies carry broker error strings,
which Telegram's HTML parse mode would reject.
"""

import logging
import time
from typing import Optional, Sequence

import httpx

from ..config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramClient:
    """Posts alerts to a single chat through the Bot API."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        retry_delays: Sequence[float] = (1, 2),
        timeout: float = 10.0,
    ):
        config = config or default_settings
        self.enabled = config.telegram_enabled
        self.chat_id = config.telegram_chat_id
        self.retry_delays = tuple(retry_delays)
        self.timeout = timeout
        self._send_url = f"{TELEGRAM_API_URL}/bot{config.telegram_bot_token}/sendMessage"

    def send_alert(self, text: str) -> bool:
        """Deliver ``text``, retrying once after each of ``retry_delays``.

        Returns:
            True once Telegram accepts the message
        """
        if not self.enabled:
            logger.warning("Telegram not configured, alert not sent")
            return False

        attempts = len(self.retry_delays) + 1
        error = None
        for attempt in range(attempts):
            if attempt:
                delay = self.retry_delays[attempt - 1]
                logger.info(f"Retrying Telegram in {delay}s")
                time.sleep(delay)

            error = self._post(text)
            if error is None:
                logger.debug("Telegram alert delivered")
                return True
            logger.warning(f"Telegram attempt {attempt + 1}/{attempts} failed: {error}")

        logger.error(f"Giving up on Telegram alert: {error}")
        return False

    def _post(self, text: str) -> Optional[str]:
        """One sendMessage call. Returns None on success, otherwise the error."""
        try:
            response = httpx.post(
                self._send_url,
                json={"chat_id": self.chat_id, "text": text, "disable_web_page_preview": True},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            return str(e)
        if response.status_code != 200:
            return f"HTTP {response.status_code}: {response.text}"
        return None
