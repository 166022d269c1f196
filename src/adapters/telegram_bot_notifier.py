"""Telegram Bot API delivery adapter.

Uses the Bot API so alerts can be posted by a bot that was added to the
destination groups.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request

from core.errors import DeliveryError

LOGGER = logging.getLogger(__name__)

# Bot API answers these for chats the bot cannot post to.
UNAVAILABLE_STATUS = {400, 403}


class TelegramBotNotifier:
    """Delivery adapter that sends alerts via the Telegram Bot API."""

    def __init__(self, bot_token: str, timeout: float = 10.0) -> None:
        self._bot_token = bot_token
        self._timeout = timeout

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def _post(self, channel_id: str, text: str) -> bool:
        payload = {
            "chat_id": channel_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            if e.code in UNAVAILABLE_STATUS:
                LOGGER.warning("Bot API rejected chat %s (%s): %s", channel_id, e.code, body)
                return False
            raise DeliveryError(channel_id, f"Bot API error {e.code}: {body}") from e
        except urllib.error.URLError as e:
            raise DeliveryError(channel_id, f"Bot API unreachable: {e.reason}") from e
        return True

    async def send(self, channel_id: str, text: str) -> bool:
        """Send the formatted alert via the Bot API."""

        # urllib blocks, so the request runs in a worker thread.
        return await asyncio.to_thread(self._post, channel_id, text)
