"""Telegram delivery adapter using the logged-in user client.

Alerts are posted as Markdown into destination groups. Permission and
lookup failures mean the group is unavailable and are reported as ``False``;
everything else is raised as a retryable DeliveryError.
"""

from __future__ import annotations

import logging

from telethon import errors

from core.errors import DeliveryError

LOGGER = logging.getLogger(__name__)

UNAVAILABLE_ERRORS = (
    errors.ChatWriteForbiddenError,
    errors.ChannelPrivateError,
    errors.ChatAdminRequiredError,
    errors.UserBannedInChannelError,
    errors.PeerIdInvalidError,
    ValueError,
)


def _peer(channel_id: str):
    # Configured ids are numeric chat ids or @usernames.
    try:
        return int(channel_id)
    except ValueError:
        return channel_id


class TelegramGroupNotifier:
    """Delivery adapter that sends alerts into Telegram groups."""

    def __init__(self, client, parse_mode: str = "Markdown") -> None:
        self._client = client
        self._parse_mode = parse_mode

    async def send(self, channel_id: str, text: str) -> bool:
        """Send the formatted alert to a group."""

        try:
            await self._client.send_message(_peer(channel_id), text, parse_mode=self._parse_mode)
        except UNAVAILABLE_ERRORS as exc:
            LOGGER.warning("Group %s unavailable: %s", channel_id, exc)
            return False
        except errors.RPCError as exc:
            raise DeliveryError(channel_id, str(exc)) from exc
        return True
