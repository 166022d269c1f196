"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from telethon.tl.custom import Message as TelethonMessage
from telethon.utils import get_display_name

from core.models import Message


def message_key(chat_id: int, message_id: int) -> str:
    """Telegram message ids are only unique per chat, so keys combine both."""

    return f"{chat_id}:{message_id}"


def _display_name(entity: Any) -> str:
    if entity is None:
        return ""
    name = get_display_name(entity)
    if name:
        return name
    username = getattr(entity, "username", None)
    return f"@{username}" if username else ""


async def build_message(message: TelethonMessage, sender: Optional[Any] = None, chat: Optional[Any] = None) -> Message:
    """Build a core Message from a Telethon message.

    ``sender`` and ``chat`` may be passed when already resolved; otherwise
    they are fetched from Telethon's entity cache.
    """

    if sender is None:
        sender = await message.get_sender()
    if chat is None:
        chat = await message.get_chat()

    date = message.date or datetime.now(timezone.utc)
    return Message(
        id=message_key(message.chat_id, message.id),
        body=message.raw_text or "",
        sender_id=str(message.sender_id) if message.sender_id is not None else "",
        sender_name=_display_name(sender),
        chat_id=str(message.chat_id),
        chat_name=_display_name(chat) or str(message.chat_id),
        is_group=bool(message.is_group),
        timestamp=date,
        is_from_self=bool(message.out),
    )
