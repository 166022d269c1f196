"""Alert text sent to destination channels.

Keeping formatting here prevents drift between delivery adapters: the user
client sends Markdown, the Bot API adapter sends HTML, and both get the same
fields in the same order.
"""

from __future__ import annotations

import html
from typing import List

from core.models import CategorizationDecision, Message

DIVIDER = "──────────────"

CATEGORY_ICONS = {
    "URGENT": "🚨",
    "ESCALATION": "⚠️",
    "COMPLAINT": "📢",
    "INSTRUCTION": "📋",
    "CASUAL": "💬",
}


def escape_md(value: str) -> str:
    for ch in r"*_[`":
        value = value.replace(ch, f"\\{ch}")
    return value


def _escape(value: str, mode: str) -> str:
    if mode == "markdown":
        return escape_md(value)
    if mode == "html":
        return html.escape(value)
    raise ValueError(f"Unsupported notification format: {mode}")


def _bold(label: str, mode: str) -> str:
    return f"**{label}**" if mode == "markdown" else f"<b>{label}</b>"


def _timestamp(message: Message) -> str:
    return message.timestamp.astimezone().strftime("%H:%M:%S %d-%m-%Y")


def format_alert(message: Message, decision: CategorizationDecision, severity: str, mode: str = "markdown") -> str:
    """Return the routed alert for one message in the requested mode."""

    category = decision.category.value
    icon = CATEGORY_ICONS.get(category, "")

    def esc(value: str) -> str:
        return _escape(value, mode)

    lines: List[str] = [
        f"{icon} {_bold(category, mode)} [{_timestamp(message)}]",
        f"{_bold('Severity:', mode)}   {esc(severity)}",
        f"{_bold('From:', mode)}       {esc(message.sender_label)}",
        f"{_bold('Chat:', mode)}       {esc(message.chat_name or message.chat_id)}",
        DIVIDER,
        "",
        esc(message.body),
        "",
        f"{_bold('Sentiment:', mode)}  {esc(decision.sentiment)}",
        f"{_bold('Intent:', mode)}     {esc(decision.intent)}",
        f"{_bold('Confidence:', mode)} {decision.confidence * 100:.0f}%",
        f"{_bold('Escalation:', mode)} {decision.escalation_score * 100:.0f}%",
    ]

    areas = decision.business_context.get("gym_areas") or []
    if areas:
        lines.append(f"{_bold('Areas:', mode)}      {esc(', '.join(areas))}")
    if decision.flagging_decision:
        lines.extend(["", _bold("Why:", mode), esc(decision.flag_reason)])

    lines.append(DIVIDER)
    return "\n".join(lines)


def format_escalation_broadcast(
    message: Message,
    decision: CategorizationDecision,
    mode: str = "markdown",
) -> str:
    """Notice for management when no destination accepted an alert."""

    def esc(value: str) -> str:
        return _escape(value, mode)

    lines = [
        f"🚨 {_bold('ROUTING FAILED - MANUAL ATTENTION REQUIRED', mode)}",
        f"{_bold('Category:', mode)} {decision.category.value}",
        f"{_bold('From:', mode)}     {esc(message.sender_label)}",
        f"{_bold('Chat:', mode)}     {esc(message.chat_name or message.chat_id)}",
        DIVIDER,
        "",
        esc(message.body),
        "",
        DIVIDER,
    ]
    return "\n".join(lines)


def format_manual_notice(message: Message, mode: str = "markdown") -> str:
    """Generic notice used when routing itself broke."""

    def esc(value: str) -> str:
        return _escape(value, mode)

    lines = [
        f"⚠️ {_bold('Message needs manual handling', mode)}",
        f"{_bold('From:', mode)} {esc(message.sender_label)}",
        f"{_bold('Chat:', mode)} {esc(message.chat_name or message.chat_id)}",
        DIVIDER,
        "",
        esc(message.body),
        "",
        DIVIDER,
    ]
    return "\n".join(lines)
