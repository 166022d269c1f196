"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for history, decisions, the routing
directory, delivery, the categorization oracle and telemetry so that the core
can run against SQLite and Telegram in production and in-memory fakes in tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

from core.models import (
    CategorizationDecision,
    DestinationChannel,
    HistoryEntry,
    IssueCategory,
    Message,
    RoutingAttempt,
    RoutingRule,
)
from core.oracle import OracleResult


class HistoryStorePort(Protocol):
    """Recent-message lookups. Both queries return most recent first."""

    def recent_by_sender(self, sender_id: str, since: datetime, limit: int) -> Sequence[HistoryEntry]:
        ...

    def recent_by_chat(self, chat_id: str, since: datetime, limit: int) -> Sequence[HistoryEntry]:
        ...

    def record_message(self, message: Message, sentiment: Optional[str]) -> None:
        ...


class DecisionStorePort(Protocol):
    """Append-only store of categorization decisions."""

    def save_decision(self, message_id: str, decision: CategorizationDecision) -> None:
        ...

    def has_decision(self, message_id: str) -> bool:
        ...


class RoutingDirectoryPort(Protocol):
    """Read access to rules and channels, plus routing bookkeeping."""

    def list_active_rules(self) -> Sequence[RoutingRule]:
        ...

    def list_active_channels(self, department: Optional[str] = None) -> Sequence[DestinationChannel]:
        ...

    def list_issue_categories(self) -> Sequence[IssueCategory]:
        ...

    def update_rule_stats(self, rule_id: str, success: bool) -> None:
        ...

    def save_routing_attempt(self, attempt: RoutingAttempt) -> None:
        ...

    def count_deliveries_since(self, channel_id: str, since: datetime) -> int:
        ...


class DeliveryPort(Protocol):
    """Outbound delivery to a destination channel.

    Returns ``False`` when the destination is unavailable (non-retryable) and
    raises on retryable transport failures.
    """

    async def send(self, channel_id: str, text: str) -> bool:
        ...


class OraclePort(Protocol):
    """Remote categorization; may be slow, fail, or return malformed output."""

    async def categorize(self, text: str, quick_hint: str, historical_hint: str) -> OracleResult:
        ...


class TelemetryPort(Protocol):
    def publish(self, event: str, payload: dict[str, Any]) -> None:
        ...


class NullTelemetry:
    """Telemetry sink that drops every event."""

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        return None
