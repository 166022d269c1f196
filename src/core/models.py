"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Category(str, Enum):
    """Business category assigned to every triaged message."""

    INSTRUCTION = "INSTRUCTION"
    ESCALATION = "ESCALATION"
    COMPLAINT = "COMPLAINT"
    URGENT = "URGENT"
    CASUAL = "CASUAL"


FLAGGED_CATEGORIES = frozenset({Category.URGENT, Category.ESCALATION})

SENTIMENTS = ("positive", "negative", "neutral")
INTENTS = ("complaint", "instruction", "question", "emergency", "general")
SEVERITIES = ("low", "medium", "high", "critical")


class Department(str, Enum):
    """Department tag carried by destination channels."""

    MANAGEMENT = "MANAGEMENT"
    CUSTOMER_SERVICE = "CUSTOMER_SERVICE"
    FACILITY_MANAGEMENT = "FACILITY_MANAGEMENT"
    EQUIPMENT_MAINTENANCE = "EQUIPMENT_MAINTENANCE"
    UNASSIGNED = "UNASSIGNED"


@dataclass(frozen=True)
class Message:
    """Inbound chat message as handed over by the transport adapter."""

    id: str
    body: str
    sender_id: str
    sender_name: str
    chat_id: str
    chat_name: str
    is_group: bool
    timestamp: datetime
    is_from_self: bool = False

    @property
    def sender_label(self) -> str:
        return self.sender_name or self.sender_id


@dataclass(frozen=True)
class HistoryEntry:
    """A previously seen message, optionally labeled with its decided sentiment."""

    id: str
    body: str
    sender_id: str
    chat_id: str
    timestamp: datetime
    sentiment: Optional[str] = None


@dataclass(frozen=True)
class CategorizationDecision:
    """Final, immutable categorization attached to one message."""

    category: Category
    confidence: float
    escalation_score: float
    sentiment: str
    intent: str
    flagging_decision: bool
    business_context: dict[str, Any] = field(default_factory=dict)
    applied_rules: tuple[str, ...] = ()
    oracle_failed: bool = False
    emergency_fallback: bool = False

    @property
    def flag_reason(self) -> str:
        reasons: list[str] = []
        if self.category is Category.URGENT:
            reasons.append("Emergency/Safety concern detected")
        if self.category is Category.ESCALATION:
            reasons.append("Customer escalation pattern detected")
        if self.category is Category.COMPLAINT:
            reasons.append("Service/facility complaint identified")
        if self.escalation_score >= 0.7:
            reasons.append(f"High escalation risk ({self.escalation_score * 100:.0f}%)")
        if self.applied_rules:
            reasons.append(f"Business rules: {', '.join(self.applied_rules)}")
        return ", ".join(reasons) if reasons else "AI flagging decision"

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["category"] = self.category.value
        payload["applied_rules"] = list(self.applied_rules)
        return payload


@dataclass(frozen=True)
class DestinationChannel:
    """A group that alerts can be delivered to."""

    id: str
    name: str
    department: str
    priority_level: int = 3
    is_active: bool = True


@dataclass(frozen=True)
class RoutingRule:
    """Configured mapping from message traits to a destination channel."""

    id: str
    name: str
    target_channel_id: str
    categories: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    severities: tuple[str, ...] = SEVERITIES
    priority: int = 5
    is_active: bool = True
    total_routed: int = 0
    successful_routes: int = 0
    failed_routes: int = 0

    @property
    def success_rate(self) -> float:
        return self.successful_routes / self.total_routed if self.total_routed else 0.0


@dataclass(frozen=True)
class IssueCategory:
    """Named issue type whose keywords point at a department."""

    name: str
    department: str
    keywords: tuple[str, ...]
    auto_route: bool = True


@dataclass(frozen=True)
class RoutingAttempt:
    """Append-only log record for one (message, target) delivery."""

    message_id: str
    channel_id: str
    rule_id: Optional[str]
    success: bool
    error: Optional[str]
    retry_count: int
    metadata: dict[str, Any] = field(default_factory=dict)
