"""Core configuration dataclasses and builders.

The dataclasses define the tunables the analyzers and the routing engine
expect. The ``build_*`` helpers normalize the raw config.json sections so
settings.py stays a thin loader.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

from core.keywords import ESCALATION_PHRASES, SAFETY_PHRASES
from core.models import SEVERITIES, Department, DestinationChannel, IssueCategory, RoutingRule


@dataclass(frozen=True)
class AnalysisConfig:
    """Timeouts and thresholds for the analysis fan-out."""

    oracle_timeout: float = 15.0
    history_timeout: float = 5.0
    history_window_days: int = 30
    sender_history_limit: int = 100
    chat_history_limit: int = 50
    similarity_threshold: float = 0.6
    repetition_threshold: int = 3


@dataclass(frozen=True)
class FusionConfig:
    """Phrase lists consulted by the business override rules."""

    safety_phrases: tuple[str, ...] = SAFETY_PHRASES
    escalation_phrases: tuple[str, ...] = ESCALATION_PHRASES
    min_oracle_confidence: float = 0.3


@dataclass(frozen=True)
class RoutingConfig:
    """Delivery and target-selection settings for the routing engine."""

    max_attempts: int = 3
    retry_delay: float = 2.0
    load_balancing: bool = True
    load_window_hours: int = 24
    load_difference: int = 2
    max_targets: int = 3
    max_emergency_targets: int = 5
    route_casual: bool = False
    message_format: str = "markdown"


def _section(raw: Optional[dict], cls, casts: dict[str, Callable[[Any], Any]]):
    """Build a config dataclass from a JSON section, keeping defaults for missing keys."""

    values = {}
    for key, cast in casts.items():
        if raw and raw.get(key) is not None:
            values[key] = cast(raw[key])
    return cls(**values)


def build_analysis_config(raw: Optional[dict]) -> AnalysisConfig:
    return _section(
        raw,
        AnalysisConfig,
        {
            "oracle_timeout": float,
            "history_timeout": float,
            "history_window_days": int,
            "sender_history_limit": int,
            "chat_history_limit": int,
            "similarity_threshold": float,
            "repetition_threshold": int,
        },
    )


def build_fusion_config(raw: Optional[dict]) -> FusionConfig:
    return _section(
        raw,
        FusionConfig,
        {
            "safety_phrases": tuple,
            "escalation_phrases": tuple,
            "min_oracle_confidence": float,
        },
    )


def build_routing_config(raw: Optional[dict]) -> RoutingConfig:
    return _section(
        raw,
        RoutingConfig,
        {
            "max_attempts": int,
            "retry_delay": float,
            "load_balancing": bool,
            "load_window_hours": int,
            "load_difference": int,
            "max_targets": int,
            "max_emergency_targets": int,
            "route_casual": bool,
            "message_format": str,
        },
    )


def build_channels(channels_config: Iterable[dict]) -> List[DestinationChannel]:
    """Normalize destination channel entries; ids are kept as strings."""

    channels: List[DestinationChannel] = []
    for entry in channels_config:
        channels.append(
            DestinationChannel(
                id=str(entry["id"]),
                name=entry.get("name") or str(entry["id"]),
                department=str(entry.get("department", Department.UNASSIGNED.value)).upper(),
                priority_level=int(entry.get("priority_level", 3)),
                is_active=bool(entry.get("enabled", True)),
            )
        )
    return channels


def build_routing_rules(rules_config: Iterable[dict]) -> List[RoutingRule]:
    """Normalize routing rule entries.

    Categories are upper-cased, severities lower-cased; a rule without
    severities accepts all of them.
    """

    rules: List[RoutingRule] = []
    for index, entry in enumerate(rules_config, start=1):
        severities = tuple(s.lower() for s in entry.get("severities", []) if s.lower() in SEVERITIES)
        rules.append(
            RoutingRule(
                id=str(entry.get("id") or f"rule-{index}"),
                name=entry.get("name") or f"rule-{index}",
                target_channel_id=str(entry["target_channel_id"]),
                categories=tuple(c.upper() for c in entry.get("categories", [])),
                keywords=tuple(entry.get("keywords", [])),
                severities=severities or SEVERITIES,
                priority=int(entry.get("priority", 5)),
                is_active=bool(entry.get("enabled", True)),
            )
        )
    return rules


def build_issue_categories(categories_config: Iterable[dict]) -> List[IssueCategory]:
    return [
        IssueCategory(
            name=entry["name"],
            department=str(entry["department"]).upper(),
            keywords=tuple(entry.get("keywords", [])),
            auto_route=bool(entry.get("auto_route", True)),
        )
        for entry in categories_config
    ]


def build_monitored_chats(chats_config: Iterable[Any]) -> set[str]:
    """Accept plain ids or {"chat_id": ..., "enabled": ...} entries."""

    chats: set[str] = set()
    for entry in chats_config:
        if isinstance(entry, dict):
            if not entry.get("enabled", True) or entry.get("chat_id") is None:
                continue
            chats.add(str(entry["chat_id"]))
        else:
            chats.add(str(entry))
    return chats
