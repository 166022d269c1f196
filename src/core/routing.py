"""Routing engine (core domain).

Given a final CategorizationDecision, pick a strategy, resolve candidate
destination channels, rank and cap them, deliver with bounded retries and,
when nothing got through for URGENT/ESCALATION, broadcast a failure notice
to management. ``route`` never raises; internal errors fall back to a single
customer-service send.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import cmp_to_key
import logging
import threading
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from core.alert_formatting import format_alert, format_escalation_broadcast, format_manual_notice
from core.config import RoutingConfig
from core.models import (
    FLAGGED_CATEGORIES,
    CategorizationDecision,
    Category,
    Department,
    DestinationChannel,
    Message,
    RoutingAttempt,
    RoutingRule,
)
from core.ports import DeliveryPort, NullTelemetry, RoutingDirectoryPort, TelemetryPort

LOGGER = logging.getLogger(__name__)


class RoutingState(str, Enum):
    PENDING = "PENDING"
    STRATEGY_SELECTED = "STRATEGY_SELECTED"
    TARGETS_RESOLVED = "TARGETS_RESOLVED"
    TARGETS_OPTIMIZED = "TARGETS_OPTIMIZED"
    DELIVERING = "DELIVERING"
    DELIVERED = "DELIVERED"
    PARTIALLY_DELIVERED = "PARTIALLY_DELIVERED"
    FAILED = "FAILED"
    ESCALATION_BROADCAST = "ESCALATION_BROADCAST"


class ResolutionMethod(str, Enum):
    RULES = "RULES"
    MANAGEMENT = "MANAGEMENT"
    CATEGORY = "CATEGORY"
    SPECIALIZATION = "SPECIALIZATION"
    KEYWORD = "KEYWORD"
    ALL_DEPARTMENTS = "ALL_DEPARTMENTS"


MATCH_SCORES = {
    ResolutionMethod.RULES: 1.0,
    ResolutionMethod.MANAGEMENT: 1.0,
    ResolutionMethod.CATEGORY: 0.9,
    ResolutionMethod.SPECIALIZATION: 0.85,
    ResolutionMethod.KEYWORD: 0.8,
    ResolutionMethod.ALL_DEPARTMENTS: 0.8,
}

CATEGORY_DEPARTMENTS = {
    Category.URGENT: (Department.MANAGEMENT,),
    Category.ESCALATION: (Department.MANAGEMENT, Department.CUSTOMER_SERVICE),
    Category.COMPLAINT: (
        Department.CUSTOMER_SERVICE,
        Department.FACILITY_MANAGEMENT,
        Department.EQUIPMENT_MAINTENANCE,
    ),
    Category.INSTRUCTION: (Department.EQUIPMENT_MAINTENANCE, Department.FACILITY_MANAGEMENT),
    Category.CASUAL: (Department.CUSTOMER_SERVICE,),
}

INTENT_DEPARTMENTS = {
    "emergency": Department.MANAGEMENT,
    "complaint": Department.CUSTOMER_SERVICE,
    "question": Department.CUSTOMER_SERVICE,
    "instruction": Department.FACILITY_MANAGEMENT,
}

SPECIALIZED_DEPARTMENTS = (Department.EQUIPMENT_MAINTENANCE, Department.FACILITY_MANAGEMENT)


@dataclass(frozen=True)
class RoutingStrategy:
    """How targets are resolved and trimmed for one class of message.

    With ``union`` every method contributes; otherwise the first method that
    yields targets wins.
    """

    name: str
    methods: tuple[ResolutionMethod, ...]
    union: bool = False
    load_balancing: bool = True
    emergency: bool = False


EMERGENCY_STRATEGY = RoutingStrategy(
    name="EMERGENCY",
    methods=(ResolutionMethod.RULES, ResolutionMethod.MANAGEMENT, ResolutionMethod.ALL_DEPARTMENTS),
    union=True,
    load_balancing=False,
    emergency=True,
)
ESCALATION_STRATEGY = RoutingStrategy(
    name="ESCALATION",
    methods=(ResolutionMethod.RULES, ResolutionMethod.MANAGEMENT, ResolutionMethod.CATEGORY),
    union=True,
    load_balancing=False,
)
PRIORITY_STRATEGY = RoutingStrategy(
    name="PRIORITY",
    methods=(
        ResolutionMethod.RULES,
        ResolutionMethod.CATEGORY,
        ResolutionMethod.SPECIALIZATION,
        ResolutionMethod.KEYWORD,
    ),
)
STANDARD_STRATEGY = RoutingStrategy(
    name="STANDARD",
    methods=(ResolutionMethod.RULES, ResolutionMethod.CATEGORY, ResolutionMethod.KEYWORD),
)


@dataclass
class RouteTarget:
    channel: DestinationChannel
    method: ResolutionMethod
    match_score: float
    rule_id: Optional[str] = None
    load: int = 0


@dataclass
class DeliveryResult:
    channel_id: str
    method: ResolutionMethod
    rule_id: Optional[str]
    success: bool
    attempts: int
    error: Optional[str] = None
    unavailable: bool = False


@dataclass
class RoutingOutcome:
    message_id: str
    strategy: str = ""
    severity: str = "low"
    success: bool = False
    targets: List[RouteTarget] = field(default_factory=list)
    deliveries: List[DeliveryResult] = field(default_factory=list)
    escalation_triggered: bool = False
    escalation_broadcast_success: Optional[bool] = None
    fallback_used: bool = False
    error: Optional[str] = None
    processing_time: float = 0.0
    states: List[RoutingState] = field(default_factory=list)

    @property
    def state(self) -> RoutingState:
        return self.states[-1] if self.states else RoutingState.PENDING

    @property
    def delivered_channels(self) -> List[str]:
        return [result.channel_id for result in self.deliveries if result.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "strategy": self.strategy,
            "severity": self.severity,
            "success": self.success,
            "delivered_channels": self.delivered_channels,
            "failed_channels": [r.channel_id for r in self.deliveries if not r.success],
            "escalation_triggered": self.escalation_triggered,
            "escalation_broadcast_success": self.escalation_broadcast_success,
            "fallback_used": self.fallback_used,
            "error": self.error,
            "processing_time": round(self.processing_time, 4),
            "state": self.state.value,
        }


@dataclass
class RoutingStats:
    total_routed: int = 0
    successful_routes: int = 0
    failed_routes: int = 0
    escalations: int = 0
    average_processing_time: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successful_routes / self.total_routed if self.total_routed else 0.0

    def record(self, success: bool, elapsed: float) -> None:
        self.total_routed += 1
        if success:
            self.successful_routes += 1
        else:
            self.failed_routes += 1
        self.average_processing_time += (elapsed - self.average_processing_time) / self.total_routed


def compute_severity(decision: CategorizationDecision) -> str:
    if decision.category in FLAGGED_CATEGORIES:
        return "high"
    if decision.sentiment == "negative" and decision.confidence >= 0.8:
        return "high"
    if decision.intent == "complaint" or decision.sentiment == "negative":
        return "medium"
    return "low"


def select_strategy(decision: CategorizationDecision, historical_risk: float = 0.0) -> RoutingStrategy:
    if decision.category is Category.URGENT:
        return EMERGENCY_STRATEGY
    if decision.category is Category.ESCALATION or historical_risk >= 0.8:
        return ESCALATION_STRATEGY
    if decision.category is Category.COMPLAINT:
        return PRIORITY_STRATEGY
    return STANDARD_STRATEGY


def rule_matches(
    rule: RoutingRule,
    channel: Optional[DestinationChannel],
    decision: CategorizationDecision,
    text: str,
    severity: str,
) -> bool:
    """A rule matches on category, keyword containment or intent department,
    and only when the message severity is one the rule accepts."""

    if severity not in rule.severities:
        return False
    if decision.category.value in rule.categories:
        return True
    lowered = text.casefold()
    if any(keyword.casefold() in lowered for keyword in rule.keywords):
        return True
    intent_department = INTENT_DEPARTMENTS.get(decision.intent)
    return bool(channel and intent_department and channel.department == intent_department.value)


def _sort_by_priority(channels: Sequence[DestinationChannel]) -> List[DestinationChannel]:
    return sorted(channels, key=lambda channel: channel.priority_level)


class RoutingEngine:
    """Routes decided messages to destination channels."""

    def __init__(
        self,
        directory: RoutingDirectoryPort,
        delivery: DeliveryPort,
        config: Optional[RoutingConfig] = None,
        telemetry: Optional[TelemetryPort] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._directory = directory
        self._delivery = delivery
        self._config = config or RoutingConfig()
        self._telemetry = telemetry or NullTelemetry()
        self._clock = clock
        self._sleep = sleep
        self._stats = RoutingStats()
        self._stats_lock = threading.Lock()

    @property
    def stats(self) -> RoutingStats:
        with self._stats_lock:
            return replace(self._stats)

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = RoutingStats()

    async def route(
        self,
        message: Message,
        decision: CategorizationDecision,
        historical_risk: float = 0.0,
    ) -> RoutingOutcome:
        started = time.perf_counter()
        outcome = RoutingOutcome(message_id=message.id, states=[RoutingState.PENDING])
        try:
            await self._route(message, decision, historical_risk, outcome)
        except Exception as exc:
            LOGGER.exception("Routing failed for %s; falling back to customer service", message.id)
            outcome.success = False
            outcome.error = str(exc)
            outcome.fallback_used = True
            outcome.states.append(RoutingState.FAILED)
            await self._fallback_send(message)

        outcome.processing_time = time.perf_counter() - started
        with self._stats_lock:
            self._stats.record(outcome.success, outcome.processing_time)
            if outcome.escalation_triggered:
                self._stats.escalations += 1
        self._publish("routing_completed", outcome.to_dict())
        LOGGER.info(
            "Routing %s done: strategy=%s success=%s delivered=%s",
            message.id,
            outcome.strategy,
            outcome.success,
            len(outcome.delivered_channels),
        )
        return outcome

    async def _route(
        self,
        message: Message,
        decision: CategorizationDecision,
        historical_risk: float,
        outcome: RoutingOutcome,
    ) -> None:
        strategy = select_strategy(decision, historical_risk)
        outcome.strategy = strategy.name
        outcome.severity = compute_severity(decision)
        outcome.states.append(RoutingState.STRATEGY_SELECTED)
        LOGGER.info("Routing strategy for %s: %s (severity %s)", message.id, strategy.name, outcome.severity)

        candidates = self.resolve_targets(strategy, message, decision, outcome.severity)
        outcome.states.append(RoutingState.TARGETS_RESOLVED)

        outcome.targets = self.optimize_targets(candidates, strategy)
        outcome.states.append(RoutingState.TARGETS_OPTIMIZED)
        if not outcome.targets:
            LOGGER.warning("No destination channels resolved for %s", message.id)

        outcome.states.append(RoutingState.DELIVERING)
        text = format_alert(message, decision, outcome.severity, self._config.message_format)
        for target in outcome.targets:
            result = await self._deliver(message.id, target, text)
            outcome.deliveries.append(result)
            if target.rule_id:
                self._record_rule_stats(target.rule_id, result.success)

        delivered = len(outcome.delivered_channels)
        outcome.success = delivered > 0
        if outcome.success and delivered == len(outcome.targets):
            outcome.states.append(RoutingState.DELIVERED)
        elif outcome.success:
            outcome.states.append(RoutingState.PARTIALLY_DELIVERED)
        else:
            outcome.states.append(RoutingState.FAILED)

        if not outcome.success and decision.category in FLAGGED_CATEGORIES:
            outcome.escalation_triggered = True
            outcome.escalation_broadcast_success = await self._broadcast_escalation(message, decision)
            outcome.states.append(RoutingState.ESCALATION_BROADCAST)

    def resolve_targets(
        self,
        strategy: RoutingStrategy,
        message: Message,
        decision: CategorizationDecision,
        severity: str,
    ) -> List[RouteTarget]:
        """Resolve candidates in method order, deduplicated by channel id."""

        targets: List[RouteTarget] = []
        seen: set[str] = set()
        for method in strategy.methods:
            found = [t for t in self._resolve(method, message, decision, severity) if t.channel.id not in seen]
            for target in found:
                seen.add(target.channel.id)
            targets.extend(found)
            if found and not strategy.union:
                break
        LOGGER.debug("Resolved %s candidate targets for %s", len(targets), message.id)
        return targets

    def _resolve(
        self,
        method: ResolutionMethod,
        message: Message,
        decision: CategorizationDecision,
        severity: str,
    ) -> List[RouteTarget]:
        score = MATCH_SCORES[method]
        if method is ResolutionMethod.RULES:
            return self._rule_targets(message, decision, severity)
        if method is ResolutionMethod.MANAGEMENT:
            channels = self._directory.list_active_channels(Department.MANAGEMENT.value)
        elif method is ResolutionMethod.CATEGORY:
            channels = []
            for department in CATEGORY_DEPARTMENTS.get(decision.category, (Department.CUSTOMER_SERVICE,)):
                channels.extend(self._directory.list_active_channels(department.value))
        elif method is ResolutionMethod.SPECIALIZATION:
            channels = self._specialized_channels(decision)
        elif method is ResolutionMethod.KEYWORD:
            channels = self._keyword_channels(message, decision)
        else:
            channels = list(self._directory.list_active_channels())
        return [RouteTarget(channel=channel, method=method, match_score=score) for channel in _sort_by_priority(channels)]

    def _rule_targets(self, message: Message, decision: CategorizationDecision, severity: str) -> List[RouteTarget]:
        channels = {channel.id: channel for channel in self._directory.list_active_channels()}
        rules = sorted(self._directory.list_active_rules(), key=lambda rule: rule.priority)
        targets: List[RouteTarget] = []
        for rule in rules:
            channel = channels.get(rule.target_channel_id)
            if channel is None or not rule.is_active:
                continue
            if rule_matches(rule, channel, decision, message.body, severity):
                targets.append(
                    RouteTarget(
                        channel=channel,
                        method=ResolutionMethod.RULES,
                        match_score=MATCH_SCORES[ResolutionMethod.RULES],
                        rule_id=rule.id,
                    )
                )
        return targets

    def _specialized_channels(self, decision: CategorizationDecision) -> List[DestinationChannel]:
        if decision.business_context.get("urgency_level") not in ("high", "critical"):
            return []
        channels: List[DestinationChannel] = []
        for department in SPECIALIZED_DEPARTMENTS:
            channels.extend(
                channel
                for channel in self._directory.list_active_channels(department.value)
                if channel.priority_level <= 2
            )
        return channels

    def _keyword_channels(self, message: Message, decision: CategorizationDecision) -> List[DestinationChannel]:
        haystacks = [message.body.casefold()]
        haystacks.extend(area.casefold() for area in decision.business_context.get("gym_areas") or [])
        departments: List[str] = []
        for issue in self._directory.list_issue_categories():
            if not issue.auto_route or issue.department in departments:
                continue
            if any(keyword.casefold() in hay for keyword in issue.keywords for hay in haystacks):
                departments.append(issue.department)
        channels: List[DestinationChannel] = []
        for department in departments:
            channels.extend(self._directory.list_active_channels(department))
        return channels

    def optimize_targets(self, candidates: List[RouteTarget], strategy: RoutingStrategy) -> List[RouteTarget]:
        if not candidates:
            return []
        if strategy.emergency:
            return candidates[: self._config.max_emergency_targets]

        targets = list(candidates)
        if strategy.load_balancing and self._config.load_balancing:
            targets = self._load_balance(targets)

        preferred = [target for target in targets if target.channel.priority_level <= 2]
        if preferred:
            targets = preferred
        return targets[: self._config.max_targets]

    def _load_balance(self, targets: List[RouteTarget]) -> List[RouteTarget]:
        since = self._clock() - timedelta(hours=self._config.load_window_hours)
        for target in targets:
            target.load = self._directory.count_deliveries_since(target.channel.id, since)

        threshold = self._config.load_difference

        def compare(a: RouteTarget, b: RouteTarget) -> int:
            if abs(a.load - b.load) > threshold:
                return a.load - b.load
            if a.match_score == b.match_score:
                return 0
            return -1 if a.match_score > b.match_score else 1

        return sorted(targets, key=cmp_to_key(compare))

    async def _deliver(self, message_id: str, target: RouteTarget, text: str) -> DeliveryResult:
        channel_id = target.channel.id
        result = DeliveryResult(channel_id=channel_id, method=target.method, rule_id=target.rule_id, success=False, attempts=0)
        while result.attempts < self._config.max_attempts:
            result.attempts += 1
            LOGGER.info("Delivery attempt %s to %s for %s", result.attempts, target.channel.name, message_id)
            try:
                sent = await self._delivery.send(channel_id, text)
            except Exception as exc:
                result.error = str(exc)
                LOGGER.warning("Delivery attempt %s to %s failed: %s", result.attempts, channel_id, exc)
                if result.attempts < self._config.max_attempts:
                    await self._sleep(self._config.retry_delay)
                continue
            if sent:
                result.success = True
                result.error = None
            else:
                result.unavailable = True
                result.error = "destination unavailable"
                LOGGER.warning("Destination %s unavailable; skipping", channel_id)
            break

        attempt = RoutingAttempt(
            message_id=message_id,
            channel_id=channel_id,
            rule_id=target.rule_id,
            success=result.success,
            error=result.error,
            retry_count=result.attempts - 1,
            metadata={
                "routing_method": target.method.value,
                "match_score": target.match_score,
                "department": target.channel.department,
                "load": target.load,
            },
        )
        # Bookkeeping failures never change the delivery outcome.
        try:
            self._directory.save_routing_attempt(attempt)
        except Exception:
            LOGGER.exception("Could not log routing attempt for %s to %s", message_id, channel_id)
        return result

    def _record_rule_stats(self, rule_id: str, success: bool) -> None:
        try:
            self._directory.update_rule_stats(rule_id, success)
        except Exception:
            LOGGER.exception("Could not update stats for rule %s", rule_id)

    async def _broadcast_escalation(self, message: Message, decision: CategorizationDecision) -> bool:
        LOGGER.warning("All deliveries failed for %s %s; broadcasting to management", decision.category.value, message.id)
        text = format_escalation_broadcast(message, decision, self._config.message_format)
        delivered = False
        for channel in self._directory.list_active_channels(Department.MANAGEMENT.value):
            try:
                if await self._delivery.send(channel.id, text):
                    delivered = True
                    LOGGER.info("Escalation broadcast sent to %s", channel.name)
            except Exception as exc:
                LOGGER.error("Escalation broadcast to %s failed: %s", channel.name, exc)
        self._publish(
            "escalation_broadcast",
            {"message_id": message.id, "category": decision.category.value, "success": delivered},
        )
        return delivered

    async def route_manual(self, message: Message) -> RoutingOutcome:
        """Send a manual-handling notice to one customer-service channel."""

        outcome = RoutingOutcome(
            message_id=message.id,
            strategy="MANUAL",
            fallback_used=True,
            states=[RoutingState.PENDING, RoutingState.DELIVERING],
        )
        outcome.success = await self._fallback_send(message)
        outcome.states.append(RoutingState.DELIVERED if outcome.success else RoutingState.FAILED)
        return outcome

    async def _fallback_send(self, message: Message) -> bool:
        try:
            channels = self._directory.list_active_channels(Department.CUSTOMER_SERVICE.value)
            if not channels:
                LOGGER.error("No customer service channel for fallback of %s", message.id)
                return False
            channel = channels[0]
            return bool(await self._delivery.send(channel.id, format_manual_notice(message, self._config.message_format)))
        except Exception:
            LOGGER.exception("Fallback delivery failed for %s", message.id)
            return False

    def _publish(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self._telemetry.publish(event, payload)
        except Exception:
            LOGGER.exception("Telemetry publish failed for %s", event)
