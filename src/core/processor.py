"""Core message processing pipeline.

This module is integration-agnostic. It only relies on ports for history,
decisions, routing and telemetry, so the Telegram client, the SQLite store or
the oracle can be swapped without changes here.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import threading
import time
from typing import Any, Iterable, Optional

from core.analysis import AnalysisResult, TriageAnalyzer
from core.config import RoutingConfig
from core.models import CategorizationDecision, Category, Message
from core.ports import DecisionStorePort, HistoryStorePort, NullTelemetry, TelemetryPort
from core.routing import RoutingEngine, RoutingOutcome

LOGGER = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.2


@dataclass
class PipelineStats:
    total_processed: int = 0
    successful: int = 0
    fallback_used: int = 0
    oracle_failures: int = 0
    average_processing_time: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successful / self.total_processed if self.total_processed else 0.0

    @property
    def fallback_rate(self) -> float:
        return self.fallback_used / self.total_processed if self.total_processed else 0.0


@dataclass(frozen=True)
class ProcessingResult:
    message_id: str
    decision: CategorizationDecision
    routing: Optional[RoutingOutcome] = None
    analysis: Optional[AnalysisResult] = None


def emergency_fallback_decision(error: str) -> CategorizationDecision:
    """Safe default used when analysis itself blew up."""

    return CategorizationDecision(
        category=Category.CASUAL,
        confidence=FALLBACK_CONFIDENCE,
        escalation_score=0.0,
        sentiment="neutral",
        intent="general",
        flagging_decision=False,
        business_context={"error": error},
        applied_rules=(),
        oracle_failed=True,
        emergency_fallback=True,
    )


class MessageProcessor:
    """Orchestrates analysis, persistence, routing and telemetry per message."""

    def __init__(
        self,
        analyzer: TriageAnalyzer,
        router: RoutingEngine,
        history_store: HistoryStorePort,
        decision_store: DecisionStorePort,
        monitored_chats: Optional[Iterable[str]] = None,
        routing_config: Optional[RoutingConfig] = None,
        telemetry: Optional[TelemetryPort] = None,
    ) -> None:
        self._analyzer = analyzer
        self._router = router
        self._history = history_store
        self._decisions = decision_store
        # None means every chat is monitored.
        self._monitored = set(monitored_chats) if monitored_chats is not None else None
        self._routing_config = routing_config or RoutingConfig()
        self._telemetry = telemetry or NullTelemetry()
        self._stats = PipelineStats()
        self._stats_lock = threading.Lock()

    @property
    def stats(self) -> PipelineStats:
        with self._stats_lock:
            return replace(self._stats)

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = PipelineStats()

    async def handle(self, message: Message) -> Optional[ProcessingResult]:
        """Process one inbound message; returns None when it was skipped."""

        # Our own messages, including alerts we post, bypass analysis entirely.
        if message.is_from_self:
            return None

        # Media-only messages without captions are ignored
        if not message.body.strip():
            return None

        if self._monitored is not None and message.chat_id not in self._monitored:
            return None

        if self._already_decided(message.id):
            LOGGER.debug("Skipping %s, already decided", message.id)
            return None

        started = time.perf_counter()
        try:
            result = await self._process(message)
        except Exception as exc:
            LOGGER.exception("Pipeline failed for %s; using emergency fallback", message.id)
            result = await self._emergency_fallback(message, str(exc))

        self._record_stats(result, time.perf_counter() - started)
        return result

    def _already_decided(self, message_id: str) -> bool:
        # An unreadable decision log must not stop triage; treat as undecided.
        try:
            return self._decisions.has_decision(message_id)
        except Exception:
            LOGGER.exception("Decision lookup failed for %s", message_id)
            return False

    async def _process(self, message: Message) -> ProcessingResult:
        analysis = await self._analyzer.analyze(message)
        decision = analysis.decision

        try:
            self._decisions.save_decision(message.id, decision)
        except Exception:
            LOGGER.exception("Could not save decision for %s", message.id)
        # Recorded after deciding so history never contains the message under analysis.
        try:
            self._history.record_message(message, decision.sentiment)
        except Exception:
            LOGGER.exception("Could not record %s in history", message.id)
        self._publish(
            "decision_made",
            {
                "message_id": message.id,
                "chat_id": message.chat_id,
                "sender_id": message.sender_id,
                "flag_reason": decision.flag_reason,
                **decision.to_dict(),
            },
        )

        routing = None
        if decision.category is not Category.CASUAL or self._routing_config.route_casual:
            routing = await self._router.route(message, decision, analysis.historical.overall_risk)
        else:
            LOGGER.info("Message %s is CASUAL; not routed", message.id)
        return ProcessingResult(message_id=message.id, decision=decision, routing=routing, analysis=analysis)

    async def _emergency_fallback(self, message: Message, error: str) -> ProcessingResult:
        decision = emergency_fallback_decision(error)
        try:
            self._decisions.save_decision(message.id, decision)
        except Exception:
            LOGGER.exception("Could not save fallback decision for %s", message.id)
        self._publish("emergency_fallback", {"message_id": message.id, "error": error})

        routing = None
        try:
            routing = await self._router.route_manual(message)
        except Exception:
            LOGGER.exception("Emergency send failed for %s", message.id)
        return ProcessingResult(message_id=message.id, decision=decision, routing=routing)

    def _record_stats(self, result: ProcessingResult, elapsed: float) -> None:
        with self._stats_lock:
            stats = self._stats
            stats.total_processed += 1
            if result.decision.emergency_fallback:
                stats.fallback_used += 1
            else:
                stats.successful += 1
            if result.decision.oracle_failed:
                stats.oracle_failures += 1
            stats.average_processing_time += (elapsed - stats.average_processing_time) / stats.total_processed

    def _publish(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self._telemetry.publish(event, payload)
        except Exception:
            LOGGER.exception("Telemetry publish failed for %s", event)
