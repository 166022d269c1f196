"""Per-message analysis fan-out.

Lexical analysis runs inline. The history fetch and the oracle call are the
two suspension points; each has its own timeout and resolves to a fallback
value instead of raising, so one slow dependency never cancels the other
branch. Results are joined and handed to the fusion engine.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
import logging
from typing import Optional, Sequence, Tuple

from core.config import AnalysisConfig, FusionConfig
from core.fusion import FusionEngine
from core.history import HistoricalContextAnalyzer, HistoricalPatternSnapshot, fallback_snapshot
from core.lexical import LexicalAnalysis, analyze_text
from core.models import CategorizationDecision, HistoryEntry, Message
from core.oracle import OracleResult, consult_oracle, lexical_hint
from core.ports import HistoryStorePort, OraclePort

LOGGER = logging.getLogger(__name__)

HistoryPair = Tuple[Sequence[HistoryEntry], Sequence[HistoryEntry]]


@dataclass(frozen=True)
class AnalysisResult:
    lexical: LexicalAnalysis
    historical: HistoricalPatternSnapshot
    oracle: OracleResult
    decision: CategorizationDecision


def historical_hint(history: Optional[HistoryPair]) -> str:
    if history is None:
        return "history unavailable"
    sender_history, chat_history = history
    recent = "; ".join(entry.body[:80] for entry in list(sender_history)[:3])
    return (
        f"sender_messages={len(sender_history)}; chat_messages={len(chat_history)}; "
        f"recent=[{recent}]"
    )


class TriageAnalyzer:
    """Runs lexical, historical and oracle analysis for one message and fuses them."""

    def __init__(
        self,
        history_store: HistoryStorePort,
        oracle: Optional[OraclePort],
        config: Optional[AnalysisConfig] = None,
        fusion_config: Optional[FusionConfig] = None,
    ) -> None:
        self._store = history_store
        self._oracle = oracle
        self._config = config or AnalysisConfig()
        self._history = HistoricalContextAnalyzer(self._config)
        self._fusion = FusionEngine(fusion_config)

    async def analyze(self, message: Message) -> AnalysisResult:
        lexical = analyze_text(message.body)
        fetch = asyncio.ensure_future(self._fetch_history(message))

        historical, oracle = await asyncio.gather(
            self._historical_branch(message, fetch),
            self._oracle_branch(message, lexical, fetch),
        )
        decision = self._fusion.fuse(lexical, historical, oracle, message.body)
        LOGGER.info(
            "Decision for %s: %s (confidence %.2f, escalation %.2f, rules=%s)",
            message.id,
            decision.category.value,
            decision.confidence,
            decision.escalation_score,
            ",".join(decision.applied_rules) or "-",
        )
        return AnalysisResult(lexical=lexical, historical=historical, oracle=oracle, decision=decision)

    async def _fetch_history(self, message: Message) -> Optional[HistoryPair]:
        """Fetch sender and chat history, or None when it fails or times out."""

        since = message.timestamp - timedelta(days=self._config.history_window_days)

        async def _load() -> HistoryPair:
            sender_history = await asyncio.to_thread(
                self._store.recent_by_sender, message.sender_id, since, self._config.sender_history_limit
            )
            chat_history = await asyncio.to_thread(
                self._store.recent_by_chat, message.chat_id, since, self._config.chat_history_limit
            )
            return sender_history, chat_history

        try:
            return await asyncio.wait_for(_load(), self._config.history_timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("History fetch timed out for %s; using fallback snapshot", message.id)
        except Exception as exc:
            LOGGER.warning("History fetch failed for %s (%s); using fallback snapshot", message.id, exc)
        return None

    async def _historical_branch(
        self,
        message: Message,
        fetch: "asyncio.Future[Optional[HistoryPair]]",
    ) -> HistoricalPatternSnapshot:
        history = await fetch
        if history is None:
            return fallback_snapshot()
        sender_history, chat_history = history
        try:
            return self._history.analyze(message, sender_history, chat_history)
        except Exception:
            LOGGER.exception("History analysis failed for %s; using fallback snapshot", message.id)
            return fallback_snapshot()

    async def _oracle_branch(
        self,
        message: Message,
        lexical: LexicalAnalysis,
        fetch: "asyncio.Future[Optional[HistoryPair]]",
    ) -> OracleResult:
        # Bounded by the history timeout.
        history = await fetch
        return await consult_oracle(
            self._oracle,
            message.body,
            lexical_hint(lexical),
            historical_hint(history),
            self._config.oracle_timeout,
        )
