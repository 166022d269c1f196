from __future__ import annotations

import asyncio
import time

from core.analysis import TriageAnalyzer, historical_hint
from core.config import AnalysisConfig
from core.models import Category
from core.oracle import OracleResult
from fakes import FakeHistoryStore, FakeOracle, make_entry, make_message


class SlowHistoryStore(FakeHistoryStore):
    def recent_by_sender(self, sender_id, since, limit):
        time.sleep(0.3)
        return super().recent_by_sender(sender_id, since, limit)


def test_history_failure_degrades_to_fallback_snapshot() -> None:
    oracle = FakeOracle(result=OracleResult(category="COMPLAINT", confidence=0.8, sentiment="negative"))
    analyzer = TriageAnalyzer(FakeHistoryStore(fail=True), oracle)

    result = asyncio.run(analyzer.analyze(make_message("locker is jammed")))

    assert result.historical.fallback_used
    assert oracle.calls[0][2] == "history unavailable"
    assert result.decision.category is Category.COMPLAINT


def test_history_timeout_degrades_to_fallback_snapshot() -> None:
    oracle = FakeOracle(result=OracleResult(category="COMPLAINT", confidence=0.8))
    analyzer = TriageAnalyzer(SlowHistoryStore(), oracle, AnalysisConfig(history_timeout=0.05))

    result = asyncio.run(analyzer.analyze(make_message("locker is jammed")))

    assert result.historical.fallback_used
    assert oracle.calls[0][2] == "history unavailable"


def test_lexical_hint_reaches_oracle() -> None:
    oracle = FakeOracle(result=OracleResult(category="COMPLAINT", confidence=0.8))
    analyzer = TriageAnalyzer(FakeHistoryStore(), oracle)

    asyncio.run(analyzer.analyze(make_message("treadmill broken")))

    text, quick_hint, _ = oracle.calls[0]
    assert text == "treadmill broken"
    assert "EQUIPMENT" in quick_hint


def test_history_outside_window_is_ignored() -> None:
    old = make_entry("treadmill broken", entry_id="old", minutes=-60 * 24 * 40)
    analyzer = TriageAnalyzer(FakeHistoryStore([old]), None)

    result = asyncio.run(analyzer.analyze(make_message("treadmill broken")))

    assert result.historical.repetition.repetition_count == 0
    assert result.oracle.failed


def test_historical_hint_format() -> None:
    entries = [make_entry("treadmill broken", entry_id="h1", minutes=-5)]

    hint = historical_hint((entries, entries + entries))

    assert hint.startswith("sender_messages=1; chat_messages=2")
    assert "treadmill broken" in hint
    assert historical_hint(None) == "history unavailable"
