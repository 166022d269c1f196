from __future__ import annotations

from typing import Optional

import pytest

from core.fusion import FUSION_RULES, FusionEngine
from core.history import (
    HistoricalPatternSnapshot,
    RepetitionPattern,
    RiskAssessment,
    SentimentTrend,
    fallback_snapshot,
)
from core.lexical import analyze_text
from core.models import Category
from core.oracle import OracleResult, fallback_classification


def _history(
    overall: float = 0.0,
    repetition: bool = False,
    decline: bool = False,
) -> HistoricalPatternSnapshot:
    return HistoricalPatternSnapshot(
        repetition=RepetitionPattern(repetition_count=3 if repetition else 0, escalation_detected=repetition),
        sentiment_trend=SentimentTrend(decline_detected=decline, risk_score=0.8 if decline else 0.0),
        risk=RiskAssessment(overall_risk=overall),
    )


def _fuse(text: str, oracle: OracleResult, history: Optional[HistoricalPatternSnapshot] = None):
    return FusionEngine().fuse(analyze_text(text), history or _history(), oracle, text)


def test_rule_order_is_explicit() -> None:
    assert [rule.__name__ for rule in FUSION_RULES] == [
        "high_risk_override",
        "historical_escalation_floor",
        "repetition_escalation",
        "sentiment_decline",
        "safety_override",
        "escalation_language",
        "sentiment_consistency",
        "instruction_escalation",
    ]


def test_confident_oracle_seeds_decision() -> None:
    oracle = OracleResult(
        category="COMPLAINT",
        confidence=0.8,
        flagging=True,
        escalation_score=0.4,
        sentiment="negative",
        intent="complaint",
    )

    decision = _fuse("AC is not working, very hot, please fix", oracle)

    assert decision.category is Category.COMPLAINT
    assert decision.flagging_decision
    assert decision.sentiment == "negative"
    assert decision.applied_rules == ()
    # History alone implies CASUAL, so only half the engines agree.
    assert decision.confidence == pytest.approx(0.9)
    assert decision.business_context["gym_areas"] == ["FACILITY"]
    assert decision.business_context["urgency_level"] == "medium"


def test_low_confidence_oracle_seeds_casual() -> None:
    oracle = OracleResult(category="URGENT", confidence=0.1, flagging=True)

    decision = _fuse("good morning", oracle)

    assert decision.category is Category.CASUAL
    assert not decision.flagging_decision


def test_high_risk_override() -> None:
    decision = _fuse("ok", OracleResult(category="CASUAL", confidence=0.9), _history(overall=0.85))

    assert decision.category is Category.ESCALATION
    assert decision.flagging_decision
    assert decision.escalation_score == pytest.approx(0.85)
    assert "HIGH_RISK_OVERRIDE" in decision.applied_rules


def test_repetition_escalation() -> None:
    decision = _fuse(
        "treadmill is broken",
        OracleResult(category="COMPLAINT", confidence=0.7, sentiment="negative"),
        _history(overall=0.5, repetition=True),
    )

    assert decision.category is Category.ESCALATION
    assert decision.flagging_decision
    assert decision.applied_rules == ("REPETITION_ESCALATION",)


def test_sentiment_decline_raises_escalation_score() -> None:
    decision = _fuse(
        "still waiting",
        OracleResult(category="COMPLAINT", confidence=0.7, escalation_score=0.1, sentiment="negative"),
        _history(overall=0.3, decline=True),
    )

    assert decision.escalation_score == pytest.approx(0.7)
    assert "SENTIMENT_DECLINE" in decision.applied_rules
    assert decision.category is Category.COMPLAINT


def test_safety_override_beats_everything() -> None:
    decision = _fuse(
        "emergency someone is injured help",
        OracleResult(category="CASUAL", confidence=0.95, sentiment="positive"),
        _history(overall=0.9, repetition=True, decline=True),
    )

    assert decision.category is Category.URGENT
    assert decision.escalation_score == 1.0
    assert decision.flagging_decision
    assert "SAFETY_OVERRIDE" in decision.applied_rules
    assert "ESCALATION_LANGUAGE" not in decision.applied_rules


def test_escalation_language_needs_two_phrases() -> None:
    one = _fuse("I am frustrated", OracleResult(category="COMPLAINT", confidence=0.7))
    two = _fuse("I am fed up and frustrated", OracleResult(category="COMPLAINT", confidence=0.7))

    assert one.category is Category.COMPLAINT
    assert two.category is Category.ESCALATION
    assert two.escalation_score == pytest.approx(0.8)
    assert "ESCALATION_LANGUAGE" in two.applied_rules


def test_escalation_language_never_downgrades_urgent() -> None:
    decision = _fuse("fire! I am fed up and frustrated", OracleResult(category="CASUAL", confidence=0.7))

    assert decision.category is Category.URGENT
    assert decision.escalation_score == 1.0


def test_sentiment_consistency_for_complaints() -> None:
    decision = _fuse("the showers", OracleResult(category="COMPLAINT", confidence=0.7, sentiment="positive"))

    assert decision.sentiment == "negative"
    assert "SENTIMENT_CONSISTENCY" in decision.applied_rules


def test_instruction_escalates_with_high_score() -> None:
    decision = _fuse(
        "please check the weights",
        OracleResult(category="INSTRUCTION", confidence=0.7, escalation_score=0.65),
    )

    assert decision.category is Category.ESCALATION
    assert "INSTRUCTION_ESCALATION" in decision.applied_rules


def test_out_of_range_oracle_values_are_corrected() -> None:
    oracle = OracleResult(
        category="BANANA",
        confidence=7.5,
        escalation_score=-3,
        sentiment="ecstatic",
        intent="dance",
    )

    decision = _fuse("hello there", oracle)

    assert decision.category is Category.CASUAL
    assert "CATEGORY_VALIDATION" in decision.applied_rules
    assert 0.0 <= decision.confidence <= 1.0
    assert decision.escalation_score == 0.0
    assert decision.sentiment == "neutral"
    assert decision.intent == "general"


def test_flagged_categories_always_flag() -> None:
    decision = _fuse("ok", OracleResult(category="ESCALATION", confidence=0.9, flagging=False))

    assert decision.category is Category.ESCALATION
    assert decision.flagging_decision


def test_oracle_failure_confidence_penalty() -> None:
    decision = _fuse("good morning everyone", fallback_classification("good morning everyone"))

    # (0.4 + 0.2 * 1.0) * 0.7
    assert decision.category is Category.CASUAL
    assert decision.confidence == pytest.approx(0.42)
    assert decision.oracle_failed
    assert not decision.flagging_decision


def test_fallback_history_is_left_out_of_agreement() -> None:
    decision = _fuse("ok", OracleResult(category="COMPLAINT", confidence=0.5), fallback_snapshot())

    # base 0.5 + 0.2 * (oracle agrees) and history abstains.
    assert decision.confidence == pytest.approx(0.7)


def test_fusion_is_deterministic() -> None:
    oracle = OracleResult(category="COMPLAINT", confidence=0.6, sentiment="negative")
    history = _history(overall=0.65, decline=True)

    first = _fuse("treadmill broken again", oracle, history)
    second = _fuse("treadmill broken again", oracle, history)

    assert first == second


def test_consistency_score_in_business_context() -> None:
    decision = _fuse(
        "treadmill",
        OracleResult(category="COMPLAINT", confidence=0.8),
        _history(overall=0.5, repetition=True, decline=True),
    )

    assert decision.business_context["consistency_score"] == pytest.approx((0.8 + 0.9) / 2)
