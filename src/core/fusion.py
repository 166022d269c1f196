"""Decision fusion engine (core domain).

Lexical, historical and oracle signals are merged into one
CategorizationDecision. The business overrides are an ordered tuple of named
rule functions; each takes the draft decision and returns it, possibly
overwriting category, flagging or escalation score. Later rules encode
stricter priorities, so the order of ``FUSION_RULES`` is part of the
observable behaviour.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
from typing import Any, Callable, List, Optional, Tuple

from core.config import FusionConfig
from core.history import HistoricalPatternSnapshot
from core.lexical import LexicalAnalysis
from core.models import (
    FLAGGED_CATEGORIES,
    INTENTS,
    SENTIMENTS,
    CategorizationDecision,
    Category,
)
from core.oracle import OracleResult

LOGGER = logging.getLogger(__name__)

AGREEMENT_WEIGHT = 0.2
RULE_BONUS = 0.1
ORACLE_FAILURE_PENALTY = 0.7
SEED_CONFIDENCE = 0.3


@dataclass(frozen=True)
class FusionInputs:
    lexical: LexicalAnalysis
    historical: HistoricalPatternSnapshot
    oracle: OracleResult
    text: str
    config: FusionConfig


@dataclass
class FusionDraft:
    """Decision-in-progress passed through the rule chain."""

    category: str
    confidence: float
    escalation_score: float
    sentiment: str
    intent: str
    flagging: bool
    business_context: dict[str, Any] = field(default_factory=dict)
    applied_rules: List[str] = field(default_factory=list)

    def escalate(self, category: Category, rule: str) -> None:
        self.category = category.value
        self.flagging = True
        self.applied_rules.append(rule)
        LOGGER.info("Fusion rule fired: %s -> %s", rule, category.value)


FusionRule = Callable[[FusionDraft, FusionInputs], FusionDraft]


def clamp(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return max(0.0, min(1.0, number))


def _contains(text: str, phrases: Tuple[str, ...]) -> List[str]:
    lowered = text.casefold()
    return [phrase for phrase in phrases if phrase.casefold() in lowered]


def seed(oracle: OracleResult, min_confidence: float) -> FusionDraft:
    if clamp(oracle.confidence) >= min_confidence:
        context = dict(oracle.business_context) if isinstance(oracle.business_context, dict) else {}
        return FusionDraft(
            category=str(oracle.category).upper(),
            confidence=oracle.confidence,
            escalation_score=oracle.escalation_score,
            sentiment=str(oracle.sentiment).lower(),
            intent=str(oracle.intent).lower(),
            flagging=bool(oracle.flagging),
            business_context=context,
        )
    return FusionDraft(
        category=Category.CASUAL.value,
        confidence=SEED_CONFIDENCE,
        escalation_score=0.0,
        sentiment="neutral",
        intent="general",
        flagging=False,
    )


def high_risk_override(draft: FusionDraft, inputs: FusionInputs) -> FusionDraft:
    if inputs.historical.overall_risk >= 0.8:
        draft.escalate(Category.ESCALATION, "HIGH_RISK_OVERRIDE")
    return draft


def historical_escalation_floor(draft: FusionDraft, inputs: FusionInputs) -> FusionDraft:
    draft.escalation_score = max(clamp(draft.escalation_score), inputs.historical.overall_risk)
    return draft


def repetition_escalation(draft: FusionDraft, inputs: FusionInputs) -> FusionDraft:
    if inputs.historical.repetition.escalation_detected:
        draft.escalate(Category.ESCALATION, "REPETITION_ESCALATION")
    return draft


def sentiment_decline(draft: FusionDraft, inputs: FusionInputs) -> FusionDraft:
    if inputs.historical.sentiment_trend.decline_detected:
        draft.escalation_score = max(draft.escalation_score, 0.7)
        draft.applied_rules.append("SENTIMENT_DECLINE")
    return draft


def safety_override(draft: FusionDraft, inputs: FusionInputs) -> FusionDraft:
    if _contains(inputs.text, inputs.config.safety_phrases):
        draft.escalate(Category.URGENT, "SAFETY_OVERRIDE")
        draft.escalation_score = 1.0
    return draft


def escalation_language(draft: FusionDraft, inputs: FusionInputs) -> FusionDraft:
    if draft.category == Category.URGENT.value:
        return draft
    if len(_contains(inputs.text, inputs.config.escalation_phrases)) >= 2:
        draft.escalate(Category.ESCALATION, "ESCALATION_LANGUAGE")
        draft.escalation_score = max(draft.escalation_score, 0.8)
    return draft


def sentiment_consistency(draft: FusionDraft, inputs: FusionInputs) -> FusionDraft:
    if draft.category == Category.COMPLAINT.value and draft.sentiment == "positive":
        draft.sentiment = "negative"
        draft.applied_rules.append("SENTIMENT_CONSISTENCY")
    return draft


def instruction_escalation(draft: FusionDraft, inputs: FusionInputs) -> FusionDraft:
    if draft.category == Category.INSTRUCTION.value and draft.escalation_score >= 0.6:
        draft.escalate(Category.ESCALATION, "INSTRUCTION_ESCALATION")
    return draft


FUSION_RULES: Tuple[FusionRule, ...] = (
    high_risk_override,
    historical_escalation_floor,
    repetition_escalation,
    sentiment_decline,
    safety_override,
    escalation_language,
    sentiment_consistency,
    instruction_escalation,
)


def agreement_fraction(final_category: str, oracle: OracleResult, historical: HistoricalPatternSnapshot) -> float:
    """Fraction of engines whose own verdict matches the final category.

    A fallback history snapshot carries no verdict and is left out.
    """

    votes = [str(oracle.category).upper()]
    if not historical.fallback_used:
        votes.append(historical.implied_category)
    return sum(1 for vote in votes if vote == final_category) / len(votes)


def consistency_score(oracle: OracleResult, historical: HistoricalPatternSnapshot) -> float:
    oracle_score = 0.8 if clamp(oracle.confidence) >= 0.7 else 0.4
    both = historical.repetition.escalation_detected and historical.sentiment_trend.decline_detected
    history_score = 0.9 if both else 0.6
    return (oracle_score + history_score) / 2


def urgency_level(category: str, escalation_score: float) -> str:
    if category == Category.URGENT.value:
        return "critical"
    if category == Category.ESCALATION.value or escalation_score >= 0.7:
        return "high"
    if category == Category.COMPLAINT.value or escalation_score >= 0.4:
        return "medium"
    return "low"


class FusionEngine:
    """Pure fusion: identical inputs always give an identical decision."""

    def __init__(
        self,
        config: Optional[FusionConfig] = None,
        rules: Tuple[FusionRule, ...] = FUSION_RULES,
    ) -> None:
        self._config = config or FusionConfig()
        self._rules = rules

    def fuse(
        self,
        lexical: LexicalAnalysis,
        historical: HistoricalPatternSnapshot,
        oracle: OracleResult,
        text: str,
    ) -> CategorizationDecision:
        inputs = FusionInputs(lexical=lexical, historical=historical, oracle=oracle, text=text, config=self._config)
        draft = seed(oracle, self._config.min_oracle_confidence)
        base_confidence = clamp(draft.confidence)

        for rule in self._rules:
            draft = rule(draft, inputs)

        confidence = (
            base_confidence
            + AGREEMENT_WEIGHT * agreement_fraction(draft.category, oracle, historical)
            + RULE_BONUS * len(draft.applied_rules)
        )
        if oracle.failed:
            confidence *= ORACLE_FAILURE_PENALTY
        draft.confidence = confidence

        return self._validate(draft, inputs)

    def _validate(self, draft: FusionDraft, inputs: FusionInputs) -> CategorizationDecision:
        try:
            category = Category(draft.category)
        except ValueError:
            LOGGER.warning("Invalid category %r replaced with CASUAL", draft.category)
            category = Category.CASUAL
            draft.applied_rules.append("CATEGORY_VALIDATION")

        sentiment = draft.sentiment if draft.sentiment in SENTIMENTS else "neutral"
        intent = draft.intent if draft.intent in INTENTS else "general"
        escalation_score = clamp(draft.escalation_score)
        flagging = draft.flagging or category in FLAGGED_CATEGORIES

        context = dict(draft.business_context)
        context.update(
            {
                "gym_areas": list(inputs.lexical.gym_context_tags),
                "urgency_level": urgency_level(category.value, escalation_score),
                "repetition_factor": inputs.historical.repetition.repetition_count,
                "historical_risk": round(inputs.historical.overall_risk, 4),
                "pattern_type": inputs.historical.pattern_type,
                "consistency_score": consistency_score(inputs.oracle, inputs.historical),
            }
        )
        if inputs.oracle.reasoning:
            context.setdefault("reasoning", inputs.oracle.reasoning)

        return CategorizationDecision(
            category=category,
            confidence=clamp(draft.confidence),
            escalation_score=escalation_score,
            sentiment=sentiment,
            intent=intent,
            flagging_decision=flagging,
            business_context=context,
            applied_rules=tuple(draft.applied_rules),
            oracle_failed=inputs.oracle.failed,
        )
