"""Categorization oracle guard and local fallback classifier.

The oracle itself is an adapter (see ``adapters.llm_oracle``). The core only
bounds the call with a timeout and substitutes a deterministic keyword
classification whenever the oracle fails, stalls, or answers with garbage.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Optional

from core.errors import OracleError
from core.keywords import FALLBACK_BUCKETS
from core.lexical import LexicalAnalysis
from core.models import Category

LOGGER = logging.getLogger(__name__)

FALLBACK_DEFAULT_CONFIDENCE = 0.4
FALLBACK_DEFAULT_ESCALATION = 0.1


@dataclass(frozen=True)
class OracleResult:
    """Structured categorization guess.

    Values are kept as received; the fusion step clamps and validates them.
    """

    category: str
    confidence: float
    flagging: bool = False
    escalation_score: float = 0.0
    sentiment: str = "neutral"
    intent: str = "general"
    business_context: dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    failed: bool = False


def fallback_classification(text: str, reason: str = "oracle unavailable") -> OracleResult:
    """Classify with ordered keyword buckets; the first bucket with a hit wins."""

    lowered = text.casefold()
    for category, keywords, confidence, escalation_score in FALLBACK_BUCKETS:
        if any(keyword in lowered for keyword in keywords):
            flagged = Category(category) in (Category.URGENT, Category.ESCALATION)
            return OracleResult(
                category=category,
                confidence=confidence,
                flagging=flagged,
                escalation_score=escalation_score,
                sentiment="negative" if category != "INSTRUCTION" else "neutral",
                intent=_fallback_intent(category),
                reasoning=f"keyword fallback ({reason})",
                failed=True,
            )
    return OracleResult(
        category=Category.CASUAL.value,
        confidence=FALLBACK_DEFAULT_CONFIDENCE,
        escalation_score=FALLBACK_DEFAULT_ESCALATION,
        reasoning=f"keyword fallback ({reason})",
        failed=True,
    )


def _fallback_intent(category: str) -> str:
    return {
        "URGENT": "emergency",
        "COMPLAINT": "complaint",
        "ESCALATION": "complaint",
        "INSTRUCTION": "instruction",
    }.get(category, "general")


def lexical_hint(analysis: LexicalAnalysis) -> str:
    """Render the lexical analysis as a short hint for the oracle prompt."""

    tags = ", ".join(analysis.gym_context_tags) or "none"
    return (
        f"likely={analysis.likely_category.value}; "
        f"escalation_indicators={analysis.escalation_indicator_count}; "
        f"frustration={analysis.frustration_level}; gym_context={tags}"
    )


async def consult_oracle(
    oracle: Any,
    text: str,
    quick_hint: str,
    historical_hint: str,
    timeout: float,
) -> OracleResult:
    """Call the oracle under a timeout, never raising.

    Timeouts, ``OracleError`` (including malformed responses) and any other
    exception from the adapter resolve to :func:`fallback_classification`.
    """

    if oracle is None:
        return fallback_classification(text, "oracle disabled")
    try:
        result: Optional[OracleResult] = await asyncio.wait_for(
            oracle.categorize(text, quick_hint, historical_hint), timeout
        )
    except asyncio.TimeoutError:
        LOGGER.warning("Oracle timed out after %.1fs; using keyword fallback", timeout)
        return fallback_classification(text, "timeout")
    except OracleError as exc:
        LOGGER.warning("Oracle failed (%s); using keyword fallback", exc.message)
        return fallback_classification(text, "error")
    except Exception:
        LOGGER.exception("Unexpected oracle failure; using keyword fallback")
        return fallback_classification(text, "error")
    if result is None:
        return fallback_classification(text, "empty response")
    return result
