"""Lexical pattern analysis (core domain).

Pure keyword scanning over the multilingual dictionaries. No I/O, so it is
safe to call inline on the hot path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Mapping

from core.keywords import ESCALATION_INDICATORS, FRUSTRATION_MARKERS, GYM_CONTEXT_GROUPS
from core.models import Category


@dataclass(frozen=True)
class LexicalAnalysis:
    """Keyword hits and the category they point to."""

    detected_patterns: List[str] = field(default_factory=list)
    gym_context_tags: List[str] = field(default_factory=list)
    escalation_indicator_count: int = 0
    frustration_level: int = 0
    likely_category: Category = Category.CASUAL


def _hits(lowered: str, keywords: Iterable[str]) -> List[str]:
    return [keyword for keyword in keywords if keyword.casefold() in lowered]


def analyze_text(
    text: str,
    escalation_indicators: Iterable[str] = ESCALATION_INDICATORS,
    frustration_markers: Iterable[str] = FRUSTRATION_MARKERS,
    gym_context_groups: Mapping[str, Iterable[str]] = GYM_CONTEXT_GROUPS,
) -> LexicalAnalysis:
    """Scan text for escalation, frustration and gym-context keywords.

    Category precedence:
    - 2+ escalation indicators or 2+ frustration markers -> ESCALATION
    - any SAFETY tag -> URGENT
    - any other gym-context tag -> COMPLAINT
    - otherwise CASUAL
    """

    lowered = text.casefold()
    if not lowered.strip():
        return LexicalAnalysis()

    escalation_hits = _hits(lowered, escalation_indicators)
    frustration_hits = _hits(lowered, frustration_markers)

    tags: List[str] = []
    for group, keywords in gym_context_groups.items():
        if _hits(lowered, keywords):
            tags.append(group)

    patterns = [f"escalation: {hit}" for hit in escalation_hits]
    patterns.extend(f"frustration: {hit}" for hit in frustration_hits)

    if len(escalation_hits) >= 2 or len(frustration_hits) >= 2:
        likely = Category.ESCALATION
    elif "SAFETY" in tags:
        likely = Category.URGENT
    elif tags:
        likely = Category.COMPLAINT
    else:
        likely = Category.CASUAL

    return LexicalAnalysis(
        detected_patterns=patterns,
        gym_context_tags=tags,
        escalation_indicator_count=len(escalation_hits),
        frustration_level=len(frustration_hits),
        likely_category=likely,
    )
