"""Historical context analysis (core domain).

Given a sender's recent messages and the recent messages of the chat, derive
repetition, sentiment trend, temporal bursts, escalation-language progression,
response patterns and message frequency, then fold them into one weighted
overall risk. All functions are pure; fetching history is the caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Iterable, List, Optional, Sequence

from core.config import AnalysisConfig
from core.keywords import ESCALATION_TIERS, TIER_VALUES
from core.models import HistoryEntry, Message
from core.similarity import similarity

LOGGER = logging.getLogger(__name__)

REPETITION_WEIGHT = 0.4
SENTIMENT_WEIGHT = 0.3
TEMPORAL_WEIGHT = 0.2
ESCALATION_KEYWORD_WEIGHT = 0.1

EXACT_MATCH_SIMILARITY = 0.9
SENTIMENT_WINDOW = 10
BURST_GAP_MINUTES = 15
BURST_MIN_GAPS = 3
RESPONSE_WINDOW = timedelta(hours=2)
SPAM_MESSAGES_PER_HOUR = 10


@dataclass
class SimilarMessage:
    id: str
    text: str
    timestamp: datetime
    similarity: float
    sentiment: Optional[str]


@dataclass
class RepetitionPattern:
    similar_messages: List[SimilarMessage] = field(default_factory=list)
    repetition_count: int = 0
    exact_matches: int = 0
    semantic_matches: int = 0
    escalation_detected: bool = False


@dataclass
class SentimentTrend:
    sentiment_sequence: List[str] = field(default_factory=list)
    trend_direction: str = "stable"
    decline_detected: bool = False
    volatility: float = 0.0
    risk_score: float = 0.0
    sufficient_data: bool = False


@dataclass
class TemporalPattern:
    time_gaps: List[float] = field(default_factory=list)
    burst_detected: bool = False
    message_frequency: float = 0.0


@dataclass
class EscalationProgression:
    current_keywords: List[tuple[str, str]] = field(default_factory=list)
    current_tier: int = 0
    previous_tier: int = 0
    intensity_increase: bool = False
    frustration_level: float = 0.0
    escalation_score: float = 0.0


@dataclass
class ResponsePattern:
    sender_messages: int = 0
    responses_received: int = 0
    response_rate: float = 0.0
    ignored_message_ids: List[str] = field(default_factory=list)
    no_response_pattern: bool = False


@dataclass
class FrequencyPattern:
    messages_last_hour: int = 0
    messages_last_day: int = 0
    messages_last_week: int = 0
    frequency_increase: bool = False
    spam_detected: bool = False


@dataclass
class RiskAssessment:
    repetition_risk: float = 0.0
    sentiment_risk: float = 0.0
    temporal_risk: float = 0.0
    escalation_risk: float = 0.0
    response_risk: float = 0.0
    overall_risk: float = 0.0


@dataclass
class Recommendations:
    priority_level: str = "LOW"
    escalation_needed: bool = False
    actions: List[str] = field(default_factory=list)


@dataclass
class HistoricalPatternSnapshot:
    """Derived per-message view of the sender's history."""

    repetition: RepetitionPattern = field(default_factory=RepetitionPattern)
    sentiment_trend: SentimentTrend = field(default_factory=SentimentTrend)
    temporal: TemporalPattern = field(default_factory=TemporalPattern)
    escalation_keywords: EscalationProgression = field(default_factory=EscalationProgression)
    response: ResponsePattern = field(default_factory=ResponsePattern)
    frequency: FrequencyPattern = field(default_factory=FrequencyPattern)
    risk: RiskAssessment = field(default_factory=RiskAssessment)
    recommendations: Recommendations = field(default_factory=Recommendations)
    pattern_type: str = "normal_pattern"
    fallback_used: bool = False

    @property
    def overall_risk(self) -> float:
        return self.risk.overall_risk

    @property
    def implied_category(self) -> str:
        """Category the risk level alone would suggest."""

        if self.overall_risk >= 0.8:
            return "ESCALATION"
        if self.overall_risk >= 0.6:
            return "COMPLAINT"
        return "CASUAL"


def fallback_snapshot() -> HistoricalPatternSnapshot:
    """Low-confidence snapshot used when history cannot be fetched in time."""

    return HistoricalPatternSnapshot(
        sentiment_trend=SentimentTrend(risk_score=0.3),
        escalation_keywords=EscalationProgression(escalation_score=0.2),
        risk=RiskAssessment(
            repetition_risk=0.1,
            sentiment_risk=0.3,
            temporal_risk=0.3,
            escalation_risk=0.2,
            response_risk=0.3,
            overall_risk=0.3,
        ),
        recommendations=Recommendations(actions=["MONITOR"]),
        fallback_used=True,
    )


def _tier_hits(text: str) -> List[tuple[str, str]]:
    lowered = text.casefold()
    return [
        (keyword, level)
        for level, keywords in ESCALATION_TIERS.items()
        for keyword in keywords
        if keyword.casefold() in lowered
    ]


def _max_tier(hits: Iterable[tuple[str, str]]) -> int:
    return max((TIER_VALUES[level] for _, level in hits), default=0)


def _variance(values: Sequence[float]) -> float:
    mean = sum(values) / len(values)
    return sum((value - mean) ** 2 for value in values) / len(values)


def analyze_repetition(
    current: Message,
    sender_history: Iterable[HistoryEntry],
    threshold: float = 0.6,
    repetition_threshold: int = 3,
) -> RepetitionPattern:
    pattern = RepetitionPattern()
    for entry in sender_history:
        if not entry.body or entry.id == current.id:
            continue
        score = similarity(current.body, entry.body)
        if score < threshold:
            continue
        pattern.similar_messages.append(
            SimilarMessage(
                id=entry.id,
                text=entry.body,
                timestamp=entry.timestamp,
                similarity=score,
                sentiment=entry.sentiment,
            )
        )
        if score >= EXACT_MATCH_SIMILARITY:
            pattern.exact_matches += 1
        else:
            pattern.semantic_matches += 1

    pattern.repetition_count = len(pattern.similar_messages)
    pattern.escalation_detected = pattern.repetition_count >= repetition_threshold
    if pattern.escalation_detected:
        LOGGER.warning("Repetition escalation: %s similar messages", pattern.repetition_count)
    return pattern


def analyze_sentiment_trend(sender_history: Sequence[HistoryEntry]) -> SentimentTrend:
    """Classify the trend of the most recent sentiment-labeled messages.

    History is expected most-recent first. Fewer than three labeled messages
    yields an insufficient-data trend with zero risk.
    """

    labeled = [entry.sentiment for entry in sender_history if entry.sentiment][:SENTIMENT_WINDOW]
    trend = SentimentTrend(sentiment_sequence=list(labeled))
    if len(labeled) < 3:
        return trend

    trend.sufficient_data = True
    recent = labeled[:3]
    if recent.count("negative") >= 2:
        trend.trend_direction = "declining"
        trend.decline_detected = True
        trend.risk_score = 0.8
    elif recent.count("positive") >= 2:
        trend.trend_direction = "improving"
        trend.risk_score = 0.2
    else:
        trend.risk_score = 0.4

    values = [1.0 if s == "positive" else -1.0 if s == "negative" else 0.0 for s in labeled]
    trend.volatility = min(_variance(values), 1.0)
    return trend


def analyze_temporal(sender_history: Sequence[HistoryEntry], reference_time: datetime) -> TemporalPattern:
    pattern = TemporalPattern()
    if not sender_history:
        return pattern

    ordered = sorted(sender_history, key=lambda entry: entry.timestamp, reverse=True)
    for newer, older in zip(ordered, ordered[1:]):
        pattern.time_gaps.append((newer.timestamp - older.timestamp).total_seconds() / 60)

    short_gaps = [gap for gap in pattern.time_gaps if gap <= BURST_GAP_MINUTES]
    pattern.burst_detected = len(short_gaps) >= BURST_MIN_GAPS
    if pattern.burst_detected:
        LOGGER.warning("Message burst detected (%s short gaps)", len(short_gaps))

    days = (reference_time - ordered[-1].timestamp).total_seconds() / 86400
    pattern.message_frequency = len(ordered) / max(days, 1.0)
    return pattern


def analyze_escalation_keywords(current: Message, sender_history: Sequence[HistoryEntry]) -> EscalationProgression:
    """Compare escalation-language intensity of the current message to the past.

    The baseline is the most recent prior message that contained any tiered
    keyword; with no such message there is no increase.
    """

    progression = EscalationProgression(current_keywords=_tier_hits(current.body))
    progression.current_tier = _max_tier(progression.current_keywords)

    for entry in sender_history[:SENTIMENT_WINDOW]:
        if not entry.body or entry.id == current.id:
            continue
        hits = _tier_hits(entry.body)
        if hits:
            progression.previous_tier = _max_tier(hits)
            progression.intensity_increase = progression.current_tier > progression.previous_tier
            break

    progression.frustration_level = progression.current_tier / 4
    progression.escalation_score = 0.8 if progression.intensity_increase else progression.frustration_level * 0.6
    return progression


def analyze_response_pattern(chat_history: Iterable[HistoryEntry], sender_id: str) -> ResponsePattern:
    entries = list(chat_history)
    own = [entry for entry in entries if entry.sender_id == sender_id]
    others = [entry for entry in entries if entry.sender_id != sender_id]

    pattern = ResponsePattern(sender_messages=len(own))
    for entry in own:
        answered = any(
            entry.timestamp < other.timestamp <= entry.timestamp + RESPONSE_WINDOW for other in others
        )
        if answered:
            pattern.responses_received += 1
        else:
            pattern.ignored_message_ids.append(entry.id)

    pattern.response_rate = pattern.responses_received / len(own) if own else 0.0
    pattern.no_response_pattern = pattern.response_rate < 0.3 and len(own) >= 3
    return pattern


def analyze_frequency(sender_history: Iterable[HistoryEntry], reference_time: datetime) -> FrequencyPattern:
    timestamps = [entry.timestamp for entry in sender_history]
    pattern = FrequencyPattern(
        messages_last_hour=sum(1 for ts in timestamps if ts >= reference_time - timedelta(hours=1)),
        messages_last_day=sum(1 for ts in timestamps if ts >= reference_time - timedelta(days=1)),
        messages_last_week=sum(1 for ts in timestamps if ts >= reference_time - timedelta(days=7)),
    )
    pattern.spam_detected = pattern.messages_last_hour >= SPAM_MESSAGES_PER_HOUR
    pattern.frequency_increase = pattern.messages_last_day > (pattern.messages_last_week / 7) * 2
    return pattern


def assess_risk(snapshot: HistoricalPatternSnapshot, repetition_threshold: int = 3) -> RiskAssessment:
    repetition = snapshot.repetition
    if repetition.escalation_detected:
        repetition_risk = 0.9
    else:
        repetition_risk = min(repetition.repetition_count / repetition_threshold, 1.0) * 0.6

    if snapshot.temporal.burst_detected:
        temporal_risk = 0.7
    else:
        temporal_risk = min(snapshot.frequency.messages_last_hour / 5, 1.0) * 0.5

    if snapshot.response.no_response_pattern:
        response_risk = 0.8
    else:
        response_risk = (1 - snapshot.response.response_rate) * 0.6

    risk = RiskAssessment(
        repetition_risk=repetition_risk,
        sentiment_risk=snapshot.sentiment_trend.risk_score,
        temporal_risk=temporal_risk,
        escalation_risk=snapshot.escalation_keywords.escalation_score,
        response_risk=response_risk,
    )
    # Response risk is reported but does not feed the overall score.
    risk.overall_risk = (
        risk.repetition_risk * REPETITION_WEIGHT
        + risk.sentiment_risk * SENTIMENT_WEIGHT
        + risk.temporal_risk * TEMPORAL_WEIGHT
        + risk.escalation_risk * ESCALATION_KEYWORD_WEIGHT
    )
    return risk


def recommend(snapshot: HistoricalPatternSnapshot) -> Recommendations:
    overall = snapshot.overall_risk
    if overall >= 0.8:
        result = Recommendations(
            priority_level="CRITICAL",
            escalation_needed=True,
            actions=["IMMEDIATE_ESCALATION", "MANAGER_NOTIFICATION", "PRIORITY_ROUTING", "RESPONSE_REQUIRED_15MIN"],
        )
    elif overall >= 0.6:
        result = Recommendations(
            priority_level="HIGH",
            escalation_needed=True,
            actions=["ESCALATE_TO_SUPERVISOR", "PRIORITY_HANDLING", "RESPONSE_REQUIRED_1HR"],
        )
    elif overall >= 0.4:
        result = Recommendations(
            priority_level="MEDIUM",
            actions=["MONITOR_CLOSELY", "STANDARD_ROUTING", "RESPONSE_REQUIRED_4HR"],
        )
    else:
        result = Recommendations()

    if snapshot.repetition.escalation_detected:
        result.actions.append("ADDRESS_REPETITION_ISSUE")
    if snapshot.sentiment_trend.decline_detected:
        result.actions.append("SENTIMENT_RECOVERY_PROTOCOL")
    if snapshot.temporal.burst_detected:
        result.actions.append("URGENT_ATTENTION_NEEDED")
    if snapshot.response.no_response_pattern:
        result.actions.append("IMPROVE_RESPONSE_TIME")
    return result


def _pattern_type(snapshot: HistoricalPatternSnapshot) -> str:
    if snapshot.repetition.escalation_detected:
        return "instruction_repetition"
    if snapshot.sentiment_trend.decline_detected:
        return "sentiment_decline"
    if snapshot.risk.escalation_risk >= 0.7:
        return "escalation_pattern"
    return "normal_pattern"


class HistoricalContextAnalyzer:
    """Builds a HistoricalPatternSnapshot from already-fetched history."""

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self._config = config or AnalysisConfig()

    def analyze(
        self,
        current: Message,
        sender_history: Sequence[HistoryEntry],
        chat_history: Sequence[HistoryEntry],
    ) -> HistoricalPatternSnapshot:
        """Analyze history relative to the current message's timestamp.

        ``sender_history`` is ordered most recent first and should not contain
        the current message; it is filtered out by id if it does.
        """

        history = [entry for entry in sender_history if entry.id != current.id]
        reference_time = current.timestamp

        snapshot = HistoricalPatternSnapshot(
            repetition=analyze_repetition(
                current,
                history,
                threshold=self._config.similarity_threshold,
                repetition_threshold=self._config.repetition_threshold,
            ),
            sentiment_trend=analyze_sentiment_trend(history),
            temporal=analyze_temporal(history, reference_time),
            escalation_keywords=analyze_escalation_keywords(current, history),
            response=analyze_response_pattern(chat_history, current.sender_id),
            frequency=analyze_frequency(history, reference_time),
        )
        snapshot.risk = assess_risk(snapshot, self._config.repetition_threshold)
        snapshot.recommendations = recommend(snapshot)
        snapshot.pattern_type = _pattern_type(snapshot)
        LOGGER.debug(
            "History analysis for %s: risk=%.2f pattern=%s",
            current.sender_id,
            snapshot.overall_risk,
            snapshot.pattern_type,
        )
        return snapshot
