"""LLM categorization oracle over an OpenAI-compatible chat API.

The model is asked for a short line-oriented answer ("KEY: value" per line)
which is parsed into an OracleResult. Transport failures raise OracleError and
unparseable answers raise OracleResponseError; the core turns both into the
keyword fallback.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from openai import AsyncOpenAI, OpenAIError

from core.errors import OracleError, OracleResponseError
from core.models import Category
from core.oracle import OracleResult

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You triage member messages for a gym operations team. Messages may be in "
    "English, Hindi or Hinglish. Classify the message into exactly one category: "
    "INSTRUCTION (a task for staff), ESCALATION (repeated or frustrated follow-up), "
    "COMPLAINT (service, equipment or facility problem), URGENT (safety or emergency), "
    "CASUAL (anything else).\n"
    "Answer with these lines and nothing else:\n"
    "CATEGORY: <one category>\n"
    "CONFIDENCE: <0.0-1.0>\n"
    "FLAGGING: <YES|NO>\n"
    "ESCALATION_SCORE: <0.0-1.0>\n"
    "SENTIMENT: <positive|negative|neutral>\n"
    "INTENT: <complaint|instruction|question|emergency|general>\n"
    "URGENCY: <low|medium|high|critical>\n"
    "REASONING: <one sentence>"
)

_CATEGORY_NAMES = {category.value for category in Category}


def build_prompt(text: str, quick_hint: str, historical_hint: str) -> str:
    return (
        f"Message:\n{text}\n\n"
        f"Keyword analysis: {quick_hint}\n"
        f"Sender history: {historical_hint}"
    )


def _float(value: str, field_name: str) -> float:
    try:
        return float(value.strip().rstrip("%"))
    except ValueError as exc:
        raise OracleResponseError(f"Invalid {field_name} value", {"value": value}) from exc


def parse_oracle_response(content: Optional[str]) -> OracleResult:
    """Parse the line-oriented oracle answer.

    Unknown keys are ignored. CATEGORY and CONFIDENCE are required; the other
    fields fall back to neutral defaults.
    """

    if not content or not content.strip():
        raise OracleResponseError("Empty oracle response")

    fields: dict[str, str] = {}
    for line in content.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        fields[key.strip().strip("*").upper()] = value.strip()

    category = fields.get("CATEGORY", "").strip("*` ").upper()
    if category not in _CATEGORY_NAMES:
        raise OracleResponseError("Missing or unknown category", {"category": category, "content": content[:200]})
    if "CONFIDENCE" not in fields:
        raise OracleResponseError("Missing confidence", {"content": content[:200]})

    confidence = _float(fields["CONFIDENCE"], "confidence")
    # Some models answer percentages.
    if confidence > 1.0:
        confidence /= 100.0

    escalation_score = _float(fields.get("ESCALATION_SCORE", "0"), "escalation score")
    if escalation_score > 1.0:
        escalation_score /= 100.0

    business_context: dict[str, Any] = {}
    if fields.get("URGENCY"):
        business_context["oracle_urgency"] = fields["URGENCY"].lower()

    return OracleResult(
        category=category,
        confidence=confidence,
        flagging=fields.get("FLAGGING", "").upper() in {"YES", "TRUE", "1"},
        escalation_score=escalation_score,
        sentiment=fields.get("SENTIMENT", "neutral").lower(),
        intent=fields.get("INTENT", "general").lower(),
        business_context=business_context,
        reasoning=fields.get("REASONING", ""),
    )


class OpenAIOracle:
    """OraclePort implementation backed by ``AsyncOpenAI`` chat completions."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 300,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        if client is None and not api_key:
            raise OracleError("Oracle API key not configured")
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def categorize(self, text: str, quick_hint: str, historical_hint: str) -> OracleResult:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(text, quick_hint, historical_hint)},
        ]
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except OpenAIError as exc:
            raise OracleError(f"Chat completion failed: {exc}") from exc

        if not response.choices:
            raise OracleResponseError("Oracle returned no choices")
        content = response.choices[0].message.content
        result = parse_oracle_response(content)
        LOGGER.debug("Oracle answered %s (%.2f)", result.category, result.confidence)
        return result
