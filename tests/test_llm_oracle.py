from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from adapters.llm_oracle import OpenAIOracle, build_prompt, parse_oracle_response
from core.errors import OracleError, OracleResponseError


ANSWER = """CATEGORY: COMPLAINT
CONFIDENCE: 0.85
FLAGGING: YES
ESCALATION_SCORE: 0.4
SENTIMENT: Negative
INTENT: complaint
URGENCY: Medium
REASONING: Member reports broken AC in the cardio area."""


class FakeCompletions:
    def __init__(self, content=None, error=None, choices=True) -> None:
        self.content = content
        self.error = error
        self.choices = choices
        self.requests: list[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        if not self.choices:
            return SimpleNamespace(choices=[])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _client(completions: FakeCompletions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_parse_full_answer() -> None:
    result = parse_oracle_response(ANSWER)

    assert result.category == "COMPLAINT"
    assert result.confidence == pytest.approx(0.85)
    assert result.flagging
    assert result.escalation_score == pytest.approx(0.4)
    assert result.sentiment == "negative"
    assert result.intent == "complaint"
    assert result.business_context == {"oracle_urgency": "medium"}
    assert result.reasoning.startswith("Member reports")
    assert not result.failed


def test_parse_percentages_and_markdown_keys() -> None:
    result = parse_oracle_response("**CATEGORY**: urgent\n**CONFIDENCE**: 90%\nnoise line")

    assert result.category == "URGENT"
    assert result.confidence == pytest.approx(0.9)
    assert not result.flagging
    assert result.sentiment == "neutral"
    assert result.intent == "general"


@pytest.mark.parametrize(
    "content",
    [
        None,
        "   ",
        "CATEGORY: BANANA\nCONFIDENCE: 0.9",
        "CONFIDENCE: 0.9",
        "CATEGORY: CASUAL",
        "CATEGORY: CASUAL\nCONFIDENCE: very",
    ],
)
def test_parse_rejects_malformed_answers(content) -> None:
    with pytest.raises(OracleResponseError):
        parse_oracle_response(content)


def test_prompt_carries_hints() -> None:
    prompt = build_prompt("AC band hai", "likely=COMPLAINT", "history unavailable")

    assert "AC band hai" in prompt
    assert "likely=COMPLAINT" in prompt
    assert "history unavailable" in prompt


def test_openai_oracle_categorizes() -> None:
    completions = FakeCompletions(content=ANSWER)
    oracle = OpenAIOracle(api_key="", model="gpt-4o-mini", client=_client(completions))

    result = asyncio.run(oracle.categorize("AC broken", "hint", "history"))

    assert result.category == "COMPLAINT"
    request = completions.requests[0]
    assert request["model"] == "gpt-4o-mini"
    assert request["messages"][0]["role"] == "system"
    assert "AC broken" in request["messages"][1]["content"]


def test_openai_oracle_wraps_transport_errors() -> None:
    oracle = OpenAIOracle(api_key="k", model="m", client=_client(FakeCompletions(error=OpenAIError("down"))))

    with pytest.raises(OracleError):
        asyncio.run(oracle.categorize("x", "", ""))


def test_openai_oracle_without_choices() -> None:
    oracle = OpenAIOracle(api_key="k", model="m", client=_client(FakeCompletions(choices=False)))

    with pytest.raises(OracleResponseError):
        asyncio.run(oracle.categorize("x", "", ""))


def test_openai_oracle_requires_key() -> None:
    with pytest.raises(OracleError):
        OpenAIOracle(api_key="", model="m")
