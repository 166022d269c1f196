from __future__ import annotations

from dataclasses import replace

import pytest

from core.alert_formatting import escape_md, format_alert, format_escalation_broadcast, format_manual_notice
from core.models import Category
from fakes import make_decision, make_message


def test_markdown_alert_has_all_fields() -> None:
    decision = make_decision(
        Category.COMPLAINT,
        sentiment="negative",
        intent="complaint",
        confidence=0.9,
        escalation_score=0.4,
        business_context={"gym_areas": ["FACILITY", "EQUIPMENT"]},
    )
    decision = replace(decision, flagging_decision=True)

    text = format_alert(make_message("AC_2 is *off*"), decision, "medium")

    assert "**COMPLAINT**" in text
    assert "medium" in text
    assert "Ravi" in text
    assert "Members" in text
    assert r"AC\_2 is \*off\*" in text
    assert "90%" in text
    assert "40%" in text
    assert "FACILITY, EQUIPMENT" in text
    assert "Service/facility complaint identified" in text


def test_unflagged_alert_has_no_reason() -> None:
    text = format_alert(make_message("see you"), make_decision(Category.CASUAL), "low")

    assert "Why:" not in text
    assert "Areas:" not in text


def test_html_alert_escapes_markup() -> None:
    text = format_alert(make_message("<b>AC</b> & fan"), make_decision(Category.URGENT), "high", mode="html")

    assert "<b>URGENT</b>" in text
    assert "&lt;b&gt;AC&lt;/b&gt; &amp; fan" in text
    assert "Emergency/Safety concern detected" in text


def test_unknown_mode_rejected() -> None:
    with pytest.raises(ValueError):
        format_alert(make_message("x"), make_decision(Category.CASUAL), "low", mode="rst")


def test_broadcast_and_manual_notice() -> None:
    message = make_message("still no water in the showers")

    broadcast = format_escalation_broadcast(message, make_decision(Category.ESCALATION), mode="html")
    notice = format_manual_notice(message)

    assert "ROUTING FAILED - MANUAL ATTENTION REQUIRED" in broadcast
    assert "ESCALATION" in broadcast
    assert "still no water in the showers" in broadcast
    assert "Message needs manual handling" in notice
    assert "still no water in the showers" in notice


def test_escape_md() -> None:
    assert escape_md("a_b*c[d`e") == r"a\_b\*c\[d\`e"
