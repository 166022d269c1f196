from __future__ import annotations

import asyncio

from core.config import RoutingConfig
from core.models import Category, DestinationChannel, IssueCategory, RoutingRule
from core.routing import (
    ResolutionMethod,
    RoutingEngine,
    RoutingState,
    compute_severity,
    select_strategy,
)
from fakes import (
    CHANNELS,
    FakeDelivery,
    FakeDirectory,
    FakeTelemetry,
    make_decision,
    make_message,
    no_sleep,
)


def _engine(directory: FakeDirectory, delivery: FakeDelivery, **kwargs) -> RoutingEngine:
    return RoutingEngine(directory, delivery, sleep=no_sleep, **kwargs)


def _route(engine: RoutingEngine, body: str, decision, historical_risk: float = 0.0):
    return asyncio.run(engine.route(make_message(body), decision, historical_risk))


def test_strategy_selection() -> None:
    assert select_strategy(make_decision(Category.URGENT)).name == "EMERGENCY"
    assert select_strategy(make_decision(Category.ESCALATION)).name == "ESCALATION"
    assert select_strategy(make_decision(Category.COMPLAINT), historical_risk=0.85).name == "ESCALATION"
    assert select_strategy(make_decision(Category.COMPLAINT)).name == "PRIORITY"
    assert select_strategy(make_decision(Category.INSTRUCTION)).name == "STANDARD"
    assert select_strategy(make_decision(Category.CASUAL)).name == "STANDARD"


def test_severity() -> None:
    assert compute_severity(make_decision(Category.URGENT)) == "high"
    assert compute_severity(make_decision(Category.COMPLAINT, sentiment="negative", confidence=0.9)) == "high"
    assert compute_severity(make_decision(Category.COMPLAINT, sentiment="negative", confidence=0.7)) == "medium"
    assert compute_severity(make_decision(Category.INSTRUCTION, intent="complaint")) == "medium"
    assert compute_severity(make_decision(Category.CASUAL)) == "low"


def test_urgent_goes_to_management_and_every_department() -> None:
    directory = FakeDirectory(channels=CHANNELS)
    delivery = FakeDelivery()

    outcome = _route(_engine(directory, delivery), "fire in the sauna", make_decision(Category.URGENT))

    assert outcome.strategy == "EMERGENCY"
    assert outcome.success
    assert [t.channel.id for t in outcome.targets] == ["mgmt", "equip", "cs", "facility"]
    assert outcome.targets[0].method is ResolutionMethod.MANAGEMENT
    assert outcome.state is RoutingState.DELIVERED


def test_emergency_targets_are_capped_at_five() -> None:
    channels = [
        DestinationChannel(id=f"ops-{i}", name=f"Ops {i}", department="CUSTOMER_SERVICE", priority_level=3)
        for i in range(6)
    ]
    directory = FakeDirectory(channels=channels + CHANNELS[:1])

    outcome = _route(_engine(directory, FakeDelivery()), "fire", make_decision(Category.URGENT))

    assert len(outcome.targets) == 5
    assert outcome.targets[0].channel.id == "mgmt"


def test_severity_filter_excludes_high_only_rule() -> None:
    rule = RoutingRule(
        id="r-mgmt",
        name="Complaints to management",
        target_channel_id="mgmt",
        categories=("COMPLAINT",),
        severities=("high",),
        priority=1,
    )
    directory = FakeDirectory(channels=CHANNELS, rules=[rule])
    delivery = FakeDelivery()
    decision = make_decision(Category.COMPLAINT, sentiment="negative", intent="complaint", confidence=0.7)

    outcome = _route(_engine(directory, delivery), "AC is not working", decision)

    assert outcome.severity == "medium"
    assert outcome.strategy == "PRIORITY"
    assert sorted(outcome.delivered_channels) == ["cs", "equip", "facility"]
    assert "mgmt" not in delivery.calls
    assert all(t.method is ResolutionMethod.CATEGORY for t in outcome.targets)
    assert directory.rule_stats == []


def test_matching_rule_wins_and_updates_stats() -> None:
    rule = RoutingRule(
        id="r-locker",
        name="Lockers",
        target_channel_id="facility",
        keywords=("locker",),
        priority=1,
    )
    directory = FakeDirectory(channels=CHANNELS, rules=[rule])

    outcome = _route(_engine(directory, FakeDelivery()), "my locker is jammed", make_decision(Category.INSTRUCTION))

    assert [t.channel.id for t in outcome.targets] == ["facility"]
    assert outcome.targets[0].rule_id == "r-locker"
    assert directory.rule_stats == [("r-locker", True)]
    assert directory.attempts[0].metadata["routing_method"] == "RULES"


def test_rule_matches_on_intent_department() -> None:
    rule = RoutingRule(id="r-intent", name="Instructions", target_channel_id="facility")
    directory = FakeDirectory(channels=CHANNELS, rules=[rule])

    outcome = _route(
        _engine(directory, FakeDelivery()),
        "can someone look at this",
        make_decision(Category.CASUAL, intent="instruction"),
    )

    assert [t.channel.id for t in outcome.targets] == ["facility"]


def test_non_emergency_targets_are_capped_at_three() -> None:
    extra = DestinationChannel(id="cs-2", name="Front desk", department="CUSTOMER_SERVICE", priority_level=2)
    directory = FakeDirectory(channels=CHANNELS + [extra])

    outcome = _route(_engine(directory, FakeDelivery()), "showers are cold", make_decision(Category.COMPLAINT))

    assert len(outcome.targets) == 3


def test_low_priority_channels_dropped_when_preferred_exist() -> None:
    night = DestinationChannel(id="cs-night", name="Night desk", department="CUSTOMER_SERVICE", priority_level=4)
    directory = FakeDirectory(channels=CHANNELS + [night])

    outcome = _route(_engine(directory, FakeDelivery()), "hi", make_decision(Category.CASUAL))

    assert [t.channel.id for t in outcome.targets] == ["cs"]


def test_load_balancing_moves_busy_channel_last() -> None:
    directory = FakeDirectory(channels=CHANNELS, loads={"equip": 10})

    outcome = _route(_engine(directory, FakeDelivery()), "showers are cold", make_decision(Category.COMPLAINT))

    assert [t.channel.id for t in outcome.targets] == ["cs", "facility", "equip"]
    assert outcome.targets[-1].load == 10


def test_small_load_difference_keeps_order() -> None:
    directory = FakeDirectory(channels=CHANNELS, loads={"equip": 2})

    outcome = _route(_engine(directory, FakeDelivery()), "showers are cold", make_decision(Category.COMPLAINT))

    assert [t.channel.id for t in outcome.targets] == ["equip", "cs", "facility"]


def test_keyword_channels_used_when_category_has_no_channel() -> None:
    channels = [DestinationChannel(id="staff", name="Staff room", department="UNASSIGNED", priority_level=1)]
    issues = [IssueCategory(name="trainer", department="UNASSIGNED", keywords=("trainer",))]
    directory = FakeDirectory(channels=channels, issue_categories=issues)

    outcome = _route(_engine(directory, FakeDelivery()), "trainer was late", make_decision(Category.INSTRUCTION))

    assert [t.channel.id for t in outcome.targets] == ["staff"]
    assert outcome.targets[0].method is ResolutionMethod.KEYWORD


def test_retries_then_gives_up() -> None:
    directory = FakeDirectory(channels=CHANNELS)
    delivery = FakeDelivery(behaviour={"cs": "error"})
    sleeps: list[float] = []

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    engine = RoutingEngine(directory, delivery, RoutingConfig(retry_delay=1.5), sleep=record_sleep)
    outcome = _route(engine, "hello", make_decision(Category.CASUAL))

    assert delivery.calls == ["cs", "cs", "cs"]
    assert sleeps == [1.5, 1.5]
    assert not outcome.success
    assert outcome.deliveries[0].attempts == 3
    assert directory.attempts[0].retry_count == 2
    assert not directory.attempts[0].success
    assert not outcome.escalation_triggered
    assert outcome.state is RoutingState.FAILED


def test_unavailable_destination_is_not_retried() -> None:
    directory = FakeDirectory(channels=CHANNELS)
    delivery = FakeDelivery(behaviour={"cs": "unavailable"})

    outcome = _route(_engine(directory, delivery), "hello", make_decision(Category.CASUAL))

    assert delivery.calls == ["cs"]
    assert outcome.deliveries[0].unavailable
    assert directory.attempts[0].retry_count == 0


def test_partial_delivery() -> None:
    directory = FakeDirectory(channels=CHANNELS)
    delivery = FakeDelivery(behaviour={"equip": "unavailable"})

    outcome = _route(_engine(directory, delivery), "showers are cold", make_decision(Category.COMPLAINT))

    assert outcome.success
    assert outcome.state is RoutingState.PARTIALLY_DELIVERED


class BroadcastOnlyDelivery(FakeDelivery):
    async def send(self, channel_id: str, text: str) -> bool:
        self.calls.append(channel_id)
        if "ROUTING FAILED" not in text:
            return False
        self.sent.append((channel_id, text))
        return True


def test_failed_urgent_triggers_management_broadcast() -> None:
    directory = FakeDirectory(channels=CHANNELS)
    delivery = BroadcastOnlyDelivery()
    telemetry = FakeTelemetry()

    outcome = _route(_engine(directory, delivery, telemetry=telemetry), "fire", make_decision(Category.URGENT))

    assert not outcome.success
    assert outcome.escalation_triggered
    assert outcome.escalation_broadcast_success
    assert [channel for channel, _ in delivery.sent] == ["mgmt"]
    assert outcome.state is RoutingState.ESCALATION_BROADCAST
    assert telemetry.names() == ["escalation_broadcast", "routing_completed"]


def test_failed_complaint_does_not_broadcast() -> None:
    directory = FakeDirectory(channels=CHANNELS)
    delivery = FakeDelivery(default="unavailable")

    outcome = _route(_engine(directory, delivery), "showers are cold", make_decision(Category.COMPLAINT))

    assert not outcome.success
    assert not outcome.escalation_triggered
    assert outcome.escalation_broadcast_success is None


class BrokenDirectory(FakeDirectory):
    def list_active_rules(self):
        raise RuntimeError("directory corrupted")


def test_internal_error_falls_back_to_customer_service() -> None:
    directory = BrokenDirectory(channels=CHANNELS)
    delivery = FakeDelivery()
    telemetry = FakeTelemetry()
    engine = _engine(directory, delivery, telemetry=telemetry)

    outcome = _route(engine, "showers are cold", make_decision(Category.COMPLAINT))

    assert not outcome.success
    assert outcome.fallback_used
    assert outcome.error == "directory corrupted"
    assert [channel for channel, _ in delivery.sent] == ["cs"]
    assert "manual handling" in delivery.sent[0][1]
    assert telemetry.names() == ["routing_completed"]
    assert engine.stats.failed_routes == 1


class UnloggedDirectory(FakeDirectory):
    def save_routing_attempt(self, attempt):
        raise RuntimeError("attempt log is read-only")

    def update_rule_stats(self, rule_id, success):
        raise RuntimeError("rule table is locked")


def test_bookkeeping_failure_keeps_successful_delivery() -> None:
    rule = RoutingRule(id="r-locker", name="Lockers", target_channel_id="facility", keywords=("locker",), priority=1)
    directory = UnloggedDirectory(channels=CHANNELS, rules=[rule])
    delivery = FakeDelivery()
    engine = _engine(directory, delivery)

    outcome = _route(engine, "my locker is jammed", make_decision(Category.COMPLAINT))

    assert outcome.success
    assert not outcome.fallback_used
    assert outcome.state is RoutingState.DELIVERED
    assert outcome.delivered_channels == ["facility"]
    # No manual notice to customer service on top of the real delivery.
    assert delivery.calls == ["facility"]
    assert engine.stats.failed_routes == 0


def test_route_manual() -> None:
    delivery = FakeDelivery()
    engine = _engine(FakeDirectory(channels=CHANNELS), delivery)

    outcome = asyncio.run(engine.route_manual(make_message("???")))

    assert outcome.strategy == "MANUAL"
    assert outcome.success
    assert delivery.calls == ["cs"]


def test_stats_track_success_rate() -> None:
    directory = FakeDirectory(channels=CHANNELS)
    engine = _engine(directory, FakeDelivery(behaviour={"cs": "unavailable"}))

    _route(engine, "hello", make_decision(Category.CASUAL))
    _route(engine, "fix the bike", make_decision(Category.INSTRUCTION))

    stats = engine.stats
    assert stats.total_routed == 2
    assert stats.successful_routes == 1
    assert stats.success_rate == 0.5

    engine.reset_stats()
    assert engine.stats.total_routed == 0


def test_outcome_to_dict() -> None:
    outcome = _route(
        _engine(FakeDirectory(channels=CHANNELS), FakeDelivery()),
        "fix the bike",
        make_decision(Category.INSTRUCTION),
    )

    payload = outcome.to_dict()

    assert payload["strategy"] == "STANDARD"
    assert sorted(payload["delivered_channels"]) == ["equip", "facility"]
    assert payload["failed_channels"] == []
    assert payload["state"] == "DELIVERED"
