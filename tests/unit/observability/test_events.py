"""
onchain-orchestrator — unit tests for the in-process event bus

File: tests/unit/observability/test_events.py

Purpose
- Validate observer dispatch between control-plane components.

What this test file should cover
- Typed and wildcard subscriptions, unsubscribe.
- Subscriber failures are captured, never raised to publishers.
- Async subscribers from sync and async publishers.
- Bounded replay with type / limit filters.
- JSON coercion of event payloads.
"""

from __future__ import annotations

import math

import pytest

from onchain_orchestrator.domain.events import EventType, OrchestratorEvent
from onchain_orchestrator.observability.events import EventBus, build_event


def test_typed_and_wildcard_subscribers_receive_matching_events() -> None:
    bus = EventBus()
    typed: list[EventType] = []
    everything: list[EventType] = []
    bus.subscribe(EventType.WAVE_STARTED, lambda event: typed.append(event.event_type))
    bus.subscribe(None, lambda event: everything.append(event.event_type))

    bus.emit(EventType.WAVE_STARTED, {"wave_id": "w1"})
    bus.emit("WaveCompleted", {"wave_id": "w1"})

    assert typed == [EventType.WAVE_STARTED]
    assert everything == [EventType.WAVE_STARTED, EventType.WAVE_COMPLETED]


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    seen: list[OrchestratorEvent] = []
    token = bus.subscribe(None, seen.append)

    assert bus.unsubscribe(token) is True
    assert bus.unsubscribe(token) is False
    bus.emit(EventType.PLAN_COMPLETED, {})

    assert seen == []


def test_subscriber_failure_is_captured_and_other_subscribers_still_run() -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken(event: OrchestratorEvent) -> None:
        raise RuntimeError("subscriber exploded")

    bus.subscribe(None, broken)
    bus.subscribe(None, lambda event: seen.append(event.event_id))

    event, errors = bus.emit(EventType.ZONE_TRANSITION, {"from": "GREEN", "to": "RED"})

    assert seen == [event.event_id]
    assert len(errors) == 1
    assert errors[0].error_type == "RuntimeError"
    assert errors[0].message == "subscriber exploded"
    assert bus.dispatch_errors() == errors


def test_async_subscriber_runs_to_completion_without_running_loop() -> None:
    bus = EventBus()
    seen: list[str] = []

    async def handler(event: OrchestratorEvent) -> None:
        seen.append(event.event_type.value)

    bus.subscribe(EventType.PLAN_FAILED, handler)
    bus.emit(EventType.PLAN_FAILED, {"reason": "x"})

    assert seen == ["PlanFailed"]


async def test_sync_publish_inside_loop_schedules_async_subscribers() -> None:
    bus = EventBus()
    seen: list[str] = []

    async def handler(event: OrchestratorEvent) -> None:
        seen.append(event.event_id)

    bus.subscribe(None, handler)
    event, _ = bus.emit(EventType.WAVE_DEFERRED, {})
    await bus.drain_async()

    assert seen == [event.event_id]


async def test_emit_async_awaits_subscribers_and_collects_errors() -> None:
    bus = EventBus()

    async def failing(event: OrchestratorEvent) -> None:
        raise ValueError("nope")

    bus.subscribe(EventType.VALIDATION_COMPLETED, failing)
    _, errors = await bus.emit_async(EventType.VALIDATION_COMPLETED, {"passed": True})

    assert [error.error_type for error in errors] == ["ValueError"]


def test_replay_is_bounded_and_filterable() -> None:
    bus = EventBus(buffer_size=3)
    for index in range(5):
        bus.emit(EventType.WAVE_STARTED, {"index": index})
    bus.emit(EventType.WAVE_FAILED, {"index": 5})

    replayed = bus.replay()
    assert [event.payload["index"] for event in replayed] == [3, 4, 5]
    assert [e.payload["index"] for e in bus.replay(event_type=EventType.WAVE_STARTED)] == [3, 4]
    assert [e.payload["index"] for e in bus.replay(limit=1)] == [5]
    assert bus.replay(limit=0) == ()


def test_build_event_coerces_payload_to_json_values() -> None:
    event = build_event(
        EventType.OPERATION_COMPLETED,
        {"tags": {"b", "a"}, "ratio": math.inf, "pair": (1, 2), "obj": object()},
        correlation_id="req-1",
    )

    assert event.payload["tags"] == ["a", "b"]
    assert event.payload["ratio"] == "inf"
    assert event.payload["pair"] == [1, 2]
    assert isinstance(event.payload["obj"], str)
    assert event.correlation_id == "req-1"


def test_invalid_event_type_and_buffer_size_are_rejected() -> None:
    with pytest.raises(ValueError, match="invalid event_type"):
        build_event("NotAnEvent", {})
    with pytest.raises(ValueError, match="buffer_size"):
        EventBus(buffer_size=0)
