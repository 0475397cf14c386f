"""Unit tests for orchestrator event envelopes, ids, and payload redaction."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from onchain_orchestrator.domain import ids
from onchain_orchestrator.domain.events import (
    EventType,
    OrchestratorEvent,
    is_sensitive_key,
    redact_sensitive,
)


def _event(payload: dict[str, object]) -> OrchestratorEvent:
    return OrchestratorEvent(
        event_id=ids.generate_event_id(
            timestamp_ms=1_700_000_000_000, randbytes=lambda n: b"\x01" * n
        ),
        event_type=EventType.WAVE_STARTED,
        timestamp=datetime(2026, 1, 1, tzinfo=UTC),
        correlation_id="plan-x",
        payload=payload,
    )


def test_event_roundtrips_through_dict() -> None:
    event = _event({"wave_id": "wave_adaptive_1", "metrics": {"tokens_used": 3}})

    restored = OrchestratorEvent.from_dict(event.to_dict())

    assert restored == event
    assert event.to_dict()["timestamp"] == "2026-01-01T00:00:00.000000Z"


def test_event_rejects_unknown_type_and_naive_timestamp() -> None:
    with pytest.raises(ValueError, match="unsupported event type"):
        OrchestratorEvent.from_dict({**_event({}).to_dict(), "event_type": "Nope"})
    with pytest.raises(ValueError, match="timezone-aware"):
        OrchestratorEvent(
            event_id=ids.generate_event_id(),
            event_type=EventType.PLAN_COMPLETED,
            timestamp=datetime(2026, 1, 1),
            correlation_id=None,
            payload={},
        )


def test_redact_sensitive_masks_nested_secret_keys() -> None:
    event = _event({"args": {"api_key": "abc", "network": "ethereum"}, "private_key": "0x1"})

    redacted = redact_sensitive(event)

    assert redacted.payload["args"] == {"api_key": "***REDACTED***", "network": "ethereum"}
    assert redacted.payload["private_key"] == "***REDACTED***"
    assert event.payload["private_key"] == "0x1"


@pytest.mark.parametrize(
    ("key", "expected"), [("apiKey", True), ("wallet_password", True), ("network", False)]
)
def test_is_sensitive_key(key: str, expected: bool) -> None:
    assert is_sensitive_key(key) is expected


def test_generated_ids_carry_their_prefix_and_validate() -> None:
    request_id = ids.generate_request_id()
    plan_id = ids.generate_plan_id()

    ids.validate_request_id(request_id)
    ids.validate_plan_id(plan_id)
    assert request_id.startswith("req-")
    assert plan_id.startswith("plan-")
    with pytest.raises(ValueError):
        ids.validate_plan_id(request_id)


def test_ulid_timestamp_is_recoverable() -> None:
    ulid = ids.generate_ulid(timestamp_ms=123_456, randbytes=lambda n: b"\x00" * n)

    assert ids.parse_ulid_timestamp_ms(ulid) == 123_456
