"""Orchestrator event definitions, serialization, and payload redaction helpers."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from onchain_orchestrator.domain import ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_SENSITIVE_KEY_TERMS = ("secret", "private", "password", "api_key", "apikey", "credential")
_REDACTED_VALUE = "***REDACTED***"
_MAX_JSON_DEPTH = 16
_MAX_STRING = 8192


class EventType(StrEnum):
    """Lifecycle events emitted by the control plane."""

    REQUEST_CLASSIFIED = "RequestClassified"

    ADMISSION_GRANTED = "AdmissionGranted"
    ADMISSION_REJECTED = "AdmissionRejected"

    ZONE_TRANSITION = "ZoneTransition"
    ZONE_PREDICTED = "ZonePredicted"
    PROACTIVE_ACTION = "ProactiveAction"
    EMERGENCY_MODE_CHANGED = "EmergencyModeChanged"

    WAVE_MODE_RECOMMENDED = "WaveModeRecommended"
    WAVE_PLAN_CREATED = "WavePlanCreated"
    WAVE_STARTED = "WaveStarted"
    WAVE_COMPLETED = "WaveCompleted"
    WAVE_FAILED = "WaveFailed"
    WAVE_SKIPPED = "WaveSkipped"
    WAVE_DEFERRED = "WaveDeferred"
    WAVE_ROLLED_BACK = "WaveRolledBack"
    CHECKPOINT_CREATED = "CheckpointCreated"
    WAVE_EXECUTION_HALTED = "WaveExecutionHalted"
    PLAN_COMPLETED = "PlanCompleted"
    PLAN_FAILED = "PlanFailed"

    VALIDATION_COMPLETED = "ValidationCompleted"

    OPERATION_COMPLETED = "OperationCompleted"
    OPERATION_FAILED = "OperationFailed"


@dataclass(slots=True)
class OrchestratorEvent:
    """Serializable event envelope shared by every orchestration plane."""

    event_id: str
    event_type: EventType
    timestamp: datetime
    correlation_id: str | None
    payload: dict[str, JSONValue]

    def __post_init__(self) -> None:
        ids.validate_event_id(self.event_id)
        self.event_type = _as_event_type(self.event_type, "OrchestratorEvent.event_type")
        self.timestamp = _as_utc_datetime(self.timestamp, "OrchestratorEvent.timestamp")
        if self.correlation_id is not None and not isinstance(self.correlation_id, str):
            raise ValueError("OrchestratorEvent.correlation_id: expected string")
        self.payload = _as_json_object(self.payload, "OrchestratorEvent.payload")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": _datetime_to_iso8601z(self.timestamp),
            "correlation_id": self.correlation_id,
            "payload": self.payload,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> OrchestratorEvent:
        if not isinstance(data, dict):
            raise ValueError(f"OrchestratorEvent: expected object, got {type(data).__name__}")
        missing = sorted({"event_id", "event_type", "timestamp", "payload"} - set(data))
        if missing:
            raise ValueError(f"OrchestratorEvent: missing required fields: {missing}")
        correlation_id = data.get("correlation_id")
        return cls(
            event_id=str(data["event_id"]),
            event_type=_as_event_type(data["event_type"], "OrchestratorEvent.event_type"),
            timestamp=_as_utc_datetime(data["timestamp"], "OrchestratorEvent.timestamp"),
            correlation_id=None if correlation_id is None else str(correlation_id),
            payload=_as_json_object(data["payload"], "OrchestratorEvent.payload"),
        )


def redact_sensitive(event: OrchestratorEvent) -> OrchestratorEvent:
    """Return a new event with sensitive payload keys deeply redacted."""
    redacted_payload = _redact_value(event.payload, key_context=None)
    if not isinstance(redacted_payload, dict):
        raise ValueError("redacted payload must remain a JSON object")
    return OrchestratorEvent(
        event_id=event.event_id,
        event_type=event.event_type,
        timestamp=event.timestamp,
        correlation_id=event.correlation_id,
        payload=redacted_payload,
    )


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(term in lowered for term in _SENSITIVE_KEY_TERMS)


def _as_event_type(value: object, path: str) -> EventType:
    if isinstance(value, EventType):
        return value
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string event type, got {type(value).__name__}")
    try:
        return EventType(value)
    except ValueError as exc:
        raise ValueError(f"{path}: unsupported event type {value!r}") from exc


def _as_utc_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise ValueError(f"{path}: invalid ISO-8601 datetime: {value!r}") from exc
    else:
        raise ValueError(
            f"{path}: expected datetime or ISO-8601 string, got {type(value).__name__}"
        )

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValueError(f"{path}: datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _datetime_to_iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        raise ValueError(f"{path}: JSON nesting too deep")

    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{path}: float value must be finite")
        return value
    if isinstance(value, str):
        if len(value) > _MAX_STRING:
            raise ValueError(f"{path}: string too long")
        return value
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, dict):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path}: object keys must be strings")
            out[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return out
    raise ValueError(f"{path}: value is not JSON-serializable ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        raise ValueError(f"{path}: expected object")
    return parsed


def _redact_value(value: JSONValue, key_context: str | None) -> JSONValue:
    if key_context is not None and is_sensitive_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, list):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, dict):
        return {key: _redact_value(item, key_context=key) for key, item in value.items()}
    return value


__all__ = ["EventType", "OrchestratorEvent", "is_sensitive_key", "redact_sensitive"]
