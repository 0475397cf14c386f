"""
onchain-orchestrator — worker and data-bridge contracts

File: src/onchain_orchestrator/execution_plane/contracts.py

Purpose
- Define the boundary between the orchestrator and the pluggable analysis
  workers, plus the data bridge those workers fetch through.

Normative behavior
- A worker returns either a ``WorkerResponse`` or a plain mapping with the same
  keys; ``WorkerResponse.coerce`` normalises both shapes.
- Workers should not raise. When one does, dispatch converts the exception
  into a failed ``WorkerResponse`` for that worker only.
- The orchestrator never calls the data bridge itself.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from onchain_orchestrator.domain.models import JSONValue, Priority
    from onchain_orchestrator.utils.concurrency import CancellationToken


@dataclass(frozen=True, slots=True)
class WorkerContext:
    """Read-only request view handed to each worker call."""

    tool_id: str
    args: Mapping[str, object]
    request_id: str | None = None
    priority: Priority | None = None
    metadata: Mapping[str, object] = field(default_factory=dict)
    cancel_token: CancellationToken | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", MappingProxyType(dict(self.args)))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True, slots=True)
class WorkerResponse:
    success: bool
    agent: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    data: Mapping[str, object] = field(default_factory=dict)
    errors: tuple[str, ...] = ()
    metadata: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.agent:
            raise ValueError("WorkerResponse.agent must be non-empty")
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))
        object.__setattr__(self, "errors", tuple(self.errors))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=UTC))

    @classmethod
    def failure(cls, agent: str, *errors: str) -> WorkerResponse:
        return cls(success=False, agent=agent, errors=errors)

    @classmethod
    def coerce(cls, value: object, *, agent: str) -> WorkerResponse:
        """Normalise a worker return value.

        Mappings may carry ``errors`` (a list) or a single ``error`` string;
        a ``data`` value that is not a mapping is wrapped as ``{"value": ...}``.
        Anything else is reported as a failed response.
        """

        if isinstance(value, WorkerResponse):
            return value
        if not isinstance(value, Mapping):
            return cls.failure(agent, f"unexpected worker result type {type(value).__name__}")

        errors: list[str] = []
        raw_errors = value.get("errors")
        if isinstance(raw_errors, (list, tuple)):
            errors.extend(str(item) for item in raw_errors)
        elif raw_errors:
            errors.append(str(raw_errors))
        if value.get("error"):
            errors.append(str(value["error"]))

        data = value.get("data", {})
        if data is None:
            data = {}
        elif not isinstance(data, Mapping):
            data = {"value": data}

        metadata = value.get("metadata")
        timestamp = value.get("timestamp")
        return cls(
            success=bool(value.get("success", not errors)),
            agent=str(value.get("agent") or agent),
            timestamp=_coerce_timestamp(timestamp),
            data=data,
            errors=tuple(errors),
            metadata=metadata if isinstance(metadata, Mapping) else {},
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "success": self.success,
            "agent": self.agent,
            "timestamp": self.timestamp.isoformat(),
            "errors": list(self.errors),
            "data_keys": sorted(str(key) for key in self.data),
        }


@runtime_checkable
class Worker(Protocol):
    """Analysis worker contract."""

    @property
    def name(self) -> str: ...

    async def analyze(self, context: WorkerContext) -> WorkerResponse | Mapping[str, object]: ...


@dataclass(frozen=True, slots=True)
class BridgeResponse:
    success: bool
    data: object = None
    error: str | None = None
    cached: bool = False


@runtime_checkable
class DataBridge(Protocol):
    """Data-fetch bridge consumed by workers."""

    async def call(self, tool_name: str, args: Mapping[str, object]) -> BridgeResponse: ...


def _coerce_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.now(UTC)


__all__ = [
    "BridgeResponse",
    "DataBridge",
    "Worker",
    "WorkerContext",
    "WorkerResponse",
]
