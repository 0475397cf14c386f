"""Domain models, identifiers, and event envelopes."""

from onchain_orchestrator.domain import ids
from onchain_orchestrator.domain.events import EventType, OrchestratorEvent
from onchain_orchestrator.domain.models import (
    ComplexityLevel,
    Domain,
    OperationType,
    Priority,
    QualityStep,
    RequestDescriptor,
    ResourceSnapshot,
    Zone,
)

__all__ = [
    "ComplexityLevel",
    "Domain",
    "EventType",
    "OperationType",
    "OrchestratorEvent",
    "Priority",
    "QualityStep",
    "RequestDescriptor",
    "ResourceSnapshot",
    "Zone",
    "ids",
]
