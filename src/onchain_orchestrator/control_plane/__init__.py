"""Control-plane public API."""

from onchain_orchestrator.control_plane.classifier import RequestClassifier, classify
from onchain_orchestrator.control_plane.controller import (
    ExecutionResult,
    Orchestrator,
    OrchestratorSettings,
)
from onchain_orchestrator.control_plane.resource_governor import (
    GovernorConfig,
    ResourceGovernor,
    SystemMetricsProvider,
    SystemReading,
)
from onchain_orchestrator.control_plane.scheduler import Router, order_workers

__all__ = [
    "ExecutionResult",
    "GovernorConfig",
    "Orchestrator",
    "OrchestratorSettings",
    "RequestClassifier",
    "ResourceGovernor",
    "Router",
    "SystemMetricsProvider",
    "SystemReading",
    "classify",
    "order_workers",
]
