"""Execution-plane public API: worker contracts, fan-out, and the wave engine."""

from onchain_orchestrator.execution_plane.contracts import (
    BridgeResponse,
    DataBridge,
    Worker,
    WorkerContext,
    WorkerResponse,
)
from onchain_orchestrator.execution_plane.dispatch import FanOutResult, call_worker, fan_out
from onchain_orchestrator.execution_plane.wave_engine import (
    TaskOutcome,
    WaveContext,
    WaveEngine,
    WaveEngineConfig,
    WaveExecutionReport,
)

__all__ = [
    "BridgeResponse",
    "DataBridge",
    "FanOutResult",
    "TaskOutcome",
    "WaveContext",
    "WaveEngine",
    "WaveEngineConfig",
    "WaveExecutionReport",
    "Worker",
    "WorkerContext",
    "WorkerResponse",
    "call_worker",
    "fan_out",
]
