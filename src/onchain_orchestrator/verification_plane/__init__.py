"""
onchain-orchestrator — verification plane public API.

File: src/onchain_orchestrator/verification_plane/__init__.py

Purpose
- Export the quality gate and its step registry for the control and execution planes.
"""

from onchain_orchestrator.verification_plane.quality_gate import (
    QualityGate,
    QualityGateConfig,
    context_retention,
    recommendations_for,
)
from onchain_orchestrator.verification_plane.steps import (
    CRITICAL_STEPS,
    STEP_THRESHOLDS,
    StepCheck,
    StepInput,
    StepOutcome,
    default_step_checks,
    register_step,
)

__all__ = [
    "CRITICAL_STEPS",
    "STEP_THRESHOLDS",
    "QualityGate",
    "QualityGateConfig",
    "StepCheck",
    "StepInput",
    "StepOutcome",
    "context_retention",
    "default_step_checks",
    "recommendations_for",
    "register_step",
]
