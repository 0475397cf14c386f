"""Exception hierarchy shared by the orchestrator planes."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from onchain_orchestrator.domain.models import WaveResult


class OrchestratorError(Exception):
    """Base error for onchain-orchestrator failures."""


class WavePlanFailure(OrchestratorError):
    """Raised when a wave fails validation and the plan is abandoned."""

    def __init__(
        self,
        *,
        plan_id: str,
        wave_id: str,
        reason: str,
        results: tuple[WaveResult, ...] = (),
    ) -> None:
        self.plan_id = plan_id
        self.wave_id = wave_id
        self.reason = reason
        self.results = tuple(results)
        super().__init__(f"wave plan {plan_id} failed at {wave_id}: {reason}")


__all__ = ["OrchestratorError", "WavePlanFailure"]
