"""
onchain-orchestrator — unit tests for domain models

File: tests/unit/domain/test_models.py

Purpose
- Validate enum ordering helpers and dataclass invariants of the domain layer.

What this test file should cover
- Complexity / priority bucketing thresholds.
- Zone ordering.
- Weighted overall usage of resource snapshots.
- Structural validation of routes and wave plans.
"""

from __future__ import annotations

import pytest

from onchain_orchestrator.domain.models import (
    ComplexityLevel,
    Priority,
    QualityStep,
    ResourceEstimate,
    ResourceSnapshot,
    RiskAssessment,
    RouteDecision,
    RouteStrategy,
    StepResult,
    ValidationResult,
    Wave,
    WavePlan,
    WaveStage,
    WaveStrategy,
    WaveTask,
    Zone,
)


@pytest.mark.parametrize(
    ("score", "expected"),
    [
        (0.0, ComplexityLevel.SIMPLE),
        (0.29, ComplexityLevel.SIMPLE),
        (0.3, ComplexityLevel.MODERATE),
        (0.69, ComplexityLevel.MODERATE),
        (0.7, ComplexityLevel.COMPLEX),
        (1.0, ComplexityLevel.COMPLEX),
    ],
)
def test_complexity_level_thresholds(score: float, expected: ComplexityLevel) -> None:
    assert ComplexityLevel.from_score(score) is expected


@pytest.mark.parametrize(
    ("score", "expected"),
    [(0.1, Priority.LOW), (0.5, Priority.NORMAL), (0.8, Priority.HIGH), (0.95, Priority.CRITICAL)],
)
def test_priority_from_score(score: float, expected: Priority) -> None:
    assert Priority.from_score(score) is expected


def test_zone_rank_orders_from_green_to_critical() -> None:
    ranks = [zone.rank for zone in (Zone.GREEN, Zone.YELLOW, Zone.ORANGE, Zone.RED, Zone.CRITICAL)]

    assert ranks == sorted(ranks)
    assert Zone.RED.is_worse_than(Zone.ORANGE)
    assert not Zone.GREEN.is_worse_than(Zone.GREEN)


def test_snapshot_overall_usage_is_weighted_sum() -> None:
    snapshot = ResourceSnapshot(
        cpu_percent=80.0,
        memory_percent=60.0,
        token_usage_percent=50.0,
        rate_limit_percent=10.0,
        blockchain_congestion_percent=20.0,
    )

    assert snapshot.overall_usage == pytest.approx(80 * 0.25 + 60 * 0.25 + 50 * 0.30 + 1 + 2)


def test_snapshot_rejects_out_of_range_percentages() -> None:
    with pytest.raises(ValueError, match="cpu_percent"):
        ResourceSnapshot(cpu_percent=101.0)


def test_resource_estimate_rejects_negative_values() -> None:
    with pytest.raises(ValueError):
        ResourceEstimate(tokens=-1, time_ms=0, memory_mb=0.0)


@pytest.mark.parametrize("strategy", [RouteStrategy.SIMPLE, RouteStrategy.SEQUENTIAL])
def test_route_decision_rejects_parallel_for_serial_strategies(strategy: RouteStrategy) -> None:
    with pytest.raises(ValueError, match="parallel_allowed"):
        RouteDecision(
            ordered_workers=("a", "b"),
            strategy=strategy,
            priority=Priority.NORMAL,
            fallback_workers=(),
            parallel_allowed=True,
            cache_enabled=True,
            requires_validation=False,
        )


def _wave(wave_id: str, *dependencies: str) -> Wave:
    return Wave(
        wave_id=wave_id,
        stage=WaveStage.DISCOVERY,
        sequence=1,
        tasks=(WaveTask(task_id=f"{wave_id}_task", kind="analysis", description="d"),),
        dependencies=dependencies,
    )


def _plan(*waves: Wave, checkpoints: frozenset[str] = frozenset()) -> WavePlan:
    return WavePlan(
        plan_id="plan-test",
        strategy=WaveStrategy.ADAPTIVE,
        waves=waves,
        checkpoints=checkpoints,
        estimated_duration_ms=0,
        estimated_tokens=0,
        risk_assessment=RiskAssessment(level=0.0),
    )


def test_wave_plan_rejects_duplicate_ids_and_unknown_references() -> None:
    with pytest.raises(ValueError, match="unique"):
        _plan(_wave("w1"), _wave("w1"))
    with pytest.raises(ValueError, match="unknown waves"):
        _plan(_wave("w1", "w0"))
    with pytest.raises(ValueError, match="checkpoints"):
        _plan(_wave("w1"), checkpoints=frozenset({"w9"}))


def test_wave_rejects_self_dependency() -> None:
    with pytest.raises(ValueError, match="itself"):
        _wave("w1", "w1")


def test_wave_plan_lookup_by_id() -> None:
    plan = _plan(_wave("w1"), _wave("w2", "w1"))

    assert plan.wave_ids == ("w1", "w2")
    assert plan.wave("w2").dependencies == ("w1",)
    with pytest.raises(KeyError):
        plan.wave("w3")


def test_validation_result_exposes_steps_and_flattened_issues() -> None:
    security = StepResult(
        step=QualityStep.SECURITY_CHECK,
        passed=False,
        score=40.0,
        threshold=90.0,
        issues=("Blacklisted address",),
    )
    result = ValidationResult(
        operation="oca_security",
        steps=(security,),
        overall_score=40.0,
        context_retention=50.0,
        passed=False,
    )

    assert result.step(QualityStep.SECURITY_CHECK) is security
    assert result.step(QualityStep.PERFORMANCE) is None
    assert result.issues == ("Blacklisted address",)
    assert result.to_dict()["passed"] is False


def test_step_result_rejects_score_out_of_range() -> None:
    with pytest.raises(ValueError, match="score"):
        StepResult(step=QualityStep.PERFORMANCE, passed=True, score=120.0, threshold=75.0)
