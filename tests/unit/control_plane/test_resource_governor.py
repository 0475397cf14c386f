"""
onchain-orchestrator — unit tests for the resource governor

File: tests/unit/control_plane/test_resource_governor.py

Purpose
- Validate zone tracking, admission decisions, emergency mode, zone-entry
  effects, and proactive actions driven by trend prediction.

What this test file should cover
- Zone filters: LOW deferred in ORANGE, COMPLEX blocked in RED, only CRITICAL in CRITICAL.
- Budget reasons surface as admission rejections.
- Metric failures fail open.
- Transitions fire entry optimizations, registered effects, and events.
- Proactive actions fire once per predicted zone.

Functional requirements
- No real host sampling: a fake metrics provider feeds deterministic readings.
"""

from __future__ import annotations

import pytest

from onchain_orchestrator.control_plane.resource_governor import (
    GovernorConfig,
    ResourceGovernor,
    SystemReading,
    zone_catalog,
)
from onchain_orchestrator.domain.events import EventType
from onchain_orchestrator.domain.models import (
    ComplexityLevel,
    Priority,
    RequestDescriptor,
    ResourceEstimate,
    ResourceSnapshot,
    Zone,
)
from onchain_orchestrator.observability.events import EventBus


class FakeMetrics:
    def __init__(
        self, cpu: float | None = 0.0, memory: float | None = 0.0, available: float = 8192.0
    ) -> None:
        self.reading = SystemReading(
            cpu_percent=cpu, memory_percent=memory, available_memory_mb=available
        )

    def set(self, cpu: float | None, memory: float | None, available: float = 8192.0) -> None:
        self.reading = SystemReading(
            cpu_percent=cpu, memory_percent=memory, available_memory_mb=available
        )

    def read(self) -> SystemReading:
        return self.reading


class BrokenMetrics:
    def read(self) -> SystemReading:
        raise OSError("sensor offline")


def _descriptor(
    *,
    priority_score: float = 0.5,
    complexity: float = 0.1,
    tokens: int = 1000,
    memory_mb: float = 100.0,
) -> RequestDescriptor:
    return RequestDescriptor(
        tool_id="oca_test",
        args={},
        complexity_score=complexity,
        complexity_level=ComplexityLevel.from_score(complexity),
        domains=frozenset(),
        operations=frozenset(),
        confidence=0.5,
        risk_score=0.1,
        priority_score=priority_score,
        resource_estimate=ResourceEstimate(tokens=tokens, time_ms=1000, memory_mb=memory_mb),
        suggested_workers=(),
        wave_eligible=False,
        parallel_eligible=False,
    )


def _governor(metrics: object, **kwargs: object) -> ResourceGovernor:
    return ResourceGovernor(metrics_provider=metrics, **kwargs)  # type: ignore[arg-type]


def _orange(governor: ResourceGovernor, metrics: FakeMetrics) -> None:
    # 25 + 25 + 30 + 0 + 2 = 82
    metrics.set(100.0, 100.0)
    governor.update_token_usage(100, 100)


def test_initial_zone_is_green_with_default_congestion() -> None:
    governor = _governor(FakeMetrics())

    assert governor.current_zone is Zone.GREEN
    assert governor.current_snapshot.overall_usage == pytest.approx(2.0)
    assert governor.is_available()


def test_orange_defers_low_priority_but_admits_normal() -> None:
    metrics = FakeMetrics()
    governor = _governor(metrics)
    _orange(governor, metrics)

    low = governor.admit(_descriptor(priority_score=0.1))
    normal = governor.admit(_descriptor(priority_score=0.5))

    assert not low.allowed
    assert low.zone is Zone.ORANGE
    assert low.reason == "Resource warning (82.0%). Low priority operations deferred."
    assert normal.allowed
    assert normal.usage == pytest.approx(82.0)


def test_red_blocks_complex_requests_only() -> None:
    metrics = FakeMetrics()
    governor = _governor(metrics)
    _orange(governor, metrics)
    governor.update_rate_limit(50.0)

    complex_decision = governor.admit(_descriptor(complexity=0.9))
    simple_decision = governor.admit(_descriptor(complexity=0.1, priority_score=0.1))

    assert complex_decision.zone is Zone.RED
    assert complex_decision.reason == "High resource usage (87.0%). Complex operations blocked."
    assert simple_decision.allowed


def test_critical_zone_admits_only_critical_priority() -> None:
    metrics = FakeMetrics()
    governor = _governor(metrics)
    _orange(governor, metrics)
    governor.update_rate_limit(100.0)
    governor.update_congestion(100.0)

    rejected = governor.admit(_descriptor(priority_score=0.8))
    admitted = governor.admit(_descriptor(), priority=Priority.CRITICAL)

    assert rejected.reason == "Critical resource zone (100.0%). Only critical operations allowed."
    assert admitted.allowed
    assert admitted.zone is Zone.CRITICAL


def test_budget_violations_are_admission_rejections() -> None:
    governor = _governor(FakeMetrics(available=100.0))

    tokens = governor.admit(_descriptor(tokens=200_000))
    memory = governor.admit(_descriptor(memory_mb=100.0))

    assert tokens.reason == "Token limit exceeded. Remaining: 100000, Required: 200000"
    assert memory.reason == "Memory limit exceeded. Available: 50.00MB"


def test_unmeasurable_metrics_fail_open() -> None:
    governor = _governor(BrokenMetrics())

    decision = governor.admit(_descriptor())

    assert decision.allowed
    assert governor.snapshot().cpu_percent == 0.0
    assert governor.snapshot().available_memory_mb is None


def test_missing_dimensions_use_configured_unmeasurable_value() -> None:
    governor = _governor(
        FakeMetrics(cpu=None, memory=None),
        config=GovernorConfig(unmeasurable_usage_percent=40.0),
    )

    snapshot = governor.snapshot()

    assert snapshot.cpu_percent == 40.0
    assert snapshot.memory_percent == 40.0


def test_admission_decisions_are_published() -> None:
    bus = EventBus()
    metrics = FakeMetrics()
    governor = _governor(metrics, event_bus=bus)

    governor.admit(_descriptor())
    _orange(governor, metrics)
    governor.admit(_descriptor(priority_score=0.1))

    types = [event.event_type for event in bus.replay()]
    assert types == [EventType.ADMISSION_GRANTED, EventType.ADMISSION_REJECTED]
    assert bus.replay()[1].payload["tool_id"] == "oca_test"


def test_emergency_mode_forces_critical_until_disabled() -> None:
    bus = EventBus()
    governor = _governor(FakeMetrics(), event_bus=bus)

    assert governor.set_emergency_mode(True) is Zone.CRITICAL
    assert governor.emergency_mode
    assert not governor.is_available()
    assert not governor.admit(_descriptor()).allowed
    assert not governor.is_operation_allowed("analysis")
    assert governor.is_operation_allowed("critical_repair")

    assert governor.set_emergency_mode(False) is Zone.GREEN
    types = [event.event_type for event in bus.replay()]
    assert EventType.EMERGENCY_MODE_CHANGED in types
    assert types.count(EventType.ZONE_TRANSITION) == 2


def test_tick_transition_runs_entry_optimizations_and_effects() -> None:
    actions: list[str] = []
    entered: list[Zone] = []
    metrics = FakeMetrics()
    governor = _governor(metrics, action_hook=actions.append)

    def broken_effect(zone: Zone, snapshot: ResourceSnapshot) -> None:
        raise RuntimeError("effect failed")

    governor.register_zone_entry(broken_effect)
    token = governor.register_zone_entry(
        lambda zone, snapshot: entered.append(zone), zones=[Zone.ORANGE]
    )

    _orange(governor, metrics)
    assert governor.tick() is Zone.ORANGE

    assert actions == ["zone_entry:compress_hard", "zone_entry:defer_operations", "zone_entry:gc"]
    assert entered == [Zone.ORANGE]
    assert governor.statistics()["transitions"] == 1

    assert governor.unregister_zone_entry(token)
    assert not governor.unregister_zone_entry(token)
    metrics.set(0.0, 0.0)
    governor.update_token_usage(0, 100)
    assert governor.tick() is Zone.GREEN
    assert entered == [Zone.ORANGE]


def test_proactive_actions_fire_once_per_predicted_zone() -> None:
    actions: list[str] = []
    bus = EventBus()
    metrics = FakeMetrics()
    governor = _governor(
        metrics,
        config=GovernorConfig(prediction_confidence=0.5),
        event_bus=bus,
        action_hook=actions.append,
    )
    # memory 25 + tokens 30 + congestion 2 = 57 before cpu; cpu rises 1 point per tick
    governor.update_token_usage(100, 100)
    for cpu in range(11):
        metrics.set(float(cpu), 100.0)
        assert governor.tick() is Zone.GREEN

    prediction = governor.last_prediction
    assert prediction is not None
    assert prediction.predicted_zone is Zone.YELLOW
    assert actions == ["proactive:compress_soft", "proactive:cache_priority_high"]
    assert len(bus.replay(event_type=EventType.PROACTIVE_ACTION)) == 1


def test_statistics_report_zone_budget_and_recommendation() -> None:
    governor = _governor(FakeMetrics())
    governor.tick()
    governor.report_usage(500, 20)
    governor.increment_operations()

    stats = governor.statistics()

    assert stats["current_zone"] == "GREEN"
    assert stats["samples"] == 1
    assert stats["operations"] == 1
    assert stats["budget"]["tokens_used"] == 500
    assert stats["recommendation"] == governor.recommendation()
    assert stats["prediction"] is None


def test_monitoring_start_is_idempotent_and_stoppable() -> None:
    governor = _governor(FakeMetrics())

    assert governor.start_monitoring(interval_ms=10)
    assert not governor.start_monitoring(interval_ms=10)
    governor.stop()

    assert not governor.is_monitoring
    governor.stop()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"monitor_interval_ms": 0},
        {"prediction_confidence": 1.5},
        {"default_congestion_percent": 120.0},
    ],
)
def test_governor_config_validation(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        GovernorConfig(**kwargs)


def test_zone_catalog_lists_every_zone() -> None:
    assert [entry["zone"] for entry in zone_catalog()] == [zone.value for zone in Zone]
