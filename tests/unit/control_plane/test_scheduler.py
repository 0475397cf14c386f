"""
onchain-orchestrator — unit tests for the deterministic router

File: tests/unit/control_plane/test_scheduler.py

Purpose
- Validate strategy, worker ordering, fallbacks, priority, and per-tool flags.

What this test file should cover
- Known tools follow their route table; unknown tools derive from complexity.
- Dependency ordering keeps input order on ties and tolerates cycles.
- Parallel execution is never allowed across a dependency edge.
"""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from onchain_orchestrator.control_plane.scheduler import (
    WORKER_DEPENDENCIES,
    Router,
    order_workers,
)
from onchain_orchestrator.domain.models import (
    ComplexityLevel,
    Domain,
    Priority,
    RequestDescriptor,
    ResourceEstimate,
    RouteStrategy,
)


def _descriptor(
    tool_id: str,
    workers: tuple[str, ...],
    *,
    complexity: float = 0.1,
    domains: frozenset[Domain] = frozenset(),
    time_ms: int = 5000,
) -> RequestDescriptor:
    return RequestDescriptor(
        tool_id=tool_id,
        args={},
        complexity_score=complexity,
        complexity_level=ComplexityLevel.from_score(complexity),
        domains=domains,
        operations=frozenset(),
        confidence=0.5,
        risk_score=0.1,
        priority_score=0.3,
        resource_estimate=ResourceEstimate(tokens=5000, time_ms=time_ms, memory_mb=100.0),
        suggested_workers=workers,
        wave_eligible=False,
        parallel_eligible=False,
    )


def test_analyze_route_orders_dependencies_and_disables_parallelism() -> None:
    decision = Router().route(
        _descriptor("oca_analyze", ("rug_detector", "alpha_hunter", "token_researcher"))
    )

    assert decision.strategy is RouteStrategy.PARALLEL
    assert decision.ordered_workers == ("rug_detector", "alpha_hunter", "token_researcher")
    assert not decision.parallel_allowed
    assert decision.priority is Priority.NORMAL
    assert decision.fallback_workers == ("basic_security_check", "trending_tokens", "basic_info")
    assert decision.cache_enabled
    assert decision.requires_validation


def test_single_worker_is_always_simple() -> None:
    decision = Router().route(_descriptor("oca_security", ("rug_detector",)))

    assert decision.strategy is RouteStrategy.SIMPLE
    assert decision.priority is Priority.HIGH
    assert not decision.parallel_allowed


def test_independent_workers_may_run_in_parallel() -> None:
    decision = Router().route(_descriptor("oca_hunt", ("alpha_hunter", "whale_tracker")))

    assert decision.parallel_allowed
    assert not decision.cache_enabled
    assert not decision.requires_validation


@pytest.mark.parametrize(
    ("complexity", "strategy", "parallel"),
    [
        (0.1, RouteStrategy.PARALLEL, True),
        (0.5, RouteStrategy.SEQUENTIAL, False),
        (0.9, RouteStrategy.HYBRID, True),
    ],
)
def test_unknown_tool_strategy_follows_complexity(
    complexity: float, strategy: RouteStrategy, parallel: bool
) -> None:
    decision = Router().route(_descriptor("custom_scan", ("x", "y"), complexity=complexity))

    assert decision.strategy is strategy
    assert decision.parallel_allowed is parallel
    assert decision.cache_enabled
    assert not decision.requires_validation


@pytest.mark.parametrize(
    ("descriptor", "expected"),
    [
        (_descriptor("my_security_tool", ()), Priority.HIGH),
        (_descriptor("custom", (), domains=frozenset({Domain.BRIDGE})), Priority.HIGH),
        (_descriptor("custom", (), complexity=0.9, time_ms=200_000), Priority.NORMAL),
        (_descriptor("custom", (), time_ms=60_000), Priority.LOW),
        (_descriptor("custom", ()), Priority.NORMAL),
        (_descriptor("oca_sentiment", ()), Priority.LOW),
    ],
)
def test_priority_rules(descriptor: RequestDescriptor, expected: Priority) -> None:
    assert Router().priority_for(descriptor) is expected


def test_order_workers_moves_dependencies_first() -> None:
    assert order_workers(("token_researcher", "rug_detector"), WORKER_DEPENDENCIES) == (
        "rug_detector",
        "token_researcher",
    )


def test_order_workers_appends_cycle_members_in_input_order() -> None:
    cyclic = {"a": ("b",), "b": ("a",)}

    assert order_workers(("c", "a", "b"), cyclic) == ("c", "a", "b")
    assert order_workers(("b", "a", "c"), cyclic) == ("c", "b", "a")


def test_fallbacks_are_deduplicated_in_first_seen_order() -> None:
    router = Router(fallbacks={"a": ("fb",), "b": ("fb", "fb2")})

    assert router.fallbacks_for(("a", "b", "c")) == ("fb", "fb2")
    assert router.fallback_for("c") == ()


_WORKERS = sorted(
    {name for worker, deps in WORKER_DEPENDENCIES.items() for name in (worker, *deps)}
)


@given(st.lists(st.sampled_from(_WORKERS), unique=True))
def test_order_workers_is_a_dependency_respecting_permutation(workers: list[str]) -> None:
    ordered = order_workers(tuple(workers), WORKER_DEPENDENCIES)

    assert sorted(ordered) == sorted(workers)
    position = {worker: index for index, worker in enumerate(ordered)}
    for worker in ordered:
        for dependency in WORKER_DEPENDENCIES.get(worker, ()):
            if dependency in position:
                assert position[dependency] < position[worker]
