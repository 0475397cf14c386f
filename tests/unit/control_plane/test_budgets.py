"""Unit tests for the token / time / memory budget ledger."""

from __future__ import annotations

import pytest

from onchain_orchestrator.control_plane.budgets import BudgetLimits, ResourceBudget
from onchain_orchestrator.domain.models import ResourceEstimate


def _estimate(tokens: int = 0, time_ms: int = 0, memory_mb: float = 0.0) -> ResourceEstimate:
    return ResourceEstimate(tokens=tokens, time_ms=time_ms, memory_mb=memory_mb)


def test_record_accumulates_and_clamps_negative_values() -> None:
    budget = ResourceBudget()

    budget.record(1000, 200)
    usage = budget.record(-50, -10)

    assert (usage.tokens_used, usage.time_used_ms, usage.operations) == (1000, 200, 2)
    assert [record.tokens for record in budget.history()] == [1000, 0]


def test_check_rejects_when_tokens_would_exceed_budget() -> None:
    budget = ResourceBudget(limits=BudgetLimits(max_tokens=1000))
    budget.record(900, 0)

    reason = budget.check(_estimate(tokens=200), available_memory_mb=None)

    assert reason == "Token limit exceeded. Remaining: 100, Required: 200"
    assert budget.check(_estimate(tokens=100), available_memory_mb=None) is None


def test_check_rejects_when_time_would_exceed_budget() -> None:
    budget = ResourceBudget(limits=BudgetLimits(max_time_ms=1000))

    reason = budget.check(_estimate(time_ms=2000), available_memory_mb=None)

    assert reason == "Time limit exceeded. Remaining: 1000ms, Required: 2000ms"


def test_check_keeps_memory_margin_and_ignores_unknown_memory() -> None:
    budget = ResourceBudget(limits=BudgetLimits(memory_margin_mb=50.0))

    assert (
        budget.check(_estimate(memory_mb=60.0), available_memory_mb=100.0)
        == "Memory limit exceeded. Available: 50.00MB"
    )
    assert budget.check(_estimate(memory_mb=50.0), available_memory_mb=100.0) is None
    assert budget.check(_estimate(memory_mb=10_000.0), available_memory_mb=None) is None


def test_token_usage_percent_is_capped() -> None:
    budget = ResourceBudget(limits=BudgetLimits(max_tokens=1000))

    usage = budget.set_tokens_used(5000)

    assert usage.token_usage_percent == 100.0
    assert usage.remaining_tokens == 0


def test_statistics_and_reset() -> None:
    budget = ResourceBudget()
    budget.record(100, 10)
    budget.record(300, 30)

    stats = budget.statistics()

    assert stats["total_operations"] == 2
    assert stats["average_tokens"] == pytest.approx(200.0)
    assert stats["peak_time_ms"] == 30
    assert stats["remaining_tokens"] == 100_000 - 400

    budget.reset()
    assert budget.usage().tokens_used == 0
    assert budget.history() == ()


@pytest.mark.parametrize(
    "kwargs", [{"max_tokens": 0}, {"max_time_ms": -1}, {"memory_margin_mb": -0.5}]
)
def test_budget_limits_validate(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        BudgetLimits(**kwargs)
