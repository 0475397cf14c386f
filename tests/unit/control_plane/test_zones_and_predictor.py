"""
onchain-orchestrator — unit tests for resource zones and trend prediction

File: tests/unit/control_plane/test_zones_and_predictor.py

Purpose
- Validate the zone partition of [0, 100] and the short-horizon usage forecast.

What this test file should cover
- Boundary values land in the documented zone; out-of-range values clamp.
- Every usage value in range belongs to exactly one zone.
- The predictor stays silent until it has enough samples.
- A linear rise is projected forward and reports the time to the next zone.
"""

from __future__ import annotations

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from onchain_orchestrator.control_plane.predictor import MIN_SAMPLES, TrendPredictor
from onchain_orchestrator.control_plane.zones import ZONE_SPECS, spec_for, zone_for_usage
from onchain_orchestrator.domain.models import ResourceSnapshot, Zone


@pytest.mark.parametrize(
    ("usage", "expected"),
    [
        (0.0, Zone.GREEN),
        (59.99, Zone.GREEN),
        (60.0, Zone.YELLOW),
        (74.99, Zone.YELLOW),
        (75.0, Zone.ORANGE),
        (84.99, Zone.ORANGE),
        (85.0, Zone.RED),
        (94.99, Zone.RED),
        (95.0, Zone.CRITICAL),
        (100.0, Zone.CRITICAL),
        (130.0, Zone.CRITICAL),
        (-5.0, Zone.GREEN),
        (math.nan, Zone.GREEN),
    ],
)
def test_zone_boundaries(usage: float, expected: Zone) -> None:
    assert zone_for_usage(usage) is expected


@given(st.floats(min_value=0.0, max_value=100.0, allow_nan=False))
def test_every_usage_value_belongs_to_exactly_one_zone(usage: float) -> None:
    containing = [spec.zone for spec in ZONE_SPECS if spec.contains(usage)]

    assert containing == [zone_for_usage(usage)]


def test_zone_specs_expose_recommendations_and_entry_optimizations() -> None:
    assert spec_for(Zone.GREEN).restrictions == ()
    assert "essential_only" in spec_for(Zone.CRITICAL).restrictions
    assert spec_for(Zone.ORANGE).optimizations == ("compress_hard", "defer_operations", "gc")
    assert spec_for(Zone.RED).to_dict()["range"] == [85.0, 95.0]


def test_predictor_requires_minimum_samples() -> None:
    predictor = TrendPredictor()
    for _ in range(MIN_SAMPLES - 1):
        predictor.record(ResourceSnapshot(cpu_percent=50.0))

    assert predictor.predict(40.0) is None
    predictor.record(ResourceSnapshot(cpu_percent=50.0))
    assert predictor.predict(40.0) is not None


def test_predictor_projects_linear_rise_into_next_zone() -> None:
    predictor = TrendPredictor(look_ahead_ms=30_000, interval_ms=5000)
    for step in range(MIN_SAMPLES):
        predictor.record(ResourceSnapshot(cpu_percent=float(step)))

    prediction = predictor.predict(59.0)

    assert prediction is not None
    assert prediction.weighted_trend == pytest.approx(0.25)
    assert prediction.predicted_usage == pytest.approx(60.5)
    assert prediction.current_zone is Zone.GREEN
    assert prediction.predicted_zone is Zone.YELLOW
    assert prediction.is_worse
    assert prediction.time_to_transition_ms == pytest.approx(20_000.0)
    assert 0.0 <= prediction.confidence <= 1.0


def test_flat_history_predicts_no_transition() -> None:
    predictor = TrendPredictor()
    for _ in range(MIN_SAMPLES):
        predictor.record(ResourceSnapshot(cpu_percent=30.0, memory_percent=30.0))

    prediction = predictor.predict(17.0)

    assert prediction is not None
    assert prediction.predicted_zone is prediction.current_zone
    assert prediction.time_to_transition_ms is None
    assert prediction.confidence == pytest.approx(1.0)


def test_predictor_rejects_small_history() -> None:
    with pytest.raises(ValueError, match="history_size"):
        TrendPredictor(history_size=MIN_SAMPLES - 1)
