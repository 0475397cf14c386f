"""Short-horizon usage trend prediction over a rolling history of snapshots."""

from __future__ import annotations

import math
import statistics
from collections import deque
from dataclasses import dataclass
from typing import Final

from onchain_orchestrator.control_plane.zones import spec_for, zone_for_usage
from onchain_orchestrator.domain.models import JSONValue, ResourceSnapshot, Zone

# Weights over per-dimension slopes (cpu, memory, tokens, rate limit).
TREND_WEIGHTS: Final[tuple[float, float, float, float]] = (0.25, 0.25, 0.30, 0.20)
MIN_SAMPLES: Final[int] = 10


@dataclass(frozen=True, slots=True)
class ZonePrediction:
    current_zone: Zone
    predicted_zone: Zone
    predicted_usage: float
    confidence: float
    weighted_trend: float
    time_to_transition_ms: float | None

    @property
    def is_worse(self) -> bool:
        return self.predicted_zone.is_worse_than(self.current_zone)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "current_zone": self.current_zone.value,
            "predicted_zone": self.predicted_zone.value,
            "predicted_usage": round(self.predicted_usage, 4),
            "confidence": round(self.confidence, 4),
            "weighted_trend": round(self.weighted_trend, 6),
            "time_to_transition_ms": (
                None if self.time_to_transition_ms is None else round(self.time_to_transition_ms)
            ),
        }


class TrendPredictor:
    """Least-squares slope of each dimension over the most recent samples.

    Not thread-safe on its own; the governor serializes writers.
    """

    def __init__(
        self,
        *,
        history_size: int = 100,
        look_ahead_ms: int = 30_000,
        interval_ms: int = 5000,
    ) -> None:
        if history_size < MIN_SAMPLES:
            raise ValueError(f"history_size must be >= {MIN_SAMPLES}")
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        self._history: deque[tuple[float, float, float, float]] = deque(maxlen=history_size)
        self._look_ahead_ms = look_ahead_ms
        self._interval_ms = interval_ms

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @interval_ms.setter
    def interval_ms(self, value: int) -> None:
        if value <= 0:
            raise ValueError("interval_ms must be > 0")
        self._interval_ms = value

    def __len__(self) -> int:
        return len(self._history)

    def record(self, snapshot: ResourceSnapshot) -> None:
        self._history.append(
            (
                snapshot.cpu_percent,
                snapshot.memory_percent,
                snapshot.token_usage_percent,
                snapshot.rate_limit_percent,
            )
        )

    def predict(self, current_usage: float) -> ZonePrediction | None:
        """Project usage ``look_ahead_ms`` ahead; ``None`` until enough samples exist."""

        if len(self._history) < MIN_SAMPLES:
            return None
        window = list(self._history)[-MIN_SAMPLES:]
        slopes = [_slope([sample[dim] for sample in window]) for dim in range(4)]
        weighted_trend = sum(weight * slope for weight, slope in zip(TREND_WEIGHTS, slopes))

        steps_ahead = self._look_ahead_ms / self._interval_ms
        predicted_usage = current_usage + weighted_trend * steps_ahead
        confidence = max(0.0, min(1.0, 1.0 - statistics.pstdev(slopes)))

        current_zone = zone_for_usage(current_usage)
        predicted_zone = zone_for_usage(predicted_usage)
        return ZonePrediction(
            current_zone=current_zone,
            predicted_zone=predicted_zone,
            predicted_usage=predicted_usage,
            confidence=confidence,
            weighted_trend=weighted_trend,
            time_to_transition_ms=self._time_to_transition(
                current_usage, current_zone, predicted_zone, weighted_trend
            ),
        )

    def _time_to_transition(
        self, usage: float, current: Zone, predicted: Zone, trend: float
    ) -> float | None:
        if predicted is current or trend == 0.0:
            return None
        if predicted.is_worse_than(current):
            distance = spec_for(predicted).lower - usage
        else:
            distance = usage - spec_for(current).lower
        return abs(distance / trend) * self._interval_ms


def _slope(values: list[float]) -> float:
    count = len(values)
    x_mean = (count - 1) / 2
    y_mean = math.fsum(values) / count
    numerator = math.fsum((index - x_mean) * (value - y_mean) for index, value in enumerate(values))
    denominator = math.fsum((index - x_mean) ** 2 for index in range(count))
    return numerator / denominator if denominator else 0.0


__all__ = ["MIN_SAMPLES", "TREND_WEIGHTS", "TrendPredictor", "ZonePrediction"]
