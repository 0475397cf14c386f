"""Resource zone catalog: usage ranges, allowed actions, restrictions, entry optimizations."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

from onchain_orchestrator.domain.models import JSONValue, Zone


@dataclass(frozen=True, slots=True)
class ZoneSpec:
    """Static description of one zone. ``lower`` is inclusive, ``upper`` exclusive
    except for the top zone, which also contains 100."""

    zone: Zone
    lower: float
    upper: float
    actions: tuple[str, ...]
    restrictions: tuple[str, ...]
    priority: int
    recommendation: str
    optimizations: tuple[str, ...]

    def __post_init__(self) -> None:
        if not 0.0 <= self.lower < self.upper <= 100.0:
            raise ValueError(
                f"invalid range for zone {self.zone.value}: [{self.lower}, {self.upper})"
            )

    def contains(self, usage: float) -> bool:
        if self.upper >= 100.0:
            return self.lower <= usage <= self.upper
        return self.lower <= usage < self.upper

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "zone": self.zone.value,
            "range": [self.lower, self.upper],
            "actions": list(self.actions),
            "restrictions": list(self.restrictions),
            "priority": self.priority,
            "recommendation": self.recommendation,
        }


ZONE_SPECS: Final[tuple[ZoneSpec, ...]] = (
    ZoneSpec(
        zone=Zone.GREEN,
        lower=0.0,
        upper=60.0,
        actions=(
            "full_operations",
            "predictive_monitoring",
            "aggressive_caching",
            "parallel_processing",
            "speculative_execution",
        ),
        restrictions=(),
        priority=1,
        recommendation="System healthy, maintain current operations",
        optimizations=("enable_all",),
    ),
    ZoneSpec(
        zone=Zone.YELLOW,
        lower=60.0,
        upper=75.0,
        actions=(
            "resource_optimization",
            "cache_prioritization",
            "suggest_compression",
            "defer_non_critical",
        ),
        restrictions=("limit_parallel_operations", "reduce_speculation"),
        priority=2,
        recommendation="Consider enabling compression and deferring non-critical tasks",
        optimizations=("compress_soft", "cache_priority_high"),
    ),
    ZoneSpec(
        zone=Zone.ORANGE,
        lower=75.0,
        upper=85.0,
        actions=(
            "warning_alerts",
            "aggressive_optimization",
            "force_compression",
            "queue_operations",
        ),
        restrictions=("block_resource_intensive", "disable_caching_new", "limit_api_calls"),
        priority=3,
        recommendation="Recommend pausing new operations and clearing cache",
        optimizations=("compress_hard", "defer_operations", "gc"),
    ),
    ZoneSpec(
        zone=Zone.RED,
        lower=85.0,
        upper=95.0,
        actions=("critical_only", "maximum_compression", "emergency_gc", "kill_non_essential"),
        restrictions=(
            "block_new_operations",
            "force_sequential",
            "minimal_logging",
            "disable_analytics",
        ),
        priority=4,
        recommendation="Critical: Stop all non-essential operations immediately",
        optimizations=("critical_only", "kill_non_essential", "gc"),
    ),
    ZoneSpec(
        zone=Zone.CRITICAL,
        lower=95.0,
        upper=100.0,
        actions=(
            "emergency_protocols",
            "system_preservation",
            "data_dump",
            "graceful_shutdown_prep",
        ),
        restrictions=(
            "essential_only",
            "no_new_operations",
            "immediate_cleanup",
            "prepare_recovery",
        ),
        priority=5,
        recommendation="Emergency: Prepare for system preservation and recovery",
        optimizations=("emergency_protocol", "prepare_shutdown"),
    ),
)

ZONE_BY_NAME: Final[Mapping[Zone, ZoneSpec]] = {spec.zone: spec for spec in ZONE_SPECS}


def zone_for_usage(usage: float) -> Zone:
    """Map overall usage (percent) onto its zone. Out-of-range values clamp."""

    if math.isnan(usage) or usage < 0.0:
        return Zone.GREEN
    if usage > 100.0:
        return Zone.CRITICAL
    for spec in ZONE_SPECS:
        if spec.contains(usage):
            return spec.zone
    return Zone.CRITICAL


def spec_for(zone: Zone) -> ZoneSpec:
    return ZONE_BY_NAME[zone]


__all__ = ["ZONE_BY_NAME", "ZONE_SPECS", "ZoneSpec", "spec_for", "zone_for_usage"]
