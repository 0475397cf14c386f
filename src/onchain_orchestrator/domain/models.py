"""Dataclass domain models for classification, admission, routing, waves, and validation."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Final

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

# Weighted contribution of each resource dimension to overall usage.
USAGE_WEIGHTS: Final[Mapping[str, float]] = MappingProxyType(
    {
        "cpu": 0.25,
        "memory": 0.25,
        "tokens": 0.30,
        "network": 0.10,
        "chain": 0.10,
    }
)

_SIMPLE_UPPER: Final[float] = 0.3
_MODERATE_UPPER: Final[float] = 0.7


class ComplexityLevel(StrEnum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"

    @classmethod
    def from_score(cls, score: float) -> ComplexityLevel:
        if score < _SIMPLE_UPPER:
            return cls.SIMPLE
        if score < _MODERATE_UPPER:
            return cls.MODERATE
        return cls.COMPLEX


class Priority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def from_score(cls, score: float) -> Priority:
        """Map a [0,1] priority score onto a priority class."""
        if score < 0.3:
            return cls.LOW
        if score < 0.7:
            return cls.NORMAL
        if score < 0.9:
            return cls.HIGH
        return cls.CRITICAL


_PRIORITY_RANK: Final[dict[Priority, int]] = {
    Priority.LOW: 1,
    Priority.NORMAL: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


class Domain(StrEnum):
    DEFI = "defi"
    NFT = "nft"
    SECURITY = "security"
    WHALE = "whale"
    SENTIMENT = "sentiment"
    MARKET = "market"
    GOVERNANCE = "governance"
    BRIDGE = "bridge"
    YIELD = "yield"
    ALPHA = "alpha"
    RISK = "risk"


class OperationType(StrEnum):
    ANALYSIS = "analysis"
    TRACKING = "tracking"
    MONITORING = "monitoring"
    SCANNING = "scanning"
    VALIDATION = "validation"
    DISCOVERY = "discovery"
    OPTIMIZATION = "optimization"
    SIMULATION = "simulation"
    EXECUTION = "execution"


class Zone(StrEnum):
    """Resource pressure zones, ordered from healthiest to most constrained."""

    GREEN = "GREEN"
    YELLOW = "YELLOW"
    ORANGE = "ORANGE"
    RED = "RED"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _ZONE_ORDER.index(self) + 1

    def is_worse_than(self, other: Zone) -> bool:
        return self.rank > other.rank


_ZONE_ORDER: Final[tuple[Zone, ...]] = (
    Zone.GREEN,
    Zone.YELLOW,
    Zone.ORANGE,
    Zone.RED,
    Zone.CRITICAL,
)


class RouteStrategy(StrEnum):
    SIMPLE = "simple"
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"
    HYBRID = "hybrid"


class WaveStrategy(StrEnum):
    PROGRESSIVE = "progressive"
    SYSTEMATIC = "systematic"
    ADAPTIVE = "adaptive"
    ENTERPRISE = "enterprise"


class WaveStage(StrEnum):
    DISCOVERY = "discovery"
    PLANNING = "planning"
    IMPLEMENTATION = "implementation"
    VALIDATION = "validation"
    OPTIMIZATION = "optimization"


class WaveStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolledback"


class QualityStep(StrEnum):
    INPUT_VALIDATION = "INPUT_VALIDATION"
    SECURITY_CHECK = "SECURITY_CHECK"
    RESOURCE_AVAILABILITY = "RESOURCE_AVAILABILITY"
    COMPATIBILITY = "COMPATIBILITY"
    PERFORMANCE = "PERFORMANCE"
    DATA_INTEGRITY = "DATA_INTEGRITY"
    OUTPUT_VALIDATION = "OUTPUT_VALIDATION"
    EVIDENCE_GENERATION = "EVIDENCE_GENERATION"


QUALITY_STEP_ORDER: Final[tuple[QualityStep, ...]] = tuple(QualityStep)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ResourceEstimate:
    tokens: int
    time_ms: int
    memory_mb: float

    def __post_init__(self) -> None:
        _require_non_negative("ResourceEstimate.tokens", self.tokens)
        _require_non_negative("ResourceEstimate.time_ms", self.time_ms)
        _require_non_negative("ResourceEstimate.memory_mb", self.memory_mb)

    def to_dict(self) -> dict[str, JSONValue]:
        return {"tokens": self.tokens, "time_ms": self.time_ms, "memory_mb": self.memory_mb}


@dataclass(frozen=True, slots=True)
class RequestDescriptor:
    """Immutable classification of one tool call."""

    tool_id: str
    args: Mapping[str, object]
    complexity_score: float
    complexity_level: ComplexityLevel
    domains: frozenset[Domain]
    operations: frozenset[OperationType]
    confidence: float
    risk_score: float
    priority_score: float
    resource_estimate: ResourceEstimate
    suggested_workers: tuple[str, ...]
    wave_eligible: bool
    parallel_eligible: bool
    matched_rules: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.tool_id, str):
            raise ValueError("RequestDescriptor.tool_id must be a string")
        object.__setattr__(self, "args", MappingProxyType(dict(self.args)))
        object.__setattr__(self, "domains", frozenset(self.domains))
        object.__setattr__(self, "operations", frozenset(self.operations))
        object.__setattr__(self, "suggested_workers", tuple(self.suggested_workers))
        object.__setattr__(self, "matched_rules", tuple(self.matched_rules))
        for name in ("complexity_score", "confidence", "risk_score", "priority_score"):
            _require_unit_interval(f"RequestDescriptor.{name}", getattr(self, name))

    @property
    def operation_type_count(self) -> int:
        return len(self.operations)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "tool_id": self.tool_id,
            "complexity_score": self.complexity_score,
            "complexity_level": self.complexity_level.value,
            "domains": sorted(domain.value for domain in self.domains),
            "operations": sorted(op.value for op in self.operations),
            "confidence": self.confidence,
            "risk_score": self.risk_score,
            "priority_score": self.priority_score,
            "resource_estimate": self.resource_estimate.to_dict(),
            "suggested_workers": list(self.suggested_workers),
            "wave_eligible": self.wave_eligible,
            "parallel_eligible": self.parallel_eligible,
            "matched_rules": list(self.matched_rules),
        }


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ResourceSnapshot:
    """Point-in-time resource reading; every percentage is sampled independently."""

    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    token_usage_percent: float = 0.0
    rate_limit_percent: float = 0.0
    blockchain_congestion_percent: float = 0.0
    available_memory_mb: float | None = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        for name in (
            "cpu_percent",
            "memory_percent",
            "token_usage_percent",
            "rate_limit_percent",
            "blockchain_congestion_percent",
        ):
            _require_percent(f"ResourceSnapshot.{name}", getattr(self, name))
        if self.available_memory_mb is not None:
            _require_non_negative("ResourceSnapshot.available_memory_mb", self.available_memory_mb)
        if self.captured_at.tzinfo is None:
            object.__setattr__(self, "captured_at", self.captured_at.replace(tzinfo=UTC))

    @property
    def overall_usage(self) -> float:
        return (
            self.cpu_percent * USAGE_WEIGHTS["cpu"]
            + self.memory_percent * USAGE_WEIGHTS["memory"]
            + self.token_usage_percent * USAGE_WEIGHTS["tokens"]
            + self.rate_limit_percent * USAGE_WEIGHTS["network"]
            + self.blockchain_congestion_percent * USAGE_WEIGHTS["chain"]
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "cpu_percent": self.cpu_percent,
            "memory_percent": self.memory_percent,
            "token_usage_percent": self.token_usage_percent,
            "rate_limit_percent": self.rate_limit_percent,
            "blockchain_congestion_percent": self.blockchain_congestion_percent,
            "available_memory_mb": self.available_memory_mb,
            "overall_usage": round(self.overall_usage, 4),
            "captured_at": self.captured_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class AdmissionDecision:
    allowed: bool
    reason: str | None
    zone: Zone
    usage: float

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "zone": self.zone.value,
            "usage": round(self.usage, 4),
        }


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RouteDecision:
    ordered_workers: tuple[str, ...]
    strategy: RouteStrategy
    priority: Priority
    fallback_workers: tuple[str, ...]
    parallel_allowed: bool
    cache_enabled: bool
    requires_validation: bool

    def __post_init__(self) -> None:
        serial = (RouteStrategy.SIMPLE, RouteStrategy.SEQUENTIAL)
        if self.parallel_allowed and self.strategy in serial:
            raise ValueError(
                f"parallel_allowed is incompatible with strategy {self.strategy.value}"
            )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "ordered_workers": list(self.ordered_workers),
            "strategy": self.strategy.value,
            "priority": self.priority.value,
            "fallback_workers": list(self.fallback_workers),
            "parallel_allowed": self.parallel_allowed,
            "cache_enabled": self.cache_enabled,
            "requires_validation": self.requires_validation,
        }


# ---------------------------------------------------------------------------
# Waves
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WaveTask:
    task_id: str
    kind: str
    description: str
    tools: tuple[str, ...] = ()
    inputs: Mapping[str, object] = field(default_factory=dict)
    can_parallelize: bool = False

    def __post_init__(self) -> None:
        if not self.task_id:
            raise ValueError("WaveTask.task_id must be non-empty")
        object.__setattr__(self, "tools", tuple(self.tools))
        object.__setattr__(self, "inputs", MappingProxyType(dict(self.inputs)))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "task_id": self.task_id,
            "kind": self.kind,
            "description": self.description,
            "tools": list(self.tools),
            "can_parallelize": self.can_parallelize,
        }


@dataclass(slots=True)
class Wave:
    """One stage of a wave plan. ``status`` and timestamps change during execution."""

    wave_id: str
    stage: WaveStage
    sequence: int
    tasks: tuple[WaveTask, ...]
    dependencies: tuple[str, ...] = ()
    risk_level: float = 0.0
    requires_validation: bool = False
    status: WaveStatus = WaveStatus.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.wave_id:
            raise ValueError("Wave.wave_id must be non-empty")
        if self.sequence < 0:
            raise ValueError("Wave.sequence must be >= 0")
        if self.wave_id in self.dependencies:
            raise ValueError(f"wave {self.wave_id} cannot depend on itself")
        self.tasks = tuple(self.tasks)
        self.dependencies = tuple(self.dependencies)
        _require_unit_interval("Wave.risk_level", self.risk_level)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "wave_id": self.wave_id,
            "stage": self.stage.value,
            "sequence": self.sequence,
            "tasks": [task.to_dict() for task in self.tasks],
            "dependencies": list(self.dependencies),
            "risk_level": self.risk_level,
            "requires_validation": self.requires_validation,
            "status": self.status.value,
        }


@dataclass(frozen=True, slots=True)
class RiskAssessment:
    level: float
    factors: tuple[str, ...] = ()
    mitigations: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "level": self.level,
            "factors": list(self.factors),
            "mitigations": list(self.mitigations),
        }


@dataclass(frozen=True, slots=True)
class WavePlan:
    plan_id: str
    strategy: WaveStrategy
    waves: tuple[Wave, ...]
    checkpoints: frozenset[str]
    estimated_duration_ms: int
    estimated_tokens: int
    risk_assessment: RiskAssessment

    def __post_init__(self) -> None:
        object.__setattr__(self, "waves", tuple(self.waves))
        object.__setattr__(self, "checkpoints", frozenset(self.checkpoints))
        wave_ids = [wave.wave_id for wave in self.waves]
        if len(set(wave_ids)) != len(wave_ids):
            raise ValueError("WavePlan wave ids must be unique")
        unknown = self.checkpoints.difference(wave_ids)
        if unknown:
            raise ValueError(f"WavePlan checkpoints reference unknown waves: {sorted(unknown)}")
        known = set(wave_ids)
        for wave in self.waves:
            missing = [dep for dep in wave.dependencies if dep not in known]
            if missing:
                raise ValueError(f"wave {wave.wave_id} depends on unknown waves: {missing}")

    def wave(self, wave_id: str) -> Wave:
        for wave in self.waves:
            if wave.wave_id == wave_id:
                return wave
        raise KeyError(wave_id)

    @property
    def wave_ids(self) -> tuple[str, ...]:
        return tuple(wave.wave_id for wave in self.waves)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "plan_id": self.plan_id,
            "strategy": self.strategy.value,
            "waves": [wave.to_dict() for wave in self.waves],
            "checkpoints": sorted(self.checkpoints),
            "estimated_duration_ms": self.estimated_duration_ms,
            "estimated_tokens": self.estimated_tokens,
            "risk_assessment": self.risk_assessment.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class WaveMetrics:
    duration_ms: int = 0
    tokens_used: int = 0
    tools_used: tuple[str, ...] = ()
    errors_encountered: int = 0

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "duration_ms": self.duration_ms,
            "tokens_used": self.tokens_used,
            "tools_used": list(self.tools_used),
            "errors_encountered": self.errors_encountered,
        }


@dataclass(frozen=True, slots=True)
class WaveResult:
    wave_id: str
    success: bool
    outputs: Mapping[str, object]
    metrics: WaveMetrics = field(default_factory=WaveMetrics)
    evidence: Mapping[str, object] = field(default_factory=dict)
    errors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "outputs", MappingProxyType(dict(self.outputs)))
        object.__setattr__(self, "evidence", MappingProxyType(dict(self.evidence)))
        object.__setattr__(self, "errors", tuple(self.errors))


@dataclass(frozen=True, slots=True)
class Checkpoint:
    wave_id: str
    created_at: datetime
    result: WaveResult
    state: Mapping[str, object]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StepResult:
    step: QualityStep
    passed: bool
    score: float
    threshold: float
    issues: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    evidence: Mapping[str, object] = field(default_factory=dict)
    duration_ms: int = 0

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 100.0:
            raise ValueError(f"StepResult.score must be within [0, 100], got {self.score}")
        object.__setattr__(self, "issues", tuple(self.issues))
        object.__setattr__(self, "warnings", tuple(self.warnings))
        object.__setattr__(self, "evidence", MappingProxyType(dict(self.evidence)))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "step": self.step.value,
            "passed": self.passed,
            "score": self.score,
            "threshold": self.threshold,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True, slots=True)
class ValidationResult:
    operation: str
    steps: tuple[StepResult, ...]
    overall_score: float
    context_retention: float
    passed: bool
    skipped_steps: tuple[QualityStep, ...] = ()
    recommendations: tuple[str, ...] = ()
    evidence: Mapping[str, object] = field(default_factory=dict)
    cached: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "skipped_steps", tuple(self.skipped_steps))
        object.__setattr__(self, "recommendations", tuple(self.recommendations))
        object.__setattr__(self, "evidence", MappingProxyType(dict(self.evidence)))

    def step(self, step: QualityStep) -> StepResult | None:
        for result in self.steps:
            if result.step is step:
                return result
        return None

    @property
    def issues(self) -> tuple[str, ...]:
        return tuple(issue for result in self.steps for issue in result.issues)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "operation": self.operation,
            "steps": [result.to_dict() for result in self.steps],
            "skipped_steps": [step.value for step in self.skipped_steps],
            "overall_score": self.overall_score,
            "context_retention": self.context_retention,
            "recommendations": list(self.recommendations),
            "passed": self.passed,
            "cached": self.cached,
        }


def _require_unit_interval(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or math.isnan(value) or not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value!r}")


def _require_percent(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or math.isnan(value) or not 0.0 <= value <= 100.0:
        raise ValueError(f"{name} must be within [0, 100], got {value!r}")


def _require_non_negative(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or math.isnan(value) or value < 0:
        raise ValueError(f"{name} must be >= 0, got {value!r}")


__all__ = [
    "QUALITY_STEP_ORDER",
    "USAGE_WEIGHTS",
    "AdmissionDecision",
    "Checkpoint",
    "ComplexityLevel",
    "Domain",
    "JSONValue",
    "OperationType",
    "Priority",
    "QualityStep",
    "RequestDescriptor",
    "ResourceEstimate",
    "ResourceSnapshot",
    "RiskAssessment",
    "RouteDecision",
    "RouteStrategy",
    "StepResult",
    "ValidationResult",
    "Wave",
    "WaveMetrics",
    "WavePlan",
    "WaveResult",
    "WaveStage",
    "WaveStatus",
    "WaveStrategy",
    "WaveTask",
    "Zone",
]
