"""Request classifier for inbound tool calls.

File: src/onchain_orchestrator/control_plane/classifier.py

Purpose
- Turn ``(tool_id, args)`` into an immutable ``RequestDescriptor``: domains,
  operation types, complexity/risk/priority scores, a resource estimate, the
  suggested worker set, and wave/parallel eligibility.
- Deterministic: the same input yields the same descriptor. A bounded memo
  only saves work; eviction never changes results.

Heuristics
- Keyword rules are plain case-insensitive substring matches over a text blob
  made of the tool id and every string-valued argument. They are intentionally
  simple and tunable via the rule table below.

Failure semantics
- ``classify`` never raises. Internal errors yield a low-confidence default
  descriptor and are logged.
"""

from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any, Final

import structlog

from onchain_orchestrator import constants as c
from onchain_orchestrator.domain.models import (
    ComplexityLevel,
    Domain,
    OperationType,
    RequestDescriptor,
    ResourceEstimate,
)
from onchain_orchestrator.utils.args import arg_number, arg_value
from onchain_orchestrator.utils.cache import TTLCache
from onchain_orchestrator.utils.hashing import content_key


@dataclass(frozen=True, slots=True)
class DetectionRule:
    name: str
    keywords: tuple[str, ...]
    domains: tuple[Domain, ...]
    operations: tuple[OperationType, ...]
    complexity_modifier: float
    base_confidence: float


DETECTION_RULES: Final[tuple[DetectionRule, ...]] = (
    DetectionRule(
        "defi_yield",
        ("yield", "apy", "apr", "farming", "liquidity", "pool", "stake", "rewards"),
        (Domain.DEFI, Domain.YIELD),
        (OperationType.OPTIMIZATION, OperationType.ANALYSIS),
        0.6,
        0.85,
    ),
    DetectionRule(
        "security_audit",
        ("audit", "vulnerability", "exploit", "rug", "honeypot", "malicious", "hack"),
        (Domain.SECURITY,),
        (OperationType.SCANNING, OperationType.VALIDATION),
        0.8,
        0.95,
    ),
    DetectionRule(
        "whale_activity",
        ("whale", "large holder", "accumulation", "distribution", "wallet", "movement"),
        (Domain.WHALE,),
        (OperationType.TRACKING, OperationType.MONITORING),
        0.5,
        0.9,
    ),
    DetectionRule(
        "alpha_hunting",
        ("alpha", "opportunity", "gem", "early", "trending", "momentum", "breakout"),
        (Domain.ALPHA,),
        (OperationType.DISCOVERY, OperationType.ANALYSIS),
        0.7,
        0.75,
    ),
    DetectionRule(
        "nft_analysis",
        ("nft", "collection", "mint", "rarity", "floor", "trait", "metadata"),
        (Domain.NFT,),
        (OperationType.ANALYSIS, OperationType.VALIDATION),
        0.5,
        0.85,
    ),
    DetectionRule(
        "market_analysis",
        ("price", "volume", "market cap", "trend", "resistance", "support", "chart"),
        (Domain.MARKET,),
        (OperationType.ANALYSIS, OperationType.MONITORING),
        0.4,
        0.8,
    ),
    DetectionRule(
        "sentiment_analysis",
        ("sentiment", "social", "twitter", "reddit", "discord", "buzz", "mentions"),
        (Domain.SENTIMENT,),
        (OperationType.ANALYSIS, OperationType.MONITORING),
        0.5,
        0.7,
    ),
    DetectionRule(
        "bridge_analysis",
        ("bridge", "cross-chain", "multichain", "interoperability", "wrapped"),
        (Domain.BRIDGE,),
        (OperationType.ANALYSIS, OperationType.VALIDATION),
        0.7,
        0.85,
    ),
    DetectionRule(
        "governance_tracking",
        ("governance", "proposal", "vote", "dao", "treasury", "delegate"),
        (Domain.GOVERNANCE,),
        (OperationType.TRACKING, OperationType.ANALYSIS),
        0.6,
        0.8,
    ),
    DetectionRule(
        "risk_assessment",
        ("risk", "exposure", "volatility", "correlation", "var", "drawdown"),
        (Domain.RISK,),
        (OperationType.ANALYSIS, OperationType.SIMULATION),
        0.8,
        0.9,
    ),
)

# Workers each tool fans out to before domain-specific additions.
TOOL_WORKERS: Final[Mapping[str, tuple[str, ...]]] = {
    c.TOOL_ANALYZE: (c.WORKER_RUG_DETECTOR, c.WORKER_ALPHA_HUNTER, c.WORKER_TOKEN_RESEARCHER),
    c.TOOL_SECURITY: (c.WORKER_RUG_DETECTOR,),
    c.TOOL_HUNT: (c.WORKER_ALPHA_HUNTER,),
    c.TOOL_TRACK: (c.WORKER_WHALE_TRACKER,),
    c.TOOL_SENTIMENT: (c.WORKER_SENTIMENT_ANALYZER,),
    c.TOOL_RESEARCH: (c.WORKER_TOKEN_RESEARCHER,),
    c.TOOL_DEFI: (c.WORKER_DEFI_ANALYZER,),
    c.TOOL_BRIDGE: (c.WORKER_CROSS_CHAIN_NAVIGATOR,),
    c.TOOL_PORTFOLIO: (c.WORKER_PORTFOLIO_TRACKER,),
    c.TOOL_MARKET: (c.WORKER_MARKET_ANALYZER,),
}

DOMAIN_WORKERS: Final[Mapping[Domain, str]] = {
    Domain.DEFI: c.WORKER_DEFI_ANALYZER,
    Domain.YIELD: c.WORKER_YIELD_OPTIMIZER,
    Domain.SECURITY: c.WORKER_RUG_DETECTOR,
    Domain.WHALE: c.WORKER_WHALE_TRACKER,
    Domain.ALPHA: c.WORKER_ALPHA_HUNTER,
    Domain.NFT: c.WORKER_NFT_VALUATOR,
    Domain.MARKET: c.WORKER_MARKET_ANALYZER,
    Domain.SENTIMENT: c.WORKER_SENTIMENT_ANALYZER,
    Domain.BRIDGE: c.WORKER_CROSS_CHAIN_NAVIGATOR,
    Domain.GOVERNANCE: c.WORKER_GOVERNANCE_ADVISOR,
    Domain.RISK: c.WORKER_RISK_ANALYZER,
}

# --- Complexity signals ---
_BASE_COMPLEXITY: Final[float] = 0.1
_RULE_COMPLEXITY_WEIGHT: Final[float] = 0.2
_MANY_DOMAINS_BONUS: Final[float] = 0.2
_VERY_MANY_DOMAINS_BONUS: Final[float] = 0.15
_MANY_ARGS_BONUS: Final[float] = 0.1
_VERY_MANY_ARGS_BONUS: Final[float] = 0.15
_DEEP_BONUS: Final[float] = 0.2
_HISTORY_BONUS: Final[float] = 0.15
_MULTI_CHAIN_BONUS: Final[float] = 0.25
_REALTIME_BONUS: Final[float] = 0.2

# --- Risk signals ---
_BASE_RISK: Final[float] = 0.1
_RISK_BY_DOMAIN: Final[Mapping[Domain, float]] = {
    Domain.SECURITY: 0.3,
    Domain.BRIDGE: 0.25,
    Domain.ALPHA: 0.2,
}
_RISK_BY_OPERATION: Final[Mapping[OperationType, float]] = {
    OperationType.EXECUTION: 0.3,
    OperationType.OPTIMIZATION: 0.2,
}
_MAINNET_RISK: Final[float] = 0.2
_HIGH_VALUE_RISK: Final[float] = 0.3
_HIGH_VALUE_THRESHOLD: Final[float] = 10_000.0

# --- Priority signals ---
_BASE_PRIORITY: Final[float] = 0.3
_PRIORITY_BY_DOMAIN: Final[Mapping[Domain, float]] = {
    Domain.SECURITY: 0.3,
    Domain.ALPHA: 0.2,
    Domain.WHALE: 0.15,
}
_PRIORITY_RISK_WEIGHT: Final[float] = 0.2
_PRIORITY_COMPLEXITY_WEIGHT: Final[float] = 0.15

# --- Estimates per complexity level ---
_TOKENS_BY_LEVEL: Final[Mapping[ComplexityLevel, int]] = {
    ComplexityLevel.SIMPLE: 5_000,
    ComplexityLevel.MODERATE: 15_000,
    ComplexityLevel.COMPLEX: 30_000,
}
_TIME_MS_BY_LEVEL: Final[Mapping[ComplexityLevel, int]] = {
    ComplexityLevel.SIMPLE: 5_000,
    ComplexityLevel.MODERATE: 30_000,
    ComplexityLevel.COMPLEX: 180_000,
}
_MEMORY_MB_BY_LEVEL: Final[Mapping[ComplexityLevel, float]] = {
    ComplexityLevel.SIMPLE: 100.0,
    ComplexityLevel.MODERATE: 250.0,
    ComplexityLevel.COMPLEX: 500.0,
}
_TOKENS_PER_DOMAIN: Final[int] = 2_000
_MEMORY_MB_PER_DOMAIN: Final[float] = 50.0
_SIMULATION_TIME_FACTOR: Final[float] = 1.5
_OPTIMIZATION_TIME_FACTOR: Final[float] = 1.3

_WAVE_OPERATIONS: Final[frozenset[OperationType]] = frozenset(
    {OperationType.OPTIMIZATION, OperationType.SIMULATION, OperationType.EXECUTION}
)
_PARALLEL_OPERATIONS: Final[frozenset[OperationType]] = frozenset(
    {OperationType.SCANNING, OperationType.MONITORING, OperationType.DISCOVERY}
)

_DEFAULT_CONFIDENCE: Final[float] = 0.5
_QUICK_DEPTH_WORKER_LIMIT: Final[int] = 2
_CONFIDENCE_STEP: Final[float] = 0.05
_MIN_CONFIDENCE: Final[float] = 0.1


class RequestClassifier:
    """Stateless scoring over the rule table plus a bounded memo and feedback map."""

    def __init__(
        self,
        *,
        rules: tuple[DetectionRule, ...] = DETECTION_RULES,
        cache_size: int = 1024,
        logger: Any | None = None,
    ) -> None:
        self._rules = rules
        self._memo: TTLCache[RequestDescriptor] = TTLCache(max_entries=cache_size)
        self._adjustments: dict[str, float] = {}
        self._lock = threading.Lock()
        self._classifications = 0
        self._complexity_total = 0.0
        self._domain_counts: Counter[str] = Counter()
        self._operation_counts: Counter[str] = Counter()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def classify(self, tool_id: str, args: Mapping[str, object] | None = None) -> RequestDescriptor:
        """Classify one tool call. Never raises."""

        arguments = dict(args or {})
        try:
            key = content_key(tool_id, arguments)
            descriptor = self._memo.get(key)
            if descriptor is None:
                descriptor = self._score(tool_id, arguments)
                self._memo.put(key, descriptor)
            with self._lock:
                adjustment = self._adjustments.get(key, 0.0)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "classification_failed",
                tool_id=str(tool_id),
                error=f"{type(exc).__name__}: {exc}",
            )
            descriptor = default_descriptor(str(tool_id), arguments)
            adjustment = 0.0

        if adjustment:
            descriptor = replace(
                descriptor,
                confidence=_clamp(descriptor.confidence + adjustment, _MIN_CONFIDENCE, 1.0),
            )
        self._record(descriptor)
        return descriptor

    def record_outcome(
        self, tool_id: str, args: Mapping[str, object] | None, *, success: bool
    ) -> float:
        """Nudge confidence for this exact request and return the new adjustment."""

        key = content_key(tool_id, dict(args or {}))
        step = _CONFIDENCE_STEP if success else -_CONFIDENCE_STEP
        with self._lock:
            updated = round(self._adjustments.get(key, 0.0) + step, 4)
            self._adjustments[key] = _clamp(updated, -1.0, 1.0)
            return self._adjustments[key]

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            count = self._classifications
            return {
                "classifications": count,
                "average_complexity": self._complexity_total / count if count else 0.0,
                "domain_distribution": dict(sorted(self._domain_counts.items())),
                "operation_distribution": dict(sorted(self._operation_counts.items())),
                "memo": self._memo.stats().to_dict(),
            }

    def _record(self, descriptor: RequestDescriptor) -> None:
        with self._lock:
            self._classifications += 1
            self._complexity_total += descriptor.complexity_score
            self._domain_counts.update(domain.value for domain in descriptor.domains)
            self._operation_counts.update(op.value for op in descriptor.operations)

    def _score(self, tool_id: str, args: Mapping[str, object]) -> RequestDescriptor:
        text = _text_blob(tool_id, args)
        matched = [rule for rule in self._rules if any(word in text for word in rule.keywords)]

        domains: list[Domain] = []
        operations: set[OperationType] = set()
        for rule in matched:
            for domain in rule.domains:
                if domain not in domains:
                    domains.append(domain)
            operations.update(rule.operations)

        complexity = _score_complexity(matched, domains, args)
        level = ComplexityLevel.from_score(complexity)
        risk = _score_risk(domains, operations, args)
        priority = _score_priority(domains, risk, complexity)
        confidence = (
            sum(rule.base_confidence for rule in matched) / len(matched)
            if matched
            else _DEFAULT_CONFIDENCE
        )

        descriptor = RequestDescriptor(
            tool_id=tool_id,
            args=args,
            complexity_score=complexity,
            complexity_level=level,
            domains=frozenset(domains),
            operations=frozenset(operations),
            confidence=confidence,
            risk_score=risk,
            priority_score=priority,
            resource_estimate=_estimate(level, len(domains), operations),
            suggested_workers=_suggest_workers(tool_id, domains, args),
            wave_eligible=(
                complexity >= 0.7 or len(domains) > 2 or bool(operations & _WAVE_OPERATIONS)
            ),
            parallel_eligible=len(domains) > 2 or bool(operations & _PARALLEL_OPERATIONS),
            matched_rules=tuple(rule.name for rule in matched),
        )
        self._logger.debug(
            "request_classified",
            tool_id=tool_id,
            rules=list(descriptor.matched_rules),
            complexity=round(complexity, 4),
            level=level.value,
        )
        return descriptor


def default_descriptor(tool_id: str, args: Mapping[str, object] | None = None) -> RequestDescriptor:
    """Low-confidence descriptor used when classification cannot proceed."""

    level = ComplexityLevel.from_score(_BASE_COMPLEXITY)
    return RequestDescriptor(
        tool_id=tool_id,
        args=dict(args or {}),
        complexity_score=_BASE_COMPLEXITY,
        complexity_level=level,
        domains=frozenset(),
        operations=frozenset(),
        confidence=_DEFAULT_CONFIDENCE,
        risk_score=_BASE_RISK,
        priority_score=_BASE_PRIORITY,
        resource_estimate=_estimate(level, 0, frozenset()),
        suggested_workers=TOOL_WORKERS.get(tool_id, ()),
        wave_eligible=False,
        parallel_eligible=False,
    )


_DEFAULT_CLASSIFIER: RequestClassifier | None = None
_DEFAULT_LOCK = threading.Lock()


def classify(tool_id: str, args: Mapping[str, object] | None = None) -> RequestDescriptor:
    """Classify with a process-wide default classifier."""

    global _DEFAULT_CLASSIFIER
    with _DEFAULT_LOCK:
        if _DEFAULT_CLASSIFIER is None:
            _DEFAULT_CLASSIFIER = RequestClassifier()
        classifier = _DEFAULT_CLASSIFIER
    return classifier.classify(tool_id, args)


def _text_blob(tool_id: str, args: Mapping[str, object]) -> str:
    parts = [tool_id]
    parts.extend(value for value in args.values() if isinstance(value, str))
    return " ".join(parts).lower()


def _score_complexity(
    matched: list[DetectionRule], domains: list[Domain], args: Mapping[str, object]
) -> float:
    score = _BASE_COMPLEXITY
    score += sum(rule.complexity_modifier * _RULE_COMPLEXITY_WEIGHT for rule in matched)
    if len(domains) > 2:
        score += _MANY_DOMAINS_BONUS
    if len(domains) > 3:
        score += _VERY_MANY_DOMAINS_BONUS
    if len(args) > 5:
        score += _MANY_ARGS_BONUS
    if len(args) > 10:
        score += _VERY_MANY_ARGS_BONUS
    if arg_value(args, "depth") == "deep":
        score += _DEEP_BONUS
    if _truthy(arg_value(args, "include_history")):
        score += _HISTORY_BONUS
    if _truthy(arg_value(args, "multi_chain")):
        score += _MULTI_CHAIN_BONUS
    if _truthy(arg_value(args, "realtime")) or _truthy(arg_value(args, "live")):
        score += _REALTIME_BONUS
    return _clamp(score, 0.0, 1.0)


def _score_risk(
    domains: list[Domain], operations: set[OperationType], args: Mapping[str, object]
) -> float:
    score = _BASE_RISK
    score += sum(_RISK_BY_DOMAIN.get(domain, 0.0) for domain in domains)
    score += sum(_RISK_BY_OPERATION.get(op, 0.0) for op in operations)
    if arg_value(args, "network") == "mainnet":
        score += _MAINNET_RISK
    value = arg_number(args, "value")
    if value is not None and value > _HIGH_VALUE_THRESHOLD:
        score += _HIGH_VALUE_RISK
    return _clamp(score, 0.0, 1.0)


def _score_priority(domains: list[Domain], risk: float, complexity: float) -> float:
    score = _BASE_PRIORITY
    score += sum(_PRIORITY_BY_DOMAIN.get(domain, 0.0) for domain in domains)
    score += risk * _PRIORITY_RISK_WEIGHT + complexity * _PRIORITY_COMPLEXITY_WEIGHT
    return _clamp(score, 0.0, 1.0)


def _estimate(
    level: ComplexityLevel,
    domain_count: int,
    operations: set[OperationType] | frozenset[OperationType],
) -> ResourceEstimate:
    time_ms = float(_TIME_MS_BY_LEVEL[level])
    if OperationType.SIMULATION in operations:
        time_ms *= _SIMULATION_TIME_FACTOR
    if OperationType.OPTIMIZATION in operations:
        time_ms *= _OPTIMIZATION_TIME_FACTOR
    return ResourceEstimate(
        tokens=_TOKENS_BY_LEVEL[level] + _TOKENS_PER_DOMAIN * domain_count,
        time_ms=round(time_ms),
        memory_mb=_MEMORY_MB_BY_LEVEL[level] + _MEMORY_MB_PER_DOMAIN * domain_count,
    )


def _suggest_workers(
    tool_id: str, domains: list[Domain], args: Mapping[str, object]
) -> tuple[str, ...]:
    workers: list[str] = list(TOOL_WORKERS.get(tool_id, ()))
    for domain in domains:
        worker = DOMAIN_WORKERS.get(domain)
        if worker is not None and worker not in workers:
            workers.append(worker)
    if arg_value(args, "depth") == "quick" and len(workers) > _QUICK_DEPTH_WORKER_LIMIT:
        workers = workers[:_QUICK_DEPTH_WORKER_LIMIT]
    return tuple(workers)


def _truthy(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


__all__ = [
    "DETECTION_RULES",
    "DOMAIN_WORKERS",
    "TOOL_WORKERS",
    "DetectionRule",
    "RequestClassifier",
    "classify",
    "default_descriptor",
]
