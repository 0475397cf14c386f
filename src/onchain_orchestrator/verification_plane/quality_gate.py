"""
onchain-orchestrator — quality gate

File: src/onchain_orchestrator/verification_plane/quality_gate.py

Purpose
- Run the eight validation steps in fixed order against an operation's inputs
  (pre-flight) or outputs (post-flight) and assemble a ``ValidationResult``.

Normative behavior
- Each step is thresholded independently; a score below threshold fails the
  step with "Score X below threshold Y" even when the step reported no issue.
- A failing SECURITY_CHECK or DATA_INTEGRITY step (including one that raised)
  short-circuits: the remaining steps are skipped and the result fails.
- A raising step becomes a failing ``StepResult`` with score 0.
- ``passed`` requires every step to run and pass, and context retention of at
  least ``min_context_retention``.
- Results are cached for ``cache_ttl_seconds`` keyed by (operation, inputs).
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

import structlog

from onchain_orchestrator.domain.events import EventType
from onchain_orchestrator.domain.models import (
    QUALITY_STEP_ORDER,
    QualityStep,
    StepResult,
    ValidationResult,
)
from onchain_orchestrator.utils.cache import Clock, TTLCache
from onchain_orchestrator.utils.hashing import content_key
from onchain_orchestrator.verification_plane.steps import (
    CRITICAL_STEPS,
    STEP_RECOMMENDATIONS,
    STEP_THRESHOLDS,
    StepCheck,
    StepInput,
    default_step_checks,
    operation_hash,
    sanitize_inputs,
)

if TYPE_CHECKING:
    from onchain_orchestrator.observability.events import EventBus

_CACHE_ENTRIES = 1024
_TOP_ISSUES = 5


@dataclass(frozen=True, slots=True)
class QualityGateConfig:
    cache_ttl_seconds: float = 60.0
    min_context_retention: float = 90.0
    latest_block: int = 18_000_000

    def __post_init__(self) -> None:
        if self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be > 0")
        if not 0.0 <= self.min_context_retention <= 100.0:
            raise ValueError("min_context_retention must be within [0, 100]")
        if self.latest_block < 0:
            raise ValueError("latest_block must be >= 0")

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> QualityGateConfig:
        return cls(
            cache_ttl_seconds=float(section["cache_ttl_seconds"]),
            min_context_retention=float(section["min_context_retention"]),
            latest_block=int(section["latest_block"]),
        )


class QualityGate:
    """Eight-step validator with a short-lived result cache."""

    def __init__(
        self,
        *,
        config: QualityGateConfig | None = None,
        checks: Mapping[QualityStep, StepCheck] | None = None,
        thresholds: Mapping[QualityStep, float] | None = None,
        event_bus: EventBus | None = None,
        clock: Clock | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = config or QualityGateConfig()
        merged = default_step_checks()
        if checks is not None:
            merged.update(checks)
        self._checks = {step: merged[step] for step in QUALITY_STEP_ORDER}
        self._thresholds = {**STEP_THRESHOLDS, **(thresholds or {})}
        self._event_bus = event_bus
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._cache: TTLCache[ValidationResult] = TTLCache(
            max_entries=_CACHE_ENTRIES, ttl_seconds=self._config.cache_ttl_seconds, clock=clock
        )

        self._stats_lock = threading.Lock()
        self._total = 0
        self._passed = 0
        self._score_sum = 0.0
        self._step_failures: Counter[str] = Counter()
        self._issue_counts: Counter[str] = Counter()

    @property
    def config(self) -> QualityGateConfig:
        return self._config

    def threshold_for(self, step: QualityStep) -> float:
        return self._thresholds[step]

    def validate(
        self,
        operation: str,
        inputs: Mapping[str, object],
        context: Mapping[str, object] | None = None,
    ) -> ValidationResult:
        key = content_key(operation, inputs)
        cached = self._cache.get(key)
        if cached is not None:
            self._logger.debug("quality_gate_cache_hit", operation=operation)
            return replace(cached, cached=True)

        started = time.perf_counter()
        step_input = StepInput(
            operation=operation,
            inputs=dict(inputs),
            context=None if context is None else dict(context),
            latest_block=self._config.latest_block,
        )

        results: list[StepResult] = []
        skipped: tuple[QualityStep, ...] = ()
        for position, (step, check) in enumerate(self._checks.items()):
            result = self._run_step(step, check, step_input)
            results.append(result)
            if result.passed:
                continue
            self._logger.info(
                "quality_gate_step_failed",
                operation=operation,
                step=step.value,
                score=result.score,
                issues=list(result.issues),
            )
            if step in CRITICAL_STEPS:
                skipped = QUALITY_STEP_ORDER[position + 1 :]
                self._logger.warning(
                    "quality_gate_critical_failure",
                    operation=operation,
                    step=step.value,
                    skipped=[item.value for item in skipped],
                )
                break

        retention = context_retention(context)
        overall = sum(result.score for result in results) / len(results) if results else 0.0
        all_passed = not skipped and all(result.passed for result in results)
        validation = ValidationResult(
            operation=operation,
            steps=tuple(results),
            overall_score=overall,
            context_retention=retention,
            passed=all_passed and retention >= self._config.min_context_retention,
            skipped_steps=skipped,
            recommendations=recommendations_for(results),
            evidence={
                "inputs": sanitize_inputs(inputs),
                "operation_hash": operation_hash(operation, inputs),
                "performance": {"total_duration_ms": _duration_ms(started)},
            },
        )

        self._cache.put(key, validation)
        self._record(validation)
        self._logger.info(
            "quality_gate_validation_completed",
            operation=operation,
            passed=validation.passed,
            overall_score=round(overall, 2),
            context_retention=retention,
        )
        if self._event_bus is not None:
            self._event_bus.emit(
                EventType.VALIDATION_COMPLETED,
                {
                    "operation": operation,
                    "passed": validation.passed,
                    "overall_score": overall,
                    "context_retention": retention,
                    "skipped_steps": [step.value for step in skipped],
                },
            )
        return validation

    def clear_cache(self) -> None:
        self._cache.clear()

    def statistics(self) -> dict[str, object]:
        with self._stats_lock:
            total = self._total
            return {
                "total_validations": total,
                "pass_rate": 100.0 * self._passed / total if total else 0.0,
                "average_score": self._score_sum / total if total else 0.0,
                "step_failures": dict(self._step_failures),
                "common_issues": [
                    issue for issue, _ in self._issue_counts.most_common(_TOP_ISSUES)
                ],
                "cache": self._cache.stats().to_dict(),
            }

    def _run_step(self, step: QualityStep, check: StepCheck, step_input: StepInput) -> StepResult:
        threshold = self._thresholds[step]
        started = time.perf_counter()
        try:
            outcome = check(step_input)
        except Exception as exc:  # noqa: BLE001
            return StepResult(
                step=step,
                passed=False,
                score=0.0,
                threshold=threshold,
                issues=(f"{type(exc).__name__}: {exc}",),
                evidence={"error_type": type(exc).__name__},
                duration_ms=_duration_ms(started),
            )

        score = outcome.final_score
        passed = outcome.final_passed
        issues = list(outcome.issues)
        if score < threshold:
            passed = False
            issues.append(f"Score {score:g} below threshold {threshold:g}")
        return StepResult(
            step=step,
            passed=passed,
            score=score,
            threshold=threshold,
            issues=tuple(issues),
            warnings=tuple(outcome.warnings),
            evidence=outcome.evidence,
            duration_ms=_duration_ms(started),
        )

    def _record(self, validation: ValidationResult) -> None:
        with self._stats_lock:
            self._total += 1
            self._passed += int(validation.passed)
            self._score_sum += validation.overall_score
            for result in validation.steps:
                if not result.passed:
                    self._step_failures[result.step.value] += 1
                self._issue_counts.update(result.issues)


def context_retention(context: Mapping[str, object] | None) -> float:
    """Percentage of request context carried along (50 when none is given)."""

    if context is None:
        return 50.0
    retained = 100.0
    if not _has(context, "session_id", "sessionId"):
        retained -= 10
    if not _has(context, "user_id", "userId"):
        retained -= 10
    if not _has(context, "previous_operations", "previousOperations"):
        retained -= 20
    if not _has(context, "token_budget", "tokenBudget"):
        retained -= 5
    return max(0.0, retained)


def recommendations_for(results: list[StepResult]) -> tuple[str, ...]:
    recommendations: list[str] = []
    for result in results:
        if not result.passed:
            text = STEP_RECOMMENDATIONS.get(result.step)
            if text is not None:
                recommendations.append(text)
        recommendations.extend(
            f"Consider reducing: {warning}" for warning in result.warnings if "high" in warning
        )
    return tuple(dict.fromkeys(recommendations))


def _has(context: Mapping[str, object], *names: str) -> bool:
    return any(bool(context.get(name)) for name in names)


def _duration_ms(started: float) -> int:
    return max(0, int(round((time.perf_counter() - started) * 1000)))


__all__ = ["QualityGate", "QualityGateConfig", "context_retention", "recommendations_for"]
