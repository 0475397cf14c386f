"""
onchain-orchestrator — orchestrator facade

File: src/onchain_orchestrator/control_plane/controller.py

Purpose
- Single entry point for tool calls: classify, admit, route, pre-flight
  validate, execute (staged waves or direct worker fan-out), record usage, and
  assemble an ``ExecutionResult``.

Normative behavior
- Admission refusals and blocking validation failures are returned as failed
  results, never raised. ``WavePlanFailure`` is the only error that escapes.
- Admission uses the caller's priority, else the router's priority for the
  request.
- Pre-flight validation runs only for routes that require it. With
  ``enforce_validation`` a failing SECURITY_CHECK or DATA_INTEGRITY step blocks
  the call; any other outcome is attached to the result.
- Successful results are cached for ``cache_ttl_seconds`` when both the
  settings and the route enable caching. Cache keys ignore request context.
- Failed primary workers are retried through the router's fallbacks when
  ``fallbacks_enabled``.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

import structlog

from onchain_orchestrator.config.loader import load_config
from onchain_orchestrator.control_plane.classifier import RequestClassifier
from onchain_orchestrator.control_plane.resource_governor import (
    GovernorConfig,
    MetricsProvider,
    ResourceGovernor,
)
from onchain_orchestrator.control_plane.scheduler import Router
from onchain_orchestrator.domain.events import EventType
from onchain_orchestrator.domain.ids import generate_request_id
from onchain_orchestrator.domain.models import (
    AdmissionDecision,
    Priority,
    QualityStep,
    RequestDescriptor,
    RouteDecision,
    ValidationResult,
    Wave,
    WaveResult,
    WaveTask,
)
from onchain_orchestrator.errors import WavePlanFailure
from onchain_orchestrator.execution_plane.contracts import Worker, WorkerContext
from onchain_orchestrator.execution_plane.dispatch import FanOutResult, fan_out
from onchain_orchestrator.execution_plane.wave_engine import (
    TaskOutcome,
    WaveContext,
    WaveEngine,
    WaveEngineConfig,
    WaveExecutionReport,
)
from onchain_orchestrator.observability.events import EventBus
from onchain_orchestrator.observability.logging import correlation_scope
from onchain_orchestrator.utils.cache import Clock, TTLCache
from onchain_orchestrator.utils.hashing import content_key
from onchain_orchestrator.verification_plane.quality_gate import QualityGate, QualityGateConfig

if TYPE_CHECKING:
    from onchain_orchestrator.domain.models import Checkpoint, JSONValue
    from onchain_orchestrator.utils.concurrency import CancellationToken

_RESULT_CACHE_ENTRIES: Final[int] = 512
_BLOCKING_STEPS: Final[frozenset[QualityStep]] = frozenset(
    {QualityStep.SECURITY_CHECK, QualityStep.DATA_INTEGRITY}
)


@dataclass(frozen=True, slots=True)
class OrchestratorSettings:
    max_concurrency: int = 5
    cache_enabled: bool = True
    cache_ttl_seconds: float = 3600.0
    worker_timeout_ms: int = 60_000
    enforce_validation: bool = True
    fallbacks_enabled: bool = True

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be > 0")
        if self.worker_timeout_ms <= 0:
            raise ValueError("worker_timeout_ms must be > 0")

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> OrchestratorSettings:
        return cls(
            max_concurrency=int(section["max_concurrency"]),
            cache_enabled=bool(section["cache_enabled"]),
            cache_ttl_seconds=float(section["cache_ttl_seconds"]),
            worker_timeout_ms=int(section["worker_timeout_ms"]),
            enforce_validation=bool(section["enforce_validation"]),
            fallbacks_enabled=bool(section["fallbacks_enabled"]),
        )


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of one ``Orchestrator.execute`` call."""

    request_id: str
    tool_id: str
    success: bool
    descriptor: RequestDescriptor
    admission: AdmissionDecision
    data: Mapping[str, object] = field(default_factory=dict)
    failures: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    fallbacks_used: Mapping[str, str] = field(default_factory=dict)
    route: RouteDecision | None = None
    validation: ValidationResult | None = None
    wave_report: WaveExecutionReport | None = None
    error: str | None = None
    cached: bool = False
    duration_ms: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))
        object.__setattr__(self, "failures", MappingProxyType(dict(self.failures)))
        object.__setattr__(self, "fallbacks_used", MappingProxyType(dict(self.fallbacks_used)))

    @property
    def mode(self) -> str:
        if self.wave_report is not None:
            return "wave"
        return "direct" if self.route is not None else "none"

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "request_id": self.request_id,
            "tool_id": self.tool_id,
            "success": self.success,
            "mode": self.mode,
            "workers": sorted(str(key) for key in self.data),
            "failures": {name: list(errors) for name, errors in sorted(self.failures.items())},
            "fallbacks_used": dict(sorted(self.fallbacks_used.items())),
            "admission": self.admission.to_dict(),
            "route": None if self.route is None else self.route.to_dict(),
            "validation_passed": None if self.validation is None else self.validation.passed,
            "error": self.error,
            "cached": self.cached,
            "duration_ms": self.duration_ms,
        }


class Orchestrator:
    """Facade wiring the classifier, governor, router, wave engine, and quality gate."""

    def __init__(
        self,
        *,
        workers: Mapping[str, Worker] | Iterable[Worker] | None = None,
        settings: OrchestratorSettings | None = None,
        classifier: RequestClassifier | None = None,
        governor: ResourceGovernor | None = None,
        router: Router | None = None,
        quality_gate: QualityGate | None = None,
        wave_engine: WaveEngine | None = None,
        wave_config: WaveEngineConfig | None = None,
        event_bus: EventBus | None = None,
        clock: Clock | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings or OrchestratorSettings()
        self._event_bus = event_bus
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._classifier = classifier or RequestClassifier()
        self._governor = governor or ResourceGovernor(event_bus=event_bus)
        self._router = router or Router()
        self._quality_gate = quality_gate or QualityGate(event_bus=event_bus, clock=clock)
        self._wave_engine = wave_engine or WaveEngine(
            config=wave_config,
            task_runner=self._run_wave_task,
            validator=self._validate_wave,
            rollback_hook=self._on_wave_rollback,
            governor=self._governor,
            event_bus=event_bus,
        )
        self._results: TTLCache[ExecutionResult] = TTLCache(
            max_entries=_RESULT_CACHE_ENTRIES,
            ttl_seconds=self._settings.cache_ttl_seconds,
            clock=clock,
        )

        self._workers: dict[str, Worker] = {}
        if isinstance(workers, Mapping):
            self._workers.update(workers)
        elif workers is not None:
            for worker in workers:
                self.register_worker(worker)

        self._stats_lock = threading.Lock()
        self._stats: dict[str, int] = dict.fromkeys(
            (
                "total_requests",
                "successful",
                "failed",
                "rejected",
                "blocked_by_validation",
                "cache_hits",
                "wave_executions",
                "direct_executions",
                "fallbacks_used",
                "rollbacks",
            ),
            0,
        )

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any] | None = None,
        *,
        workers: Mapping[str, Worker] | Iterable[Worker] | None = None,
        metrics_provider: MetricsProvider | None = None,
        event_bus: EventBus | None = None,
        logger: Any | None = None,
    ) -> Orchestrator:
        """Build every component from a validated effective config mapping.

        ``config`` defaults to ``load_config()`` (defaults, ``orchestrator.toml``
        and ``ONCHAIN_*`` environment overrides).
        """

        effective = dict(config) if config is not None else load_config()
        bus = event_bus or EventBus(
            buffer_size=int(effective["observability"]["event_buffer_size"])
        )
        governor = ResourceGovernor(
            metrics_provider=metrics_provider,
            config=GovernorConfig.from_mapping(effective["governor"]),
            event_bus=bus,
        )
        return cls(
            workers=workers,
            settings=OrchestratorSettings.from_mapping(effective["orchestrator"]),
            classifier=RequestClassifier(cache_size=int(effective["classifier"]["cache_size"])),
            governor=governor,
            quality_gate=QualityGate(
                config=QualityGateConfig.from_mapping(effective["quality_gate"]),
                event_bus=bus,
            ),
            wave_config=WaveEngineConfig.from_mapping(effective["waves"]),
            event_bus=bus,
            logger=logger,
        )

    # ------------------------------------------------------------------
    # Components and lifecycle
    # ------------------------------------------------------------------

    @property
    def settings(self) -> OrchestratorSettings:
        return self._settings

    @property
    def governor(self) -> ResourceGovernor:
        return self._governor

    @property
    def classifier(self) -> RequestClassifier:
        return self._classifier

    @property
    def router(self) -> Router:
        return self._router

    @property
    def quality_gate(self) -> QualityGate:
        return self._quality_gate

    @property
    def wave_engine(self) -> WaveEngine:
        return self._wave_engine

    @property
    def event_bus(self) -> EventBus | None:
        return self._event_bus

    @property
    def worker_names(self) -> tuple[str, ...]:
        return tuple(self._workers)

    def register_worker(self, worker: Worker, *, name: str | None = None) -> None:
        key = name or worker.name
        if not key:
            raise ValueError("worker name must be non-empty")
        self._workers[key] = worker

    def unregister_worker(self, name: str) -> bool:
        return self._workers.pop(name, None) is not None

    def start(self) -> bool:
        """Start background resource monitoring."""
        return self._governor.start_monitoring()

    def stop(self) -> None:
        self._governor.stop()

    def clear_cache(self) -> None:
        self._results.clear()
        self._quality_gate.clear_cache()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        tool_id: str,
        args: Mapping[str, object] | None = None,
        *,
        scope_size: int | None = None,
        priority: Priority | None = None,
        context: Mapping[str, object] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ExecutionResult:
        arguments = dict(args or {})
        request_id = generate_request_id()
        started = time.perf_counter()
        self._bump("total_requests")

        with correlation_scope(request_id=request_id):
            descriptor = self._classifier.classify(tool_id, arguments)
            self._logger.info(
                "request_classified",
                tool_id=tool_id,
                complexity=descriptor.complexity_level.value,
                workers=list(descriptor.suggested_workers),
            )
            self._emit(
                EventType.REQUEST_CLASSIFIED,
                {"request_id": request_id, **descriptor.to_dict()},
                correlation_id=request_id,
            )

            # Cache hits bypass admission: serving one costs no worker capacity.
            cache_key = content_key(tool_id, arguments)
            if self._settings.cache_enabled:
                hit = self._results.get(cache_key)
                if hit is not None:
                    self._bump("cache_hits")
                    self._logger.info("result_cache_hit", tool_id=tool_id)
                    return replace(hit, request_id=request_id, cached=True, duration_ms=0)

            admission = self._governor.admit(
                descriptor, priority=priority or self._router.priority_for(descriptor)
            )
            if not admission.allowed:
                self._bump("rejected")
                return self._finish(
                    ExecutionResult(
                        request_id=request_id,
                        tool_id=tool_id,
                        success=False,
                        descriptor=descriptor,
                        admission=admission,
                        error=f"admission rejected: {admission.reason}",
                        duration_ms=_duration_ms(started),
                    )
                )
            self._governor.increment_operations()

            route = self._router.route(descriptor)
            validation: ValidationResult | None = None
            if route.requires_validation:
                validation = self._quality_gate.validate(
                    tool_id,
                    arguments,
                    {**(context or {}), "available_workers": list(self._workers)},
                )
                blocking = blocking_issues(validation)
                if self._settings.enforce_validation and blocking:
                    self._bump("blocked_by_validation")
                    return self._finish(
                        ExecutionResult(
                            request_id=request_id,
                            tool_id=tool_id,
                            success=False,
                            descriptor=descriptor,
                            admission=admission,
                            route=route,
                            validation=validation,
                            error="validation failed: " + "; ".join(blocking),
                            duration_ms=_duration_ms(started),
                        )
                    )

            wave_context = WaveContext.from_descriptor(
                descriptor,
                scope_size=scope_size,
                workers=route.ordered_workers,
                request_id=request_id,
            )
            if self._wave_engine.should_use_wave_mode(wave_context):
                result = await self._execute_waves(
                    request_id, descriptor, admission, route, validation, wave_context,
                    started=started, cancel_token=cancel_token,
                )
            else:
                result = await self._execute_direct(
                    request_id, descriptor, admission, route, validation,
                    started=started, cancel_token=cancel_token,
                )

            self._classifier.record_outcome(tool_id, arguments, success=result.success)
            if result.success and self._settings.cache_enabled and route.cache_enabled:
                self._results.put(cache_key, result)
            return self._finish(result)

    async def _execute_direct(
        self,
        request_id: str,
        descriptor: RequestDescriptor,
        admission: AdmissionDecision,
        route: RouteDecision,
        validation: ValidationResult | None,
        *,
        started: float,
        cancel_token: CancellationToken | None,
    ) -> ExecutionResult:
        self._bump("direct_executions")
        worker_context = WorkerContext(
            tool_id=descriptor.tool_id,
            args=descriptor.args,
            request_id=request_id,
            priority=route.priority,
            cancel_token=cancel_token,
        )
        outcome = await fan_out(
            self._workers,
            route.ordered_workers,
            worker_context,
            max_concurrency=self._settings.max_concurrency if route.parallel_allowed else 1,
            timeout_seconds=self._settings.worker_timeout_ms / 1000.0,
            fallbacks=self._fallback_table(route),
            cancel_token=cancel_token,
            logger=self._logger,
        )
        if outcome.fallbacks_used:
            self._bump("fallbacks_used", len(outcome.fallbacks_used))

        duration_ms = _duration_ms(started)
        self._governor.report_usage(_tokens_used(outcome, descriptor), duration_ms)
        return ExecutionResult(
            request_id=request_id,
            tool_id=descriptor.tool_id,
            success=outcome.any_success,
            descriptor=descriptor,
            admission=admission,
            data={name: dict(response.data) for name, response in outcome.successes.items()},
            failures={name: response.errors for name, response in outcome.failures.items()},
            fallbacks_used=outcome.fallbacks_used,
            route=route,
            validation=validation,
            error=None if outcome.any_success else "all workers failed",
            duration_ms=duration_ms,
        )

    async def _execute_waves(
        self,
        request_id: str,
        descriptor: RequestDescriptor,
        admission: AdmissionDecision,
        route: RouteDecision,
        validation: ValidationResult | None,
        wave_context: WaveContext,
        *,
        started: float,
        cancel_token: CancellationToken | None,
    ) -> ExecutionResult:
        self._bump("wave_executions")
        plan = self._wave_engine.plan(wave_context)
        with correlation_scope(plan_id=plan.plan_id):
            try:
                report = await self._wave_engine.execute(
                    plan, wave_context, cancel_token=cancel_token
                )
            except WavePlanFailure as exc:
                self._bump("failed")
                self._governor.report_usage(
                    sum(result.metrics.tokens_used for result in exc.results),
                    _duration_ms(started),
                )
                self._emit(
                    EventType.OPERATION_FAILED,
                    {
                        "request_id": request_id,
                        "tool_id": descriptor.tool_id,
                        "plan_id": exc.plan_id,
                        "error": str(exc),
                    },
                    correlation_id=request_id,
                )
                raise

        duration_ms = _duration_ms(started)
        self._governor.report_usage(report.tokens_used, duration_ms)
        return ExecutionResult(
            request_id=request_id,
            tool_id=descriptor.tool_id,
            success=report.success,
            descriptor=descriptor,
            admission=admission,
            data=report.outputs,
            failures={result.wave_id: result.errors for result in report.results if result.errors},
            route=route,
            validation=validation,
            wave_report=report,
            error=None if report.success else _wave_error(report),
            duration_ms=duration_ms,
        )

    async def _run_wave_task(self, task: WaveTask, context: WaveContext) -> TaskOutcome:
        """Run a wave task by fanning out to the registered workers it names."""

        names = tuple(tool for tool in task.tools if tool in self._workers)
        if not names:
            return TaskOutcome(
                task_id=task.task_id,
                outputs={task.task_id: {"kind": task.kind, "status": "completed"}},
                tools_used=task.tools,
            )
        worker_context = WorkerContext(
            tool_id=context.operation,
            args=context.args,
            request_id=context.request_id,
            metadata={"wave_task": task.task_id, **task.inputs},
        )
        outcome = await fan_out(
            self._workers,
            names,
            worker_context,
            max_concurrency=self._settings.max_concurrency,
            timeout_seconds=self._settings.worker_timeout_ms / 1000.0,
            logger=self._logger,
        )
        return TaskOutcome(
            task_id=task.task_id,
            outputs={
                task.task_id: {
                    name: dict(response.data) for name, response in outcome.successes.items()
                }
            },
            tools_used=names,
            tokens_used=_reported_tokens(outcome),
            error=None if outcome.any_success else "all workers failed",
        )

    def _validate_wave(self, wave: Wave, result: WaveResult, context: WaveContext) -> bool:
        validation = self._quality_gate.validate(f"wave_{wave.wave_id}", dict(result.outputs))
        return result.success and not blocking_issues(validation)

    def _on_wave_rollback(
        self, wave: Wave, result: WaveResult, checkpoint: Checkpoint | None
    ) -> None:
        self._bump("rollbacks")
        self._logger.warning(
            "wave_rollback_requested",
            wave_id=wave.wave_id,
            restore_to=None if checkpoint is None else checkpoint.wave_id,
            errors=list(result.errors),
        )

    # ------------------------------------------------------------------
    # Statistics and helpers
    # ------------------------------------------------------------------

    def statistics(self) -> dict[str, object]:
        with self._stats_lock:
            counters = dict(self._stats)
        total = counters["total_requests"]
        return {
            **counters,
            "success_rate": 100.0 * counters["successful"] / total if total else 0.0,
            "workers": list(self._workers),
            "result_cache": self._results.stats().to_dict(),
            "classifier": self._classifier.statistics(),
            "governor": self._governor.statistics(),
            "quality_gate": self._quality_gate.statistics(),
            "waves": self._wave_engine.statistics(),
        }

    def _fallback_table(self, route: RouteDecision) -> dict[str, tuple[str, ...]] | None:
        if not self._settings.fallbacks_enabled:
            return None
        return {worker: self._router.fallback_for(worker) for worker in route.ordered_workers}

    def _finish(self, result: ExecutionResult) -> ExecutionResult:
        if result.success:
            self._bump("successful")
        elif result.admission.allowed:
            self._bump("failed")
        event_type = EventType.OPERATION_COMPLETED if result.success else EventType.OPERATION_FAILED
        self._logger.info(
            "operation_completed" if result.success else "operation_failed",
            tool_id=result.tool_id,
            mode=result.mode,
            duration_ms=result.duration_ms,
            error=result.error,
        )
        self._emit(event_type, result.to_dict(), correlation_id=result.request_id)
        return result

    def _bump(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[name] += amount

    def _emit(
        self,
        event_type: EventType,
        payload: Mapping[str, object],
        *,
        correlation_id: str | None = None,
    ) -> None:
        if self._event_bus is not None:
            self._event_bus.emit(event_type, payload, correlation_id=correlation_id)


def blocking_issues(validation: ValidationResult) -> tuple[str, ...]:
    """Issues from failed SECURITY_CHECK / DATA_INTEGRITY steps."""

    return tuple(
        issue
        for step in validation.steps
        if step.step in _BLOCKING_STEPS and not step.passed
        for issue in (step.issues or (f"{step.step.value} failed",))
    )


def _reported_tokens(outcome: FanOutResult) -> int:
    total = 0
    for response in outcome.successes.values():
        value = response.metadata.get("tokens_used")
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            total += value
    return total


def _tokens_used(outcome: FanOutResult, descriptor: RequestDescriptor) -> int:
    return _reported_tokens(outcome) or descriptor.resource_estimate.tokens


def _wave_error(report: WaveExecutionReport) -> str:
    if report.halted:
        return f"wave execution halted at {report.halted_at}"
    return "; ".join(report.errors) or "wave execution failed"


def _duration_ms(started: float) -> int:
    return max(0, int(round((time.perf_counter() - started) * 1000)))


__all__ = [
    "ExecutionResult",
    "Orchestrator",
    "OrchestratorSettings",
    "blocking_issues",
]
