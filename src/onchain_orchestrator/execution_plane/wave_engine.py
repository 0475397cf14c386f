"""
onchain-orchestrator — wave engine

File: src/onchain_orchestrator/execution_plane/wave_engine.py

Purpose
- Decide whether a request is large enough for staged execution, pick a wave
  strategy, build a ``WavePlan``, and run it wave by wave.

Normative behavior
- Wave mode requires complexity >= 0.7, scope > 20 and more than two
  operation types.
- Every wave after the first depends on the wave immediately before it. A wave
  whose dependency has no successful result is skipped: it keeps its pending
  status, produces no ``WaveResult`` and only a ``WaveSkipped`` event. Skips
  alone do not fail the plan.
- Before each wave the governor is polled until it reports availability, with
  exponential backoff. Refusal never aborts the plan; cancellation does.
- Consecutive parallelizable tasks run concurrently; any other task runs alone.
  Every task runs under ``run_with_timeout``.
- A validation wave that fails its validator triggers the rollback hook, is
  marked ``rolledback`` and raises ``WavePlanFailure`` carrying the results so
  far. A wave whose confidence (1 - errors / 10) drops below
  ``min_confidence`` halts the plan without raising.
- Outputs are merged in execution order; later keys win.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final, NoReturn, Protocol, TypeAlias

import structlog

from onchain_orchestrator.domain.events import EventType
from onchain_orchestrator.domain.ids import generate_plan_id
from onchain_orchestrator.domain.models import (
    Checkpoint,
    Domain,
    OperationType,
    RiskAssessment,
    ValidationResult,
    Wave,
    WaveMetrics,
    WavePlan,
    WaveResult,
    WaveStage,
    WaveStatus,
    WaveStrategy,
    WaveTask,
)
from onchain_orchestrator.errors import WavePlanFailure
from onchain_orchestrator.utils.args import arg_number
from onchain_orchestrator.utils.concurrency import (
    CancellationToken,
    call_maybe_async,
    gather_settled,
    run_with_timeout,
)

if TYPE_CHECKING:
    from onchain_orchestrator.domain.models import JSONValue, RequestDescriptor
    from onchain_orchestrator.observability.events import EventBus

WAVE_MODE_MIN_COMPLEXITY: Final[float] = 0.7
WAVE_MODE_MIN_SCOPE: Final[int] = 20
WAVE_MODE_MIN_OPERATION_TYPES: Final[int] = 2

ENTERPRISE_MIN_SCOPE: Final[int] = 100
ENTERPRISE_MIN_TOKEN_BUDGET: Final[int] = 300_000
ENTERPRISE_PARTITION_SIZE: Final[int] = 20
DEFAULT_TOKEN_BUDGET: Final[int] = 100_000

SECURITY_SENSITIVE_DOMAINS: Final[frozenset[Domain]] = frozenset(
    {Domain.SECURITY, Domain.BRIDGE, Domain.RISK}
)

STAGE_RISK_WEIGHTS: Final[Mapping[WaveStage, float]] = MappingProxyType(
    {
        WaveStage.DISCOVERY: 0.5,
        WaveStage.PLANNING: 0.7,
        WaveStage.IMPLEMENTATION: 1.0,
        WaveStage.VALIDATION: 0.8,
        WaveStage.OPTIMIZATION: 0.9,
    }
)

# Upper bounds of the position ratio for adaptive stage assignment.
_ADAPTIVE_STAGES: Final[tuple[tuple[float, WaveStage], ...]] = (
    (0.2, WaveStage.DISCOVERY),
    (0.4, WaveStage.PLANNING),
    (0.7, WaveStage.IMPLEMENTATION),
    (0.9, WaveStage.VALIDATION),
)

_STAGE_TOOLS: Final[Mapping[WaveStage, tuple[str, ...]]] = MappingProxyType(
    {
        WaveStage.PLANNING: ("router",),
        WaveStage.VALIDATION: ("quality_gate",),
    }
)

_SYSTEMATIC_CHECKPOINT_RISK: Final[float] = 0.8
_TOKENS_BASE: Final[int] = 1000
_TOKENS_PER_WAVE: Final[int] = 5000
_TOKENS_PER_SCOPE_ITEM: Final[int] = 200
_MS_PER_TASK: Final[int] = 5000
_MS_PER_SCOPE_ITEM: Final[int] = 100


@dataclass(frozen=True, slots=True)
class WaveEngineConfig:
    max_waves: int = 5
    min_confidence: float = 0.7
    validation_required: bool = True
    checkpoint_enabled: bool = True
    rollback_enabled: bool = True
    wave_timeout_ms: int = 300_000
    admission_poll_ms: int = 5000
    admission_poll_max_ms: int = 30_000
    admission_backoff: float = 1.5

    def __post_init__(self) -> None:
        if self.max_waves < 1:
            raise ValueError("max_waves must be >= 1")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError("min_confidence must be within [0, 1]")
        if self.wave_timeout_ms <= 0:
            raise ValueError("wave_timeout_ms must be > 0")
        if self.admission_poll_ms <= 0:
            raise ValueError("admission_poll_ms must be > 0")
        if self.admission_poll_max_ms < self.admission_poll_ms:
            raise ValueError("admission_poll_max_ms must be >= admission_poll_ms")
        if self.admission_backoff < 1.0:
            raise ValueError("admission_backoff must be >= 1.0")

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> WaveEngineConfig:
        return cls(
            max_waves=int(section["max_waves"]),
            min_confidence=float(section["min_confidence"]),
            validation_required=bool(section["validation_required"]),
            checkpoint_enabled=bool(section["checkpoint_enabled"]),
            rollback_enabled=bool(section["rollback_enabled"]),
            wave_timeout_ms=int(section["wave_timeout_ms"]),
            admission_poll_ms=int(section["admission_poll_ms"]),
            admission_poll_max_ms=int(section["admission_poll_max_ms"]),
            admission_backoff=float(section["admission_backoff"]),
        )


@dataclass(frozen=True, slots=True)
class WaveContext:
    """Planning inputs derived from a classified request."""

    operation: str
    complexity: float
    scope_size: int
    operation_types: frozenset[OperationType] = frozenset()
    domains: frozenset[Domain] = frozenset()
    risk_level: float = 0.0
    token_budget: int = DEFAULT_TOKEN_BUDGET
    workers: tuple[str, ...] = ()
    args: Mapping[str, object] = field(default_factory=dict)
    request_id: str | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.complexity <= 1.0:
            raise ValueError("WaveContext.complexity must be within [0, 1]")
        if not 0.0 <= self.risk_level <= 1.0:
            raise ValueError("WaveContext.risk_level must be within [0, 1]")
        if self.scope_size < 0:
            raise ValueError("WaveContext.scope_size must be >= 0")
        if self.token_budget < 0:
            raise ValueError("WaveContext.token_budget must be >= 0")
        object.__setattr__(self, "operation_types", frozenset(self.operation_types))
        object.__setattr__(self, "domains", frozenset(self.domains))
        object.__setattr__(self, "workers", tuple(self.workers))
        object.__setattr__(self, "args", MappingProxyType(dict(self.args)))

    @property
    def operation_type_count(self) -> int:
        return len(self.operation_types)

    @classmethod
    def from_descriptor(
        cls,
        descriptor: RequestDescriptor,
        *,
        scope_size: int | None = None,
        token_budget: int | None = None,
        workers: tuple[str, ...] | None = None,
        request_id: str | None = None,
    ) -> WaveContext:
        """Build a context from a descriptor.

        Scope falls back to a ``scope_size`` argument, then to the number of
        items in list-valued arguments, then to 1. Token budget falls back to a
        ``token_budget`` argument, then to ``DEFAULT_TOKEN_BUDGET``.
        """

        args = descriptor.args
        if scope_size is None:
            scope_size = _scope_from_args(args)
        if token_budget is None:
            budget_arg = arg_number(args, "token_budget")
            token_budget = DEFAULT_TOKEN_BUDGET if budget_arg is None else max(0, int(budget_arg))
        return cls(
            operation=descriptor.tool_id,
            complexity=descriptor.complexity_score,
            scope_size=max(0, scope_size),
            operation_types=descriptor.operations,
            domains=descriptor.domains,
            risk_level=descriptor.risk_score,
            token_budget=token_budget,
            workers=descriptor.suggested_workers if workers is None else workers,
            args=args,
            request_id=request_id,
        )


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    task_id: str
    outputs: Mapping[str, object] = field(default_factory=dict)
    tools_used: tuple[str, ...] = ()
    tokens_used: int = 0
    error: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "outputs", MappingProxyType(dict(self.outputs)))
        object.__setattr__(self, "tools_used", tuple(self.tools_used))
        if self.tokens_used < 0:
            raise ValueError("TaskOutcome.tokens_used must be >= 0")

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class WaveExecutionReport:
    plan_id: str
    strategy: WaveStrategy
    results: tuple[WaveResult, ...]
    outputs: Mapping[str, object]
    skipped_waves: tuple[str, ...] = ()
    checkpoints: tuple[Checkpoint, ...] = ()
    halted: bool = False
    halted_at: str | None = None
    duration_ms: int = 0
    tokens_used: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "results", tuple(self.results))
        object.__setattr__(self, "outputs", MappingProxyType(dict(self.outputs)))
        object.__setattr__(self, "skipped_waves", tuple(self.skipped_waves))
        object.__setattr__(self, "checkpoints", tuple(self.checkpoints))

    @property
    def success(self) -> bool:
        return (
            bool(self.results)
            and all(result.success for result in self.results)
            and not self.halted
        )

    @property
    def errors(self) -> tuple[str, ...]:
        return tuple(error for result in self.results for error in result.errors)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "plan_id": self.plan_id,
            "strategy": self.strategy.value,
            "success": self.success,
            "waves_completed": [result.wave_id for result in self.results],
            "skipped_waves": list(self.skipped_waves),
            "checkpoints": [checkpoint.wave_id for checkpoint in self.checkpoints],
            "halted": self.halted,
            "halted_at": self.halted_at,
            "duration_ms": self.duration_ms,
            "tokens_used": self.tokens_used,
            "errors": list(self.errors),
        }


class AvailabilityProbe(Protocol):
    def is_available(self) -> bool: ...


TaskRunner: TypeAlias = Callable[
    [WaveTask, WaveContext], Awaitable["TaskOutcome | Mapping[str, object]"]
]
WaveValidator: TypeAlias = Callable[
    [Wave, WaveResult, WaveContext], "bool | ValidationResult | Awaitable[bool | ValidationResult]"
]
RollbackHook: TypeAlias = Callable[[Wave, WaveResult, "Checkpoint | None"], object]
SleepFn: TypeAlias = Callable[[float], Awaitable[None]]


async def echo_task_runner(task: WaveTask, context: WaveContext) -> TaskOutcome:
    """Task runner that completes every task without side effects."""

    return TaskOutcome(
        task_id=task.task_id,
        outputs={task.task_id: {"kind": task.kind, "status": "completed"}},
        tools_used=task.tools,
    )


class WaveEngine:
    """Plans and runs staged (wave) executions for large requests."""

    def __init__(
        self,
        *,
        config: WaveEngineConfig | None = None,
        task_runner: TaskRunner | None = None,
        validator: WaveValidator | None = None,
        rollback_hook: RollbackHook | None = None,
        governor: AvailabilityProbe | None = None,
        event_bus: EventBus | None = None,
        sleep: SleepFn | None = None,
        plan_id_factory: Callable[[], str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = config or WaveEngineConfig()
        self._task_runner = task_runner or echo_task_runner
        self._validator = validator
        self._rollback_hook = rollback_hook
        self._governor = governor
        self._event_bus = event_bus
        self._sleep = sleep or asyncio.sleep
        self._plan_id_factory = plan_id_factory or generate_plan_id
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._stats_lock = threading.Lock()
        self._waves_executed = 0
        self._successful_waves = 0
        self._successful_duration_ms = 0
        self._tokens_used = 0
        self._checkpoints_created = 0
        self._plans_executed = 0
        self._plans_failed = 0
        self._plans_halted = 0
        self._waves_skipped = 0

    @property
    def config(self) -> WaveEngineConfig:
        return self._config

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def should_use_wave_mode(self, context: WaveContext) -> bool:
        eligible = is_wave_eligible(
            context.complexity, context.scope_size, context.operation_type_count
        )
        if eligible:
            self._logger.info(
                "wave_mode_recommended",
                operation=context.operation,
                complexity=context.complexity,
                scope_size=context.scope_size,
                operation_types=context.operation_type_count,
            )
            self._emit(
                EventType.WAVE_MODE_RECOMMENDED,
                {
                    "operation": context.operation,
                    "complexity": context.complexity,
                    "scope_size": context.scope_size,
                    "operation_types": context.operation_type_count,
                },
                correlation_id=context.request_id,
            )
        return eligible

    def select_strategy(self, context: WaveContext) -> WaveStrategy:
        if (
            context.scope_size > ENTERPRISE_MIN_SCOPE
            or context.token_budget > ENTERPRISE_MIN_TOKEN_BUDGET
        ):
            return WaveStrategy.ENTERPRISE
        if context.risk_level >= 0.7 and context.domains & SECURITY_SENSITIVE_DOMAINS:
            return WaveStrategy.SYSTEMATIC
        if OperationType.OPTIMIZATION in context.operation_types and context.risk_level < 0.4:
            return WaveStrategy.PROGRESSIVE
        return WaveStrategy.ADAPTIVE

    def plan(self, context: WaveContext, strategy: WaveStrategy | None = None) -> WavePlan:
        selected = strategy or self.select_strategy(context)

        waves: list[Wave] = []
        previous: str | None = None
        for sequence, (stage, template) in enumerate(self._layout(selected, context), start=1):
            wave_id = f"wave_{selected.value}_{sequence}"
            task = WaveTask(
                task_id=f"{wave_id}_{template.name}",
                kind=template.kind,
                description=template.description,
                tools=_STAGE_TOOLS.get(stage, context.workers),
                inputs=template.inputs,
                can_parallelize=template.parallel,
            )
            waves.append(
                Wave(
                    wave_id=wave_id,
                    stage=stage,
                    sequence=sequence,
                    tasks=(task,),
                    dependencies=() if previous is None else (previous,),
                    risk_level=_clamp(context.risk_level * STAGE_RISK_WEIGHTS[stage], 0.0, 1.0),
                    requires_validation=(
                        self._config.validation_required and stage is WaveStage.VALIDATION
                    ),
                )
            )
            previous = wave_id

        checkpoints = {
            wave.wave_id
            for wave in waves
            if wave.stage is WaveStage.VALIDATION
            or (
                selected is WaveStrategy.SYSTEMATIC
                and wave.risk_level >= _SYSTEMATIC_CHECKPOINT_RISK
            )
        }
        task_count = sum(len(wave.tasks) for wave in waves)
        plan = WavePlan(
            plan_id=self._plan_id_factory(),
            strategy=selected,
            waves=tuple(waves),
            checkpoints=frozenset(checkpoints),
            estimated_duration_ms=estimate_duration_ms(
                task_count, context.complexity, context.scope_size
            ),
            estimated_tokens=estimate_tokens(len(waves), context.complexity, context.scope_size),
            risk_assessment=assess_risk(context, len(waves)),
        )
        self._logger.info(
            "wave_plan_created",
            plan_id=plan.plan_id,
            strategy=selected.value,
            waves=len(waves),
            estimated_tokens=plan.estimated_tokens,
        )
        self._emit(
            EventType.WAVE_PLAN_CREATED,
            {
                "plan_id": plan.plan_id,
                "strategy": selected.value,
                "waves": list(plan.wave_ids),
                "checkpoints": sorted(plan.checkpoints),
                "estimated_tokens": plan.estimated_tokens,
                "estimated_duration_ms": plan.estimated_duration_ms,
            },
            correlation_id=plan.plan_id,
        )
        return plan

    def _layout(
        self, strategy: WaveStrategy, context: WaveContext
    ) -> tuple[tuple[WaveStage, _TaskTemplate], ...]:
        if strategy is WaveStrategy.PROGRESSIVE:
            return _PROGRESSIVE_LAYOUT
        if strategy is WaveStrategy.SYSTEMATIC:
            return _SYSTEMATIC_LAYOUT
        if strategy is WaveStrategy.ENTERPRISE:
            return _enterprise_layout(context.scope_size)
        # A plan cut short by max_waves still ends in validation. An uncut
        # low-complexity plan (three waves or fewer) has none.
        wanted = max(1, math.ceil(context.complexity * 5))
        count = min(self._config.max_waves, wanted)
        stages = [adaptive_stage(index / count) for index in range(count)]
        if 1 < count < wanted:
            stages[-1] = WaveStage.VALIDATION
        return tuple(_adaptive_wave(stage) for stage in stages)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        plan: WavePlan,
        context: WaveContext,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> WaveExecutionReport:
        token = cancel_token or CancellationToken()
        started = time.perf_counter()
        results: dict[str, WaveResult] = {}
        outputs: dict[str, object] = {}
        skipped: list[str] = []
        checkpoints: list[Checkpoint] = []
        halted_at: str | None = None

        self._logger.info("wave_plan_started", plan_id=plan.plan_id, strategy=plan.strategy.value)
        for wave in plan.waves:
            token.raise_if_cancelled()
            if not all(dep in results and results[dep].success for dep in wave.dependencies):
                skipped.append(wave.wave_id)
                self._record_skip()
                self._logger.info("wave_skipped", plan_id=plan.plan_id, wave_id=wave.wave_id)
                self._emit(
                    EventType.WAVE_SKIPPED,
                    {
                        "plan_id": plan.plan_id,
                        "wave_id": wave.wave_id,
                        "dependencies": list(wave.dependencies),
                    },
                    correlation_id=plan.plan_id,
                )
                continue

            await self._await_availability(plan, wave, token)
            result = await self._execute_wave(plan, wave, context, token)
            results[wave.wave_id] = result
            outputs.update(result.outputs)
            self._record_wave(result)

            if wave.requires_validation:
                passed, reason = await self._validate(wave, result, context)
                if not passed:
                    await self._fail_plan(plan, wave, result, reason, results, checkpoints)

            if self._config.checkpoint_enabled and wave.wave_id in plan.checkpoints:
                checkpoints.append(self._create_checkpoint(plan, wave, result, results))

            confidence = wave_confidence(result.metrics.errors_encountered)
            if confidence < self._config.min_confidence:
                halted_at = wave.wave_id
                self._logger.warning(
                    "wave_execution_halted",
                    plan_id=plan.plan_id,
                    wave_id=wave.wave_id,
                    confidence=confidence,
                    min_confidence=self._config.min_confidence,
                )
                self._emit(
                    EventType.WAVE_EXECUTION_HALTED,
                    {"plan_id": plan.plan_id, "wave_id": wave.wave_id, "confidence": confidence},
                    correlation_id=plan.plan_id,
                )
                break

        report = WaveExecutionReport(
            plan_id=plan.plan_id,
            strategy=plan.strategy,
            results=tuple(results.values()),
            outputs=outputs,
            skipped_waves=tuple(skipped),
            checkpoints=tuple(checkpoints),
            halted=halted_at is not None,
            halted_at=halted_at,
            duration_ms=_duration_ms(started),
            tokens_used=sum(result.metrics.tokens_used for result in results.values()),
        )
        with self._stats_lock:
            self._plans_executed += 1
            self._plans_halted += int(report.halted)
        self._logger.info(
            "wave_plan_completed",
            plan_id=plan.plan_id,
            success=report.success,
            waves_completed=len(report.results),
            skipped=len(report.skipped_waves),
            halted=report.halted,
            duration_ms=report.duration_ms,
        )
        self._emit(EventType.PLAN_COMPLETED, report.to_dict(), correlation_id=plan.plan_id)
        return report

    def statistics(self) -> dict[str, object]:
        with self._stats_lock:
            return {
                "total_waves_executed": self._waves_executed,
                "successful_waves": self._successful_waves,
                "average_duration_ms": (
                    self._successful_duration_ms / self._successful_waves
                    if self._successful_waves
                    else 0.0
                ),
                "total_tokens_used": self._tokens_used,
                "checkpoints_created": self._checkpoints_created,
                "waves_skipped": self._waves_skipped,
                "plans_executed": self._plans_executed,
                "plans_failed": self._plans_failed,
                "plans_halted": self._plans_halted,
            }

    async def _await_availability(
        self, plan: WavePlan, wave: Wave, token: CancellationToken
    ) -> None:
        if self._governor is None:
            return
        delay_ms = float(self._config.admission_poll_ms)
        deferrals = 0
        while not self._governor.is_available():
            token.raise_if_cancelled()
            if deferrals == 0:
                self._logger.info("wave_deferred", plan_id=plan.plan_id, wave_id=wave.wave_id)
                self._emit(
                    EventType.WAVE_DEFERRED,
                    {
                        "plan_id": plan.plan_id,
                        "wave_id": wave.wave_id,
                        "retry_in_ms": int(delay_ms),
                    },
                    correlation_id=plan.plan_id,
                )
            deferrals += 1
            await self._sleep(delay_ms / 1000.0)
            token.raise_if_cancelled()
            delay_ms = min(
                delay_ms * self._config.admission_backoff,
                float(self._config.admission_poll_max_ms),
            )
        if deferrals:
            self._logger.info(
                "wave_admitted_after_deferral",
                plan_id=plan.plan_id,
                wave_id=wave.wave_id,
                deferrals=deferrals,
            )

    async def _execute_wave(
        self, plan: WavePlan, wave: Wave, context: WaveContext, token: CancellationToken
    ) -> WaveResult:
        started = time.perf_counter()
        wave.status = WaveStatus.RUNNING
        wave.started_at = datetime.now(UTC)
        self._logger.info(
            "wave_started", plan_id=plan.plan_id, wave_id=wave.wave_id, stage=wave.stage.value
        )
        self._emit(
            EventType.WAVE_STARTED,
            {"plan_id": plan.plan_id, "wave_id": wave.wave_id, "stage": wave.stage.value},
            correlation_id=plan.plan_id,
        )

        outputs: dict[str, object] = {}
        tools: list[str] = []
        tokens = 0
        errors: list[str] = []
        groups = group_parallel_tasks(wave.tasks)
        for group in groups:
            token.raise_if_cancelled()
            settled = await gather_settled(
                (self._run_task(task, context, token) for task in group),
                max_concurrency=len(group),
                cancel_token=token,
            )
            for task, item in zip(group, settled, strict=True):
                if item.ok and item.value is not None:
                    outcome = item.value
                else:
                    outcome = TaskOutcome(
                        task_id=task.task_id,
                        error=f"{type(item.error).__name__}: {item.error}",
                    )
                outputs.update(outcome.outputs)
                tools.extend(tool for tool in outcome.tools_used if tool not in tools)
                tokens += outcome.tokens_used
                if outcome.error is not None:
                    errors.append(f"{task.task_id}: {outcome.error}")

        duration_ms = _duration_ms(started)
        result = WaveResult(
            wave_id=wave.wave_id,
            success=not errors,
            outputs=outputs,
            metrics=WaveMetrics(
                duration_ms=duration_ms,
                tokens_used=tokens,
                tools_used=tuple(tools),
                errors_encountered=len(errors),
            ),
            evidence={
                "stage": wave.stage.value,
                "task_count": len(wave.tasks),
                "group_count": len(groups),
            },
            errors=tuple(errors),
        )
        wave.status = WaveStatus.COMPLETED if result.success else WaveStatus.FAILED
        wave.finished_at = datetime.now(UTC)

        event_type = EventType.WAVE_COMPLETED if result.success else EventType.WAVE_FAILED
        self._logger.info(
            "wave_completed" if result.success else "wave_failed",
            plan_id=plan.plan_id,
            wave_id=wave.wave_id,
            duration_ms=duration_ms,
            errors=len(errors),
        )
        self._emit(
            event_type,
            {
                "plan_id": plan.plan_id,
                "wave_id": wave.wave_id,
                "metrics": result.metrics.to_dict(),
                "errors": list(errors),
            },
            correlation_id=plan.plan_id,
        )
        return result

    async def _run_task(
        self, task: WaveTask, context: WaveContext, token: CancellationToken
    ) -> TaskOutcome:
        timeout_seconds = self._config.wave_timeout_ms / 1000.0
        try:
            raw = await run_with_timeout(self._task_runner(task, context), timeout_seconds, token)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            return TaskOutcome(
                task_id=task.task_id,
                tools_used=task.tools,
                error=f"{type(exc).__name__}: {exc}",
            )
        if isinstance(raw, TaskOutcome):
            return raw
        if isinstance(raw, Mapping):
            return TaskOutcome(task_id=task.task_id, outputs=raw, tools_used=task.tools)
        return TaskOutcome(
            task_id=task.task_id,
            tools_used=task.tools,
            error=f"unexpected task result type {type(raw).__name__}",
        )

    async def _validate(
        self, wave: Wave, result: WaveResult, context: WaveContext
    ) -> tuple[bool, str]:
        if self._validator is None:
            return result.success, "wave reported errors"
        try:
            verdict = await call_maybe_async(self._validator, wave, result, context)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            return False, f"validator raised {type(exc).__name__}: {exc}"
        if isinstance(verdict, ValidationResult):
            reason = "; ".join(verdict.issues) or "validation failed"
            return verdict.passed, reason
        return bool(verdict), "validation failed"

    async def _fail_plan(
        self,
        plan: WavePlan,
        wave: Wave,
        result: WaveResult,
        reason: str,
        results: Mapping[str, WaveResult],
        checkpoints: list[Checkpoint],
    ) -> NoReturn:
        if self._config.rollback_enabled:
            checkpoint = checkpoints[-1] if checkpoints else None
            if self._rollback_hook is not None:
                try:
                    await call_maybe_async(self._rollback_hook, wave, result, checkpoint)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    self._logger.warning(
                        "wave_rollback_hook_failed",
                        plan_id=plan.plan_id,
                        wave_id=wave.wave_id,
                        error=f"{type(exc).__name__}: {exc}",
                    )
            wave.status = WaveStatus.ROLLED_BACK
            self._logger.warning(
                "wave_rolled_back",
                plan_id=plan.plan_id,
                wave_id=wave.wave_id,
                checkpoint=None if checkpoint is None else checkpoint.wave_id,
                reason=reason,
            )
            self._emit(
                EventType.WAVE_ROLLED_BACK,
                {
                    "plan_id": plan.plan_id,
                    "wave_id": wave.wave_id,
                    "checkpoint": None if checkpoint is None else checkpoint.wave_id,
                    "reason": reason,
                },
                correlation_id=plan.plan_id,
            )
        else:
            wave.status = WaveStatus.FAILED

        with self._stats_lock:
            self._plans_executed += 1
            self._plans_failed += 1
        self._logger.error(
            "wave_plan_failed", plan_id=plan.plan_id, wave_id=wave.wave_id, reason=reason
        )
        self._emit(
            EventType.PLAN_FAILED,
            {"plan_id": plan.plan_id, "wave_id": wave.wave_id, "reason": reason},
            correlation_id=plan.plan_id,
        )
        raise WavePlanFailure(
            plan_id=plan.plan_id,
            wave_id=wave.wave_id,
            reason=reason,
            results=tuple(results.values()),
        )

    def _create_checkpoint(
        self, plan: WavePlan, wave: Wave, result: WaveResult, results: Mapping[str, WaveResult]
    ) -> Checkpoint:
        checkpoint = Checkpoint(
            wave_id=wave.wave_id,
            created_at=datetime.now(UTC),
            result=result,
            state={
                "plan_id": plan.plan_id,
                "completed_waves": list(results),
                "tokens_used": sum(item.metrics.tokens_used for item in results.values()),
            },
        )
        with self._stats_lock:
            self._checkpoints_created += 1
        self._logger.info("checkpoint_created", plan_id=plan.plan_id, wave_id=wave.wave_id)
        self._emit(
            EventType.CHECKPOINT_CREATED,
            {"plan_id": plan.plan_id, "wave_id": wave.wave_id},
            correlation_id=plan.plan_id,
        )
        return checkpoint

    def _record_wave(self, result: WaveResult) -> None:
        with self._stats_lock:
            self._waves_executed += 1
            self._tokens_used += result.metrics.tokens_used
            if result.success:
                self._successful_waves += 1
                self._successful_duration_ms += result.metrics.duration_ms

    def _record_skip(self) -> None:
        with self._stats_lock:
            self._waves_skipped += 1

    def _emit(
        self,
        event_type: EventType,
        payload: Mapping[str, object],
        *,
        correlation_id: str | None = None,
    ) -> None:
        if self._event_bus is not None:
            self._event_bus.emit(event_type, payload, correlation_id=correlation_id)


@dataclass(frozen=True, slots=True)
class _TaskTemplate:
    name: str
    kind: str
    description: str
    parallel: bool = False
    inputs: Mapping[str, object] = field(default_factory=dict)


_PROGRESSIVE_LAYOUT: Final[tuple[tuple[WaveStage, _TaskTemplate], ...]] = (
    (WaveStage.DISCOVERY, _TaskTemplate("assess_current", "analysis", "Analyze current state")),
    (
        WaveStage.IMPLEMENTATION,
        _TaskTemplate("apply_improvements", "modification", "Apply incremental improvements", True),
    ),
    (
        WaveStage.VALIDATION,
        _TaskTemplate("validate_improvements", "validation", "Validate improvements"),
    ),
)

_SYSTEMATIC_LAYOUT: Final[tuple[tuple[WaveStage, _TaskTemplate], ...]] = (
    (WaveStage.DISCOVERY, _TaskTemplate("full_analysis", "analysis", "Comprehensive analysis")),
    (WaveStage.PLANNING, _TaskTemplate("design_solution", "design", "Design the solution")),
    (
        WaveStage.IMPLEMENTATION,
        _TaskTemplate("implement_solution", "modification", "Implement the solution", True),
    ),
    (WaveStage.VALIDATION, _TaskTemplate("security_audit", "validation", "Security audit")),
    (
        WaveStage.OPTIMIZATION,
        _TaskTemplate("optimize_performance", "optimization", "Optimize performance", True),
    ),
)


def _enterprise_layout(scope_size: int) -> tuple[tuple[WaveStage, _TaskTemplate], ...]:
    partitions = max(1, math.ceil(scope_size / ENTERPRISE_PARTITION_SIZE))
    layout: list[tuple[WaveStage, _TaskTemplate]] = [
        (
            WaveStage.DISCOVERY,
            _TaskTemplate(
                f"discover_partition_{index}",
                "analysis",
                f"Discover partition {index}",
                True,
                {"partition": index},
            ),
        )
        for index in range(min(partitions, 3))
    ]
    layout.append(
        (WaveStage.PLANNING, _TaskTemplate("coordinate", "design", "Coordinate partitions"))
    )
    layout.extend(
        (
            WaveStage.IMPLEMENTATION,
            _TaskTemplate(
                f"implement_partition_{index}",
                "modification",
                f"Implement partition {index}",
                True,
                {"partition": index},
            ),
        )
        for index in range(min(partitions, 5))
    )
    layout.append(
        (
            WaveStage.VALIDATION,
            _TaskTemplate("integration_validation", "validation", "Validate integrated result"),
        )
    )
    return tuple(layout)


def _adaptive_wave(stage: WaveStage) -> tuple[WaveStage, _TaskTemplate]:
    if stage is WaveStage.DISCOVERY:
        return stage, _TaskTemplate("explore", "analysis", "Explore the request", True)
    if stage is WaveStage.IMPLEMENTATION:
        return stage, _TaskTemplate("execute", "modification", "Execute the request", True)
    return stage, _TaskTemplate(stage.value, stage.value, f"{stage.value.capitalize()} step")


def is_wave_eligible(complexity: float, scope_size: int, operation_types: int) -> bool:
    return (
        complexity >= WAVE_MODE_MIN_COMPLEXITY
        and scope_size > WAVE_MODE_MIN_SCOPE
        and operation_types > WAVE_MODE_MIN_OPERATION_TYPES
    )


def adaptive_stage(ratio: float) -> WaveStage:
    for upper, stage in _ADAPTIVE_STAGES:
        if ratio < upper:
            return stage
    return WaveStage.OPTIMIZATION


def estimate_tokens(wave_count: int, complexity: float, scope_size: int) -> int:
    return int(
        _TOKENS_BASE
        + wave_count * _TOKENS_PER_WAVE * (1 + complexity)
        + scope_size * _TOKENS_PER_SCOPE_ITEM
    )


def estimate_duration_ms(task_count: int, complexity: float, scope_size: int) -> int:
    return int(task_count * _MS_PER_TASK * (1 + complexity) + scope_size * _MS_PER_SCOPE_ITEM)


def assess_risk(context: WaveContext, wave_count: int) -> RiskAssessment:
    factors: list[str] = []
    mitigations: list[str] = []
    if context.complexity > 0.8:
        factors.append("High complexity operation")
        mitigations.append("Use systematic wave approach")
    if context.risk_level > 0.7:
        factors.append("High risk level")
        mitigations.append("Enable checkpoints and rollback")
    if wave_count > 5:
        factors.append("Many waves required")
        mitigations.append("Monitor progress closely")
    return RiskAssessment(
        level=context.risk_level, factors=tuple(factors), mitigations=tuple(mitigations)
    )


def wave_confidence(errors: int) -> float:
    return max(0.0, 1.0 - errors / 10)


def group_parallel_tasks(tasks: tuple[WaveTask, ...]) -> tuple[tuple[WaveTask, ...], ...]:
    """Batch consecutive parallelizable tasks; every other task forms its own group."""

    groups: list[tuple[WaveTask, ...]] = []
    batch: list[WaveTask] = []
    for task in tasks:
        if task.can_parallelize:
            batch.append(task)
            continue
        if batch:
            groups.append(tuple(batch))
            batch = []
        groups.append((task,))
    if batch:
        groups.append(tuple(batch))
    return tuple(groups)


def _scope_from_args(args: Mapping[str, object]) -> int:
    explicit = arg_number(args, "scope_size")
    if explicit is not None:
        return max(0, int(explicit))
    items = sum(
        len(value) for value in args.values() if isinstance(value, (list, tuple, set, frozenset))
    )
    return items or 1


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _duration_ms(started: float) -> int:
    return max(0, int(round((time.perf_counter() - started) * 1000)))


__all__ = [
    "DEFAULT_TOKEN_BUDGET",
    "STAGE_RISK_WEIGHTS",
    "AvailabilityProbe",
    "RollbackHook",
    "TaskOutcome",
    "TaskRunner",
    "WaveContext",
    "WaveEngine",
    "WaveEngineConfig",
    "WaveExecutionReport",
    "WaveValidator",
    "adaptive_stage",
    "assess_risk",
    "echo_task_runner",
    "estimate_duration_ms",
    "estimate_tokens",
    "group_parallel_tasks",
    "is_wave_eligible",
    "wave_confidence",
]
