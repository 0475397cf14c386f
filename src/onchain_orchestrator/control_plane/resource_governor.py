"""Resource governor: zone tracking, predictive monitoring, and admission control.

Concurrency model
- Current state lives in one immutable ``_GovernorState`` that is swapped as a
  whole. Readers (``current_zone``, ``current_snapshot``, ``admit``) never lock.
- Writers (monitor ticks, emergency mode) serialize on one re-entrant lock so
  zone-entry effects may call back into the governor.
- The monitor is a daemon thread; it never blocks request processing.

Failure semantics
- Public operations never raise. Unmeasurable readings count as
  ``unmeasurable_usage_percent`` (0 by default: fail open). Zone-entry effects
  that raise are logged and skipped.
"""

from __future__ import annotations

import math
import threading
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

import psutil
import structlog

from onchain_orchestrator.control_plane.budgets import BudgetLimits, ResourceBudget
from onchain_orchestrator.control_plane.predictor import TrendPredictor, ZonePrediction
from onchain_orchestrator.control_plane.zones import ZONE_SPECS, spec_for, zone_for_usage
from onchain_orchestrator.domain.events import EventType
from onchain_orchestrator.domain.models import (
    AdmissionDecision,
    ComplexityLevel,
    Priority,
    RequestDescriptor,
    ResourceSnapshot,
    Zone,
)

if TYPE_CHECKING:
    from onchain_orchestrator.observability.events import EventBus

_BYTES_PER_MB = 1024 * 1024

ActionHook = Callable[[str], None]
ZoneEffect = Callable[[Zone, ResourceSnapshot], object]


@dataclass(frozen=True, slots=True)
class GovernorConfig:
    monitor_interval_ms: int = 5000
    history_size: int = 100
    look_ahead_ms: int = 30_000
    prediction_confidence: float = 0.75
    unmeasurable_usage_percent: float = 0.0
    default_rate_limit_percent: float = 0.0
    default_congestion_percent: float = 20.0
    limits: BudgetLimits = field(default_factory=BudgetLimits)

    def __post_init__(self) -> None:
        if self.monitor_interval_ms <= 0:
            raise ValueError("monitor_interval_ms must be > 0")
        _validate_probability(self.prediction_confidence, "prediction_confidence")
        for name in (
            "unmeasurable_usage_percent",
            "default_rate_limit_percent",
            "default_congestion_percent",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 100.0:
                raise ValueError(f"{name} must be within [0, 100]")

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> GovernorConfig:
        """Build from a validated ``[governor]`` config section."""
        return cls(
            monitor_interval_ms=int(section["monitor_interval_ms"]),
            history_size=int(section["history_size"]),
            look_ahead_ms=int(section["look_ahead_ms"]),
            prediction_confidence=float(section["prediction_confidence"]),
            unmeasurable_usage_percent=float(section["unmeasurable_usage_percent"]),
            default_rate_limit_percent=float(section["default_rate_limit_percent"]),
            default_congestion_percent=float(section["default_congestion_percent"]),
            limits=BudgetLimits(
                max_tokens=int(section["max_tokens"]),
                max_time_ms=int(section["max_time_ms"]),
                memory_margin_mb=float(section["memory_margin_mb"]),
            ),
        )


@dataclass(frozen=True, slots=True)
class SystemReading:
    """Raw host reading; ``None`` marks a dimension that could not be measured."""

    cpu_percent: float | None = None
    memory_percent: float | None = None
    available_memory_mb: float | None = None


class MetricsProvider(Protocol):
    """Source for host readings (injectable for tests)."""

    def read(self) -> SystemReading: ...


class SystemMetricsProvider:
    """Collect host CPU and memory with ``psutil``; each dimension sampled independently."""

    def read(self) -> SystemReading:
        cpu: float | None
        try:
            cpu = float(psutil.cpu_percent(interval=None))
        except Exception:  # noqa: BLE001
            cpu = None

        memory_percent: float | None
        available_mb: float | None
        try:
            memory = psutil.virtual_memory()
            memory_percent = float(memory.percent)
            available_mb = float(memory.available) / _BYTES_PER_MB
        except Exception:  # noqa: BLE001
            memory_percent = None
            available_mb = None

        return SystemReading(
            cpu_percent=cpu, memory_percent=memory_percent, available_memory_mb=available_mb
        )


@dataclass(frozen=True, slots=True)
class _GovernorState:
    snapshot: ResourceSnapshot
    zone: Zone
    emergency: bool = False
    prediction: ZonePrediction | None = None
    proactive_zone: Zone | None = None


@dataclass(frozen=True, slots=True)
class _EffectRegistration:
    token: int
    effect: ZoneEffect
    zones: frozenset[Zone]


class ResourceGovernor:
    """Tracks the resource zone and decides whether new work may start."""

    def __init__(
        self,
        *,
        metrics_provider: MetricsProvider | None = None,
        config: GovernorConfig | None = None,
        budget: ResourceBudget | None = None,
        event_bus: EventBus | None = None,
        action_hook: ActionHook | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = config or GovernorConfig()
        self._metrics_provider = metrics_provider or SystemMetricsProvider()
        self._budget = budget or ResourceBudget(
            limits=self._config.limits, history_size=self._config.history_size
        )
        self._event_bus = event_bus
        self._action_hook = action_hook
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._predictor = TrendPredictor(
            history_size=self._config.history_size,
            look_ahead_ms=self._config.look_ahead_ms,
            interval_ms=self._config.monitor_interval_ms,
        )
        self._write_lock = threading.RLock()
        self._effects: list[_EffectRegistration] = []
        self._next_token = 1
        self._rate_limit_percent = self._config.default_rate_limit_percent
        self._congestion_percent = self._config.default_congestion_percent
        self._external_token_percent: float | None = None
        self._operations = 0
        self._transitions = 0
        self._usage_history: deque[float] = deque(maxlen=self._config.history_size)

        self._monitor_thread: threading.Thread | None = None
        self._stop_event = threading.Event()

        initial = ResourceSnapshot(
            rate_limit_percent=self._rate_limit_percent,
            blockchain_congestion_percent=self._congestion_percent,
        )
        self._state = _GovernorState(snapshot=initial, zone=self.zone_of(initial))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def config(self) -> GovernorConfig:
        return self._config

    @property
    def budget(self) -> ResourceBudget:
        return self._budget

    @property
    def current_zone(self) -> Zone:
        return self._state.zone

    @property
    def current_snapshot(self) -> ResourceSnapshot:
        return self._state.snapshot

    @property
    def last_prediction(self) -> ZonePrediction | None:
        return self._state.prediction

    @property
    def emergency_mode(self) -> bool:
        return self._state.emergency

    @property
    def is_monitoring(self) -> bool:
        thread = self._monitor_thread
        return thread is not None and thread.is_alive()

    def snapshot(self) -> ResourceSnapshot:
        """Sample a fresh snapshot. Never raises."""

        try:
            reading = self._metrics_provider.read()
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "governor_metrics_unavailable", error=f"{type(exc).__name__}: {exc}"
            )
            reading = SystemReading()

        token_percent = self._external_token_percent
        if token_percent is None:
            token_percent = self._budget.usage().token_usage_percent

        return ResourceSnapshot(
            cpu_percent=self._measured(reading.cpu_percent),
            memory_percent=self._measured(reading.memory_percent),
            token_usage_percent=self._measured(token_percent),
            rate_limit_percent=self._measured(self._rate_limit_percent),
            blockchain_congestion_percent=self._measured(self._congestion_percent),
            available_memory_mb=_non_negative_or_none(reading.available_memory_mb),
            captured_at=datetime.now(UTC),
        )

    def zone_of(self, snapshot: ResourceSnapshot) -> Zone:
        return zone_for_usage(snapshot.overall_usage)

    def recommendation(self) -> str:
        return spec_for(self.current_zone).recommendation

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def admit(
        self,
        descriptor: RequestDescriptor,
        *,
        priority: Priority | None = None,
        snapshot: ResourceSnapshot | None = None,
    ) -> AdmissionDecision:
        """Decide whether ``descriptor`` may start now. Never raises; fails open."""

        try:
            decision = self._decide(descriptor, priority, snapshot)
        except Exception as exc:  # noqa: BLE001
            self._logger.error(
                "governor_admission_error",
                tool_id=getattr(descriptor, "tool_id", None),
                error=f"{type(exc).__name__}: {exc}",
            )
            return AdmissionDecision(allowed=True, reason=None, zone=self.current_zone, usage=0.0)

        event_type = (
            EventType.ADMISSION_GRANTED if decision.allowed else EventType.ADMISSION_REJECTED
        )
        self._publish(event_type, {"tool_id": descriptor.tool_id, **decision.to_dict()})
        if not decision.allowed:
            self._logger.info(
                "governor_admission_rejected",
                tool_id=descriptor.tool_id,
                zone=decision.zone.value,
                reason=decision.reason,
            )
        return decision

    def _decide(
        self,
        descriptor: RequestDescriptor,
        priority: Priority | None,
        snapshot: ResourceSnapshot | None,
    ) -> AdmissionDecision:
        snap = snapshot if snapshot is not None else self.snapshot()
        usage = snap.overall_usage
        zone = Zone.CRITICAL if self._state.emergency else self.zone_of(snap)
        effective_priority = priority or Priority.from_score(descriptor.priority_score)

        def reject(reason: str) -> AdmissionDecision:
            return AdmissionDecision(allowed=False, reason=reason, zone=zone, usage=usage)

        if zone is Zone.CRITICAL and effective_priority is not Priority.CRITICAL:
            return reject(
                f"Critical resource zone ({usage:.1f}%). Only critical operations allowed."
            )
        if zone is Zone.RED and descriptor.complexity_level is ComplexityLevel.COMPLEX:
            return reject(f"High resource usage ({usage:.1f}%). Complex operations blocked.")
        if zone is Zone.ORANGE and effective_priority is Priority.LOW:
            return reject(f"Resource warning ({usage:.1f}%). Low priority operations deferred.")

        budget_reason = self._budget.check(
            descriptor.resource_estimate, available_memory_mb=snap.available_memory_mb
        )
        if budget_reason is not None:
            return reject(budget_reason)
        return AdmissionDecision(allowed=True, reason=None, zone=zone, usage=usage)

    def is_available(self) -> bool:
        """True while the zone still accepts staged work (below RED)."""

        return self.current_zone.rank < Zone.RED.rank

    def is_operation_allowed(self, operation: str) -> bool:
        restrictions = set(spec_for(self.current_zone).restrictions)
        lowered = operation.lower()
        blocks_new = restrictions & {"block_new_operations", "no_new_operations"}
        if blocks_new and lowered.startswith("new_"):
            return False
        if "essential_only" in restrictions and "critical" not in lowered:
            return False
        if "block_resource_intensive" in restrictions and "intensive" in lowered:
            return False
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def report_usage(self, tokens: int, time_ms: int) -> None:
        """Record completed work against the budget. Never raises."""

        try:
            self._budget.record(tokens, time_ms)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "governor_usage_report_failed", error=f"{type(exc).__name__}: {exc}"
            )

    def update_token_usage(self, used: int, budget: int) -> None:
        """Override the token dimension with an externally measured ratio."""

        if budget <= 0:
            self._external_token_percent = None
            return
        self._external_token_percent = _clamp_percent(100.0 * used / budget)

    def update_rate_limit(self, percent: float) -> None:
        self._rate_limit_percent = _clamp_percent(percent)

    def update_congestion(self, percent: float) -> None:
        self._congestion_percent = _clamp_percent(percent)

    def increment_operations(self) -> None:
        with self._write_lock:
            self._operations += 1

    def register_zone_entry(
        self, effect: ZoneEffect, *, zones: Iterable[Zone] | None = None
    ) -> int:
        """Run ``effect(zone, snapshot)`` whenever one of ``zones`` is entered.

        Effects run in registration order. Returns a token for ``unregister_zone_entry``.
        """

        if not callable(effect):
            raise ValueError("effect must be callable")
        selected = frozenset(zones) if zones is not None else frozenset(Zone)
        with self._write_lock:
            token = self._next_token
            self._next_token += 1
            self._effects.append(_EffectRegistration(token=token, effect=effect, zones=selected))
        return token

    def unregister_zone_entry(self, token: int) -> bool:
        with self._write_lock:
            before = len(self._effects)
            self._effects = [item for item in self._effects if item.token != token]
            return len(self._effects) != before

    def tick(self) -> Zone:
        """Sample, record history, handle a zone transition, then predict. Never raises."""

        with self._write_lock:
            try:
                return self._tick_locked()
            except Exception as exc:  # noqa: BLE001
                self._logger.error("governor_tick_failed", error=f"{type(exc).__name__}: {exc}")
                return self._state.zone

    def _tick_locked(self) -> Zone:
        snap = self.snapshot()
        self._predictor.record(snap)
        self._usage_history.append(snap.overall_usage)

        state = self._state
        new_zone = Zone.CRITICAL if state.emergency else self.zone_of(snap)
        if new_zone is not state.zone:
            self._state = replace(state, snapshot=snap, zone=new_zone, proactive_zone=None)
            self._on_transition(state.zone, new_zone, snap)
        else:
            self._state = replace(state, snapshot=snap)

        prediction = self._predictor.predict(snap.overall_usage)
        self._state = replace(self._state, prediction=prediction)
        if prediction is not None:
            self._handle_prediction(prediction, snap)
        return self._state.zone

    def set_emergency_mode(self, enabled: bool) -> Zone:
        """Force CRITICAL while enabled; disabling recomputes the zone from a fresh sample."""

        with self._write_lock:
            state = self._state
            if state.emergency == enabled:
                return state.zone
            self._state = replace(state, emergency=enabled)
            self._publish(EventType.EMERGENCY_MODE_CHANGED, {"enabled": enabled})
            self._logger.warning("governor_emergency_mode", enabled=enabled)
            if enabled and state.zone is not Zone.CRITICAL:
                self._state = replace(self._state, zone=Zone.CRITICAL, proactive_zone=None)
                self._on_transition(state.zone, Zone.CRITICAL, state.snapshot)
                return Zone.CRITICAL
            return self.tick()

    # ------------------------------------------------------------------
    # Monitoring lifecycle
    # ------------------------------------------------------------------

    def start_monitoring(self, interval_ms: int | None = None) -> bool:
        """Start the background monitor. Returns ``False`` if it is already running."""

        interval = interval_ms if interval_ms is not None else self._config.monitor_interval_ms
        if interval <= 0:
            raise ValueError("interval_ms must be > 0")
        with self._write_lock:
            if self.is_monitoring:
                return False
            self._predictor.interval_ms = interval
            self._stop_event = threading.Event()
            thread = threading.Thread(
                target=self._monitor_loop,
                args=(interval / 1000.0, self._stop_event),
                name="onchain-governor-monitor",
                daemon=True,
            )
            self._monitor_thread = thread
            thread.start()
        self._logger.info("governor_monitoring_started", interval_ms=interval)
        return True

    def stop(self, *, timeout_seconds: float = 5.0) -> None:
        """Stop the monitor thread. Idempotent."""

        with self._write_lock:
            thread = self._monitor_thread
            self._stop_event.set()
            self._monitor_thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout_seconds)
            self._logger.info("governor_monitoring_stopped")

    def _monitor_loop(self, interval_seconds: float, stop_event: threading.Event) -> None:
        self.tick()
        while not stop_event.wait(interval_seconds):
            self.tick()

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def statistics(self) -> dict[str, Any]:
        state = self._state
        history = tuple(self._usage_history)
        return {
            "current_zone": state.zone.value,
            "current_usage": round(state.snapshot.overall_usage, 4),
            "average_usage": round(sum(history) / len(history), 4) if history else 0.0,
            "samples": len(history),
            "transitions": self._transitions,
            "operations": self._operations,
            "emergency_mode": state.emergency,
            "recommendation": spec_for(state.zone).recommendation,
            "prediction": None if state.prediction is None else state.prediction.to_dict(),
            "budget": self._budget.statistics(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_transition(self, old: Zone, new: Zone, snapshot: ResourceSnapshot) -> None:
        self._transitions += 1
        self._logger.info(
            "governor_zone_transition",
            old_zone=old.value,
            new_zone=new.value,
            usage=round(snapshot.overall_usage, 2),
        )
        self._run_entry_effects(new, snapshot, prefix="zone_entry")
        self._publish(
            EventType.ZONE_TRANSITION,
            {"old_zone": old.value, "new_zone": new.value, "snapshot": snapshot.to_dict()},
        )

    def _handle_prediction(self, prediction: ZonePrediction, snapshot: ResourceSnapshot) -> None:
        if (
            prediction.predicted_zone is prediction.current_zone
            or prediction.confidence < self._config.prediction_confidence
        ):
            return
        self._publish(EventType.ZONE_PREDICTED, prediction.to_dict())
        if not prediction.is_worse or self._state.proactive_zone is prediction.predicted_zone:
            return

        self._state = replace(self._state, proactive_zone=prediction.predicted_zone)
        self._logger.info(
            "governor_proactive_action",
            current_zone=prediction.current_zone.value,
            predicted_zone=prediction.predicted_zone.value,
            confidence=round(prediction.confidence, 3),
        )
        actions = self._run_entry_effects(prediction.predicted_zone, snapshot, prefix="proactive")
        self._publish(
            EventType.PROACTIVE_ACTION,
            {"target_zone": prediction.predicted_zone.value, "actions": actions},
        )

    def _run_entry_effects(
        self, zone: Zone, snapshot: ResourceSnapshot, *, prefix: str
    ) -> list[str]:
        actions = [f"{prefix}:{name}" for name in spec_for(zone).optimizations]
        for action in actions:
            self._emit_action(action)

        with self._write_lock:
            registrations = [item for item in self._effects if zone in item.zones]
        for registration in registrations:
            try:
                registration.effect(zone, snapshot)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "governor_zone_effect_failed",
                    zone=zone.value,
                    effect=getattr(registration.effect, "__name__", repr(registration.effect)),
                    error=f"{type(exc).__name__}: {exc}",
                )
        return actions

    def _emit_action(self, action: str) -> None:
        if self._action_hook is None:
            return
        try:
            self._action_hook(action)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("governor_action_hook_failed", action=action, error=str(exc))

    def _publish(self, event_type: EventType, payload: Mapping[str, object]) -> None:
        if self._event_bus is None:
            return
        try:
            self._event_bus.emit(event_type, payload)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "governor_event_publish_failed", event_type=event_type.value, error=str(exc)
            )

    def _measured(self, value: float | None) -> float:
        if value is None or not math.isfinite(value):
            return self._config.unmeasurable_usage_percent
        return _clamp_percent(value)


def zone_catalog() -> list[dict[str, object]]:
    """Serializable view of every zone for diagnostics."""

    return [spec.to_dict() for spec in ZONE_SPECS]


def _clamp_percent(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(100.0, float(value)))


def _non_negative_or_none(value: float | None) -> float | None:
    if value is None or not math.isfinite(value):
        return None
    return max(0.0, value)


def _validate_probability(value: float, field_name: str) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{field_name} must be within [0, 1]")


__all__ = [
    "ActionHook",
    "GovernorConfig",
    "MetricsProvider",
    "ResourceGovernor",
    "SystemMetricsProvider",
    "SystemReading",
    "ZoneEffect",
    "zone_catalog",
]
