"""
onchain-orchestrator — worker fan-out

File: src/onchain_orchestrator/execution_plane/dispatch.py

Purpose
- Issue independent worker calls with bounded concurrency, wait for all of
  them to settle, and report successes and failures separately.

Normative behavior
- A failing, raising, or timed-out worker never cancels its siblings.
- Each call runs under ``run_with_timeout`` with the shared cancellation token.
- Cancellation propagates ``asyncio.CancelledError`` to the caller.
- Failed primaries are retried through their registered fallbacks in order;
  the first fallback that succeeds is recorded in ``fallbacks_used``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import structlog

from onchain_orchestrator.execution_plane.contracts import (
    Worker,
    WorkerContext,
    WorkerResponse,
)
from onchain_orchestrator.utils.concurrency import (
    CancellationToken,
    gather_settled,
    run_with_timeout,
)

if TYPE_CHECKING:
    from onchain_orchestrator.domain.models import JSONValue

_DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True, slots=True)
class FanOutResult:
    """Settled outcome of one fan-out, keyed by worker name."""

    successes: Mapping[str, WorkerResponse] = field(default_factory=dict)
    failures: Mapping[str, WorkerResponse] = field(default_factory=dict)
    fallbacks_used: Mapping[str, str] = field(default_factory=dict)
    duration_ms: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "successes", MappingProxyType(dict(self.successes)))
        object.__setattr__(self, "failures", MappingProxyType(dict(self.failures)))
        object.__setattr__(self, "fallbacks_used", MappingProxyType(dict(self.fallbacks_used)))

    @property
    def unrecovered(self) -> tuple[str, ...]:
        return tuple(name for name in self.failures if name not in self.fallbacks_used)

    @property
    def any_success(self) -> bool:
        return bool(self.successes)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "successes": sorted(self.successes),
            "failures": {name: list(resp.errors) for name, resp in sorted(self.failures.items())},
            "fallbacks_used": dict(sorted(self.fallbacks_used.items())),
            "duration_ms": self.duration_ms,
        }


async def fan_out(
    workers: Mapping[str, Worker],
    names: Sequence[str],
    context: WorkerContext,
    *,
    max_concurrency: int,
    timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS,
    fallbacks: Mapping[str, tuple[str, ...]] | None = None,
    cancel_token: CancellationToken | None = None,
    logger: Any | None = None,
) -> FanOutResult:
    """Call every worker in ``names`` and wait for all calls to settle.

    ``max_concurrency=1`` runs the calls one at a time in the given order.
    Names missing from ``workers`` fail without being called.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    token = cancel_token or CancellationToken()
    started = time.perf_counter()
    ordered = tuple(dict.fromkeys(names))

    responses = await _settle_all(
        workers, ordered, context, max_concurrency=max_concurrency,
        timeout_seconds=timeout_seconds, token=token,
    )
    successes = {name: resp for name, resp in responses.items() if resp.success}
    failures = {name: resp for name, resp in responses.items() if not resp.success}
    for name, resp in failures.items():
        log.warning("worker_failed", worker=name, errors=list(resp.errors))

    fallbacks_used: dict[str, str] = {}
    if fallbacks and failures:
        recovered = await gather_settled(
            (
                _first_successful_fallback(
                    workers, fallbacks.get(name, ()), context,
                    skip=successes.keys(), timeout_seconds=timeout_seconds, token=token,
                )
                for name in failures
            ),
            max_concurrency=max_concurrency,
            cancel_token=token,
        )
        for name, settled in zip(failures, recovered, strict=True):
            if not settled.ok or settled.value is None:
                continue
            fallback_name, response = settled.value
            successes.setdefault(fallback_name, response)
            fallbacks_used[name] = fallback_name
            log.info("worker_fallback_succeeded", worker=name, fallback=fallback_name)

    result = FanOutResult(
        successes=successes,
        failures=failures,
        fallbacks_used=fallbacks_used,
        duration_ms=_duration_ms(started),
    )
    log.debug(
        "worker_fan_out_completed",
        tool_id=context.tool_id,
        succeeded=len(result.successes),
        failed=len(result.failures),
        recovered=len(fallbacks_used),
        duration_ms=result.duration_ms,
    )
    return result


async def call_worker(
    name: str,
    worker: Worker | None,
    context: WorkerContext,
    *,
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> WorkerResponse:
    """Run one worker call and convert any failure into a failed response."""

    if worker is None:
        return WorkerResponse.failure(name, f"worker {name!r} is not registered")
    try:
        raw = await run_with_timeout(worker.analyze(context), timeout_seconds, cancel_token)
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # noqa: BLE001
        return WorkerResponse.failure(name, f"{type(exc).__name__}: {exc}")
    return WorkerResponse.coerce(raw, agent=name)


async def _settle_all(
    workers: Mapping[str, Worker],
    names: tuple[str, ...],
    context: WorkerContext,
    *,
    max_concurrency: int,
    timeout_seconds: float,
    token: CancellationToken,
) -> dict[str, WorkerResponse]:
    settled = await gather_settled(
        (
            call_worker(
                name, workers.get(name), context,
                timeout_seconds=timeout_seconds, cancel_token=token,
            )
            for name in names
        ),
        max_concurrency=max_concurrency,
        cancel_token=token,
    )
    responses: dict[str, WorkerResponse] = {}
    for name, outcome in zip(names, settled, strict=True):
        if outcome.ok and outcome.value is not None:
            responses[name] = outcome.value
        else:
            error = outcome.error
            responses[name] = WorkerResponse.failure(name, f"{type(error).__name__}: {error}")
    return responses


async def _first_successful_fallback(
    workers: Mapping[str, Worker],
    candidates: tuple[str, ...],
    context: WorkerContext,
    *,
    skip: Collection[str],
    timeout_seconds: float,
    token: CancellationToken,
) -> tuple[str, WorkerResponse] | None:
    for candidate in candidates:
        if candidate in skip or candidate not in workers:
            continue
        response = await call_worker(
            candidate, workers[candidate], context,
            timeout_seconds=timeout_seconds, cancel_token=token,
        )
        if response.success:
            return candidate, response
    return None


def _duration_ms(started: float) -> int:
    return max(0, int(round((time.perf_counter() - started) * 1000)))


__all__ = ["FanOutResult", "call_worker", "fan_out"]
