"""
onchain-orchestrator — unit tests for worker fan-out

File: tests/unit/execution_plane/test_dispatch.py

Purpose
- Validate failure isolation, timeouts, fallbacks, and cancellation for
  ``fan_out`` and ``call_worker``.

What this test file should cover
- One failing, raising, or slow worker never affects its siblings.
- Fallbacks are tried in order and only when registered.
- A cancelled token propagates ``asyncio.CancelledError``.
"""

from __future__ import annotations

import asyncio

import pytest

from onchain_orchestrator.execution_plane.contracts import WorkerContext, WorkerResponse
from onchain_orchestrator.execution_plane.dispatch import call_worker, fan_out
from onchain_orchestrator.utils.concurrency import CancellationToken

CONTEXT = WorkerContext(tool_id="oca_analyze", args={"target": "0x1"})


class FakeWorker:
    def __init__(
        self,
        name: str,
        *,
        result: object = None,
        error: Exception | None = None,
        delay: float = 0.0,
        calls: list[str] | None = None,
    ) -> None:
        self._name = name
        self._result = result
        self._error = error
        self._delay = delay
        self._calls = calls if calls is not None else []

    @property
    def name(self) -> str:
        return self._name

    async def analyze(self, context: WorkerContext) -> object:
        self._calls.append(self._name)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        if self._result is not None:
            return self._result
        return {"success": True, "data": {"worker": self._name}}


async def test_fan_out_isolates_failures() -> None:
    workers = {
        "rug_detector": FakeWorker("rug_detector"),
        "alpha_hunter": FakeWorker("alpha_hunter", error=RuntimeError("rpc down")),
        "token_researcher": FakeWorker("token_researcher", result={"error": "no data"}),
    }

    result = await fan_out(workers, list(workers), CONTEXT, max_concurrency=3)

    assert set(result.successes) == {"rug_detector"}
    assert result.failures["alpha_hunter"].errors == ("RuntimeError: rpc down",)
    assert result.failures["token_researcher"].errors == ("no data",)
    assert result.unrecovered == ("alpha_hunter", "token_researcher")
    assert result.any_success


async def test_unregistered_worker_fails_without_a_call() -> None:
    result = await fan_out({}, ["ghost", "ghost"], CONTEXT, max_concurrency=2)

    assert list(result.failures) == ["ghost"]
    assert result.failures["ghost"].errors == ("worker 'ghost' is not registered",)
    assert not result.any_success


async def test_slow_worker_times_out_alone() -> None:
    workers = {
        "slow": FakeWorker("slow", delay=5.0),
        "fast": FakeWorker("fast"),
    }

    result = await fan_out(
        workers, ["slow", "fast"], CONTEXT, max_concurrency=2, timeout_seconds=0.05
    )

    assert set(result.successes) == {"fast"}
    assert result.failures["slow"].errors == (
        "TimeoutError: operation timed out after 0.05 seconds",
    )


async def test_failed_workers_recover_through_registered_fallbacks() -> None:
    calls: list[str] = []
    workers = {
        "rug_detector": FakeWorker("rug_detector", error=RuntimeError("down"), calls=calls),
        "broken_fallback": FakeWorker("broken_fallback", result={"success": False}, calls=calls),
        "basic_security_check": FakeWorker("basic_security_check", calls=calls),
        "whale_tracker": FakeWorker("whale_tracker", error=RuntimeError("down"), calls=calls),
    }
    fallbacks = {
        "rug_detector": ("missing", "broken_fallback", "basic_security_check"),
        "whale_tracker": ("unregistered",),
    }

    result = await fan_out(
        workers,
        ["rug_detector", "whale_tracker"],
        CONTEXT,
        max_concurrency=1,
        fallbacks=fallbacks,
    )

    assert dict(result.fallbacks_used) == {"rug_detector": "basic_security_check"}
    assert "basic_security_check" in result.successes
    assert result.unrecovered == ("whale_tracker",)
    assert "missing" not in calls
    assert calls.index("broken_fallback") < calls.index("basic_security_check")
    assert result.to_dict()["fallbacks_used"] == {"rug_detector": "basic_security_check"}


async def test_fallback_already_successful_is_not_called_again() -> None:
    calls: list[str] = []
    workers = {
        "alpha_hunter": FakeWorker("alpha_hunter", error=RuntimeError("down"), calls=calls),
        "trending_tokens": FakeWorker("trending_tokens", calls=calls),
    }

    result = await fan_out(
        workers,
        ["alpha_hunter", "trending_tokens"],
        CONTEXT,
        max_concurrency=2,
        fallbacks={"alpha_hunter": ("trending_tokens",)},
    )

    assert calls.count("trending_tokens") == 1
    assert dict(result.fallbacks_used) == {}
    assert result.unrecovered == ("alpha_hunter",)


async def test_max_concurrency_one_preserves_order() -> None:
    calls: list[str] = []
    names = ["c", "a", "b"]
    workers = {name: FakeWorker(name, calls=calls) for name in names}

    await fan_out(workers, names, CONTEXT, max_concurrency=1)

    assert calls == names


async def test_cancelled_token_propagates() -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await fan_out(
            {"a": FakeWorker("a")}, ["a"], CONTEXT, max_concurrency=1, cancel_token=token
        )


async def test_call_worker_coerces_plain_results() -> None:
    response = await call_worker(
        "defi_analyzer",
        FakeWorker("defi_analyzer", result={"data": 3}),
        CONTEXT,
        timeout_seconds=1.0,
    )

    assert isinstance(response, WorkerResponse)
    assert response.success
    assert dict(response.data) == {"value": 3}
