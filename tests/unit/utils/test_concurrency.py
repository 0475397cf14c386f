"""
onchain-orchestrator — unit tests for async concurrency primitives

File: tests/unit/utils/test_concurrency.py

Purpose
- Validate settled fan-out, timeouts, and cooperative cancellation.

What this test file should cover
- gather_settled isolates failures and keeps submission order.
- Concurrency bound is honored.
- run_with_timeout raises TimeoutError / CancelledError as documented.
"""

from __future__ import annotations

import asyncio

import pytest

from onchain_orchestrator.utils.concurrency import (
    BoundedSemaphore,
    CancellationToken,
    call_maybe_async,
    gather_settled,
    run_with_timeout,
)


async def _value(value: int, delay: float = 0.0) -> int:
    await asyncio.sleep(delay)
    return value


async def _boom() -> int:
    raise RuntimeError("boom")


async def test_gather_settled_isolates_failures_and_keeps_order() -> None:
    settled = await gather_settled(
        [_value(1, 0.02), _boom(), _value(3)],
        max_concurrency=3,
    )

    assert [item.index for item in settled] == [0, 1, 2]
    assert settled[0].ok and settled[0].value == 1
    assert not settled[1].ok
    assert isinstance(settled[1].error, RuntimeError)
    assert settled[2].value == 3


async def test_gather_settled_respects_concurrency_limit() -> None:
    active = 0
    peak = 0

    async def tracked() -> None:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1

    await gather_settled([tracked() for _ in range(6)], max_concurrency=2)

    assert peak == 2


async def test_gather_settled_with_no_items_returns_empty_tuple() -> None:
    assert await gather_settled([], max_concurrency=1) == ()


async def test_gather_settled_raises_when_token_already_cancelled() -> None:
    token = CancellationToken()
    token.cancel()
    coroutine = _value(1)

    with pytest.raises(asyncio.CancelledError):
        await gather_settled([coroutine], max_concurrency=1, cancel_token=token)
    coroutine.close()


async def test_run_with_timeout_returns_value() -> None:
    assert await run_with_timeout(_value(7), 1.0) == 7


async def test_run_with_timeout_raises_timeout_error() -> None:
    with pytest.raises(TimeoutError):
        await run_with_timeout(_value(1, 1.0), 0.01)


async def test_run_with_timeout_propagates_cancellation_from_token() -> None:
    token = CancellationToken()

    async def cancel_soon() -> None:
        await asyncio.sleep(0.01)
        token.cancel()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(_value(1, 1.0), 5.0, token)
    await canceller


async def test_run_with_timeout_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        await run_with_timeout(_value(1), 0)


async def test_bounded_semaphore_tracks_peak_usage() -> None:
    semaphore = BoundedSemaphore(2)
    async with semaphore.permit():
        async with semaphore.permit():
            assert semaphore.in_use == 2

    assert semaphore.snapshot() == {"limit": 2, "in_use": 0, "available": 2, "peak": 2}
    with pytest.raises(RuntimeError):
        semaphore.release()


async def test_call_maybe_async_accepts_sync_and_async_callables() -> None:
    async def doubled(value: int) -> int:
        return value * 2

    assert await call_maybe_async(lambda value: value + 1, 1) == 2
    assert await call_maybe_async(doubled, 4) == 8
