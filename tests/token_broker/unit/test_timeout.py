import asyncio
import time

import pytest

from token_broker.errors import IssuanceTimeoutError
from token_broker.timeout import run_with_deadline

pytestmark = pytest.mark.asyncio


async def test_returns_result_before_deadline() -> None:
    async def _quick() -> str:
        await asyncio.sleep(0)
        return "token"

    assert await run_with_deadline(_quick, timeout_seconds=1.0) == "token"


async def test_propagates_task_exception_unchanged() -> None:
    async def _boom() -> str:
        raise ValueError("bad grant")

    with pytest.raises(ValueError, match="bad grant"):
        await run_with_deadline(_boom, timeout_seconds=1.0)


async def test_propagates_inner_timeout_error_unchanged() -> None:
    inner = TimeoutError("socket read timed out")

    async def _inner_timeout() -> str:
        raise inner

    with pytest.raises(TimeoutError) as excinfo:
        await run_with_deadline(_inner_timeout, timeout_seconds=1.0)

    assert excinfo.value is inner
    assert not isinstance(excinfo.value, IssuanceTimeoutError)


async def test_deadline_elapses_promptly_and_cancels_task() -> None:
    cancelled = asyncio.Event()

    async def _never() -> str:
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return "late"

    start = time.monotonic()
    with pytest.raises(IssuanceTimeoutError) as excinfo:
        await run_with_deadline(_never, timeout_seconds=0.05)
    elapsed = time.monotonic() - start

    assert elapsed < 0.5
    assert excinfo.value.timeout_seconds == 0.05
    assert str(excinfo.value) == "token generation timeout after 0.05s"
    await asyncio.wait_for(cancelled.wait(), timeout=1.0)


async def test_deadline_returns_even_if_task_ignores_cancellation() -> None:
    finished = asyncio.Event()

    async def _stubborn() -> str:
        while True:
            try:
                await asyncio.sleep(0.2)
                finished.set()
                return "late"
            except asyncio.CancelledError:
                continue

    start = time.monotonic()
    with pytest.raises(IssuanceTimeoutError):
        await run_with_deadline(_stubborn, timeout_seconds=0.05)

    assert time.monotonic() - start < 0.2
    await asyncio.wait_for(finished.wait(), timeout=1.0)


async def test_caller_cancellation_cancels_task() -> None:
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def _never() -> str:
        started.set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return "late"

    caller = asyncio.create_task(run_with_deadline(_never, timeout_seconds=60))
    await started.wait()
    caller.cancel()

    with pytest.raises(asyncio.CancelledError):
        await caller
    await asyncio.wait_for(cancelled.wait(), timeout=1.0)


async def test_timeout_error_is_a_timeout() -> None:
    assert issubclass(IssuanceTimeoutError, TimeoutError)
