from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import TypeVar

from token_broker.errors import IssuanceTimeoutError

T = TypeVar("T")


def _discard_result(task: asyncio.Task[object]) -> None:
    with suppress(asyncio.CancelledError, Exception):
        task.exception()


async def run_with_deadline(
    func: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float,
    name: str = "token-generate",
) -> T:
    """Run ``func`` as a task and wait at most ``timeout_seconds`` for it.

    The first outcome wins: the task's result or exception propagates
    unchanged, or ``IssuanceTimeoutError`` is raised once the deadline passes.
    A task that loses the race is cancelled and whatever it later produces
    is dropped.

    Raises:
        IssuanceTimeoutError: When the deadline elapses first.
    """

    async def _invoke() -> T:
        return await func()

    task: asyncio.Task[T] = asyncio.create_task(_invoke(), name=name)
    task.add_done_callback(_discard_result)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=timeout_seconds)
    except TimeoutError as exc:
        if task.done() and not task.cancelled() and task.exception() is exc:
            raise
        task.cancel()
        raise IssuanceTimeoutError(timeout_seconds) from exc
    except asyncio.CancelledError:
        task.cancel()
        raise
