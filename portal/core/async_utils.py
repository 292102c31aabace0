from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, TypeVar

import anyio

T = TypeVar("T")

logger = logging.getLogger(__name__)

# Strong references to in-flight detached tasks (the loop only keeps weak ones).
_detached_tasks: set[asyncio.Task] = set()


def run_async(coro: Coroutine[object, object, T], *, timeout: float | None = None) -> T:
    """
    Run an async coroutine from sync code without asyncio.run in request threads.

    - In worker threads spawned by AnyIO, uses anyio.from_thread.run to execute on the main loop.
    - Falls back to anyio.run when no AnyIO worker thread is available (e.g., CLI/tests).
    - Raises if called from an async context in the same thread (use await instead).
    """

    async def _runner() -> T:
        if timeout is not None:
            with anyio.fail_after(timeout):
                return await coro
        return await coro

    try:
        return anyio.from_thread.run(_runner)
    except RuntimeError:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return anyio.run(_runner)
        raise RuntimeError("run_async called from async context; use await instead")


def _on_detached_done(task: asyncio.Task) -> None:
    _detached_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Detached task %s failed: %s",
            task.get_name(),
            exc.__class__.__name__,
            exc_info=exc,
        )


def spawn_detached(coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
    """
    Schedule a fire-and-forget coroutine on the running loop.

    The caller never awaits the result; failures are logged by the done
    callback and never reach the request that spawned the task.
    """
    task = asyncio.create_task(coro, name=name)
    _detached_tasks.add(task)
    task.add_done_callback(_on_detached_done)
    return task


async def wait_for_detached(timeout: float = 5.0) -> None:
    """Wait for in-flight detached tasks (shutdown hook and tests)."""
    pending = [t for t in _detached_tasks if not t.done()]
    if not pending:
        return
    await asyncio.wait(pending, timeout=timeout)
