from __future__ import annotations

import asyncio
from typing import Awaitable

import structlog

logger = structlog.get_logger(__name__)


class DetachedTaskRunner:
    """
    Runs best-effort side effects (confirmation mails and the like) in the
    background. A failing task is logged and never reaches the caller that
    submitted it.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Awaitable, *, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(self._guard(coro, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Awaitable, name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.warning("detached_task_cancelled", task=name)
            raise
        except Exception:
            logger.exception("detached_task_failed", task=name)

    async def drain(self, timeout: float | None = None) -> None:
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("detached_tasks_abandoned", count=len(pending))
