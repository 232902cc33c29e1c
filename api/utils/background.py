"""
Fire-and-forget side effects.

The teaching turn must never wait on, or fail because of, analytics writes,
evidence recording or validation. `BackgroundTaskRunner.spawn` detaches a
coroutine, keeps a strong reference until it finishes and logs any exception
under the task's name.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Set

from api.utils.logger import configure_logging

logger = configure_logging()


class BackgroundTaskRunner:
    def __init__(self, log: logging.Logger | None = None):
        self._tasks: Set[asyncio.Task] = set()
        self._log = log or logger

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._guard(name, coro), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def spawn_blocking(self, name: str, fn: Callable[..., Any], *args: Any) -> asyncio.Task:
        """Run a synchronous (DB) call on a worker thread as a background task."""
        return self.spawn(name, asyncio.to_thread(fn, *args))

    async def _guard(self, name: str, coro: Awaitable[Any]) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            self._log.warning("background task cancelled name=%s", name)
            raise
        except Exception as e:
            self._log.error("background task failed name=%s error=%s", name, e, exc_info=True)
            return None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight tasks (used on shutdown and in tests)."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)
