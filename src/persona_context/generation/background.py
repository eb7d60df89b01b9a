# persona_context/generation/background.py
"""
Detached tasks for best-effort side effects.

``spawn`` schedules a coroutine without awaiting it. The task is kept
referenced until it finishes (the event loop only holds weak references),
and any exception it raises is logged and dropped so that it can never
reach the user-visible path. ``drain`` waits for everything outstanding,
for shutdown and tests.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTasks:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(self._guard(coro, name or "background"), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.debug(f"Background task {name} cancelled")
            raise
        except Exception as e:
            logger.warning(f"Background task {name} failed: {e}", exc_info=True)

    async def drain(self, timeout: float | None = None) -> None:
        if not self._tasks:
            return
        pending = list(self._tasks)
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            logger.warning(f"{len(still_pending)} background tasks still running after drain timeout")
