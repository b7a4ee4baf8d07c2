"""Registry for fire-and-forget side effects (usage counting, cache writes)."""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Detached asyncio tasks with their own error sink.

    Tasks are owned by the registry rather than by the request that spawned them,
    so cancelling a request stream leaves them running. Failures are logged and
    never re-raised.
    """

    def __init__(self) -> None:
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def spawn(self, coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task:
        """Schedule `coro` without awaiting it."""
        loop = asyncio.get_running_loop()
        task = loop.create_task(coro, name=description)
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.debug(f"Background task cancelled: {task.get_name()}")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Failed to {task.get_name()}: {error}")

    async def drain(self, timeout: float = 30.0) -> None:
        """Wait for pending tasks, cancelling any still running after `timeout`."""
        if not self._pending:
            return

        logger.debug(f"Draining {len(self._pending)} background tasks...")
        try:
            await asyncio.wait_for(
                asyncio.gather(*list(self._pending), return_exceptions=True),
                timeout=timeout,
            )
        except TimeoutError:
            logger.warning(f"Drain timed out after {timeout}s with {len(self._pending)} tasks remaining")
            for task in list(self._pending):
                if not task.done():
                    task.cancel()
