"""
Coalesce concurrent computations that share a key into one in-flight task.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Tuple

logger = logging.getLogger(__name__)


class SingleFlight:
    def __init__(self) -> None:
        self._inflight: Dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # mark the exception retrieved even if every waiter went away
            task.exception()

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Tuple[Any, bool]:
        """Run ``fn`` once per key at a time.

        Returns ``(result, shared)`` where ``shared`` is True when the caller
        joined a computation started by someone else. The shared task is
        shielded: a waiter being cancelled does not cancel the work.
        """
        task = self._inflight.get(key)
        if task is not None:
            logger.debug("[single_flight] joining in-flight %s", key)
            return await asyncio.shield(task), True
        task = asyncio.get_running_loop().create_task(fn())
        self._inflight[key] = task
        task.add_done_callback(lambda t: self._forget(key, t))
        return await asyncio.shield(task), False
