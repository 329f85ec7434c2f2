import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class RequestCoalescer:
    """
    Single-flight loader: concurrent misses on the same key share one
    in-flight load instead of each querying the store.

    Only coalesces within one process and one event loop.
    """

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Task] = {}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _finish(self, key: str, task: asyncio.Task) -> None:
        # Mark a failure as retrieved even when every waiter was cancelled
        if not task.cancelled():
            task.exception()
        self._in_flight.pop(key, None)

    async def run(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(loader())
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._finish(key, done))
        else:
            logger.debug(f"[CACHE] Joining in-flight load for {key}")
        # shield: one caller being cancelled must not cancel the shared load
        return await asyncio.shield(task)
