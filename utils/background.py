import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)

# Strong references so pending side-effect tasks are not garbage collected mid-flight.
_pending: Set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("Background task %s failed: %s", task.get_name(), error)


def spawn(coro: Awaitable, name: str) -> asyncio.Task:
    """Run an advisory side effect without making the caller wait for it."""
    task = asyncio.ensure_future(coro)
    task.set_name(name)
    _pending.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain() -> None:
    """Wait for every side effect spawned so far (shutdown and tests)."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
