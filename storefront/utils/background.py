# storefront/utils/background.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

class BackgroundTasks:
    """Keeps references to fire-and-forget tasks so they can be drained on shutdown"""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error:
            logger.error(
                f"Background task {task.get_name()} failed: {error}",
                exc_info=(type(error), error, error.__traceback__)
            )

    async def drain(self, timeout: Optional[float] = None):
        """Wait for running tasks; whatever is left after ``timeout`` is cancelled"""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} background task(s) on shutdown")
            await asyncio.gather(*pending, return_exceptions=True)

async def run_periodic(interval: float, job: Callable[[], Awaitable], name: str = "job"):
    """Run ``job`` every ``interval`` seconds until cancelled; failures are logged"""
    while True:
        await asyncio.sleep(interval)
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Periodic {name} failed: {e}", exc_info=True)
