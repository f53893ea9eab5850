"""Background worker pool for crawl jobs

Jobs are detached asyncio tasks: they are not tied to the request that
submitted them, so a client disconnecting never cancels a crawl. Every
task runs inside an error boundary that logs and swallows, and a
semaphore caps how many run at once.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Optional

from src.core.config import settings
from src.core.logging import logger

JobFactory = Callable[[], Awaitable[object]]


class BackgroundWorkerPool:
    def __init__(self, concurrency: Optional[int] = None):
        self.concurrency = concurrency or settings.worker_pool_concurrency
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, factory: JobFactory) -> asyncio.Task:
        """Schedule ``factory()`` as a supervised background task

        Args:
            name: task label (the job id)
            factory: zero-arg callable returning the coroutine to run

        Raises:
            RuntimeError: the pool has been shut down
        """
        if self._closed:
            raise RuntimeError("Worker pool is shut down")

        task = asyncio.create_task(self._supervise(name, factory), name=f"job:{name}")
        self._tasks[name] = task
        task.add_done_callback(lambda _t, key=name: self._tasks.pop(key, None))
        logger.info(f"[WORKER] Submitted {name} (active={self.active_count}/{self.concurrency})")
        return task

    async def _supervise(self, name: str, factory: JobFactory) -> None:
        async with self._semaphore:
            try:
                await factory()
                logger.info(f"[WORKER] {name} finished")
            except asyncio.CancelledError:
                logger.warning(f"[WORKER] {name} cancelled")
                raise
            except Exception as e:
                logger.error(f"[WORKER] {name} failed: {type(e).__name__}: {e}")

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for every in-flight task; True if all finished in time"""
        pending = [t for t in self._tasks.values() if not t.done()]
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Stop accepting work, give running jobs ``timeout`` seconds, then cancel"""
        self._closed = True
        if await self.wait_idle(timeout):
            logger.info("[WORKER] Pool drained")
            return

        pending = [t for t in self._tasks.values() if not t.done()]
        logger.warning(f"[WORKER] Cancelling {len(pending)} unfinished job(s)")
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
