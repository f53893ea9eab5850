"""Durable job queue and its consumer

Redis layout:
    event_jobs:queue    list, LPUSH producers / RPOP consumer
    event_jobs:delayed  sorted set, score = epoch when a retry is due

Without Redis the same API runs on an in-process deque and heap, which
keeps queue mode usable on a single instance (not durable).
"""

from __future__ import annotations

import asyncio
import heapq
import json
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Deque, List, Optional, Tuple

from redis import Redis

from src.core.config import settings
from src.core.exceptions import InvalidJobTransitionException, JobNotFoundException
from src.core.logging import logger
from src.jobs.executor import JobExecutor

QUEUE_KEY = "event_jobs:queue"
DELAYED_KEY = "event_jobs:delayed"


@dataclass
class QueuedJob:
    job_id: str
    attempt: int = 1
    early_stop: bool = True
    max_items: Optional[int] = None

    def encode(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def decode(cls, raw: str) -> "QueuedJob":
        data = json.loads(raw)
        return cls(
            job_id=data["job_id"],
            attempt=int(data.get("attempt", 1)),
            early_stop=bool(data.get("early_stop", True)),
            max_items=data.get("max_items"),
        )


def retry_delay(attempt: int, base_s: Optional[float] = None) -> float:
    """Exponential backoff after a failed attempt: base * 2**(attempt-1)"""
    base = settings.job_backoff_base_s if base_s is None else base_s
    return base * (2 ** (attempt - 1))


class JobQueue:
    def __init__(self, redis_client: Optional[Redis] = None):
        self.redis_client = redis_client
        self._ready: Deque[str] = deque()
        self._delayed: List[Tuple[float, int, str]] = []
        self._seq = 0

    @property
    def backend_name(self) -> str:
        return "redis" if self.redis_client is not None else "memory"

    def enqueue(self, job: QueuedJob, delay_s: float = 0.0) -> None:
        payload = job.encode()
        if delay_s > 0:
            due = time.time() + delay_s
            if self.redis_client is not None:
                self.redis_client.zadd(DELAYED_KEY, {payload: due})
            else:
                self._seq += 1
                heapq.heappush(self._delayed, (due, self._seq, payload))
            logger.info(f"[QUEUE] {job.job_id} attempt {job.attempt} delayed {delay_s:.1f}s ({self.backend_name})")
            return

        if self.redis_client is not None:
            self.redis_client.lpush(QUEUE_KEY, payload)
        else:
            self._ready.appendleft(payload)
        logger.info(f"[QUEUE] {job.job_id} attempt {job.attempt} enqueued ({self.backend_name})")

    def promote_due(self, now: Optional[float] = None) -> int:
        """Move retries whose backoff has elapsed onto the ready list"""
        now = time.time() if now is None else now
        moved = 0
        if self.redis_client is not None:
            for payload in self.redis_client.zrangebyscore(DELAYED_KEY, 0, now):
                # zrem wins only for one consumer when several poll at once
                if self.redis_client.zrem(DELAYED_KEY, payload):
                    self.redis_client.lpush(QUEUE_KEY, payload)
                    moved += 1
            return moved

        while self._delayed and self._delayed[0][0] <= now:
            _, _, payload = heapq.heappop(self._delayed)
            self._ready.appendleft(payload)
            moved += 1
        return moved

    def dequeue(self) -> Optional[QueuedJob]:
        self.promote_due()
        if self.redis_client is not None:
            raw = self.redis_client.rpop(QUEUE_KEY)
        else:
            raw = self._ready.pop() if self._ready else None
        if raw is None:
            return None
        try:
            return QueuedJob.decode(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"[QUEUE] Dropping malformed message: {e}")
            return None

    def size(self) -> Tuple[int, int]:
        """(ready, delayed)"""
        if self.redis_client is not None:
            return int(self.redis_client.llen(QUEUE_KEY)), int(self.redis_client.zcard(DELAYED_KEY))
        return len(self._ready), len(self._delayed)


class QueueWorker:
    """Consumes the job queue and retries failed runs with backoff"""

    def __init__(
        self,
        queue: JobQueue,
        executor: JobExecutor,
        max_attempts: Optional[int] = None,
        backoff_base_s: Optional[float] = None,
        poll_interval_s: Optional[float] = None,
    ):
        self.queue = queue
        self.executor = executor
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.backoff_base_s = settings.job_backoff_base_s if backoff_base_s is None else backoff_base_s
        self.poll_interval_s = poll_interval_s or settings.queue_poll_interval_s
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="queue-worker")
        logger.info(f"[QUEUE] Worker started ({self.queue.backend_name}, max_attempts={self.max_attempts})")

    async def stop(self) -> None:
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[QUEUE] Worker stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                job = self.queue.dequeue()
            except Exception as e:
                logger.error(f"[QUEUE] Dequeue failed: {type(e).__name__}: {e}")
                job = None
            if job is None:
                await asyncio.sleep(self.poll_interval_s)
                continue
            try:
                await self.handle(job)
            except Exception as e:
                logger.error(f"[QUEUE] Worker error on {job.job_id}: {type(e).__name__}: {e}", exc_info=True)

    async def handle(self, job: QueuedJob) -> bool:
        """Run one queued attempt; True when the job completed"""
        final_attempt = job.attempt >= self.max_attempts
        logger.info(f"[QUEUE] Running {job.job_id} (attempt {job.attempt}/{self.max_attempts})")
        try:
            await self.executor.run(
                job.job_id,
                final_attempt=final_attempt,
                early_stop=job.early_stop,
                max_items=job.max_items,
            )
            return True
        except (JobNotFoundException, InvalidJobTransitionException) as e:
            logger.warning(f"[QUEUE] Dropping {job.job_id}: {e}")
            return False
        except Exception as e:
            if final_attempt:
                logger.error(f"[QUEUE] {job.job_id} failed permanently after {job.attempt} attempt(s): {e}")
                return False
            delay = retry_delay(job.attempt, self.backoff_base_s)
            logger.warning(f"[QUEUE] {job.job_id} attempt {job.attempt} failed, retrying in {delay:.1f}s: {e}")
            try:
                self.queue.enqueue(
                    QueuedJob(job.job_id, job.attempt + 1, job.early_stop, job.max_items),
                    delay_s=delay,
                )
            except Exception as enqueue_error:
                logger.error(
                    f"[QUEUE] Could not requeue {job.job_id}: {type(enqueue_error).__name__}: {enqueue_error}"
                )
                self.executor.fail(
                    job.job_id,
                    f"{type(e).__name__}: {e} (retry not queued: {type(enqueue_error).__name__})",
                )
            return False
