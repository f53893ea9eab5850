"""Job dispatch - create job rows and hand them to the configured runner

inline: a detached task in the background worker pool
queue:  a message on the durable job queue, picked up by the QueueWorker
"""

import secrets
import time
from typing import Optional, Sequence

from sqlalchemy.orm import sessionmaker

from src.core.config import settings
from src.core.database import get_db_context
from src.core.exceptions import JobException
from src.core.logging import logger
from src.jobs.executor import JobExecutor
from src.jobs.queue import JobQueue, QueuedJob
from src.jobs.state import JobStatus
from src.jobs.worker_pool import BackgroundWorkerPool
from src.repositories.impl.scraping_job_repository import ScrapingJobRepository


def new_job_id(prefix: str) -> str:
    """{prefix}-{epoch ms}-{random}"""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"


class JobDispatcher:
    def __init__(
        self,
        session_factory: sessionmaker,
        executor: JobExecutor,
        pool: BackgroundWorkerPool,
        queue: Optional[JobQueue] = None,
        mode: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.executor = executor
        self.pool = pool
        self.queue = queue
        self.mode = mode or settings.job_execution_mode
        if self.mode == "queue" and queue is None:
            raise ValueError("queue mode needs a JobQueue")

    def create_job(
        self,
        prefix: str,
        *,
        query: Optional[str],
        city: Optional[str],
        platforms: Sequence[str],
    ) -> str:
        """Insert a queued job row and return its id

        Raises:
            DatabaseException: the row could not be written
        """
        job_id = new_job_id(prefix)
        with get_db_context(self.session_factory) as db:
            ScrapingJobRepository(db).create(
                job_id,
                platform="multi",
                status=JobStatus.QUEUED,
                query=query,
                city=city,
                platforms=platforms,
            )
        return job_id

    def dispatch(self, job_id: str, *, early_stop: bool = True, max_items: Optional[int] = None) -> None:
        """Hand a created job to the runner

        Raises:
            JobException: queue mode and the message could not be queued
                (the job row is marked failed first)
        """
        if self.mode == "queue":
            try:
                self.queue.enqueue(QueuedJob(job_id, attempt=1, early_stop=early_stop, max_items=max_items))
            except Exception as e:
                message = f"Could not queue job: {type(e).__name__}: {e}"
                self.executor.fail(job_id, message)
                raise JobException(message, details={"job_id": job_id})
            logger.info(f"[JOB] {job_id} queued")
            return

        self.pool.submit(
            job_id,
            lambda: self.executor.run(job_id, final_attempt=True, early_stop=early_stop, max_items=max_items),
        )
        logger.info(f"[JOB] {job_id} dispatched inline")
