"""Scraping job repository - durable job records"""
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.exceptions import DatabaseConnectionException, DatabaseQueryException, JobNotFoundException
from src.core.logging import logger
from src.jobs.state import JobStatus, ensure_transition
from src.repositories.models import ScrapingJob


class ScrapingJobRepository:
    """Job data access layer

    Every status change goes through the lifecycle guard, so a terminal
    job can only have its audit fields touched.
    """

    def __init__(self, db: Session):
        self.db = db

    def _fail(self, operation: str, error: Exception):
        self.db.rollback()
        logger.error(f"[DB] job {operation} failed: {type(error).__name__}: {error}")
        if isinstance(error, (OperationalError, InterfaceError)):
            raise DatabaseConnectionException(str(error), details={"operation": operation}) from error
        raise DatabaseQueryException(operation, str(error)) from error

    def create(
        self,
        job_id: str,
        *,
        platform: str = "multi",
        status: JobStatus = JobStatus.QUEUED,
        query: Optional[str] = None,
        city: Optional[str] = None,
        platforms: Sequence[str] = (),
    ) -> ScrapingJob:
        if status not in (JobStatus.PENDING, JobStatus.QUEUED):
            raise ValueError(f"New jobs start as pending or queued, got {status.value}")
        try:
            job = ScrapingJob(
                id=job_id,
                platform=platform,
                status=status.value,
                query=query,
                city=city,
                platforms=list(platforms),
                events_scraped=0,
                attempts=0,
                created_at=datetime.utcnow(),
            )
            self.db.add(job)
            self.db.commit()
            self.db.refresh(job)
            logger.info(f"[JOB] Created {job_id} (status={status.value}, platforms={list(platforms)})")
            return job
        except SQLAlchemyError as e:
            self._fail("create", e)

    def get(self, job_id: str) -> Optional[ScrapingJob]:
        try:
            return self.db.query(ScrapingJob).filter(ScrapingJob.id == job_id).first()
        except SQLAlchemyError as e:
            self._fail("get", e)

    def require(self, job_id: str) -> ScrapingJob:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundException(job_id)
        return job

    def mark_running(self, job_id: str) -> ScrapingJob:
        job = self.require(job_id)
        ensure_transition(job_id, job.status, JobStatus.RUNNING)
        return self._save(
            job,
            status=JobStatus.RUNNING.value,
            started_at=job.started_at or datetime.utcnow(),
            attempts=(job.attempts or 0) + 1,
        )

    def mark_completed(self, job_id: str, events_scraped: int) -> ScrapingJob:
        job = self.require(job_id)
        ensure_transition(job_id, job.status, JobStatus.COMPLETED)
        return self._save(
            job,
            status=JobStatus.COMPLETED.value,
            completed_at=datetime.utcnow(),
            events_scraped=events_scraped,
        )

    def mark_failed(self, job_id: str, error_message: str) -> ScrapingJob:
        job = self.require(job_id)
        ensure_transition(job_id, job.status, JobStatus.FAILED)
        return self._save(
            job,
            status=JobStatus.FAILED.value,
            completed_at=datetime.utcnow(),
            error_message=error_message,
        )

    def record_error(self, job_id: str, error_message: str) -> ScrapingJob:
        """Audit-only update, allowed in any state"""
        job = self.require(job_id)
        return self._save(job, error_message=error_message)

    def recent(self, limit: int = 10) -> List[ScrapingJob]:
        try:
            return self.db.query(ScrapingJob).order_by(ScrapingJob.created_at.desc()).limit(limit).all()
        except SQLAlchemyError as e:
            self._fail("recent", e)

    def _save(self, job: ScrapingJob, **fields) -> ScrapingJob:
        try:
            for key, value in fields.items():
                setattr(job, key, value)
            self.db.commit()
            self.db.refresh(job)
            if "status" in fields:
                logger.info(f"[JOB] {job.id} -> {job.status}")
            return job
        except SQLAlchemyError as e:
            self._fail("update", e)
