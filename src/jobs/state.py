"""Scraping job lifecycle

pending -> queued -> running -> {completed, failed}
"""

from enum import Enum

from src.core.exceptions import InvalidJobTransitionException


class JobStatus(str, Enum):
    """Job states"""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# running -> running re-enters a job picked up again by a queue retry;
# pending/queued -> failed covers a job that could not be handed to a runner
_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.RUNNING, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


def ensure_transition(job_id: str, current: str, target: JobStatus) -> JobStatus:
    """Validate a status change

    Args:
        job_id: job identifier (for the error message)
        current: stored status value
        target: requested status

    Returns:
        JobStatus: the target status

    Raises:
        InvalidJobTransitionException: the change would break monotonicity
    """
    try:
        current_status = JobStatus(current)
    except ValueError:
        raise InvalidJobTransitionException(job_id, str(current), target.value)

    if not can_transition(current_status, target):
        raise InvalidJobTransitionException(job_id, current_status.value, target.value)
    return target
