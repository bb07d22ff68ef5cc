"""In-memory job registry."""
import logging
import threading
import time
from typing import Callable, Optional

from scrape_engine.config import config
from scrape_engine.fetch.models import utcnow
from scrape_engine.jobs.models import Job, JobStatus

logger = logging.getLogger(__name__)


class JobExistsError(ValueError):
    """A job with the same id is already registered."""


class InvalidTransitionError(RuntimeError):
    """An update would break the job state machine."""


class JobRegistry:
    """Process-local store of jobs keyed by id.

    Reads return copies, so callers never hold a live reference to stored
    state; all writes go through ``update``. Terminal jobs older than
    ``ttl_seconds`` are evicted (0 keeps them forever).
    """

    def __init__(
        self,
        ttl_seconds: int = config.JOB_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._finished_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def create(self, job: Job) -> Job:
        """Register a new job."""
        self.evict_expired()
        with self._lock:
            if job.id in self._jobs:
                raise JobExistsError(f"Job already exists with this ID: {job.id}")
            stored = job.model_copy(deep=True)
            self._jobs[job.id] = stored
            if stored.status.is_terminal:
                self._finished_at[job.id] = self._clock()
            return stored.model_copy(deep=True)

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def update(self, job_id: str, mutator: Callable[[Job], None]) -> Optional[Job]:
        """Apply ``mutator`` to a working copy and store it if the transition is valid.

        Returns the updated snapshot, or None when the id is unknown.
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                return None
            working = current.model_copy(deep=True)
            mutator(working)
            self._check_transition(current, working)
            working.updated_at = utcnow()
            self._jobs[job_id] = working
            if working.status.is_terminal and not current.status.is_terminal:
                self._finished_at[job_id] = self._clock()
            return working.model_copy(deep=True)

    def list_jobs(self) -> list[Job]:
        """All jobs in creation order."""
        self.evict_expired()
        with self._lock:
            return [job.model_copy(deep=True) for job in self._jobs.values()]

    def delete(self, job_id: str) -> bool:
        with self._lock:
            self._finished_at.pop(job_id, None)
            return self._jobs.pop(job_id, None) is not None

    def evict_expired(self) -> int:
        """Drop terminal jobs past their TTL. Returns the number removed."""
        if self.ttl_seconds <= 0:
            return 0
        cutoff = self._clock() - self.ttl_seconds
        with self._lock:
            expired = [job_id for job_id, done in self._finished_at.items() if done <= cutoff]
            for job_id in expired:
                self._jobs.pop(job_id, None)
                self._finished_at.pop(job_id, None)
        if expired:
            logger.info(f"Evicted {len(expired)} finished jobs older than {self.ttl_seconds}s")
        return len(expired)

    @staticmethod
    def _check_transition(before: Job, after: Job) -> None:
        if after.id != before.id:
            raise InvalidTransitionError("Job id is immutable")
        if not 0 <= after.progress <= 100:
            raise InvalidTransitionError(f"Progress out of range: {after.progress}")
        if before.status.is_terminal and after.status != before.status:
            raise InvalidTransitionError(
                f"Job {before.id} is {before.status.value} and cannot become {after.status.value}"
            )
        if before.status.is_terminal and after.progress != before.progress:
            raise InvalidTransitionError(f"Job {before.id} is {before.status.value}; progress is frozen")
        if after.status == JobStatus.IN_PROGRESS and after.progress < before.progress:
            raise InvalidTransitionError(
                f"Progress of job {before.id} cannot go from {before.progress} to {after.progress}"
            )
