"""Job queue for research runs.

Jobs carry the contract ``{run_id, subject_id, owner_id, run_kind}`` and are
addressed by a stable job key: ``run-<id>`` for a first execution and
``resume-<id>`` for a resume.  A key can be live at most once, so duplicate
dispatch of the same run is rejected at enqueue time.

:class:`InMemoryJobQueue` keeps waiting jobs in FIFO order and tracks jobs
handed to a worker as *active* until they are acknowledged.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import OrderedDict

from pydantic import BaseModel, Field

from product_research.domain.exceptions import DuplicateJobError

RESUME_PREFIX = "resume-"
RUN_PREFIX = "run-"


class ResearchJob(BaseModel):
    """Queue message consumed by the orchestrator entry point."""

    run_id: str = Field(min_length=1, description="Run to execute")
    subject_id: str = Field(min_length=1, description="Subject being researched")
    owner_id: str = Field(min_length=1, description="Account that owns the subject")
    run_kind: str = Field(default="initial_research", description="Kind of research run")


def run_job_key(run_id: str) -> str:
    return f"{RUN_PREFIX}{run_id}"


def resume_job_key(run_id: str) -> str:
    return f"{RESUME_PREFIX}{run_id}"


def is_resume_key(job_key: str) -> bool:
    return job_key.startswith(RESUME_PREFIX)


class JobQueue(ABC):
    """Contract for the live job queue."""

    @abstractmethod
    def enqueue(self, job_key: str, job: ResearchJob) -> None:
        """Add *job* under *job_key*; raises :class:`DuplicateJobError` if
        the key is already live (waiting or active)."""

    @abstractmethod
    def dequeue(self) -> tuple[str, ResearchJob] | None:
        """Hand the oldest waiting job to a worker, marking it active."""

    @abstractmethod
    def ack(self, job_key: str) -> None:
        """Mark an active job as finished."""

    @abstractmethod
    def remove(self, job_key: str) -> bool:
        """Drop a job whether waiting or active. Returns ``True`` if found."""

    @abstractmethod
    def jobs(self) -> list[tuple[str, ResearchJob]]:
        """Every live job (waiting and active)."""

    def has_job(self, job_key: str) -> bool:
        return any(key == job_key for key, _ in self.jobs())

    def jobs_for_run(self, run_id: str) -> list[str]:
        """Live job keys referencing *run_id*."""
        return [key for key, job in self.jobs() if job.run_id == run_id]

    def has_job_for_run(self, run_id: str) -> bool:
        return bool(self.jobs_for_run(run_id))


class InMemoryJobQueue(JobQueue):
    """Thread-safe FIFO queue with key deduplication."""

    def __init__(self) -> None:
        self._waiting: OrderedDict[str, ResearchJob] = OrderedDict()
        self._active: dict[str, ResearchJob] = {}
        self._lock = threading.Lock()

    def enqueue(self, job_key: str, job: ResearchJob) -> None:
        with self._lock:
            if job_key in self._waiting or job_key in self._active:
                raise DuplicateJobError(f"Job {job_key} is already queued", job_key=job_key)
            self._waiting[job_key] = job

    def dequeue(self) -> tuple[str, ResearchJob] | None:
        with self._lock:
            if not self._waiting:
                return None
            key, job = self._waiting.popitem(last=False)
            self._active[key] = job
            return key, job

    def ack(self, job_key: str) -> None:
        with self._lock:
            self._active.pop(job_key, None)

    def remove(self, job_key: str) -> bool:
        with self._lock:
            found = self._waiting.pop(job_key, None) or self._active.pop(job_key, None)
            return found is not None

    def jobs(self) -> list[tuple[str, ResearchJob]]:
        with self._lock:
            return list(self._waiting.items()) + list(self._active.items())

    @property
    def waiting(self) -> int:
        with self._lock:
            return len(self._waiting)

    @property
    def active(self) -> int:
        with self._lock:
            return len(self._active)
