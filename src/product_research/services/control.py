"""Operator control surface: trigger, pause, resume and cancel.

Each operation validates the run's current status against the legal
transitions before touching the run store or the job queue.  Pause and a
cancel of a running run only set flags; the orchestrator honours them at
the next phase boundary.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from product_research.domain.entities import ResearchRun
from product_research.domain.enums import RunStatus
from product_research.domain.exceptions import (
    InvalidTransitionError,
    RetryLimitExceededError,
)
from product_research.infrastructure.config import OrchestratorConfig
from product_research.infrastructure.job_queue import (
    JobQueue,
    ResearchJob,
    resume_job_key,
    run_job_key,
)
from product_research.infrastructure.run_store import RunStore

logger = logging.getLogger(__name__)


def can_resume(run: ResearchRun, step_ceiling: int) -> bool:
    """``True`` if *run* holds a checkpoint it may still be resumed from.

    Paused runs and errored runs that kept their checkpoint qualify, as
    long as the step count is below *step_ceiling*.
    """
    if run.status is RunStatus.PAUSED:
        resumable = run.has_checkpoint
    elif run.status is RunStatus.ERROR:
        resumable = run.has_checkpoint and run.completed_at is None
    else:
        resumable = False
    return resumable and not run.retry_ceiling_reached(step_ceiling)


def job_for(run: ResearchRun) -> ResearchJob:
    return ResearchJob(
        run_id=run.run_id,
        subject_id=run.subject_id,
        owner_id=run.owner_id,
        run_kind=run.run_kind,
    )


class RunControl:
    """Validated run transitions backed by a store and a queue.

    Parameters
    ----------
    store:
        Run row storage.
    queue:
        Live job queue.
    config:
        Supplies the resume step ceiling.
    clock:
        Time source for ``completed_at``.
    """

    def __init__(
        self,
        store: RunStore,
        queue: JobQueue,
        config: OrchestratorConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._queue = queue
        self._config = config or OrchestratorConfig()
        self._clock = clock

    def can_resume(self, run: ResearchRun) -> bool:
        return can_resume(run, self._config.step_ceiling)

    def trigger(
        self,
        subject_id: str,
        owner_id: str,
        run_kind: str = "initial_research",
    ) -> ResearchRun:
        """Create a pending run and queue its first execution."""
        run = self._store.create(
            ResearchRun(subject_id=subject_id, owner_id=owner_id, run_kind=run_kind)
        )
        self._queue.enqueue(run_job_key(run.run_id), job_for(run))
        logger.info("Triggered run %s for subject %s", run.run_id, subject_id)
        return run

    def pause(self, run_id: str) -> ResearchRun:
        """Ask a running run to stop at its next phase boundary."""
        run = self._store.require(run_id)
        if run.status is not RunStatus.RUNNING:
            raise InvalidTransitionError(
                f"Cannot pause run {run_id} in status {run.status.value}",
                run_id=run_id, status=run.status, requested="pause",
            )
        logger.info("Pause requested for run %s", run_id)
        return self._store.update(run_id, pause_requested=True)

    def resume(self, run_id: str) -> ResearchRun:
        """Queue a resume of a paused run, or of an errored run that kept
        its checkpoint.

        Raises
        ------
        InvalidTransitionError
            If the run is in any other state.
        RetryLimitExceededError
            If the step ceiling has been reached.
        DuplicateJobError
            If a resume job for the run is already live.
        """
        run = self._store.require(run_id)
        resumable_state = run.status is RunStatus.PAUSED or (
            run.status is RunStatus.ERROR and run.has_checkpoint and run.completed_at is None
        )
        if not resumable_state or not run.has_checkpoint:
            raise InvalidTransitionError(
                f"Cannot resume run {run_id} in status {run.status.value}",
                run_id=run_id, status=run.status, requested="resume",
            )
        ceiling = self._config.step_ceiling
        if run.retry_ceiling_reached(ceiling):
            raise RetryLimitExceededError(
                f"Run {run_id} reached {run.step_count} steps (limit {ceiling})",
                run_id=run_id, step_count=run.step_count, limit=ceiling,
            )
        self._queue.enqueue(resume_job_key(run_id), job_for(run))
        logger.info("Resume queued for run %s at step %d", run_id, run.step_count)
        return self._store.update(run_id, pause_requested=False)

    def cancel(self, run_id: str) -> ResearchRun:
        """Cancel a run.

        A running run is flagged and stops at the next phase boundary; a
        pending or paused run is cancelled on the spot and its queued jobs
        are dropped.
        """
        run = self._store.require(run_id)
        if run.status is RunStatus.RUNNING:
            logger.info("Cancel requested for running run %s", run_id)
            return self._store.update(run_id, cancel_requested=True)
        if run.status in (RunStatus.PENDING, RunStatus.PAUSED):
            for key in self._queue.jobs_for_run(run_id):
                self._queue.remove(key)
            logger.info("Cancelled %s run %s", run.status.value, run_id)
            return self._store.update(
                run_id,
                status=RunStatus.CANCELLED,
                cancel_requested=True,
                checkpoint=None,
                completed_at=self._clock(),
            )
        raise InvalidTransitionError(
            f"Cannot cancel run {run_id} in status {run.status.value}",
            run_id=run_id, status=run.status, requested="cancel",
        )
