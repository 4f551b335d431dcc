"""Startup reconciliation of stored runs against the live job queue.

After a crash the run store and the queue can disagree: a ``pending`` row
whose job was lost, a ``running`` row nobody is working on, an ``error``
row that could be resumed, or a queue entry for a run that is gone.
:class:`RecoveryReconciler` repairs each case.

Reconciliation is idempotent: a second pass with no intervening activity
changes nothing.  It only ever moves ``pending``/``running`` rows to
``error``, finalizes exhausted ``error`` rows, or enqueues resumes; it never
touches ``success`` or ``cancelled`` rows.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

from product_research.domain.entities import ResearchRun
from product_research.domain.enums import RunStatus
from product_research.domain.exceptions import DuplicateJobError
from product_research.infrastructure.config import OrchestratorConfig, RecoveryConfig
from product_research.infrastructure.job_queue import JobQueue, resume_job_key
from product_research.infrastructure.run_store import RunStore
from product_research.services.control import can_resume, job_for

logger = logging.getLogger(__name__)

LOST_JOB_ERROR = "pending but no queue job found"


@dataclass
class RecoveryReport:
    """Counters for one reconciliation pass."""

    pending_failed: int = 0
    stale_requeued: int = 0
    stale_failed: int = 0
    errors_requeued: int = 0
    errors_finalized: int = 0
    orphan_jobs_removed: int = 0

    @property
    def total(self) -> int:
        return sum(asdict(self).values())

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "total": self.total}


class RecoveryReconciler:
    """Repairs drift between the run store and the job queue.

    Parameters
    ----------
    store / queue:
        The durable run rows and the live queue.
    config:
        Grace delay and staleness thresholds.
    orchestrator_config:
        Supplies the resume step ceiling.
    clock:
        Wall-clock source compared with ``created_at`` / ``updated_at``.
    sleep:
        Awaitable sleep used for the startup grace delay.
    """

    def __init__(
        self,
        store: RunStore,
        queue: JobQueue,
        config: RecoveryConfig | None = None,
        orchestrator_config: OrchestratorConfig | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._queue = queue
        self._config = config or RecoveryConfig()
        self._ceiling = (orchestrator_config or OrchestratorConfig()).step_ceiling
        self._clock = clock
        self._sleep = sleep

    async def start(self) -> RecoveryReport:
        """Wait out the startup grace delay, then reconcile once."""
        if self._config.startup_delay_s > 0:
            await self._sleep(self._config.startup_delay_s)
        return self.reconcile()

    def reconcile(self) -> RecoveryReport:
        """Run one reconciliation pass."""
        report = RecoveryReport()
        now = self._clock()

        for run in self._store.list_by_status(RunStatus.PENDING):
            self._check_pending(run, now, report)
        for run in self._store.list_by_status(RunStatus.RUNNING):
            self._check_running(run, now, report)
        for run in self._store.list_by_status(RunStatus.ERROR):
            self._check_error(run, now, report)
        self._remove_orphan_jobs(report)

        if report.total:
            logger.warning("Recovery repaired drift: %s", report.to_dict())
        else:
            logger.info("Recovery found no drift")
        return report

    # -- per-status checks ----------------------------------------------------

    def _still(self, run: ResearchRun, status: RunStatus) -> ResearchRun | None:
        """Re-read *run*; ``None`` if it moved on since it was listed."""
        current = self._store.get(run.run_id)
        if current is None or current.status is not status:
            return None
        return current

    def _check_pending(self, run: ResearchRun, now: float, report: RecoveryReport) -> None:
        if now - run.created_at <= self._config.pending_threshold_s:
            return
        if self._queue.has_job_for_run(run.run_id):
            return
        if self._still(run, RunStatus.PENDING) is None:
            return
        self._store.update(
            run.run_id, status=RunStatus.ERROR, error=LOST_JOB_ERROR, completed_at=now
        )
        logger.warning("Run %s was %s", run.run_id, LOST_JOB_ERROR)
        report.pending_failed += 1

    def _check_running(self, run: ResearchRun, now: float, report: RecoveryReport) -> None:
        idle = now - run.updated_at
        if idle <= self._config.stale_threshold_s:
            return
        run = self._still(run, RunStatus.RUNNING)
        if run is None:
            return
        # Progress without a checkpoint cannot be replayed.
        if run.has_checkpoint and not run.retry_ceiling_reached(self._ceiling):
            self._store.update(
                run.run_id,
                status=RunStatus.ERROR,
                error=f"stalled: no activity for {idle:.0f}s",
                completed_at=None,
            )
            self._enqueue_resume(run)
            logger.warning("Stalled run %s re-queued for resume", run.run_id)
            report.stale_requeued += 1
            return
        self._store.update(
            run.run_id,
            status=RunStatus.ERROR,
            error=f"stalled with no recoverable progress after {idle:.0f}s",
            checkpoint=None,
            completed_at=now,
        )
        logger.warning("Stalled run %s marked unrecoverable", run.run_id)
        report.stale_failed += 1

    def _check_error(self, run: ResearchRun, now: float, report: RecoveryReport) -> None:
        if not run.has_checkpoint or run.completed_at is not None:
            return
        if run.retry_ceiling_reached(self._ceiling):
            if self._still(run, RunStatus.ERROR) is None:
                return
            self._store.update(run.run_id, checkpoint=None, completed_at=now)
            logger.warning("Run %s exhausted its retries; finalized", run.run_id)
            report.errors_finalized += 1
            return
        if self._queue.has_job(resume_job_key(run.run_id)):
            return
        if can_resume(run, self._ceiling) and self._enqueue_resume(run):
            logger.info("Errored run %s re-queued for resume", run.run_id)
            report.errors_requeued += 1

    def _enqueue_resume(self, run: ResearchRun) -> bool:
        try:
            self._queue.enqueue(resume_job_key(run.run_id), job_for(run))
        except DuplicateJobError:
            return False
        return True

    def _remove_orphan_jobs(self, report: RecoveryReport) -> None:
        for key, job in self._queue.jobs():
            run = self._store.get(job.run_id)
            if run is not None and not run.is_finished:
                continue
            if self._queue.remove(key):
                logger.warning(
                    "Removed orphan job %s (%s)",
                    key, "run missing" if run is None else f"run {run.status.value}",
                )
                report.orphan_jobs_removed += 1
