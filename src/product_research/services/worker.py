"""Queue consumer feeding jobs to the orchestrator."""

from __future__ import annotations

import logging

from product_research.domain.entities import ResearchRun
from product_research.domain.exceptions import ProductResearchError
from product_research.infrastructure.job_queue import JobQueue, ResearchJob, is_resume_key
from product_research.services.orchestrator import ResearchOrchestrator

logger = logging.getLogger(__name__)


class ResearchWorker:
    """Takes one job at a time off the queue and executes it.

    A job is acknowledged after execution whatever the outcome, so a run
    never holds more than one live job.
    """

    def __init__(self, queue: JobQueue, orchestrator: ResearchOrchestrator) -> None:
        self._queue = queue
        self._orchestrator = orchestrator

    async def run_once(self) -> ResearchRun | None:
        """Execute the oldest waiting job; ``None`` if the queue is empty
        or the job was refused."""
        item = self._queue.dequeue()
        if item is None:
            return None
        return await self._execute(*item)

    async def drain(self, max_jobs: int | None = None) -> list[ResearchRun]:
        """Process jobs until the queue is empty (or *max_jobs* ran)."""
        finished: list[ResearchRun] = []
        handled = 0
        while max_jobs is None or handled < max_jobs:
            item = self._queue.dequeue()
            if item is None:
                break
            handled += 1
            run = await self._execute(*item)
            if run is not None:
                finished.append(run)
        return finished

    async def _execute(self, key: str, job: ResearchJob) -> ResearchRun | None:
        logger.debug("Worker picked up %s", key)
        try:
            return await self._orchestrator.execute(job, resume=is_resume_key(key))
        except ProductResearchError as exc:
            logger.warning("Job %s refused: %s", key, exc)
            return None
        finally:
            self._queue.ack(key)
