"""Run orchestrator: drives one research run through its phase sequence.

State machine::

    pending -> running <-> paused -> {success, error, cancelled}

``running`` walks the configured :class:`PhaseSequence`.  Between phases
the orchestrator re-reads the run row and honours cancel and pause
requests; a phase is never interrupted midway.  After each phase it bumps
the step count, appends a :class:`StepRecord`, writes the checkpoint and
emits lifecycle events.

Failure handling:

* a failing phase puts the run in ``error`` and keeps its checkpoint so
  the run can be resumed;
* the run is marked ``running`` with a checkpoint before the subject is
  loaded, so a transient ``load_subject`` failure is resumable too;
* an ownership mismatch or a non-retryable subject lookup failure fails
  the run for good (no checkpoint);
* a run moved out of ``running`` by someone else (the recovery
  reconciler) is abandoned at the next phase boundary without touching
  its row;
* exceeding ``max_phase_executions`` is a :class:`NonTerminationError`,
  answered by salvage of whatever evidence was already persisted.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

from product_research.domain.entities import ResearchRun
from product_research.domain.enums import Disposition, RunStatus, StepOutcome
from product_research.domain.events import (
    PhaseCompleted,
    PhaseStarted,
    RunCancelled,
    RunCompleted,
    RunEvent,
    RunPaused,
    RunResumed,
)
from product_research.domain.exceptions import (
    AuthorizationError,
    CheckpointError,
    NonTerminationError,
    RetryLimitExceededError,
    ToolError,
)
from product_research.domain.values import StepRecord
from product_research.graph.builder import PhaseSequence, build_phase_sequence
from product_research.graph.state import ResearchState, initial_state
from product_research.infrastructure.config import ResearchConfig
from product_research.infrastructure.event_bus import AsyncEventBus
from product_research.infrastructure.job_queue import ResearchJob
from product_research.infrastructure.run_store import RunStore
from product_research.infrastructure.serialization import decode_checkpoint, encode_checkpoint
from product_research.infrastructure.tools import ResearchTools
from product_research.services.cross_validation import CrossValidationEngine
from product_research.services.disposition import route_disposition
from product_research.services.field_state import threshold_completeness
from product_research.services.salvage import salvage

logger = logging.getLogger(__name__)

PARTIAL_SUMMARY = "Research completed (hit iteration limit). Results may be partial."

DispositionSink = Callable[[ResearchRun, Disposition], Any]


class _PhaseFailure(Exception):
    """A phase raised; carries the updated run row."""

    def __init__(self, run: ResearchRun, message: str, fatal: bool) -> None:
        super().__init__(message)
        self.run = run
        self.message = message
        self.fatal = fatal


def completion_summary(comps: int, confidence: float) -> str:
    return f"Research completed. Found {comps} comps. Confidence: {confidence:.0%}"


class ResearchOrchestrator:
    """Executes research jobs against a run store and a tool interface.

    Parameters
    ----------
    store:
        Run row storage; updated row-level so concurrent control requests
        are never overwritten.
    tools:
        Capability interface handed to every phase.
    config:
        Full engine configuration.
    bus:
        Lifecycle event bus.  A private bus is created if omitted.
    sequence:
        Phase sequence; built from ``config.phases`` if omitted.
    engine:
        Cross-validation engine for field scoring.
    disposition_sink:
        Called once with the finished run and its disposition.  Failures
        are logged and never retried.
    clock:
        Wall-clock source for timestamps and phase durations.
    """

    def __init__(
        self,
        store: RunStore,
        tools: ResearchTools,
        config: ResearchConfig | None = None,
        bus: AsyncEventBus | None = None,
        sequence: PhaseSequence | None = None,
        engine: CrossValidationEngine | None = None,
        disposition_sink: DispositionSink | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._tools = tools
        self._config = config or ResearchConfig()
        self._bus = bus or AsyncEventBus()
        self._sequence = sequence or build_phase_sequence(self._config.phases)
        self._engine = engine or CrossValidationEngine()
        self._completeness = threshold_completeness(
            self._config.confidence.required, self._config.confidence.recommended
        )
        self._disposition_sink = disposition_sink
        self._clock = clock

    @property
    def bus(self) -> AsyncEventBus:
        return self._bus

    @property
    def config(self) -> ResearchConfig:
        return self._config

    @property
    def sequence(self) -> PhaseSequence:
        return self._sequence

    # ------------------------------------------------------------------ #
    #  Entry point                                                        #
    # ------------------------------------------------------------------ #

    async def execute(self, job: ResearchJob, resume: bool = False) -> ResearchRun:
        """Run (or resume) the research run named by *job*.

        Returns the final run row for every outcome that is recorded on the
        row, including errors.

        Raises
        ------
        RunNotFoundError
            If the run row does not exist.
        RetryLimitExceededError
            If a resume is requested for a run at the step ceiling.  The
            run is finalized as ``error`` before raising.
        """
        run = self._store.require(job.run_id)
        if run.is_finished:
            logger.info("Run %s is already %s; nothing to do", run.run_id, run.status.value)
            return run

        if resume:
            ceiling = self._config.orchestrator.step_ceiling
            if run.retry_ceiling_reached(ceiling):
                message = f"Retry limit reached ({run.step_count} steps, limit {ceiling})"
                await self._fail(run, job, message, keep_checkpoint=False)
                raise RetryLimitExceededError(
                    f"Run {run.run_id}: {message}",
                    run_id=run.run_id, step_count=run.step_count, limit=ceiling,
                )
            try:
                state, phase = self._restore(run, job)
            except CheckpointError as exc:
                return await self._fail(run, job, f"checkpoint: {exc}", keep_checkpoint=False)
            run = self._store.update(
                run.run_id,
                status=RunStatus.RUNNING,
                error=None,
                pause_requested=False,
                completed_at=None,
                started_at=run.started_at or self._clock(),
            )
            logger.info("Resuming run %s at %s (step %d)", run.run_id, phase, run.step_count)
            await self._publish(
                RunResumed(phase=phase or "", step=run.step_count, **self._meta(job))
            )
        else:
            state = initial_state(
                run.run_id, job.subject_id, job.owner_id,
                self._config.budget.to_budget(), self._completeness, self._engine,
            )
            phase = self._sequence.first
            run = self._store.update(
                run.run_id,
                status=RunStatus.RUNNING,
                current_phase=None,
                step_count=0,
                step_history=[],
                checkpoint=encode_checkpoint(phase, state.to_dict()),
                error=None,
                summary=None,
                disposition=None,
                cost_spent=0.0,
                started_at=self._clock(),
                completed_at=None,
            )
            logger.info("Starting run %s for subject %s", run.run_id, job.subject_id)

        try:
            subject = await self._tools.load_subject(job.subject_id)
        except ToolError as exc:
            return await self._fail(
                run, job, f"load_subject: {exc}", keep_checkpoint=exc.kind.retryable
            )
        if subject.owner_id != job.owner_id:
            error = AuthorizationError(
                f"Subject {job.subject_id} does not belong to owner {job.owner_id}",
                subject_id=job.subject_id, owner_id=job.owner_id,
            )
            logger.warning("Run %s rejected: %s", run.run_id, error)
            return await self._fail(run, job, str(error), keep_checkpoint=False)

        if state.subject is None:
            state.subject = subject
        return await self._drive(run, job, state, phase)

    # ------------------------------------------------------------------ #
    #  Phase loop                                                         #
    # ------------------------------------------------------------------ #

    async def _drive(
        self,
        run: ResearchRun,
        job: ResearchJob,
        state: ResearchState,
        phase: str | None,
    ) -> ResearchRun:
        limit = self._config.orchestrator.max_phase_executions
        executions = 0
        try:
            while phase is not None:
                run = self._store.require(run.run_id)
                if run.status is not RunStatus.RUNNING:
                    logger.warning(
                        "Run %s is %s, no longer ours; abandoning before %s",
                        run.run_id, run.status.value, phase,
                    )
                    return run
                if run.cancel_requested:
                    return await self._cancel(run, job, phase)
                if run.pause_requested:
                    return await self._pause(run, job, phase, state)
                executions += 1
                if executions > limit:
                    raise NonTerminationError(
                        f"Phase sequence exceeded {limit} executions",
                        executions=executions, limit=limit,
                    )
                state, phase, run = await self._run_phase(run, job, phase, state)
        except NonTerminationError as exc:
            return await self._salvage(run, job, exc)
        except _PhaseFailure as failure:
            return await self._fail(
                failure.run, job, failure.message, keep_checkpoint=not failure.fatal
            )
        return await self._complete(run, job, state)

    async def _run_phase(
        self,
        run: ResearchRun,
        job: ResearchJob,
        phase: str,
        state: ResearchState,
    ) -> tuple[ResearchState, str | None, ResearchRun]:
        fn = self._sequence.phase(phase)
        step = run.step_count + 1
        await self._publish(PhaseStarted(phase=phase, step=step, **self._meta(job)))
        run = self._store.update(run.run_id, current_phase=phase)
        started = self._clock()
        try:
            new_state = await fn(state.copy(), self._tools)
        except Exception as exc:
            finished = self._clock()
            message = str(exc) or type(exc).__name__
            logger.error("Phase %s failed for run %s: %s", phase, run.run_id, message)
            record = StepRecord(phase, started, finished, StepOutcome.ERROR, message)
            run = self._store.update(
                run.run_id, step_count=step, step_history=[*run.step_history, record]
            )
            await self._publish(PhaseCompleted(
                phase=phase, step=step, outcome=StepOutcome.ERROR,
                duration_s=finished - started, error=message, **self._meta(job),
            ))
            raise _PhaseFailure(
                run, f"{phase}: {message}", fatal=isinstance(exc, AuthorizationError)
            ) from exc

        finished = self._clock()
        new_state.elapsed_s += max(0.0, finished - started)
        next_phase = self._sequence.next_phase(phase, new_state)
        record = StepRecord(phase, started, finished, StepOutcome.SUCCESS)
        run = self._store.update(
            run.run_id,
            step_count=step,
            step_history=[*run.step_history, record],
            checkpoint=encode_checkpoint(next_phase, new_state.to_dict()),
            cost_spent=new_state.cost_spent,
        )
        logger.debug("Run %s: %s -> %s (step %d)", run.run_id, phase, next_phase, step)
        await self._publish(PhaseCompleted(
            phase=phase, step=step, outcome=StepOutcome.SUCCESS,
            duration_s=finished - started, **self._meta(job),
        ))
        return new_state, next_phase, run

    def _restore(self, run: ResearchRun, job: ResearchJob) -> tuple[ResearchState, str | None]:
        """Decode the run's checkpoint into working state and next phase."""
        if run.checkpoint is None:
            logger.warning("Run %s has no checkpoint; restarting its phases", run.run_id)
            state = initial_state(
                run.run_id, job.subject_id, job.owner_id,
                self._config.budget.to_budget(), self._completeness, self._engine,
            )
            return state, self._sequence.first
        phase, data = decode_checkpoint(run.checkpoint)
        if phase is not None and phase not in self._sequence:
            raise CheckpointError(f"Checkpoint names unknown phase '{phase}'")
        try:
            state = ResearchState.from_dict(data, self._completeness, self._engine)
        except (KeyError, TypeError, ValueError) as exc:
            raise CheckpointError(f"Checkpoint state is malformed: {exc}") from exc
        return state, phase

    # ------------------------------------------------------------------ #
    #  Outcomes                                                           #
    # ------------------------------------------------------------------ #

    async def _pause(
        self, run: ResearchRun, job: ResearchJob, phase: str, state: ResearchState
    ) -> ResearchRun:
        run = self._store.update(
            run.run_id,
            status=RunStatus.PAUSED,
            checkpoint=encode_checkpoint(phase, state.to_dict()),
            pause_requested=False,
            current_phase=phase,
        )
        logger.info("Run %s paused before %s (step %d)", run.run_id, phase, run.step_count)
        await self._publish(RunPaused(phase=phase, step=run.step_count, **self._meta(job)))
        await self._publish(RunCompleted(
            status=RunStatus.PAUSED, summary=f"Paused before {phase}", **self._meta(job)
        ))
        return run

    async def _cancel(self, run: ResearchRun, job: ResearchJob, phase: str) -> ResearchRun:
        run = self._store.update(
            run.run_id,
            status=RunStatus.CANCELLED,
            checkpoint=None,
            completed_at=self._clock(),
        )
        logger.info("Run %s cancelled before %s", run.run_id, phase)
        await self._publish(RunCancelled(phase=phase, reason="cancel requested", **self._meta(job)))
        return run

    async def _fail(
        self, run: ResearchRun, job: ResearchJob, message: str, keep_checkpoint: bool
    ) -> ResearchRun:
        checkpoint = run.checkpoint if keep_checkpoint else None
        run = self._store.update(
            run.run_id,
            status=RunStatus.ERROR,
            error=message,
            checkpoint=checkpoint,
            completed_at=None if checkpoint is not None else self._clock(),
        )
        logger.warning(
            "Run %s failed%s: %s",
            run.run_id, " (resumable)" if checkpoint is not None else "", message,
        )
        await self._publish(RunCompleted(status=RunStatus.ERROR, error=message, **self._meta(job)))
        return run

    async def _complete(
        self, run: ResearchRun, job: ResearchJob, state: ResearchState
    ) -> ResearchRun:
        confidence = state.fields.overall_confidence()
        summary = completion_summary(len(state.comps), confidence)
        return await self._succeed(run, job, summary, confidence, len(state.comps), state.cost_spent)

    async def _salvage(
        self, run: ResearchRun, job: ResearchJob, exc: NonTerminationError
    ) -> ResearchRun:
        logger.warning("Run %s: %s; attempting salvage", run.run_id, exc)
        outcome = await salvage(
            run.run_id, self._tools, self._config.orchestrator.min_salvage_evidence
        )
        if outcome.succeeded:
            return await self._succeed(
                run, job, PARTIAL_SUMMARY, outcome.confidence, len(outcome.comps), run.cost_spent
            )
        return await self._fail(run, job, f"{exc}. {outcome.reason}", keep_checkpoint=False)

    async def _succeed(
        self,
        run: ResearchRun,
        job: ResearchJob,
        summary: str,
        confidence: float,
        evidence: int,
        cost: float,
    ) -> ResearchRun:
        disposition = route_disposition(confidence, evidence, self._config.disposition)
        run = self._store.update(
            run.run_id,
            status=RunStatus.SUCCESS,
            checkpoint=None,
            current_phase=None,
            error=None,
            summary=summary,
            disposition=disposition,
            cost_spent=cost,
            completed_at=self._clock(),
        )
        logger.info("Run %s succeeded: %s (%s)", run.run_id, summary, disposition.value)
        await self._publish(
            RunCompleted(status=RunStatus.SUCCESS, summary=summary, **self._meta(job))
        )
        if self._disposition_sink is not None:
            try:
                result = self._disposition_sink(run, disposition)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Disposition routing failed for run %s", run.run_id)
        return run

    async def _publish(self, event: RunEvent) -> None:
        await self._bus.publish(event)

    def _meta(self, job: ResearchJob) -> dict[str, Any]:
        return {
            "run_id": job.run_id,
            "subject_id": job.subject_id,
            "owner_id": job.owner_id,
            "timestamp": self._clock(),
        }
