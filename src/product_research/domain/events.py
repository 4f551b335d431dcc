"""Lifecycle events for the product research engine.

Every event is a frozen dataclass inheriting from ``RunEvent``.  The
orchestrator emits events; observers (metrics, progress streams, the CLI)
react.  All events carry the run, subject and owner identities plus a
``timestamp``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from .enums import RunStatus, StepOutcome

# ---------------------------------------------------------------------------
# Base event
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunEvent:
    """Base class for all run lifecycle events."""

    run_id: str = ""
    subject_id: str = ""
    owner_id: str = ""
    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Phase events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PhaseStarted(RunEvent):
    """A phase is about to execute."""

    phase: str = ""
    step: int = 0


@dataclass(frozen=True)
class PhaseCompleted(RunEvent):
    """A phase finished, successfully or not."""

    phase: str = ""
    step: int = 0
    outcome: StepOutcome = StepOutcome.SUCCESS
    duration_s: float = 0.0
    error: str = ""


# ---------------------------------------------------------------------------
# Run events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunCompleted(RunEvent):
    """The orchestrator stopped working on the run (success, error or paused)."""

    status: RunStatus = RunStatus.SUCCESS
    summary: str = ""
    error: str = ""


@dataclass(frozen=True)
class RunPaused(RunEvent):
    """The run stopped at a phase boundary because a pause was requested."""

    phase: str = ""
    step: int = 0


@dataclass(frozen=True)
class RunResumed(RunEvent):
    """A paused or failed run was picked up again from its checkpoint."""

    phase: str = ""
    step: int = 0


@dataclass(frozen=True)
class RunCancelled(RunEvent):
    """The run was cancelled."""

    phase: str = ""
    reason: str = ""
