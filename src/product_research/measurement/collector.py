"""Run metrics collector -- subscribes to lifecycle events and aggregates
counters and phase timings.

The collector is purely passive: it never publishes events itself and keeps
everything in memory.  One collector can watch any number of runs on the
same bus.

Usage::

    bus = AsyncEventBus()
    metrics = RunMetricsCollector(bus)
    # ... run research ...
    metrics.summary()
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from product_research.domain.enums import StepOutcome
from product_research.domain.events import (
    PhaseCompleted,
    RunCancelled,
    RunCompleted,
    RunEvent,
    RunPaused,
    RunResumed,
)
from product_research.infrastructure.event_bus import AsyncEventBus


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class PhaseStats:
    """Executions, failures and durations for one phase name."""

    phase: str
    executions: int = 0
    failures: int = 0
    durations: list[float] = field(default_factory=list)

    @property
    def mean_duration(self) -> float:
        return float(np.mean(self.durations)) if self.durations else 0.0

    @property
    def p95_duration(self) -> float:
        return float(np.percentile(self.durations, 95)) if self.durations else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "executions": self.executions,
            "failures": self.failures,
            "mean_duration_s": round(self.mean_duration, 6),
            "p95_duration_s": round(self.p95_duration, 6),
        }


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------

class RunMetricsCollector:
    """Builds run and phase statistics from the event stream.

    Parameters
    ----------
    event_bus:
        The :class:`AsyncEventBus` to subscribe to.
    """

    def __init__(self, event_bus: AsyncEventBus) -> None:
        self._event_bus = event_bus
        self._phases: dict[str, PhaseStats] = {}
        self._outcomes: Counter[str] = Counter()
        self._pauses = 0
        self._resumes = 0
        self._cancels = 0
        self._runs_seen: set[str] = set()
        self._steps_by_run: dict[str, int] = defaultdict(int)
        self._subscribe()

    # -- subscription ---------------------------------------------------------

    def _subscribe(self) -> None:
        self._event_bus.subscribe(PhaseCompleted, self._on_phase_completed)
        self._event_bus.subscribe(RunCompleted, self._on_run_completed)
        self._event_bus.subscribe(RunPaused, self._on_paused)
        self._event_bus.subscribe(RunResumed, self._on_resumed)
        self._event_bus.subscribe(RunCancelled, self._on_cancelled)

    def detach(self) -> None:
        """Stop listening to the bus."""
        self._event_bus.unsubscribe(PhaseCompleted, self._on_phase_completed)
        self._event_bus.unsubscribe(RunCompleted, self._on_run_completed)
        self._event_bus.unsubscribe(RunPaused, self._on_paused)
        self._event_bus.unsubscribe(RunResumed, self._on_resumed)
        self._event_bus.unsubscribe(RunCancelled, self._on_cancelled)

    # -- event handlers -------------------------------------------------------

    def _track(self, event: RunEvent) -> None:
        self._runs_seen.add(event.run_id)

    def _on_phase_completed(self, event: RunEvent) -> None:
        assert isinstance(event, PhaseCompleted)
        self._track(event)
        stats = self._phases.setdefault(event.phase, PhaseStats(event.phase))
        stats.executions += 1
        stats.durations.append(event.duration_s)
        if event.outcome is StepOutcome.ERROR:
            stats.failures += 1
        self._steps_by_run[event.run_id] += 1

    def _on_run_completed(self, event: RunEvent) -> None:
        assert isinstance(event, RunCompleted)
        self._track(event)
        self._outcomes[event.status.value] += 1

    def _on_paused(self, event: RunEvent) -> None:
        self._track(event)
        self._pauses += 1

    def _on_resumed(self, event: RunEvent) -> None:
        self._track(event)
        self._resumes += 1

    def _on_cancelled(self, event: RunEvent) -> None:
        self._track(event)
        self._cancels += 1
        self._outcomes["cancelled"] += 1

    # -- queries --------------------------------------------------------------

    def phase(self, name: str) -> PhaseStats | None:
        return self._phases.get(name)

    def outcome_count(self, status: str) -> int:
        return self._outcomes.get(status, 0)

    def steps_for(self, run_id: str) -> int:
        return self._steps_by_run.get(run_id, 0)

    def summary(self) -> dict[str, Any]:
        """Plain-dict snapshot of every counter."""
        return {
            "runs": len(self._runs_seen),
            "outcomes": dict(self._outcomes),
            "pauses": self._pauses,
            "resumes": self._resumes,
            "cancels": self._cancels,
            "phase_executions": sum(s.executions for s in self._phases.values()),
            "phase_failures": sum(s.failures for s in self._phases.values()),
            "phases": {name: s.to_dict() for name, s in self._phases.items()},
        }

    def reset(self) -> None:
        self._phases.clear()
        self._outcomes.clear()
        self._pauses = self._resumes = self._cancels = 0
        self._runs_seen.clear()
        self._steps_by_run.clear()
