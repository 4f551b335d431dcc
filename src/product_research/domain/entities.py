"""Domain entities for the product research engine.

Entities have *identity* and a mutable lifecycle.  ``ResearchRun`` is the
persisted row for one research attempt; ``FieldState`` tracks one attribute
of the subject being researched.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from .enums import Disposition, RunStatus
from .values import CrossValidationResult, Source, StepRecord

# ---------------------------------------------------------------------------
# FieldState
# ---------------------------------------------------------------------------

@dataclass
class FieldState:
    """Current belief about one field of the subject.

    Sources are only ever appended.  ``value``, ``confidence``, ``complete``
    and ``validation`` are recomputed by the field state store whenever a
    source is added.
    """

    name: str
    required: bool = False
    importance: float = 1.0
    value: Any = None
    confidence: float = 0.0
    sources: list[Source] = field(default_factory=list)
    complete: bool = False
    attempts: int = 0
    validation: CrossValidationResult | None = None

    @property
    def has_value(self) -> bool:
        if self.value is None:
            return False
        if isinstance(self.value, str) and not self.value.strip():
            return False
        return True

    @property
    def conflict_count(self) -> int:
        return len(self.validation.conflicts) if self.validation else 0


# ---------------------------------------------------------------------------
# ResearchRun
# ---------------------------------------------------------------------------

@dataclass
class ResearchRun:
    """One research attempt for one subject item.

    ``completed_at`` is set only once the run is terminal and holds no live
    checkpoint; a run in ``error`` that keeps its checkpoint stays open for
    resume.
    """

    subject_id: str
    owner_id: str
    run_kind: str = "initial_research"
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: RunStatus = RunStatus.PENDING
    current_phase: str | None = None
    step_count: int = 0
    step_history: list[StepRecord] = field(default_factory=list)
    checkpoint: str | None = None
    error: str | None = None
    pause_requested: bool = False
    cancel_requested: bool = False
    cost_spent: float = 0.0
    summary: str | None = None
    disposition: Disposition | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    started_at: float | None = None
    completed_at: float | None = None

    @property
    def has_checkpoint(self) -> bool:
        return self.checkpoint is not None

    @property
    def is_finished(self) -> bool:
        """``True`` once nothing can bring the run back to life."""
        if self.status in (RunStatus.SUCCESS, RunStatus.CANCELLED):
            return True
        return self.status is RunStatus.ERROR and self.completed_at is not None

    def retry_ceiling_reached(self, ceiling: int) -> bool:
        return self.step_count >= ceiling
