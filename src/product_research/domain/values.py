"""Value objects for the product research engine.

All types here are frozen dataclasses -- immutable, compared by value.
They describe evidence (sources, conflicts), scoring results, budget
accounting and planner output, none of which has identity beyond its
content.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .enums import ConflictSeverity, EvaluationDecision, StepOutcome

# ---------------------------------------------------------------------------
# Source / Conflict
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Source:
    """One piece of evidence contributing a value to a field.

    ``group`` is normally left empty and resolved from ``source_type`` by the
    cross-validation engine's static table.  List values are frozen into
    tuples so the record stays immutable.
    """

    source_type: str
    value: Any
    base_confidence: float = 0.5
    group: str = ""
    timestamp: float = field(default_factory=time.time)
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.source_type:
            raise ValueError("source_type must not be empty")
        if not 0.0 <= self.base_confidence <= 1.0:
            raise ValueError(
                f"base_confidence must be in [0, 1], got {self.base_confidence}"
            )
        if isinstance(self.value, list):
            object.__setattr__(self, "value", tuple(self.value))

    @property
    def is_missing(self) -> bool:
        """``True`` when the source carries no usable value."""
        if self.value is None:
            return True
        if isinstance(self.value, str) and not self.value.strip():
            return True
        return False


@dataclass(frozen=True)
class Conflict:
    """A disagreement between two sources from different independence groups."""

    value_a: Any
    value_b: Any
    source_a: str
    source_b: str
    group_a: str
    group_b: str
    severity: ConflictSeverity
    detected_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CrossValidationResult:
    """Outcome of corroborating one field's sources.

    Attributes
    ----------
    base_multiplier:
        Multiplier from group diversity alone (before conflict penalties).
    multiplier:
        Final corroboration multiplier, floored at 0.50.
    confidence:
        ``min(0.98, base_confidence * multiplier)``.
    group_count:
        Number of distinct independence groups represented.
    groups:
        Sorted names of the represented groups.
    conflicts:
        Detected cross-group disagreements, in canonical order.
    agreement_score:
        Diagnostic ``1 - conflicts / max(1, cross_group_pairs)``.
    cross_group_pairs:
        Number of source pairs drawn from different groups.
    """

    base_multiplier: float
    multiplier: float
    confidence: float
    group_count: int
    groups: tuple[str, ...] = ()
    conflicts: tuple[Conflict, ...] = ()
    agreement_score: float = 1.0
    cross_group_pairs: int = 0

    @property
    def major_conflicts(self) -> int:
        return sum(1 for c in self.conflicts if c.severity is ConflictSeverity.MAJOR)

    @property
    def minor_conflicts(self) -> int:
        return sum(1 for c in self.conflicts if c.severity is ConflictSeverity.MINOR)


# ---------------------------------------------------------------------------
# Step history
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StepRecord:
    """One entry of a run's step history."""

    phase: str
    started_at: float
    completed_at: float | None = None
    outcome: StepOutcome = StepOutcome.SUCCESS
    error: str = ""

    @property
    def duration(self) -> float:
        if self.completed_at is None:
            return 0.0
        return self.completed_at - self.started_at


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResearchBudget:
    """Ceilings for one research run: iterations, cost and wall-clock time."""

    max_iterations: int = 5
    max_cost: float = 0.50
    max_wall_clock_s: float = 120.0

    def __post_init__(self) -> None:
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0, got {self.max_iterations}")
        if self.max_cost < 0:
            raise ValueError(f"max_cost must be >= 0, got {self.max_cost}")
        if self.max_wall_clock_s <= 0:
            raise ValueError(
                f"max_wall_clock_s must be > 0, got {self.max_wall_clock_s}"
            )


@dataclass(frozen=True)
class BudgetUsage:
    """What a run has consumed so far."""

    iterations: int = 0
    cost: float = 0.0
    elapsed_s: float = 0.0

    def remaining_cost(self, budget: ResearchBudget) -> float:
        return budget.max_cost - self.cost

    def remaining_iterations(self, budget: ResearchBudget) -> int:
        return budget.max_iterations - self.iterations

    def exhausted_reason(self, budget: ResearchBudget) -> str:
        """Return why *budget* is used up, or ``""`` if it is not."""
        if self.remaining_cost(budget) <= 0.001:
            return "Budget exhausted"
        if self.remaining_iterations(budget) <= 0:
            return "Maximum iterations reached"
        if self.elapsed_s >= budget.max_wall_clock_s:
            return "Time limit reached"
        return ""


# ---------------------------------------------------------------------------
# Planner output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResearchAction:
    """Description of the next research step, executed by the orchestrator.

    The planner never performs I/O; it only returns this record.
    """

    tool: str
    target_field: str
    target_fields: tuple[str, ...] = ()
    estimated_cost: float = 0.0
    estimated_time_ms: int = 0
    score: float = 0.0
    reasoning: str = ""


@dataclass(frozen=True)
class FieldEvaluation:
    """Decision of the evaluate step: continue, complete, or stop."""

    decision: EvaluationDecision
    reason: str = ""
    fields_needing_work: int = 0
    completion_score: float = 0.0
    budget_remaining: float = 0.0
    iterations_remaining: int = 0

    @property
    def should_continue(self) -> bool:
        return self.decision is EvaluationDecision.CONTINUE
