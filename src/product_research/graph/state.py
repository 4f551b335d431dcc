"""Working state that flows through the research phase sequence.

``ResearchState`` is what a phase function receives and returns.  The
orchestrator hands every phase a :meth:`ResearchState.copy`, so a phase that
raises leaves the committed state untouched.  Between phases the state is
serialized with :meth:`ResearchState.to_dict` into the run checkpoint.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from product_research.domain.values import (
    BudgetUsage,
    FieldEvaluation,
    ResearchAction,
    ResearchBudget,
)
from product_research.infrastructure.serialization import (
    field_evaluation_from_dict,
    field_evaluation_to_dict,
    field_state_from_dict,
    field_state_to_dict,
    research_action_from_dict,
    research_action_to_dict,
)
from product_research.infrastructure.tools import Comparable, SubjectRecord
from product_research.services.cross_validation import CrossValidationEngine
from product_research.services.field_state import CompletenessPredicate, FieldStateStore
from product_research.services.planning import TaskHistory

# (name, required, importance)
TRACKED_FIELDS: tuple[tuple[str, bool, float], ...] = (
    ("title", True, 1.0),
    ("brand", True, 0.9),
    ("model", True, 0.9),
    ("category", True, 0.7),
    ("price", True, 1.0),
    ("condition", False, 0.6),
    ("upc", False, 0.5),
    ("color", False, 0.3),
)


@dataclass
class ResearchState:
    """Everything a run knows between two phases.

    Attributes
    ----------
    fields:
        Per-field evidence and confidence.
    subject:
        The subject row, loaded by ``load_context``.
    comps:
        Comparable listings found by ``search_comps``.
    price:
        Price estimate from ``calculate_price``.
    history:
        Planner bookkeeping (tool attempts, progress streak).
    iteration:
        Completed research loop iterations.
    cost_spent / elapsed_s:
        Budget consumption.  ``elapsed_s`` sums phase durations, so time
        spent paused does not count against the wall-clock budget.
    pending_action:
        Action chosen by ``plan_research`` for ``execute_research``.
    evaluation:
        Latest ``evaluate_fields`` verdict.
    warnings:
        Human-readable notes about tool failures and early stops.
    persisted:
        ``True`` once ``persist_results`` stored the conclusions.
    """

    run_id: str
    subject_id: str
    owner_id: str
    budget: ResearchBudget = field(default_factory=ResearchBudget)
    fields: FieldStateStore = field(default_factory=FieldStateStore)
    subject: SubjectRecord | None = None
    comps: list[Comparable] = field(default_factory=list)
    price: float | None = None
    history: TaskHistory = field(default_factory=TaskHistory)
    iteration: int = 0
    cost_spent: float = 0.0
    elapsed_s: float = 0.0
    pending_action: ResearchAction | None = None
    evaluation: FieldEvaluation | None = None
    warnings: list[str] = field(default_factory=list)
    persisted: bool = False

    # -- derived ------------------------------------------------------------

    def usage(self) -> BudgetUsage:
        return BudgetUsage(
            iterations=self.iteration, cost=self.cost_spent, elapsed_s=self.elapsed_s
        )

    @property
    def image_count(self) -> int:
        return len(self.subject.image_urls) if self.subject else 0

    def field_value(self, name: str) -> Any:
        state = self.fields.get(name)
        return state.value if state is not None and state.has_value else None

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def copy(self) -> ResearchState:
        """Independent copy; the field store is copied through its own
        :meth:`FieldStateStore.copy` so its engine is shared."""
        return replace(
            self,
            fields=self.fields.copy(),
            subject=self.subject.model_copy(deep=True) if self.subject else None,
            comps=list(self.comps),
            history=copy.deepcopy(self.history),
            warnings=list(self.warnings),
        )

    # -- serialization ------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "subject_id": self.subject_id,
            "owner_id": self.owner_id,
            "budget": asdict(self.budget),
            "fields": [field_state_to_dict(s) for s in self.fields.snapshot_all().values()],
            "subject": self.subject.model_dump(mode="json") if self.subject else None,
            "comps": [c.model_dump(mode="json") for c in self.comps],
            "price": self.price,
            "history": asdict(self.history),
            "iteration": self.iteration,
            "cost_spent": self.cost_spent,
            "elapsed_s": self.elapsed_s,
            "pending_action": (
                research_action_to_dict(self.pending_action) if self.pending_action else None
            ),
            "evaluation": (
                field_evaluation_to_dict(self.evaluation) if self.evaluation else None
            ),
            "warnings": list(self.warnings),
            "persisted": self.persisted,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        completeness: CompletenessPredicate | None = None,
        engine: CrossValidationEngine | None = None,
    ) -> ResearchState:
        """Rebuild a state from :meth:`to_dict` output.

        *completeness* and *engine* configure the rebuilt field store; field
        scores are restored as saved, not recomputed.
        """
        store = FieldStateStore(completeness=completeness, engine=engine)
        store.load(field_state_from_dict(f) for f in data.get("fields", []))
        subject = data.get("subject")
        action = data.get("pending_action")
        evaluation = data.get("evaluation")
        return cls(
            run_id=str(data["run_id"]),
            subject_id=str(data["subject_id"]),
            owner_id=str(data["owner_id"]),
            budget=ResearchBudget(**data.get("budget", {})),
            fields=store,
            subject=SubjectRecord.model_validate(subject) if subject else None,
            comps=[Comparable.model_validate(c) for c in data.get("comps", [])],
            price=data.get("price"),
            history=TaskHistory(**data.get("history", {})),
            iteration=int(data.get("iteration", 0)),
            cost_spent=float(data.get("cost_spent", 0.0)),
            elapsed_s=float(data.get("elapsed_s", 0.0)),
            pending_action=research_action_from_dict(action) if action else None,
            evaluation=field_evaluation_from_dict(evaluation) if evaluation else None,
            warnings=list(data.get("warnings", [])),
            persisted=bool(data.get("persisted", False)),
        )


def initial_state(
    run_id: str,
    subject_id: str,
    owner_id: str,
    budget: ResearchBudget,
    completeness: CompletenessPredicate | None = None,
    engine: CrossValidationEngine | None = None,
) -> ResearchState:
    """Fresh state with every tracked field declared."""
    store = FieldStateStore(completeness=completeness, engine=engine)
    for name, required, importance in TRACKED_FIELDS:
        store.define_field(name, required=required, importance=importance)
    return ResearchState(
        run_id=run_id,
        subject_id=subject_id,
        owner_id=owner_id,
        budget=budget,
        fields=store,
    )
