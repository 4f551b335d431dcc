"""Research planning for the product research loop.

Implements the Strategy pattern for choosing the next research action from
the current field states and the remaining budget.

Classes
-------
ToolSpec
    Static description of one research tool (cost, latency, coverage).
ResearchContext
    What is known about the subject that affects tool choice.
TaskHistory
    Per-run record of tool attempts and progress, carried in checkpoints.
BasePlanner
    Abstract base class for planners.
ResearchPlanner
    Rank-by-gap planner that prefers exact-identifier lookups.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from product_research.domain.entities import FieldState
from product_research.domain.enums import EvaluationDecision
from product_research.domain.values import (
    BudgetUsage,
    FieldEvaluation,
    ResearchAction,
    ResearchBudget,
)
from product_research.services.field_state import completion_score

logger = logging.getLogger(__name__)

WILDCARD = "*"
MAX_WILDCARD_FIELDS = 5
MAX_ATTEMPTS_PER_TOOL = 2
MAX_CONSECUTIVE_NO_PROGRESS = 3
# Fields this hard to pin down are dropped from the research queue.
GIVE_UP_ATTEMPTS = 3
GIVE_UP_CONFIDENCE = 0.3


# ===================================================================== #
#  Tool catalog                                                          #
# ===================================================================== #

@dataclass(frozen=True)
class ToolSpec:
    """Static metadata for one research tool.

    Attributes
    ----------
    name:
        Planner-facing tool name.
    source_type:
        Source type recorded for observations the tool returns.
    priority:
        Base score before field and context adjustments.
    cost:
        Estimated spend per call in USD.
    time_ms:
        Estimated latency per call.
    confidence_weight:
        How trustworthy the tool's answers are, in [0, 1].
    provides:
        Field names the tool can fill; ``"*"`` means any field.
    requires_fields:
        At least one of these must already be known (empty = no prerequisite).
    requires_images:
        The subject must have at least one image.
    requires_service:
        Name of an external service that must be configured.
    """

    name: str
    source_type: str
    priority: float
    cost: float
    time_ms: int
    confidence_weight: float
    provides: tuple[str, ...]
    requires_fields: tuple[str, ...] = ()
    requires_images: bool = False
    requires_service: str | None = None

    @property
    def is_wildcard(self) -> bool:
        return WILDCARD in self.provides

    def can_provide(self, field_name: str) -> bool:
        return self.is_wildcard or field_name in self.provides


TOOL_CATALOG: tuple[ToolSpec, ...] = (
    ToolSpec(
        "upc_lookup", "upc_lookup", 60, 0.001, 500, 0.95,
        ("brand", "model", "title", "category"),
        requires_fields=("upc",), requires_service="upc_database",
    ),
    ToolSpec(
        "keepa_lookup", "keepa", 55, 0.01, 1500, 0.90,
        ("brand", "model", "title", "category", "price"),
        requires_fields=("upc",), requires_service="keepa",
    ),
    ToolSpec(
        "amazon_catalog", "amazon_catalog", 50, 0.005, 1200, 0.88,
        ("brand", "model", "title", "category", "upc"),
        requires_fields=("upc", "brand", "model"), requires_service="amazon",
    ),
    ToolSpec(
        "vision_analysis", "vision_ai", 40, 0.02, 4000, 0.70,
        (WILDCARD,), requires_images=True,
    ),
    ToolSpec(
        "ocr_extraction", "ocr", 35, 0.005, 2000, 0.75,
        ("upc", "model", "brand"), requires_images=True,
    ),
    ToolSpec(
        "web_search_targeted", "web_search_targeted", 30, 0.01, 3000, 0.65,
        ("model", "title", "category", "condition", "price"),
        requires_fields=("brand", "model"),
    ),
    ToolSpec(
        "web_search_general", "web_search_general", 20, 0.01, 3000, 0.55,
        (WILDCARD,),
    ),
)


# ===================================================================== #
#  Planner inputs                                                        #
# ===================================================================== #

@dataclass(frozen=True)
class ResearchContext:
    """Subject facts that decide which tools are usable and how they score."""

    known_fields: frozenset[str] = frozenset()
    image_count: int = 0
    configured_services: frozenset[str] = frozenset()

    @property
    def has_upc(self) -> bool:
        return "upc" in self.known_fields

    @property
    def has_brand(self) -> bool:
        return "brand" in self.known_fields

    @property
    def has_model(self) -> bool:
        return "model" in self.known_fields

    @classmethod
    def from_fields(
        cls,
        fields: Mapping[str, FieldState],
        image_count: int = 0,
        configured_services: frozenset[str] = frozenset(),
    ) -> ResearchContext:
        known = frozenset(name for name, state in fields.items() if state.has_value)
        return cls(known, image_count, configured_services)


@dataclass
class TaskHistory:
    """Tool attempts and loop progress for one run."""

    attempts_by_tool: dict[str, int] = field(default_factory=dict)
    failed_tools: list[str] = field(default_factory=list)
    consecutive_no_progress: int = 0
    last_completion: float = 0.0

    def record_attempt(self, tool: str, produced_results: bool) -> None:
        self.attempts_by_tool[tool] = self.attempts_by_tool.get(tool, 0) + 1
        if not produced_results and tool not in self.failed_tools:
            self.failed_tools.append(tool)

    def record_progress(self, completion: float) -> None:
        """Track whether the completion score moved since the last check."""
        if completion > self.last_completion + 1e-9:
            self.consecutive_no_progress = 0
        else:
            self.consecutive_no_progress += 1
        self.last_completion = max(self.last_completion, completion)


# ===================================================================== #
#  Base Planner (ABC)                                                    #
# ===================================================================== #

class BasePlanner(ABC):
    """Abstract base class for research planners.

    Planners never perform I/O: they inspect field states and return a
    description of the next action for the orchestrator to execute.
    """

    @abstractmethod
    def evaluate(
        self,
        fields: Mapping[str, FieldState],
        usage: BudgetUsage,
        history: TaskHistory,
    ) -> FieldEvaluation:
        """Decide whether research should continue."""

    @abstractmethod
    def plan_next(
        self,
        fields: Mapping[str, FieldState],
        context: ResearchContext,
        usage: BudgetUsage,
        history: TaskHistory,
    ) -> ResearchAction | None:
        """Return the next action, or ``None`` when research is done."""


# ===================================================================== #
#  Research Planner                                                      #
# ===================================================================== #

class ResearchPlanner(BasePlanner):
    """Ranks incomplete fields by importance-weighted confidence gap and
    picks the best-scoring tool for the neediest field.

    Parameters
    ----------
    budget:
        Iteration, cost and wall-clock ceilings.
    tools:
        Tool catalog to choose from.  Defaults to :data:`TOOL_CATALOG`.
    max_attempts_per_tool:
        Tries allowed per tool per run.
    max_consecutive_no_progress:
        Loop iterations without completion gain before stopping.
    """

    def __init__(
        self,
        budget: ResearchBudget,
        tools: Sequence[ToolSpec] = TOOL_CATALOG,
        max_attempts_per_tool: int = MAX_ATTEMPTS_PER_TOOL,
        max_consecutive_no_progress: int = MAX_CONSECUTIVE_NO_PROGRESS,
    ) -> None:
        if not tools:
            raise ValueError("ResearchPlanner requires a non-empty tool catalog")
        self._budget = budget
        self._tools = {t.name: t for t in tools}
        self._max_attempts_per_tool = max_attempts_per_tool
        self._max_no_progress = max_consecutive_no_progress

    @property
    def budget(self) -> ResearchBudget:
        return self._budget

    @property
    def tools(self) -> Mapping[str, ToolSpec]:
        return dict(self._tools)

    def tool(self, name: str) -> ToolSpec:
        return self._tools[name]

    # -- field ranking ------------------------------------------------------

    def researchable_fields(self, fields: Mapping[str, FieldState]) -> list[FieldState]:
        """Incomplete fields worth more research, neediest first.

        Priority is ``importance * (1 - confidence)``; ties go to required
        fields, then fewer attempts, then name.
        """
        candidates = [
            s for s in fields.values()
            if not s.complete
            and not (s.attempts >= GIVE_UP_ATTEMPTS and s.confidence < GIVE_UP_CONFIDENCE)
        ]
        if not candidates:
            return []
        importance = np.array([s.importance for s in candidates], dtype=np.float64)
        confidence = np.array([s.confidence for s in candidates], dtype=np.float64)
        priority = importance * (1.0 - np.clip(confidence, 0.0, 1.0))
        order = sorted(
            range(len(candidates)),
            key=lambda i: (
                -float(priority[i]),
                not candidates[i].required,
                candidates[i].attempts,
                candidates[i].name,
            ),
        )
        return [candidates[i] for i in order]

    # -- evaluation ---------------------------------------------------------

    def evaluate(
        self,
        fields: Mapping[str, FieldState],
        usage: BudgetUsage,
        history: TaskHistory,
    ) -> FieldEvaluation:
        researchable = self.researchable_fields(fields)
        completion = completion_score(fields.values())
        remaining_cost = max(0.0, usage.remaining_cost(self._budget))
        remaining_iters = max(0, usage.remaining_iterations(self._budget))

        def decide(decision: EvaluationDecision, reason: str) -> FieldEvaluation:
            return FieldEvaluation(
                decision=decision,
                reason=reason,
                fields_needing_work=len(researchable),
                completion_score=completion,
                budget_remaining=remaining_cost,
                iterations_remaining=remaining_iters,
            )

        required = [s for s in fields.values() if s.required]
        if required and all(s.complete for s in required):
            return decide(EvaluationDecision.COMPLETE, "All required fields complete")

        exhausted = usage.exhausted_reason(self._budget)
        if exhausted:
            return decide(EvaluationDecision.STOP_WITH_WARNINGS, exhausted)

        if history.consecutive_no_progress >= self._max_no_progress:
            return decide(
                EvaluationDecision.STOP_WITH_WARNINGS,
                f"No progress in {history.consecutive_no_progress} consecutive iterations",
            )

        if not researchable:
            return decide(
                EvaluationDecision.STOP_WITH_WARNINGS,
                "No researchable fields remaining",
            )

        return decide(
            EvaluationDecision.CONTINUE,
            f"{len(researchable)} fields need research",
        )

    # -- planning -----------------------------------------------------------

    def plan_next(
        self,
        fields: Mapping[str, FieldState],
        context: ResearchContext,
        usage: BudgetUsage,
        history: TaskHistory,
    ) -> ResearchAction | None:
        evaluation = self.evaluate(fields, usage, history)
        if not evaluation.should_continue:
            logger.debug("Planner done: %s", evaluation.reason)
            return None

        researchable = self.researchable_fields(fields)
        remaining = usage.remaining_cost(self._budget)
        for target in researchable:
            tool, score = self._select_tool(target, context, remaining, history)
            if tool is None:
                continue
            helped = self._fields_tool_can_help(tool, researchable)
            action = ResearchAction(
                tool=tool.name,
                target_field=target.name,
                target_fields=tuple(s.name for s in helped),
                estimated_cost=tool.cost,
                estimated_time_ms=tool.time_ms,
                score=score,
                reasoning=self._reasoning(tool, target, context, score),
            )
            logger.debug("Planned %s for %r (score %.1f)", tool.name, target.name, score)
            return action

        logger.debug("No usable tool for %d researchable fields", len(researchable))
        return None

    def score_tool(self, tool: ToolSpec, target: FieldState, context: ResearchContext) -> float:
        """Score *tool* for researching *target*; higher is better."""
        score = float(tool.priority)
        if target.name in tool.provides:
            score += 20
        score += tool.confidence_weight * 30
        score -= tool.cost * 50
        score -= tool.time_ms / 1000
        if tool.name == "upc_lookup" and context.has_upc:
            score += 50
        if tool.name == "keepa_lookup" and context.has_upc:
            score += 40
        if tool.name == "vision_analysis" and context.image_count > 1:
            score += 15
        if tool.name == "web_search_targeted" and context.has_brand and context.has_model:
            score += 25
        score -= target.attempts * 10
        return score

    def _select_tool(
        self,
        target: FieldState,
        context: ResearchContext,
        remaining_cost: float,
        history: TaskHistory,
    ) -> tuple[ToolSpec | None, float]:
        best: ToolSpec | None = None
        best_score = float("-inf")
        for tool in self._tools.values():
            if tool.name in history.failed_tools:
                continue
            if history.attempts_by_tool.get(tool.name, 0) >= self._max_attempts_per_tool:
                continue
            if tool.cost > remaining_cost:
                continue
            if not tool.can_provide(target.name):
                continue
            if not _prerequisites_met(tool, context):
                continue
            score = self.score_tool(tool, target, context)
            if score > best_score:
                best, best_score = tool, score
        return best, best_score

    @staticmethod
    def _fields_tool_can_help(
        tool: ToolSpec, researchable: Sequence[FieldState]
    ) -> list[FieldState]:
        if tool.is_wildcard:
            return list(researchable[:MAX_WILDCARD_FIELDS])
        return [s for s in researchable if s.name in tool.provides]

    @staticmethod
    def _reasoning(
        tool: ToolSpec, target: FieldState, context: ResearchContext, score: float
    ) -> str:
        parts = [f"{tool.name} for '{target.name}' (score {score:.1f})"]
        if tool.requires_fields and context.has_upc and "upc" in tool.requires_fields:
            parts.append("exact identifier available")
        if target.attempts:
            parts.append(f"{target.attempts} prior attempt(s)")
        return "; ".join(parts)


def _prerequisites_met(tool: ToolSpec, context: ResearchContext) -> bool:
    if tool.requires_service and tool.requires_service not in context.configured_services:
        return False
    if tool.requires_images and context.image_count == 0:
        return False
    if tool.requires_fields:
        return any(f in context.known_fields for f in tool.requires_fields)
    return True

