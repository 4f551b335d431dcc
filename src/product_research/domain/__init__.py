"""Domain layer: enums, exceptions, events, value objects and entities."""

from product_research.domain.entities import FieldState, ResearchRun
from product_research.domain.enums import (
    CircuitState,
    ConflictSeverity,
    Disposition,
    EvaluationDecision,
    ResearchMode,
    RunStatus,
    StepOutcome,
    ToolFailureKind,
)
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
    CircuitOpenError,
    DuplicateJobError,
    InvalidTransitionError,
    NonTerminationError,
    ProductResearchError,
    RetryLimitExceededError,
    RunNotFoundError,
    ToolError,
)
from product_research.domain.values import (
    BudgetUsage,
    Conflict,
    CrossValidationResult,
    FieldEvaluation,
    ResearchAction,
    ResearchBudget,
    Source,
    StepRecord,
)

__all__ = [
    # entities
    "FieldState",
    "ResearchRun",
    # enums
    "CircuitState",
    "ConflictSeverity",
    "Disposition",
    "EvaluationDecision",
    "ResearchMode",
    "RunStatus",
    "StepOutcome",
    "ToolFailureKind",
    # events
    "PhaseCompleted",
    "PhaseStarted",
    "RunCancelled",
    "RunCompleted",
    "RunEvent",
    "RunPaused",
    "RunResumed",
    # exceptions
    "AuthorizationError",
    "CheckpointError",
    "CircuitOpenError",
    "DuplicateJobError",
    "InvalidTransitionError",
    "NonTerminationError",
    "ProductResearchError",
    "RetryLimitExceededError",
    "RunNotFoundError",
    "ToolError",
    # values
    "BudgetUsage",
    "Conflict",
    "CrossValidationResult",
    "FieldEvaluation",
    "ResearchAction",
    "ResearchBudget",
    "Source",
    "StepRecord",
]
