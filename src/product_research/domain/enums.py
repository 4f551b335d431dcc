"""Domain enumerations for the product research engine.

These enums capture the fixed vocabularies used across the domain layer:
run lifecycle states, step outcomes, conflict severities, tool failure
classes, planner decisions, and downstream review dispositions.
"""

from enum import Enum


class RunStatus(Enum):
    """Lifecycle status of a research run."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCESS, RunStatus.ERROR, RunStatus.CANCELLED)


class StepOutcome(Enum):
    """Outcome recorded for one phase execution in the step history."""

    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class ConflictSeverity(Enum):
    """How badly two cross-group sources disagree."""

    MINOR = "minor"  # near-miss: substring, shared prefix, <=20% apart
    MAJOR = "major"


class ToolFailureKind(Enum):
    """Classification of a failed external tool call."""

    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"  # never retried
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self is not ToolFailureKind.VALIDATION


class EvaluationDecision(Enum):
    """Verdict of the field evaluation step in the research loop."""

    CONTINUE = "continue"
    COMPLETE = "complete"
    STOP_WITH_WARNINGS = "stop_with_warnings"


class Disposition(Enum):
    """Downstream review queue a finished subject is routed to."""

    AUTO_APPROVE = "auto_approve"
    SPOT_CHECK = "spot_check"
    FULL_REVIEW = "full_review"


class CircuitState(Enum):
    """State of a per-operation circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ResearchMode(Enum):
    """Budget presets for a research run."""

    FAST = "fast"
    BALANCED = "balanced"
    THOROUGH = "thorough"
