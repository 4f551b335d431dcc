"""Domain exceptions for the product research engine.

All domain-specific exceptions inherit from ``ProductResearchError`` so
callers can catch the full family with a single ``except`` clause when needed.
"""

from __future__ import annotations

from typing import Any

from .enums import RunStatus, ToolFailureKind


class ProductResearchError(Exception):
    """Base exception for all product research errors."""

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class ToolError(ProductResearchError):
    """Raised when an external research tool call fails.

    The ``kind`` decides whether the retry wrapper may try again:
    ``validation`` failures propagate immediately, everything else is
    retried up to the configured attempt cap.
    """

    def __init__(
        self,
        message: str = "Tool call failed",
        kind: ToolFailureKind = ToolFailureKind.UNKNOWN,
        operation: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.kind = kind
        self.operation = operation

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class CircuitOpenError(ToolError):
    """Raised without calling the tool while its circuit breaker is open."""

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        operation: str = "",
        retry_after: float = 0.0,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ToolFailureKind.UNKNOWN, operation, details)
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return False


class AuthorizationError(ProductResearchError):
    """Raised when the subject does not belong to the claimed owner.

    Authorization failures end the run immediately and are never retried.
    """

    def __init__(
        self,
        message: str = "Subject does not belong to owner",
        subject_id: str = "",
        owner_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.subject_id = subject_id
        self.owner_id = owner_id


class RunNotFoundError(ProductResearchError):
    """Raised when a run id has no row in the run store."""

    def __init__(
        self,
        message: str = "Research run not found",
        run_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.run_id = run_id


class InvalidTransitionError(ProductResearchError):
    """Raised when a control request is illegal for the run's current status."""

    def __init__(
        self,
        message: str = "Invalid run state transition",
        run_id: str = "",
        status: RunStatus | None = None,
        requested: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.run_id = run_id
        self.status = status
        self.requested = requested


class RetryLimitExceededError(ProductResearchError):
    """Raised when a run has used up its resume allowance."""

    def __init__(
        self,
        message: str = "Retry limit exceeded",
        run_id: str = "",
        step_count: int = 0,
        limit: int = 0,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.run_id = run_id
        self.step_count = step_count
        self.limit = limit


class DuplicateJobError(ProductResearchError):
    """Raised when a job key is already live in the queue."""

    def __init__(
        self,
        message: str = "Job already queued",
        job_key: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.job_key = job_key


class NonTerminationError(ProductResearchError):
    """Raised when the phase sequence exceeds its hard execution ceiling.

    The orchestrator answers this error with salvage rather than a plain
    failure.
    """

    def __init__(
        self,
        message: str = "Phase sequence did not terminate",
        executions: int = 0,
        limit: int = 0,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.executions = executions
        self.limit = limit


class CheckpointError(ProductResearchError):
    """Raised when a checkpoint blob cannot be decoded."""
