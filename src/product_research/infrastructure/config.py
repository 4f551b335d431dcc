"""Configuration dataclasses for the product research engine.

Each config is a plain ``dataclass`` with a ``validate()`` method that raises
``ValueError`` on invalid combinations.  ``ResearchConfig`` groups every
section and can be loaded from JSON or YAML documents whose top-level keys
are the section names.

Configs are **frozen** (``frozen=True``) so they can be shared between the
orchestrator, the control surface and the reconciler without risking silent
mutation.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from product_research.domain.enums import ResearchMode
from product_research.domain.values import ResearchBudget


def _filtered(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    valid_keys = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_keys}


# ===================================================================== #
#  Budget                                                                #
# ===================================================================== #

_MODE_PRESETS: dict[ResearchMode, dict[str, Any]] = {
    ResearchMode.FAST: {"max_iterations": 2, "max_cost": 0.10, "max_wall_clock_s": 30.0},
    ResearchMode.BALANCED: {"max_iterations": 5, "max_cost": 0.50, "max_wall_clock_s": 120.0},
    ResearchMode.THOROUGH: {"max_iterations": 10, "max_cost": 2.00, "max_wall_clock_s": 600.0},
}


@dataclass(frozen=True)
class BudgetConfig:
    """Research budget for one run.

    Attributes
    ----------
    max_iterations:
        Planner iterations (plan/execute rounds) allowed per run.
    max_cost:
        Spend ceiling in USD across all tool calls.
    max_wall_clock_s:
        Wall-clock ceiling on time spent inside phases; time spent paused
        does not count.
    """

    max_iterations: int = 5
    max_cost: float = 0.50
    max_wall_clock_s: float = 120.0

    def validate(self) -> None:
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.max_cost <= 0:
            raise ValueError(f"max_cost must be > 0, got {self.max_cost}")
        if self.max_wall_clock_s <= 0:
            raise ValueError(
                f"max_wall_clock_s must be > 0, got {self.max_wall_clock_s}"
            )

    def to_budget(self) -> ResearchBudget:
        return ResearchBudget(
            max_iterations=self.max_iterations,
            max_cost=self.max_cost,
            max_wall_clock_s=self.max_wall_clock_s,
        )

    @classmethod
    def for_mode(cls, mode: ResearchMode | str) -> BudgetConfig:
        """Return the preset budget for a research mode."""
        return cls(**_MODE_PRESETS[ResearchMode(mode)])

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BudgetConfig:
        data = dict(data)
        mode = data.pop("mode", None)
        base = _MODE_PRESETS[ResearchMode(mode)] if mode else {}
        cfg = cls(**{**base, **_filtered(cls, data)})
        cfg.validate()
        return cfg


# ===================================================================== #
#  Confidence thresholds                                                 #
# ===================================================================== #

@dataclass(frozen=True)
class ConfidenceConfig:
    """Per-class confidence a field must reach to count as complete."""

    required: float = 0.70
    recommended: float = 0.50

    def validate(self) -> None:
        for name in ("required", "recommended"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConfidenceConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Tool retry / circuit breaker                                          #
# ===================================================================== #

@dataclass(frozen=True)
class RetryConfig:
    """Retry policy applied by the tool wrapper.

    Attributes
    ----------
    max_attempts:
        Total tries per call, including the first.
    base_delay_s:
        Delay before the second try; doubles on every further try.
    max_delay_s:
        Cap on a single backoff delay.
    jitter:
        If ``True`` each delay is drawn uniformly from ``[0, delay]``.
    """

    max_attempts: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 8.0
    jitter: bool = True

    def validate(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_s < 0:
            raise ValueError(f"base_delay_s must be >= 0, got {self.base_delay_s}")
        if self.max_delay_s < self.base_delay_s:
            raise ValueError(
                f"max_delay_s ({self.max_delay_s}) must be >= "
                f"base_delay_s ({self.base_delay_s})"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Per-operation circuit breaker parameters.

    Attributes
    ----------
    enabled:
        Turn the breaker off entirely with ``False``.
    failure_threshold:
        Failures inside ``failure_window_s`` that open the circuit.
    failure_window_s:
        Sliding window for counting failures.
    recovery_timeout_s:
        How long the circuit stays open before a half-open trial call.
    success_threshold:
        Consecutive half-open successes needed to close again.
    """

    enabled: bool = True
    failure_threshold: int = 3
    failure_window_s: float = 60.0
    recovery_timeout_s: float = 60.0
    success_threshold: int = 2

    def validate(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError(
                f"failure_threshold must be >= 1, got {self.failure_threshold}"
            )
        if self.failure_window_s <= 0:
            raise ValueError(
                f"failure_window_s must be > 0, got {self.failure_window_s}"
            )
        if self.recovery_timeout_s < 0:
            raise ValueError(
                f"recovery_timeout_s must be >= 0, got {self.recovery_timeout_s}"
            )
        if self.success_threshold < 1:
            raise ValueError(
                f"success_threshold must be >= 1, got {self.success_threshold}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CircuitBreakerConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Orchestrator                                                          #
# ===================================================================== #

@dataclass(frozen=True)
class OrchestratorConfig:
    """Limits governing run execution and resume.

    Attributes
    ----------
    max_retries:
        Resume attempts allowed per run.
    steps_per_attempt:
        Expected phase steps per attempt; ``max_retries * steps_per_attempt``
        is the step ceiling beyond which a run can no longer be resumed.
    max_phase_executions:
        Hard ceiling on phase executions within one attempt.  Hitting it is a
        non-termination error and triggers salvage.
    min_salvage_evidence:
        Evidence units needed for salvage to succeed.
    """

    max_retries: int = 3
    steps_per_attempt: int = 10
    max_phase_executions: int = 50
    min_salvage_evidence: int = 1

    @property
    def step_ceiling(self) -> int:
        return self.max_retries * self.steps_per_attempt

    def validate(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.steps_per_attempt < 1:
            raise ValueError(
                f"steps_per_attempt must be >= 1, got {self.steps_per_attempt}"
            )
        if self.max_phase_executions < 1:
            raise ValueError(
                f"max_phase_executions must be >= 1, got {self.max_phase_executions}"
            )
        if self.min_salvage_evidence < 1:
            raise ValueError(
                f"min_salvage_evidence must be >= 1, got {self.min_salvage_evidence}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrchestratorConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Disposition routing                                                   #
# ===================================================================== #

@dataclass(frozen=True)
class DispositionConfig:
    """Thresholds for routing a finished subject to a review queue."""

    auto_approve_enabled: bool = False
    auto_approve_threshold: float = 0.90
    spot_check_threshold: float = 0.70
    min_evidence: int = 3

    def validate(self) -> None:
        for name in ("auto_approve_threshold", "spot_check_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.spot_check_threshold > self.auto_approve_threshold:
            raise ValueError(
                "spot_check_threshold must not exceed auto_approve_threshold"
            )
        if self.min_evidence < 0:
            raise ValueError(f"min_evidence must be >= 0, got {self.min_evidence}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DispositionConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Recovery                                                              #
# ===================================================================== #

@dataclass(frozen=True)
class RecoveryConfig:
    """Startup reconciliation parameters.

    Attributes
    ----------
    startup_delay_s:
        Grace period before the first reconciliation pass.
    stale_threshold_s:
        A ``running`` run idle for longer than this is considered stalled.
    pending_threshold_s:
        A ``pending`` run is only checked against the queue once older
        than this.
    """

    startup_delay_s: float = 5.0
    stale_threshold_s: float = 15 * 60.0
    pending_threshold_s: float = 10 * 60.0

    def validate(self) -> None:
        for name in ("startup_delay_s", "stale_threshold_s", "pending_threshold_s"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecoveryConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Phase sequence                                                        #
# ===================================================================== #

DEFAULT_PHASE_ORDER: tuple[str, ...] = (
    "load_context",
    "extract_identifiers",
    "quick_lookups",
    "evaluate_fields",
    "plan_research",
    "execute_research",
    "search_comps",
    "calculate_price",
    "persist_results",
)


@dataclass(frozen=True)
class PhasesConfig:
    """Declared phase order and the research loop inside it.

    ``loop_start`` .. ``loop_end`` (inclusive) repeat until a routing edge
    exits the loop; execution then continues after ``loop_end``.
    """

    order: list[str] = field(default_factory=lambda: list(DEFAULT_PHASE_ORDER))
    loop_start: str = "evaluate_fields"
    loop_end: str = "execute_research"

    def __post_init__(self) -> None:
        if self.order is None:
            object.__setattr__(self, "order", list(DEFAULT_PHASE_ORDER))

    def validate(self) -> None:
        if not self.order:
            raise ValueError("order must name at least one phase")
        if len(set(self.order)) != len(self.order):
            raise ValueError(f"order contains duplicate phases: {self.order}")
        for name in ("loop_start", "loop_end"):
            phase = getattr(self, name)
            if phase and phase not in self.order:
                raise ValueError(f"{name} '{phase}' is not in order")
        if bool(self.loop_start) != bool(self.loop_end):
            raise ValueError("loop_start and loop_end must be set together")
        if self.loop_start and self.order.index(self.loop_start) > self.order.index(
            self.loop_end
        ):
            raise ValueError("loop_start must not come after loop_end")

    def longest_attempt(self, max_iterations: int) -> int:
        """Upper bound on phase executions in one attempt.

        Every phase runs once, the loop runs once more per planner iteration,
        and the last pass may stop part-way once the iterations run out.
        """
        if not self.loop_start or {self.loop_start, self.loop_end} - set(self.order):
            return len(self.order)
        loop_len = self.order.index(self.loop_end) - self.order.index(self.loop_start) + 1
        return len(self.order) + max(loop_len, 0) * max_iterations

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhasesConfig:
        cfg = cls(**_filtered(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Aggregate                                                             #
# ===================================================================== #

@dataclass(frozen=True)
class ResearchConfig:
    """Every configuration section in one object."""

    budget: BudgetConfig = field(default_factory=BudgetConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    disposition: DispositionConfig = field(default_factory=DispositionConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    phases: PhasesConfig = field(default_factory=PhasesConfig)

    def __post_init__(self) -> None:
        # Raise the resume ceiling so a full-length attempt fits inside it.
        orch = self.orchestrator
        attempt = self.longest_attempt
        if orch.step_ceiling < attempt:
            steps = math.ceil(attempt / max(orch.max_retries, 1))
            object.__setattr__(self, "orchestrator", replace(orch, steps_per_attempt=steps))

    @property
    def longest_attempt(self) -> int:
        """Most phase executions one attempt can take under this budget."""
        return self.phases.longest_attempt(self.budget.max_iterations)

    def validate(self) -> None:
        for f in fields(self):
            getattr(self, f.name).validate()
        limit = self.orchestrator.max_phase_executions
        if limit < self.longest_attempt:
            raise ValueError(
                f"max_phase_executions ({limit}) is below the {self.longest_attempt} "
                f"phase executions allowed by max_iterations={self.budget.max_iterations}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResearchConfig:
        sections: dict[str, Any] = {}
        for section, data_section in data.items():
            section_cls = _CONFIG_MAP.get(section)
            if section_cls is not None and isinstance(data_section, dict):
                sections[section] = section_cls.from_dict(data_section)
        cfg = cls(**sections)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Unified config loaders                                                #
# ===================================================================== #

_CONFIG_MAP: dict[str, type] = {
    "budget": BudgetConfig,
    "confidence": ConfidenceConfig,
    "retry": RetryConfig,
    "circuit_breaker": CircuitBreakerConfig,
    "orchestrator": OrchestratorConfig,
    "disposition": DispositionConfig,
    "recovery": RecoveryConfig,
    "phases": PhasesConfig,
}


def load_config_from_json(json_str: str) -> ResearchConfig:
    """Parse a JSON document into a :class:`ResearchConfig`.

    The document is an object whose top-level keys are section names
    (``budget``, ``retry``, ``orchestrator``, ...).  Unknown sections and
    unknown keys inside a section are ignored; missing ones keep defaults.
    """
    raw = json.loads(json_str)
    if not isinstance(raw, dict):
        raise ValueError("Top-level JSON must be an object")
    return ResearchConfig.from_dict(raw)


def load_config_from_yaml(yaml_str: str) -> ResearchConfig:
    """Parse a YAML document into a :class:`ResearchConfig`."""
    raw = yaml.safe_load(yaml_str) or {}
    if not isinstance(raw, dict):
        raise ValueError("Top-level YAML must be a mapping")
    return ResearchConfig.from_dict(raw)


def load_config_file(path: str | Path) -> ResearchConfig:
    """Load a config file, picking the parser from its suffix."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        return load_config_from_yaml(text)
    return load_config_from_json(text)
