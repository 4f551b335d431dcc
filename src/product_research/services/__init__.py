"""Service layer for the product research engine.

Re-exports the services that do not depend on the phase graph::

    from product_research.services import (
        CrossValidationEngine, FieldStateStore, threshold_completeness,
        ResearchPlanner, TaskHistory, ResearchContext, TOOL_CATALOG,
        route_disposition, salvage, SalvageOutcome,
        RunControl, can_resume, RecoveryReconciler, RecoveryReport,
    )

The orchestrator and the queue worker drive the phase graph and live in
:mod:`product_research.services.orchestrator` and
:mod:`product_research.services.worker`.
"""

from product_research.services.control import RunControl, can_resume
from product_research.services.cross_validation import (
    SOURCE_GROUPS,
    CrossValidationEngine,
    base_multiplier,
    conflict_severity,
    values_agree,
)
from product_research.services.disposition import route_disposition
from product_research.services.field_state import (
    FieldStateStore,
    completion_score,
    threshold_completeness,
)
from product_research.services.planning import (
    TOOL_CATALOG,
    BasePlanner,
    ResearchContext,
    ResearchPlanner,
    TaskHistory,
    ToolSpec,
)
from product_research.services.recovery import RecoveryReconciler, RecoveryReport
from product_research.services.salvage import SalvageOutcome, salvage

__all__ = [
    # Cross-validation
    "SOURCE_GROUPS",
    "CrossValidationEngine",
    "base_multiplier",
    "conflict_severity",
    "values_agree",
    # Field state
    "FieldStateStore",
    "completion_score",
    "threshold_completeness",
    # Planning
    "TOOL_CATALOG",
    "BasePlanner",
    "ResearchContext",
    "ResearchPlanner",
    "TaskHistory",
    "ToolSpec",
    # Outcomes
    "route_disposition",
    "salvage",
    "SalvageOutcome",
    # Control / recovery
    "RunControl",
    "can_resume",
    "RecoveryReconciler",
    "RecoveryReport",
]
