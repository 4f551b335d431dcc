"""Explicit phase sequencer for a research run.

Public API
----------
ResearchState
    Working state passed from phase to phase and stored in checkpoints.
PhaseSequence / PhaseSequenceBuilder
    Resolved phase order with loop-back routing.
build_phase_sequence
    Build a sequence from ``PhasesConfig`` and a phase registry.
default_phase_registry
    Registry with every built-in phase.

Phase functions:
    load_context, extract_identifiers, quick_lookups, evaluate_fields,
    plan_research, execute_research, search_comps, calculate_price,
    persist_results

Routers:
    route_after_evaluation, route_after_planning
"""

from product_research.graph.builder import (
    PhaseSequence,
    PhaseSequenceBuilder,
    build_phase_sequence,
    default_phase_registry,
)
from product_research.graph.edges import (
    CONTINUE,
    EXIT,
    route_after_evaluation,
    route_after_planning,
)
from product_research.graph.nodes import (
    TOOL_DISPATCH,
    calculate_price,
    evaluate_fields,
    execute_research,
    extract_identifiers,
    load_context,
    persist_results,
    plan_research,
    quick_lookups,
    search_comps,
)
from product_research.graph.state import TRACKED_FIELDS, ResearchState, initial_state

__all__ = [
    # State
    "ResearchState",
    "TRACKED_FIELDS",
    "initial_state",
    # Sequencer
    "PhaseSequence",
    "PhaseSequenceBuilder",
    "build_phase_sequence",
    "default_phase_registry",
    # Routing
    "CONTINUE",
    "EXIT",
    "route_after_evaluation",
    "route_after_planning",
    # Phases
    "TOOL_DISPATCH",
    "load_context",
    "extract_identifiers",
    "quick_lookups",
    "evaluate_fields",
    "plan_research",
    "execute_research",
    "search_comps",
    "calculate_price",
    "persist_results",
]
