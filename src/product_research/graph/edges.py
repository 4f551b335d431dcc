"""Routing functions for the research loop.

A router looks at the state a phase just produced and returns
:data:`CONTINUE` to keep going around the loop or :data:`EXIT` to leave it
and carry on after the loop's last phase.
"""

from __future__ import annotations

from typing import Literal

from product_research.graph.state import ResearchState

CONTINUE = "continue"
EXIT = "exit"

Route = Literal["continue", "exit"]


def route_after_evaluation(state: ResearchState) -> Route:
    """Leave the loop once the evaluation is anything but ``continue``."""
    if state.evaluation is not None and state.evaluation.should_continue:
        return CONTINUE
    return EXIT


def route_after_planning(state: ResearchState) -> Route:
    """Leave the loop when the planner found nothing worth doing."""
    if state.pending_action is None:
        return EXIT
    return CONTINUE
