"""Tests for PhaseSequence routing and the sequence builder."""

from __future__ import annotations

import pytest

from product_research.domain.enums import EvaluationDecision
from product_research.domain.values import FieldEvaluation, ResearchAction
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
from product_research.graph.state import ResearchState
from product_research.infrastructure.config import DEFAULT_PHASE_ORDER, PhasesConfig
from product_research.infrastructure.registry import PhaseRegistry


async def _noop(state, tools):
    return state


def _state(decision: EvaluationDecision | None = None, action: bool = False) -> ResearchState:
    state = ResearchState("r1", "s1", "o1")
    if decision is not None:
        state.evaluation = FieldEvaluation(decision)
    if action:
        state.pending_action = ResearchAction("web_search_general", "brand")
    return state


@pytest.fixture
def sequence() -> PhaseSequence:
    return build_phase_sequence()


class TestRouters:

    def test_evaluation_continue(self) -> None:
        assert route_after_evaluation(_state(EvaluationDecision.CONTINUE)) == CONTINUE

    @pytest.mark.parametrize(
        "decision", [EvaluationDecision.COMPLETE, EvaluationDecision.STOP_WITH_WARNINGS, None]
    )
    def test_evaluation_exit(self, decision) -> None:
        assert route_after_evaluation(_state(decision)) == EXIT

    def test_planning(self) -> None:
        assert route_after_planning(_state(action=True)) == CONTINUE
        assert route_after_planning(_state()) == EXIT


class TestNextPhase:

    def test_default_order(self, sequence: PhaseSequence) -> None:
        assert sequence.names == list(DEFAULT_PHASE_ORDER)
        assert sequence.first == "load_context"

    def test_linear_before_loop(self, sequence: PhaseSequence) -> None:
        assert sequence.next_phase("load_context", _state()) == "extract_identifiers"
        assert sequence.next_phase("quick_lookups", _state()) == "evaluate_fields"

    def test_evaluation_continues_into_planning(self, sequence: PhaseSequence) -> None:
        state = _state(EvaluationDecision.CONTINUE)
        assert sequence.next_phase("evaluate_fields", state) == "plan_research"

    def test_evaluation_exits_past_loop(self, sequence: PhaseSequence) -> None:
        state = _state(EvaluationDecision.COMPLETE)
        assert sequence.next_phase("evaluate_fields", state) == "search_comps"

    def test_empty_plan_exits_past_loop(self, sequence: PhaseSequence) -> None:
        assert sequence.next_phase("plan_research", _state()) == "search_comps"
        assert sequence.next_phase("plan_research", _state(action=True)) == "execute_research"

    def test_loop_end_returns_to_start(self, sequence: PhaseSequence) -> None:
        assert sequence.next_phase("execute_research", _state()) == "evaluate_fields"

    def test_last_phase_finishes(self, sequence: PhaseSequence) -> None:
        assert sequence.next_phase("persist_results", _state()) is None

    def test_contains_and_lookup(self, sequence: PhaseSequence) -> None:
        assert "calculate_price" in sequence
        assert "teleport" not in sequence
        with pytest.raises(KeyError):
            sequence.phase("teleport")


class TestBuilder:

    def test_custom_order_without_loop(self) -> None:
        sequence = (
            PhaseSequenceBuilder(default_phase_registry())
            .with_order(["load_context", "search_comps", "calculate_price", "persist_results"])
            .without_loop()
            .build()
        )
        state = _state(EvaluationDecision.CONTINUE)
        assert sequence.next_phase("search_comps", state) == "calculate_price"

    def test_routers_ignored_outside_loop(self) -> None:
        sequence = (
            PhaseSequenceBuilder(default_phase_registry())
            .with_order(["evaluate_fields", "plan_research", "persist_results"])
            .without_loop()
            .build()
        )
        assert sequence.next_phase("evaluate_fields", _state()) == "plan_research"

    def test_stub_registry(self) -> None:
        registry = PhaseRegistry()
        for name in ("a", "b", "c"):
            registry.register_phase(name, _noop)
        registry.register_phase("b", _noop, router=lambda s: EXIT, overwrite=True)
        sequence = PhaseSequenceBuilder(registry).with_order(["a", "b", "c"]).with_loop(
            "a", "b"
        ).build()
        assert sequence.next_phase("a", _state()) == "b"
        assert sequence.next_phase("b", _state()) == "c"

    def test_unregistered_phase_rejected(self) -> None:
        builder = PhaseSequenceBuilder(default_phase_registry()).with_order(
            ["load_context", "teleport"]
        ).without_loop()
        with pytest.raises(ValueError, match="teleport"):
            builder.build()

    def test_loop_outside_order_rejected(self) -> None:
        builder = PhaseSequenceBuilder(default_phase_registry()).with_order(
            ["load_context", "persist_results"]
        )
        with pytest.raises(ValueError):
            builder.build()

    def test_reversed_loop_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_phase_sequence(PhasesConfig(loop_start="execute_research",
                                              loop_end="evaluate_fields"))

    def test_empty_sequence_rejected(self) -> None:
        with pytest.raises(ValueError):
            PhaseSequence([], {})

    def test_missing_function_rejected(self) -> None:
        with pytest.raises(ValueError):
            PhaseSequence(["a"], {})
