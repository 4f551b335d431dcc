"""Assembling the phase sequence the orchestrator walks.

A :class:`PhaseSequence` is an explicit finite-state sequencer: a declared
phase order, an optional loop (``loop_start`` .. ``loop_end``), and per-phase
routers that decide whether to stay in the loop.  Transitions are computed
by :meth:`PhaseSequence.next_phase`; nothing is wired by reflection.

Example::

    sequence = (
        PhaseSequenceBuilder(default_phase_registry())
        .with_order(["load_context", "evaluate_fields", "plan_research",
                     "execute_research", "persist_results"])
        .with_loop("evaluate_fields", "execute_research")
        .build()
    )
"""

from __future__ import annotations

from collections.abc import Sequence

from product_research.graph import nodes
from product_research.graph.edges import CONTINUE, route_after_evaluation, route_after_planning
from product_research.graph.state import ResearchState
from product_research.infrastructure.config import DEFAULT_PHASE_ORDER, PhasesConfig
from product_research.infrastructure.registry import PhaseFn, PhaseRegistry, Router


class PhaseSequence:
    """Resolved phase order with loop-back routing.

    Routers only take effect for phases inside the loop; an ``exit`` route
    jumps to the phase after ``loop_end``.  After ``loop_end`` itself the
    sequence returns to ``loop_start``.
    """

    def __init__(
        self,
        order: Sequence[str],
        phases: dict[str, PhaseFn],
        routers: dict[str, Router] | None = None,
        loop_start: str | None = None,
        loop_end: str | None = None,
    ) -> None:
        if not order:
            raise ValueError("PhaseSequence requires at least one phase")
        missing = [name for name in order if name not in phases]
        if missing:
            raise ValueError(f"No phase function for: {missing}")
        self._order = list(order)
        self._phases = dict(phases)
        self._routers = dict(routers or {})
        self._loop_start = loop_start or None
        self._loop_end = loop_end or None
        if self._loop_start:
            self._loop_range = (
                self._order.index(self._loop_start),
                self._order.index(self._loop_end),
            )
        else:
            self._loop_range = None

    @property
    def first(self) -> str:
        return self._order[0]

    @property
    def names(self) -> list[str]:
        return list(self._order)

    def __contains__(self, name: object) -> bool:
        return name in self._phases

    def phase(self, name: str) -> PhaseFn:
        try:
            return self._phases[name]
        except KeyError:
            raise KeyError(f"Phase '{name}' is not part of this sequence") from None

    def _in_loop(self, index: int) -> bool:
        return self._loop_range is not None and self._loop_range[0] <= index <= self._loop_range[1]

    def _following(self, index: int) -> str | None:
        return self._order[index + 1] if index + 1 < len(self._order) else None

    def next_phase(self, current: str, state: ResearchState) -> str | None:
        """Phase to run after *current* given the state it produced, or
        ``None`` when the sequence is finished."""
        index = self._order.index(current)
        if self._in_loop(index):
            router = self._routers.get(current)
            if router is not None and router(state) != CONTINUE:
                return self._following(self._loop_range[1])
            if current == self._loop_end:
                return self._loop_start
        return self._following(index)

    def __repr__(self) -> str:
        return (
            f"PhaseSequence(order={self._order}, loop=({self._loop_start}, {self._loop_end}))"
        )


class PhaseSequenceBuilder:
    """Fluent builder for :class:`PhaseSequence`."""

    def __init__(self, registry: PhaseRegistry) -> None:
        self._registry = registry
        self._order: list[str] = list(DEFAULT_PHASE_ORDER)
        self._loop_start: str | None = "evaluate_fields"
        self._loop_end: str | None = "execute_research"

    def with_order(self, order: Sequence[str]) -> PhaseSequenceBuilder:
        self._order = list(order)
        return self

    def with_loop(self, start: str, end: str) -> PhaseSequenceBuilder:
        self._loop_start, self._loop_end = start, end
        return self

    def without_loop(self) -> PhaseSequenceBuilder:
        self._loop_start = self._loop_end = None
        return self

    def build(self) -> PhaseSequence:
        config = PhasesConfig(
            order=self._order,
            loop_start=self._loop_start or "",
            loop_end=self._loop_end or "",
        )
        config.validate()
        missing = [name for name in self._order if not self._registry.has(name)]
        if missing:
            raise ValueError(
                f"Phases not registered: {missing}. Available: {self._registry.names()}"
            )
        phases = {name: self._registry.get(name) for name in self._order}
        routers = {
            name: router
            for name in self._order
            if (router := self._registry.router(name)) is not None
        }
        return PhaseSequence(
            self._order, phases, routers, self._loop_start, self._loop_end
        )


def default_phase_registry() -> PhaseRegistry:
    """Registry holding every built-in research phase."""
    registry = PhaseRegistry()
    registry.register_phase("load_context", nodes.load_context)
    registry.register_phase("extract_identifiers", nodes.extract_identifiers)
    registry.register_phase("quick_lookups", nodes.quick_lookups)
    registry.register_phase(
        "evaluate_fields", nodes.evaluate_fields, router=route_after_evaluation
    )
    registry.register_phase(
        "plan_research", nodes.plan_research, router=route_after_planning
    )
    registry.register_phase("execute_research", nodes.execute_research)
    registry.register_phase("search_comps", nodes.search_comps)
    registry.register_phase("calculate_price", nodes.calculate_price)
    registry.register_phase("persist_results", nodes.persist_results)
    return registry


def build_phase_sequence(
    config: PhasesConfig | None = None,
    registry: PhaseRegistry | None = None,
) -> PhaseSequence:
    """Build the sequence described by *config* from *registry*."""
    config = config or PhasesConfig()
    builder = PhaseSequenceBuilder(registry or default_phase_registry()).with_order(config.order)
    if config.loop_start:
        builder.with_loop(config.loop_start, config.loop_end)
    else:
        builder.without_loop()
    return builder.build()
