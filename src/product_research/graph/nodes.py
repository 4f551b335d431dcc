"""Phase functions for the research sequence.

Every phase is a plain coroutine ``async def phase(state, tools) -> state``.
Phases receive a private copy of the working state (see
:meth:`ResearchState.copy`), mutate it, and return it; the orchestrator
commits the result only if the phase returns normally.

Tool failures inside the lookup phases are absorbed: the tool is marked as
failed in the planner history and a warning is recorded, so one flaky
provider never fails the run.  ``load_subject`` and the persistence calls
are not absorbed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any

import numpy as np

from product_research.domain.enums import EvaluationDecision
from product_research.domain.exceptions import AuthorizationError, ToolError
from product_research.domain.values import Source
from product_research.graph.state import TRACKED_FIELDS, ResearchState
from product_research.infrastructure.tools import (
    CompQuery,
    LookupQuery,
    Observation,
    ResearchRecord,
    ResearchTools,
)
from product_research.services.field_state import completion_score
from product_research.services.planning import (
    TOOL_CATALOG,
    ResearchContext,
    ResearchPlanner,
    ToolSpec,
)

logger = logging.getLogger(__name__)

USER_INPUT_CONFIDENCE = 0.90
USER_HINT_CONFIDENCE = 0.60
COMP_LIMIT = 20
COMP_PRICE_BASE = 0.35
COMP_PRICE_STEP = 0.035
COMP_PRICE_MAX_CONFIDENCE = 0.70
ACTIVE_ONLY_DISCOUNT = 0.8

ToolCall = Callable[[ResearchTools, LookupQuery], Awaitable[list[Observation]]]

# Planner tool name -> capability method.
TOOL_DISPATCH: Mapping[str, ToolCall] = MappingProxyType({
    "upc_lookup": lambda tools, q: tools.lookup_upc(q),
    "keepa_lookup": lambda tools, q: tools.lookup_keepa(q),
    "amazon_catalog": lambda tools, q: tools.search_catalog(q),
    "vision_analysis": lambda tools, q: tools.analyze_media(q),
    "ocr_extraction": lambda tools, q: tools.extract_text(q),
    "web_search_targeted": lambda tools, q: tools.web_search(q),
    "web_search_general": lambda tools, q: tools.web_search(q),
})

_SPECS: Mapping[str, ToolSpec] = MappingProxyType({t.name: t for t in TOOL_CATALOG})


# ===================================================================== #
#  Helpers                                                               #
# ===================================================================== #

def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value) or None
    return str(value)


def _lookup_query(
    state: ResearchState,
    target_fields: Iterable[str] = (),
    targeted: bool = False,
) -> LookupQuery:
    subject = state.subject
    return LookupQuery(
        subject_id=state.subject_id,
        upc=_text(state.field_value("upc")),
        brand=_text(state.field_value("brand")),
        model=_text(state.field_value("model")),
        title=_text(state.field_value("title")) or (subject.title if subject else None),
        image_urls=list(subject.image_urls) if subject else [],
        target_fields=list(target_fields),
        targeted=targeted,
    )


def _open_fields(state: ResearchState) -> list[str]:
    return [name for name, s in state.fields.snapshot_all().items() if not s.complete]


async def _fetch(
    tools: ResearchTools, spec: ToolSpec, query: LookupQuery
) -> tuple[list[Observation], ToolError | None]:
    try:
        return await TOOL_DISPATCH[spec.name](tools, query), None
    except ToolError as exc:
        return [], exc


def _absorb(
    state: ResearchState,
    spec: ToolSpec,
    observations: list[Observation],
    error: ToolError | None,
) -> int:
    """Record one tool call's outcome in *state*; returns usable observations."""
    if error is not None:
        logger.warning("%s failed for run %s: %s", spec.name, state.run_id, error)
        state.warn(f"{spec.name} failed: {error}")
        state.history.record_attempt(spec.name, produced_results=False)
        return 0

    state.cost_spent += spec.cost
    usable = 0
    for obs in observations:
        source = Source(
            source_type=obs.source_type or spec.source_type,
            value=obs.value,
            base_confidence=obs.confidence,
            payload={"tool": spec.name},
        )
        state.fields.upsert_source(obs.field, source)
        if not source.is_missing:
            usable += 1
    state.history.record_attempt(spec.name, produced_results=usable > 0)
    logger.debug("%s returned %d usable observation(s)", spec.name, usable)
    return usable


async def _run_batch(
    state: ResearchState, tools: ResearchTools, specs: list[ToolSpec], query: LookupQuery
) -> int:
    """Call *specs* concurrently, then absorb results in declaration order."""
    if not specs:
        return 0
    results = await asyncio.gather(*(_fetch(tools, spec, query) for spec in specs))
    return sum(
        _absorb(state, spec, observations, error)
        for spec, (observations, error) in zip(specs, results)
    )


def _affordable(state: ResearchState, spec: ToolSpec) -> bool:
    return spec.cost <= state.usage().remaining_cost(state.budget)


# ===================================================================== #
#  Phases                                                                #
# ===================================================================== #

async def load_context(state: ResearchState, tools: ResearchTools) -> ResearchState:
    """Load the subject, check ownership and seed fields from owner input."""
    subject = state.subject or await tools.load_subject(state.subject_id)
    if subject.owner_id != state.owner_id:
        raise AuthorizationError(
            f"Subject {state.subject_id} does not belong to owner {state.owner_id}",
            subject_id=state.subject_id,
            owner_id=state.owner_id,
        )
    state.subject = subject

    for name, required, importance in TRACKED_FIELDS:
        if name not in state.fields:
            state.fields.define_field(name, required=required, importance=importance)

    for name, value in sorted(subject.hints.items()):
        state.fields.upsert_source(name, Source("user_input", value, USER_INPUT_CONFIDENCE))
    if subject.title and "title" not in subject.hints:
        state.fields.upsert_source(
            "title", Source("user_hint", subject.title, USER_HINT_CONFIDENCE)
        )
    logger.info(
        "Loaded subject %s: %d hint(s), %d image(s)",
        state.subject_id, len(subject.hints), state.image_count,
    )
    return state


async def extract_identifiers(state: ResearchState, tools: ResearchTools) -> ResearchState:
    """Run vision and OCR over the subject's photos in parallel."""
    if state.image_count == 0:
        logger.debug("No images for %s; skipping extraction", state.subject_id)
        return state
    specs = [
        spec for spec in (_SPECS["vision_analysis"], _SPECS["ocr_extraction"])
        if _affordable(state, spec)
    ]
    await _run_batch(state, tools, specs, _lookup_query(state, _open_fields(state)))
    return state


async def quick_lookups(state: ResearchState, tools: ResearchTools) -> ResearchState:
    """Exact-identifier lookups, only when a barcode is already known."""
    if state.field_value("upc") is None:
        return state
    services = tools.configured_services
    specs = [
        spec for spec in (_SPECS["upc_lookup"], _SPECS["keepa_lookup"])
        if spec.requires_service in services and _affordable(state, spec)
    ]
    await _run_batch(state, tools, specs, _lookup_query(state, _open_fields(state)))
    return state


async def evaluate_fields(state: ResearchState, tools: ResearchTools) -> ResearchState:
    """Score progress and decide whether the research loop continues."""
    planner = ResearchPlanner(state.budget)
    snapshot = state.fields.snapshot_all()
    state.history.record_progress(completion_score(snapshot.values()))
    evaluation = planner.evaluate(snapshot, state.usage(), state.history)
    state.evaluation = evaluation
    if evaluation.decision is EvaluationDecision.STOP_WITH_WARNINGS:
        state.warn(evaluation.reason)
    logger.info(
        "Run %s iteration %d: %s (%s, completion %.2f)",
        state.run_id, state.iteration, evaluation.decision.value,
        evaluation.reason, evaluation.completion_score,
    )
    return state


async def plan_research(state: ResearchState, tools: ResearchTools) -> ResearchState:
    """Ask the planner for the next action."""
    planner = ResearchPlanner(state.budget)
    snapshot = state.fields.snapshot_all()
    context = ResearchContext.from_fields(
        snapshot, state.image_count, tools.configured_services
    )
    action = planner.plan_next(snapshot, context, state.usage(), state.history)
    state.pending_action = action
    if action is None:
        state.warn("No usable research tool for the remaining fields")
    else:
        logger.info("Run %s planned %s", state.run_id, action.reasoning)
    return state


async def execute_research(state: ResearchState, tools: ResearchTools) -> ResearchState:
    """Execute the planned action and fold its observations into the fields."""
    action = state.pending_action
    if action is None:
        return state
    spec = _SPECS[action.tool]
    query = _lookup_query(
        state, action.target_fields, targeted=spec.name == "web_search_targeted"
    )
    observations, error = await _fetch(tools, spec, query)
    for name in action.target_fields:
        state.fields.record_attempt(name)
    _absorb(state, spec, observations, error)
    state.iteration += 1
    state.pending_action = None
    return state


async def search_comps(state: ResearchState, tools: ResearchTools) -> ResearchState:
    """Find comparable listings for pricing."""
    subject_title = state.subject.title if state.subject else ""
    query = CompQuery(
        subject_id=state.subject_id,
        title=_text(state.field_value("title")) or subject_title,
        brand=_text(state.field_value("brand")),
        model=_text(state.field_value("model")),
        condition=_text(state.field_value("condition")),
        limit=COMP_LIMIT,
    )
    try:
        state.comps = list(await tools.search_comps(query))
    except ToolError as exc:
        logger.warning("search_comps failed for run %s: %s", state.run_id, exc)
        state.warn(f"search_comps failed: {exc}")
        state.comps = []
    logger.info("Run %s found %d comp(s)", state.run_id, len(state.comps))
    return state


async def calculate_price(state: ResearchState, tools: ResearchTools) -> ResearchState:
    """Median of comparable prices, recorded as marketplace price evidence.

    Sold listings are preferred; when only active listings exist the
    evidence is discounted.
    """
    if not state.comps:
        value = state.field_value("price")
        state.price = float(value) if isinstance(value, (int, float)) else None
        state.warn("No comparable listings found")
        return state

    sold = [c for c in state.comps if c.sold]
    pool = sold or state.comps
    median = round(float(np.median(np.array([c.price for c in pool], dtype=np.float64))), 2)
    confidence = min(COMP_PRICE_MAX_CONFIDENCE, COMP_PRICE_BASE + COMP_PRICE_STEP * len(pool))
    if not sold:
        confidence *= ACTIVE_ONLY_DISCOUNT
    state.fields.upsert_source(
        "price",
        Source(
            "ebay_sold" if sold else "ebay_active",
            median,
            confidence,
            payload={"comps": len(pool)},
        ),
    )
    state.price = median
    return state


async def persist_results(state: ResearchState, tools: ResearchTools) -> ResearchState:
    """Durably store pricing evidence and research conclusions."""
    if state.comps:
        await tools.save_evidence(state.run_id, list(state.comps))
    snapshot = state.fields.snapshot_all()
    record = ResearchRecord(
        run_id=state.run_id,
        subject_id=state.subject_id,
        fields={name: s.value for name, s in snapshot.items() if s.has_value},
        confidence=min(1.0, max(0.0, state.fields.overall_confidence())),
        price=state.price,
        comps_count=len(state.comps),
        warnings=list(state.warnings),
    )
    await tools.save_research(record)
    state.persisted = True
    return state
