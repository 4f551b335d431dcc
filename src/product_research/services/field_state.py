"""Per-run field state store.

Holds the current value, confidence and source list for every tracked field
of the subject.  Recording a source appends it and immediately re-scores the
field through the :class:`CrossValidationEngine`; earlier sources are never
overwritten or removed.

Completeness is a caller-supplied predicate so that what "done" means for a
field lives in configuration, not in the store.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType

from product_research.domain.entities import FieldState
from product_research.domain.values import Source
from product_research.services.cross_validation import CrossValidationEngine

logger = logging.getLogger(__name__)

CompletenessPredicate = Callable[[FieldState], bool]

# How much each source type is trusted when picking the canonical value.
SOURCE_WEIGHTS: Mapping[str, float] = MappingProxyType({
    "user_input": 1.0,
    "upc_lookup": 0.95,
    "keepa": 0.90,
    "ebay_api": 0.90,
    "amazon_catalog": 0.88,
    "user_hint": 0.85,
    "ocr": 0.75,
    "vision_ai": 0.70,
    "web_search": 0.65,
})
DEFAULT_SOURCE_WEIGHT = 0.5

REQUIRED_SHARE = 0.7
RECOMMENDED_SHARE = 0.3


def completion_score(states: Iterable[FieldState]) -> float:
    """Weighted completion: 70% required fields, 30% recommended ones.

    A class with no fields counts as fully complete.
    """
    states = list(states)
    required = [s for s in states if s.required]
    recommended = [s for s in states if not s.required]
    req_share = sum(s.complete for s in required) / len(required) if required else 1.0
    rec_share = (
        sum(s.complete for s in recommended) / len(recommended) if recommended else 1.0
    )
    return REQUIRED_SHARE * req_share + RECOMMENDED_SHARE * rec_share


def threshold_completeness(
    required: float = 0.70,
    recommended: float = 0.50,
) -> CompletenessPredicate:
    """Build a predicate: a field is complete once it has a value and its
    confidence reaches the threshold for its required/recommended class."""

    def _is_complete(state: FieldState) -> bool:
        threshold = required if state.required else recommended
        return state.has_value and state.confidence >= threshold

    return _is_complete


class FieldStateStore:
    """Run-scoped map of field name to :class:`FieldState`.

    Parameters
    ----------
    completeness:
        Predicate deciding whether a field is complete.  Defaults to
        :func:`threshold_completeness` with its default thresholds.
    engine:
        Cross-validation engine used to re-score fields.
    source_weights:
        Trust weight per source type for canonical value selection.
    """

    def __init__(
        self,
        completeness: CompletenessPredicate | None = None,
        engine: CrossValidationEngine | None = None,
        source_weights: Mapping[str, float] | None = None,
    ) -> None:
        self._fields: dict[str, FieldState] = {}
        self._completeness = completeness or threshold_completeness()
        self._engine = engine or CrossValidationEngine()
        self._weights = source_weights if source_weights is not None else SOURCE_WEIGHTS

    # -- declaration --------------------------------------------------------

    def define_field(
        self,
        name: str,
        required: bool = False,
        importance: float = 1.0,
    ) -> FieldState:
        """Declare a tracked field; re-declaring updates its flags only."""
        if importance < 0:
            raise ValueError(f"importance must be >= 0, got {importance}")
        state = self._fields.get(name)
        if state is None:
            state = FieldState(name=name, required=required, importance=importance)
            self._fields[name] = state
        else:
            state.required = required
            state.importance = importance
        self._rescore(state)
        return copy.deepcopy(state)

    def load(self, states: Iterable[FieldState]) -> None:
        """Replace the store contents with already-scored states."""
        self._fields = {s.name: s for s in states}

    # -- mutation -----------------------------------------------------------

    def upsert_source(self, field: str, source: Source) -> FieldState:
        """Append *source* to *field* and re-score it.

        Unknown fields are created on first use as non-required.
        """
        state = self._fields.get(field)
        if state is None:
            state = FieldState(name=field)
            self._fields[field] = state
        state.sources.append(source)
        self._rescore(state)
        return copy.deepcopy(state)

    def record_attempt(self, field: str) -> None:
        """Count one research attempt against *field*."""
        state = self._fields.get(field)
        if state is not None:
            state.attempts += 1

    # -- queries ------------------------------------------------------------

    def get(self, field: str) -> FieldState | None:
        state = self._fields.get(field)
        return copy.deepcopy(state) if state is not None else None

    def snapshot_all(self) -> dict[str, FieldState]:
        """Return a deep copy of every field state, keyed by name."""
        return {name: copy.deepcopy(state) for name, state in self._fields.items()}

    def names(self) -> list[str]:
        return list(self._fields)

    def __contains__(self, field: object) -> bool:
        return field in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def ready_to_publish(self) -> bool:
        """``True`` when every required field is complete."""
        return all(s.complete for s in self._fields.values() if s.required)

    def completion_score(self) -> float:
        """See :func:`completion_score`."""
        return completion_score(self._fields.values())

    def overall_confidence(self) -> float:
        """Mean confidence of required fields (all fields if none required)."""
        pool = [s for s in self._fields.values() if s.required] or list(self._fields.values())
        if not pool:
            return 0.0
        return sum(s.confidence for s in pool) / len(pool)

    def copy(self) -> FieldStateStore:
        """Independent copy sharing the predicate, engine and weights."""
        clone = FieldStateStore(self._completeness, self._engine, self._weights)
        clone._fields = {name: copy.deepcopy(state) for name, state in self._fields.items()}
        return clone

    # -- scoring ------------------------------------------------------------

    def _weight(self, source: Source) -> float:
        return self._weights.get(source.source_type, DEFAULT_SOURCE_WEIGHT)

    def _rescore(self, state: FieldState) -> None:
        usable = [s for s in state.sources if not s.is_missing]
        if usable:
            # max() keeps the first of equal candidates, so ties go to the earliest
            canonical = max(usable, key=lambda s: s.base_confidence * self._weight(s))
            value, prior = canonical.value, canonical.base_confidence
        else:
            value, prior = None, 0.0

        previous = state.conflict_count
        result = self._engine.validate(state.sources, prior)
        state.value = value
        state.confidence = result.confidence
        state.validation = result
        state.complete = self._completeness(state)

        if len(result.conflicts) > previous:
            logger.info(
                "Field %r: %d conflict(s) across groups %s (confidence %.2f)",
                state.name, len(result.conflicts), ", ".join(result.groups),
                result.confidence,
            )
