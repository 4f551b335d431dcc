"""Cross-source corroboration for field values.

Turns the heterogeneous sources behind one field into a single defensible
confidence number.  Sources are mapped to *independence groups* through a
static table; agreement across groups raises confidence, a single group is
penalized, and cross-group disagreements (conflicts) pull the multiplier
down.

The engine is a pure function of the source list and the group table:
no hidden state, deterministic, and independent of insertion order.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any

from product_research.domain.enums import ConflictSeverity
from product_research.domain.values import Conflict, CrossValidationResult, Source

logger = logging.getLogger(__name__)

# ===================================================================== #
#  Independence groups                                                   #
# ===================================================================== #

# Source types inside one group share an upstream and must not be counted
# as independent corroboration of each other.
SOURCE_GROUPS: Mapping[str, str] = MappingProxyType({
    "amazon_catalog": "catalog",
    "amazon_sp_api": "catalog",
    "keepa": "catalog",
    "upc_lookup": "upc",
    "vision_ai": "vision",
    "vision_analysis_guided": "vision",
    "ocr": "text_extraction",
    "ocr_search": "text_extraction",
    "ebay_sold": "marketplace",
    "ebay_active": "marketplace",
    "ebay_api": "marketplace",
    "web_search": "web",
    "web_search_targeted": "web",
    "web_search_general": "web",
    "reverse_image_search": "web",
    "user_input": "user",
    "user_hint": "user",
})

DEFAULT_GROUP = "web"

NUMERIC_TOLERANCE = 0.05
MINOR_NUMERIC_DIFFERENCE = 0.20
SIGNIFICANT_PREFIX = 3

MAJOR_CONFLICT_PENALTY = 0.10
MINOR_CONFLICT_PENALTY = 0.05
MIN_MULTIPLIER = 0.50
MAX_MULTIPLIER = 1.10
MAX_CONFIDENCE = 0.98


# ===================================================================== #
#  Value comparison                                                      #
# ===================================================================== #

def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_collection(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _norm(value: Any) -> str:
    return str(value).strip().lower()


def _relative_difference(a: float, b: float) -> float | None:
    """``|a - b| / mean``; ``None`` when the mean is zero."""
    mean = abs((a + b) / 2.0)
    if mean == 0:
        return None
    return abs(a - b) / mean


def values_agree(a: Any, b: Any) -> bool:
    """Return ``True`` if two source values count as the same answer.

    Missing values agree with everything.  Numbers agree within 5% relative
    tolerance, collections by unordered set equality, everything else by
    trimmed case-insensitive string equality.
    """
    if _is_missing(a) or _is_missing(b):
        return True
    if _is_number(a) and _is_number(b):
        rel = _relative_difference(float(a), float(b))
        if rel is None:
            return a == b
        return rel <= NUMERIC_TOLERANCE
    if _is_collection(a) and _is_collection(b):
        return {_norm(x) for x in a} == {_norm(x) for x in b}
    return _norm(a) == _norm(b)


def conflict_severity(a: Any, b: Any) -> ConflictSeverity:
    """Grade a disagreement between two values that do not agree.

    Numbers use the same relative difference as :func:`values_agree` and
    are minor up to 20%.  Collections are minor when one is a subset of the
    other.  Everything else is compared as normalized strings: minor when
    one contains the other or they share a significant prefix.
    """
    if _is_number(a) and _is_number(b):
        rel = _relative_difference(float(a), float(b))
        if rel is not None and rel <= MINOR_NUMERIC_DIFFERENCE:
            return ConflictSeverity.MINOR
        return ConflictSeverity.MAJOR
    if _is_collection(a) and _is_collection(b):
        sa, sb = {_norm(x) for x in a}, {_norm(x) for x in b}
        return ConflictSeverity.MINOR if sa <= sb or sb <= sa else ConflictSeverity.MAJOR

    sa, sb = _norm(a), _norm(b)
    if sa in sb or sb in sa:
        return ConflictSeverity.MINOR
    shorter, longer = (sa, sb) if len(sa) <= len(sb) else (sb, sa)
    if len(shorter) > SIGNIFICANT_PREFIX and shorter[:SIGNIFICANT_PREFIX] in longer:
        return ConflictSeverity.MINOR
    return ConflictSeverity.MAJOR


def base_multiplier(group_count: int) -> float:
    """Corroboration multiplier from group diversity alone."""
    if group_count <= 1:
        return 0.80
    if group_count == 2:
        return 1.00
    return min(MAX_MULTIPLIER, 0.80 + 0.10 * group_count)


# ===================================================================== #
#  Engine                                                                #
# ===================================================================== #

class CrossValidationEngine:
    """Computes corroborated confidence for a field's sources.

    Parameters
    ----------
    groups:
        Source-type to independence-group table.  Defaults to
        :data:`SOURCE_GROUPS`.
    default_group:
        Group for source types missing from the table.
    """

    def __init__(
        self,
        groups: Mapping[str, str] | None = None,
        default_group: str = DEFAULT_GROUP,
    ) -> None:
        self._groups = MappingProxyType(dict(groups if groups is not None else SOURCE_GROUPS))
        self._default_group = default_group

    @property
    def groups(self) -> Mapping[str, str]:
        return self._groups

    def group_for(self, source: Source) -> str:
        """Independence group of *source* (explicit group wins)."""
        return source.group or self._groups.get(source.source_type, self._default_group)

    def _canonical_key(self, source: Source) -> tuple[str, str, str, float, float]:
        return (
            self.group_for(source),
            source.source_type,
            _norm(source.value),
            source.base_confidence,
            source.timestamp,
        )

    def validate(
        self,
        sources: Sequence[Source],
        base_confidence: float,
    ) -> CrossValidationResult:
        """Corroborate *sources* and scale *base_confidence* accordingly.

        Parameters
        ----------
        sources:
            Every source recorded for the field, in any order.
        base_confidence:
            Prior confidence for the field's canonical value.

        Returns
        -------
        CrossValidationResult
        """
        ordered = sorted(sources, key=self._canonical_key)
        groups = sorted({self.group_for(s) for s in ordered})
        base = base_multiplier(len(groups))

        conflicts: list[Conflict] = []
        pairs = 0
        for i, first in enumerate(ordered):
            group_a = self.group_for(first)
            for second in ordered[i + 1:]:
                group_b = self.group_for(second)
                if group_a == group_b:
                    continue
                pairs += 1
                if values_agree(first.value, second.value):
                    continue
                conflicts.append(
                    Conflict(
                        value_a=first.value,
                        value_b=second.value,
                        source_a=first.source_type,
                        source_b=second.source_type,
                        group_a=group_a,
                        group_b=group_b,
                        severity=conflict_severity(first.value, second.value),
                        detected_at=max(first.timestamp, second.timestamp),
                    )
                )

        major = sum(1 for c in conflicts if c.severity is ConflictSeverity.MAJOR)
        minor = len(conflicts) - major
        multiplier = max(
            MIN_MULTIPLIER,
            base - MAJOR_CONFLICT_PENALTY * major - MINOR_CONFLICT_PENALTY * minor,
        )
        confidence = min(MAX_CONFIDENCE, max(0.0, base_confidence * multiplier))
        agreement = 1.0 - len(conflicts) / max(1, pairs)

        if conflicts:
            logger.debug(
                "Cross-validation: %d conflict(s) (%d major) across %d groups",
                len(conflicts), major, len(groups),
            )

        return CrossValidationResult(
            base_multiplier=base,
            multiplier=multiplier,
            confidence=confidence,
            group_count=len(groups),
            groups=tuple(groups),
            conflicts=tuple(conflicts),
            agreement_score=agreement,
            cross_group_pairs=pairs,
        )
