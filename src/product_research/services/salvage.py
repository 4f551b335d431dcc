"""Salvage of runs whose phase sequence did not terminate.

When a run hits the hard phase-execution ceiling, whatever earlier phases
durably wrote (pricing evidence and research conclusions) is read back.
Enough evidence turns the run into a partial success; anything less is a
genuine error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from product_research.domain.exceptions import ToolError
from product_research.infrastructure.tools import Comparable, ResearchRecord, ResearchTools

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SalvageOutcome:
    """What salvage found for one run."""

    succeeded: bool
    evidence_count: int
    comps: tuple[Comparable, ...] = ()
    research: ResearchRecord | None = None
    reason: str = ""

    @property
    def confidence(self) -> float:
        return self.research.confidence if self.research else 0.0


async def salvage(
    run_id: str,
    tools: ResearchTools,
    min_evidence: int = 1,
) -> SalvageOutcome:
    """Load durably written results for *run_id* and judge them.

    One comparable listing is one unit of evidence, and stored conclusions
    count as one more.  Read failures count as no evidence.
    """
    comps: list[Comparable] = []
    research: ResearchRecord | None = None
    try:
        comps = list(await tools.load_evidence(run_id))
    except ToolError as exc:
        logger.warning("Salvage of %s could not read evidence: %s", run_id, exc)
    try:
        research = await tools.load_research(run_id)
    except ToolError as exc:
        logger.warning("Salvage of %s could not read conclusions: %s", run_id, exc)

    evidence = len(comps) + (1 if research is not None else 0)
    if evidence >= min_evidence:
        logger.warning(
            "Salvaged run %s with %d evidence unit(s); results may be partial",
            run_id, evidence,
        )
        return SalvageOutcome(True, evidence, tuple(comps), research, "salvaged")

    reason = (
        f"Research did not terminate and only {evidence} evidence unit(s) were saved "
        f"(need {min_evidence}); re-run required"
    )
    logger.warning("Salvage of %s failed: %s", run_id, reason)
    return SalvageOutcome(False, evidence, tuple(comps), research, reason)
