"""Routing of finished subjects to a downstream review queue."""

from __future__ import annotations

import logging

from product_research.domain.enums import Disposition
from product_research.infrastructure.config import DispositionConfig

logger = logging.getLogger(__name__)


def route_disposition(
    confidence: float,
    evidence_count: int,
    config: DispositionConfig | None = None,
) -> Disposition:
    """Pick the review queue for a subject.

    ``auto_approve`` needs auto approval switched on, confidence at or above
    the auto threshold and enough evidence.  Otherwise ``spot_check`` if
    confidence reaches the spot threshold, else ``full_review``.
    """
    config = config or DispositionConfig()
    if (
        config.auto_approve_enabled
        and confidence >= config.auto_approve_threshold
        and evidence_count >= config.min_evidence
    ):
        disposition = Disposition.AUTO_APPROVE
    elif confidence >= config.spot_check_threshold:
        disposition = Disposition.SPOT_CHECK
    else:
        disposition = Disposition.FULL_REVIEW
    logger.debug(
        "Disposition %s (confidence %.2f, evidence %d)",
        disposition.value, confidence, evidence_count,
    )
    return disposition
