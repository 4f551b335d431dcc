"""Tests for disposition routing and salvage."""

from __future__ import annotations

import pytest

from product_research.domain.enums import Disposition, ToolFailureKind
from product_research.domain.exceptions import ToolError
from product_research.infrastructure.config import DispositionConfig
from product_research.infrastructure.tools import Comparable, ResearchRecord
from product_research.services.disposition import route_disposition
from product_research.services.salvage import salvage
from product_research.testing.fake_tools import ScriptedResearchTools

AUTO_ON = DispositionConfig(auto_approve_enabled=True)


class TestRouteDisposition:

    def test_auto_approve_disabled_by_default(self) -> None:
        assert route_disposition(0.95, 10) is Disposition.SPOT_CHECK

    def test_auto_approve(self) -> None:
        assert route_disposition(0.95, 3, AUTO_ON) is Disposition.AUTO_APPROVE

    def test_auto_approve_needs_evidence(self) -> None:
        assert route_disposition(0.95, 2, AUTO_ON) is Disposition.SPOT_CHECK

    def test_spot_check_threshold_inclusive(self) -> None:
        assert route_disposition(0.70, 0) is Disposition.SPOT_CHECK

    def test_full_review(self) -> None:
        assert route_disposition(0.69, 50, AUTO_ON) is Disposition.FULL_REVIEW


class TestSalvage:

    @pytest.mark.asyncio
    async def test_nothing_saved_fails(self) -> None:
        outcome = await salvage("r1", ScriptedResearchTools())
        assert not outcome.succeeded
        assert outcome.evidence_count == 0
        assert "re-run required" in outcome.reason
        assert outcome.confidence == 0.0

    @pytest.mark.asyncio
    async def test_comps_count_as_evidence(self) -> None:
        tools = ScriptedResearchTools()
        await tools.save_evidence("r1", [Comparable(title="A", price=10.0)])
        outcome = await salvage("r1", tools)
        assert outcome.succeeded
        assert outcome.evidence_count == 1

    @pytest.mark.asyncio
    async def test_conclusions_count_once(self) -> None:
        tools = ScriptedResearchTools()
        await tools.save_research(ResearchRecord(run_id="r1", subject_id="s1", confidence=0.6))
        await tools.save_evidence("r1", [Comparable(title="A", price=10.0),
                                         Comparable(title="B", price=12.0)])
        outcome = await salvage("r1", tools)
        assert outcome.evidence_count == 3
        assert outcome.confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_threshold(self) -> None:
        tools = ScriptedResearchTools()
        await tools.save_evidence("r1", [Comparable(title="A", price=10.0)])
        outcome = await salvage("r1", tools, min_evidence=2)
        assert not outcome.succeeded

    @pytest.mark.asyncio
    async def test_read_failures_count_as_nothing(self) -> None:
        tools = ScriptedResearchTools()
        await tools.save_evidence("r1", [Comparable(title="A", price=10.0)])
        tools.fail("load_evidence", ToolError("down", ToolFailureKind.NETWORK))
        tools.fail("load_research", ToolError("down", ToolFailureKind.NETWORK))
        outcome = await salvage("r1", tools)
        assert not outcome.succeeded
        assert outcome.evidence_count == 0

    @pytest.mark.asyncio
    async def test_other_runs_ignored(self) -> None:
        tools = ScriptedResearchTools()
        await tools.save_evidence("other", [Comparable(title="A", price=10.0)])
        assert not (await salvage("r1", tools)).succeeded
