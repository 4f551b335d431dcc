"""Tests for the individual research phases."""

from __future__ import annotations

import pytest

from product_research.domain.enums import EvaluationDecision, ToolFailureKind
from product_research.domain.exceptions import AuthorizationError, ToolError
from product_research.domain.values import ResearchAction, ResearchBudget, Source
from product_research.graph import nodes
from product_research.graph.state import ResearchState, initial_state
from product_research.infrastructure.tools import Comparable, SubjectRecord
from product_research.testing.fake_tools import ScriptedResearchTools, demo_tools


def _fresh(owner: str = "owner-1") -> ResearchState:
    return initial_state("r1", "sneaker-001", owner, ResearchBudget())


async def _loaded(tools: ScriptedResearchTools) -> ResearchState:
    return await nodes.load_context(_fresh(), tools)


@pytest.fixture
def tools() -> ScriptedResearchTools:
    return demo_tools()


class TestLoadContext:

    @pytest.mark.asyncio
    async def test_seeds_owner_input(self, tools) -> None:
        state = await _loaded(tools)
        condition = state.fields.get("condition")
        assert condition.value == "used - like new"
        assert condition.sources[0].source_type == "user_input"
        assert condition.complete
        title = state.fields.get("title")
        assert title.sources[0].source_type == "user_hint"
        assert title.sources[0].base_confidence == pytest.approx(nodes.USER_HINT_CONFIDENCE)
        assert state.image_count == 2

    @pytest.mark.asyncio
    async def test_title_hint_replaces_user_hint(self) -> None:
        tools = ScriptedResearchTools()
        tools.add_subject(SubjectRecord(
            subject_id="sneaker-001", owner_id="owner-1", title="shoes",
            hints={"title": "Nike Air Max 90"},
        ))
        state = await _loaded(tools)
        sources = state.fields.get("title").sources
        assert [s.source_type for s in sources] == ["user_input"]

    @pytest.mark.asyncio
    async def test_owner_mismatch(self, tools) -> None:
        with pytest.raises(AuthorizationError):
            await nodes.load_context(_fresh(owner="intruder"), tools)

    @pytest.mark.asyncio
    async def test_unknown_subject_propagates(self) -> None:
        with pytest.raises(ToolError):
            await nodes.load_context(_fresh(), ScriptedResearchTools())


class TestExtraction:

    @pytest.mark.asyncio
    async def test_vision_and_ocr(self, tools) -> None:
        state = await nodes.extract_identifiers(await _loaded(tools), tools)
        assert tools.call_count("analyze_media") == 1
        assert tools.call_count("extract_text") == 1
        assert state.field_value("upc") == "0194501234567"
        assert state.field_value("model") == "Air Max 90"
        assert state.cost_spent == pytest.approx(0.025)

    @pytest.mark.asyncio
    async def test_no_images_no_calls(self) -> None:
        tools = ScriptedResearchTools()
        tools.add_subject(SubjectRecord(subject_id="sneaker-001", owner_id="owner-1"))
        state = await nodes.extract_identifiers(await _loaded(tools), tools)
        assert tools.calls == [("load_subject", "sneaker-001")]
        assert state.cost_spent == 0.0

    @pytest.mark.asyncio
    async def test_tool_failure_absorbed(self, tools) -> None:
        tools.fail("extract_text", ToolError("ocr down", ToolFailureKind.NETWORK))
        state = await nodes.extract_identifiers(await _loaded(tools), tools)
        assert state.field_value("brand") == "Nike"
        assert state.field_value("upc") is None
        assert "ocr_extraction failed: ocr down" in state.warnings
        assert "ocr_extraction" in state.history.failed_tools
        assert state.cost_spent == pytest.approx(0.02)


class TestQuickLookups:

    @pytest.mark.asyncio
    async def test_skipped_without_upc(self, tools) -> None:
        state = await nodes.quick_lookups(await _loaded(tools), tools)
        assert tools.call_count("lookup_upc") == 0
        assert state.cost_spent == 0.0

    @pytest.mark.asyncio
    async def test_runs_configured_services(self, tools) -> None:
        state = await nodes.extract_identifiers(await _loaded(tools), tools)
        state = await nodes.quick_lookups(state, tools)
        assert tools.call_count("lookup_upc") == 1
        assert tools.call_count("lookup_keepa") == 1
        assert state.fields.get("brand").complete
        assert state.field_value("price") == 112.0

    @pytest.mark.asyncio
    async def test_unconfigured_services_skipped(self) -> None:
        tools = ScriptedResearchTools()
        tools.add_subject(SubjectRecord(
            subject_id="sneaker-001", owner_id="owner-1", hints={"upc": "0194501234567"},
        ))
        state = await nodes.quick_lookups(await _loaded(tools), tools)
        assert tools.call_count("lookup_upc") == 0
        assert state.cost_spent == 0.0


class TestLoopPhases:

    @pytest.mark.asyncio
    async def test_evaluate_records_decision(self, tools) -> None:
        state = await nodes.evaluate_fields(await _loaded(tools), tools)
        assert state.evaluation.decision is EvaluationDecision.CONTINUE
        assert state.history.last_completion > 0.0

    @pytest.mark.asyncio
    async def test_stop_adds_warning(self, tools) -> None:
        state = await _loaded(tools)
        state.iteration = state.budget.max_iterations
        state = await nodes.evaluate_fields(state, tools)
        assert state.evaluation.decision is EvaluationDecision.STOP_WITH_WARNINGS
        assert "Maximum iterations reached" in state.warnings

    @pytest.mark.asyncio
    async def test_plan_sets_pending_action(self, tools) -> None:
        state = await nodes.plan_research(await _loaded(tools), tools)
        assert state.pending_action is not None
        assert state.pending_action.tool == "vision_analysis"

    @pytest.mark.asyncio
    async def test_execute_without_action_is_noop(self, tools) -> None:
        state = await nodes.execute_research(await _loaded(tools), tools)
        assert state.iteration == 0

    @pytest.mark.asyncio
    async def test_execute_action(self, tools) -> None:
        state = await _loaded(tools)
        state.pending_action = ResearchAction(
            "web_search_general", "price", ("price", "model")
        )
        state = await nodes.execute_research(state, tools)
        assert tools.call_count("web_search") == 1
        assert state.iteration == 1
        assert state.pending_action is None
        assert state.fields.get("price").attempts == 1
        assert state.fields.get("model").attempts == 1
        assert state.field_value("price") == pytest.approx(109.99)
        assert state.history.attempts_by_tool == {"web_search_general": 1}

    @pytest.mark.asyncio
    async def test_execute_failure_counts_iteration(self, tools) -> None:
        tools.fail("web_search", ToolError("timeout", ToolFailureKind.NETWORK))
        state = await _loaded(tools)
        state.pending_action = ResearchAction("web_search_general", "price", ("price",))
        state = await nodes.execute_research(state, tools)
        assert state.iteration == 1
        assert state.cost_spent == 0.0
        assert "web_search_general" in state.history.failed_tools


class TestPricing:

    @pytest.mark.asyncio
    async def test_search_comps(self, tools) -> None:
        state = await nodes.search_comps(await _loaded(tools), tools)
        assert len(state.comps) == 4

    @pytest.mark.asyncio
    async def test_search_comps_failure_absorbed(self, tools) -> None:
        tools.fail("search_comps", ToolError("ebay down", ToolFailureKind.NETWORK))
        state = await nodes.search_comps(await _loaded(tools), tools)
        assert state.comps == []
        assert any(w.startswith("search_comps failed") for w in state.warnings)

    @pytest.mark.asyncio
    async def test_median_of_sold(self, tools) -> None:
        state = await nodes.search_comps(await _loaded(tools), tools)
        state = await nodes.calculate_price(state, tools)
        assert state.price == pytest.approx(105.0)
        source = state.fields.get("price").sources[-1]
        assert source.source_type == "ebay_sold"
        assert source.base_confidence == pytest.approx(0.35 + 0.035 * 3)

    @pytest.mark.asyncio
    async def test_active_only_discounted(self, tools) -> None:
        state = await _loaded(tools)
        state.comps = [
            Comparable(title="a", price=140.0, sold=False),
            Comparable(title="b", price=120.0, sold=False),
        ]
        state = await nodes.calculate_price(state, tools)
        assert state.price == pytest.approx(130.0)
        source = state.fields.get("price").sources[-1]
        assert source.source_type == "ebay_active"
        assert source.base_confidence == pytest.approx((0.35 + 0.035 * 2) * 0.8)

    @pytest.mark.asyncio
    async def test_confidence_capped(self, tools) -> None:
        state = await _loaded(tools)
        state.comps = [Comparable(title=str(i), price=100.0 + i) for i in range(20)]
        state = await nodes.calculate_price(state, tools)
        assert state.fields.get("price").sources[-1].base_confidence == pytest.approx(0.70)

    @pytest.mark.asyncio
    async def test_no_comps_falls_back_to_field(self, tools) -> None:
        state = await _loaded(tools)
        state.fields.upsert_source("price", Source("keepa", 112.0, 0.8))
        state = await nodes.calculate_price(state, tools)
        assert state.price == pytest.approx(112.0)
        assert "No comparable listings found" in state.warnings


class TestPersist:

    @pytest.mark.asyncio
    async def test_saves_evidence_and_conclusions(self, tools) -> None:
        state = await nodes.search_comps(await _loaded(tools), tools)
        state = await nodes.calculate_price(state, tools)
        state = await nodes.persist_results(state, tools)
        assert state.persisted
        assert len(tools.evidence["r1"]) == 4
        record = tools.research["r1"]
        assert record.price == pytest.approx(105.0)
        assert record.fields["condition"] == "used - like new"
        assert "brand" not in record.fields

    @pytest.mark.asyncio
    async def test_no_comps_skips_evidence(self, tools) -> None:
        state = await nodes.persist_results(await _loaded(tools), tools)
        assert tools.call_count("save_evidence") == 0
        assert "r1" in tools.research

    @pytest.mark.asyncio
    async def test_save_failure_propagates(self, tools) -> None:
        tools.fail("save_research", ToolError("db down", ToolFailureKind.NETWORK))
        with pytest.raises(ToolError):
            await nodes.persist_results(await _loaded(tools), tools)
