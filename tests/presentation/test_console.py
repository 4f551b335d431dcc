"""Tests for ConsoleDashboard rendering."""

from __future__ import annotations

import io

import pytest

from product_research.domain.entities import FieldState, ResearchRun
from product_research.domain.enums import Disposition, RunStatus, StepOutcome
from product_research.domain.values import StepRecord
from product_research.presentation.console import ConsoleDashboard, _sparkline


@pytest.fixture
def out() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def dashboard(out: io.StringIO) -> ConsoleDashboard:
    return ConsoleDashboard(file=out, width=120)


class TestSparkline:

    def test_empty(self) -> None:
        assert _sparkline([]) == ""

    def test_downsampled_to_width(self) -> None:
        assert len(_sparkline([float(i) for i in range(100)], width=10)) == 10

    def test_flat(self) -> None:
        assert len(set(_sparkline([1.0, 1.0, 1.0]))) == 1


class TestDashboard:

    def test_print_run(self, dashboard, out) -> None:
        run = ResearchRun(
            "sneaker-001", "owner-1", status=RunStatus.SUCCESS,
            summary="Research completed. Found 4 comps. Confidence: 87%",
            disposition=Disposition.SPOT_CHECK, step_count=2,
            step_history=[
                StepRecord("load_context", 0.0, 0.01, StepOutcome.SUCCESS),
                StepRecord("search_comps", 0.01, 0.2, StepOutcome.ERROR, "boom"),
            ],
        )
        dashboard.print_run(run)
        text = out.getvalue()
        assert run.run_id in text
        assert "success" in text
        assert "spot_check" in text
        assert "search_comps" in text
        assert "Step history" in text

    def test_print_run_without_history(self, dashboard, out) -> None:
        dashboard.print_run(ResearchRun("s", "o", status=RunStatus.ERROR, error="nope",
                                        checkpoint="{}"))
        text = out.getvalue()
        assert "nope" in text
        assert "checkpoint held" in text
        assert "Step history" not in text

    def test_print_fields(self, dashboard, out) -> None:
        dashboard.print_fields({
            "brand": FieldState("brand", required=True, value="Nike", confidence=0.95,
                                complete=True),
            "color": FieldState("color", value=("White", "Red"), confidence=0.3),
        })
        text = out.getvalue()
        assert "Nike" in text
        assert "0.95" in text
        assert "White, Red" in text

    def test_print_metrics(self, dashboard, out) -> None:
        dashboard.print_metrics({
            "runs": 1,
            "outcomes": {"success": 1},
            "phases": {"load_context": {"executions": 1, "failures": 0,
                                        "mean_duration_s": 0.002, "p95_duration_s": 0.002}},
        })
        text = out.getvalue()
        assert "load_context" in text
        assert "success=1" in text

    def test_print_mapping_nested(self, dashboard, out) -> None:
        dashboard.print_mapping("Conclusions", {"price": 105.0, "fields": {"brand": "Nike"}})
        text = out.getvalue()
        assert "105.00" in text
        assert "brand" in text
