"""Tests for the command-line interface."""

from __future__ import annotations

import json

import pytest

from product_research import __version__
from product_research.cli import _build_parser, main
from product_research.domain.enums import ToolFailureKind
from product_research.domain.exceptions import ToolError
from product_research.testing import fake_tools


def _exit_code(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as info:
        main(argv)
    return info.value.code


def _flaky_subject_lookup(monkeypatch) -> None:
    """Make the demo subject lookup drop its first connection."""
    scripted = fake_tools.demo_tools

    def factory(*args, **kwargs):
        tools = scripted(*args, **kwargs)
        tools.fail("load_subject", ToolError("connection reset", ToolFailureKind.NETWORK))
        return tools

    monkeypatch.setattr(fake_tools, "demo_tools", factory)


class TestParser:

    def test_demo_arguments(self) -> None:
        args = _build_parser().parse_args(["demo", "--pause-after", "quick_lookups"])
        assert args.command == "demo"
        assert args.pause_after == "quick_lookups"
        assert args.config is None

    def test_log_level_choices(self) -> None:
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["--log-level", "LOUD", "info"])


class TestMain:

    def test_version(self, capsys) -> None:
        assert _exit_code(["--version"]) == 0
        assert capsys.readouterr().out.strip() == f"product-research {__version__}"

    def test_no_command_prints_help(self, capsys) -> None:
        assert _exit_code([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_info(self, capsys) -> None:
        assert _exit_code(["info"]) == 0
        out = capsys.readouterr().out
        assert "load_context" in out
        assert "orchestrator" in out

    def test_config_check_valid(self, tmp_path, capsys) -> None:
        path = tmp_path / "research.yaml"
        path.write_text("budget:\n  mode: thorough\norchestrator:\n  max_retries: 2\n")
        assert _exit_code(["config-check", str(path)]) == 0
        assert "OK" in capsys.readouterr().out

    def test_config_check_invalid(self, tmp_path, capsys) -> None:
        path = tmp_path / "research.json"
        path.write_text(json.dumps({"budget": {"max_cost": -1}}))
        assert _exit_code(["config-check", str(path)]) == 1
        assert "invalid configuration" in capsys.readouterr().err

    def test_config_check_missing_file(self, tmp_path, capsys) -> None:
        assert _exit_code(["config-check", str(tmp_path / "absent.yaml")]) == 1
        assert "not found" in capsys.readouterr().err

    def test_demo(self, capsys) -> None:
        assert _exit_code(["demo", "--width", "140"]) == 0
        out = capsys.readouterr().out
        assert "Found 4 comps" in out
        assert "persist_results" in out

    def test_demo_with_pause(self, capsys) -> None:
        assert _exit_code(["demo", "--pause-after", "quick_lookups", "--width", "140"]) == 0
        out = capsys.readouterr().out
        assert "Paused after quick_lookups" in out
        assert "Fields" in out
        assert "Found 4 comps" in out

    def test_demo_unknown_phase(self, capsys) -> None:
        assert _exit_code(["demo", "--pause-after", "teleport"]) == 1
        assert "unknown phase" in capsys.readouterr().err

    def test_demo_with_config(self, tmp_path, capsys) -> None:
        path = tmp_path / "research.yaml"
        path.write_text("budget:\n  mode: thorough\n")
        assert _exit_code(["demo", "--config", str(path), "--width", "250"]) == 0
        assert "Found 4 comps" in capsys.readouterr().out

    def test_demo_rejects_loop_longer_than_phase_limit(self, tmp_path, capsys) -> None:
        path = tmp_path / "research.json"
        path.write_text(json.dumps({"orchestrator": {"max_phase_executions": 4}}))
        assert _exit_code(["demo", "--config", str(path)]) == 1
        assert "max_phase_executions" in capsys.readouterr().err

    def test_demo_lists_events_and_recovery(self, capsys) -> None:
        assert _exit_code(["demo", "--width", "250"]) == 0
        out = capsys.readouterr().out
        assert "PhaseCompleted" in out
        assert "RunCompleted" in out
        assert "stale_requeued" in out

    def test_demo_retries_transient_tool_failure(self, tmp_path, capsys, monkeypatch) -> None:
        _flaky_subject_lookup(monkeypatch)
        path = tmp_path / "research.yaml"
        path.write_text("retry:\n  max_attempts: 2\n  base_delay_s: 0\n  max_delay_s: 0\n")
        assert _exit_code(["demo", "--config", str(path), "--width", "250"]) == 0
        assert "Found 4 comps" in capsys.readouterr().out

    def test_demo_without_retries_leaves_run_resumable(
        self, tmp_path, capsys, monkeypatch
    ) -> None:
        _flaky_subject_lookup(monkeypatch)
        path = tmp_path / "research.yaml"
        path.write_text("retry:\n  max_attempts: 1\n")
        assert _exit_code(["demo", "--config", str(path), "--width", "250"]) == 1
        out = capsys.readouterr().out
        assert "connection reset" in out
        assert "checkpoint held" in out
        assert "errors_requeued" in out


class TestExportAndReport:

    def test_json_export_round_trips_through_report(self, tmp_path, capsys) -> None:
        path = tmp_path / "out" / "run.json"
        assert _exit_code(["demo", "--export", str(path), "--width", "250"]) == 0
        assert "Run exported" in capsys.readouterr().out
        assert json.loads(path.read_text())["status"] == "success"

        assert _exit_code(["report", "--input", str(path)]) == 0
        out = capsys.readouterr().out
        assert "sneaker-001" in out
        assert "persist_results" in out

    def test_yaml_export_reported_as_json(self, tmp_path, capsys) -> None:
        path = tmp_path / "run.yaml"
        assert _exit_code(["demo", "--export", str(path)]) == 0
        capsys.readouterr()
        assert _exit_code(["report", "--input", str(path), "--format", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "success"
        assert data["subject_id"] == "sneaker-001"
        assert data["completed_at"] is not None

    def test_missing_file(self, tmp_path, capsys) -> None:
        assert _exit_code(["report", "--input", str(tmp_path / "absent.json")]) == 1
        assert "not found" in capsys.readouterr().err

    def test_unreadable_file(self, tmp_path, capsys) -> None:
        path = tmp_path / "run.json"
        path.write_text("{not json")
        assert _exit_code(["report", "--input", str(path)]) == 1
        assert "Error reading" in capsys.readouterr().err
