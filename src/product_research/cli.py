"""Command-line interface for the product research engine.

Usage::

    product-research info
    product-research demo --pause-after quick_lookups
    product-research demo --config research.yaml --export run.json
    product-research report --input run.json
    product-research config-check research.yaml

Can also be invoked as ``python -m product_research.cli``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="product-research",
        description="Autonomous product research orchestration",
    )
    parser.add_argument(
        "--version", action="store_true", default=False,
        help="Print version and exit",
    )
    parser.add_argument(
        "--log-level", type=str, default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # -- info -----------------------------------------------------------------
    subparsers.add_parser("info", help="Show version, phases and default configuration")

    # -- demo -----------------------------------------------------------------
    demo_parser = subparsers.add_parser(
        "demo", help="Research a scripted subject end to end"
    )
    demo_parser.add_argument(
        "--pause-after", type=str, default=None, metavar="PHASE",
        help="Pause the run after PHASE completes, then resume it",
    )
    demo_parser.add_argument(
        "--config", type=str, default=None, metavar="PATH",
        help="JSON or YAML configuration file",
    )
    demo_parser.add_argument(
        "--width", type=int, default=None,
        help="Fixed console width",
    )
    demo_parser.add_argument(
        "--export", type=str, default=None, metavar="PATH",
        help="Write the finished run to PATH (.json, .yaml or .yml)",
    )

    # -- config-check ---------------------------------------------------------
    check_parser = subparsers.add_parser(
        "config-check", help="Validate a configuration file"
    )
    check_parser.add_argument("path", type=str, help="JSON or YAML configuration file")

    # -- report ---------------------------------------------------------------
    report_parser = subparsers.add_parser(
        "report",
        help="Display a run exported with demo --export",
    )
    report_parser.add_argument(
        "--input", type=str, required=True, metavar="PATH",
        help="Exported run file (.json, .yaml or .yml)",
    )
    report_parser.add_argument(
        "--format", type=str, default="table",
        choices=["table", "json", "yaml"],
        help="Display format (default: table)",
    )

    return parser


def _configure_logging(level: str) -> None:
    from rich.logging import RichHandler

    logging.basicConfig(
        level=getattr(logging, level),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# ===================================================================== #
#  Commands                                                              #
# ===================================================================== #

def _cmd_info(args: argparse.Namespace) -> int:
    """Print version, the phase sequence and the default configuration."""
    from product_research import __version__
    from product_research.infrastructure.config import ResearchConfig
    from product_research.presentation.console import ConsoleDashboard

    config = ResearchConfig()
    dashboard = ConsoleDashboard()
    dashboard.console.print(f"[bold]product-research[/bold] {__version__}")
    phases = config.phases
    dashboard.console.print(
        f"Phases: {' -> '.join(phases.order)}  "
        f"(loop {phases.loop_start} .. {phases.loop_end})"
    )
    for section, values in config.to_dict().items():
        if section == "phases":
            continue
        dashboard.print_mapping(section, values)
    return 0


def _cmd_config_check(args: argparse.Namespace) -> int:
    """Load and validate a configuration file."""
    import yaml

    from product_research.infrastructure.config import load_config_file
    from product_research.presentation.console import ConsoleDashboard

    dashboard = ConsoleDashboard()
    try:
        config = load_config_file(args.path)
    except FileNotFoundError:
        print(f"Error: file not found: {args.path}", file=sys.stderr)
        return 1
    except (ValueError, yaml.YAMLError) as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        return 1
    dashboard.console.print(f"[green]OK[/green] {args.path}")
    dashboard.print_mapping("orchestrator", config.orchestrator.to_dict())
    dashboard.print_mapping("budget", config.budget.to_dict())
    return 0


def _cmd_demo(args: argparse.Namespace) -> int:
    """Trigger, optionally pause and resume, and finish a scripted run."""
    from product_research.infrastructure.config import ResearchConfig, load_config_file

    config = load_config_file(args.config) if args.config else ResearchConfig()
    if args.pause_after and args.pause_after not in config.phases.order:
        print(
            f"Error: unknown phase '{args.pause_after}'. "
            f"Available: {', '.join(config.phases.order)}",
            file=sys.stderr,
        )
        return 1
    return asyncio.run(_run_demo(config, args.pause_after, args.width, args.export))


async def _run_demo(
    config: Any,
    pause_after: str | None,
    width: int | None,
    export: str | None = None,
) -> int:
    from product_research.domain.enums import RunStatus
    from product_research.domain.events import PhaseCompleted
    from product_research.graph.state import ResearchState
    from product_research.infrastructure.event_bus import AsyncEventBus, EventStore
    from product_research.infrastructure.job_queue import InMemoryJobQueue
    from product_research.infrastructure.run_store import InMemoryRunStore
    from product_research.infrastructure.serialization import decode_checkpoint
    from product_research.infrastructure.tools import RetryingTools
    from product_research.measurement.collector import RunMetricsCollector
    from product_research.presentation.console import ConsoleDashboard
    from product_research.services.control import RunControl
    from product_research.services.orchestrator import ResearchOrchestrator
    from product_research.services.recovery import RecoveryReconciler
    from product_research.services.worker import ResearchWorker
    from product_research.testing import fake_tools

    dashboard = ConsoleDashboard(width=width)
    store = InMemoryRunStore()
    queue = InMemoryJobQueue()
    bus = AsyncEventBus()
    events = EventStore()
    bus.subscribe_all(events.append)
    scripted = fake_tools.demo_tools()
    tools = RetryingTools(scripted, config.retry, config.circuit_breaker)
    orchestrator = ResearchOrchestrator(store, tools, config=config, bus=bus)
    control = RunControl(store, queue, config.orchestrator)
    worker = ResearchWorker(queue, orchestrator)
    reconciler = RecoveryReconciler(store, queue, config.recovery, config.orchestrator)
    metrics = RunMetricsCollector(bus)

    run = control.trigger("sneaker-001", "owner-1")

    if pause_after:
        pending = {"armed": True}

        def _pause_on(event: PhaseCompleted) -> None:
            if pending["armed"] and event.phase == pause_after:
                pending["armed"] = False
                control.pause(event.run_id)

        bus.subscribe(PhaseCompleted, _pause_on)

    await worker.drain()
    run = store.require(run.run_id)

    if run.status is RunStatus.PAUSED:
        dashboard.console.print(f"[yellow]Paused after {pause_after}[/yellow]")
        dashboard.print_run(run)
        _, data = decode_checkpoint(run.checkpoint)
        dashboard.print_fields(ResearchState.from_dict(data).fields.snapshot_all())
        control.resume(run.run_id)
        await worker.drain()
        run = store.require(run.run_id)

    dashboard.print_run(run)
    record = scripted.research.get(run.run_id)
    if record is not None:
        dashboard.print_mapping("Conclusions", {
            "confidence": record.confidence,
            "price": record.price,
            "comps": record.comps_count,
            "fields": record.fields,
        })
    dashboard.print_metrics(metrics.summary())
    metrics.detach()
    counts = Counter(type(e).__name__ for e in events.query(run_id=run.run_id))
    dashboard.print_mapping("Events", dict(counts))
    dashboard.print_mapping("Recovery", reconciler.reconcile().to_dict())

    if export:
        path = _export_run(run, export)
        dashboard.console.print(f"Run exported to {path}")
    return 0 if run.status is RunStatus.SUCCESS else 1


def _export_run(run: Any, destination: str) -> Path:
    """Write *run* as JSON or YAML, picking the format from the suffix."""
    from product_research.infrastructure.serialization import to_json, to_yaml

    path = Path(destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in (".yaml", ".yml"):
        path.write_text(to_yaml(run), encoding="utf-8")
    else:
        path.write_text(to_json(run), encoding="utf-8")
    return path


def _cmd_report(args: argparse.Namespace) -> int:
    """Load a run written by ``demo --export`` and display it."""
    import yaml

    from product_research.domain.entities import ResearchRun
    from product_research.infrastructure.serialization import deserialize, serialize
    from product_research.presentation.console import ConsoleDashboard

    path = Path(args.input)
    if not path.exists():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
        run = deserialize(data, ResearchRun)
    except (OSError, ValueError, KeyError, TypeError, AttributeError, yaml.YAMLError) as exc:
        print(f"Error reading {path}: {exc}", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps(serialize(run), indent=2, default=str))
    elif args.format == "yaml":
        print(yaml.safe_dump(serialize(run), default_flow_style=False, sort_keys=False))
    else:
        ConsoleDashboard().print_run(run)
    return 0


# ===================================================================== #
#  Entry point                                                           #
# ===================================================================== #

def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parameters
    ----------
    argv:
        Command-line arguments.  Defaults to ``sys.argv[1:]``.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from product_research import __version__
        print(f"product-research {__version__}")
        sys.exit(0)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    _configure_logging(args.log_level)

    handlers: dict[str, Any] = {
        "info": _cmd_info,
        "demo": _cmd_demo,
        "config-check": _cmd_config_check,
        "report": _cmd_report,
    }

    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        exit_code = handler(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        exit_code = 130
    except Exception as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
