from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core.artifacts import read_manifest
from .core.benchmark import execute_benchmark, plan_benchmark
from .core.config import build_settings, load_config, load_settings
from .core.diagnostics import AotFlowError
from .core.logging import configure_console
from .core.pipeline import clean_workflow, execute_workflow, plan_workflow
from .core.stages import ASSEMBLE, RECORD, RUN
from .core.version import __version__

DEFAULT_CONFIG_NAMES = ("aotflow.yaml", "aotflow.yml", "aotflow.toml", "aotflow.json")

logger = logging.getLogger("aotflow.cli")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="aotflow")
    parser.add_argument("--version", action="version", version=f"aotflow {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="validate the workflow configuration")
    _add_config_args(validate)

    for name, help_text in (
        (RECORD, "training run: record classes and profiles"),
        (ASSEMBLE, "create the AOT cache from the training config"),
        (RUN, "run the application with the AOT cache"),
    ):
        stage = sub.add_parser(name, help=help_text)
        _add_config_args(stage)
        _add_run_args(stage)
        stage.add_argument(
            "--staleness",
            choices=["overwrite", "reuse"],
            help="rebuild every output, or reuse outputs whose inputs are unchanged",
        )
        stage.add_argument(
            "--no-preflight",
            action="store_true",
            help="let the JVM report missing inputs instead of checking up front",
        )

    bench = sub.add_parser("benchmark", help="startup benchmark with GC and class-load logging")
    _add_config_args(bench)
    _add_run_args(bench)

    clean = sub.add_parser("clean", help="delete the training config, cache and fingerprints")
    _add_config_args(clean)

    report = sub.add_parser("report", help="print a run manifest")
    report.add_argument("-r", "--run", required=True)

    args = parser.parse_args(argv)
    configure_console(getattr(args, "verbose", False))

    if args.command == "report":
        print(json.dumps(read_manifest(Path(args.run)), indent=2, sort_keys=True))
        return

    config_path = _find_config(args.config)

    if args.command == "validate":
        _validate(config_path)
        return

    try:
        settings = load_settings(config_path, _overrides(args))
        if args.command == "clean":
            for path in clean_workflow(settings):
                logger.info("Removed %s", path)
            return
        if args.command == "benchmark":
            if args.dry_run:
                _print_plan(plan_benchmark(settings))
                return
            outcome = execute_benchmark(settings)
        else:
            if args.dry_run:
                _print_plan(plan_workflow(settings, args.command))
                return
            outcome = execute_workflow(settings, args.command)
    except AotFlowError as exc:
        _report_error(exc)
        raise SystemExit(1)

    for result in outcome.stages:
        logger.info("%-9s %s", result.name, result.state.value)
    logger.info("Run directory: %s", outcome.run_dir)


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", required=False)
    parser.add_argument("-v", "--verbose", action="store_true")


def _add_run_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="print the invocations as JSON without launching anything",
    )


def _find_config(value: Optional[str]) -> Optional[Path]:
    if value:
        path = Path(value)
        if not path.exists():
            raise SystemExit(f"aotflow: config file not found: {path}")
        return path
    for name in DEFAULT_CONFIG_NAMES:
        candidate = Path.cwd() / name
        if candidate.exists():
            return candidate
    return None


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if getattr(args, "staleness", None):
        overrides["staleness"] = args.staleness
    if getattr(args, "no_preflight", False):
        overrides["preflight"] = False
    return overrides


def _validate(config_path: Optional[Path]) -> None:
    data = load_config(config_path) if config_path else {}
    base_dir = config_path.resolve().parent if config_path else Path.cwd()
    _, diagnostics = build_settings(data, base_dir)
    if diagnostics.has_errors():
        print(json.dumps(diagnostics.to_list(), indent=2, sort_keys=True))
        raise SystemExit(1)
    print(json.dumps({"status": "ok"}))


def _print_plan(plan: List[Dict[str, Any]]) -> None:
    print(json.dumps(plan, indent=2))


def _report_error(exc: AotFlowError) -> None:
    diagnostic = exc.diagnostic
    logger.error("%s: %s", diagnostic.code, diagnostic.message)
    for hint in diagnostic.hints:
        logger.error("  %s", hint)
    if exc.run_dir is not None:
        logger.error("Run directory: %s", exc.run_dir)


if __name__ == "__main__":
    main(sys.argv[1:])
