"""
Command-line interface for playbench.

Provides commands for running suites and validating suite files.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from html import escape
from pathlib import Path
from typing import Any

import structlog
from dotenv import load_dotenv

from playbench import __version__
from playbench.config import BrowserName, load_harness_config
from playbench.drivers.playwright_driver import PlaywrightSession
from playbench.dsl.models import SuiteSpec
from playbench.dsl.parser import DSLParseError, DSLParser
from playbench.dsl.transformer import SuiteTransformer
from playbench.orchestrator import ScenarioStatus, SuiteResult
from playbench.redaction import redact_secrets

logger = structlog.get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose if hasattr(args, "verbose") else False)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        logger.error("Command failed", error=str(e))
        if hasattr(args, "verbose") and args.verbose:
            raise
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="playbench",
        description="Scenario-driven browser test harness",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"playbench {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run suite files")
    run_parser.add_argument(
        "paths",
        nargs="+",
        help="Path(s) to suite files or directories",
    )
    run_parser.add_argument(
        "--base-url",
        help="Target page URL (default: $PLAYBENCH_BASE_URL, then the suite's environment.base_url)",
    )
    run_parser.add_argument(
        "--browser",
        choices=[b.value for b in BrowserName],
        help="Browser to launch (default: chromium)",
    )
    run_parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window",
    )
    run_parser.add_argument(
        "--max-parallel",
        type=int,
        help="Maximum scenarios running at once",
    )
    run_parser.add_argument(
        "--default-timeout",
        type=int,
        help="Query and assertion retry window in milliseconds (default: 4000)",
    )
    run_parser.add_argument(
        "--seed",
        type=int,
        help="Seed for random option selection, for reproducible runs",
    )
    run_parser.add_argument(
        "--scenario",
        action="append",
        default=[],
        dest="scenarios",
        metavar="NAME",
        help="Run only the named scenario (can be repeated)",
    )
    run_parser.add_argument(
        "--var",
        action="append",
        default=[],
        dest="variables",
        metavar="KEY=VALUE",
        help="Set variable (can be repeated)",
    )
    run_parser.add_argument(
        "--output-format",
        choices=["json", "junit"],
        default="json",
        help="Output format for results",
    )
    run_parser.add_argument(
        "--output-file",
        help="Output file path",
    )
    run_parser.set_defaults(func=cmd_run)

    validate_parser = subparsers.add_parser("validate", help="Validate suite files")
    validate_parser.add_argument(
        "paths",
        nargs="+",
        help="Path(s) to suite files or directories",
    )
    validate_parser.set_defaults(func=cmd_validate)

    return parser


def configure_logging(verbose: bool) -> None:
    """Configure structured logging; resolved secrets never reach the renderer."""
    level = "DEBUG" if verbose else "INFO"
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_secrets,
            structlog.dev.ConsoleRenderer() if verbose else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=getattr(logging, level))


def parse_variables(pairs: list[str]) -> dict[str, str]:
    variables = {}
    for var in pairs:
        if "=" not in var:
            raise ValueError(f"Invalid --var '{var}', expected KEY=VALUE")
        key, value = var.split("=", 1)
        variables[key] = value
    return variables


def collect_suites(
    parser: DSLParser,
    paths: list[str],
    variables: dict[str, Any] | None = None,
) -> list[tuple[Path, SuiteSpec]]:
    suites: list[tuple[Path, SuiteSpec]] = []
    for path_str in paths:
        path = Path(path_str)
        if path.is_dir():
            suites.extend(parser.parse_directory(path, variables=variables))
        elif path.is_file():
            suites.append((path, parser.parse_file(path, variables)))
        else:
            print(f"Warning: Path not found: {path}", file=sys.stderr)
    return suites


def cmd_run(args: argparse.Namespace) -> int:
    """Run suite files."""
    load_dotenv()

    variables = parse_variables(args.variables)
    try:
        suites = collect_suites(DSLParser(), args.paths, variables)
    except DSLParseError as e:
        print(f"Invalid suite: {e}", file=sys.stderr)
        return 1

    if not suites:
        print("No suite files found", file=sys.stderr)
        return 1

    base = load_harness_config()
    overrides = {
        "browser": BrowserName(args.browser) if args.browser else None,
        "headless": False if args.headed else None,
        "max_parallel": args.max_parallel,
        "default_timeout_ms": args.default_timeout,
        "random_seed": args.seed,
    }
    base_url = args.base_url or os.getenv("PLAYBENCH_BASE_URL")
    transformer = SuiteTransformer()

    all_results: list[SuiteResult] = []
    for path, suite in suites:
        config = transformer.configure(suite, base, overrides)
        session = PlaywrightSession(config)
        orchestrator = transformer.build(suite, path, session, config, base_url=base_url)
        if not orchestrator.scenarios:
            continue

        names = None
        if args.scenarios:
            known = {s.name for s in orchestrator.scenarios}
            names = [n for n in args.scenarios if n in known]
            if not names:
                continue

        logger.info("Running suite", suite=suite.name, path=str(path))
        all_results.append(orchestrator.run_sync(names))

    if not all_results:
        print("No scenarios selected", file=sys.stderr)
        return 1

    output = format_results(all_results, args.output_format)

    if args.output_file:
        Path(args.output_file).write_text(output)
        print(f"Results written to {args.output_file}")
    else:
        print(output)

    passed = sum(r.passed for r in all_results)
    failed = sum(r.failed for r in all_results)
    skipped = sum(r.skipped for r in all_results)
    total = sum(r.total for r in all_results)

    for result in all_results:
        for scenario in result.results:
            if scenario.status == ScenarioStatus.FAILED:
                print(f"FAILED {result.suite_name} :: {scenario.name}: {scenario.reason}", file=sys.stderr)

    print(f"\nSummary: {passed} passed, {failed} failed, {skipped} skipped, {total} total")

    return 0 if failed == 0 else 1


def format_results(results: list[SuiteResult], format_type: str) -> str:
    """Format suite results."""
    if format_type == "json":
        return json.dumps(
            [
                {
                    "suite_name": r.suite_name,
                    "total": r.total,
                    "passed": r.passed,
                    "failed": r.failed,
                    "skipped": r.skipped,
                    "duration_ms": r.duration_ms,
                    "scenarios": [
                        {
                            "name": s.name,
                            "status": s.status,
                            "duration_ms": s.duration_ms,
                            "seed": s.seed,
                            "failed_step": s.failed_step,
                            "reason": s.reason,
                            "steps": [
                                {
                                    "name": step.step_name,
                                    "action": step.action,
                                    "status": step.status,
                                    "duration_ms": step.duration_ms,
                                    "error": step.error,
                                }
                                for step in s.step_results
                            ],
                        }
                        for s in r.results
                    ],
                }
                for r in results
            ],
            indent=2,
            default=str,
        )

    elif format_type == "junit":
        total = sum(r.total for r in results)
        lines = ['<?xml version="1.0" encoding="UTF-8"?>']
        lines.append(f'<testsuites tests="{total}">')

        for result in results:
            lines.append(
                f'  <testsuite name="{escape(result.suite_name or "")}" tests="{result.total}" '
                f'failures="{result.failed}" skipped="{result.skipped}" '
                f'time="{result.duration_ms / 1000:.3f}">'
            )

            for scenario in result.results:
                lines.append(
                    f'    <testcase name="{escape(scenario.name)}" '
                    f'time="{scenario.duration_ms / 1000:.3f}">'
                )
                if scenario.status == ScenarioStatus.FAILED:
                    lines.append(f'      <failure message="{escape(scenario.reason or "")}"/>')
                elif scenario.status == ScenarioStatus.SKIPPED:
                    lines.append("      <skipped/>")
                lines.append("    </testcase>")

            lines.append("  </testsuite>")

        lines.append("</testsuites>")
        return "\n".join(lines)

    return str(results)


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate suite files without resolving secrets."""
    parser = DSLParser(resolve_secrets=False)
    errors = 0

    for path_str in args.paths:
        path = Path(path_str)

        if not path.exists():
            print(f"Error: Path not found: {path}", file=sys.stderr)
            errors += 1
            continue

        try:
            if path.is_dir():
                suites = parser.parse_directory(path)
                print(f"Valid: {path} ({len(suites)} files)")
            else:
                suite = parser.parse_file(path)
                scenarios = sum(len(s.expand()) for s in suite.scenarios)
                print(f"Valid: {path} ({suite.name}, {scenarios} scenarios)")
        except DSLParseError as e:
            print(f"Invalid: {path}", file=sys.stderr)
            print(f"  {e}", file=sys.stderr)
            errors += 1

    if errors:
        print(f"\n{errors} file(s) with errors", file=sys.stderr)
        return 1

    print("\nAll files valid")
    return 0


if __name__ == "__main__":
    sys.exit(main())
