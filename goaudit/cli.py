"""CLI entry point: load a program document, run the engine, print JSON."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from goaudit import __version__
from goaudit.core.config import AnalysisConfig, build_config, load_config
from goaudit.core.enums import Category, Severity
from goaudit.core.errors import ConfigurationError
from goaudit.engine.run import AnalysisResult, run_analysis
from goaudit.engine.sizes import PLATFORMS
from goaudit.program.loader import load_program

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Return the top-level argparse parser."""
    parser = argparse.ArgumentParser(
        prog="goaudit",
        description="Static analysis of parsed Go programs.",
    )
    parser.add_argument("--version", action="version", version=f"goaudit {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Analyze a program document")
    scan.add_argument("program", type=Path, help="Program document (JSON) from the front end")
    scan.add_argument("--config", type=Path, default=None, help="JSON config file")
    scan.add_argument("--target-version", default=None, help="Go version findings may assume")
    scan.add_argument(
        "--category",
        action="append",
        choices=[c.value for c in Category],
        default=None,
        help="Restrict to a category (repeatable)",
    )
    scan.add_argument(
        "--min-severity",
        choices=[s.label for s in Severity],
        default=None,
        help="Drop findings below this severity",
    )
    scan.add_argument("--platform", choices=sorted(PLATFORMS), default=None)
    scan.add_argument(
        "--entry-point",
        action="append",
        default=None,
        help="Reachability root: main, tests, exported or a handle (repeatable)",
    )
    scan.add_argument("--output", type=Path, default=None, help="Write JSON here instead of stdout")
    scan.add_argument("-v", "--verbose", action="count", default=0)
    return parser


def _config_from_args(args) -> AnalysisConfig:
    overrides = {
        "target_version": args.target_version,
        "categories": args.category,
        "min_severity": args.min_severity,
        "platform": args.platform,
        "entry_points": args.entry_point,
    }
    if args.config is not None:
        return load_config(args.config, **overrides)
    return build_config(**overrides)


def _summary(result: AnalysisResult) -> str:
    counts: dict[str, int] = {}
    for finding in result.findings:
        counts[finding.severity.label] = counts.get(finding.severity.label, 0) + 1
    by_severity = ", ".join(
        f"{counts[s.label]} {s.label}" for s in sorted(Severity, reverse=True) if s.label in counts
    )
    text = f"goaudit: {len(result.findings)} findings"
    if by_severity:
        text += f" ({by_severity})"
    if result.diagnostics:
        text += f", {len(result.diagnostics)} diagnostics"
    return text


def cmd_scan(args) -> int:
    config = _config_from_args(args)
    program = load_program(args.program)
    result = run_analysis(program, config)
    payload = json.dumps(
        {"config": config.to_dict(), **result.to_dict()}, indent=2, sort_keys=False
    )
    if args.output is not None:
        args.output.write_text(payload + "\n")
        logger.debug("Wrote %s", args.output)
    else:
        print(payload)
    print(_summary(result), file=sys.stderr)
    return 0


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    _configure_logging(getattr(args, "verbose", 0))
    try:
        return cmd_scan(args)
    except ConfigurationError as exc:
        print(f"goaudit: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
