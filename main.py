"""proctrack: list launches and exits of a process from the Windows Security audit log."""

import logging
import os
import sys
from argparse import ArgumentParser
from datetime import datetime, timedelta, timezone

from proctrack.config import Config, load_config, load_yaml_config
from proctrack.correlator import correlate
from proctrack.errors import SourceAccessDenied
from proctrack.formatter import get_renderer
from proctrack.models import TimeWindow
from proctrack.normalizer import normalize_process_name
from proctrack.sources import SOURCE_KINDS, infer_source_kind, open_source

LOG_FORMAT = "%(asctime)s [PROCTRACK] %(levelname)s %(message)s"

logger = logging.getLogger("proctrack")


def build_parser() -> ArgumentParser:
    """Build the CLI argument parser."""
    parser = ArgumentParser(
        prog="proctrack",
        description="Pair process start (4688) and exit (4689) audit events into run intervals.",
    )
    parser.add_argument(
        "process",
        nargs="?",
        help="Process name or path, e.g. javaw or C:\\Java\\bin\\javaw.exe (prompted if omitted)",
    )
    parser.add_argument(
        "days",
        nargs="?",
        help="Days to look back (prompted if omitted)",
    )
    parser.add_argument(
        "--source",
        choices=SOURCE_KINDS,
        help="Record source (default: inferred from --file, else the live event log)",
    )
    parser.add_argument(
        "--file",
        help="Exported events: .xml (wevtutil /f:xml) or .jsonl",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--output",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    parser.add_argument(
        "--utc",
        action="store_true",
        help="Show timestamps in UTC instead of local time",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Debug logging on stderr",
    )
    return parser


def _prompt(text: str) -> str:
    try:
        return input(text).strip()
    except EOFError:
        return ""


def parse_days(value: str | None, default: int = 30) -> int:
    """Positive integer day count; anything else falls back to default."""
    try:
        days = int(str(value).strip())
    except (TypeError, ValueError):
        days = 0
    if days <= 0:
        print(f"Invalid number of days. Using default of {default}.", file=sys.stderr)
        return default
    return days


def lookback_start(days: int, now: datetime | None = None) -> datetime:
    """Cutoff `days` before now, clamped to the earliest representable time."""
    now = now or datetime.now(timezone.utc)
    try:
        return now - timedelta(days=days)
    except OverflowError:
        logger.info("%d days reaches past the earliest date, reading everything", days)
        return datetime.min.replace(tzinfo=timezone.utc)


def resolve_inputs(args, config: Config) -> tuple[str, int]:
    """Fill in process name and day count, prompting for whatever is missing."""
    raw_name = args.process
    if raw_name is None:
        raw_name = _prompt("Enter process name (e.g., javaw or javaw.exe): ")
    if not raw_name.strip():
        logger.warning("No process name given; nothing will match")
    process_name = normalize_process_name(raw_name, config.executable_suffix)

    if args.days is not None:
        days = parse_days(args.days, config.default_days)
    else:
        answer = _prompt(f"Days to look back [{config.default_days}]: ")
        days = parse_days(answer, config.default_days) if answer else config.default_days

    return process_name, days


def run(args) -> int:
    """Read, correlate, and print. Returns the process exit code."""
    config = load_config(load_yaml_config(args.config))
    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.WARNING)
    logging.getLogger().setLevel(level)

    kind = args.source or infer_source_kind(args.file)
    if kind is None:
        print(f"Error: cannot tell the format of {args.file}; pass --source", file=sys.stderr)
        return 1
    if args.file and not os.path.isfile(args.file):
        print(f"Error: file not found: {args.file}", file=sys.stderr)
        return 1

    process_name, days = resolve_inputs(args, config)
    since = lookback_start(days)

    try:
        records = open_source(kind, args.file, config, days=days)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    logger.info("Looking for %s over the last %d day(s) via %s", process_name, days, kind)
    result = correlate(records, process_name, TimeWindow(since=since))

    tz = timezone.utc if (args.utc or config.display_utc) else None
    render = get_renderer(args.output)
    print(render(result.intervals, tz=tz))

    if not result.complete:
        reason = "access denied" if isinstance(result.error, SourceAccessDenied) else "read failure"
        print(f"Warning: results may be incomplete ({reason}: {result.error})", file=sys.stderr)
    return 0


def main():
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT, stream=sys.stderr)
    parser = build_parser()
    args = parser.parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(0)
    except BrokenPipeError:
        sys.exit(0)
