"""Report formatters: fixed-width text table and JSON."""

import json
from datetime import datetime, timedelta, tzinfo
from typing import Iterable

from proctrack.models import Interval

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
EMPTY_MESSAGE = "No matching events found. Process tracking may not be enabled."

START_WIDTH = 21
FINISH_WIDTH = 21
DURATION_WIDTH = 10
RULE_WIDTH = 70


def sort_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Newest start first; equal starts keep their accumulation order."""
    return sorted(intervals, key=lambda i: i.start, reverse=True)


def format_duration(duration: timedelta) -> str:
    """HH:MM:SS with total hours, so 26 hours stays 26 rather than wrapping to 02."""
    total = int(duration.total_seconds())
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_timestamp(ts: datetime, tz: tzinfo | None = None) -> str:
    """Render ts; aware values go to tz, or local time when tz is None."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(tz)
    return ts.strftime(TIMESTAMP_FORMAT)


def format_row(interval: Interval, tz: tzinfo | None = None) -> str:
    start = format_timestamp(interval.start, tz)
    if interval.finish is None:
        finish = " " * 19
        duration = " " * 8
    else:
        finish = format_timestamp(interval.finish, tz)
        duration = format_duration(interval.finish - interval.start)
    return (
        f"{start:<{START_WIDTH}} {finish:<{FINISH_WIDTH}} "
        f"{duration:<{DURATION_WIDTH}} {interval.process_name}"
    )


def render_table(intervals: Iterable[Interval], tz: tzinfo | None = None) -> str:
    rows = sort_intervals(intervals)
    if not rows:
        return EMPTY_MESSAGE

    lines = [
        f"{'Start':<{START_WIDTH}} {'Finish':<{FINISH_WIDTH}} {'Duration':<{DURATION_WIDTH}} Process",
        "-" * RULE_WIDTH,
    ]
    lines.extend(format_row(interval, tz) for interval in rows)
    return "\n".join(lines)


def render_json(intervals: Iterable[Interval], tz: tzinfo | None = None) -> str:
    """JSON array, newest first. Open intervals carry null finish/duration."""
    out = []
    for interval in sort_intervals(intervals):
        if interval.finish is None:
            finish = duration = seconds = None
        else:
            delta = interval.finish - interval.start
            finish = format_timestamp(interval.finish, tz)
            duration = format_duration(delta)
            seconds = int(delta.total_seconds())
        out.append({
            "start": format_timestamp(interval.start, tz),
            "finish": finish,
            "duration": duration,
            "duration_seconds": seconds,
            "process": interval.process_name,
        })
    return json.dumps(out, indent=2)


def get_renderer(output_format: str = "text"):
    """Factory that returns the renderer for an --output value."""
    if output_format == "json":
        return render_json
    return render_table
