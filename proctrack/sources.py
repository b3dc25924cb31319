"""Record sources: oldest-first streams of RawRecord from exported or live event logs.

Every source is a generator. Failures surface as SourceError subclasses so
the correlation loop can stop and still report what it already has.
"""

import json
import logging
import re
import sys
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from typing import Generator, Mapping

from proctrack.config import Config
from proctrack.errors import SourceAccessDenied, SourceError, SourceReadFailure
from proctrack.models import EventKind, RawRecord

logger = logging.getLogger(__name__)

SOURCE_KINDS = ("eventlog", "xml", "jsonl")
READ_CHUNK_SIZE = 64 * 1024
ERROR_ACCESS_DENIED = 5

# 2024-01-01T10:00:00.1234567Z: Windows writes 7 fractional digits
_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[T ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?\s*(Z|[+-]\d{2}:?\d{2})?$"
)

RecordStream = Generator[RawRecord, None, None]


def kind_map(config: Config) -> dict[int, EventKind]:
    return {
        config.start_event_id: EventKind.START,
        config.stop_event_id: EventKind.STOP,
    }


def parse_timestamp(text: str | None) -> datetime | None:
    """Parse an ISO-8601 event timestamp into an aware datetime (UTC if no offset)."""
    if not text:
        return None
    match = _TIMESTAMP_RE.match(text.strip())
    if not match:
        return None

    date_part, time_part, fraction, offset = match.groups()
    try:
        ts = datetime.strptime(f"{date_part} {time_part}", "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None
    if fraction:
        ts = ts.replace(microsecond=int(fraction[:6].ljust(6, "0")))

    if offset is None or offset == "Z":
        return ts.replace(tzinfo=timezone.utc)
    sign = 1 if offset[0] == "+" else -1
    digits = offset[1:].replace(":", "")
    delta = timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))
    return ts.replace(tzinfo=timezone(sign * delta))


def _to_int(value) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Event XML
# ---------------------------------------------------------------------------


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(elem: ET.Element, name: str) -> ET.Element | None:
    for child in elem:
        if _local(child.tag) == name:
            return child
    return None


def record_from_element(event: ET.Element, kinds: Mapping[int, EventKind]) -> RawRecord:
    """Build a RawRecord from one <Event> element, namespaced or not."""
    event_id = None
    timestamp = None
    data = {}

    system = _child(event, "System")
    if system is not None:
        id_elem = _child(system, "EventID")
        if id_elem is not None:
            event_id = _to_int(id_elem.text)
        created = _child(system, "TimeCreated")
        if created is not None:
            timestamp = parse_timestamp(created.get("SystemTime"))

    event_data = _child(event, "EventData")
    if event_data is not None:
        for item in event_data:
            name = item.get("Name")
            if _local(item.tag) == "Data" and name:
                data[name] = item.text or ""

    return RawRecord(
        kind=kinds.get(event_id),
        timestamp=timestamp,
        fields=data,
        event_id=event_id,
    )


def _open_for_read(path: str):
    try:
        return open(path, "r", encoding="utf-8-sig")
    except PermissionError as exc:
        raise SourceAccessDenied(f"access denied reading {path}") from exc
    except OSError as exc:
        raise SourceReadFailure(f"cannot open {path}: {exc}") from exc


def _finished_events(parser: ET.XMLPullParser, stack: list, kinds: Mapping[int, EventKind]) -> RecordStream:
    """Yield records for completed <Event> elements and detach them from their parent."""
    for action, elem in parser.read_events():
        if action == "start":
            stack.append(elem)
            continue
        stack.pop()
        if _local(elem.tag) == "Event":
            yield record_from_element(elem, kinds)
            if stack:
                stack[-1].remove(elem)


def iter_xml_events(path: str, kinds: Mapping[int, EventKind]) -> RecordStream:
    """Stream events from a `wevtutil qe /f:xml` style export.

    Bare concatenated <Event> elements are wrapped in a synthetic root so
    the pull parser sees a single document.
    """
    parser = ET.XMLPullParser(events=("start", "end"))
    stack = []
    f = _open_for_read(path)
    with f:
        try:
            first = f.read(READ_CHUNK_SIZE)
            wrapped = not first.lstrip().startswith("<?xml")
            if wrapped:
                parser.feed("<Events>")
            chunk = first
            while chunk:
                parser.feed(chunk)
                yield from _finished_events(parser, stack, kinds)
                chunk = f.read(READ_CHUNK_SIZE)
            if wrapped:
                parser.feed("</Events>")
            parser.close()
            yield from _finished_events(parser, stack, kinds)
        except ET.ParseError as exc:
            raise SourceReadFailure(f"malformed XML in {path}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise SourceReadFailure(f"invalid UTF-8 in {path}: {exc}") from exc
        except OSError as exc:
            raise SourceReadFailure(f"error reading {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# JSON Lines
# ---------------------------------------------------------------------------


def record_from_json(obj, kinds: Mapping[int, EventKind]) -> RawRecord:
    if not isinstance(obj, dict):
        return RawRecord(kind=None, timestamp=None)

    event_id = _to_int(obj.get("event_id"))
    raw_fields = obj.get("fields")
    fields = {}
    if isinstance(raw_fields, dict):
        fields = {str(k): str(v) for k, v in raw_fields.items() if v is not None}
    ts = obj.get("timestamp")
    return RawRecord(
        kind=kinds.get(event_id),
        timestamp=parse_timestamp(ts) if isinstance(ts, str) else None,
        fields=fields,
        event_id=event_id,
    )


def iter_jsonl_events(path: str, kinds: Mapping[int, EventKind]) -> RecordStream:
    """Stream events from a file with one JSON object per line."""
    f = _open_for_read(path)
    with f:
        try:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("%s:%d is not valid JSON, skipping", path, lineno)
                    obj = None
                yield record_from_json(obj, kinds)
        except UnicodeDecodeError as exc:
            raise SourceReadFailure(f"invalid UTF-8 in {path}: {exc}") from exc
        except OSError as exc:
            raise SourceReadFailure(f"error reading {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Live Windows event log
# ---------------------------------------------------------------------------


def build_xpath_query(event_ids, days: int | None = None) -> str:
    """XPath filter for the event IDs, optionally limited to the last `days` days."""
    ids = " or ".join(f"EventID={i}" for i in sorted(event_ids))
    condition = f"({ids})"
    if days:
        condition += f" and TimeCreated[timediff(@SystemTime) <= {days * 86_400_000}]"
    return f"*[System[{condition}]]"


def _win_error(exc, log_name: str) -> SourceError:
    if getattr(exc, "winerror", None) == ERROR_ACCESS_DENIED:
        return SourceAccessDenied(
            f"access denied to the {log_name} log; administrator privileges required"
        )
    return SourceReadFailure(f"error reading the {log_name} log: {exc}")


def iter_windows_events(
    log_name: str,
    kinds: Mapping[int, EventKind],
    days: int | None = None,
    batch_size: int = 64,
) -> RecordStream:
    """Query a live event log channel oldest-first through the Evt* API."""
    try:
        import pywintypes
        import win32evtlog
    except ImportError as exc:
        raise SourceReadFailure("reading the live event log requires pywin32 on Windows") from exc

    query = build_xpath_query(kinds.keys(), days)
    flags = win32evtlog.EvtQueryChannelPath | win32evtlog.EvtQueryForwardDirection
    logger.info("Querying %s log: %s", log_name, query)

    try:
        handle = win32evtlog.EvtQuery(log_name, flags, query)
    except pywintypes.error as exc:
        raise _win_error(exc, log_name) from exc

    while True:
        try:
            batch = win32evtlog.EvtNext(handle, batch_size)
        except pywintypes.error as exc:
            raise _win_error(exc, log_name) from exc
        if not batch:
            break

        for evt in batch:
            try:
                xml_text = win32evtlog.EvtRender(evt, win32evtlog.EvtRenderEventXml)
                elem = ET.fromstring(xml_text)
            except pywintypes.error as exc:
                raise _win_error(exc, log_name) from exc
            except ET.ParseError as exc:
                raise SourceReadFailure(f"unreadable event XML from {log_name}: {exc}") from exc
            yield record_from_element(elem, kinds)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def infer_source_kind(path: str | None) -> str | None:
    """Guess the source kind from a file suffix; no file means the live log."""
    if not path:
        return "eventlog"
    lowered = path.lower()
    if lowered.endswith(".xml"):
        return "xml"
    if lowered.endswith((".jsonl", ".ndjson")):
        return "jsonl"
    return None


def open_source(
    kind: str,
    path: str | None,
    config: Config,
    days: int | None = None,
) -> RecordStream:
    """Return the record stream for a source kind.

    Raises ValueError for a combination that can't be read at all.
    """
    kinds = kind_map(config)
    if kind == "xml":
        if not path:
            raise ValueError("--source xml requires --file")
        return iter_xml_events(path, kinds)
    if kind == "jsonl":
        if not path:
            raise ValueError("--source jsonl requires --file")
        return iter_jsonl_events(path, kinds)
    if kind == "eventlog":
        if sys.platform != "win32":
            raise ValueError("the live event log is only available on Windows; export it and use --file")
        return iter_windows_events(config.log_name, kinds, days=days)
    raise ValueError(f"unknown source kind: {kind}")
