"""Correlation engine: pair process start events with their stop events.

Starts are queued per IdentityKey; a stop consumes the oldest queued start
for its key. The record stream must arrive oldest-first, otherwise a stop
would be paired with a start that happened after it.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from proctrack.errors import SourceError
from proctrack.models import (
    EventKind,
    IdentityKey,
    Interval,
    NormalizedEvent,
    PendingStart,
    RawRecord,
    TimeWindow,
)
from proctrack.normalizer import classify_record

logger = logging.getLogger(__name__)


class CorrelationEngine:
    """Per-run correlation state: pending-start queues plus emitted intervals."""

    def __init__(self):
        self._pending: dict[IdentityKey, deque[PendingStart]] = {}
        self._intervals: list[Interval] = []
        self.matched = 0
        self.unmatched_stops = 0

    @property
    def intervals(self) -> list[Interval]:
        return list(self._intervals)

    @property
    def pending_count(self) -> int:
        return sum(len(q) for q in self._pending.values())

    def observe_start(self, key: IdentityKey, timestamp: datetime, process_name: str) -> None:
        queue = self._pending.setdefault(key, deque())
        queue.append(PendingStart(timestamp=timestamp, process_name=process_name, key=key))

    def observe_stop(self, key: IdentityKey, timestamp: datetime) -> Interval | None:
        """Close the oldest pending start for key. Returns None for a stray stop."""
        queue = self._pending.get(key)
        if not queue:
            self.unmatched_stops += 1
            return None

        pending = queue.popleft()
        if not queue:
            del self._pending[key]

        interval = Interval(start=pending.timestamp, finish=timestamp, process_name=pending.process_name)
        self._intervals.append(interval)
        self.matched += 1
        return interval

    def observe(self, event: NormalizedEvent) -> None:
        if event.kind is EventKind.START:
            self.observe_start(event.key, event.timestamp, event.process_name)
        else:
            self.observe_stop(event.key, event.timestamp)

    def finalize(self) -> list[Interval]:
        """Drain every pending start as an open interval and return all intervals.

        Keys drain in first-seen order, each queue oldest-first.
        """
        for queue in self._pending.values():
            while queue:
                pending = queue.popleft()
                self._intervals.append(
                    Interval(start=pending.timestamp, finish=None, process_name=pending.process_name)
                )
        self._pending.clear()
        return self.intervals


@dataclass
class CorrelationStats:
    records_read: int = 0
    starts: int = 0
    stops: int = 0
    matched: int = 0
    unmatched_stops: int = 0
    open_intervals: int = 0
    out_of_order: int = 0
    dropped: dict[str, int] = field(default_factory=dict)


@dataclass
class CorrelationResult:
    intervals: list[Interval]
    stats: CorrelationStats
    error: SourceError | None = None

    @property
    def complete(self) -> bool:
        return self.error is None


def correlate(
    records: Iterable[RawRecord],
    target_name: str,
    window: TimeWindow | None = None,
) -> CorrelationResult:
    """Consume a record stream and correlate it into intervals.

    A SourceError raised while iterating ends consumption early; whatever
    was correlated so far is still returned, with the error attached.
    """
    window = window or TimeWindow()
    engine = CorrelationEngine()
    stats = CorrelationStats()
    drops = Counter()
    last_ts = None
    error = None

    try:
        for record in records:
            stats.records_read += 1
            event, reason = classify_record(record, target_name, window)
            if event is None:
                drops[reason] += 1
                continue

            if last_ts is not None and event.timestamp < last_ts:
                if stats.out_of_order == 0:
                    logger.warning(
                        "Record at %s arrived after %s; source is not oldest-first, pairing may be wrong",
                        event.timestamp, last_ts,
                    )
                stats.out_of_order += 1
            else:
                last_ts = event.timestamp

            if event.kind is EventKind.START:
                stats.starts += 1
            else:
                stats.stops += 1
            engine.observe(event)
    except SourceError as exc:
        logger.error("Stopped reading records: %s", exc)
        error = exc

    stats.matched = engine.matched
    stats.unmatched_stops = engine.unmatched_stops
    stats.open_intervals = engine.pending_count
    stats.dropped = dict(drops)
    intervals = engine.finalize()

    logger.info(
        "Read %d records: %d starts, %d stops, %d matched, %d unmatched stops, %d still open",
        stats.records_read, stats.starts, stats.stops, stats.matched,
        stats.unmatched_stops, stats.open_intervals,
    )
    logger.debug("Dropped records by reason: %s", stats.dropped)

    return CorrelationResult(intervals=intervals, stats=stats, error=error)
