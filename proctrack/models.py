"""Audit record and interval models shared by the normalizer, engine, and reporter."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, NamedTuple


class EventKind(Enum):
    START = "start"
    STOP = "stop"


@dataclass(frozen=True)
class RawRecord:
    kind: EventKind | None          # None = event type we don't correlate
    timestamp: datetime | None
    fields: Mapping[str, str] = field(default_factory=dict)
    event_id: int | None = None


class IdentityKey(NamedTuple):
    """(process-id, logon-session-id) exactly as written in the event.

    Both values are recycled by the OS, so a key only identifies a process
    relative to the order events arrive in.
    """
    process_id: str
    logon_id: str


@dataclass(frozen=True)
class NormalizedEvent:
    kind: EventKind
    key: IdentityKey
    timestamp: datetime
    process_name: str


@dataclass(frozen=True)
class PendingStart:
    timestamp: datetime
    process_name: str
    key: IdentityKey


@dataclass(frozen=True)
class Interval:
    start: datetime
    finish: datetime | None
    process_name: str

    @property
    def is_open(self) -> bool:
        return self.finish is None


@dataclass(frozen=True)
class TimeWindow:
    since: datetime | None = None
    until: datetime | None = None

    def contains(self, ts: datetime | None) -> bool:
        if ts is None:
            return False
        if self.since is not None and ts < self.since:
            return False
        if self.until is not None and ts > self.until:
            return False
        return True
