"""Record normalizer: pull identity, timestamp, and image name out of one raw record.

A record is either accepted as a NormalizedEvent or rejected. Rejection is
never an error; the caller simply skips the record.
"""

import ntpath

from proctrack.models import EventKind, IdentityKey, NormalizedEvent, RawRecord, TimeWindow

# (path field, pid field, logon field) per event kind
REQUIRED_FIELDS = {
    EventKind.START: ("NewProcessName", "NewProcessId", "SubjectLogonId"),
    EventKind.STOP: ("ProcessName", "ProcessId", "SubjectLogonId"),
}

REJECT_IRRELEVANT = "irrelevant"
REJECT_OUTSIDE_WINDOW = "outside-window"
REJECT_MISSING_FIELD = "missing-field"
REJECT_NAME_MISMATCH = "name-mismatch"


def image_name(path: str) -> str:
    """File-name component of a Windows or POSIX style path."""
    return ntpath.basename(path.strip())


def normalize_process_name(name_or_path: str, suffix: str = ".exe") -> str:
    """Reduce user input to a bare image name carrying the executable suffix."""
    name = image_name(name_or_path or "")
    if suffix and not name.lower().endswith(suffix.lower()):
        name += suffix
    return name


def _field(record: RawRecord, name: str) -> str | None:
    value = record.fields.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def classify_record(
    record: RawRecord,
    target_name: str,
    window: TimeWindow,
) -> tuple[NormalizedEvent | None, str | None]:
    """Return (event, None) for an accepted record or (None, reason) for a rejected one."""
    if record.kind not in REQUIRED_FIELDS:
        return None, REJECT_IRRELEVANT

    if not window.contains(record.timestamp):
        return None, REJECT_OUTSIDE_WINDOW

    path_field, pid_field, logon_field = REQUIRED_FIELDS[record.kind]
    path = _field(record, path_field)
    if path is None:
        return None, REJECT_MISSING_FIELD

    name = image_name(path)
    if name.lower() != target_name.lower():
        return None, REJECT_NAME_MISMATCH

    pid = _field(record, pid_field)
    logon_id = _field(record, logon_field)
    if pid is None or logon_id is None:
        return None, REJECT_MISSING_FIELD

    event = NormalizedEvent(
        kind=record.kind,
        key=IdentityKey(process_id=pid, logon_id=logon_id),
        timestamp=record.timestamp,
        process_name=name,
    )
    return event, None


def normalize_record(
    record: RawRecord,
    target_name: str,
    window: TimeWindow,
) -> NormalizedEvent | None:
    """Normalize a single record. Returns None when the record should be skipped."""
    event, _ = classify_record(record, target_name, window)
    return event
