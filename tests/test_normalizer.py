"""Tests for proctrack/normalizer.py"""

import unittest
from datetime import datetime

import pytest

from proctrack.models import EventKind, IdentityKey, RawRecord, TimeWindow
from proctrack.normalizer import (
    REJECT_IRRELEVANT,
    REJECT_MISSING_FIELD,
    REJECT_NAME_MISMATCH,
    REJECT_OUTSIDE_WINDOW,
    classify_record,
    image_name,
    normalize_process_name,
    normalize_record,
)

TS = datetime(2024, 1, 1, 10, 0, 0)
WINDOW = TimeWindow(since=datetime(2023, 12, 1))


def _start(path=r"C:\Program Files\Java\javaw.exe", pid="0x1a2c", logon="0x3e7", ts=TS):
    fields = {"NewProcessName": path, "NewProcessId": pid, "SubjectLogonId": logon}
    return RawRecord(kind=EventKind.START, timestamp=ts, fields={k: v for k, v in fields.items() if v is not None})


def _stop(path=r"C:\Program Files\Java\javaw.exe", pid="0x1a2c", logon="0x3e7", ts=TS):
    fields = {"ProcessName": path, "ProcessId": pid, "SubjectLogonId": logon}
    return RawRecord(kind=EventKind.STOP, timestamp=ts, fields={k: v for k, v in fields.items() if v is not None})


class TestNormalizeStart(unittest.TestCase):
    def test_accepts_matching_start(self):
        event = normalize_record(_start(), "javaw.exe", WINDOW)
        self.assertIsNotNone(event)
        self.assertEqual(event.kind, EventKind.START)
        self.assertEqual(event.key, IdentityKey("0x1a2c", "0x3e7"))
        self.assertEqual(event.timestamp, TS)
        self.assertEqual(event.process_name, "javaw.exe")

    def test_name_match_is_case_insensitive(self):
        event = normalize_record(_start(path=r"C:\JAVA\JavaW.EXE"), "javaw.exe", WINDOW)
        self.assertIsNotNone(event)
        self.assertEqual(event.process_name, "JavaW.EXE")

    def test_similar_name_does_not_match(self):
        record = _start(path=r"C:\Program Files\Java\notjavaw.exe")
        self.assertEqual(classify_record(record, "javaw.exe", WINDOW), (None, REJECT_NAME_MISMATCH))

    def test_missing_pid_rejected(self):
        record = _start(pid=None)
        self.assertEqual(classify_record(record, "javaw.exe", WINDOW), (None, REJECT_MISSING_FIELD))

    def test_blank_logon_id_rejected(self):
        record = _start(logon="  ")
        self.assertIsNone(normalize_record(record, "javaw.exe", WINDOW))

    def test_missing_path_rejected(self):
        record = _start(path=None)
        self.assertEqual(classify_record(record, "javaw.exe", WINDOW), (None, REJECT_MISSING_FIELD))

    def test_stop_fields_not_accepted_on_start(self):
        record = RawRecord(
            kind=EventKind.START,
            timestamp=TS,
            fields={"ProcessName": r"C:\javaw.exe", "ProcessId": "0x1", "SubjectLogonId": "0x2"},
        )
        self.assertIsNone(normalize_record(record, "javaw.exe", WINDOW))


class TestNormalizeStop(unittest.TestCase):
    def test_accepts_matching_stop(self):
        event = normalize_record(_stop(), "javaw.exe", WINDOW)
        self.assertEqual(event.kind, EventKind.STOP)
        self.assertEqual(event.key, IdentityKey("0x1a2c", "0x3e7"))

    def test_stop_and_start_share_key(self):
        start = normalize_record(_start(), "javaw.exe", WINDOW)
        stop = normalize_record(_stop(), "javaw.exe", WINDOW)
        self.assertEqual(start.key, stop.key)


class TestRejections(unittest.TestCase):
    def test_irrelevant_kind(self):
        record = RawRecord(kind=None, timestamp=TS, fields={"NewProcessName": "javaw.exe"}, event_id=4624)
        self.assertEqual(classify_record(record, "javaw.exe", WINDOW), (None, REJECT_IRRELEVANT))

    def test_before_window(self):
        record = _start(ts=datetime(2023, 11, 30))
        self.assertEqual(classify_record(record, "javaw.exe", WINDOW), (None, REJECT_OUTSIDE_WINDOW))

    def test_after_window(self):
        window = TimeWindow(since=datetime(2023, 1, 1), until=datetime(2023, 12, 31))
        self.assertEqual(classify_record(_start(), "javaw.exe", window), (None, REJECT_OUTSIDE_WINDOW))

    def test_missing_timestamp(self):
        record = _start(ts=None)
        self.assertEqual(classify_record(record, "javaw.exe", WINDOW), (None, REJECT_OUTSIDE_WINDOW))

    def test_open_window_accepts_anything_timestamped(self):
        self.assertIsNotNone(normalize_record(_start(), "javaw.exe", TimeWindow()))


class TestImageName:
    @pytest.mark.parametrize("path,expected", [
        (r"C:\Program Files\Java\javaw.exe", "javaw.exe"),
        ("C:/tools/app.exe", "app.exe"),
        ("/usr/bin/python3", "python3"),
        ("javaw.exe", "javaw.exe"),
        ("  javaw.exe  ", "javaw.exe"),
    ])
    def test_file_name_component(self, path, expected):
        assert image_name(path) == expected


class TestNormalizeProcessName:
    @pytest.mark.parametrize("raw,expected", [
        ("javaw", "javaw.exe"),
        ("javaw.exe", "javaw.exe"),
        ("JAVAW.EXE", "JAVAW.EXE"),
        (r"C:\Program Files\Java\javaw", "javaw.exe"),
        (" notepad ", "notepad.exe"),
        ("", ".exe"),
    ])
    def test_suffix_and_basename(self, raw, expected):
        assert normalize_process_name(raw) == expected

    def test_custom_suffix(self):
        assert normalize_process_name("tool", suffix=".bin") == "tool.bin"

    def test_empty_suffix_leaves_name(self):
        assert normalize_process_name("python3", suffix="") == "python3"


if __name__ == "__main__":
    unittest.main()
