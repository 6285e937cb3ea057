from __future__ import annotations

import json
import re
from pathlib import Path

from component_import.logging.error_log import UNKNOWN_ROW, ErrorLogBuffer
from component_import.models.error_record import ErrorRecord
from component_import.models.processing_result import InstanceFailure
from component_import.models.validation import IssueCategory, ValidationIssue

KEYS = {"timestamp", "file", "row", "code", "message"}


def test_error_record_json_line():
    rec = ErrorRecord.create("takeoff.xlsx", 10, "DRAWING_NOT_FOUND", "Drawing P-9 not found")
    data = json.loads(rec.to_json_line())
    assert set(data) == KEYS
    assert data["row"] == 10
    assert data["timestamp"].endswith("Z")


def test_flush_writes_json_lines(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    buf.record("takeoff.xlsx", 2, "SCHEMA_REQUIRED", "component_id is required")
    buf.record("takeoff.xlsx", 0, "MISSING_REQUIRED_COLUMN", "no drawing column")
    path = buf.flush()

    assert path is not None and path.parent == tmp_path / "logs"
    assert re.fullmatch(r"errors-\d{8}-\d{6}\.log", path.name)
    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["row"] for line in lines] == [2, UNKNOWN_ROW]
    assert all(set(line) == KEYS for line in lines)
    assert len(buf) == 0


def test_flush_appends_to_same_file(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path)
    buf.record("f.xlsx", 1, "A", "one")
    first = buf.flush()
    buf.record("f.xlsx", 2, "B", "two")
    assert buf.flush() == first
    assert len(first.read_text(encoding="utf-8").splitlines()) == 2


def test_empty_flush_creates_nothing(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    assert buf.flush() is None
    assert not (tmp_path / "logs").exists()


def test_record_issues_and_failures(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path)
    buf.record_issues("f.xlsx", [
        ValidationIssue(row=4, field="test_pressure", category=IssueCategory.ERROR,
                        code="NEGATIVE_PRESSURE", message="Test pressure cannot be negative"),
    ])
    buf.record_failures("f.xlsx", [
        InstanceFailure("VLV-1 (2 of 3)", (5, 9), "PERSISTENCE_CONFLICT", "duplicate key", 1),
        InstanceFailure("VLV-2", (), "CHUNK_ABORTED", "not attempted"),
    ])
    records = buf.records
    assert [(r.row, r.code) for r in records] == [
        (4, "NEGATIVE_PRESSURE"),
        (5, "PERSISTENCE_CONFLICT"),
        (UNKNOWN_ROW, "CHUNK_ABORTED"),
    ]
    assert records[1].message == "VLV-1 (2 of 3): duplicate key"
