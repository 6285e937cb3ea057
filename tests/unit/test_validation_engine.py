from __future__ import annotations

from datetime import date

from component_import.db.store import DrawingRecord, ExistingInstances
from component_import.models.candidate import IdentityKey, ImportKind
from component_import.models.row_data import RawRow
from component_import.models.validation import IssueCategory, ValidationStage
from component_import.services.instances import ExistingInstanceIndex
from component_import.services.validation import ValidationContext, ValidationEngine
from component_import.tabular.mapper import build_column_mapping
from component_import.tabular.reader import ParsedTable

DRAWINGS = {
    "P-001": DrawingRecord("dwg-1", "P-001", test_pressure=150.0, spec_code="A1A"),
    "P-002": DrawingRecord("dwg-2", "P-002"),
}


def _table(rows: list[dict], headers: list[str] | None = None) -> ParsedTable:
    headers = headers or list(rows[0])
    return ParsedTable(
        headers=headers,
        rows=[RawRow(i + 2, dict(r)) for i, r in enumerate(rows)],
        detected_format="xlsx",
    )


def _validate(rows, kind=ImportKind.COMPONENT, headers=None, **ctx):
    ctx.setdefault("drawings", DRAWINGS)
    context = ValidationContext(project_id="proj-1", kind=kind, **ctx)
    table = _table(rows, headers)
    mapping = build_column_mapping(table.headers, kind)
    return ValidationEngine(context).validate(table, mapping)


def _codes(report, category=None):
    return [i.code for i in report.issues() if category is None or i.category is category]


def test_missing_required_column_stops_row_processing():
    report = _validate([{"Drawing": "P-001", "Qty": 1}])
    assert "MISSING_REQUIRED_COLUMN" in _codes(report, IssueCategory.ERROR)
    assert report.valid_rows == []
    assert report.invalid_rows == []
    assert all(i.row == 0 for i in report.errors)


def test_format_check_only_looks_at_shape():
    report = _validate(
        [{"Drawing": "NOPE", "Tag": "A", "Qty": -1}], stage=ValidationStage.FORMAT_CHECK
    )
    assert report.is_valid
    assert report.valid_rows == []
    assert _codes(report) == ["VALIDATION_START"]


def test_clean_rows_are_valid():
    report = _validate([
        {"Drawing": "P-002", "Tag": "VLV-1", "Type": "Gate Valve", "Test Pressure": 285},
        {"Drawing": "P-002", "Tag": "VLV-2", "Type": "Ball Valve", "Test Pressure": 285},
    ])
    assert report.is_valid
    assert report.valid_count == 2
    assert report.warning_count == 0


def test_reference_missing_drawing_strict_vs_flexible():
    rows = [{"Drawing": "P-999", "Tag": "VLV-1", "Test Pressure": 285}]

    strict = _validate(rows, strict_mode=True)
    assert "DRAWING_NOT_FOUND" in _codes(strict, IssueCategory.ERROR)
    assert strict.valid_count == 0
    assert strict.missing_drawings == ["P-999"]

    flexible = _validate(rows, strict_mode=False)
    assert "DRAWING_NOT_FOUND" in _codes(flexible, IssueCategory.WARNING)
    assert flexible.valid_count == 1

    create = _validate(rows, strict_mode=True, create_missing_drawings=True)
    assert "DRAWING_WILL_BE_CREATED" in _codes(create, IssueCategory.INFO)
    assert create.valid_count == 1


def test_inheritance_from_drawing():
    report = _validate([{"Drawing": "P-001", "Tag": "VLV-1"}])
    candidate = report.valid_rows[0]
    assert candidate.test_pressure == 150.0
    assert candidate.spec_code == "A1A"
    assert candidate.inherited == frozenset({"test_pressure", "spec_code"})
    assert {"INHERITED_TEST_PRESSURE", "INHERITED_SPEC_CODE"} <= set(_codes(report, IssueCategory.WARNING))
    assert report.inheritance_applied == 1
    assert "Verify inherited values are correct" in report.recommendations


def test_pressure_rules():
    report = _validate([
        {"Drawing": "P-002", "Tag": "A", "Test Pressure": -5},
        {"Drawing": "P-002", "Tag": "B", "Test Pressure": 20000},
        {"Drawing": "P-002", "Tag": "C", "Test Pressure": 12000},
        {"Drawing": "P-002", "Tag": "D", "Test Pressure": 10},
    ])
    by_row = {i.row: i.code for i in report.issues() if i.field == "test_pressure"}
    assert by_row == {2: "NEGATIVE_PRESSURE", 3: "PRESSURE_VERY_HIGH", 4: "PRESSURE_HIGH", 5: "PRESSURE_LOW"}
    assert [r.row_number for r in report.invalid_rows] == [2]


def test_identifier_and_drawing_character_checks():
    report = _validate([{"Drawing": "P|1", "Tag": "VLV#1", "Test Pressure": 285}], drawings={})
    warnings = set(_codes(report, IssueCategory.WARNING))
    assert {"COMPONENT_ID_SPECIAL_CHARS", "DRAWING_NUMBER_INVALID_CHARS"} <= warnings


def test_schema_max_length():
    report = _validate([{"Drawing": "P-002", "Tag": "X" * 101}])
    assert "SCHEMA_MAXLENGTH" in _codes(report, IssueCategory.ERROR)
    assert report.invalid_rows[0].row_number == 2


def test_blank_required_value_is_schema_error():
    report = _validate([{"Drawing": "P-002", "Tag": None, "Qty": 1}, {"Drawing": "P-002", "Tag": "B", "Qty": 1}])
    errors = [i for i in report.errors if i.row == 2]
    assert errors[0].code == "SCHEMA_REQUIRED"
    assert errors[0].field == "component_id"
    assert report.valid_count == 1


def test_unknown_type_is_info():
    report = _validate([{"Drawing": "P-002", "Tag": "A", "Type": "Widget", "Test Pressure": 285}])
    assert "UNKNOWN_TYPE" in _codes(report, IssueCategory.INFO)
    assert report.valid_rows[0].category == "MISC"


def test_component_repeats_in_file_are_not_errors():
    report = _validate([
        {"Drawing": "P-002", "Tag": "A", "Qty": 1, "Test Pressure": 285},
        {"Drawing": "P-002", "Tag": "A", "Qty": 2, "Test Pressure": 285},
    ])
    assert report.is_valid
    assert report.valid_count == 2


def test_weld_repeat_in_file_is_error():
    report = _validate(
        [{"Weld No": "W1", "Drawing": "P-002"}, {"Weld No": "W1", "Drawing": "P-002"}],
        kind=ImportKind.WELD,
    )
    dup = [i for i in report.errors if i.code == "DUPLICATE_IN_FILE"]
    assert [i.row for i in dup] == [3]
    assert report.duplicate_ids == ["W1"]
    assert report.valid_count == 1


def test_duplicate_against_store_by_mode():
    key = IdentityKey("P-002", "VLV-1", '2"')
    existing = ExistingInstanceIndex({key: ExistingInstances(max_instance=2, count=2)})
    rows = [{"Drawing": "P-002", "Tag": "VLV-1", "Size": '2"', "Test Pressure": 285}]

    flexible = _validate(rows, existing=existing)
    assert "DUPLICATE_EXISTING" in _codes(flexible, IssueCategory.WARNING)
    assert flexible.valid_count == 1

    strict = _validate(rows, existing=existing, strict_mode=True)
    assert "DUPLICATE_EXISTING" in _codes(strict, IssueCategory.ERROR)
    assert strict.valid_count == 0

    skipping = _validate(rows, existing=existing, strict_mode=True, skip_duplicates=True)
    assert "DUPLICATE_EXISTING" in _codes(skipping, IssueCategory.INFO)
    assert skipping.valid_count == 1


def test_preview_stage_skips_store_checks():
    key = IdentityKey("P-404", "VLV-1", "")
    existing = ExistingInstanceIndex({key: ExistingInstances(1, 1)})
    report = _validate(
        [{"Drawing": "P-404", "Tag": "VLV-1", "Test Pressure": 285}],
        stage=ValidationStage.PREVIEW_VALIDATION, strict_mode=True, existing=existing,
    )
    assert report.is_valid
    assert "DRAWING_NOT_FOUND" not in _codes(report)
    assert "DUPLICATE_EXISTING" not in _codes(report)


def test_weld_pmi_and_date_rules():
    today = date(2024, 6, 1)
    report = _validate(
        [
            {"Weld No": "W1", "Drawing": "P-002", "PMI Required": "yes", "PMI Date": None},
            {"Weld No": "W2", "Drawing": "P-002", "PMI Required": "yes", "PMI Date": "2020-01-01"},
            {"Weld No": "12345", "Drawing": "P-002", "PMI Required": "no", "PMI Date": "2024-05-01"},
        ],
        kind=ImportKind.WELD,
        today=today,
    )
    by_row: dict[int, set[str]] = {}
    for issue in report.warnings:
        by_row.setdefault(issue.row, set()).add(issue.code)
    assert by_row[2] == {"PMI_REQUIRED_NO_DATE"}
    assert by_row[3] == {"DATE_OLD"}
    assert by_row[4] == {"WELD_ID_HIGH_NUMBER", "PMI_DATE_NOT_REQUIRED"}


def test_batch_size_does_not_change_outcome():
    rows = [
        {"Weld No": f"W{i % 7}", "Drawing": "P-002" if i % 3 else "P-404", "Test Pressure": 10 * i}
        for i in range(1, 30)
    ]
    small = _validate(rows, kind=ImportKind.WELD, batch_size=4)
    large = _validate(rows, kind=ImportKind.WELD, batch_size=5000)
    assert small.issues() == large.issues()
    assert small.valid_rows == large.valid_rows


def test_row_exception_is_isolated(monkeypatch):
    context = ValidationContext(project_id="proj-1", drawings=DRAWINGS)
    table = _table([
        {"Drawing": "P-002", "Tag": "A", "Test Pressure": 285},
        {"Drawing": "P-002", "Tag": "B", "Test Pressure": 285},
        {"Drawing": "P-002", "Tag": "C", "Test Pressure": 285},
    ])
    engine = ValidationEngine(context)
    original = engine._business_rules

    def flaky(candidate, fields):
        if candidate.row_number == 3:
            raise RuntimeError("boom")
        return original(candidate, fields)

    monkeypatch.setattr(engine, "_business_rules", flaky)
    report = engine.validate(table, build_column_mapping(table.headers, ImportKind.COMPONENT))
    assert [i.code for i in report.errors] == ["VALIDATION_EXCEPTION"]
    assert report.errors[0].row == 3
    assert [c.component_id for c in report.valid_rows] == ["A", "C"]


def test_recommendations_summarise_report():
    report = _validate([{"Drawing": "P-999", "Tag": "A", "Test Pressure": -1}], strict_mode=True)
    assert report.recommendations[0] == f"Fix {report.error_count} critical errors before import"
    assert any("missing drawings" in r for r in report.recommendations)
