from __future__ import annotations

from datetime import date, datetime

import pytest

from component_import.errors import CoercionError
from component_import.models.candidate import ImportKind
from component_import.models.row_data import RawRow
from component_import.services.categories import ComponentTypeMapper
from component_import.tabular.coerce import (
    CellKind,
    classify_cell,
    coerce_bool,
    coerce_date,
    coerce_int,
    coerce_number,
    coerce_text,
    normalize_row,
)
from component_import.tabular.mapper import build_column_mapping


def test_classify_cell():
    assert classify_cell(None).kind is CellKind.EMPTY
    assert classify_cell(float("nan")).kind is CellKind.EMPTY
    assert classify_cell("   ").kind is CellKind.EMPTY
    assert classify_cell(True).kind is CellKind.BOOLEAN
    assert classify_cell(3).kind is CellKind.NUMERIC
    assert classify_cell(datetime(2024, 1, 1)).kind is CellKind.DATE
    assert classify_cell("  abc ").value == "abc"


def test_coerce_text_drops_float_suffix():
    assert coerce_text(classify_cell(1234.0)) == "1234"
    assert coerce_text(classify_cell(12.5)) == "12.5"
    assert coerce_text(classify_cell(datetime(2024, 5, 6, 7, 8))) == "2024-05-06"
    assert coerce_text(classify_cell(None)) is None


@pytest.mark.parametrize(
    "raw,expected",
    [("150 psi", 150.0), ("1,480 PSIG", 1480.0), ("20 bar", 20.0), ("25%", 25.0), (740, 740.0)],
)
def test_coerce_number_strips_units(raw, expected):
    assert coerce_number(classify_cell(raw), "test_pressure") == expected


def test_coerce_number_rejects_text():
    with pytest.raises(CoercionError) as ei:
        coerce_number(classify_cell("high"), "test_pressure")
    assert ei.value.field == "test_pressure"
    assert ei.value.value == "high"


def test_coerce_int_requires_whole_number():
    assert coerce_int(classify_cell("3")) == 3
    with pytest.raises(CoercionError):
        coerce_int(classify_cell(2.5))


def test_coerce_bool_variants():
    assert coerce_bool(classify_cell("Yes")) is True
    assert coerce_bool(classify_cell("x")) is True
    assert coerce_bool(classify_cell("N")) is False
    assert coerce_bool(classify_cell(None)) is False
    assert coerce_bool(classify_cell(1)) is True
    with pytest.raises(CoercionError):
        coerce_bool(classify_cell("maybe"))


def test_coerce_date_serial_iso_and_locale():
    assert coerce_date(classify_cell(45352)) == date(2024, 3, 1)
    assert coerce_date(classify_cell("2024-03-01")) == date(2024, 3, 1)
    assert coerce_date(classify_cell("2024-03-01T10:00:00Z")) == date(2024, 3, 1)
    assert coerce_date(classify_cell(datetime(2024, 3, 1, 12))) == date(2024, 3, 1)
    with pytest.raises(CoercionError):
        coerce_date(classify_cell("someday"))
    with pytest.raises(CoercionError):
        coerce_date(classify_cell(0))


def _component_row(values: dict, row_number: int = 2):
    mapping = build_column_mapping(list(values), ImportKind.COMPONENT)
    return normalize_row(RawRow(row_number, values), mapping, ImportKind.COMPONENT, ComponentTypeMapper())


def test_normalize_component_row_builds_candidate():
    n = _component_row({
        "Drawing": "P-001", "Cmdty Code": 1001.0, "Qty": 3, "Size": '2"', "Type": "Gate Valve",
        "Test Pressure": "285 psi", "Description": "Gate valve 2in",
    })
    assert not n.has_errors
    c = n.candidate
    assert c.drawing_ref == "P-001"
    assert c.component_id == "1001"
    assert c.quantity == 3
    assert c.category == "VALVE"
    assert c.test_pressure == 285.0
    assert c.attributes == {"description": "Gate valve 2in"}
    assert c.identity_key == ("P-001", "1001", '2"')


def test_normalize_blank_quantity_defaults_with_warning():
    n = _component_row({"Drawing": "P-001", "Tag": "A", "Qty": None})
    assert n.candidate is not None
    assert n.candidate.quantity == 1
    assert [i.code for i in n.issues] == ["QUANTITY_DEFAULTED"]


@pytest.mark.parametrize("qty", [0, -2, 1.5, "lots"])
def test_normalize_invalid_quantity_is_row_error(qty):
    n = _component_row({"Drawing": "P-001", "Tag": "A", "Qty": qty})
    assert n.candidate is None
    assert [i.code for i in n.issues] == ["INVALID_QUANTITY"]


def test_normalize_coercion_failure_keeps_other_fields():
    n = _component_row({"Drawing": "P-001", "Tag": "A", "Test Pressure": "n/a"})
    assert n.candidate is None
    assert n.issues[0].code == "INVALID_NUMBER"
    assert n.issues[0].field == "test_pressure"
    assert n.fields["drawing_id"] == "P-001"


def test_normalize_weld_row():
    values = {"Weld No": "W-12", "Drawing": "P-002", "PMI": "yes", "Date Welded": "2024-02-10"}
    mapping = build_column_mapping(list(values), ImportKind.WELD)
    n = normalize_row(RawRow(5, values), mapping, ImportKind.WELD, ComponentTypeMapper())
    c = n.candidate
    assert c.kind is ImportKind.WELD
    assert c.component_id == "W-12"
    assert c.category == "FIELD_WELD"
    assert c.identity_key == ("P-002", "W-12", "")
    assert c.attributes["pmi_required"] is True
    assert c.attributes["date_welded"] == date(2024, 2, 10)
