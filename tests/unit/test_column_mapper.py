from __future__ import annotations

from component_import.models.candidate import ImportKind
from component_import.tabular.mapper import build_column_mapping, normalize_header


def test_normalize_header():
    assert normalize_header("  Drawing No. ") == "drawingno"
    assert normalize_header("X-Ray %") == "xray"


def test_component_synonyms_resolved():
    headers = ["DWG", "Cmdty Code", "QTY", "NPS", "Type", "Spec", "Test Pressure", "Notes"]
    m = build_column_mapping(headers, ImportKind.COMPONENT)
    assert m.as_dict() == {
        "drawing_id": "DWG",
        "component_id": "Cmdty Code",
        "quantity": "QTY",
        "size": "NPS",
        "type": "Type",
        "spec_code": "Spec",
        "test_pressure": "Test Pressure",
        "comments": "Notes",
    }
    assert m.missing_required() == []
    assert m.unmapped_headers == []


def test_keyword_pass_only_after_exact_matches():
    # "Drawing Rev" contains the drawing keyword but "Drawing" is an exact synonym
    m = build_column_mapping(["Drawing Rev", "Drawing", "Tag No"], ImportKind.COMPONENT)
    assert m.header_for("drawing_id") == "Drawing"
    assert m.header_for("component_id") == "Tag No"
    assert m.unmapped_headers == ["Drawing Rev"]


def test_keyword_containment():
    m = build_column_mapping(["ISO Drawing Ref.", "Commodity Code Ref"], ImportKind.COMPONENT)
    assert m.header_for("drawing_id") == "ISO Drawing Ref."
    assert m.header_for("component_id") == "Commodity Code Ref"


def test_inspection_column_does_not_claim_spec():
    m = build_column_mapping(["Drawing", "Tag", "Inspection Status"], ImportKind.COMPONENT)
    assert not m.is_mapped("spec_code")


def test_missing_required_reported():
    m = build_column_mapping(["Drawing", "Qty"], ImportKind.COMPONENT)
    assert m.missing_required() == ["component_id"]


def test_explicit_mapping_wins_and_bad_entries_dropped():
    headers = ["Iso", "Item", "Weird Column"]
    m = build_column_mapping(
        headers,
        ImportKind.COMPONENT,
        {"component_id": "Weird Column", "size": "Not There", "bogus": "Item"},
    )
    assert m.header_for("component_id") == "Weird Column"
    assert m.header_for("drawing_id") == "Iso"
    assert m.explicit_fields == frozenset({"component_id"})
    assert m.dropped_explicit == {"size": "Not There", "bogus": "Item"}


def test_weld_mapping():
    headers = ["Weld No", "Drawing Number", "Welder", "Weld Type", "Size", "Date Welded", "PMI", "PWHT"]
    m = build_column_mapping(headers, ImportKind.WELD)
    assert m.header_for("weld_id") == "Weld No"
    assert m.header_for("drawing_id") == "Drawing Number"
    assert m.header_for("welder_stencil") == "Welder"
    assert m.header_for("weld_type") == "Weld Type"
    assert m.header_for("weld_size") == "Size"
    assert m.header_for("date_welded") == "Date Welded"
    assert m.header_for("pmi_required") == "PMI"
    assert m.header_for("pwht_required") == "PWHT"
    assert m.missing_required() == []
