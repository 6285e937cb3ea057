from __future__ import annotations

from component_import.models.candidate import IdentityKey, ImportCandidate, ImportKind
from component_import.models.validation import ValidationReport
from component_import.services.consolidation import consolidate


def _c(row: int, item: str, qty: int = 1, size: str | None = None, drawing: str = "P-001") -> ImportCandidate:
    return ImportCandidate(
        row_number=row, kind=ImportKind.COMPONENT, drawing_ref=drawing, component_id=item,
        category="VALVE", size=size, quantity=qty,
    )


def test_repeated_keys_fold_into_one_candidate():
    result = consolidate([_c(2, "A", 2), _c(3, "B"), _c(4, "A", 3)])
    assert [cc.identity_key.item_id for cc in result.candidates] == ["A", "B"]
    a = result.candidates[0]
    assert a.quantity == 5
    assert a.source_rows == (2, 4)
    assert a.candidate.row_number == 2
    assert result.duplicates_consolidated == 1


def test_quantity_is_conserved():
    rows = [_c(i, f"T{i % 4}", qty=i % 3 + 1) for i in range(2, 40)]
    result = consolidate(rows)
    assert sum(cc.quantity for cc in result.candidates) == sum(c.quantity for c in rows)
    assert len({cc.identity_key for cc in result.candidates}) == len(result.candidates)


def test_size_and_drawing_scope_the_key():
    result = consolidate([
        _c(2, "A", size='2"'),
        _c(3, "A", size='4"'),
        _c(4, "A", size='2"', drawing="P-002"),
    ])
    assert len(result.candidates) == 3
    assert result.merges == {}


def test_merges_recorded_on_report():
    report = ValidationReport()
    consolidate([_c(2, "A"), _c(3, "A"), _c(4, "A")], report)
    assert report.deduplicated_keys == [IdentityKey("P-001", "A", "")]
    assert [i.code for i in report.infos] == ["DUPLICATE_MERGED"]
    assert report.infos[0].row == 2
    assert "rows 2, 3, 4" in report.infos[0].message
