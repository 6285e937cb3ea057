from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from component_import.errors import CoercionError
from component_import.models.candidate import ImportCandidate, ImportKind
from component_import.models.row_data import RawRow
from component_import.models.validation import IssueCategory, ValidationIssue

if TYPE_CHECKING:  # pragma: no cover
    from component_import.services.categories import ComponentTypeMapper
    from component_import.tabular.mapper import ColumnMapping

"""Row normalizer / type coercer.

Every raw cell is first classified into a tagged Cell (NUMERIC, TEXT, DATE,
BOOLEAN, EMPTY); the per-field coercers switch on that tag so each failure
carries a precise message. normalize_row turns one RawRow into an
ImportCandidate plus the row-scoped issues raised while coercing it.
"""

__all__ = [
    "CellKind",
    "Cell",
    "classify_cell",
    "coerce_text",
    "coerce_number",
    "coerce_int",
    "coerce_bool",
    "coerce_date",
    "NormalizedRow",
    "normalize_row",
    "FIELD_TYPES",
]

EXCEL_EPOCH = date(1899, 12, 30)
MAX_SERIAL = 2958465  # 9999-12-31

_UNIT_SUFFIX = re.compile(r"(psig|psi|bar|kpa|%|\")", re.IGNORECASE)
_TRUE = {"true", "yes", "y", "1", "x", "t"}
_FALSE = {"false", "no", "n", "0", "f"}
DATE_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%b %d, %Y",
    "%Y/%m/%d",
    "%d.%m.%Y",
)


class CellKind(str, Enum):
    NUMERIC = "numeric"
    TEXT = "text"
    DATE = "date"
    BOOLEAN = "boolean"
    EMPTY = "empty"


@dataclass(frozen=True)
class Cell:
    kind: CellKind
    value: Any = None


EMPTY = Cell(CellKind.EMPTY)


def classify_cell(value: Any) -> Cell:
    if value is None:
        return EMPTY
    if isinstance(value, bool):
        return Cell(CellKind.BOOLEAN, value)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return EMPTY
        return Cell(CellKind.NUMERIC, value)
    if isinstance(value, (datetime, date)):
        return Cell(CellKind.DATE, value)
    text = str(value).strip()
    if not text:
        return EMPTY
    return Cell(CellKind.TEXT, text)


def _number_text(value: float | int) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def coerce_text(cell: Cell, field_name: str = "") -> str | None:
    if cell.kind is CellKind.EMPTY:
        return None
    if cell.kind is CellKind.NUMERIC:
        return _number_text(cell.value)
    if cell.kind is CellKind.DATE:
        value = cell.value
        return value.date().isoformat() if isinstance(value, datetime) else value.isoformat()
    if cell.kind is CellKind.BOOLEAN:
        return "TRUE" if cell.value else "FALSE"
    return cell.value


def coerce_number(cell: Cell, field_name: str = "") -> float | None:
    """Numeric value with unit suffixes (psi, bar, kPa, %, ") and thousands separators removed."""
    if cell.kind is CellKind.EMPTY:
        return None
    if cell.kind is CellKind.NUMERIC:
        return float(cell.value)
    if cell.kind is CellKind.TEXT:
        cleaned = _UNIT_SUFFIX.sub("", cell.value).replace(",", "").strip()
        try:
            number = float(cleaned)
        except ValueError:
            raise CoercionError(field_name, cell.value, f"'{cell.value}' is not a number") from None
        if math.isnan(number) or math.isinf(number):
            raise CoercionError(field_name, cell.value, f"'{cell.value}' is not a finite number")
        return number
    raise CoercionError(field_name, cell.value, f"{cell.kind.value} value cannot be used as a number")


def coerce_int(cell: Cell, field_name: str = "") -> int | None:
    number = coerce_number(cell, field_name)
    if number is None:
        return None
    if not float(number).is_integer():
        raise CoercionError(field_name, cell.value, f"'{cell.value}' is not a whole number")
    return int(number)


def coerce_bool(cell: Cell, field_name: str = "") -> bool:
    """true/false, yes/no, y/n, 1/0, x/blank."""
    if cell.kind is CellKind.EMPTY:
        return False
    if cell.kind is CellKind.BOOLEAN:
        return bool(cell.value)
    if cell.kind is CellKind.NUMERIC and cell.value in (0, 1):
        return bool(cell.value)
    if cell.kind is CellKind.TEXT:
        lowered = cell.value.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise CoercionError(field_name, cell.value, f"'{cell.value}' is not a yes/no value")


def _from_serial(serial: float, field_name: str, raw: Any) -> date:
    if not 1 <= serial <= MAX_SERIAL:
        raise CoercionError(field_name, raw, f"{raw} is outside the spreadsheet date range")
    return EXCEL_EPOCH + timedelta(days=int(serial))


def coerce_date(cell: Cell, field_name: str = "") -> date | None:
    """Spreadsheet serials (1899-12-30 epoch), ISO strings and common locale formats."""
    if cell.kind is CellKind.EMPTY:
        return None
    if cell.kind is CellKind.DATE:
        value = cell.value
        return value.date() if isinstance(value, datetime) else value
    if cell.kind is CellKind.NUMERIC:
        return _from_serial(float(cell.value), field_name, cell.value)
    if cell.kind is CellKind.TEXT:
        text = cell.value
        if re.fullmatch(r"\d+(\.\d+)?", text):
            return _from_serial(float(text), field_name, text)
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    raise CoercionError(field_name, cell.value, f"'{cell.value}' is not a recognised date")


_TEXT, _NUMBER, _BOOL, _DATE = "text", "number", "bool", "date"

FIELD_TYPES: dict[ImportKind, dict[str, str]] = {
    ImportKind.COMPONENT: {
        "drawing_id": _TEXT,
        "component_id": _TEXT,
        "type": _TEXT,
        "spec_code": _TEXT,
        "size": _TEXT,
        "description": _TEXT,
        "material": _TEXT,
        "area": _TEXT,
        "system": _TEXT,
        "test_package": _TEXT,
        "test_pressure": _NUMBER,
        "comments": _TEXT,
        "workflow_type": _TEXT,
    },
    ImportKind.WELD: {
        "weld_id": _TEXT,
        "drawing_id": _TEXT,
        "welder_stencil": _TEXT,
        "test_package": _TEXT,
        "test_pressure": _NUMBER,
        "spec_code": _TEXT,
        "pmi_required": _BOOL,
        "pwht_required": _BOOL,
        "pmi_complete_date": _DATE,
        "date_welded": _DATE,
        "comments": _TEXT,
        "weld_size": _TEXT,
        "xray_percentage": _NUMBER,
        "weld_type": _TEXT,
        "schedule": _TEXT,
        "base_metal": _TEXT,
    },
}

_COERCERS = {
    _TEXT: (coerce_text, "INVALID_TEXT"),
    _NUMBER: (coerce_number, "INVALID_NUMBER"),
    _BOOL: (coerce_bool, "INVALID_BOOLEAN"),
    _DATE: (coerce_date, "INVALID_DATE"),
}

# fields that become first-class candidate attributes rather than descriptive extras
_IDENTITY_FIELDS = {"drawing_id", "component_id", "weld_id", "type", "size", "spec_code", "test_pressure", "workflow_type"}


@dataclass
class NormalizedRow:
    row_number: int
    candidate: ImportCandidate | None
    fields: dict[str, Any] = field(default_factory=dict)  # canonical field -> typed value
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(i.is_error for i in self.issues)


def _quantity(raw_row: RawRow, mapping: ColumnMapping, issues: list[ValidationIssue]) -> int | None:
    header = mapping.header_for("quantity")
    if header is None:
        return 1
    raw = raw_row.get(header)
    cell = classify_cell(raw)
    # blank defaults to 1 with a warning; a present value that is not a whole
    # number >= 1 is an error, never defaulted (DESIGN.md, decisions: Quantity)
    if cell.kind is CellKind.EMPTY:
        issues.append(ValidationIssue(
            row=raw_row.row_number, field="quantity", category=IssueCategory.WARNING,
            code="QUANTITY_DEFAULTED", message="Quantity is blank, defaulted to 1", value=raw,
        ))
        return 1
    try:
        qty = coerce_int(cell, "quantity")
    except CoercionError as exc:
        qty = None
        message = exc.message
    else:
        message = f"Quantity must be at least 1, got {qty}"
    if qty is None or qty < 1:
        issues.append(ValidationIssue(
            row=raw_row.row_number, field="quantity", category=IssueCategory.ERROR,
            code="INVALID_QUANTITY", message=message, value=raw,
            recommendation="Enter a whole number of 1 or more",
        ))
        return None
    return qty


def normalize_row(
    raw_row: RawRow,
    mapping: ColumnMapping,
    kind: ImportKind,
    type_mapper: ComponentTypeMapper,
) -> NormalizedRow:
    """Coerce one raw row; candidate is None when any field failed to coerce."""
    issues: list[ValidationIssue] = []
    fields: dict[str, Any] = {}

    for field_name, field_type in FIELD_TYPES[kind].items():
        header = mapping.header_for(field_name)
        if header is None:
            continue
        raw = raw_row.get(header)
        coercer, code = _COERCERS[field_type]
        try:
            fields[field_name] = coercer(classify_cell(raw), field_name)
        except CoercionError as exc:
            issues.append(ValidationIssue(
                row=raw_row.row_number, field=field_name, category=IssueCategory.ERROR,
                code=code, message=exc.message, value=raw,
            ))

    quantity = _quantity(raw_row, mapping, issues)
    if quantity is not None:
        fields["quantity"] = quantity

    if any(i.is_error for i in issues):
        return NormalizedRow(raw_row.row_number, None, fields, issues)

    attributes = {
        k: v for k, v in fields.items()
        if k not in _IDENTITY_FIELDS and k != "quantity" and v is not None
    }
    if kind is ImportKind.WELD:
        candidate = ImportCandidate(
            row_number=raw_row.row_number,
            kind=kind,
            drawing_ref=fields.get("drawing_id") or "",
            component_id=fields.get("weld_id") or "",
            category="FIELD_WELD",
            raw_type=fields.get("weld_type"),
            size=fields.get("weld_size"),
            spec_code=fields.get("spec_code"),
            test_pressure=fields.get("test_pressure"),
            quantity=quantity or 1,
            attributes=attributes,
        )
    else:
        raw_type = fields.get("type")
        candidate = ImportCandidate(
            row_number=raw_row.row_number,
            kind=kind,
            drawing_ref=fields.get("drawing_id") or "",
            component_id=fields.get("component_id") or "",
            category=type_mapper.map_type(raw_type),
            raw_type=raw_type,
            size=fields.get("size"),
            spec_code=fields.get("spec_code"),
            test_pressure=fields.get("test_pressure"),
            quantity=quantity or 1,
            workflow_type=fields.get("workflow_type"),
            attributes=attributes,
        )
    return NormalizedRow(raw_row.row_number, candidate, fields, issues)
