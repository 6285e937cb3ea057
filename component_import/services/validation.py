from __future__ import annotations

import logging
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any

from jsonschema import Draft7Validator

from component_import.db.store import DrawingRecord
from component_import.models.candidate import IdentityKey, ImportCandidate, ImportKind
from component_import.models.validation import (
    InvalidRow,
    IssueCategory,
    ValidationIssue,
    ValidationReport,
    ValidationStage,
)
from component_import.services.categories import MISC, ComponentTypeMapper
from component_import.services.instances import ExistingInstanceIndex
from component_import.tabular.coerce import normalize_row
from component_import.tabular.mapper import ColumnMapping
from component_import.tabular.reader import ParsedTable

"""Validation engine.

One escalating pipeline with three depths:

- FORMAT_CHECK: file shape only (required columns, row count, mapping)
- PREVIEW_VALIDATION: + per-row inheritance, schema and business rules
- FULL_IMPORT_VALIDATION: + store-backed duplicate and drawing reference checks

Rows are processed in fixed-size batches. Every per-row outcome depends only
on the row, the context and the identity keys seen earlier in the file, so
the batch size never changes the report. A failure inside one row is
converted into a VALIDATION_EXCEPTION issue for that row.
"""

__all__ = [
    "ValidationContext",
    "ValidationEngine",
    "COMPONENT_ROW_SCHEMA",
    "WELD_ROW_SCHEMA",
    "build_recommendations",
]

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9._-]+$")
_DRAWING_BAD_CHARS = re.compile(r'[<>:"/\\|?*]')

PRESSURE_LOW = 50
PRESSURE_HIGH = 10000
PRESSURE_VERY_HIGH = 15000
WELD_ID_HIGH = 9999

WELD_ROW_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["weld_id", "drawing_id"],
    "properties": {
        "weld_id": {"type": "string", "minLength": 1, "maxLength": 50},
        "drawing_id": {"type": "string", "minLength": 1, "maxLength": 100},
        "welder_stencil": {"type": "string", "maxLength": 15},
        "test_package": {"type": "string", "maxLength": 50},
        "test_pressure": {"type": "number"},
        "spec_code": {"type": "string", "maxLength": 20},
        "pmi_required": {"type": "boolean"},
        "pwht_required": {"type": "boolean"},
        "comments": {"type": "string", "maxLength": 500},
        "weld_size": {"type": "string", "maxLength": 20},
        "xray_percentage": {"type": "number", "minimum": 0, "maximum": 100},
        "weld_type": {"type": "string", "maxLength": 30},
        "schedule": {"type": "string", "maxLength": 20},
        "base_metal": {"type": "string", "maxLength": 50},
    },
}

COMPONENT_ROW_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["component_id", "drawing_id"],
    "properties": {
        "component_id": {"type": "string", "minLength": 1, "maxLength": 100},
        "drawing_id": {"type": "string", "minLength": 1, "maxLength": 100},
        "type": {"type": "string", "maxLength": 50},
        "spec_code": {"type": "string", "maxLength": 20},
        "size": {"type": "string", "maxLength": 20},
        "description": {"type": "string", "maxLength": 500},
        "material": {"type": "string", "maxLength": 100},
        "area": {"type": "string", "maxLength": 50},
        "system": {"type": "string", "maxLength": 50},
        "test_package": {"type": "string", "maxLength": 50},
        "test_pressure": {"type": "number"},
        "quantity": {"type": "integer", "minimum": 1},
        "comments": {"type": "string", "maxLength": 500},
        "workflow_type": {"type": "string", "maxLength": 30},
    },
}

FIELD_LABELS = {
    "weld_id": "Weld ID",
    "component_id": "Component ID",
    "drawing_id": "Drawing number",
    "welder_stencil": "Welder stencil",
    "test_package": "Test package",
    "test_pressure": "Test pressure",
    "spec_code": "Spec code",
    "comments": "Comments",
    "weld_size": "Weld size",
    "xray_percentage": "X-ray percentage",
    "weld_type": "Weld type",
    "description": "Description",
}

_SCHEMA_HINTS = {
    "required": "Fill in the required value",
    "minLength": "Fill in the required value",
    "maxLength": "Shorten the value to the allowed length",
    "type": "Check the value type",
    "minimum": "Enter a value within the allowed range",
    "maximum": "Enter a value within the allowed range",
}


@dataclass
class ValidationContext:
    project_id: str
    kind: ImportKind = ImportKind.COMPONENT
    stage: ValidationStage = ValidationStage.FULL_IMPORT_VALIDATION
    strict_mode: bool = False
    skip_duplicates: bool = False
    update_existing: bool = False
    create_missing_drawings: bool = False
    drawings: Mapping[str, DrawingRecord] = field(default_factory=dict)  # drawing ref -> stored drawing
    existing: ExistingInstanceIndex = field(default_factory=ExistingInstanceIndex)
    max_rows: int = 20000
    batch_size: int = 5000
    today: date | None = None  # reference date for date plausibility checks


def _label(field_name: str | None) -> str:
    if not field_name:
        return "Value"
    return FIELD_LABELS.get(field_name, field_name.replace("_", " ").capitalize())


def _years_shift(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year + years)
    except ValueError:  # Feb 29
        return day.replace(year=day.year + years, day=28)


def build_recommendations(report: ValidationReport) -> list[str]:
    recs: list[str] = []
    if report.error_count:
        recs.append(f"Fix {report.error_count} critical errors before import")
    if report.duplicate_ids:
        recs.append(f"Remove or rename {len(report.duplicate_ids)} duplicate IDs")
    if report.missing_drawings:
        recs.append(f"Add {len(report.missing_drawings)} missing drawings to project or verify drawing numbers")
    if report.warning_count > 5:
        recs.append("Review warnings for data quality improvements")
    if report.inheritance_applied:
        recs.append("Verify inherited values are correct")
    if report.valid_count > 10000:
        recs.append("Consider importing in smaller batches for better performance")
    return recs


class ValidationEngine:
    def __init__(self, context: ValidationContext, type_mapper: ComponentTypeMapper | None = None) -> None:
        self.context = context
        self.type_mapper = type_mapper or ComponentTypeMapper()
        schema = WELD_ROW_SCHEMA if context.kind is ImportKind.WELD else COMPONENT_ROW_SCHEMA
        self._schema = Draft7Validator(schema)
        self._today = context.today or date.today()

    # ---- file level -------------------------------------------------
    def _file_checks(self, table: ParsedTable, mapping: ColumnMapping, report: ValidationReport) -> bool:
        ctx = self.context
        report.add(ValidationIssue(
            row=0, field="context", category=IssueCategory.INFO, code="VALIDATION_START",
            message=f"Validating {table.row_count} {ctx.kind.value} records for project {ctx.project_id}",
        ))
        ok = True
        for field_name in mapping.missing_required():
            ok = False
            report.add(ValidationIssue(
                row=0, field=field_name, category=IssueCategory.ERROR, code="MISSING_REQUIRED_COLUMN",
                message=f"No column found for required field {_label(field_name)}",
                recommendation="Rename the column or supply an explicit column mapping",
            ))
        for field_name, header in mapping.dropped_explicit.items():
            report.add(ValidationIssue(
                row=0, field=field_name, category=IssueCategory.WARNING, code="MAPPING_IGNORED",
                message=f"Explicit mapping {field_name}={header} does not match a usable column", value=header,
            ))
        if table.row_count == 0:
            ok = False
            report.add(ValidationIssue(
                row=0, field="file", category=IssueCategory.ERROR, code="NO_DATA",
                message="No data rows found in file",
                recommendation="Ensure the file contains data below the header row",
            ))
        if table.truncated:
            report.add(ValidationIssue(
                row=0, field="file", category=IssueCategory.WARNING, code="ROWS_TRUNCATED",
                message=f"File holds more than {ctx.max_rows} rows; only the first {ctx.max_rows} were read",
                value=ctx.max_rows,
                recommendation="Split the file into smaller chunks",
            ))
        for header in mapping.unmapped_headers:
            report.add(ValidationIssue(
                row=0, field=None, category=IssueCategory.INFO, code="UNMAPPED_COLUMN",
                message=f"Column '{header}' is not imported", value=header,
            ))
        return ok

    # ---- per row ----------------------------------------------------
    def _inherit(self, candidate: ImportCandidate, fields: dict[str, Any], issues: list[ValidationIssue],
                 report: ValidationReport) -> ImportCandidate:
        drawing = self.context.drawings.get(candidate.drawing_ref)
        if drawing is None:
            return candidate
        changes: dict[str, Any] = {}
        inherited = set(candidate.inherited)
        if candidate.test_pressure is None and drawing.test_pressure is not None:
            changes["test_pressure"] = drawing.test_pressure
            inherited.add("test_pressure")
            issues.append(ValidationIssue(
                row=candidate.row_number, field="test_pressure", category=IssueCategory.WARNING,
                code="INHERITED_TEST_PRESSURE",
                message=f"Test pressure inherited from drawing: {drawing.test_pressure}",
                value=drawing.test_pressure,
            ))
        if not candidate.spec_code and drawing.spec_code:
            changes["spec_code"] = drawing.spec_code
            inherited.add("spec_code")
            issues.append(ValidationIssue(
                row=candidate.row_number, field="spec_code", category=IssueCategory.WARNING,
                code="INHERITED_SPEC_CODE",
                message=f"Spec code inherited from drawing: {drawing.spec_code}",
                value=drawing.spec_code,
            ))
        if not changes:
            return candidate
        report.inheritance_applied += 1
        fields.update(changes)
        return replace(candidate, inherited=frozenset(inherited), **changes)

    def _schema_issues(self, row_number: int, fields: dict[str, Any]) -> list[ValidationIssue]:
        record = {k: v for k, v in fields.items() if v is not None and v != ""}
        issues: list[ValidationIssue] = []
        reported: set[str | None] = set()
        for err in sorted(self._schema.iter_errors(record), key=lambda e: [str(p) for p in e.path]):
            if err.validator == "required":
                missing = [f for f in err.validator_value if f not in err.instance and f not in reported]
                if not missing:
                    continue
                field_name: str | None = missing[0]
                message = f"{_label(field_name)} is required and cannot be empty"
            else:
                field_name = str(err.path[0]) if err.path else None
                if err.validator == "maxLength":
                    message = f"{_label(field_name)} cannot exceed {err.validator_value} characters"
                elif err.validator in ("minimum", "maximum"):
                    message = f"{_label(field_name)} is out of range ({err.message})"
                else:
                    message = f"{_label(field_name)}: {err.message}"
            reported.add(field_name)
            issues.append(ValidationIssue(
                row=row_number, field=field_name, category=IssueCategory.ERROR,
                code=f"SCHEMA_{str(err.validator).upper()}", message=message,
                value=record.get(field_name) if field_name else None,
                recommendation=_SCHEMA_HINTS.get(str(err.validator)),
            ))
        return issues

    def _business_rules(self, c: ImportCandidate, fields: dict[str, Any]) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        row = c.row_number
        is_weld = c.kind is ImportKind.WELD
        id_field = "weld_id" if is_weld else "component_id"
        id_code = "WELD_ID" if is_weld else "COMPONENT_ID"

        def warn(field_name: str, code: str, message: str, value: Any, hint: str | None = None) -> None:
            issues.append(ValidationIssue(row, field_name, IssueCategory.WARNING, code, message, value, hint))

        item_id = c.component_id.strip()
        if item_id and not _SAFE_ID.match(item_id):
            warn(id_field, f"{id_code}_SPECIAL_CHARS", f"{_label(id_field)} contains special characters that may cause issues",
                 c.component_id, "Use only alphanumeric characters, dots, underscores, and hyphens")
        if is_weld and item_id.isdigit() and int(item_id) > WELD_ID_HIGH:
            warn(id_field, "WELD_ID_HIGH_NUMBER", f"Sequential weld ID is very high (>{WELD_ID_HIGH})", c.component_id)

        drawing = c.drawing_ref.strip()
        if drawing and len(drawing) < 3:
            warn("drawing_id", "DRAWING_NUMBER_SHORT", "Drawing number seems unusually short", c.drawing_ref)
        if _DRAWING_BAD_CHARS.search(drawing):
            warn("drawing_id", "DRAWING_NUMBER_INVALID_CHARS", "Drawing number contains characters that may cause system issues",
                 c.drawing_ref, 'Avoid using <>:"/\\|?* characters in drawing numbers')

        pressure = c.test_pressure
        if pressure is not None:
            if pressure < 0:
                issues.append(ValidationIssue(
                    row, "test_pressure", IssueCategory.ERROR, "NEGATIVE_PRESSURE", "Test pressure cannot be negative",
                    pressure, "Enter a positive pressure value or leave blank",
                ))
            elif pressure > PRESSURE_VERY_HIGH:
                warn("test_pressure", "PRESSURE_VERY_HIGH", f"Test pressure is unusually high (>{PRESSURE_VERY_HIGH:,} PSI)",
                     pressure, "Verify the pressure value is correct")
            elif pressure > PRESSURE_HIGH:
                warn("test_pressure", "PRESSURE_HIGH", f"Test pressure is outside typical range (>{PRESSURE_HIGH:,} PSI)", pressure)
            elif 0 < pressure < PRESSURE_LOW:
                warn("test_pressure", "PRESSURE_LOW", f"Test pressure seems unusually low (<{PRESSURE_LOW} PSI)", pressure)

        package = c.attributes.get("test_package")
        if package:
            package = str(package).strip()
            if len(package) < 3:
                warn("test_package", "TEST_PACKAGE_SHORT", "Test package number seems unusually short", package)
            if not _SAFE_ID.match(package):
                warn("test_package", "TEST_PACKAGE_SPECIAL_CHARS", "Test package contains special characters", package)

        if is_weld:
            pmi_date = fields.get("pmi_complete_date")
            pmi_required = fields.get("pmi_required")
            if pmi_date is not None:
                if pmi_date > _years_shift(self._today, 1):
                    warn("pmi_complete_date", "DATE_FUTURE", "PMI complete date is more than 1 year in the future", pmi_date)
                elif pmi_date < _years_shift(self._today, -2):
                    warn("pmi_complete_date", "DATE_OLD", "PMI complete date is more than 2 years in the past", pmi_date)
            if pmi_required is True and pmi_date is None:
                warn("pmi_complete_date", "PMI_REQUIRED_NO_DATE", "PMI is required but no completion date provided", None,
                     "Provide PMI completion date or set PMI Required to false")
            if pmi_date is not None and pmi_required is not True:
                warn("pmi_required", "PMI_DATE_NOT_REQUIRED", "PMI completion date provided but PMI not marked as required",
                     pmi_required)
        elif c.category == MISC:
            issues.append(ValidationIssue(
                row, "type", IssueCategory.INFO, "UNKNOWN_TYPE",
                f"Type '{c.raw_type or ''}' is not recognised, imported as {MISC}", c.raw_type,
            ))
        return issues

    def _duplicate_issues(self, c: ImportCandidate, seen: dict[IdentityKey, int],
                          report: ValidationReport) -> list[ValidationIssue]:
        ctx = self.context
        issues: list[ValidationIssue] = []
        key = c.identity_key
        id_field = "weld_id" if c.kind is ImportKind.WELD else "component_id"

        if ctx.stage >= ValidationStage.FULL_IMPORT_VALIDATION and key in ctx.existing:
            existing = ctx.existing.get(key)
            if ctx.skip_duplicates or ctx.update_existing:
                category = IssueCategory.INFO
            elif ctx.strict_mode:
                category = IssueCategory.ERROR
            else:
                category = IssueCategory.WARNING
            issues.append(ValidationIssue(
                row=c.row_number, field=id_field, category=category, code="DUPLICATE_EXISTING",
                message=f"{key} already has {existing.count} stored instance(s)", value=c.component_id,
                recommendation=None if category is IssueCategory.INFO else
                "Use skip duplicates or update existing, or remove the row",
            ))

        first_row = seen.get(key)
        if first_row is None:
            seen[key] = c.row_number
        elif c.kind is ImportKind.WELD:
            issues.append(ValidationIssue(
                row=c.row_number, field=id_field, category=IssueCategory.ERROR, code="DUPLICATE_IN_FILE",
                message=f"Duplicate weld ID found in import file (first seen on row {first_row})",
                value=c.component_id, recommendation="Ensure each weld ID appears only once in the file",
            ))
            if c.component_id not in report.duplicate_ids:
                report.duplicate_ids.append(c.component_id)
        return issues

    def _reference_issues(self, c: ImportCandidate, report: ValidationReport) -> list[ValidationIssue]:
        ctx = self.context
        if ctx.stage < ValidationStage.FULL_IMPORT_VALIDATION or not c.drawing_ref:
            return []
        if c.drawing_ref in ctx.drawings:
            return []
        if c.drawing_ref not in report.missing_drawings:
            report.missing_drawings.append(c.drawing_ref)
        if ctx.create_missing_drawings:
            return [ValidationIssue(
                row=c.row_number, field="drawing_id", category=IssueCategory.INFO, code="DRAWING_WILL_BE_CREATED",
                message=f"Drawing {c.drawing_ref} will be created", value=c.drawing_ref,
            )]
        category = IssueCategory.ERROR if ctx.strict_mode else IssueCategory.WARNING
        return [ValidationIssue(
            row=c.row_number, field="drawing_id", category=category, code="DRAWING_NOT_FOUND",
            message="Drawing number not found in project database", value=c.drawing_ref,
            recommendation="Verify the drawing number exists in the project or add the drawing first",
        )]

    def _validate_row(self, raw_row, mapping: ColumnMapping, seen: dict[IdentityKey, int],
                      report: ValidationReport) -> tuple[ImportCandidate | None, list[ValidationIssue]]:
        normalized = normalize_row(raw_row, mapping, self.context.kind, self.type_mapper)
        issues = list(normalized.issues)
        candidate = normalized.candidate
        if candidate is None:
            return None, issues

        fields = dict(normalized.fields)
        candidate = self._inherit(candidate, fields, issues, report)
        schema_issues = self._schema_issues(candidate.row_number, fields)
        issues.extend(schema_issues)
        if schema_issues:
            return None, issues
        issues.extend(self._business_rules(candidate, fields))
        issues.extend(self._duplicate_issues(candidate, seen, report))
        issues.extend(self._reference_issues(candidate, report))
        return candidate, issues

    def validate(self, table: ParsedTable, mapping: ColumnMapping) -> ValidationReport:
        ctx = self.context
        started = time.perf_counter()
        report = ValidationReport(stage=ctx.stage, total_rows=table.row_count)

        file_ok = self._file_checks(table, mapping, report)
        if ctx.stage is ValidationStage.FORMAT_CHECK or not file_ok:
            report.recommendations = build_recommendations(report)
            return report

        seen: dict[IdentityKey, int] = {}
        batch_size = max(ctx.batch_size, 1)
        for batch_start in range(0, table.row_count, batch_size):
            batch = table.rows[batch_start:batch_start + batch_size]
            logger.debug("validating rows %d-%d", batch_start + 1, batch_start + len(batch))
            for raw_row in batch:
                try:
                    candidate, issues = self._validate_row(raw_row, mapping, seen, report)
                except Exception as exc:  # row isolation
                    logger.debug("row %d raised during validation", raw_row.row_number, exc_info=True)
                    candidate = None
                    issues = [ValidationIssue(
                        row=raw_row.row_number, field="general", category=IssueCategory.ERROR,
                        code="VALIDATION_EXCEPTION", message=f"Unexpected validation error: {exc}",
                        recommendation="Check row data format",
                    )]
                report.extend(issues)
                if candidate is not None and not any(i.is_error for i in issues):
                    report.valid_rows.append(candidate)
                else:
                    report.invalid_rows.append(InvalidRow(
                        row_number=raw_row.row_number, values=dict(raw_row.values), issues=tuple(issues),
                    ))

        report.recommendations = build_recommendations(report)
        logger.info(
            "validation (%s) finished in %.2fs: %d valid, %d invalid, %d errors, %d warnings",
            ctx.stage.name, time.perf_counter() - started, report.valid_count, report.invalid_count,
            report.error_count, report.warning_count,
        )
        return report
