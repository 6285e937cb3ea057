from __future__ import annotations

import io
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from component_import.models.validation import ValidationReport

"""Flat, delimited export of a validation report (one line per issue)."""

__all__ = [
    "EXPORT_COLUMNS",
    "report_frame",
    "export_report",
    "write_report",
]

EXPORT_COLUMNS = ["row", "field", "category", "code", "message", "value", "recommendation"]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def report_frame(report: ValidationReport) -> pd.DataFrame:
    records = [
        {
            "row": issue.row,
            "field": issue.field or "",
            "category": issue.category.value,
            "code": issue.code,
            "message": issue.message,
            "value": _cell(issue.value),
            "recommendation": issue.recommendation or "",
        }
        for issue in report.issues()
    ]
    return pd.DataFrame.from_records(records, columns=EXPORT_COLUMNS)


def export_report(report: ValidationReport, delimiter: str = ",") -> str:
    buf = io.StringIO()
    report_frame(report).to_csv(buf, sep=delimiter, index=False, lineterminator="\n")
    return buf.getvalue()


def write_report(report: ValidationReport, path: Path, delimiter: str = ",") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(export_report(report, delimiter), encoding="utf-8")
    return path
