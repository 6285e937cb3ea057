from __future__ import annotations

from ..models.processing_result import ImportResult

"""SUMMARY line rendering for an import run.

Format:
SUMMARY rows={n} consolidated={n} created={n} updated={n} skipped={n}
errors={n} outcome={outcome} elapsed_sec={sec}
"""

__all__ = ["render_summary_line", "format_seconds"]


def format_seconds(value: float) -> str:
    """Render seconds without trailing zeros or scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: ImportResult) -> str:
    """Render a SUMMARY line from an ImportResult.

    >>> from component_import.models import ImportOutcome, ImportSummary, ValidationReport
    >>> s = ImportSummary(total_rows=3, consolidated=2, created=5, updated=0, skipped=0, errors=0,
    ...                   elapsed_seconds=2.0)
    >>> r = ImportResult(summary=s, report=ValidationReport(), outcome=ImportOutcome.FULLY_IMPORTED)
    >>> render_summary_line(r)
    'SUMMARY rows=3 consolidated=2 created=5 updated=0 skipped=0 errors=0 outcome=FULLY_IMPORTED elapsed_sec=2'
    """
    s = result.summary
    outcome = "DRY_RUN" if result.dry_run else result.outcome.value
    return (
        f"SUMMARY rows={s.total_rows} "
        f"consolidated={s.consolidated} "
        f"created={s.created} "
        f"updated={s.updated} "
        f"skipped={s.skipped} "
        f"errors={s.errors} "
        f"outcome={outcome} "
        f"elapsed_sec={format_seconds(s.elapsed_seconds)}"
    )
