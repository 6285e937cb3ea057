from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""RawRow model for the component import engine.

A RawRow is one data row read from the uploaded table, before any column
mapping or type coercion. Values are whatever the reader produced (str, int,
float, datetime, bool or None).
"""

__all__ = [
    "RawRow",
]


@dataclass(frozen=True)
class RawRow:
    """One source row keyed by header name.

    row_number is the 1-based row number inside the source sheet, so the
    first data row under a single header row is row 2.
    """
    row_number: int  # Spreadsheet row number shown to operators
    values: dict[str, Any]  # Header -> raw cell value

    def get(self, header: str | None) -> Any:
        if header is None:
            return None
        return self.values.get(header)
