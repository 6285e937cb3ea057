from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any

import pandas as pd

from component_import.errors import EmptyFileError, FormatError, UnsupportedFormatError
from component_import.models.row_data import RawRow

"""Tabular parser: byte buffer -> headers + RawRows.

Pure transform. Format is decided from the magic bytes and must agree with the
file extension; CSV has no signature and is accepted from the extension or
declared mime type. Reading is done with pandas (openpyxl for .xlsx, xlrd for
legacy .xls).
"""

__all__ = [
    "ParsedTable",
    "detect_format",
    "parse_table",
    "MAX_FILE_BYTES",
    "LEGACY_MAX_COLUMNS",
]

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 100 * 1024 * 1024
LEGACY_MAX_COLUMNS = 27  # A..AA
DEFAULT_MAX_ROWS = 20000

ZIP_MAGIC = bytes.fromhex("504b0304")
OLE2_MAGIC = bytes.fromhex("d0cf11e0")

_EXTENSION_FORMATS = {
    ".xlsx": "xlsx",
    ".xlsm": "xlsx",
    ".xls": "xls",
    ".csv": "csv",
}
_CSV_MIMETYPES = {"text/csv", "text/plain", "application/csv"}
_ENGINES = {"xlsx": "openpyxl", "xls": "xlrd"}


@dataclass
class ParsedTable:
    headers: list[str]
    rows: list[RawRow]
    detected_format: str  # xlsx / xls / csv
    truncated: bool = False  # source held more than max_rows data rows
    sheet_name: str | None = None
    dropped_columns: list[int] = field(default_factory=list)  # 0-based indexes with blank headers

    @property
    def row_count(self) -> int:
        return len(self.rows)


def detect_format(buffer: bytes, filename: str, mimetype: str | None = None) -> str:
    """Return 'xlsx', 'xls' or 'csv' or raise UnsupportedFormatError."""
    ext = PurePath(filename or "").suffix.lower()
    ext_format = _EXTENSION_FORMATS.get(ext)
    head = buffer[:8]

    magic_format: str | None = None
    if head.startswith(ZIP_MAGIC):
        magic_format = "xlsx"
    elif head.startswith(OLE2_MAGIC):
        magic_format = "xls"

    if magic_format is not None:
        if ext_format is not None and ext_format != magic_format:
            raise UnsupportedFormatError(
                f"{filename}: extension {ext} does not match {magic_format} signature"
            )
        return magic_format

    declared_csv = ext_format == "csv" or (mimetype or "").split(";")[0].strip().lower() in _CSV_MIMETYPES
    if declared_csv and ext_format in (None, "csv"):
        if b"\x00" in buffer[:4096]:
            raise UnsupportedFormatError(f"{filename}: binary content declared as CSV")
        return "csv"
    raise UnsupportedFormatError(f"{filename}: not a known spreadsheet signature")


def _read_frame(buffer: bytes, fmt: str, sheet_name: str | None) -> tuple[pd.DataFrame, str | None]:
    if fmt == "csv":
        df = pd.read_csv(
            io.BytesIO(buffer),
            header=None,
            dtype=object,
            keep_default_na=False,
            skip_blank_lines=False,
            encoding="utf-8-sig",
        )
        return df, None
    target = sheet_name if sheet_name is not None else 0
    with pd.ExcelFile(io.BytesIO(buffer), engine=_ENGINES[fmt]) as book:
        resolved = target if isinstance(target, str) else str(book.sheet_names[target])
        df = book.parse(resolved, header=None, dtype=object)
    return df, resolved


def _clean_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        # numpy scalar -> python scalar
        return value.item()
    return value


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _unique_headers(raw_headers: list[Any]) -> tuple[list[tuple[int, str]], list[int]]:
    kept: list[tuple[int, str]] = []
    dropped: list[int] = []
    seen: dict[str, int] = {}
    for idx, raw in enumerate(raw_headers):
        value = _clean_value(raw)
        if _is_blank(value):
            dropped.append(idx)
            continue
        name = str(value).strip()
        if name in seen:
            seen[name] += 1
            name = f"{name}.{seen[name]}"
        else:
            seen[name] = 0
        kept.append((idx, name))
    return kept, dropped


def parse_table(
    buffer: bytes,
    filename: str,
    mimetype: str | None = None,
    *,
    max_rows: int = DEFAULT_MAX_ROWS,
    max_columns: int | None = None,
    header_row: int = 1,
    sheet_name: str | None = None,
) -> ParsedTable:
    """Read the first (or named) sheet of a spreadsheet/CSV buffer.

    header_row is the 1-based sheet row holding column names; every following
    non-empty row becomes a RawRow numbered by its sheet row.
    """
    if not buffer:
        raise EmptyFileError(f"{filename}: empty file")
    if len(buffer) > MAX_FILE_BYTES:
        raise UnsupportedFormatError(
            f"{filename}: file size {len(buffer)} exceeds {MAX_FILE_BYTES} bytes"
        )
    if header_row < 1:
        raise ValueError("header_row must be >= 1")

    fmt = detect_format(buffer, filename, mimetype)
    try:
        df, resolved_sheet = _read_frame(buffer, fmt, sheet_name)
    except FormatError:
        raise
    except Exception as exc:  # pandas / engine specific parse failures
        raise FormatError(f"{filename}: unreadable {fmt} content ({exc})") from exc

    column_cap = max_columns
    if fmt == "xls":
        column_cap = min(column_cap or LEGACY_MAX_COLUMNS, LEGACY_MAX_COLUMNS)
    if column_cap is not None and df.shape[1] > column_cap:
        df = df.iloc[:, :column_cap]

    if df.shape[0] < header_row:
        raise EmptyFileError(f"{filename}: no header row")

    header_cells, dropped = _unique_headers(df.iloc[header_row - 1].tolist())
    if not header_cells:
        raise EmptyFileError(f"{filename}: header row is blank")

    # whole sheet is read; blank rows do not count against max_rows
    rows: list[RawRow] = []
    truncated = False
    for offset, raw in enumerate(df.iloc[header_row:].itertuples(index=False, name=None)):
        values = {name: _clean_value(raw[idx]) for idx, name in header_cells}
        if all(_is_blank(v) for v in values.values()):
            continue
        if len(rows) >= max_rows:
            truncated = True
            break
        rows.append(RawRow(row_number=header_row + offset + 1, values=values))

    if not rows:
        raise EmptyFileError(f"{filename}: no data rows")

    if truncated:
        logger.warning("%s: more than %d data rows, extra rows not read", filename, max_rows)
    logger.debug("parsed %s as %s: %d columns, %d rows", filename, fmt, len(header_cells), len(rows))
    return ParsedTable(
        headers=[name for _, name in header_cells],
        rows=rows,
        detected_format=fmt,
        truncated=truncated,
        sheet_name=resolved_sheet,
        dropped_columns=dropped,
    )
