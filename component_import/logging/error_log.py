from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from component_import.models.error_record import ErrorRecord
from component_import.models.processing_result import InstanceFailure
from component_import.models.validation import ValidationIssue

"""Error log buffering.

- JSON Lines, fixed schema (timestamp, file, row, code, message; no extra keys)
- one `<log_dir>/errors-YYYYMMDD-HHMMSS.log` (UTC) per run, created on first flush
- records are buffered and written on flush()
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "UNKNOWN_ROW",
]

DEFAULT_LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"
UNKNOWN_ROW = -1


class ErrorLogBuffer:
    """In-memory buffer for error records; flush() appends JSON Lines.

    Serial use only; the file path is fixed on first access.
    """

    def __init__(self, log_dir: Path | str = DEFAULT_LOGS_DIR) -> None:
        self.log_dir = Path(log_dir)
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self.log_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def record(self, file: str, row: int | None, code: str, message: str) -> None:
        self.append(ErrorRecord.create(file, row if row else UNKNOWN_ROW, code, message))

    def record_issues(self, file: str, issues: Iterable[ValidationIssue]) -> None:
        for issue in issues:
            self.record(file, issue.row, issue.code, issue.message)

    def record_failures(self, file: str, failures: Iterable[InstanceFailure]) -> None:
        for f in failures:
            row = f.source_rows[0] if f.source_rows else UNKNOWN_ROW
            self.record(file, row, f.code, f"{f.label}: {f.message}")

    @property
    def records(self) -> list[ErrorRecord]:
        return list(self._records)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records; returns None when there was nothing to write."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
