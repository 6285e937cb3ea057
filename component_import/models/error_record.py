from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for error logging.

Structured record written to the JSON Lines error log. row=-1 is the
sentinel for file-level and chunk-level failures where no single source row
is responsible.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Uploaded filename being imported
        row: Source row number (1-based). Use -1 when the row is unknown
        code: Machine code in UPPER_SNAKE_CASE (e.g. DRAWING_NOT_FOUND)
        message: Human readable description
    """
    timestamp: str
    file: str
    row: int
    code: str
    message: str

    @staticmethod
    def create(file: str, row: int, code: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(timestamp=ts, file=file, row=row, code=code, message=message)

    def to_json_line(self) -> str:
        """Serialize to one JSON line without extra keys."""
        return json.dumps(asdict(self), ensure_ascii=False)
