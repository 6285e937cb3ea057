from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from .candidate import IdentityKey, ImportCandidate

"""Validation report models.

A ValidationIssue is immutable once created. ValidationReport accumulates
issues for the whole file and splits rows into valid candidates and invalid
rows. Row 0 marks a file-level issue.
"""

__all__ = [
    "IssueCategory",
    "ValidationStage",
    "ValidationIssue",
    "InvalidRow",
    "ValidationReport",
]


class IssueCategory(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationStage(IntEnum):
    """Escalating validation depth; each stage includes the previous one."""
    FORMAT_CHECK = 1
    PREVIEW_VALIDATION = 2
    FULL_IMPORT_VALIDATION = 3


@dataclass(frozen=True)
class ValidationIssue:
    row: int  # source row number, 0 for file-level issues
    field: str | None
    category: IssueCategory
    code: str  # UPPER_SNAKE_CASE machine code
    message: str
    value: Any = None  # offending value as read
    recommendation: str | None = None

    @property
    def is_error(self) -> bool:
        return self.category is IssueCategory.ERROR


@dataclass(frozen=True)
class InvalidRow:
    row_number: int
    values: dict[str, Any]  # raw values as read
    issues: tuple[ValidationIssue, ...]


@dataclass
class ValidationReport:
    """Structured result of one validation pass."""
    stage: ValidationStage = ValidationStage.FULL_IMPORT_VALIDATION
    total_rows: int = 0
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    infos: list[ValidationIssue] = field(default_factory=list)
    valid_rows: list[ImportCandidate] = field(default_factory=list)
    invalid_rows: list[InvalidRow] = field(default_factory=list)
    deduplicated_keys: list[IdentityKey] = field(default_factory=list)
    duplicate_ids: list[str] = field(default_factory=list)
    missing_drawings: list[str] = field(default_factory=list)
    inheritance_applied: int = 0
    recommendations: list[str] = field(default_factory=list)

    def add(self, issue: ValidationIssue) -> ValidationIssue:
        if issue.category is IssueCategory.ERROR:
            self.errors.append(issue)
        elif issue.category is IssueCategory.WARNING:
            self.warnings.append(issue)
        else:
            self.infos.append(issue)
        return issue

    def extend(self, issues) -> None:
        for issue in issues:
            self.add(issue)

    def issues(self) -> list[ValidationIssue]:
        """All issues ordered by row, then errors before warnings before infos."""
        rank = {IssueCategory.ERROR: 0, IssueCategory.WARNING: 1, IssueCategory.INFO: 2}
        merged = [*self.errors, *self.warnings, *self.infos]
        return sorted(merged, key=lambda i: (i.row, rank[i.category]))

    @property
    def valid_count(self) -> int:
        return len(self.valid_rows)

    @property
    def invalid_count(self) -> int:
        return len(self.invalid_rows)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    @property
    def info_count(self) -> int:
        return len(self.infos)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def codes(self) -> list[str]:
        return [i.code for i in self.issues()]
