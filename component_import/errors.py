from __future__ import annotations

from typing import Any

"""Exception taxonomy for the component import engine.

Fatal errors (FormatError and its subclasses, StoreConnectionError, ConfigError)
abort a run before any partial result is produced. Everything else is raised
inside a row or chunk boundary and converted into a report entry there.
"""

__all__ = [
    "ImportEngineError",
    "FormatError",
    "UnsupportedFormatError",
    "EmptyFileError",
    "CoercionError",
    "TemplateIntegrityError",
    "PersistenceConflict",
    "StoreConnectionError",
]


class ImportEngineError(Exception):
    """Base class for all import engine errors."""


class FormatError(ImportEngineError):
    """The uploaded buffer cannot be read as a table."""


class UnsupportedFormatError(FormatError):
    """Magic bytes / extension / mime do not describe a known spreadsheet."""


class EmptyFileError(FormatError):
    """The table holds a header but zero data rows."""


class CoercionError(ImportEngineError):
    """A cell value could not be converted to the canonical field type."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.value = value
        self.message = message


class TemplateIntegrityError(ImportEngineError):
    """A resolved milestone template holds no milestone definitions."""

    def __init__(self, template_name: str, template_id: str | None = None) -> None:
        super().__init__(f"Template {template_name} has no milestone definitions")
        self.template_name = template_name
        self.template_id = template_id


class PersistenceConflict(ImportEngineError):
    """A chunk write collided with stored rows (unique key or stale instance numbers)."""


class StoreConnectionError(ImportEngineError):
    """The backing store is unreachable; the run cannot continue."""
