"""Spreadsheet import and reconciliation engine for project components and field welds."""

__version__ = "0.1.0"
