"""Command-line entrypoint (``python -m component_import.cli``)."""

from .__main__ import main

__all__ = ["main"]
