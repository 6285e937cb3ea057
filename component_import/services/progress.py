from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from component_import.models.processing_result import ChunkOutcome

"""Chunk progress display with tqdm (TTY only).

One bar per import run, advanced by the persistence batcher's chunk callback.
In non-TTY environments (CI, piped output) no bar is created.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """Progress over persistence chunks.

    Use `on_chunk` as the batcher's metrics callback. Counters are kept
    whether or not the bar is displayed.
    """

    def __init__(self, total_chunks: int = 0, *, description: str = "Importing") -> None:
        self.total_chunks = total_chunks
        self.description = description
        self.completed = 0
        self.created = 0
        self.failed_chunks = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None = None
        if self.enabled:
            self.pbar = tqdm(
                total=total_chunks or None,
                desc=description,
                unit="chunk",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )

    def set_total(self, total_chunks: int) -> None:
        self.total_chunks = total_chunks
        if self.pbar is not None:
            self.pbar.total = total_chunks
            self.pbar.refresh()

    def on_chunk(self, outcome: ChunkOutcome) -> None:
        self.completed += 1
        self.created += outcome.created
        if outcome.status == "failed":
            self.failed_chunks += 1
        if self.pbar is not None:
            self.pbar.update(1)
            self.pbar.set_postfix(created=self.created, failed=self.failed_chunks)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
