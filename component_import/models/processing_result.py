from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .validation import ValidationReport

"""Result models for one import run.

ImportSummary carries the counts that end up on the SUMMARY line;
ImportResult bundles it with the validation report, persisted instance ids
and per-instance failures. ChunkOutcome / InstanceFailure are produced by the
persistence batcher.
"""

__all__ = [
    "ImportOutcome",
    "InstanceFailure",
    "ChunkOutcome",
    "ImportSummary",
    "ImportResult",
    "decide_outcome",
    "BatchStatsAccumulator",
]


class ImportOutcome(str, Enum):
    NOTHING_IMPORTED = "NOTHING_IMPORTED"
    PARTIALLY_IMPORTED = "PARTIALLY_IMPORTED"
    FULLY_IMPORTED = "FULLY_IMPORTED"


@dataclass(frozen=True)
class InstanceFailure:
    """An instance that was not written, with the reason attached."""
    label: str  # display label of the instance
    source_rows: tuple[int, ...]  # original sheet rows behind the instance
    code: str  # PERSISTENCE_CONFLICT / TEMPLATE_INTEGRITY / CHUNK_ABORTED ...
    message: str
    chunk_index: int | None = None


@dataclass(frozen=True)
class ChunkOutcome:
    """Per-chunk persistence statistics."""
    index: int  # 0-based chunk number
    size: int  # instances in the chunk
    status: str  # committed / failed / skipped
    created: int = 0
    updated: int = 0
    elapsed_seconds: float = 0.0
    error: str | None = None


@dataclass(frozen=True)
class ImportSummary:
    total_rows: int  # data rows read from the file
    consolidated: int  # identity keys after consolidation
    created: int  # instances inserted
    updated: int  # existing instances updated
    skipped: int  # identity keys skipped (already present)
    errors: int  # error issues + failed instances
    chunks: int = 0  # persistence chunks attempted
    elapsed_seconds: float = 0.0
    avg_chunk_seconds: float = 0.0
    p95_chunk_seconds: float = 0.0


@dataclass(frozen=True)
class ImportResult:
    """What a caller gets back from run_import."""
    summary: ImportSummary
    report: ValidationReport
    outcome: ImportOutcome
    instance_ids: list[str] = field(default_factory=list)
    failures: list[InstanceFailure] = field(default_factory=list)
    mapping: dict[str, str] = field(default_factory=dict)  # canonical field -> header
    dry_run: bool = False
    cancelled: bool = False

    @property
    def exit_code(self) -> int:
        """0 fully imported (or clean dry run), 2 otherwise."""
        if self.dry_run:
            return 0 if self.report.is_valid else 2
        return 0 if self.outcome is ImportOutcome.FULLY_IMPORTED else 2


def decide_outcome(created: int, updated: int, errors: int) -> ImportOutcome:
    if created + updated == 0:
        return ImportOutcome.NOTHING_IMPORTED
    if errors:
        return ImportOutcome.PARTIALLY_IMPORTED
    return ImportOutcome.FULLY_IMPORTED


class BatchStatsAccumulator:
    """Collects per-chunk timings and reports count / mean / p95."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Return (total_batches, avg_batch_seconds, p95_batch_seconds)."""
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 19th of 20 cut points
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method="inclusive"
            )[18]

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
