from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from component_import.db.store import TransactionFacility
from component_import.errors import PersistenceConflict
from component_import.models.candidate import IdentityKey
from component_import.models.instance import ComponentInstance, InstanceUpdate
from component_import.models.processing_result import BatchStatsAccumulator, ChunkOutcome, InstanceFailure

"""Chunked transactional persistence.

Each chunk is written inside its own store transaction: an optimistic
re-read of the stored maximum instance number per key, component rows,
milestone rows, then any updates for keys in the chunk. A conflict rolls the
chunk back and fails its instances; later chunks continue unless
all_or_nothing is set, in which case the remaining chunks are not attempted.
Chunks committed before the failure stay committed. StoreConnectionError is
not caught here.
"""

__all__ = [
    "ChunkWork",
    "PersistenceResult",
    "PersistenceBatcher",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkWork:
    index: int
    instances: tuple[ComponentInstance, ...]
    updates: tuple[InstanceUpdate, ...] = ()

    @property
    def size(self) -> int:
        return len(self.instances) + len(self.updates)


@dataclass
class PersistenceResult:
    created_ids: list[str] = field(default_factory=list)
    updated: int = 0
    chunks: list[ChunkOutcome] = field(default_factory=list)
    failures: list[InstanceFailure] = field(default_factory=list)
    aborted: bool = False
    cancelled: bool = False
    chunk_stats: tuple[int, float, float] = (0, 0.0, 0.0)  # (count, mean, p95) seconds

    @property
    def created(self) -> int:
        return len(self.created_ids)


def _update_label(update: InstanceUpdate) -> str:
    return f"{update.key.item_id} (update)"


class PersistenceBatcher:
    def __init__(
        self,
        store: TransactionFacility,
        project_id: str,
        chunk_size: int = 200,
        all_or_nothing: bool = False,
        cancel_event: threading.Event | None = None,
        metrics_callback: Callable[[ChunkOutcome], None] | None = None,
        transaction_timeout_seconds: int | None = 30,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.store = store
        self.project_id = project_id
        self.chunk_size = chunk_size
        self.all_or_nothing = all_or_nothing
        self.cancel_event = cancel_event
        self.metrics_callback = metrics_callback
        self.transaction_timeout_seconds = transaction_timeout_seconds

    def plan(self, instances: Sequence[ComponentInstance], updates: Sequence[InstanceUpdate] = ()) -> list[ChunkWork]:
        """Split into chunks; an update rides with the first chunk holding its key."""
        slices = [tuple(instances[i:i + self.chunk_size]) for i in range(0, len(instances), self.chunk_size)]
        first_chunk: dict[IdentityKey, int] = {}
        for idx, chunk in enumerate(slices):
            for inst in chunk:
                first_chunk.setdefault(inst.key, idx)

        attached: dict[int, list[InstanceUpdate]] = {}
        leftover: list[InstanceUpdate] = []
        for update in updates:
            idx = first_chunk.get(update.key)
            if idx is None:
                leftover.append(update)
            else:
                attached.setdefault(idx, []).append(update)

        work = [ChunkWork(idx, chunk, tuple(attached.get(idx, ()))) for idx, chunk in enumerate(slices)]
        for i in range(0, len(leftover), self.chunk_size):
            work.append(ChunkWork(len(work), (), tuple(leftover[i:i + self.chunk_size])))
        return work

    def _write_chunk(self, chunk: ChunkWork) -> tuple[list[str], int]:
        lowest: dict[IdentityKey, int] = {}
        for inst in chunk.instances:
            lowest[inst.key] = min(lowest.get(inst.key, inst.instance_number), inst.instance_number)

        with self.store.transaction(self.transaction_timeout_seconds) as tx:
            if lowest:
                current = tx.current_max_instances(self.project_id, lowest.keys())
                taken = [k for k, n in lowest.items() if current.get(k, 0) >= n]
                if taken:
                    raise PersistenceConflict(
                        f"instance numbers already taken for {len(taken)} key(s), e.g. {taken[0]}"
                    )
            ids = tx.insert_components(self.project_id, chunk.instances) if chunk.instances else []
            if ids:
                tx.insert_milestones(ids, chunk.instances)
            updated = tx.update_components(self.project_id, chunk.updates) if chunk.updates else 0
        return ids, updated

    def _fail(self, result: PersistenceResult, chunk: ChunkWork, code: str, message: str,
              instances: Sequence[ComponentInstance] | None = None) -> None:
        for inst in chunk.instances if instances is None else instances:
            result.failures.append(InstanceFailure(inst.display_label, inst.source_rows, code, message, chunk.index))
        if instances is None:
            for update in chunk.updates:
                result.failures.append(InstanceFailure(_update_label(update), update.source_rows, code, message, chunk.index))

    def _emit(self, result: PersistenceResult, outcome: ChunkOutcome) -> None:
        result.chunks.append(outcome)
        if self.metrics_callback is not None:
            self.metrics_callback(outcome)

    def persist(
        self,
        instances: Sequence[ComponentInstance],
        updates: Sequence[InstanceUpdate] = (),
    ) -> PersistenceResult:
        result = PersistenceResult()
        stats = BatchStatsAccumulator()
        failed_keys: set[IdentityKey] = set()
        work = self.plan(instances, updates)

        for position, chunk in enumerate(work):
            if self.cancel_event is not None and self.cancel_event.is_set():
                result.cancelled = True
                logger.warning("import cancelled before chunk %d of %d", chunk.index + 1, len(work))
                for pending in work[position:]:
                    self._emit(result, ChunkOutcome(pending.index, pending.size, "skipped", error="cancelled"))
                break

            # a key that already failed in an earlier chunk cannot continue its numbering
            blocked = [i for i in chunk.instances if i.key in failed_keys]
            if blocked:
                self._fail(result, chunk, "PERSISTENCE_CONFLICT", "an earlier chunk for this key failed", blocked)
                chunk = ChunkWork(chunk.index, tuple(i for i in chunk.instances if i.key not in failed_keys), chunk.updates)

            started = time.perf_counter()
            try:
                ids, updated = self._write_chunk(chunk)
            except PersistenceConflict as exc:
                elapsed = time.perf_counter() - started
                stats.add_batch_time(elapsed)
                logger.error("chunk %d failed and was rolled back: %s", chunk.index + 1, exc)
                failed_keys.update(i.key for i in chunk.instances)
                self._fail(result, chunk, "PERSISTENCE_CONFLICT", str(exc))
                self._emit(result, ChunkOutcome(chunk.index, chunk.size, "failed", elapsed_seconds=elapsed, error=str(exc)))
                if self.all_or_nothing:
                    result.aborted = True
                    for pending in work[position + 1:]:
                        self._fail(result, pending, "CHUNK_ABORTED", f"not attempted after chunk {chunk.index + 1} failed")
                        self._emit(result, ChunkOutcome(pending.index, pending.size, "skipped", error="aborted"))
                    break
                continue

            elapsed = time.perf_counter() - started
            stats.add_batch_time(elapsed)
            result.created_ids.extend(ids)
            result.updated += updated
            logger.debug("chunk %d committed: %d created, %d updated in %.3fs", chunk.index + 1, len(ids), updated, elapsed)
            self._emit(result, ChunkOutcome(chunk.index, chunk.size, "committed", len(ids), updated, elapsed))

        result.chunk_stats = stats.get_stats()
        return result
