from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple

"""Candidate models: normalized rows between coercion and expansion.

ImportCandidate is produced by the row normalizer, ConsolidatedCandidate by
the consolidator. Both are keyed by IdentityKey, which scopes instance
numbering.
"""

__all__ = [
    "ImportKind",
    "IdentityKey",
    "ImportCandidate",
    "ConsolidatedCandidate",
]


class ImportKind(str, Enum):
    COMPONENT = "component"
    WELD = "weld"


class IdentityKey(NamedTuple):
    """(drawing, component/weld id, discriminator). Discriminator is the size for components."""
    drawing_ref: str
    item_id: str
    discriminator: str = ""

    def __str__(self) -> str:
        return "|".join(self)


@dataclass(frozen=True)
class ImportCandidate:
    """One typed, normalized source row."""
    row_number: int
    kind: ImportKind
    drawing_ref: str
    component_id: str  # weld id for welds
    category: str
    raw_type: str | None = None
    size: str | None = None
    spec_code: str | None = None
    test_pressure: float | None = None
    quantity: int = 1
    workflow_type: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)  # remaining descriptive fields
    inherited: frozenset[str] = frozenset()  # fields copied from the drawing

    @property
    def identity_key(self) -> IdentityKey:
        if self.kind is ImportKind.WELD:
            return IdentityKey(self.drawing_ref, self.component_id, "")
        return IdentityKey(self.drawing_ref, self.component_id, self.size or "")


@dataclass(frozen=True)
class ConsolidatedCandidate:
    """One candidate per identity key, quantity summed over its source rows."""
    candidate: ImportCandidate  # representative (first-seen) row
    quantity: int
    source_rows: tuple[int, ...]

    @property
    def identity_key(self) -> IdentityKey:
        return self.candidate.identity_key

    @property
    def merged_rows(self) -> int:
        return len(self.source_rows)
