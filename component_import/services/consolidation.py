from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from component_import.models.candidate import ConsolidatedCandidate, IdentityKey, ImportCandidate
from component_import.models.validation import IssueCategory, ValidationIssue, ValidationReport

"""Consolidator: one candidate per identity key, quantities summed.

The first row seen for a key supplies the descriptive fields. Each merge is
informational and is recorded on the report for operator visibility.
"""

__all__ = [
    "ConsolidationResult",
    "consolidate",
]

logger = logging.getLogger(__name__)


@dataclass
class ConsolidationResult:
    candidates: list[ConsolidatedCandidate] = field(default_factory=list)  # first-seen order
    merges: dict[IdentityKey, int] = field(default_factory=dict)  # key -> folded row count

    @property
    def duplicates_consolidated(self) -> int:
        return sum(n - 1 for n in self.merges.values())


def consolidate(candidates: Sequence[ImportCandidate], report: ValidationReport | None = None) -> ConsolidationResult:
    groups: dict[IdentityKey, list[ImportCandidate]] = {}
    for candidate in candidates:
        groups.setdefault(candidate.identity_key, []).append(candidate)

    result = ConsolidationResult()
    for key, members in groups.items():
        first = members[0]
        result.candidates.append(
            ConsolidatedCandidate(
                candidate=first,
                quantity=sum(m.quantity for m in members),
                source_rows=tuple(m.row_number for m in members),
            )
        )
        if len(members) == 1:
            continue
        result.merges[key] = len(members)
        if report is not None:
            report.deduplicated_keys.append(key)
            report.add(ValidationIssue(
                row=first.row_number,
                field="component_id",
                category=IssueCategory.INFO,
                code="DUPLICATE_MERGED",
                message=(
                    f"{len(members)} rows for {key} merged into quantity "
                    f"{result.candidates[-1].quantity} (rows {', '.join(str(m.row_number) for m in members)})"
                ),
                value=first.component_id,
            ))

    if result.merges:
        logger.info("consolidated %d duplicate rows into %d keys", result.duplicates_consolidated, len(result.merges))
    return result
