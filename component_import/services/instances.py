from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from component_import.db.store import ExistingInstances, InstanceLookup
from component_import.models.candidate import ConsolidatedCandidate, IdentityKey
from component_import.models.instance import (
    ComponentInstance,
    InstanceUpdate,
    WorkflowType,
    display_label,
)

"""Quantity -> numbered instances, reconciled with stored instances.

For a key with quantity N and stored maximum M, new instances are numbered
M+1 .. M+N so a re-import never reuses or renumbers a stored instance. The
existing-instance index is loaded once per run; concurrent writers are
re-checked by the persistence batcher inside each chunk transaction.
"""

__all__ = [
    "ExistingInstanceIndex",
    "SkippedKey",
    "ExpansionResult",
    "expand",
    "instance_attributes",
]

logger = logging.getLogger(__name__)

_NONE = ExistingInstances(max_instance=0, count=0)


class ExistingInstanceIndex:
    """identity key -> (max stored instance number, stored count)."""

    def __init__(self, entries: Mapping[IdentityKey, ExistingInstances] | None = None) -> None:
        self._entries: dict[IdentityKey, ExistingInstances] = dict(entries or {})

    @classmethod
    def load(
        cls, store: InstanceLookup, project_id: str, keys: Iterable[IdentityKey] | None = None
    ) -> ExistingInstanceIndex:
        entries = store.existing_instances(project_id, keys)
        logger.debug("loaded %d existing identity keys for project %s", len(entries), project_id)
        return cls(entries)

    def get(self, key: IdentityKey) -> ExistingInstances:
        return self._entries.get(key, _NONE)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and entry.count > 0

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class SkippedKey:
    key: IdentityKey
    requested: int
    existing: int
    source_rows: tuple[int, ...] = ()


@dataclass
class ExpansionResult:
    instances: list[ComponentInstance] = field(default_factory=list)
    skipped: list[SkippedKey] = field(default_factory=list)
    updates: list[InstanceUpdate] = field(default_factory=list)


def instance_attributes(consolidated: ConsolidatedCandidate) -> dict[str, Any]:
    c = consolidated.candidate
    attrs: dict[str, Any] = dict(c.attributes)
    for name, value in (
        ("type", c.raw_type),
        ("size", c.size),
        ("spec_code", c.spec_code),
        ("test_pressure", c.test_pressure),
    ):
        if value is not None:
            attrs[name] = value
    if c.inherited:
        attrs["inherited_fields"] = sorted(c.inherited)
    return attrs


def expand(
    candidates: Sequence[ConsolidatedCandidate],
    index: ExistingInstanceIndex,
    *,
    skip_duplicates: bool = False,
    update_existing: bool = False,
) -> ExpansionResult:
    """Expand consolidated candidates into individually numbered instances.

    skip_duplicates: keys whose stored count already covers the quantity emit
    nothing; otherwise only the shortfall is emitted.
    update_existing: keys with stored instances also yield an InstanceUpdate
    (new total and descriptive fields), and replace the skip.
    """
    result = ExpansionResult()

    for cc in candidates:
        key = cc.identity_key
        existing = index.get(key)
        requested = cc.quantity
        attrs = instance_attributes(cc)

        if skip_duplicates and existing.count > 0:
            new_count = max(requested - existing.count, 0)
            total = max(requested, existing.count)
        else:
            new_count = requested
            total = existing.count + requested

        if existing.count > 0 and update_existing:
            result.updates.append(
                InstanceUpdate(
                    key=key,
                    total_instances_on_key=total,
                    attributes=dict(attrs),
                    source_rows=cc.source_rows,
                    existing_max_instance=existing.max_instance,
                )
            )
        elif new_count == 0:
            result.skipped.append(
                SkippedKey(key=key, requested=requested, existing=existing.count, source_rows=cc.source_rows)
            )
            continue

        start = existing.max_instance + 1
        workflow = WorkflowType.parse(cc.candidate.workflow_type)
        for number in range(start, start + new_count):
            result.instances.append(
                ComponentInstance(
                    key=key,
                    instance_number=number,
                    total_instances_on_key=total,
                    display_label=display_label(key.item_id, number, total),
                    category=cc.candidate.category,
                    workflow_type=workflow,
                    attributes=dict(attrs),
                    source_rows=cc.source_rows,
                )
            )

    logger.info(
        "expanded %d keys into %d instances (%d skipped, %d updates)",
        len(candidates), len(result.instances), len(result.skipped), len(result.updates),
    )
    return result
