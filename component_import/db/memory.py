from __future__ import annotations

import copy
import itertools
import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from component_import.db.store import DrawingRecord, ExistingInstances
from component_import.errors import PersistenceConflict
from component_import.models.candidate import IdentityKey
from component_import.models.instance import (
    ComponentInstance,
    InstanceUpdate,
    MilestoneDefinition,
    MilestoneTemplate,
    display_label,
)

"""In-memory store.

Implements every collaborator protocol with plain dicts. Transactions take a
snapshot and restore it when the block raises, and inserts honour the same
unique constraint as the SQL schema (project, drawing, item, discriminator,
instance number). Used by tests and by the CLI mock mode.
"""

__all__ = [
    "StoredComponent",
    "StoredMilestone",
    "InMemoryStore",
]

logger = logging.getLogger(__name__)


@dataclass
class StoredComponent:
    id: str
    project_id: str
    key: IdentityKey
    instance_number: int
    total_instances_on_key: int
    display_label: str
    category: str
    workflow_type: str
    template_id: str | None
    status: str
    completion_percent: float
    drawing_id: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredMilestone:
    component_id: str
    name: str
    order: int
    weight: float
    is_completed: bool
    percentage_value: float | None
    quantity_value: float | None


class _Transaction:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def current_max_instances(self, project_id: str, keys: Iterable[IdentityKey]) -> dict[IdentityKey, int]:
        wanted = set(keys)
        out: dict[IdentityKey, int] = {}
        for comp in self._store.components.values():
            if comp.project_id == project_id and comp.key in wanted:
                out[comp.key] = max(out.get(comp.key, 0), comp.instance_number)
        return out

    def insert_components(self, project_id: str, instances: Sequence[ComponentInstance]) -> list[str]:
        ids: list[str] = []
        for inst in instances:
            unique = (project_id, *inst.key, inst.instance_number)
            if unique in self._store._unique:
                raise PersistenceConflict(f"duplicate key value violates unique constraint: {unique}")
            self._store._unique.add(unique)
            comp_id = f"cmp-{next(self._store._ids)}"
            self._store.components[comp_id] = StoredComponent(
                id=comp_id,
                project_id=project_id,
                key=inst.key,
                instance_number=inst.instance_number,
                total_instances_on_key=inst.total_instances_on_key,
                display_label=inst.display_label,
                category=inst.category,
                workflow_type=inst.workflow_type.value,
                template_id=inst.template_id,
                status=inst.status,
                completion_percent=inst.completion_percent,
                drawing_id=inst.drawing_id,
                attributes=dict(inst.attributes),
            )
            ids.append(comp_id)
        return ids

    def insert_milestones(self, component_ids: Sequence[str], instances: Sequence[ComponentInstance]) -> int:
        count = 0
        for comp_id, inst in zip(component_ids, instances, strict=True):
            for m in inst.milestones:
                self._store.milestones.append(StoredMilestone(
                    component_id=comp_id,
                    name=m.name,
                    order=m.order,
                    weight=m.weight,
                    is_completed=m.is_completed,
                    percentage_value=m.percentage_value,
                    quantity_value=m.quantity_value,
                ))
                count += 1
        return count

    def update_components(self, project_id: str, updates: Sequence[InstanceUpdate]) -> int:
        count = 0
        for update in updates:
            for comp in self._store.components.values():
                if comp.project_id != project_id or comp.key != update.key:
                    continue
                if update.existing_max_instance is not None and comp.instance_number > update.existing_max_instance:
                    continue
                comp.total_instances_on_key = update.total_instances_on_key
                comp.display_label = display_label(comp.key.item_id, comp.instance_number, update.total_instances_on_key)
                comp.attributes.update(update.attributes)
                count += 1
        return count


class InMemoryStore:
    def __init__(self) -> None:
        self.drawings: dict[str, dict[str, DrawingRecord]] = {}  # project -> number -> record
        self.components: dict[str, StoredComponent] = {}
        self.milestones: list[StoredMilestone] = []
        self.templates: dict[str, list[MilestoneTemplate]] = {}
        self._unique: set[tuple] = set()
        self._ids = itertools.count(1)
        self.transactions = 0  # committed + rolled back
        self.rollbacks = 0
        self.last_timeout: int | None = None

    # drawings
    def add_drawing(
        self, project_id: str, number: str, test_pressure: float | None = None, spec_code: str | None = None
    ) -> DrawingRecord:
        record = DrawingRecord(
            id=f"dwg-{next(self._ids)}", number=number, test_pressure=test_pressure, spec_code=spec_code
        )
        self.drawings.setdefault(project_id, {})[number] = record
        return record

    def find_drawings(self, project_id: str, refs: Iterable[str]) -> dict[str, DrawingRecord]:
        known = self.drawings.get(project_id, {})
        return {r: known[r] for r in refs if r in known}

    def create_drawings(self, project_id: str, refs: Sequence[str]) -> dict[str, DrawingRecord]:
        known = self.drawings.get(project_id, {})
        return {r: known.get(r) or self.add_drawing(project_id, r) for r in refs}

    # instances
    def existing_instances(
        self, project_id: str, keys: Iterable[IdentityKey] | None = None
    ) -> dict[IdentityKey, ExistingInstances]:
        wanted = set(keys) if keys is not None else None
        acc: dict[IdentityKey, tuple[int, int]] = {}
        for comp in self.components.values():
            if comp.project_id != project_id or (wanted is not None and comp.key not in wanted):
                continue
            top, count = acc.get(comp.key, (0, 0))
            acc[comp.key] = (max(top, comp.instance_number), count + 1)
        return {k: ExistingInstances(max_instance=m, count=c) for k, (m, c) in acc.items()}

    def components_for(self, project_id: str, key: IdentityKey | None = None) -> list[StoredComponent]:
        rows = [
            c for c in self.components.values()
            if c.project_id == project_id and (key is None or c.key == key)
        ]
        return sorted(rows, key=lambda c: (c.key, c.instance_number))

    def milestones_for(self, component_id: str) -> list[StoredMilestone]:
        return sorted((m for m in self.milestones if m.component_id == component_id), key=lambda m: m.order)

    # templates
    def list_templates(self, project_id: str) -> list[MilestoneTemplate]:
        return list(self.templates.get(project_id, []))

    def create_template(
        self,
        project_id: str,
        name: str,
        milestones: Sequence[MilestoneDefinition],
        is_default: bool = False,
    ) -> MilestoneTemplate:
        template = MilestoneTemplate(
            id=f"tpl-{next(self._ids)}", name=name, milestones=tuple(milestones), is_default=is_default
        )
        self.templates.setdefault(project_id, []).append(template)
        return template

    # transactions
    @contextmanager
    def transaction(self, timeout_seconds: int | None = None) -> Iterator[_Transaction]:
        self.transactions += 1
        self.last_timeout = timeout_seconds
        snapshot = (copy.deepcopy(self.components), list(self.milestones), set(self._unique))
        try:
            yield _Transaction(self)
        except BaseException:
            self.components, self.milestones, self._unique = snapshot
            self.rollbacks += 1
            raise
