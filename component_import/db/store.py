from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Protocol

from component_import.models.candidate import IdentityKey
from component_import.models.instance import (
    ComponentInstance,
    InstanceUpdate,
    MilestoneDefinition,
    MilestoneTemplate,
)

"""Collaborator interfaces the engine consumes from the persistent store.

The engine never talks to a database directly: it reads drawings, existing
instance numbers and milestone templates through these protocols and writes
through one transaction per persistence chunk. InMemoryStore and
PostgresStore are the two implementations.
"""

__all__ = [
    "DrawingRecord",
    "ExistingInstances",
    "DrawingDirectory",
    "InstanceLookup",
    "TemplateDirectory",
    "StoreTransaction",
    "TransactionFacility",
    "ImportStore",
    "ensure_drawings",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrawingRecord:
    id: str  # stable internal id
    number: str  # drawing reference as written on the sheet
    test_pressure: float | None = None
    spec_code: str | None = None


@dataclass(frozen=True)
class ExistingInstances:
    max_instance: int  # highest stored instance number on the key
    count: int  # stored instances on the key


class DrawingDirectory(Protocol):
    def find_drawings(self, project_id: str, refs: Iterable[str]) -> dict[str, DrawingRecord]: ...

    def create_drawings(self, project_id: str, refs: Sequence[str]) -> dict[str, DrawingRecord]: ...


class InstanceLookup(Protocol):
    def existing_instances(
        self, project_id: str, keys: Iterable[IdentityKey] | None = None
    ) -> dict[IdentityKey, ExistingInstances]: ...


class TemplateDirectory(Protocol):
    def list_templates(self, project_id: str) -> list[MilestoneTemplate]: ...

    def create_template(
        self,
        project_id: str,
        name: str,
        milestones: Sequence[MilestoneDefinition],
        is_default: bool = False,
    ) -> MilestoneTemplate: ...


class StoreTransaction(Protocol):
    def current_max_instances(self, project_id: str, keys: Iterable[IdentityKey]) -> dict[IdentityKey, int]: ...

    def insert_components(self, project_id: str, instances: Sequence[ComponentInstance]) -> list[str]: ...

    def insert_milestones(self, component_ids: Sequence[str], instances: Sequence[ComponentInstance]) -> int: ...

    def update_components(self, project_id: str, updates: Sequence[InstanceUpdate]) -> int: ...


class TransactionFacility(Protocol):
    def transaction(self, timeout_seconds: int | None = None) -> AbstractContextManager[StoreTransaction]: ...


class ImportStore(DrawingDirectory, InstanceLookup, TemplateDirectory, TransactionFacility, Protocol):
    """Everything run_import needs from one store object."""


def ensure_drawings(
    store: DrawingDirectory,
    project_id: str,
    refs: Iterable[str],
    create_missing: bool,
) -> tuple[dict[str, DrawingRecord], list[str]]:
    """Resolve drawing references, optionally creating the missing ones.

    Returns (resolved ref -> record, still unresolved refs in first-seen order).
    """
    wanted = list(dict.fromkeys(r for r in refs if r))
    resolved = store.find_drawings(project_id, wanted)
    missing = [r for r in wanted if r not in resolved]
    if missing and create_missing:
        created = store.create_drawings(project_id, missing)
        logger.info("created %d missing drawings", len(created))
        resolved.update(created)
        missing = [r for r in missing if r not in resolved]
    return resolved, missing
