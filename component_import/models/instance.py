from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .candidate import IdentityKey

"""Instance and milestone models.

ComponentInstance is the unit of persistence. Milestone templates are read
from (or seeded into) the project's template directory; MilestoneRecord is
one definition materialized for one instance.
"""

__all__ = [
    "WorkflowType",
    "MilestoneDefinition",
    "MilestoneTemplate",
    "MilestoneRecord",
    "ComponentInstance",
    "InstanceUpdate",
    "display_label",
]

STATUS_NOT_STARTED = "NOT_STARTED"


class WorkflowType(str, Enum):
    MILESTONE_DISCRETE = "MILESTONE_DISCRETE"
    MILESTONE_PERCENTAGE = "MILESTONE_PERCENTAGE"
    MILESTONE_QUANTITY = "MILESTONE_QUANTITY"

    @classmethod
    def parse(cls, text: str | None) -> WorkflowType:
        if not text:
            return cls.MILESTONE_DISCRETE
        key = str(text).strip().upper().replace(" ", "_").replace("-", "_")
        if not key.startswith("MILESTONE_"):
            key = f"MILESTONE_{key}"
        try:
            return cls(key)
        except ValueError:
            return cls.MILESTONE_DISCRETE


def display_label(item_id: str, instance_number: int, total: int) -> str:
    """Bare id for a single instance, otherwise "id (n of total)"."""
    if total <= 1:
        return item_id
    return f"{item_id} ({instance_number} of {total})"


@dataclass(frozen=True)
class MilestoneDefinition:
    name: str
    order: int
    weight: float  # 0..100, fractional allowed
    tracks_value: bool = True  # percentage/quantity workflows record a value


@dataclass(frozen=True)
class MilestoneTemplate:
    id: str
    name: str
    milestones: tuple[MilestoneDefinition, ...]
    is_default: bool = False

    @property
    def total_weight(self) -> float:
        return sum(m.weight for m in self.milestones)


@dataclass(frozen=True)
class MilestoneRecord:
    key: IdentityKey
    instance_number: int
    name: str
    order: int
    weight: float
    is_completed: bool = False
    percentage_value: float | None = None
    quantity_value: float | None = None


@dataclass(frozen=True)
class ComponentInstance:
    key: IdentityKey
    instance_number: int  # 1-based, unique within the key
    total_instances_on_key: int
    display_label: str
    category: str
    workflow_type: WorkflowType = WorkflowType.MILESTONE_DISCRETE
    template_id: str | None = None
    status: str = STATUS_NOT_STARTED
    completion_percent: float = 0.0
    attributes: dict[str, Any] = field(default_factory=dict)
    source_rows: tuple[int, ...] = ()
    milestones: tuple[MilestoneRecord, ...] = ()
    drawing_id: str | None = None  # internal drawing id once resolved

    def with_template(self, template_id: str, milestones: tuple[MilestoneRecord, ...]) -> ComponentInstance:
        return replace(self, template_id=template_id, milestones=milestones)


@dataclass(frozen=True)
class InstanceUpdate:
    """New total/labels and descriptive fields for instances already stored on a key."""
    key: IdentityKey
    total_instances_on_key: int
    attributes: dict[str, Any] = field(default_factory=dict)
    source_rows: tuple[int, ...] = ()
    existing_max_instance: int | None = None  # rows numbered above this were created by this run
