from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from component_import.db.store import TemplateDirectory
from component_import.errors import TemplateIntegrityError
from component_import.models.instance import (
    ComponentInstance,
    MilestoneDefinition,
    MilestoneRecord,
    MilestoneTemplate,
    WorkflowType,
)
from component_import.models.processing_result import InstanceFailure

"""Milestone template assignment.

Categories map to templates through an explicit lookup table resolved once
per run. Unmapped categories fall back to the project's default template,
which is created on demand when the project has none. A resolved template
without milestone definitions fails that instance only.
"""

__all__ = [
    "STANDARD_TEMPLATES",
    "DEFAULT_CATEGORY_TEMPLATES",
    "DEFAULT_TEMPLATE_NAME",
    "AssignmentResult",
    "TemplateAssigner",
    "materialize_milestones",
]

logger = logging.getLogger(__name__)

FULL_SET = "Full Milestone Set"
REDUCED_SET = "Reduced Milestone Set"
FIELD_WELD_SET = "Field Weld"
DEFAULT_TEMPLATE_NAME = "Default Component Template"


def _defs(*pairs: tuple[str, float]) -> tuple[MilestoneDefinition, ...]:
    return tuple(MilestoneDefinition(name=name, order=i, weight=weight) for i, (name, weight) in enumerate(pairs, start=1))


# name -> (milestones, is_default)
STANDARD_TEMPLATES: dict[str, tuple[tuple[MilestoneDefinition, ...], bool]] = {
    FULL_SET: (
        _defs(("Receive", 5), ("Erect", 30), ("Connect", 30), ("Support", 15), ("Punch", 5), ("Test", 10), ("Restore", 5)),
        False,
    ),
    REDUCED_SET: (
        _defs(("Receive", 10), ("Install", 60), ("Punch", 10), ("Test", 15), ("Restore", 5)),
        True,
    ),
    FIELD_WELD_SET: (
        _defs(("Fit Up", 10), ("Weld Made", 60), ("Punch", 10), ("Test", 15), ("Restore", 5)),
        False,
    ),
}

DEFAULT_TEMPLATE_MILESTONES = _defs(("Receive", 20), ("Install", 60), ("Test", 20))

DEFAULT_CATEGORY_TEMPLATES: dict[str, str] = {
    "PIPE": FULL_SET,
    "SPOOL": FULL_SET,
    "FIELD_WELD": FIELD_WELD_SET,
    "VALVE": REDUCED_SET,
    "FITTING": REDUCED_SET,
    "FLANGE": REDUCED_SET,
    "GASKET": REDUCED_SET,
    "SUPPORT": REDUCED_SET,
    "INSTRUMENT": REDUCED_SET,
}


def _check_weights(name: str, milestones: Sequence[MilestoneDefinition]) -> None:
    total = sum(m.weight for m in milestones)
    if abs(total - 100) > 1e-6:
        raise ValueError(f"milestone weights of {name} sum to {total}, expected 100")


def materialize_milestones(instance: ComponentInstance, template: MilestoneTemplate) -> tuple[MilestoneRecord, ...]:
    """One MilestoneRecord per definition, every value at its zero state."""
    percentage = instance.workflow_type is WorkflowType.MILESTONE_PERCENTAGE
    quantity = instance.workflow_type is WorkflowType.MILESTONE_QUANTITY
    return tuple(
        MilestoneRecord(
            key=instance.key,
            instance_number=instance.instance_number,
            name=d.name,
            order=d.order,
            weight=d.weight,
            is_completed=False,
            percentage_value=0.0 if percentage and d.tracks_value else None,
            quantity_value=0.0 if quantity and d.tracks_value else None,
        )
        for d in sorted(template.milestones, key=lambda m: m.order)
    )


@dataclass
class AssignmentResult:
    assigned: list[ComponentInstance] = field(default_factory=list)
    failures: list[InstanceFailure] = field(default_factory=list)
    template_usage: Counter = field(default_factory=Counter)  # template name -> instances


class TemplateAssigner:
    def __init__(
        self,
        directory: TemplateDirectory,
        project_id: str,
        templates: Sequence[MilestoneTemplate],
        category_map: Mapping[str, str],
        default: MilestoneTemplate | None = None,
    ) -> None:
        self.directory = directory
        self.project_id = project_id
        self._by_id = {t.id: t for t in templates}
        self.category_map = dict(category_map)  # category -> template id
        self._default = default

    @classmethod
    def load(
        cls,
        directory: TemplateDirectory,
        project_id: str,
        category_templates: Mapping[str, str] | None = None,
        seed_standard: bool = True,
    ) -> TemplateAssigner:
        templates = list(directory.list_templates(project_id))
        if seed_standard:
            names = {t.name for t in templates}
            for name, (milestones, is_default) in STANDARD_TEMPLATES.items():
                if name in names:
                    continue
                _check_weights(name, milestones)
                # only one flagged default per project
                flag = is_default and not any(t.is_default for t in templates)
                templates.append(directory.create_template(project_id, name, milestones, is_default=flag))
                logger.info("seeded milestone template '%s' for project %s", name, project_id)

        by_name = {t.name: t for t in templates}
        table = {**DEFAULT_CATEGORY_TEMPLATES, **{k.upper(): v for k, v in (category_templates or {}).items()}}
        category_map: dict[str, str] = {}
        for category, name in table.items():
            template = by_name.get(name)
            if template is None:
                logger.debug("no template named '%s' for category %s", name, category)
                continue
            category_map[category] = template.id

        default = next((t for t in templates if t.is_default), None) or by_name.get(DEFAULT_TEMPLATE_NAME)
        return cls(directory, project_id, templates, category_map, default)

    def default_template(self) -> MilestoneTemplate:
        if self._default is None:
            _check_weights(DEFAULT_TEMPLATE_NAME, DEFAULT_TEMPLATE_MILESTONES)
            self._default = self.directory.create_template(
                self.project_id, DEFAULT_TEMPLATE_NAME, DEFAULT_TEMPLATE_MILESTONES, is_default=True
            )
            self._by_id[self._default.id] = self._default
            logger.info("created '%s' for project %s", DEFAULT_TEMPLATE_NAME, self.project_id)
        return self._default

    def resolve(self, category: str) -> MilestoneTemplate:
        template_id = self.category_map.get(category)
        if template_id is not None and template_id in self._by_id:
            return self._by_id[template_id]
        return self.default_template()

    def assign(self, instances: Sequence[ComponentInstance]) -> AssignmentResult:
        result = AssignmentResult()
        for instance in instances:
            template = self.resolve(instance.category)
            try:
                if not template.milestones:
                    raise TemplateIntegrityError(template.name, template.id)
                milestones = materialize_milestones(instance, template)
            except TemplateIntegrityError as exc:
                logger.warning("%s: %s", instance.display_label, exc)
                result.failures.append(InstanceFailure(
                    label=instance.display_label,
                    source_rows=instance.source_rows,
                    code="TEMPLATE_INTEGRITY",
                    message=str(exc),
                ))
                continue
            result.assigned.append(instance.with_template(template.id, milestones))
            result.template_usage[template.name] += 1
        return result
