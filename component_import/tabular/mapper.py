from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from component_import.models.candidate import ImportKind

"""Column mapper: source headers -> canonical field names.

Two passes over a static synonym table. Pass 1 matches the normalized header
exactly against each field's synonyms, pass 2 accepts a header containing
one of the field's keywords. Fields are visited in priority order and headers
in source order; the first hit wins and a header is claimed at most once.
Explicit mappings are applied before inference. Never raises: a missing
required field is reported later by the validation engine.
"""

__all__ = [
    "ColumnMapping",
    "FieldSpec",
    "build_column_mapping",
    "normalize_header",
    "field_specs",
]

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class FieldSpec:
    name: str
    synonyms: tuple[str, ...]  # normalized exact matches
    keywords: tuple[str, ...] = ()  # normalized containment matches
    required: bool = False


_DRAWING = FieldSpec(
    "drawing_id",
    ("drawing", "drawingid", "drawingno", "drawingnumber", "drawingref", "dwg", "dwgno",
     "dwgnumber", "iso", "isono", "isonumber", "isometric"),
    ("drawing", "dwg", "isometric"),
    required=True,
)
_SPEC = FieldSpec("spec_code", ("spec", "speccode", "pipingspec", "specification", "pipespec"), ("speccode", "pipingspec", "pipespec"))
_TEST_PACKAGE = FieldSpec(
    "test_package", ("testpackage", "testpkg", "testpack", "package", "pkg", "tp", "tpno"), ("package", "pkg"),
)
_TEST_PRESSURE = FieldSpec(
    "test_pressure", ("testpressure", "pressure", "hydropressure", "testpsi", "designpressure"), ("pressure", "psi"),
)
_COMMENTS = FieldSpec("comments", ("comments", "comment", "notes", "note", "remarks", "remark"), ("comment", "note", "remark"))

COMPONENT_FIELDS: tuple[FieldSpec, ...] = (
    _DRAWING,
    FieldSpec(
        "component_id",
        ("componentid", "component", "componentno", "cmdty", "cmdtycode", "commodity", "commoditycode",
         "itemcode", "itemid", "tag", "tagno", "tagnumber", "partno", "partnumber"),
        ("cmdty", "commodity", "tagno", "tagnumber", "componentid", "partno", "partnumber", "itemcode"),
        required=True,
    ),
    FieldSpec("quantity", ("quantity", "qty", "quan", "count", "qnty"), ("qty", "quantity")),
    FieldSpec("size", ("size", "nps", "nominalsize", "pipesize", "diameter", "dia"), ("size", "nps")),
    FieldSpec("type", ("type", "componenttype", "itemtype", "category", "class"), ("type",)),
    _SPEC,
    _TEST_PACKAGE,
    _TEST_PRESSURE,
    FieldSpec("description", ("description", "desc", "itemdescription", "longdescription"), ("desc",)),
    FieldSpec("material", ("material", "mat", "materialgrade", "grade"), ("material",)),
    FieldSpec("area", ("area", "zone", "unit", "plantarea"), ("area",)),
    FieldSpec("system", ("system", "sys", "service", "systemno"), ("system",)),
    FieldSpec("workflow_type", ("workflow", "workflowtype", "trackingtype"), ("workflow",)),
    _COMMENTS,
)

WELD_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec(
        "weld_id",
        ("weldid", "weld", "weldno", "weldnumber", "weldnum", "fieldweld", "fw", "fwno", "jointno", "joint"),
        ("weldid", "weldno", "weldnum", "jointno"),
        required=True,
    ),
    _DRAWING,
    FieldSpec("welder_stencil", ("welderstencil", "welder", "stencil", "welderid"), ("stencil", "welder")),
    _TEST_PACKAGE,
    _TEST_PRESSURE,
    _SPEC,
    FieldSpec("pmi_complete_date", ("pmicompletedate", "pmidate", "pmicomplete", "pmicompleted"), ("pmidate", "pmicomplete")),
    FieldSpec("date_welded", ("datewelded", "weldeddate", "welddate", "dateofweld"), ("welded", "welddate")),
    FieldSpec("pmi_required", ("pmirequired", "pmi", "pmireq"), ("pmireq",)),
    FieldSpec("pwht_required", ("pwhtrequired", "pwht", "pwhtreq"), ("pwht",)),
    FieldSpec("weld_size", ("weldsize", "size", "nps", "diameter"), ("size",)),
    FieldSpec("xray_percentage", ("xray", "xraypercentage", "xraypct", "rt", "rtpercentage", "rtpct"), ("xray", "radiograph")),
    FieldSpec("weld_type", ("weldtype", "type", "jointtype"), ("type",)),
    FieldSpec("schedule", ("schedule", "sch", "sched"), ("sched",)),
    FieldSpec("base_metal", ("basemetal", "basematerial", "material"), ("basemetal", "material")),
    _COMMENTS,
)


def field_specs(kind: ImportKind) -> tuple[FieldSpec, ...]:
    return WELD_FIELDS if kind is ImportKind.WELD else COMPONENT_FIELDS


def normalize_header(header: str) -> str:
    """Lowercase and strip every non-alphanumeric character."""
    return _NON_ALNUM.sub("", str(header).lower())


@dataclass(frozen=True)
class ColumnMapping:
    kind: ImportKind
    headers: tuple[str, ...]
    fields: dict[str, str]  # canonical field -> source header
    explicit_fields: frozenset[str] = frozenset()
    dropped_explicit: dict[str, str] = field(default_factory=dict)  # explicit entries naming absent headers

    def header_for(self, field_name: str) -> str | None:
        return self.fields.get(field_name)

    def is_mapped(self, field_name: str) -> bool:
        return field_name in self.fields

    def missing_required(self) -> list[str]:
        return [s.name for s in field_specs(self.kind) if s.required and s.name not in self.fields]

    @property
    def unmapped_headers(self) -> list[str]:
        claimed = set(self.fields.values())
        return [h for h in self.headers if h not in claimed]

    def as_dict(self) -> dict[str, str]:
        return dict(self.fields)


def build_column_mapping(
    headers: Sequence[str],
    kind: ImportKind,
    explicit: Mapping[str, str] | None = None,
) -> ColumnMapping:
    specs = field_specs(kind)
    known = {s.name for s in specs}
    fields: dict[str, str] = {}
    claimed: set[str] = set()
    dropped: dict[str, str] = {}

    for field_name, header in (explicit or {}).items():
        if field_name not in known or header not in headers or header in claimed:
            dropped[field_name] = header
            continue
        fields[field_name] = header
        claimed.add(header)
    if dropped:
        logger.warning("ignoring explicit column mappings: %s", dropped)

    normalized = [(h, normalize_header(h)) for h in headers]

    for spec in specs:
        if spec.name in fields:
            continue
        for header, norm in normalized:
            if header not in claimed and norm in spec.synonyms:
                fields[spec.name] = header
                claimed.add(header)
                break

    for spec in specs:
        if spec.name in fields or not spec.keywords:
            continue
        for header, norm in normalized:
            if header in claimed:
                continue
            if any(k in norm for k in spec.keywords):
                fields[spec.name] = header
                claimed.add(header)
                break

    mapping = ColumnMapping(
        kind=kind,
        headers=tuple(headers),
        fields=fields,
        explicit_fields=frozenset(f for f in fields if explicit and f in explicit),
        dropped_explicit=dropped,
    )
    logger.debug("column mapping (%s): %s", kind.value, fields)
    return mapping
