from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace

from ..db.store import ImportStore, ensure_drawings
from ..logging.error_log import ErrorLogBuffer
from ..models.candidate import ImportKind
from ..models.config_models import ImportOptions
from ..models.processing_result import (
    ChunkOutcome,
    ImportOutcome,
    ImportResult,
    ImportSummary,
    InstanceFailure,
    decide_outcome,
)
from ..models.validation import IssueCategory, ValidationIssue, ValidationReport, ValidationStage
from ..tabular.coerce import classify_cell, coerce_text
from ..tabular.mapper import ColumnMapping, build_column_mapping
from ..tabular.reader import ParsedTable, parse_table
from .categories import ComponentTypeMapper
from .consolidation import consolidate
from .instances import ExistingInstanceIndex, expand
from .persistence import PersistenceBatcher
from .progress import ProgressTracker
from .templates import TemplateAssigner
from .validation import ValidationContext, ValidationEngine

"""Import orchestration.

run_import() drives one file through the whole pipeline:

    parse -> map columns -> load drawings / existing instances -> validate
    -> consolidate -> ensure drawings -> expand -> assign templates
    -> persist in chunks -> summarise

FormatError and StoreConnectionError propagate to the caller with no partial
result. Everything else (row issues, template failures, chunk conflicts) is
accumulated into the returned ImportResult and, when an ErrorLogBuffer is
given, recorded there as well.
"""

__all__ = [
    "ImportRequest",
    "PreviewResult",
    "run_import",
    "preview_import",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportRequest:
    buffer: bytes
    filename: str
    project_id: str
    kind: ImportKind = ImportKind.COMPONENT
    mimetype: str | None = None
    column_mapping: Mapping[str, str] | None = None  # canonical field -> header; None = infer


@dataclass(frozen=True)
class PreviewResult:
    report: ValidationReport
    mapping: dict[str, str]
    category_counts: dict[str, int] = field(default_factory=dict)  # category -> instances
    estimated_instances: int = 0
    unmapped_headers: list[str] = field(default_factory=list)


def _drawing_refs(table: ParsedTable, mapping: ColumnMapping) -> list[str]:
    header = mapping.header_for("drawing_id")
    if header is None:
        return []
    refs = (coerce_text(classify_cell(row.get(header))) for row in table.rows)
    return list(dict.fromkeys(r for r in refs if r))


def _validate(
    request: ImportRequest,
    store: ImportStore,
    options: ImportOptions,
    stage: ValidationStage,
    type_mapper: ComponentTypeMapper,
) -> tuple[ParsedTable, ColumnMapping, ValidationReport]:
    table = parse_table(
        request.buffer,
        request.filename,
        request.mimetype,
        max_rows=options.max_rows,
        max_columns=options.max_columns,
    )
    mapping = build_column_mapping(table.headers, request.kind, request.column_mapping)
    logger.debug("column mapping: %s", mapping.as_dict())

    context = ValidationContext(
        project_id=request.project_id,
        kind=request.kind,
        stage=stage,
        strict_mode=options.strict_mode,
        skip_duplicates=options.skip_duplicates,
        update_existing=options.update_existing,
        create_missing_drawings=options.create_missing_drawings,
        max_rows=options.max_rows,
        batch_size=options.batch_size,
    )
    if stage >= ValidationStage.PREVIEW_VALIDATION and not mapping.missing_required():
        context.drawings = store.find_drawings(request.project_id, _drawing_refs(table, mapping))
    if stage >= ValidationStage.FULL_IMPORT_VALIDATION and not mapping.missing_required():
        context.existing = ExistingInstanceIndex.load(store, request.project_id)

    report = ValidationEngine(context, type_mapper).validate(table, mapping)
    return table, mapping, report


def preview_import(
    request: ImportRequest,
    store: ImportStore,
    *,
    options: ImportOptions | None = None,
    type_aliases: Mapping[str, str] | None = None,
) -> PreviewResult:
    """Schema and business-rule validation plus the instance count an import would produce."""
    options = options or ImportOptions()
    _, mapping, report = _validate(
        request, store, options, ValidationStage.PREVIEW_VALIDATION, ComponentTypeMapper(type_aliases)
    )
    counts: Counter = Counter()
    for candidate in report.valid_rows:
        counts[candidate.category] += candidate.quantity
    return PreviewResult(
        report=report,
        mapping=mapping.as_dict(),
        category_counts=dict(counts),
        estimated_instances=sum(counts.values()),
        unmapped_headers=mapping.unmapped_headers,
    )


def run_import(
    request: ImportRequest,
    store: ImportStore,
    *,
    options: ImportOptions | None = None,
    category_templates: Mapping[str, str] | None = None,
    type_aliases: Mapping[str, str] | None = None,
    seed_standard_templates: bool = True,
    error_log: ErrorLogBuffer | None = None,
    stage: ValidationStage = ValidationStage.FULL_IMPORT_VALIDATION,
    cancel_event: threading.Event | None = None,
    metrics_callback: Callable[[ChunkOutcome], None] | None = None,
    show_progress: bool = True,
) -> ImportResult:
    """Validate a spreadsheet and, unless dry-running, persist its instances.

    Raises:
        FormatError: unreadable or unsupported file (nothing is written)
        StoreConnectionError: storage unreachable mid-run (committed chunks stay)
    """
    options = options or ImportOptions()
    started = time.perf_counter()
    project_id = request.project_id
    logger.info("importing %s into project %s (%s)", request.filename, project_id, request.kind.value)

    table, mapping, report = _validate(request, store, options, stage, ComponentTypeMapper(type_aliases))
    if error_log is not None:
        error_log.record_issues(request.filename, report.errors)

    if stage < ValidationStage.FULL_IMPORT_VALIDATION or options.dry_run:
        keys = len({c.identity_key for c in report.valid_rows})
        summary = ImportSummary(
            total_rows=table.row_count,
            consolidated=keys,
            created=0,
            updated=0,
            skipped=0,
            errors=report.error_count,
            elapsed_seconds=time.perf_counter() - started,
        )
        logger.info("validation only (%s): nothing written", stage.name)
        return ImportResult(
            summary=summary,
            report=report,
            outcome=ImportOutcome.NOTHING_IMPORTED,
            mapping=mapping.as_dict(),
            dry_run=True,
        )

    consolidation = consolidate(report.valid_rows, report)
    candidates = consolidation.candidates

    drawings, unresolved = ensure_drawings(
        store, project_id, (c.identity_key.drawing_ref for c in candidates), options.create_missing_drawings
    )
    if unresolved:
        missing = set(unresolved)
        for cc in candidates:
            if cc.identity_key.drawing_ref in missing:
                report.add(ValidationIssue(
                    row=cc.source_rows[0], field="drawing_id", category=IssueCategory.WARNING,
                    code="DRAWING_UNRESOLVED",
                    message=f"Drawing {cc.identity_key.drawing_ref} does not exist; {cc.identity_key.item_id} not imported",
                    value=cc.identity_key.drawing_ref,
                    recommendation="Add the drawing or re-run with create_missing_drawings",
                ))
        candidates = [cc for cc in candidates if cc.identity_key.drawing_ref not in missing]
        logger.warning("%d drawing(s) unresolved; their rows were not imported", len(unresolved))

    index = ExistingInstanceIndex.load(store, project_id, [cc.identity_key for cc in candidates])
    expansion = expand(
        candidates, index, skip_duplicates=options.skip_duplicates, update_existing=options.update_existing
    )
    instances = [replace(i, drawing_id=drawings[i.key.drawing_ref].id) for i in expansion.instances]

    failures: list[InstanceFailure] = []
    assigned = []
    if instances:
        assigner = TemplateAssigner.load(store, project_id, category_templates, seed_standard_templates)
        assignment = assigner.assign(instances)
        assigned = assignment.assigned
        failures.extend(assignment.failures)
        logger.debug("template usage: %s", dict(assignment.template_usage))

    batcher = PersistenceBatcher(
        store,
        project_id,
        chunk_size=options.chunk_size,
        all_or_nothing=options.all_or_nothing,
        cancel_event=cancel_event,
        transaction_timeout_seconds=options.transaction_timeout_seconds,
    )
    total_chunks = len(batcher.plan(assigned, expansion.updates))
    progress = ProgressTracker(total_chunks) if show_progress else None

    def on_chunk(outcome: ChunkOutcome) -> None:
        if progress is not None:
            progress.on_chunk(outcome)
        if metrics_callback is not None:
            metrics_callback(outcome)

    batcher.metrics_callback = on_chunk
    try:
        persisted = batcher.persist(assigned, expansion.updates)
    finally:
        if progress is not None:
            progress.close()

    failures.extend(persisted.failures)
    if error_log is not None:
        error_log.record_failures(request.filename, failures)

    errors = report.error_count + len(failures)
    outcome = decide_outcome(persisted.created, persisted.updated, errors)
    if persisted.cancelled and outcome is ImportOutcome.FULLY_IMPORTED:
        outcome = ImportOutcome.PARTIALLY_IMPORTED

    chunk_count, avg_chunk, p95_chunk = persisted.chunk_stats
    summary = ImportSummary(
        total_rows=table.row_count,
        consolidated=len(consolidation.candidates),
        created=persisted.created,
        updated=persisted.updated,
        skipped=len(expansion.skipped),
        errors=errors,
        chunks=chunk_count,
        elapsed_seconds=time.perf_counter() - started,
        avg_chunk_seconds=avg_chunk,
        p95_chunk_seconds=p95_chunk,
    )
    logger.info(
        "%s: %d created, %d updated, %d skipped, %d errors in %.2fs",
        outcome.value, summary.created, summary.updated, summary.skipped, summary.errors, summary.elapsed_seconds,
    )
    return ImportResult(
        summary=summary,
        report=report,
        outcome=outcome,
        instance_ids=list(persisted.created_ids),
        failures=failures,
        mapping=mapping.as_dict(),
        cancelled=persisted.cancelled,
    )
