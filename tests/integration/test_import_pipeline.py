from __future__ import annotations

import threading
from dataclasses import replace

from component_import.db.memory import InMemoryStore
from component_import.logging.error_log import ErrorLogBuffer
from component_import.models.candidate import IdentityKey, ImportKind
from component_import.models.config_models import ImportOptions
from component_import.models.instance import ComponentInstance
from component_import.models.processing_result import ImportOutcome
from component_import.services.orchestrator import run_import
from component_import.services.templates import DEFAULT_TEMPLATE_NAME

"""End-to-end runs of run_import against the in-memory store.

Drawings P-001 (150 psi, spec A1A) and P-002 exist in project proj-1.
"""

PROJECT = "proj-1"

VALVES = [
    {"Drawing": "P-002", "Tag": "VLV-1", "Type": "Gate Valve", "Qty": 3, "Test Pressure": 285},
    {"Drawing": "P-002", "Tag": "FLG-1", "Type": "Weld Neck Flange", "Qty": 1, "Test Pressure": 285},
]


def _key(item: str, drawing: str = "P-002", size: str = "") -> IdentityKey:
    return IdentityKey(drawing, item, size)


def _run(store, request, **options):
    return run_import(request, store, options=ImportOptions(**options), show_progress=False)


def test_full_import(store, make_request):
    result = _run(store, make_request(VALVES))

    assert result.outcome is ImportOutcome.FULLY_IMPORTED
    assert result.exit_code == 0
    assert result.summary.total_rows == 2
    assert result.summary.consolidated == 2
    assert result.summary.created == 4
    assert len(result.instance_ids) == 4

    valves = store.components_for(PROJECT, _key("VLV-1"))
    assert [c.instance_number for c in valves] == [1, 2, 3]
    assert [c.display_label for c in valves] == ["VLV-1 (1 of 3)", "VLV-1 (2 of 3)", "VLV-1 (3 of 3)"]
    assert all(c.drawing_id == store.drawings[PROJECT]["P-002"].id for c in valves)
    assert store.components_for(PROJECT, _key("FLG-1"))[0].display_label == "FLG-1"

    reduced = next(t for t in store.list_templates(PROJECT) if t.name == "Reduced Milestone Set")
    assert valves[0].template_id == reduced.id
    milestones = store.milestones_for(valves[0].id)
    assert [m.name for m in milestones] == ["Receive", "Install", "Punch", "Test", "Restore"]
    assert not any(m.is_completed for m in milestones)


def test_quantity_is_conserved_through_consolidation(store, make_request):
    rows = [
        {"Drawing": "P-002", "Tag": "VLV-1", "Qty": 2, "Test Pressure": 285},
        {"Drawing": "P-002", "Tag": "VLV-2", "Qty": 1, "Test Pressure": 285},
        {"Drawing": "P-002", "Tag": "VLV-1", "Qty": 4, "Test Pressure": 285},
    ]
    result = _run(store, make_request(rows))
    assert result.summary.consolidated == 2
    assert result.summary.created == 7
    assert len(store.components_for(PROJECT, _key("VLV-1"))) == 6
    assert "DUPLICATE_MERGED" in result.report.codes()


def test_reimport_with_skip_duplicates_is_idempotent(store, make_request):
    request = make_request(VALVES)
    _run(store, request)
    again = _run(store, request, skip_duplicates=True)

    assert again.summary.created == 0
    assert again.summary.skipped == 2
    assert again.outcome is ImportOutcome.NOTHING_IMPORTED
    assert len(store.components_for(PROJECT)) == 4


def test_reimport_continues_numbering(store, make_request):
    _run(store, make_request(VALVES))
    result = _run(store, make_request([{"Drawing": "P-002", "Tag": "VLV-1", "Qty": 2, "Test Pressure": 285}]))

    assert "DUPLICATE_EXISTING" in [i.code for i in result.report.warnings]
    new = [c for c in store.components_for(PROJECT, _key("VLV-1")) if c.instance_number > 3]
    assert [c.instance_number for c in new] == [4, 5]
    assert [c.display_label for c in new] == ["VLV-1 (4 of 5)", "VLV-1 (5 of 5)"]


def test_update_existing_relabels_stored_instances(store, make_request):
    _run(store, make_request(VALVES))
    result = _run(
        store,
        make_request([{"Drawing": "P-002", "Tag": "VLV-1", "Qty": 2, "Test Pressure": 300}]),
        update_existing=True,
    )
    assert result.summary.created == 2
    assert result.summary.updated == 3
    assert result.outcome is ImportOutcome.FULLY_IMPORTED
    valves = store.components_for(PROJECT, _key("VLV-1"))
    assert [c.display_label for c in valves] == [f"VLV-1 ({n} of 5)" for n in range(1, 6)]
    assert all(c.attributes["test_pressure"] == 300 for c in valves)


def test_missing_drawing_by_mode(store, make_request):
    rows = [
        {"Drawing": "P-999", "Tag": "VLV-9", "Qty": 1, "Test Pressure": 285},
        {"Drawing": "P-002", "Tag": "VLV-1", "Qty": 1, "Test Pressure": 285},
    ]

    flexible = _run(store, make_request(rows))
    assert flexible.summary.created == 1
    assert {"DRAWING_NOT_FOUND", "DRAWING_UNRESOLVED"} <= {i.code for i in flexible.report.warnings}

    strict = _run(InMemoryStore(), make_request([rows[0]]), strict_mode=True)
    assert strict.summary.created == 0
    assert strict.outcome is ImportOutcome.NOTHING_IMPORTED
    assert strict.exit_code == 2

    created = _run(store, make_request([rows[0]]), create_missing_drawings=True)
    assert created.summary.created == 1
    assert "P-999" in store.drawings[PROJECT]


def test_invalid_rows_do_not_block_valid_rows(store, make_request):
    rows = [
        {"Drawing": "P-002", "Tag": "VLV-1", "Qty": 1, "Test Pressure": 285},
        {"Drawing": "P-002", "Tag": "VLV-2", "Qty": 1, "Test Pressure": -5},
        {"Drawing": "P-002", "Tag": "VLV-3", "Qty": 1, "Test Pressure": 285},
    ]
    log = ErrorLogBuffer()
    result = run_import(make_request(rows), store, error_log=log, show_progress=False)

    assert result.outcome is ImportOutcome.PARTIALLY_IMPORTED
    assert result.summary.created == 2
    assert result.summary.errors == 1
    assert [(r.row, r.code) for r in log.records] == [(3, "NEGATIVE_PRESSURE")]


def test_default_template_when_project_has_none(store, make_request):
    result = run_import(make_request(VALVES), store, seed_standard_templates=False, show_progress=False)
    assert result.summary.created == 4
    templates = store.list_templates(PROJECT)
    assert [t.name for t in templates] == [DEFAULT_TEMPLATE_NAME]
    assert {c.template_id for c in store.components_for(PROJECT)} == {templates[0].id}


def test_weld_import_uses_field_weld_template(store, make_request):
    rows = [{"Weld No": "W-1", "Drawing": "P-002"}, {"Weld No": "W-2", "Drawing": "P-002"}]
    result = _run(store, make_request(rows, kind=ImportKind.WELD))
    assert result.summary.created == 2
    weld = store.components_for(PROJECT, _key("W-1"))[0]
    assert weld.category == "FIELD_WELD"
    assert [m.name for m in store.milestones_for(weld.id)][:2] == ["Fit Up", "Weld Made"]


class StaleStore(InMemoryStore):
    """Reports no stored instances, as if another writer committed after the lookup."""

    def existing_instances(self, project_id, keys=None):
        return {}


def _stale_store() -> StaleStore:
    s = StaleStore()
    s.add_drawing(PROJECT, "P-002")
    taken = ComponentInstance(
        key=_key("VLV-1"), instance_number=1, total_instances_on_key=1, display_label="VLV-1", category="VALVE",
    )
    with s.transaction() as tx:
        tx.insert_components(PROJECT, [taken])
    return s


ONE_EACH = [
    {"Drawing": "P-002", "Tag": "VLV-1", "Qty": 1, "Test Pressure": 285},
    {"Drawing": "P-002", "Tag": "VLV-2", "Qty": 1, "Test Pressure": 285},
]


def test_conflicting_chunk_fails_alone(make_request):
    s = _stale_store()
    log = ErrorLogBuffer()
    result = run_import(make_request(ONE_EACH), s, options=ImportOptions(chunk_size=1), error_log=log,
                        show_progress=False)

    assert result.outcome is ImportOutcome.PARTIALLY_IMPORTED
    assert result.summary.created == 1
    assert result.summary.chunks == 2
    assert [(f.label, f.code) for f in result.failures] == [("VLV-1", "PERSISTENCE_CONFLICT")]
    assert [(r.row, r.code) for r in log.records] == [(2, "PERSISTENCE_CONFLICT")]
    assert len(s.components_for(PROJECT, _key("VLV-2"))) == 1


def test_all_or_nothing_stops_after_first_failure(make_request):
    s = _stale_store()
    seen = []
    result = run_import(
        make_request(ONE_EACH), s, options=ImportOptions(chunk_size=1, all_or_nothing=True),
        metrics_callback=seen.append, show_progress=False,
    )
    assert result.outcome is ImportOutcome.NOTHING_IMPORTED
    assert [f.code for f in result.failures] == ["PERSISTENCE_CONFLICT", "CHUNK_ABORTED"]
    assert [c.status for c in seen] == ["failed", "skipped"]
    assert s.components_for(PROJECT, _key("VLV-2")) == []


def test_dry_run_writes_nothing(store, make_request):
    rows = VALVES + [{"Drawing": "P-404", "Tag": "X-1", "Qty": 1, "Test Pressure": 285}]
    result = _run(store, make_request(rows), dry_run=True, create_missing_drawings=True)

    assert result.dry_run
    assert result.exit_code == 0
    assert result.outcome is ImportOutcome.NOTHING_IMPORTED
    assert result.summary.consolidated == 3
    assert store.components_for(PROJECT) == []
    assert store.list_templates(PROJECT) == []
    assert "P-404" not in store.drawings[PROJECT]
    assert store.transactions == 0


def test_cancel_before_persisting(store, make_request):
    cancel = threading.Event()
    cancel.set()
    result = run_import(make_request(VALVES), store, cancel_event=cancel, show_progress=False)
    assert result.cancelled
    assert result.summary.created == 0
    assert result.outcome is ImportOutcome.NOTHING_IMPORTED
    assert store.components_for(PROJECT) == []


def test_batch_size_does_not_change_result(store, make_request):
    rows = [{"Drawing": "P-002", "Tag": f"VLV-{i % 5}", "Qty": 1, "Test Pressure": 285} for i in range(20)]
    small = _run(InMemoryStore(), make_request(rows), batch_size=3, dry_run=True)
    large = _run(InMemoryStore(), make_request(rows), dry_run=True)
    assert small.report.issues() == large.report.issues()
    assert replace(small.summary, elapsed_seconds=0) == replace(large.summary, elapsed_seconds=0)
