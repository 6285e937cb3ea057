from __future__ import annotations

import time

import numpy as np
import pandas as pd

from component_import.db.memory import InMemoryStore
from component_import.models.config_models import ImportOptions
from component_import.services.orchestrator import ImportRequest, run_import

"""Throughput smoke test over the in-memory store.

5k component rows (10% repeated keys) through the whole pipeline with the
default chunk size. Budgets are loose so CI stays green on slow runners;
the point is to catch accidental quadratic behaviour.
"""

ROWS = 5_000
TYPES = ["Pipe", "Gate Valve", "90 Elbow", "Weld Neck Flange", "Spiral Wound Gasket", "Pipe Shoe"]


def synthetic_takeoff(rows: int = ROWS, seed: int = 42) -> bytes:
    rng = np.random.default_rng(seed)
    drawings = [f"P-{i:03d}" for i in range(40)]
    frame = pd.DataFrame({
        "Drawing": rng.choice(drawings, rows),
        "Tag No": [f"CMP-{i:05d}" for i in range(rows)],
        "Type": rng.choice(TYPES, rows),
        "Size": rng.choice(['1"', '2"', '4"'], rows),
        "Qty": rng.integers(1, 4, rows),
        "Test Pressure": rng.choice([150, 285, 740], rows),
    })
    dupes = rows // 10
    frame.loc[rows - dupes:, ["Drawing", "Tag No", "Size"]] = frame.loc[: dupes - 1, ["Drawing", "Tag No", "Size"]].to_numpy()
    return frame.to_csv(index=False).encode("utf-8")


def test_pipeline_throughput():
    body = synthetic_takeoff()
    store = InMemoryStore()
    started = time.perf_counter()
    result = run_import(
        ImportRequest(body, "synthetic.csv", "perf"),
        store,
        options=ImportOptions(create_missing_drawings=True),
        show_progress=False,
    )
    elapsed = time.perf_counter() - started

    assert result.summary.total_rows == ROWS
    assert result.summary.consolidated == ROWS - ROWS // 10
    assert result.summary.created == len(store.components_for("perf"))
    assert result.report.error_count == 0
    assert elapsed < 120, f"pipeline too slow: {elapsed:.1f}s"
    assert ROWS / elapsed > 50
