#!/usr/bin/env python3
"""Generate synthetic component or field-weld spreadsheets.

The files use the header names a takeoff export typically carries, so the
column mapper can infer every field. A share of rows repeat an earlier
(drawing, component, size) key to exercise consolidation.

    python scripts/gen_sample_import.py --rows 5000 --kind component --output data/sample.xlsx
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

COMPONENT_TYPES = ["Pipe", "Gate Valve", "90 Elbow", "Weld Neck Flange", "Spiral Wound Gasket",
                   "Pipe Shoe", "Pressure Gauge", "Spool", "Reducer", "Strainer"]
SIZES = ['1/2"', '3/4"', '1"', '2"', '3"', '4"', '6"', '8"']
SPECS = ["A1A", "B2C", "CS150", "SS300"]
WELD_TYPES = ["BW", "SW", "FW"]


def _drawings(rng: np.random.Generator, count: int) -> list[str]:
    return [f"P-{rng.integers(10000, 99999)}-{i:02d}" for i in range(count)]


def generate_components(rows: int, drawings: int = 50, duplicate_ratio: float = 0.1, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    dwg = _drawings(rng, drawings)
    frame = pd.DataFrame({
        "Drawing": rng.choice(dwg, rows),
        "Tag No": [f"CMP-{i:05d}" for i in range(1, rows + 1)],
        "Type": rng.choice(COMPONENT_TYPES, rows),
        "Size": rng.choice(SIZES, rows),
        "Spec": rng.choice(SPECS, rows),
        "Qty": rng.integers(1, 5, rows),
        "Test Pressure": rng.choice([150, 285, 740, 1480], rows),
        "Description": [f"Synthetic component {i}" for i in range(1, rows + 1)],
    })
    dupes = int(rows * duplicate_ratio)
    if dupes:
        # copy identity fields of earlier rows so they consolidate
        src = rng.integers(0, rows - dupes, dupes)
        dst = np.arange(rows - dupes, rows)
        for col in ("Drawing", "Tag No", "Size"):
            frame.loc[dst, col] = frame.loc[src, col].to_numpy()
    return frame


def generate_welds(rows: int, drawings: int = 50, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    dwg = _drawings(rng, drawings)
    dates = pd.Timestamp("2024-01-01") + pd.to_timedelta(rng.integers(0, 365, rows), unit="D")
    pmi = rng.random(rows) < 0.2
    return pd.DataFrame({
        "Weld ID": [f"W{i:04d}" for i in range(1, rows + 1)],
        "Drawing Number": rng.choice(dwg, rows),
        "Welder Stencil": [f"WS{n:03d}" for n in rng.integers(1, 60, rows)],
        "Weld Type": rng.choice(WELD_TYPES, rows),
        "Weld Size": rng.choice(SIZES, rows),
        "Test Pressure": rng.choice([150, 285, 740], rows),
        "Date Welded": dates,
        "PMI Required": np.where(pmi, "Yes", "No"),
        "X-Ray %": rng.choice([0, 5, 10, 100], rows),
    })


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Generate a synthetic import spreadsheet")
    p.add_argument("--rows", type=int, default=1000)
    p.add_argument("--kind", choices=["component", "weld"], default="component")
    p.add_argument("--drawings", type=int, default=50)
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--output", type=Path, required=True, help=".xlsx or .csv path")
    args = p.parse_args(argv)

    if args.rows < 1:
        print("--rows must be >= 1", file=sys.stderr)
        return 1

    if args.kind == "weld":
        frame = generate_welds(args.rows, args.drawings, args.seed)
    else:
        frame = generate_components(args.rows, args.drawings, seed=args.seed)

    args.output.parent.mkdir(parents=True, exist_ok=True)
    if args.output.suffix.lower() == ".csv":
        frame.to_csv(args.output, index=False)
    else:
        with pd.ExcelWriter(args.output, engine="openpyxl") as writer:
            frame.to_excel(writer, sheet_name="Import", index=False)
    print(f"wrote {len(frame)} {args.kind} rows to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
