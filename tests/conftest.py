# Shared pytest fixtures
from __future__ import annotations

import io
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from component_import.db.memory import InMemoryStore
from component_import.logging.init import reset_logging
from component_import.models.candidate import ImportKind
from component_import.services.orchestrator import ImportRequest

PROJECT = "proj-1"


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
options:
  chunk_size: 50
  strict_mode: false
category_templates:
  valve: Full Milestone Set
type_aliases:
  "HP Gauge": INSTRUMENT
log_dir: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def xlsx_bytes(rows: list[dict[str, Any]], sheet_name: str = "Sheet1") -> bytes:
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, index=False)
    return buf.getvalue()


@pytest.fixture()
def make_xlsx() -> Callable[..., bytes]:
    return xlsx_bytes


@pytest.fixture()
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.add_drawing(PROJECT, "P-001", test_pressure=150.0, spec_code="A1A")
    s.add_drawing(PROJECT, "P-002")
    return s


@pytest.fixture()
def make_request() -> Callable[..., ImportRequest]:
    def _make(rows: list[dict[str, Any]], kind: ImportKind = ImportKind.COMPONENT, **kw: Any) -> ImportRequest:
        return ImportRequest(
            buffer=xlsx_bytes(rows),
            filename=kw.pop("filename", "takeoff.xlsx"),
            project_id=kw.pop("project_id", PROJECT),
            kind=kind,
            **kw,
        )
    return _make


@pytest.fixture()
def clean_logging():
    reset_logging()
    yield
    reset_logging()
