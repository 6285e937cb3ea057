from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from component_import.errors import StoreConnectionError
from component_import.models.config_models import DatabaseConfig

"""PostgreSQL connection helpers.

Connection settings resolve in this order:
    1. environment (after `.env` has been loaded in override mode)
       - DATABASE_URL / PGDSN as a whole DSN
       - PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE individually
    2. the `database` section of config/import.yml for anything still missing
"""

__all__ = [
    "load_env_file",
    "resolve_dsn",
    "db_connection",
]

logger = logging.getLogger(__name__)


def load_env_file(path: Path, override: bool = True) -> bool:
    """Load .env with python-dotenv; returns False when the file is absent."""
    if not path.exists():
        return False
    return load_dotenv(dotenv_path=path, override=override)


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def db_connection(db_cfg: DatabaseConfig) -> Iterator[psycopg2.extensions.connection]:
    """Yield an open connection with autocommit off; the store owns commits."""
    try:
        conn = psycopg2.connect(resolve_dsn(db_cfg))
    except psycopg2.OperationalError as e:
        raise StoreConnectionError(f"cannot connect to database: {e}") from e
    conn.autocommit = False
    try:
        yield conn
    finally:
        if not conn.closed:
            conn.close()
