from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the component import engine.

These are the typed shapes produced by component_import.config.loader and
consumed by the orchestrator and CLI. ImportOptions is the options bag a
caller passes to a single import run.
"""

DEFAULT_MAX_ROWS = 20000
DEFAULT_BATCH_SIZE = 5000
DEFAULT_CHUNK_SIZE = 200
DEFAULT_TRANSACTION_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportOptions:
    """Per-run options bag.

    strict_mode turns reference and store-duplicate violations into errors;
    in flexible mode (the default) they are warnings. dry_run stops after
    validation and never touches the store.
    """
    max_rows: int = DEFAULT_MAX_ROWS
    batch_size: int = DEFAULT_BATCH_SIZE  # validation batch (rows)
    chunk_size: int = DEFAULT_CHUNK_SIZE  # persistence chunk (instances)
    strict_mode: bool = False
    skip_duplicates: bool = False
    update_existing: bool = False
    create_missing_drawings: bool = False
    dry_run: bool = False
    all_or_nothing: bool = False
    transaction_timeout_seconds: int = DEFAULT_TRANSACTION_TIMEOUT_SECONDS
    max_columns: int | None = None

    @property
    def validate_only(self) -> bool:
        return self.dry_run


@dataclass(frozen=True)
class EngineConfig:
    """Root configuration loaded from config/import.yml."""
    database: DatabaseConfig
    options: ImportOptions
    category_templates: dict[str, str] = field(default_factory=dict)  # category -> template name
    type_aliases: dict[str, str] = field(default_factory=dict)  # raw type text -> category
    seed_standard_templates: bool = True
    log_dir: str = "./logs"
