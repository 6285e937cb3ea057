from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from component_import.models.config_models import DatabaseConfig, EngineConfig, ImportOptions

"""Config loader.

Responsibilities:
- Load YAML config/import.yml
- Validate it against the JSON schema shipped next to this module
- Apply defaults for every omitted option
"""

__all__ = [
    "ConfigError",
    "SCHEMA_PATH",
    "DEFAULT_CONFIG_PATH",
    "load_config",
    "default_config",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: when the schema file is missing or not valid JSON, or when
            the config violates it (unknown keys, wrong types, out of range).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"config validation failed at {where}: {e.message}") from e


def _build(data: dict[str, Any]) -> EngineConfig:
    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    options = ImportOptions(**(data.get("options") or {}))
    return EngineConfig(
        database=db,
        options=options,
        category_templates={k.upper(): v for k, v in (data.get("category_templates") or {}).items()},
        type_aliases=dict(data.get("type_aliases") or {}),
        seed_standard_templates=data.get("seed_standard_templates", True),
        log_dir=data.get("log_dir", "./logs"),
    )


def default_config() -> EngineConfig:
    return _build({})


def load_config(path: Path) -> EngineConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")

    _validate_config_schema(data)
    return _build(data)
