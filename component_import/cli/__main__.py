from __future__ import annotations

import argparse
import mimetypes
import os
import sys
from dataclasses import replace
from pathlib import Path

from component_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, default_config, load_config
from component_import.db.connection import db_connection, load_env_file
from component_import.db.memory import InMemoryStore
from component_import.db.postgres import PostgresStore
from component_import.db.store import ImportStore
from component_import.errors import FormatError, StoreConnectionError
from component_import.logging.error_log import ErrorLogBuffer
from component_import.logging.init import log_summary, set_debug, setup_logging
from component_import.models.candidate import ImportKind
from component_import.models.config_models import EngineConfig, ImportOptions
from component_import.models.processing_result import ImportResult
from component_import.models.validation import ValidationStage
from component_import.services.orchestrator import ImportRequest, run_import
from component_import.services.report_export import write_report
from component_import.services.summary import render_summary_line
from component_import.tabular.mapper import build_column_mapping
from component_import.tabular.reader import parse_table

"""CLI entrypoint.

    component-import FILE --project ID [--kind component|weld] [options]

Flow: load .env (override) -> load config -> connect (or mock mode) ->
run_import -> SUMMARY line -> error log flush -> exit code.

Database access is skipped with DISABLE_DB_CONNECT=1; a failed connection
also falls back to the in-memory store (mock mode).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

STAGES = {
    "format": ValidationStage.FORMAT_CHECK,
    "preview": ValidationStage.PREVIEW_VALIDATION,
    "full": ValidationStage.FULL_IMPORT_VALIDATION,
}


def _parse_mapping(pairs: list[str]) -> dict[str, str] | None:
    if not pairs:
        return None
    mapping: dict[str, str] = {}
    for pair in pairs:
        field, sep, header = pair.partition("=")
        if not sep or not field.strip() or not header.strip():
            raise argparse.ArgumentTypeError(f"--mapping expects FIELD=HEADER, got {pair!r}")
        mapping[field.strip()] = header.strip()
    return mapping


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="component-import", description="Spreadsheet -> project component importer")
    p.add_argument("file", type=Path, help="Spreadsheet (.xlsx/.xls) or CSV file to import")
    p.add_argument("--project", required=True, help="Target project identifier")
    p.add_argument("--kind", choices=[k.value for k in ImportKind], default=ImportKind.COMPONENT.value)
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config path")
    p.add_argument("--mapping", action="append", default=[], metavar="FIELD=HEADER",
                   help="Explicit column mapping (repeatable)")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--strict", dest="strict_mode", action="store_true", default=None,
                      help="Missing drawings and stored duplicates are errors")
    mode.add_argument("--flexible", dest="strict_mode", action="store_false", default=None,
                      help="Missing drawings and stored duplicates are warnings")
    p.add_argument("--skip-duplicates", action="store_true", default=None)
    p.add_argument("--update-existing", action="store_true", default=None)
    p.add_argument("--create-missing-drawings", action="store_true", default=None)
    p.add_argument("--all-or-nothing", action="store_true", default=None)
    p.add_argument("--dry-run", action="store_true", help="Validate only, write nothing")
    p.add_argument("--stage", choices=list(STAGES), default="full")
    p.add_argument("--export-report", type=Path, metavar="PATH", help="Write the issue list as CSV")
    p.add_argument("--inspect-data", action="store_true", help="Print headers, mapping and first rows then exit")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _options(cfg: EngineConfig, args: argparse.Namespace) -> ImportOptions:
    """Config defaults overridden by the flags that were given."""
    overrides = {
        name: getattr(args, name)
        for name in ("strict_mode", "skip_duplicates", "update_existing", "create_missing_drawings", "all_or_nothing")
        if getattr(args, name) is not None
    }
    if args.dry_run:
        overrides["dry_run"] = True
    return replace(cfg.options, **overrides)


def _load_config(path: Path) -> EngineConfig:
    if path == DEFAULT_CONFIG_PATH and not path.exists():
        return default_config()
    return load_config(path)


def _inspect_data(request: ImportRequest, options: ImportOptions) -> int:
    table = parse_table(request.buffer, request.filename, request.mimetype,
                        max_rows=options.max_rows, max_columns=options.max_columns)
    mapping = build_column_mapping(table.headers, request.kind, request.column_mapping)
    print(f"FILE: {request.filename} format={table.detected_format} sheet={table.sheet_name} rows={table.row_count}")
    print(f"  headers={table.headers}")
    print(f"  mapping={mapping.as_dict()}")
    if mapping.missing_required():
        print(f"  missing_required={mapping.missing_required()}")
    if mapping.unmapped_headers:
        print(f"  unmapped={mapping.unmapped_headers}")
    for row in table.rows[:3]:
        safe = {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in row.values.items()}
        print(f"  row {row.row_number}: {safe}")
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None only: an explicit [] must not pick up the test runner's argv
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    load_env_file(Path(".env"), override=True)
    try:
        cfg = _load_config(args.config)
        mapping = _parse_mapping(args.mapping)
    except (ConfigError, argparse.ArgumentTypeError) as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    options = _options(cfg, args)

    if not args.file.is_file():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    request = ImportRequest(
        buffer=args.file.read_bytes(),
        filename=args.file.name,
        project_id=args.project,
        kind=ImportKind(args.kind),
        mimetype=mimetypes.guess_type(args.file.name)[0],
        column_mapping=mapping,
    )
    error_log = ErrorLogBuffer(cfg.log_dir)

    def _run(store: ImportStore) -> ImportResult:
        return run_import(
            request,
            store,
            options=options,
            category_templates=cfg.category_templates,
            type_aliases=cfg.type_aliases,
            seed_standard_templates=cfg.seed_standard_templates,
            error_log=error_log,
            stage=STAGES[args.stage],
        )

    try:
        if args.inspect_data:
            return _inspect_data(request, options)

        db_mode = "mock"
        if os.getenv("DISABLE_DB_CONNECT") == "1":
            logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
            result = _run(InMemoryStore())
        else:
            try:
                with db_connection(cfg.database) as conn:
                    db_mode = "live"
                    result = _run(PostgresStore(conn))
            except StoreConnectionError as db_e:
                if db_mode == "live":
                    raise
                logger.info(f"DB connection failed -> fallback to mock mode: {db_e}")
                result = _run(InMemoryStore())
    except (FormatError, StoreConnectionError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        error_log.record(request.filename, None, type(e).__name__, str(e))
        error_log.flush()
        return EXIT_FATAL

    logger.info(f"mode={db_mode} rows={result.summary.total_rows} issues={len(result.report.issues())}")
    if args.export_report is not None:
        path = write_report(result.report, args.export_report)
        logger.info(f"issue report written to {path}")

    log_path = error_log.flush()
    if log_path is not None:
        logger.info(f"error log: {log_path}")

    # log_summary adds the "SUMMARY " label itself
    log_summary(render_summary_line(result)[len("SUMMARY "):])
    return result.exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
