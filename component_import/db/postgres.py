from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import Json

from component_import.db.batch_insert import BatchInsertError, BatchMetrics, batch_insert
from component_import.db.store import DrawingRecord, ExistingInstances
from component_import.errors import PersistenceConflict, StoreConnectionError
from component_import.models.candidate import IdentityKey
from component_import.models.instance import (
    ComponentInstance,
    InstanceUpdate,
    MilestoneDefinition,
    MilestoneTemplate,
)

"""PostgreSQL implementation of the store protocols (see schema.sql).

Chunk transactions run with SET LOCAL statement_timeout. Integrity and data
errors (unique or foreign key violations, bad values) and statement timeouts
fail the chunk (PersistenceConflict); lost connections are fatal
(StoreConnectionError).
"""

__all__ = [
    "PostgresStore",
    "COMPONENT_COLUMNS",
    "MILESTONE_COLUMNS",
]

logger = logging.getLogger(__name__)

COMPONENT_COLUMNS = [
    "project_id",
    "drawing_id",
    "drawing_number",
    "item_id",
    "discriminator",
    "instance_number",
    "total_instances_on_key",
    "display_label",
    "category",
    "workflow_type",
    "template_id",
    "status",
    "completion_percent",
    "attributes",
]

MILESTONE_COLUMNS = [
    "component_id",
    "name",
    "milestone_order",
    "weight",
    "is_completed",
    "percentage_value",
    "quantity_value",
]


def _json(value: Any) -> Json:
    return Json(value, dumps=lambda o: json.dumps(o, default=str))


def _log_insert_metrics(metrics: BatchMetrics) -> None:
    logger.debug("inserted %d rows in %.3fs", metrics.batch_size, metrics.elapsed_seconds)


def _root_cause(exc: BaseException) -> BaseException:
    return exc.__cause__ if isinstance(exc, BatchInsertError) and exc.__cause__ is not None else exc


def _key_filter(keys: Sequence[IdentityKey]) -> tuple[tuple[str, str, str], ...]:
    return tuple((k.drawing_ref, k.item_id, k.discriminator) for k in keys)


class _PgTransaction:
    def __init__(self, cursor: Any, metrics_callback: Callable[[BatchMetrics], None] | None = None) -> None:
        self.cur = cursor
        self.metrics_callback = metrics_callback

    def current_max_instances(self, project_id: str, keys: Iterable[IdentityKey]) -> dict[IdentityKey, int]:
        wanted = list(keys)
        if not wanted:
            return {}
        self.cur.execute(
            "SELECT drawing_number, item_id, discriminator, MAX(instance_number) FROM components "
            "WHERE project_id = %s AND (drawing_number, item_id, discriminator) IN %s "
            "GROUP BY drawing_number, item_id, discriminator",
            (project_id, _key_filter(wanted)),
        )
        return {IdentityKey(d, i, s): int(n) for d, i, s, n in self.cur.fetchall()}

    def insert_components(self, project_id: str, instances: Sequence[ComponentInstance]) -> list[str]:
        rows = [
            [
                project_id,
                inst.drawing_id,
                inst.key.drawing_ref,
                inst.key.item_id,
                inst.key.discriminator,
                inst.instance_number,
                inst.total_instances_on_key,
                inst.display_label,
                inst.category,
                inst.workflow_type.value,
                inst.template_id,
                inst.status,
                inst.completion_percent,
                _json(inst.attributes),
            ]
            for inst in instances
        ]
        res = batch_insert(
            self.cur, "components", COMPONENT_COLUMNS, rows, returning=["id"], metrics_callback=self.metrics_callback
        )
        return [str(r[0]) for r in res.returned_values or []]

    def insert_milestones(self, component_ids: Sequence[str], instances: Sequence[ComponentInstance]) -> int:
        rows = [
            [cid, m.name, m.order, m.weight, m.is_completed, m.percentage_value, m.quantity_value]
            for cid, inst in zip(component_ids, instances, strict=True)
            for m in inst.milestones
        ]
        res = batch_insert(
            self.cur, "component_milestones", MILESTONE_COLUMNS, rows, metrics_callback=self.metrics_callback
        )
        return res.inserted_rows

    def update_components(self, project_id: str, updates: Sequence[InstanceUpdate]) -> int:
        count = 0
        for u in updates:
            self.cur.execute(
                "UPDATE components SET total_instances_on_key = %(total)s, "
                "display_label = CASE WHEN %(total)s > 1 "
                "THEN item_id || ' (' || instance_number || ' of ' || %(total)s || ')' ELSE item_id END, "
                "attributes = attributes || %(attrs)s::jsonb "
                "WHERE project_id = %(project)s AND drawing_number = %(drawing)s "
                "AND item_id = %(item)s AND discriminator = %(disc)s "
                "AND (%(max)s::int IS NULL OR instance_number <= %(max)s)",
                {
                    "total": u.total_instances_on_key,
                    "attrs": _json(u.attributes),
                    "project": project_id,
                    "drawing": u.key.drawing_ref,
                    "item": u.key.item_id,
                    "disc": u.key.discriminator,
                    "max": u.existing_max_instance,
                },
            )
            count += self.cur.rowcount
        return count


class PostgresStore:
    def __init__(self, conn: Any, metrics_callback: Callable[[BatchMetrics], None] | None = None) -> None:
        self.conn = conn
        self.metrics_callback = metrics_callback or _log_insert_metrics

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        """Short transaction for lookups and seeding outside the chunk loop."""
        try:
            with self.conn:
                with self.conn.cursor() as cur:
                    yield cur
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            raise StoreConnectionError(str(e)) from e

    def find_drawings(self, project_id: str, refs: Iterable[str]) -> dict[str, DrawingRecord]:
        wanted = list(refs)
        if not wanted:
            return {}
        with self._cursor() as cur:
            cur.execute(
                "SELECT id, number, test_pressure, spec_code FROM drawings "
                "WHERE project_id = %s AND number = ANY(%s)",
                (project_id, wanted),
            )
            rows = cur.fetchall()
        return {
            number: DrawingRecord(str(did), number, float(tp) if tp is not None else None, spec)
            for did, number, tp, spec in rows
        }

    def create_drawings(self, project_id: str, refs: Sequence[str]) -> dict[str, DrawingRecord]:
        if not refs:
            return {}
        with self._cursor() as cur:
            res = batch_insert(
                cur, "drawings", ["project_id", "number"], [[project_id, r] for r in refs], returning=["id", "number"],
                metrics_callback=self.metrics_callback,
            )
        return {number: DrawingRecord(str(did), number) for did, number in res.returned_values or []}

    def existing_instances(
        self, project_id: str, keys: Iterable[IdentityKey] | None = None
    ) -> dict[IdentityKey, ExistingInstances]:
        sql = (
            "SELECT drawing_number, item_id, discriminator, MAX(instance_number), COUNT(*) "
            "FROM components WHERE project_id = %s"
        )
        params: list[Any] = [project_id]
        if keys is not None:
            wanted = list(keys)
            if not wanted:
                return {}
            sql += " AND (drawing_number, item_id, discriminator) IN %s"
            params.append(_key_filter(wanted))
        sql += " GROUP BY drawing_number, item_id, discriminator"
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return {IdentityKey(d, i, s): ExistingInstances(int(m), int(c)) for d, i, s, m, c in rows}

    def list_templates(self, project_id: str) -> list[MilestoneTemplate]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT id, name, milestones, is_default FROM milestone_templates WHERE project_id = %s ORDER BY id",
                (project_id,),
            )
            rows = cur.fetchall()
        templates = []
        for tid, name, milestones, is_default in rows:
            defs = tuple(
                MilestoneDefinition(
                    name=m["name"], order=int(m["order"]), weight=float(m["weight"]),
                    tracks_value=bool(m.get("tracks_value", True)),
                )
                for m in (milestones or [])
            )
            templates.append(MilestoneTemplate(str(tid), name, defs, bool(is_default)))
        return templates

    def create_template(
        self,
        project_id: str,
        name: str,
        milestones: Sequence[MilestoneDefinition],
        is_default: bool = False,
    ) -> MilestoneTemplate:
        payload = [
            {"name": m.name, "order": m.order, "weight": m.weight, "tracks_value": m.tracks_value} for m in milestones
        ]
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO milestone_templates (project_id, name, milestones, is_default) "
                "VALUES (%s, %s, %s, %s) RETURNING id",
                (project_id, name, _json(payload), is_default),
            )
            (tid,) = cur.fetchone()
        return MilestoneTemplate(str(tid), name, tuple(milestones), is_default)

    @contextmanager
    def transaction(self, timeout_seconds: int | None = None) -> Iterator[_PgTransaction]:
        cur = self.conn.cursor()
        try:
            if timeout_seconds:
                cur.execute("SET LOCAL statement_timeout = %s", (f"{int(timeout_seconds)}s",))
            yield _PgTransaction(cur, self.metrics_callback)
            self.conn.commit()
        except BaseException as exc:
            cause = _root_cause(exc)
            if isinstance(cause, psycopg2.InterfaceError) or (
                isinstance(cause, psycopg2.OperationalError) and not isinstance(cause, pg_errors.QueryCanceled)
            ):
                raise StoreConnectionError(str(cause)) from exc
            self.conn.rollback()
            if isinstance(cause, pg_errors.QueryCanceled):
                raise PersistenceConflict(f"chunk transaction exceeded {timeout_seconds}s") from exc
            # constraint and bad-value rejections fail this chunk only
            if isinstance(cause, (psycopg2.IntegrityError, psycopg2.DataError)):
                raise PersistenceConflict(str(cause).strip()) from exc
            raise
        finally:
            cur.close()
