from __future__ import annotations

import json
import re
import sqlite3
from typing import Any, List, Mapping

from .errors import NotFoundError, StoreError, ValidationError
from .filters import OrderBy, apply_query, matches
from .sqlite_backend import SQLiteBackend
from .store import _require_id


_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SQLITE_INT_MIN = -(2**63)
_SQLITE_INT_MAX = 2**63 - 1


def _prefilter(where: Mapping[str, Any] | None) -> tuple[str, list]:
    """SQL for the top-level string and integer equalities in ``where``.

    Only narrows the candidate rows; the full filter still runs in Python.
    """

    clauses: List[str] = []
    params: list = []
    for name, value in (where or {}).items():
        if isinstance(value, bool) or not isinstance(value, (str, int)) or not _FIELD_NAME.match(name):
            continue
        if isinstance(value, int) and not _SQLITE_INT_MIN <= value <= _SQLITE_INT_MAX:
            continue
        if name == "id":
            clauses.append("record_id=?")
        else:
            clauses.append(f"json_extract(doc, '$.{name}')=?")
        params.append(value)
    return "".join(f" AND {clause}" for clause in clauses), params


def _dumps(record: Mapping[str, Any]) -> str:
    try:
        return json.dumps(dict(record), separators=(",", ":"), sort_keys=True)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"record is not JSON serializable: {exc}") from exc


class SQLiteRecordStore:
    """Durable document store keeping one JSON row per record."""

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    def _load_collection(self, collection: str, where: Mapping[str, Any] | None = None) -> List[dict]:
        clauses, params = _prefilter(where)
        rows = self._backend.connection.execute(
            f"SELECT doc FROM records WHERE collection=?{clauses} ORDER BY seq ASC",
            (collection, *params),
        ).fetchall()
        return [json.loads(row[0]) for row in rows]

    async def list(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> List[dict]:
        try:
            with self._backend.lock:
                records = self._load_collection(collection, where)
        except sqlite3.Error as exc:
            raise StoreError(f"list {collection} failed: {exc}") from exc
        return apply_query(records, where, order_by=order_by, limit=limit)

    async def create(self, collection: str, record: Mapping[str, Any]) -> dict:
        record_id = _require_id(record)
        try:
            with self._backend.lock:
                self._backend.connection.execute(
                    "INSERT INTO records (collection, record_id, doc) VALUES (?, ?, ?)",
                    (collection, record_id, _dumps(record)),
                )
        except sqlite3.IntegrityError as exc:
            raise StoreError(f"{collection} record {record_id} already exists") from exc
        except sqlite3.Error as exc:
            raise StoreError(f"create {collection} failed: {exc}") from exc
        return dict(record)

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> dict:
        try:
            with self._backend.lock:
                conn = self._backend.connection
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        "SELECT doc FROM records WHERE collection=? AND record_id=?",
                        (collection, record_id),
                    ).fetchone()
                    if row is None:
                        raise NotFoundError(f"{collection} record {record_id} not found")
                    merged = {**json.loads(row[0]), **patch, "id": record_id}
                    conn.execute(
                        "UPDATE records SET doc=? WHERE collection=? AND record_id=?",
                        (_dumps(merged), collection, record_id),
                    )
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except sqlite3.Error as exc:
            raise StoreError(f"update {collection} failed: {exc}") from exc
        return merged

    async def delete(self, collection: str, record_id: str) -> None:
        try:
            with self._backend.lock:
                cursor = self._backend.connection.execute(
                    "DELETE FROM records WHERE collection=? AND record_id=?",
                    (collection, record_id),
                )
                deleted = cursor.rowcount
        except sqlite3.Error as exc:
            raise StoreError(f"delete {collection} failed: {exc}") from exc
        if deleted == 0:
            raise NotFoundError(f"{collection} record {record_id} not found")

    async def create_if_absent(
        self, collection: str, record: Mapping[str, Any], key: Mapping[str, Any]
    ) -> tuple[dict, bool]:
        record_id = _require_id(record)
        try:
            with self._backend.lock:
                conn = self._backend.connection
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for existing in self._load_collection(collection, key):
                        if matches(existing, key):
                            conn.commit()
                            return existing, False
                    conn.execute(
                        "INSERT INTO records (collection, record_id, doc) VALUES (?, ?, ?)",
                        (collection, record_id, _dumps(record)),
                    )
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except sqlite3.IntegrityError as exc:
            raise StoreError(f"{collection} record {record_id} already exists") from exc
        except sqlite3.Error as exc:
            raise StoreError(f"create {collection} failed: {exc}") from exc
        return dict(record), True
