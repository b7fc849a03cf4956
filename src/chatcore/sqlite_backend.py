from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

SCHEMA_VERSION = 2


class SQLiteBackend:
    """Owns a shared SQLite connection and applies record-store migrations."""

    def __init__(self, db_path: str) -> None:
        self._lock = threading.Lock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._configure()
        self._apply_migrations()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def close(self) -> None:
        self._conn.close()

    def _configure(self) -> None:
        cursor = self._conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    def _apply_migrations(self) -> None:
        user_version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if user_version > SCHEMA_VERSION:
            raise ValueError(f"Unsupported schema version: {user_version}")
        if user_version < 1:
            self._create_v1_schema()
        if user_version < 2:
            self._create_v2_indexes()
        if user_version != SCHEMA_VERSION:
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    def _create_v1_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS records (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                collection TEXT NOT NULL,
                record_id TEXT NOT NULL,
                doc TEXT NOT NULL,
                UNIQUE (collection, record_id)
            )
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS records_by_collection ON records (collection, seq)"
        )

    def _create_v2_indexes(self) -> None:
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS records_by_conversation "
            "ON records (collection, json_extract(doc, '$.conversation_id'))"
        )

