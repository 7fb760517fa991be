"""Key-value stores for persisted model state.

Every backend speaks the same small contract: ``get(key) -> str | None`` and
``set(key, value)``. Reads never raise for a missing or unreadable row, they
return None, which the engine treats as "retrain".
"""

from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import duckdb

_DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "fleet_models.db"


class MemoryStore:
    """Process-local store, handy for tests and throwaway engines."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return sorted(self._data)


class SQLiteStore:
    """SQLite-backed store, one row per model key."""

    def __init__(self, db_path: str | os.PathLike | None = None) -> None:
        self._db_path = str(db_path or os.getenv("FLEET_ML_DB_PATH", _DEFAULT_DB_PATH))
        self.init_db()

    def _get_db(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def init_db(self) -> None:
        """Create the model_store table if it doesn't exist."""
        conn = self._get_db()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS model_store (
                    model_key TEXT PRIMARY KEY,
                    payload   TEXT NOT NULL,
                    saved_at  TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> str | None:
        try:
            conn = self._get_db()
            try:
                row = conn.execute(
                    "SELECT payload FROM model_store WHERE model_key = ?", (key,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            print(f"[model-store] sqlite read failed for {key}: {e}", flush=True)
            return None
        return row["payload"] if row else None

    def set(self, key: str, value: str) -> None:
        conn = self._get_db()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO model_store (model_key, payload, saved_at) "
                "VALUES (?, ?, ?)",
                (key, value, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, key: str) -> bool:
        conn = self._get_db()
        try:
            cursor = conn.execute("DELETE FROM model_store WHERE model_key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def keys(self) -> list[str]:
        conn = self._get_db()
        try:
            rows = conn.execute(
                "SELECT model_key FROM model_store ORDER BY model_key"
            ).fetchall()
        finally:
            conn.close()
        return [r["model_key"] for r in rows]


class DuckDBStore:
    """DuckDB-backed store, sharing one lazily opened connection."""

    def __init__(self, db_path: str | os.PathLike | None = None) -> None:
        self._db_path = str(
            db_path or os.getenv("FLEET_ML_DB_PATH", "fleet_models.duckdb")
        )
        self._conn: duckdb.DuckDBPyConnection | None = None

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            self._conn = duckdb.connect(self._db_path)
            self._init_table()
        return self._conn

    def _init_table(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS model_store (
                model_key VARCHAR PRIMARY KEY,
                payload   VARCHAR NOT NULL,
                saved_at  TIMESTAMP
            )
        """)

    def get(self, key: str) -> str | None:
        try:
            row = self.conn.execute(
                "SELECT payload FROM model_store WHERE model_key = ?", [key]
            ).fetchone()
        except duckdb.Error as e:
            print(f"[model-store] duckdb read failed for {key}: {e}", flush=True)
            return None
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO model_store (model_key, payload, saved_at) "
            "VALUES (?, ?, ?)",
            [key, value, datetime.now(timezone.utc).replace(tzinfo=None)],
        )

    def delete(self, key: str) -> bool:
        existed = self.get(key) is not None
        self.conn.execute("DELETE FROM model_store WHERE model_key = ?", [key])
        return existed

    def keys(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT model_key FROM model_store ORDER BY model_key"
        ).fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        """Close the DuckDB connection."""
        if self._conn:
            self._conn.close()
            self._conn = None


def get_store(kind: str | None = None, db_path: str | None = None):
    """Build the store named by kind, or by FLEET_ML_STORE (default sqlite)."""
    kind = (kind or os.getenv("FLEET_ML_STORE", "sqlite")).lower()
    if kind == "memory":
        return MemoryStore()
    if kind == "sqlite":
        return SQLiteStore(db_path)
    if kind == "duckdb":
        return DuckDBStore(db_path)
    raise ValueError(f"Unknown model store '{kind}'. Use sqlite, duckdb or memory.")
