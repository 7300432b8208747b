"""Conexión SQLite del estado local (snapshots de celdas, estados de fila y leases)."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from crmsync.bootstrap.settings import resolve_data_dir

DB_FILENAME = "crmsync_state.db"
DEFAULT_BUSY_TIMEOUT_MS = 30000

_PRAGMAS = (
    ("journal_mode", "WAL"),
    ("synchronous", "NORMAL"),
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
)


def state_db_path() -> Path:
    return resolve_data_dir() / DB_FILENAME


def configure_sqlite_connection(connection: sqlite3.Connection, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
    connection.row_factory = sqlite3.Row
    for name, value in (*_PRAGMAS, ("busy_timeout", str(int(busy_timeout_ms)))):
        connection.execute(f"PRAGMA {name}={value}")
    with connection:
        for statement in _SCHEMA:
            connection.execute(statement)


def get_connection(
    db_path: Path | None = None,
    *,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> sqlite3.Connection:
    """Abre (y crea si hace falta) la base de estado con WAL y el esquema aplicado."""
    path = db_path or state_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(path, check_same_thread=False, timeout=max(1.0, busy_timeout_ms / 1000))
    configure_sqlite_connection(connection, busy_timeout_ms=busy_timeout_ms)
    return connection
