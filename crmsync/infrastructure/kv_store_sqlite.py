from __future__ import annotations

import logging
import sqlite3

from crmsync.core.errors import PersistenceError

logger = logging.getLogger(__name__)


class SQLiteKeyValueStore:
    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection

    def get(self, key: str) -> str | None:
        try:
            row = self._connection.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"No se pudo leer la clave {key}") from exc
        if row is None:
            return None
        return row["value"] if isinstance(row, sqlite3.Row) else row[0]

    def set(self, key: str, value: str) -> None:
        try:
            with self._connection:
                self._connection.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, datetime('now'))
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, value),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"No se pudo guardar la clave {key}") from exc

    def delete(self, key: str) -> None:
        try:
            with self._connection:
                self._connection.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise PersistenceError(f"No se pudo borrar la clave {key}") from exc
