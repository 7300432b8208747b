from __future__ import annotations

import json
import logging
from typing import Any

from crmsync.domain.ports import KeyValueStorePort

logger = logging.getLogger(__name__)


def columns_key(table_id: str, entity_type: str) -> str:
    return f"COLUMNS_{table_id}_{entity_type}"


def header_map_key(table_id: str, entity_type: str) -> str:
    return f"HEADER_TO_FIELD_MAP_{table_id}_{entity_type}"


def cell_state_key(table_id: str, row_id: str) -> str:
    return f"CELL_STATE_{table_id}_{row_id}"


def tracked_rows_key(table_id: str) -> str:
    return f"TRACKED_ROWS_{table_id}"


def lease_key(table_id: str) -> str:
    return f"LEASE_{table_id}"


def last_sync_key(table_id: str) -> str:
    return f"LAST_SYNC_{table_id}"


class NamespacedStore:
    """Antepone un espacio de nombres (p. ej. el usuario) a todas las claves."""

    def __init__(self, store: KeyValueStorePort, namespace: str | None = None) -> None:
        self._store = store
        self._prefix = f"{namespace.strip()}:" if namespace and namespace.strip() else ""

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> str | None:
        return self._store.get(self._key(key))

    def set(self, key: str, value: str) -> None:
        self._store.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._store.delete(self._key(key))


def load_json(store: KeyValueStorePort, key: str, default: Any = None) -> Any:
    raw = store.get(key)
    if raw in (None, ""):
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Valor JSON corrupto en clave %s; se ignora", key)
        return default


def save_json(store: KeyValueStorePort, key: str, value: Any) -> None:
    store.set(key, json.dumps(value, ensure_ascii=False, sort_keys=True, default=str))
