from __future__ import annotations

import sqlite3

import pytest

from crmsync.application.two_way_sync.state_keys import NamespacedStore, load_json, save_json
from crmsync.core.errors import PersistenceError
from crmsync.infrastructure.db import configure_sqlite_connection, get_connection
from crmsync.infrastructure.kv_store_memory import InMemoryKeyValueStore
from crmsync.infrastructure.kv_store_sqlite import SQLiteKeyValueStore


def test_get_connection_applies_pragmas(tmp_path) -> None:
    connection = get_connection(tmp_path / "state.db", busy_timeout_ms=4321)
    try:
        assert str(connection.execute("PRAGMA journal_mode").fetchone()[0]).lower() == "wal"
        assert int(connection.execute("PRAGMA synchronous").fetchone()[0]) == 1  # NORMAL
        assert int(connection.execute("PRAGMA busy_timeout").fetchone()[0]) == 4321
        tables = {row[0] for row in connection.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert "kv_store" in tables
    finally:
        connection.close()


def test_get_connection_usa_directorio_de_datos(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("CRMSYNC_DATA_DIR", str(tmp_path / "datos"))

    connection = get_connection()
    connection.close()

    assert (tmp_path / "datos" / "crmsync_state.db").exists()


def test_sqlite_store_get_set_delete(tmp_path) -> None:
    connection = get_connection(tmp_path / "state.db")
    store = SQLiteKeyValueStore(connection)
    try:
        assert store.get("missing") is None
        store.set("LEASE_Deals", "a")
        store.set("LEASE_Deals", "b")
        store.set("LEASExDeals", "c")
        assert store.get("LEASE_Deals") == "b"
        assert store.get("LEASExDeals") == "c"
        store.delete("LEASE_Deals")
        assert store.get("LEASE_Deals") is None
    finally:
        connection.close()


def test_sqlite_store_envuelve_errores() -> None:
    connection = sqlite3.connect(":memory:")
    configure_sqlite_connection(connection)
    store = SQLiteKeyValueStore(connection)
    connection.close()

    with pytest.raises(PersistenceError):
        store.get("x")
    with pytest.raises(PersistenceError):
        store.set("x", "y")


def test_memory_store_y_namespace() -> None:
    backing = InMemoryKeyValueStore()
    alice = NamespacedStore(backing, "alice")
    bob = NamespacedStore(backing, "bob")

    save_json(alice, "TRACKED_ROWS_Deals", ["1"])
    save_json(bob, "TRACKED_ROWS_Deals", ["2"])

    assert load_json(alice, "TRACKED_ROWS_Deals") == ["1"]
    assert backing.get("alice:TRACKED_ROWS_Deals") == '["1"]'
    assert backing.get("bob:TRACKED_ROWS_Deals") == '["2"]'
    alice.delete("TRACKED_ROWS_Deals")
    assert alice.get("TRACKED_ROWS_Deals") is None
    assert NamespacedStore(backing, "  ").get("bob:TRACKED_ROWS_Deals") == '["2"]'


def test_load_json_tolera_valores_corruptos() -> None:
    store = InMemoryKeyValueStore({"k": "{roto", "vacio": ""})

    assert load_json(store, "k", default=[]) == []
    assert load_json(store, "vacio", default="x") == "x"
