from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from crmsync.application.two_way_sync.change_tracker import ChangeTracker
from crmsync.application.two_way_sync.lease import LeaseManager
from crmsync.application.two_way_sync.push_coordinator import PushCoordinator
from crmsync.application.two_way_sync.schema_mapper import SchemaMapper
from crmsync.core.metrics import metrics_registry
from crmsync.domain.models import (
    ColumnConfig,
    CrmConfig,
    FieldDefinition,
    RemoteUpdateResult,
    SyncStatus,
    TableSyncSettings,
)
from crmsync.infrastructure.kv_store_memory import InMemoryKeyValueStore

TABLE = "Deals"
DEALS_HEADERS = ["ID", "Title", "Name", "Email", "Value", "Sync Status"]
DEALS_COLUMNS = [
    ColumnConfig("id", "ID"),
    ColumnConfig("title", "Title"),
    ColumnConfig("name", "Name"),
    ColumnConfig("email.work", "Email"),
    ColumnConfig("value", "Value"),
]


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSheet:
    """Hoja en memoria: ``rows[0]`` es la fila 2 de la hoja."""

    def __init__(self, headers: list[str], rows: list[list[Any]] | None = None) -> None:
        self.headers = list(headers)
        self.rows = [list(row) for row in (rows or [])]
        self.status_writes: list[tuple[int, int, SyncStatus]] = []

    def set_cell(self, row_index: int, column_index: int, value: Any) -> None:
        row = self.rows[row_index - 2]
        while len(row) < column_index:
            row.append("")
        row[column_index - 1] = value

    def read_headers(self, table_id: str) -> list[str]:
        return list(self.headers)

    def read_row(self, table_id: str, row_index: int) -> list[Any]:
        if row_index == 1:
            return list(self.headers)
        return list(self.rows[row_index - 2])

    def read_rows(self, table_id: str) -> list[list[Any]]:
        return [list(row) for row in self.rows]

    def write_status(self, table_id: str, row_index: int, column_index: int, status: SyncStatus) -> None:
        self.status_writes.append((row_index, column_index, status))
        self.set_cell(row_index, column_index, status.label)


class FakeRemote:
    def __init__(self, definitions: dict[str, FieldDefinition] | None = None) -> None:
        self.definitions = definitions or {}
        self.updates: list[tuple[str, str, dict[str, Any]]] = []
        self.responses: dict[str, RemoteUpdateResult] = {}
        self.search_results: dict[tuple[str, str], int | None] = {}
        self.search_calls: list[tuple[str, str]] = []

    def fetch_records(self, entity_type: str, filter_id: str = "") -> list[dict[str, Any]]:
        return []

    def update_record(self, entity_type: str, record_id: str, payload: dict[str, Any]) -> RemoteUpdateResult:
        self.updates.append((entity_type, record_id, payload))
        return self.responses.get(record_id, RemoteUpdateResult(success=True, data={"id": record_id}, status_code=200))

    def get_field_definitions(self, entity_type: str) -> dict[str, FieldDefinition]:
        return dict(self.definitions)

    def search_entity_id(self, collection: str, name: str) -> int | None:
        self.search_calls.append((collection, name))
        return self.search_results.get((collection, name))


class FakeConfigStore:
    def __init__(self, config: CrmConfig | None) -> None:
        self.config = config

    def load(self) -> CrmConfig | None:
        return self.config

    def save(self, config: CrmConfig) -> CrmConfig:
        self.config = config
        return config


def make_config(*, two_way: bool = True, access_token: str = "token-123") -> CrmConfig:
    return CrmConfig(
        subdomain="acme",
        access_token=access_token,
        credentials_path="/tmp/sa.json",
        spreadsheet_id="sheet-1",
        device_id="device-1",
        tables={TABLE: TableSyncSettings(TABLE, "deals", two_way_sync_enabled=two_way)},
    )


@dataclass
class SyncEnv:
    store: InMemoryKeyValueStore
    sheet: FakeSheet
    remote: FakeRemote
    config_store: FakeConfigStore
    clock: FakeClock
    mapper: SchemaMapper
    tracker: ChangeTracker
    coordinator: PushCoordinator


def build_env(
    headers: list[str] | None = None,
    rows: list[list[Any]] | None = None,
    *,
    columns: list[ColumnConfig] | None = None,
    definitions: dict[str, FieldDefinition] | None = None,
    config: CrmConfig | None = None,
) -> SyncEnv:
    store = InMemoryKeyValueStore()
    sheet = FakeSheet(headers or DEALS_HEADERS, rows)
    remote = FakeRemote(definitions)
    config_store = FakeConfigStore(config or make_config())
    clock = FakeClock()
    mapper = SchemaMapper(store, remote)
    mapper.save_columns(TABLE, "deals", columns or DEALS_COLUMNS)
    lease = LeaseManager(store, "holder-local", ttl_seconds=5.0, clock=clock)
    tracker = ChangeTracker(store, sheet, mapper, lease, lambda table_id: "deals", cooldown_seconds=5.0, clock=clock)
    coordinator = PushCoordinator(config_store, sheet, remote, mapper, tracker)
    return SyncEnv(store, sheet, remote, config_store, clock, mapper, tracker, coordinator)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics_registry.reset()
    yield
    metrics_registry.reset()


@pytest.fixture
def deals_env() -> SyncEnv:
    return build_env(
        rows=[
            ["1", "Deal A", "Jane Doe", "jane@acme.com", "100", "Not modified"],
            ["2", "Deal B", "John Roe", "john@acme.com", "200", "Not modified"],
            ["3", "Deal C", "Ann Poe", "ann@acme.com", "300", "Not modified"],
        ]
    )
