from __future__ import annotations

from typing import Any, Protocol

from crmsync.domain.models import (
    CrmConfig,
    FieldDefinition,
    PhaseReport,
    RemoteUpdateResult,
    SyncStatus,
    TableSyncSettings,
)


class KeyValueStorePort(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class RemoteRecordsPort(Protocol):
    def fetch_records(self, entity_type: str, filter_id: str = "") -> list[dict[str, Any]]:
        ...

    def update_record(self, entity_type: str, record_id: str, payload: dict[str, Any]) -> RemoteUpdateResult:
        ...

    def get_field_definitions(self, entity_type: str) -> dict[str, FieldDefinition]:
        ...

    def search_entity_id(self, collection: str, name: str) -> int | None:
        ...


class SheetSurfacePort(Protocol):
    def read_headers(self, table_id: str) -> list[str]:
        ...

    def read_row(self, table_id: str, row_index: int) -> list[Any]:
        ...

    def read_rows(self, table_id: str) -> list[list[Any]]:
        """Filas de datos (sin cabecera); la primera corresponde a la fila 2 de la hoja."""

    def write_status(self, table_id: str, row_index: int, column_index: int, status: SyncStatus) -> None:
        ...


class ProgressReporterPort(Protocol):
    def report(self, report: PhaseReport) -> None:
        ...


class PullPort(Protocol):
    def fetch(self, settings: TableSyncSettings) -> list[dict[str, Any]]:
        """Descarga los registros actuales del CRM para la tabla."""

    def write(self, settings: TableSyncSettings, records: list[dict[str, Any]]) -> int:
        """Reescribe las filas de datos de la hoja. Retorna filas escritas."""


class CrmConfigStorePort(Protocol):
    def load(self) -> CrmConfig | None:
        ...

    def save(self, config: CrmConfig) -> CrmConfig:
        ...
