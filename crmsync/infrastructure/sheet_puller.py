from __future__ import annotations

import logging
from typing import Any

from crmsync.application.two_way_sync.field_paths import get_value
from crmsync.application.two_way_sync.field_rules import is_custom_field_id
from crmsync.application.two_way_sync.schema_mapper import SchemaMapper
from crmsync.domain.models import SYNC_STATUS_HEADER, SyncStatus, TableSyncSettings
from crmsync.domain.ports import RemoteRecordsPort
from crmsync.infrastructure.sheets_client import SheetsClient

logger = logging.getLogger(__name__)


def display_value(value: Any) -> Any:
    """Valor de celda para un campo del CRM: nombre de entidades vinculadas, listas unidas por comas."""

    if value is None:
        return ""
    if isinstance(value, dict):
        for key in ("name", "value", "label"):
            if value.get(key) not in (None, ""):
                return value[key]
        return value.get("id", "")
    if isinstance(value, list):
        return ", ".join(str(display_value(item)) for item in value if display_value(item) != "")
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return value


def record_value(record: dict[str, Any], field_key: str) -> Any:
    if is_custom_field_id(field_key) and field_key not in record:
        custom_fields = record.get("custom_fields")
        if isinstance(custom_fields, dict):
            return custom_fields.get(field_key)
    return get_value(record, field_key)


class SheetPuller:
    """Reescribe las filas de datos de una pestaña con los registros actuales del CRM.

    Conserva las cabeceras existentes; generarlas queda fuera de este adaptador.
    """

    def __init__(self, client: SheetsClient, remote: RemoteRecordsPort, mapper: SchemaMapper) -> None:
        self._client = client
        self._remote = remote
        self._mapper = mapper

    def fetch(self, settings: TableSyncSettings) -> list[dict[str, Any]]:
        records = list(self._remote.fetch_records(settings.entity_type, settings.filter_id))
        logger.info("Pull de %s: %s registros descargados", settings.table_id, len(records))
        return records

    def write(self, settings: TableSyncSettings, records: list[dict[str, Any]]) -> int:
        headers = [str(header or "").strip() for header in self._client.read_row(settings.table_id, 1)]
        mapping = self._mapper.resolve_mapping(settings.table_id, settings.entity_type)
        rows = [self._row_for(record, headers, mapping) for record in records]
        self._client.replace_data_rows(settings.table_id, rows, len(headers))
        logger.info("Pull de %s: %s filas escritas", settings.table_id, len(rows))
        return len(rows)

    @staticmethod
    def _row_for(record: dict[str, Any], headers: list[str], mapping: dict[str, str]) -> list[Any]:
        row: list[Any] = []
        for index, header in enumerate(headers):
            if header == SYNC_STATUS_HEADER:
                row.append(SyncStatus.NOT_MODIFIED.label)
            elif index == 0:
                row.append(record.get("id", ""))
            elif header in mapping:
                row.append(display_value(record_value(record, mapping[header])))
            else:
                row.append("")
        return row
