from __future__ import annotations

import logging
from typing import Any

from gspread.utils import rowcol_to_a1

from crmsync.domain.models import SyncStatus
from crmsync.infrastructure.sheets_client import SheetsClient
from crmsync.infrastructure.sheets_client_puros import formato_celda_estado, normalizar_fila

logger = logging.getLogger(__name__)


class GspreadSheetSurface:
    """Superficie de hoja sobre gspread: cada tabla es una pestaña con el mismo nombre."""

    def __init__(self, client: SheetsClient) -> None:
        self._client = client

    def read_headers(self, table_id: str) -> list[str]:
        return [str(header or "").strip() for header in self._client.read_row(table_id, 1)]

    def read_row(self, table_id: str, row_index: int) -> list[Any]:
        return self._client.read_row(table_id, row_index)

    def read_rows(self, table_id: str) -> list[list[Any]]:
        values = self._client.read_all_values(table_id)
        if not values:
            return []
        width = len(values[0])
        return [normalizar_fila(row, width) for row in values[1:]]

    def write_status(self, table_id: str, row_index: int, column_index: int, status: SyncStatus) -> None:
        self._client.update_cell(table_id, row_index, column_index, status.label)
        cell_format = formato_celda_estado(status)
        if cell_format is not None:
            self._client.format_range(table_id, rowcol_to_a1(row_index, column_index), cell_format)
        logger.debug("Estado %s escrito en %s!%s", status.value, table_id, rowcol_to_a1(row_index, column_index))
