from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, TypeVar

import gspread
from google.auth.exceptions import DefaultCredentialsError
from gspread.utils import rowcol_to_a1

from crmsync.core.operational_logging import log_operational_error
from crmsync.domain.errors import SheetsPermissionError, SheetsRateLimitError
from crmsync.infrastructure.sheets_client_puros import (
    calcular_backoff_escritura,
    calcular_backoff_lectura,
    debe_reintentar,
    extraer_worksheet_desde_operacion,
)
from crmsync.infrastructure.sheets_errors import RATE_LIMIT_MESSAGE, map_gspread_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class _RetryPolicy:
    kind: str
    max_attempts: int
    backoff: Callable[[int], float]
    exhausted_message: str


_READ_POLICY = _RetryPolicy(
    kind="lectura",
    max_attempts=5,
    backoff=lambda attempt: calcular_backoff_lectura(attempt, base_segundos=1),
    exhausted_message=RATE_LIMIT_MESSAGE,
)
_WRITE_POLICY = _RetryPolicy(
    kind="escritura",
    max_attempts=5,
    backoff=calcular_backoff_escritura,
    exhausted_message="Límite de escritura de Google Sheets alcanzado. Espera 1 minuto y reintenta.",
)


class SheetsClient:
    """Acceso a una hoja de cálculo con reintentos ante el rate limit de Google.

    Las pestañas se resuelven una sola vez por spreadsheet; los contadores de
    lecturas y escrituras sirven para vigilar el consumo de cuota.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep) -> None:
        self._sleep = sleep
        self._spreadsheet: gspread.Spreadsheet | None = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._reads = 0
        self._writes = 0

    def open_spreadsheet(self, credentials_path: Path | str, spreadsheet_id: str) -> gspread.Spreadsheet:
        logger.info("Abriendo spreadsheet %s con la cuenta de servicio", spreadsheet_id)
        try:
            client = gspread.service_account(filename=str(credentials_path))
            spreadsheet = self._call(
                "open_spreadsheet",
                lambda: client.open_by_key(spreadsheet_id),
                _READ_POLICY,
                spreadsheet_id=spreadsheet_id,
            )
        except (
            gspread.exceptions.GSpreadException,
            json.JSONDecodeError,
            DefaultCredentialsError,
            OSError,
        ) as exc:
            raise map_gspread_exception(exc) from exc
        self.use_spreadsheet(spreadsheet)
        return spreadsheet

    def use_spreadsheet(self, spreadsheet: gspread.Spreadsheet) -> None:
        self._spreadsheet = spreadsheet
        self._worksheets = {}
        self._reads = 0
        self._writes = 0

    def get_worksheet(self, name: str) -> gspread.Worksheet:
        cached = self._worksheets.get(name)
        if cached is not None:
            return cached
        spreadsheet = self._spreadsheet
        if spreadsheet is None:
            raise RuntimeError("No hay spreadsheet abierto; llama antes a open_spreadsheet.")
        try:
            worksheet = self._call(f"spreadsheet.worksheet({name})", lambda: spreadsheet.worksheet(name), _READ_POLICY)
        except gspread.exceptions.WorksheetNotFound as exc:
            raise map_gspread_exception(exc) from exc
        self._worksheets[name] = worksheet
        return worksheet

    def read_all_values(self, worksheet_name: str) -> list[list[Any]]:
        worksheet = self.get_worksheet(worksheet_name)
        values = self._call(f"worksheet.get_all_values({worksheet_name})", worksheet.get_all_values, _READ_POLICY)
        self._reads += 1
        return values

    def read_row(self, worksheet_name: str, row_index: int) -> list[Any]:
        worksheet = self.get_worksheet(worksheet_name)
        values = self._call(f"worksheet.row_values({worksheet_name})", lambda: worksheet.row_values(row_index), _READ_POLICY)
        self._reads += 1
        return values

    def update_cell(self, worksheet_name: str, row_index: int, column_index: int, value: Any) -> None:
        worksheet = self.get_worksheet(worksheet_name)
        self._call(
            f"worksheet.update_cell({worksheet_name})",
            lambda: worksheet.update_cell(row_index, column_index, value),
            _WRITE_POLICY,
        )
        self._writes += 1

    def replace_data_rows(self, worksheet_name: str, rows: list[list[Any]], width: int) -> None:
        """Sustituye todo lo que hay bajo la cabecera por ``rows``."""
        worksheet = self.get_worksheet(worksheet_name)
        last_column = rowcol_to_a1(1, max(width, 1)).rstrip("0123456789")
        self._call(
            f"worksheet.batch_clear({worksheet_name})",
            lambda: worksheet.batch_clear([f"A2:{last_column}"]),
            _WRITE_POLICY,
        )
        if rows:
            self._call(
                f"worksheet.update({worksheet_name})",
                lambda: worksheet.update(range_name="A2", values=rows, value_input_option="USER_ENTERED"),
                _WRITE_POLICY,
            )
        self._writes += 1

    def format_range(self, worksheet_name: str, range_name: str, cell_format: dict[str, Any]) -> None:
        worksheet = self.get_worksheet(worksheet_name)
        self._call(
            f"worksheet.format({worksheet_name})",
            lambda: worksheet.format(range_name, cell_format),
            _WRITE_POLICY,
        )
        self._writes += 1

    def get_read_calls_count(self) -> int:
        return self._reads

    def get_write_calls_count(self) -> int:
        return self._writes

    def _call(
        self,
        operation_name: str,
        operation: Callable[[], T],
        policy: _RetryPolicy,
        *,
        spreadsheet_id: str | None = None,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except gspread.exceptions.APIError as exc:
                mapped_error = map_gspread_exception(exc)
                if not isinstance(mapped_error, SheetsRateLimitError):
                    if isinstance(mapped_error, SheetsPermissionError):
                        self._log_permission_error(mapped_error, operation_name, spreadsheet_id)
                    raise mapped_error from exc
                if not debe_reintentar(attempt, policy.max_attempts):
                    logger.error(
                        "Rate limit persistente de Google Sheets (%s) en %s tras %s intentos.",
                        policy.kind,
                        operation_name,
                        attempt,
                    )
                    raise SheetsRateLimitError(policy.exhausted_message) from exc
                wait_seconds = policy.backoff(attempt)
                logger.warning(
                    "Rate limit de Google Sheets (%s) en %s. intento=%s/%s espera=%ss",
                    policy.kind,
                    operation_name,
                    attempt,
                    policy.max_attempts,
                    wait_seconds,
                )
                self._sleep(wait_seconds)

    def _log_permission_error(
        self,
        error: SheetsPermissionError,
        operation_name: str,
        spreadsheet_id: str | None,
    ) -> None:
        log_operational_error(
            "Sync failed: permisos insuficientes en Google Sheets",
            exc=error,
            extra={
                "operation": operation_name,
                "spreadsheet_id": spreadsheet_id or getattr(self._spreadsheet, "id", None),
                "worksheet": extraer_worksheet_desde_operacion(operation_name),
            },
        )
