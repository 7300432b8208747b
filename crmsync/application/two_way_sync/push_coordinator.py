"""Envío al CRM de las filas marcadas como modificadas.

Cada fila se procesa por separado: un fallo se anota en su celda de estado y
en el resultado, pero nunca corta el lote.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from crmsync.application.two_way_sync.change_tracker import (
    ChangeTracker,
    is_data_row,
    row_values_by_header,
    status_column_index,
)
from crmsync.application.two_way_sync.payload_builder import PayloadBuilder
from crmsync.application.two_way_sync.reporting import render_push_summary
from crmsync.application.two_way_sync.schema_mapper import SchemaMapper
from crmsync.core.errors import ExternalServiceError
from crmsync.core.metrics import PUSH_DURATION, ROWS_FAILED, ROWS_PUSHED, measure_time, metrics_registry
from crmsync.core.observability import OperationContext, log_event
from crmsync.core.operational_logging import log_operational_error
from crmsync.domain.models import (
    CrmConfig,
    PushFailure,
    PushResult,
    RemoteUpdateResult,
    SheetRow,
    SyncStatus,
    TableSyncSettings,
)
from crmsync.domain.errors import CrmAuthError, SyncNotConfiguredError
from crmsync.domain.ports import CrmConfigStorePort, RemoteRecordsPort, SheetSurfacePort

logger = logging.getLogger(__name__)

MAX_REPORTED_FAILURES = 5
GENERIC_ERROR_MESSAGE = "Error desconocido al actualizar el registro"
EMPTY_PAYLOAD_MESSAGE = "No hay campos editables que enviar"


def extract_error_message(error: Any, status_code: int | None = None) -> str:
    """Mensaje legible a partir del cuerpo de error del CRM.

    Acepta ``{"success": false, "error": ..., "error_info": ...}``, errores por
    campo (``errors`` o ``data.errors``) o texto plano.
    """

    if isinstance(error, dict):
        parts: list[str] = []
        message = error.get("error") or error.get("message")
        if isinstance(message, dict):
            message = message.get("message")
        if message:
            parts.append(str(message).strip())
        field_errors = error.get("errors")
        data = error.get("data")
        if field_errors is None and isinstance(data, dict):
            field_errors = data.get("errors")
        if isinstance(field_errors, dict):
            parts.extend(f"{field}: {detail}" for field, detail in sorted(field_errors.items()))
        elif isinstance(field_errors, list):
            parts.extend(str(detail) for detail in field_errors if detail)
        info = error.get("error_info")
        if info:
            parts.append(f"({str(info).strip()})")
        if parts:
            return " ".join(parts)
    elif isinstance(error, str) and error.strip():
        return error.strip()
    if status_code:
        return f"Error HTTP {status_code}"
    return GENERIC_ERROR_MESSAGE


class PushCoordinator:
    def __init__(
        self,
        config_store: CrmConfigStorePort,
        sheet: SheetSurfacePort,
        remote: RemoteRecordsPort,
        mapper: SchemaMapper,
        tracker: ChangeTracker,
        *,
        builder: PayloadBuilder | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config_store = config_store
        self._sheet = sheet
        self._remote = remote
        self._mapper = mapper
        self._tracker = tracker
        self._builder = builder or PayloadBuilder()
        self._clock = clock

    def ensure_ready(self, table_id: str) -> tuple[CrmConfig, TableSyncSettings]:
        config = self._config_store.load()
        if config is None:
            raise SyncNotConfiguredError("No hay configuración del CRM guardada.")
        settings = config.table(table_id)
        if settings is None or not settings.two_way_sync_enabled:
            raise SyncNotConfiguredError(f"La sincronización bidireccional no está activada para {table_id}.")
        if not config.access_token.strip():
            raise CrmAuthError("No hay token de acceso del CRM; vuelve a conectar la cuenta.")
        return config, settings

    @measure_time(PUSH_DURATION)
    def push(self, table_id: str, max_duration_s: float | None = None) -> PushResult:
        _config, settings = self.ensure_ready(table_id)
        with OperationContext("push", table_id=table_id):
            result = self._push(table_id, settings, max_duration_s)
            log_event(
                logger,
                "push_finished",
                {
                    "success": result.success_count,
                    "failed": result.failure_count,
                    "skipped": result.skipped_count,
                    "processed": result.total_processed,
                    "metrics": metrics_registry.snapshot()["counters"],
                },
            )
            logger.info(render_push_summary(result))
            return result

    def _push(self, table_id: str, settings: TableSyncSettings, max_duration_s: float | None) -> PushResult:
        started = self._clock()
        headers = [str(header or "").strip() for header in self._sheet.read_headers(table_id)]
        status_column = status_column_index(headers)
        self._mapper.heal_drift(table_id, settings.entity_type, headers)
        entries = self._mapper.entries(table_id, settings.entity_type, headers)
        queue = self._enqueue(table_id, headers, status_column)
        logger.info("Filas modificadas pendientes de envío en %s: %s", table_id, len(queue))

        name_cache: dict[tuple[str, str], int | None] = {}

        def resolve_name(collection: str, name: str) -> int | None:
            key = (collection, name.strip().lower())
            if key not in name_cache:
                try:
                    name_cache[key] = self._remote.search_entity_id(collection, name)
                except ExternalServiceError as exc:
                    logger.warning("Búsqueda de %s '%s' fallida: %s", collection, name, exc)
                    name_cache[key] = None
            return name_cache[key]

        success_count = 0
        failure_count = 0
        failures: list[PushFailure] = []
        for position, row in enumerate(queue):
            if max_duration_s is not None and self._clock() - started >= max_duration_s:
                skipped = len(queue) - position
                logger.warning("Tiempo máximo de push agotado; %s filas quedan pendientes", skipped)
                return PushResult(success_count, failure_count, skipped, tuple(failures))
            message = self._push_row(table_id, settings, row, entries, resolve_name)
            if message is None:
                success_count += 1
                metrics_registry.increment(ROWS_PUSHED)
                self._tracker.mark_synced(table_id, row.record_id)
                self._write_status(table_id, row.row_index, status_column, SyncStatus.SYNCED)
                continue
            failure_count += 1
            metrics_registry.increment(ROWS_FAILED)
            if len(failures) < MAX_REPORTED_FAILURES:
                failures.append(PushFailure(row.row_index, row.record_id, message))
            self._tracker.mark_error(table_id, row.record_id)
            self._write_status(table_id, row.row_index, status_column, SyncStatus.ERROR)
        return PushResult(success_count, failure_count, 0, tuple(failures))

    def _enqueue(self, table_id: str, headers: list[str], status_column: int | None) -> list[SheetRow]:
        tracked = set(self._tracker.modified_row_ids(table_id))
        queue: list[SheetRow] = []
        for offset, cells in enumerate(self._sheet.read_rows(table_id)):
            if not is_data_row(cells):
                continue
            record_id = str(cells[0]).strip()
            sheet_status = None
            if status_column is not None and status_column <= len(cells):
                sheet_status = SyncStatus.from_label(cells[status_column - 1])
            if record_id in tracked or sheet_status == SyncStatus.MODIFIED:
                queue.append(SheetRow(offset + 2, record_id, row_values_by_header(headers, cells)))
        return queue

    def _push_row(self, table_id, settings, row, entries, resolve_name) -> str | None:
        build = self._builder.build(
            row,
            entries,
            settings.entity_type,
            self._tracker.changed_headers(table_id, row.record_id),
            name_resolver=resolve_name,
        )
        if build.flagged:
            logger.warning("Fila %s: opciones sin resolver en %s", row.row_index, ", ".join(build.flagged))
        if not build.payload:
            return EMPTY_PAYLOAD_MESSAGE
        try:
            response = self._remote.update_record(settings.entity_type, row.record_id, build.payload)
        except ExternalServiceError as exc:
            log_operational_error(
                "Fallo enviando fila al CRM",
                exc=exc,
                extra={"row": row.row_index, "record_id": row.record_id},
            )
            return str(exc) or GENERIC_ERROR_MESSAGE
        return self._failure_message(response)

    @staticmethod
    def _failure_message(response: RemoteUpdateResult) -> str | None:
        if response.success:
            return None
        return extract_error_message(response.error, response.status_code)

    def _write_status(self, table_id: str, row_index: int, status_column: int | None, status: SyncStatus) -> None:
        if status_column is None:
            return
        try:
            self._sheet.write_status(table_id, row_index, status_column, status)
        except Exception as exc:  # noqa: BLE001
            log_operational_error("No se pudo escribir la celda de estado", exc=exc, extra={"row": row_index})
