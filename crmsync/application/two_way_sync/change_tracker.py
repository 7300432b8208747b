"""Seguimiento de ediciones en la hoja.

Estados por fila: ``NOT_MODIFIED → MODIFIED → {NOT_MODIFIED | SYNCED | ERROR}``;
``SYNCED`` y ``ERROR`` vuelven a ``MODIFIED`` con una nueva edición. La primera
edición de cada celda guarda su valor original; la fila solo vuelve a
``NOT_MODIFIED`` cuando todas las celdas con original coinciden de nuevo.

``handle_edit`` nunca lanza: los fallos de la hoja o del almacén se registran y
el evento se da por perdido.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from crmsync.application.two_way_sync.field_rules import ADDRESS_FIELD_TYPE
from crmsync.application.two_way_sync.lease import LeaseManager
from crmsync.application.two_way_sync.payload_builder import address_projection, is_empty_cell
from crmsync.application.two_way_sync.schema_mapper import SchemaMapper, find_header_index
from crmsync.application.two_way_sync.state_keys import (
    cell_state_key,
    last_sync_key,
    lease_key,
    load_json,
    save_json,
    tracked_rows_key,
)
from crmsync.application.two_way_sync.value_normalizer import (
    ValueNormalizer,
    generic_equal,
    structural_snapshot,
)
from crmsync.core.metrics import EDITS_DROPPED_BY_LEASE, EDITS_IGNORED, EDITS_TRACKED, metrics_registry
from crmsync.core.observability import OperationContext, log_event
from crmsync.core.operational_logging import log_operational_error
from crmsync.domain.models import (
    SYNC_STATUS_HEADER,
    CellState,
    EditEvent,
    EditOutcome,
    EditResult,
    MappingEntry,
    SyncStatus,
)
from crmsync.domain.ports import KeyValueStorePort, SheetSurfacePort

logger = logging.getLogger(__name__)

LAST_SYNCED_PREFIX = "last synced"


def is_data_row(cells: Sequence[Any]) -> bool:
    """Heurística de fila de datos: ID presente y al menos dos de las tres primeras celdas con valor."""

    if not cells or is_empty_cell(cells[0]):
        return False
    leading = list(cells[:3])
    if any(str(cell).strip().lower().startswith(LAST_SYNCED_PREFIX) for cell in leading if cell is not None):
        return False
    populated = sum(1 for cell in leading if not is_empty_cell(cell))
    return populated >= min(2, len(leading))


def row_values_by_header(headers: Sequence[str], cells: Sequence[Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for index, header in enumerate(headers):
        if header:
            values[header] = cells[index] if index < len(cells) else ""
    return values


def status_column_index(headers: Sequence[str]) -> int | None:
    """Columna (1-based) de estado de sync, si existe."""

    for index, header in enumerate(headers):
        if str(header).strip() == SYNC_STATUS_HEADER:
            return index + 1
    return None


class ChangeTracker:
    def __init__(
        self,
        store: KeyValueStorePort,
        sheet: SheetSurfacePort,
        mapper: SchemaMapper,
        lease: LeaseManager,
        entity_type_for: Callable[[str], str],
        *,
        normalizer: ValueNormalizer | None = None,
        cooldown_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._sheet = sheet
        self._mapper = mapper
        self._lease = lease
        self._entity_type_for = entity_type_for
        self._normalizer = normalizer or ValueNormalizer()
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock

    def handle_edit(self, table_id: str, event: EditEvent) -> EditResult:
        with OperationContext("handle_edit", table_id=table_id):
            key = lease_key(table_id)
            try:
                acquired = self._lease.acquire(key)
            except Exception as exc:  # noqa: BLE001
                log_operational_error("No se pudo adquirir el lease de edición", exc=exc, extra={"row": event.row})
                return EditResult(EditOutcome.FAILED)
            if not acquired:
                metrics_registry.increment(EDITS_DROPPED_BY_LEASE)
                logger.info("Edición descartada por lease ocupado: tabla=%s fila=%s", table_id, event.row)
                return EditResult(EditOutcome.DROPPED_LOCKED)
            try:
                return self._handle_locked(table_id, event)
            except Exception as exc:  # noqa: BLE001
                log_operational_error(
                    "Fallo procesando edición de la hoja",
                    exc=exc,
                    extra={"row": event.row, "column": event.column},
                )
                return EditResult(EditOutcome.FAILED)
            finally:
                try:
                    self._lease.release(key)
                except Exception as exc:  # noqa: BLE001
                    log_operational_error("No se pudo liberar el lease de edición", exc=exc)

    def _handle_locked(self, table_id: str, event: EditEvent) -> EditResult:
        headers = [str(header or "").strip() for header in self._sheet.read_headers(table_id)]
        status_column = status_column_index(headers)
        if event.row <= 1 or event.column < 1 or event.column > len(headers) or event.column == status_column:
            return self._ignored(table_id, event, "fuera de datos")
        header = headers[event.column - 1]
        if not header:
            return self._ignored(table_id, event, "cabecera vacía")
        cells = self._sheet.read_row(table_id, event.row)
        if not is_data_row(cells):
            return self._ignored(table_id, event, "no es fila de datos")

        row_id = str(cells[0]).strip()
        row_values = row_values_by_header(headers, cells)
        entity_type = self._entity_type_for(table_id)
        self._mapper.heal_drift(table_id, entity_type, headers)
        entries = self._mapper.entries(table_id, entity_type, headers)
        entry = entries[event.column - 1]

        state = self.load_state(table_id, row_id)
        previous = state.status
        if previous != SyncStatus.MODIFIED and generic_equal(event.old_value, event.new_value):
            return self._ignored(table_id, event, "valor sin cambios")

        snapshot_changed = False
        if header not in state.original_values:
            state.original_values[header] = self._snapshot(event, entry, headers, row_values, entries)
            snapshot_changed = True

        if previous != SyncStatus.MODIFIED:
            target, outcome = SyncStatus.MODIFIED, EditOutcome.MARKED_MODIFIED
        elif self._row_matches_originals(state, header, headers, row_values, entries):
            target, outcome = SyncStatus.NOT_MODIFIED, EditOutcome.REVERTED
        else:
            target, outcome = SyncStatus.MODIFIED, EditOutcome.STILL_MODIFIED

        now = self._clock()
        if target == previous and not snapshot_changed and now - state.last_changed < self._cooldown_seconds:
            logger.debug("Transición idempotente omitida: tabla=%s fila=%s", table_id, row_id)
            return EditResult(outcome, row_id=row_id, header=header, status=target, persisted=False)

        if target == SyncStatus.NOT_MODIFIED:
            state.original_values = {}
        state.status = target
        state.last_changed = now
        persisted = self._persist(table_id, row_id, state)
        if status_column is not None:
            self._write_status(table_id, event.row, status_column, target)
        metrics_registry.increment(EDITS_TRACKED)
        log_event(logger, "edit_tracked", {"row_id": row_id, "header": header, "status": target.value, "outcome": outcome.value})
        return EditResult(outcome, row_id=row_id, header=header, status=target, persisted=persisted)

    def _ignored(self, table_id: str, event: EditEvent, reason: str) -> EditResult:
        metrics_registry.increment(EDITS_IGNORED)
        logger.debug("Edición ignorada (%s): tabla=%s fila=%s columna=%s", reason, table_id, event.row, event.column)
        return EditResult(EditOutcome.IGNORED)

    def _snapshot(
        self,
        event: EditEvent,
        entry: MappingEntry | None,
        headers: Sequence[str],
        row_values: dict[str, Any],
        entries: Sequence[MappingEntry | None],
    ) -> Any:
        if entry is not None and entry.field_type == ADDRESS_FIELD_TYPE and entry.base_key:
            previous_values = dict(row_values)
            previous_values[entry.header] = event.old_value
            return structural_snapshot(entry.base_key, address_projection(previous_values, entries, entry.base_key))
        if event.old_value is None:
            return ""
        return event.old_value

    def _row_matches_originals(
        self,
        state: CellState,
        edited_header: str,
        headers: Sequence[str],
        row_values: dict[str, Any],
        entries: Sequence[MappingEntry | None],
    ) -> bool:
        ordered = [edited_header] + [header for header in state.original_values if header != edited_header]
        for header in ordered:
            index = find_header_index(headers, header)
            if index is None:
                logger.debug("Cabecera con original no encontrada tras reordenar: %s", header)
                continue
            entry = entries[index] if index < len(entries) else None
            current = row_values.get(headers[index])
            if not self._normalizer.equals(
                state.original_values[header],
                current,
                entry,
                row_values=row_values,
                entries=entries,
            ):
                return False
        return True

    def _persist(self, table_id: str, row_id: str, state: CellState) -> bool:
        try:
            if state.status == SyncStatus.NOT_MODIFIED and not state.original_values:
                self._store.delete(cell_state_key(table_id, row_id))
                self._untrack(table_id, row_id)
            else:
                save_json(self._store, cell_state_key(table_id, row_id), state.to_payload())
                self._track(table_id, row_id)
            return True
        except Exception as exc:  # noqa: BLE001
            log_operational_error("No se pudo guardar el estado de la fila", exc=exc, extra={"row_id": row_id})
            return False

    def _write_status(self, table_id: str, row_index: int, column_index: int, status: SyncStatus) -> None:
        try:
            self._sheet.write_status(table_id, row_index, column_index, status)
        except Exception as exc:  # noqa: BLE001
            log_operational_error("No se pudo escribir la celda de estado", exc=exc, extra={"row": row_index})

    def _tracked_rows(self, table_id: str) -> list[str]:
        rows = load_json(self._store, tracked_rows_key(table_id), default=[])
        return [str(row) for row in rows] if isinstance(rows, list) else []

    def _track(self, table_id: str, row_id: str) -> None:
        rows = self._tracked_rows(table_id)
        if row_id not in rows:
            rows.append(row_id)
            save_json(self._store, tracked_rows_key(table_id), rows)

    def _untrack(self, table_id: str, row_id: str) -> None:
        rows = self._tracked_rows(table_id)
        if row_id in rows:
            rows.remove(row_id)
            save_json(self._store, tracked_rows_key(table_id), rows)

    def load_state(self, table_id: str, row_id: str) -> CellState:
        return CellState.from_payload(load_json(self._store, cell_state_key(table_id, row_id)))

    def status_of(self, table_id: str, row_id: str) -> SyncStatus:
        return self.load_state(table_id, row_id).status

    def changed_headers(self, table_id: str, row_id: str) -> set[str]:
        return set(self.load_state(table_id, row_id).original_values)

    def modified_row_ids(self, table_id: str) -> list[str]:
        return [row_id for row_id in self._tracked_rows(table_id) if self.status_of(table_id, row_id) == SyncStatus.MODIFIED]

    def mark_synced(self, table_id: str, row_id: str) -> None:
        state = self.load_state(table_id, row_id)
        state.status = SyncStatus.SYNCED
        state.original_values = {}
        state.last_changed = self._clock()
        self._persist(table_id, row_id, state)

    def mark_error(self, table_id: str, row_id: str) -> None:
        state = self.load_state(table_id, row_id)
        state.status = SyncStatus.ERROR
        state.last_changed = self._clock()
        self._persist(table_id, row_id, state)

    def reset_table(self, table_id: str) -> None:
        for row_id in self._tracked_rows(table_id):
            self._store.delete(cell_state_key(table_id, row_id))
        self._store.delete(tracked_rows_key(table_id))
        self._store.set(last_sync_key(table_id), datetime.now(timezone.utc).isoformat())
        logger.info("Estado de ediciones reiniciado para la tabla %s", table_id)

    def last_sync(self, table_id: str) -> str | None:
        return self._store.get(last_sync_key(table_id))
