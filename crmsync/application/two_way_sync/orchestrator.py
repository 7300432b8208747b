from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from crmsync.application.two_way_sync.change_tracker import ChangeTracker
from crmsync.application.two_way_sync.push_coordinator import PushCoordinator
from crmsync.core.observability import OperationContext, log_event
from crmsync.domain.errors import SyncNotConfiguredError
from crmsync.domain.models import PhaseReport, PhaseStatus, PushResult, SyncPhase, SyncRunResult, TableSyncSettings
from crmsync.domain.ports import CrmConfigStorePort, ProgressReporterPort, PullPort

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PHASE_PROGRESS = {
    SyncPhase.CONNECTING: (5, 20),
    SyncPhase.RETRIEVING: (30, 60),
    SyncPhase.WRITING: (70, 100),
}


class _LoggingReporter:
    def report(self, report: PhaseReport) -> None:
        logger.info("Fase %s: %s %s%% %s", report.phase.value, report.status.value, report.progress_percent, report.detail)


class SyncOrchestrator:
    """Fases CONNECTING → RETRIEVING → WRITING: primero push de ediciones, luego pull."""

    def __init__(
        self,
        config_store: CrmConfigStorePort,
        push_coordinator: PushCoordinator,
        puller: PullPort,
        tracker: ChangeTracker,
        reporter: ProgressReporterPort | None = None,
    ) -> None:
        self._config_store = config_store
        self._push_coordinator = push_coordinator
        self._puller = puller
        self._tracker = tracker
        self._reporter = reporter or _LoggingReporter()
        self._reports: list[PhaseReport] = []

    def run(self, table_id: str, pull: bool = True) -> SyncRunResult:
        self._reports = []
        with OperationContext("sync", table_id=table_id):
            push_result, settings = self._run_phase(SyncPhase.CONNECTING, "Conectando con el CRM", lambda: self._connect(table_id, pull))
            if push_result is not None and push_result.failure_count:
                self._emit(
                    SyncPhase.CONNECTING,
                    PhaseStatus.WARNING,
                    f"{push_result.failure_count} filas no se pudieron enviar",
                )
            if not pull:
                self._emit(SyncPhase.RETRIEVING, PhaseStatus.COMPLETED, "Descarga omitida")
                self._emit(SyncPhase.WRITING, PhaseStatus.COMPLETED, "Escritura omitida")
                return SyncRunResult(push_result, 0, tuple(self._reports))
            records = self._run_phase(SyncPhase.RETRIEVING, "Descargando registros", lambda: self._puller.fetch(settings))
            pulled = self._run_phase(SyncPhase.WRITING, "Actualizando la hoja", lambda: self._write(table_id, settings, records))
            log_event(logger, "sync_finished", {"pulled": pulled, "pushed": push_result.success_count if push_result else 0})
            return SyncRunResult(push_result, pulled, tuple(self._reports))

    def _write(self, table_id: str, settings: TableSyncSettings, records: list[dict[str, Any]]) -> int:
        written = self._puller.write(settings, records)
        self._tracker.reset_table(table_id)
        return written

    def _connect(self, table_id: str, pull: bool):
        config = self._config_store.load()
        settings = config.table(table_id) if config is not None else None
        if settings is None:
            raise SyncNotConfiguredError(f"La tabla {table_id} no está configurada.")
        push_result: PushResult | None = None
        if settings.two_way_sync_enabled and pull:
            push_result = self._push_coordinator.push(table_id)
        return push_result, settings

    def _run_phase(self, phase: SyncPhase, detail: str, action: Callable[[], T]) -> T:
        self._emit(phase, PhaseStatus.ACTIVE, detail)
        try:
            result = action()
        except Exception as exc:
            self._emit(phase, PhaseStatus.ERROR, str(exc))
            logger.exception("Fallo en la fase %s", phase.value)
            raise
        self._emit(phase, PhaseStatus.COMPLETED, detail)
        return result

    def _emit(self, phase: SyncPhase, status: PhaseStatus, detail: str) -> None:
        started, finished = _PHASE_PROGRESS[phase]
        progress = started if status == PhaseStatus.ACTIVE else finished
        report = PhaseReport(phase=phase, status=status, detail=detail, progress_percent=progress)
        self._reports.append(report)
        self._reporter.report(report)
