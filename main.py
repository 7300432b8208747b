from __future__ import annotations

import argparse
import faulthandler
import logging
import sqlite3
import sys
from pathlib import Path

from crmsync.application.two_way_sync.reporting import render_phase, render_push_summary
from crmsync.bootstrap.exception_handler import handle_global_exception
from crmsync.bootstrap.logging import configure_logging, install_exception_hook
from crmsync.bootstrap.settings import resolve_data_dir, resolve_log_dir
from crmsync.core.errors import AppError
from crmsync.domain.models import EditEvent, PhaseReport


class _ConsoleReporter:
    def report(self, report: PhaseReport) -> None:
        print(render_phase(report))


def _run_selfcheck(log_dir: Path) -> int:
    from crmsync.infrastructure.db import get_connection
    from crmsync.infrastructure.local_config import CrmConfigStore

    logger = logging.getLogger(__name__)
    errors = 0

    config_store = CrmConfigStore()
    config = config_store.load()
    if config is None:
        logger.error("Falta configuración del CRM: %s", config_store.config_path)
        errors += 1
    else:
        if not config.access_token:
            logger.error("La configuración no tiene access_token")
            errors += 1
        if not Path(config.credentials_path).exists():
            logger.error("No se encontro el JSON de la cuenta de servicio: %s", config.credentials_path)
            errors += 1
        logger.info("Tablas configuradas: %s", sorted(config.tables))

    try:
        connection = get_connection()
        connection.execute("SELECT 1").fetchone()
        connection.close()
        logger.info("SQLite OK en %s", resolve_data_dir())
    except (OSError, sqlite3.Error) as exc:
        logger.exception("No se pudo abrir la base de estado: %s", exc)
        errors += 1

    if errors:
        logger.error("Selfcheck fallo con %s error(es). Revisa %s", errors, log_dir)
        return 1
    logger.info("Selfcheck OK.")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sincronización bidireccional CRM ↔ Google Sheets")
    parser.add_argument("--selfcheck", action="store_true", help="Valida configuración y almacenamiento sin sincronizar")
    subparsers = parser.add_subparsers(dest="command")

    push = subparsers.add_parser("push", help="Envía al CRM las filas modificadas")
    push.add_argument("--table", required=True, help="Nombre de la pestaña")
    push.add_argument("--max-duration", type=float, default=None, help="Segundos máximos de envío")

    sync = subparsers.add_parser("sync", help="Push de ediciones y pull completo de la tabla")
    sync.add_argument("--table", required=True, help="Nombre de la pestaña")
    sync.add_argument("--no-pull", action="store_true", help="Omite la descarga y el push previo")

    edit = subparsers.add_parser("track-edit", help="Registra una edición de celda")
    edit.add_argument("--table", required=True)
    edit.add_argument("--row", type=int, required=True)
    edit.add_argument("--column", type=int, required=True)
    edit.add_argument("--old", default=None)
    edit.add_argument("--new", default=None)
    return parser


def _run_command(args: argparse.Namespace) -> int:
    from crmsync.bootstrap.container import build_container

    container = build_container(reporter=_ConsoleReporter())
    if args.command == "push":
        result = container.push_coordinator.push(args.table, max_duration_s=args.max_duration)
        print(render_push_summary(result))
        return 0 if result.failure_count == 0 else 2
    if args.command == "sync":
        run = container.orchestrator.run(args.table, pull=not args.no_pull)
        if run.push_result is not None:
            print(render_push_summary(run.push_result))
        print(f"Registros descargados: {run.pulled_records}")
        return 0
    if args.command == "track-edit":
        event = EditEvent(row=args.row, column=args.column, old_value=args.old, new_value=args.new)
        result = container.change_tracker.handle_edit(args.table, event)
        print(f"{result.outcome.value} {result.status.label if result.status else ''}".strip())
        return 0
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    log_dir = resolve_log_dir()
    configure_logging(log_dir)
    install_exception_hook(log_dir)
    faulthandler.enable()

    logger = logging.getLogger(__name__)
    logger.info("Log dir: %s", log_dir)
    logger.info("Python: %s", sys.version)
    logger.info("CWD: %s", Path.cwd())

    if args.selfcheck:
        return _run_selfcheck(log_dir)
    if not args.command:
        parser.print_help()
        return 1
    try:
        return _run_command(args)
    except AppError as exc:
        logger.error("Operación abortada: %s", exc.message, extra={"extra": exc.to_log_extra()})
        print(f"Error [{exc.code}]: {exc.message}")
        return 1


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:  # noqa: BLE001
        exc_type, exc_value, tb = sys.exc_info()
        incident_id = handle_global_exception(exc_type, exc_value, tb)
        print(f"Se produjo un error interno ({incident_id}). Revisa el archivo de logs para más detalles.")
        raise
