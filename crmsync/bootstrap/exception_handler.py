from __future__ import annotations

import json
import logging
import traceback
import uuid
from dataclasses import dataclass
from types import TracebackType

from crmsync.bootstrap.logging import CRASH_LOG_NAME
from crmsync.bootstrap.settings import resolve_log_dir
from crmsync.core.observability import generate_correlation_id, get_correlation_id, set_correlation_id

logger = logging.getLogger("crmsync.global_exception")


@dataclass(frozen=True)
class Incident:
    incident_id: str
    correlation_id: str
    error_type: str
    error_message: str
    stacktrace: str

    def to_json(self) -> str:
        return json.dumps(self.__dict__, ensure_ascii=False)


def generate_incident_id() -> str:
    return f"INC-{uuid.uuid4().hex[:12].upper()}"


def _current_correlation_id() -> str:
    correlation_id = get_correlation_id()
    if not correlation_id:
        correlation_id = generate_correlation_id()
        set_correlation_id(correlation_id)
    return correlation_id


def _append_to_crash_log(incident: Incident) -> None:
    """Último recurso cuando el propio logging falla: escribe el incidente a mano."""
    log_dir = resolve_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    with (log_dir / CRASH_LOG_NAME).open("a", encoding="utf-8") as handle:
        handle.write(incident.to_json() + "\n")


def handle_global_exception(
    exc_type: type[BaseException], exc_value: BaseException, exc_traceback: TracebackType | None
) -> str:
    incident = Incident(
        incident_id=generate_incident_id(),
        correlation_id=_current_correlation_id(),
        error_type=exc_type.__name__,
        error_message=str(exc_value),
        stacktrace="".join(traceback.format_exception(exc_type, exc_value, exc_traceback)),
    )
    try:
        logger.critical(
            "Excepción no controlada. incident_id=%s",
            incident.incident_id,
            exc_info=(exc_type, exc_value, exc_traceback),
            extra={"incident_id": incident.incident_id, "correlation_id": incident.correlation_id},
        )
    except Exception:  # noqa: BLE001
        _append_to_crash_log(incident)
    return incident.incident_id
