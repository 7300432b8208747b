from __future__ import annotations

import logging
from typing import Any

from crmsync.core.errors import AppError
from crmsync.core.observability import context_fields

operational_logger = logging.getLogger("crmsync.operational_error")


def log_operational_error(
    message: str,
    *,
    exc: BaseException,
    extra: dict[str, Any] | None = None,
) -> None:
    """Registra un fallo recuperable con el contexto de la operación en curso.

    Los campos de ``extra`` tienen prioridad sobre los del contexto.
    """
    metadata: dict[str, Any] = {}
    if isinstance(exc, AppError):
        metadata.update(exc.to_log_extra())
    metadata.update(extra or {})
    for key, value in context_fields().items():
        if key != "operation":
            metadata.setdefault(key, value)
    operational_logger.error(
        message,
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"correlation_id": metadata.get("correlation_id"), "extra": metadata},
    )
