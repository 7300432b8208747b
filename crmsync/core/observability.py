"""Contexto de operación propagado con ``contextvars``.

Cada edición, push o sync abre un :class:`OperationContext`; todo lo que se
registra dentro comparte ``correlation_id`` y ``table_id``.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class _Scope:
    correlation_id: str | None = None
    table_id: str | None = None
    operation: str | None = None


_SCOPE: ContextVar[_Scope] = ContextVar("crmsync_scope", default=_Scope())


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str | None:
    return _SCOPE.get().correlation_id


def get_table_id() -> str | None:
    return _SCOPE.get().table_id


def set_correlation_id(correlation_id: str | None) -> Token[_Scope]:
    return _SCOPE.set(replace(_SCOPE.get(), correlation_id=correlation_id))


def context_fields() -> dict[str, str]:
    scope = _SCOPE.get()
    fields = {"correlation_id": scope.correlation_id, "table_id": scope.table_id, "operation": scope.operation}
    return {key: value for key, value in fields.items() if value}


class OperationContext:
    def __init__(self, operation_name: str, *, table_id: str | None = None) -> None:
        self.operation_name = operation_name
        self.table_id = table_id
        self.correlation_id = generate_correlation_id()
        self._token: Token[_Scope] | None = None

    def __enter__(self) -> "OperationContext":
        self._token = _SCOPE.set(_Scope(self.correlation_id, self.table_id, self.operation_name))
        return self

    def __exit__(self, exc_type: object, exc: object, exc_tb: object) -> None:
        if self._token is not None:
            _SCOPE.reset(self._token)
            self._token = None


def log_event(logger: Any, event_name: str, payload: dict[str, Any], correlation_id: str | None = None) -> dict[str, Any]:
    scope = _SCOPE.get()
    event = {
        "event": event_name,
        "correlation_id": correlation_id or scope.correlation_id,
        "table_id": scope.table_id,
        "operation": scope.operation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }
    logger.info(event_name, extra={"correlation_id": event["correlation_id"], "extra": event})
    return event
