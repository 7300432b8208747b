"""Jerarquía base de errores.

Cada error lleva un ``code`` estable para logs y consola y un indicador
``retryable`` que usan los adaptadores con reintento.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    code = "app_error"
    retryable = False

    def __init__(self, message: str = "", *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args and self.args[0] else self.code

    def to_log_extra(self) -> dict[str, Any]:
        return {"error_code": self.code, "retryable": self.retryable, **self.details}


class ConfigurationError(AppError):
    code = "configuration"


class InfraError(AppError):
    code = "infrastructure"


class PersistenceError(InfraError):
    code = "persistence"


class ExternalServiceError(InfraError):
    code = "external_service"


class TransientExternalError(ExternalServiceError):
    code = "transient_external"
    retryable = True
