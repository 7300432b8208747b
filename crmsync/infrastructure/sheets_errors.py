"""Traducción de excepciones de gspread/google-auth a errores de crmsync."""

from __future__ import annotations

import json
from typing import Callable

import gspread
from google.auth.exceptions import DefaultCredentialsError

from crmsync.core.errors import AppError
from crmsync.domain.errors import (
    SheetsApiDisabledError,
    SheetsConfigError,
    SheetsCredentialsError,
    SheetsNotFoundError,
    SheetsPermissionError,
    SheetsRateLimitError,
)

RATE_LIMIT_MESSAGE = "Límite de Google Sheets alcanzado. Espera 1 minuto y reintenta."

_RATE_LIMIT_STATUS = frozenset({429, 500, 503})
_RATE_LIMIT_MARKERS = (
    "[429]",
    "resource_exhausted",
    "rate_limit_exceeded",
    "quota exceeded",
    "write requests per minute per user",
    "read requests per minute per user",
)

_ApiRule = tuple[Callable[[str, int | None], bool], Callable[[], AppError]]

_API_RULES: tuple[_ApiRule, ...] = (
    (
        lambda text, status: is_rate_limited(text, status),
        lambda: SheetsRateLimitError(RATE_LIMIT_MESSAGE),
    ),
    (
        lambda text, status: "google sheets api has not been used" in text or "it is disabled" in text,
        lambda: SheetsApiDisabledError("La API de Google Sheets no está habilitada en el proyecto de Google Cloud."),
    ),
    (
        lambda text, status: status == 404 or "[404]" in text or "requested entity was not found" in text,
        lambda: SheetsNotFoundError("El spreadsheet_id no es válido o la hoja no existe."),
    ),
    (
        lambda text, status: status == 403 or "[403]" in text or "permission_denied" in text,
        lambda: SheetsPermissionError("La hoja no está compartida con la cuenta de servicio configurada."),
    ),
)


def extract_response_status_code(ex: Exception) -> int | None:
    return getattr(getattr(ex, "response", None), "status_code", None)


def is_rate_limited(text_lower: str, status_code: int | None) -> bool:
    return status_code in _RATE_LIMIT_STATUS or any(marker in text_lower for marker in _RATE_LIMIT_MARKERS)


def classify_api_error(text_lower: str, status_code: int | None) -> AppError:
    for matches, build in _API_RULES:
        if matches(text_lower, status_code):
            return build()
    return SheetsConfigError(f"Google Sheets rechazó la petición: {text_lower}")


def _api_error_text(ex: gspread.exceptions.APIError) -> str:
    body = getattr(getattr(ex, "response", None), "text", "")
    return (body or str(ex)).strip().lower()


def map_gspread_exception(ex: Exception) -> AppError:
    """Devuelve el error de dominio equivalente; los ya traducidos pasan intactos."""
    if isinstance(ex, AppError):
        return ex
    if isinstance(ex, gspread.exceptions.WorksheetNotFound):
        return SheetsNotFoundError(f"No existe la pestaña {ex} en el spreadsheet.")
    if isinstance(ex, gspread.exceptions.APIError):
        return classify_api_error(_api_error_text(ex), extract_response_status_code(ex))
    if isinstance(ex, FileNotFoundError):
        location = f" en {ex.filename}" if ex.filename else ""
        return SheetsCredentialsError(f"No se encuentra el JSON de la cuenta de servicio{location}.")
    if isinstance(ex, (json.JSONDecodeError, DefaultCredentialsError)):
        return SheetsCredentialsError("El JSON de la cuenta de servicio no es válido. Revisa el contenido del archivo.")
    return SheetsConfigError(str(ex))
