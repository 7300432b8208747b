from __future__ import annotations

from typing import Any

from crmsync.domain.errors import CrmApiError, CrmAuthError, CrmRateLimitError


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def error_text(body: Any, fallback: str = "") -> str:
    if isinstance(body, dict):
        message = body.get("error") or body.get("message")
        info = body.get("error_info")
        parts = [str(part).strip() for part in (message, info) if part]
        if parts:
            return " - ".join(parts)
    return fallback.strip()


def classify_http_error(status_code: int, body: Any, text: str = "") -> Exception:
    message = error_text(body, text) or f"HTTP {status_code}"
    if status_code == 401:
        return CrmAuthError(f"El token de acceso del CRM no es válido o ha caducado: {message}")
    if status_code == 429:
        return CrmRateLimitError(f"Límite de peticiones del CRM alcanzado: {message}")
    return CrmApiError(f"El CRM respondió {status_code}: {message}", status_code=status_code)
