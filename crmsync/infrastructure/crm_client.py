"""
Cliente HTTP del CRM (API REST v1 estilo Pipedrive) sobre ``requests``.

- autenticación Bearer con el token guardado en la configuración
- paginación por ``start``/``limit``
- reintentos con backoff ante 429 y 5xx (respeta Retry-After)
- ``update_record`` no lanza por errores HTTP: devuelve ``RemoteUpdateResult``
  para que el push pueda aislar cada fila
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import requests

from crmsync.core.errors import ExternalServiceError
from crmsync.domain.models import FieldDefinition, FieldOption, RemoteUpdateResult
from crmsync.infrastructure.crm_errors import classify_http_error, error_text, is_retryable_status
from crmsync.infrastructure.entity_profiles import profile_for

logger = logging.getLogger(__name__)

API_URL_SUFFIX = ".pipedrive.com/api/v1"
PAGE_LIMIT = 500
SEARCH_LIMIT = 10


def build_base_url(subdomain: str) -> str:
    subdomain = (subdomain or "api").strip()
    return f"https://{subdomain}{API_URL_SUFFIX}"


def parse_field_definition(raw: dict[str, Any]) -> FieldDefinition:
    options = tuple(
        FieldOption(id=option.get("id"), label=str(option.get("label", "")))
        for option in (raw.get("options") or [])
        if isinstance(option, dict)
    )
    return FieldDefinition(
        key=str(raw.get("key", "")),
        name=str(raw.get("name", "")),
        field_type=str(raw.get("field_type", "")),
        options=options,
    )


def pick_search_match(items: list[dict[str, Any]], name: str) -> int | None:
    """Coincidencia exacta sin mayúsculas; si no hay, el primer resultado."""

    candidates = [item.get("item", item) for item in items if isinstance(item, dict)]
    candidates = [candidate for candidate in candidates if isinstance(candidate, dict) and candidate.get("id") is not None]
    wanted = name.strip().lower()
    for candidate in candidates:
        if str(candidate.get("name", "")).strip().lower() == wanted:
            return int(candidate["id"])
    if candidates:
        return int(candidates[0]["id"])
    return None


class CrmClient:
    def __init__(
        self,
        subdomain: str,
        access_token: str,
        *,
        session: Optional[requests.Session] = None,
        timeout_s: int = 30,
        max_retries: int = 4,
        min_backoff_s: float = 0.8,
        max_backoff_s: float = 20.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._base_url = build_base_url(subdomain)
        self._access_token = access_token
        self._session = session or requests.Session()
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._sleep = sleep

    def fetch_records(self, entity_type: str, filter_id: str = "") -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        start = 0
        while True:
            params: dict[str, Any] = {"start": start, "limit": PAGE_LIMIT}
            if filter_id:
                params["filter_id"] = filter_id
            body = self._request_json("GET", f"/{entity_type}", params=params)
            page = body.get("data") or []
            records.extend(item for item in page if isinstance(item, dict))
            pagination = (body.get("additional_data") or {}).get("pagination") or {}
            if not pagination.get("more_items_in_collection"):
                break
            start = int(pagination.get("next_start", start + len(page)))
        logger.info("Registros descargados de %s: %s", entity_type, len(records))
        return records

    def update_record(self, entity_type: str, record_id: str, payload: dict[str, Any]) -> RemoteUpdateResult:
        profile = profile_for(entity_type)
        body = profile.shape_payload(payload)
        try:
            response = self._send(profile.update_method, f"/{entity_type}/{record_id}", json=body)
        except requests.RequestException as exc:
            raise ExternalServiceError(f"No se pudo contactar con el CRM: {exc}") from exc
        parsed = self._json_or_none(response)
        body_ok = not isinstance(parsed, dict) or parsed.get("success", True)
        if 200 <= response.status_code < 300 and body_ok:
            data = parsed.get("data") if isinstance(parsed, dict) else None
            return RemoteUpdateResult(success=True, data=data, status_code=response.status_code)
        logger.warning(
            "Actualización rechazada %s/%s: %s %s",
            entity_type,
            record_id,
            response.status_code,
            error_text(parsed, response.text),
        )
        return RemoteUpdateResult(
            success=False,
            error=parsed if parsed is not None else response.text,
            status_code=response.status_code,
        )

    def get_field_definitions(self, entity_type: str) -> dict[str, FieldDefinition]:
        profile = profile_for(entity_type)
        body = self._request_json("GET", f"/{profile.fields_endpoint}", params={"limit": PAGE_LIMIT})
        definitions = [parse_field_definition(raw) for raw in (body.get("data") or []) if isinstance(raw, dict)]
        return {definition.key: definition for definition in definitions if definition.key}

    def search_entity_id(self, collection: str, name: str) -> int | None:
        if not name.strip():
            return None
        if collection == "users":
            body = self._request_json("GET", "/users/find", params={"term": name})
            items = body.get("data") or []
        else:
            body = self._request_json("GET", f"/{collection}/search", params={"term": name, "limit": SEARCH_LIMIT})
            items = (body.get("data") or {}).get("items") or []
        return pick_search_match(items if isinstance(items, list) else [], name)

    def _request_json(self, method: str, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = self._send(method, path, params=params)
        except requests.RequestException as exc:
            raise ExternalServiceError(f"No se pudo contactar con el CRM: {exc}") from exc
        parsed = self._json_or_none(response)
        if not 200 <= response.status_code < 300:
            raise classify_http_error(response.status_code, parsed, response.text)
        if not isinstance(parsed, dict):
            raise classify_http_error(response.status_code, None, "Respuesta JSON inválida")
        return parsed

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """
        Request con backoff para 429/5xx.

        Tras agotar los reintentos se devuelve la última respuesta: quien llama
        decide si eso es una excepción o un fallo por fila.
        """
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}{path}"
        for attempt in range(self._max_retries + 1):
            response = self._session.request(method=method, url=url, headers=headers, timeout=self._timeout_s, **kwargs)
            if not is_retryable_status(response.status_code) or attempt >= self._max_retries:
                return response
            sleep_s = self._backoff_seconds(attempt, response.headers.get("Retry-After"))
            logger.warning(
                "CRM respondió %s en %s %s. intento=%s/%s backoff=%.2fs",
                response.status_code,
                method,
                path,
                attempt + 1,
                self._max_retries,
                sleep_s,
            )
            self._sleep(sleep_s)
        raise RuntimeError("No se pudo completar la petición al CRM.")

    def _backoff_seconds(self, attempt: int, retry_after: str | None) -> float:
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                return self._min_backoff_s
        base = min(self._max_backoff_s, self._min_backoff_s * (2**attempt))
        return base + (0.15 * base)

    @staticmethod
    def _json_or_none(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None
