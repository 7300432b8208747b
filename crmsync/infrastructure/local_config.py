"""config.json del directorio de datos: credenciales del CRM, hoja y tablas sincronizadas."""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any

from crmsync.bootstrap.settings import resolve_data_dir
from crmsync.domain.models import CrmConfig, TableSyncSettings

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"

# clave en config.json -> atributo de CrmConfig
_SCALAR_KEYS = {
    "crm_subdomain": "subdomain",
    "access_token": "access_token",
    "path_credentials_json": "credentials_path",
    "sheets_spreadsheet_id": "spreadsheet_id",
    "device_id": "device_id",
}


def _text(payload: dict[str, Any], key: str) -> str:
    return str(payload.get(key) or "").strip()


def _table_from_payload(table_id: str, payload: Any) -> TableSyncSettings | None:
    if not isinstance(payload, dict) or not _text(payload, "entity_type"):
        return None
    return TableSyncSettings(
        table_id=table_id,
        entity_type=_text(payload, "entity_type"),
        filter_id=_text(payload, "filter_id"),
        two_way_sync_enabled=bool(payload.get("two_way_sync_enabled", False)),
    )


def config_from_payload(payload: dict[str, Any]) -> CrmConfig:
    tables: dict[str, TableSyncSettings] = {}
    raw_tables = payload.get("tables")
    for table_id, raw_table in (raw_tables if isinstance(raw_tables, dict) else {}).items():
        settings = _table_from_payload(str(table_id), raw_table)
        if settings is None:
            logger.warning("Tabla %s ignorada en config.json: falta entity_type", table_id)
            continue
        tables[settings.table_id] = settings
    return CrmConfig(tables=tables, **{attr: _text(payload, key) for key, attr in _SCALAR_KEYS.items()})


def config_to_payload(config: CrmConfig) -> dict[str, Any]:
    payload: dict[str, Any] = {key: getattr(config, attr) for key, attr in _SCALAR_KEYS.items()}
    payload["tables"] = {
        table_id: {
            "entity_type": settings.entity_type,
            "filter_id": settings.filter_id,
            "two_way_sync_enabled": settings.two_way_sync_enabled,
        }
        for table_id, settings in config.tables.items()
    }
    return payload


class CrmConfigStore:
    def __init__(self, base_dir: Path | None = None) -> None:
        self._config_path = (base_dir or resolve_data_dir()) / CONFIG_FILENAME

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> CrmConfig | None:
        """Lee la configuración; ``None`` si falta, está corrupta o no apunta a nada.

        Si el fichero no tiene device_id se genera uno y se persiste.
        """
        try:
            payload = json.loads(self._config_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("No se pudo leer %s: %s", self._config_path, exc)
            return None
        if not isinstance(payload, dict):
            logger.error("%s no contiene un objeto JSON", self._config_path)
            return None
        if not _text(payload, "device_id"):
            payload["device_id"] = self._generate_device_id()
            self._write_payload(payload)
        if not _text(payload, "crm_subdomain") and not _text(payload, "sheets_spreadsheet_id"):
            return None
        return config_from_payload(payload)

    def save(self, config: CrmConfig) -> CrmConfig:
        payload = config_to_payload(config)
        payload["device_id"] = payload["device_id"] or self._generate_device_id()
        self._write_payload(payload)
        return config_from_payload(payload)

    def _write_payload(self, payload: dict[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    @staticmethod
    def _generate_device_id() -> str:
        return str(uuid.uuid4())
