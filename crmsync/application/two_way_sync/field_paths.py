"""Lectura/escritura de valores en registros CRM anidados mediante rutas con puntos.

Gramática de rutas:
- segmentos separados por ``.``; un segmento numérico es un índice de lista;
- con raíz ``phone``/``email`` un segundo segmento no numérico es una etiqueta
  (``work``, ``home``…) buscada sin distinguir mayúsculas; ``primary`` cae en la
  entrada marcada como primaria y, si no hay, en la primera;
- ``custom_fields.<id>`` desciende al mapa de campos personalizados.

Ninguna función lanza: los fallos devuelven ``None`` (lectura) o ``False`` (escritura).
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

LABELED_LIST_ROOTS = ("phone", "email")
ADDRESS_COMPONENTS = (
    "subpremise",
    "street_number",
    "route",
    "sublocality",
    "locality",
    "admin_area_level_1",
    "admin_area_level_2",
    "country",
    "postal_code",
    "formatted_address",
)


def split_path(path: str) -> list[str]:
    return [segment for segment in str(path or "").strip().split(".") if segment != ""]


def _is_index(segment: str) -> bool:
    return segment.isdigit()


def _entry_value(entry: Any) -> Any:
    if isinstance(entry, dict):
        return entry.get("value")
    return entry


def _pick_labeled_entry(entries: list[Any], label: str) -> Any:
    wanted = label.strip().lower()
    for entry in entries:
        if isinstance(entry, dict) and str(entry.get("label") or "").strip().lower() == wanted:
            if entry.get("value") not in (None, ""):
                return entry
    for entry in entries:
        if isinstance(entry, dict) and entry.get("primary") and entry.get("value") not in (None, ""):
            return entry
    if entries:
        return entries[0]
    return None


def _get_flattened_address(record: dict[str, Any], path: str) -> tuple[bool, Any]:
    if path in record:
        return True, record[path]
    if path.startswith("address."):
        address = record.get("address")
        component = path.split(".", 1)[1]
        if isinstance(address, dict) and component in address:
            return True, address[component]
        return True, None
    return False, None


def get_value(record: Any, path: str) -> Any:
    try:
        return _get_value(record, path)
    except (AttributeError, IndexError, KeyError, TypeError, ValueError):
        logger.debug("Ruta no resoluble: %s", path)
        return None


def _get_value(record: Any, path: str) -> Any:
    if not isinstance(record, dict) or not path:
        return None
    segments = split_path(path)
    if not segments:
        return None
    root = segments[0]
    if root not in LABELED_LIST_ROOTS:
        found, value = _get_flattened_address(record, path)
        if found:
            return value
    if root in LABELED_LIST_ROOTS and len(segments) >= 2 and not _is_index(segments[1]):
        entries = record.get(root)
        if isinstance(entries, list):
            return _entry_value(_pick_labeled_entry(entries, segments[1]))
        return entries if segments[1].lower() == "primary" else None
    if root in LABELED_LIST_ROOTS and len(segments) == 1:
        entries = record.get(root)
        if isinstance(entries, list):
            return _entry_value(_pick_labeled_entry(entries, "primary"))
        return entries

    current: Any = record
    for segment in segments:
        if current is None:
            return None
        if isinstance(current, list):
            if not _is_index(segment):
                return None
            index = int(segment)
            current = current[index] if index < len(current) else None
        elif isinstance(current, dict):
            current = current.get(segment)
        else:
            return None
    return current


def set_value(record: Any, path: str, value: Any) -> bool:
    try:
        return _set_value(record, path, value)
    except (AttributeError, IndexError, KeyError, TypeError, ValueError):
        logger.debug("No se pudo asignar la ruta %s", path)
        return False


def _set_labeled_entry(record: dict[str, Any], root: str, label: str, value: Any) -> bool:
    entries = record.get(root)
    if not isinstance(entries, list):
        entries = []
        record[root] = entries
    wanted = label.strip().lower()
    for entry in entries:
        if isinstance(entry, dict) and str(entry.get("label") or "").strip().lower() == wanted:
            entry["value"] = value
            return True
    if wanted == "primary":
        for entry in entries:
            if isinstance(entry, dict) and entry.get("primary"):
                entry["value"] = value
                return True
    entries.append({"label": wanted, "value": value, "primary": not entries})
    return True


def _container_for(next_segment: str) -> Any:
    return [] if _is_index(next_segment) else {}


def _set_value(record: Any, path: str, value: Any) -> bool:
    if not isinstance(record, dict):
        return False
    segments = split_path(path)
    if not segments:
        return False
    root = segments[0]
    if root in LABELED_LIST_ROOTS and len(segments) == 2 and not _is_index(segments[1]):
        return _set_labeled_entry(record, root, segments[1], value)

    current: Any = record
    for position, segment in enumerate(segments):
        last = position == len(segments) - 1
        if isinstance(current, dict):
            if last:
                current[segment] = value
                return True
            child = current.get(segment)
            if not isinstance(child, (dict, list)):
                child = _container_for(segments[position + 1])
                current[segment] = child
            current = child
        elif isinstance(current, list):
            if not _is_index(segment):
                return False
            index = int(segment)
            while len(current) <= index:
                current.append(None)
            if last:
                current[index] = value
                return True
            child = current[index]
            if not isinstance(child, (dict, list)):
                child = _container_for(segments[position + 1])
                current[index] = child
            current = child
        else:
            return False
    return False
