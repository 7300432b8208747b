"""Construcción del payload de actualización a partir de una fila de la hoja.

Cada celda se despacha según el ``FieldKind`` de su cabecera. El resultado es
determinista: la misma fila produce siempre el mismo JSON.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Mapping, Optional, Sequence

from crmsync.application.two_way_sync.field_paths import set_value
from crmsync.application.two_way_sync.field_rules import (
    ADDRESS_FIELD_TYPE,
    DATE_FIELD_TYPES,
    LINKED_ENTITY_COLLECTIONS,
    TIME_FIELD_TYPES,
    UNTIL_SUFFIX,
    is_custom_field_id,
)
from crmsync.domain.models import SYNC_STATUS_HEADER, FieldKind, MappingEntry, SheetRow
from crmsync.domain.time_values import format_date_value, format_time_of_day, is_zero_date_time

logger = logging.getLogger(__name__)

NameResolver = Callable[[str, str], Optional[int]]

PRIMARY_LABELS = ("work", "primary")
_NUMERIC_RE = re.compile(r"^[+-]?\d+$")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class BuildResult:
    payload: dict[str, Any]
    flagged: tuple[str, ...] = ()
    dropped: tuple[str, ...] = ()


def is_empty_cell(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def synthesize_address(components: Mapping[str, Any]) -> str:
    """``"<número> <calle>, <ciudad>, <región> <cp>, <país>"`` con las partes disponibles."""

    def part(name: str) -> str:
        value = components.get(name)
        return "" if is_empty_cell(value) else str(value).strip()

    street = " ".join(item for item in (part("street_number"), part("route")) if item)
    region = " ".join(item for item in (part("admin_area_level_1"), part("postal_code")) if item)
    pieces = [street, part("locality"), region, part("country")]
    synthesized = ", ".join(item for item in pieces if item)
    return synthesized or part("formatted_address")


def _normalize_projection(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.strip().lower())


def address_projection(
    row_values: Mapping[str, Any],
    entries: Sequence[MappingEntry | None],
    base_key: str,
) -> str:
    """Dirección completa que resultaría de la fila para ``base_key``, normalizada."""

    base_value = ""
    components: dict[str, Any] = {}
    for entry in entries:
        if entry is None or entry.base_key != base_key:
            continue
        value = row_values.get(entry.header)
        if is_empty_cell(value):
            continue
        if entry.kind == FieldKind.ADDRESS_COMPONENT and entry.component:
            components[entry.component] = value
        elif entry.field_key == base_key:
            base_value = str(value).strip()
    return _normalize_projection(base_value or synthesize_address(components))


def _option_index(entry: MappingEntry) -> dict[str, Any]:
    return {str(option.label).strip().lower(): option.id for option in entry.options}


class PayloadBuilder:
    def __init__(self, name_resolver: NameResolver | None = None) -> None:
        self._name_resolver = name_resolver

    def build(
        self,
        row: SheetRow,
        entries: Sequence[MappingEntry | None],
        entity_type: str,
        changed_headers: set[str] | None = None,
        *,
        name_resolver: NameResolver | None = None,
    ) -> BuildResult:
        resolver = name_resolver or self._name_resolver
        payload: dict[str, Any] = {}
        custom_fields: dict[str, Any] = {}
        labeled: dict[str, list[tuple[str, str]]] = {}
        address_bases: dict[str, tuple[str, str]] = {}
        address_parts: dict[str, dict[str, str]] = {}
        ranges: dict[str, dict[str, Any]] = {}
        flagged: list[str] = []
        dropped: list[str] = []

        for entry in entries:
            if entry is None or entry.header == SYNC_STATUS_HEADER or entry.read_only:
                continue
            value = row.values.get(entry.header)
            if is_empty_cell(value):
                continue
            if isinstance(value, str):
                value = value.strip()

            if entry.kind == FieldKind.LABELED_LIST:
                root, _, label = entry.field_key.partition(".")
                if not label or label.isdigit():
                    label = "work"
                labeled.setdefault(root, []).append((label.lower(), str(value)))
            elif entry.kind == FieldKind.ADDRESS_COMPONENT and entry.base_key and entry.component:
                address_parts.setdefault(entry.base_key, {})[entry.component] = str(value)
            elif entry.field_type == ADDRESS_FIELD_TYPE and entry.base_key == entry.field_key:
                address_bases[entry.field_key] = (entry.header, str(value))
            elif entry.kind == FieldKind.TIME_RANGE_PAIR and entry.base_key:
                side = "end" if entry.component == "end" else "start"
                ranges.setdefault(entry.base_key, {})[side] = self._coerce(entry, value, flagged)
            elif entry.kind == FieldKind.CUSTOM_FIELD:
                key = entry.field_key
                if key.startswith("custom_fields."):
                    key = key.split(".", 1)[1]
                custom_fields[key] = self._coerce(entry, value, flagged)
            elif entry.kind == FieldKind.LINKED_ENTITY:
                resolved = self._resolve_linked(entry, value, resolver)
                if resolved is None:
                    dropped.append(entry.header)
                    logger.info("Entidad vinculada sin resolver en %s: %s", entry.header, value)
                else:
                    payload[entry.field_key] = resolved
            else:
                if not set_value(payload, entry.field_key, self._coerce(entry, value, flagged)):
                    dropped.append(entry.header)

        for root, items in labeled.items():
            payload[root] = self._labeled_list(items)
        for base_key in sorted(set(address_bases) | set(address_parts)):
            address = self._address_object(base_key, address_bases.get(base_key), address_parts.get(base_key, {}), changed_headers)
            if is_custom_field_id(base_key):
                custom_fields[base_key] = address
            else:
                payload[base_key] = address
        for base_key, sides in ranges.items():
            start = sides.get("start", sides.get("end"))
            end = sides.get("end", start)
            until_key = base_key + UNTIL_SUFFIX
            payload[base_key] = start
            payload[until_key] = end
            custom_fields[base_key] = start
            custom_fields[until_key] = end
        if custom_fields:
            payload["custom_fields"] = {key: custom_fields[key] for key in sorted(custom_fields)}
        ordered = {key: payload[key] for key in sorted(payload)}
        return BuildResult(payload=ordered, flagged=tuple(flagged), dropped=tuple(dropped))

    @staticmethod
    def _labeled_list(items: list[tuple[str, str]]) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = []
        primary_assigned = False
        for label, value in items:
            is_primary = not primary_assigned and label in PRIMARY_LABELS
            primary_assigned = primary_assigned or is_primary
            result.append({"label": label, "value": value, "primary": is_primary})
        return result

    @staticmethod
    def _address_object(
        base_key: str,
        base: tuple[str, str] | None,
        components: dict[str, str],
        changed_headers: set[str] | None,
    ) -> dict[str, Any]:
        base_header, base_value = base if base is not None else ("", "")
        if base_value and (not components or (changed_headers and base_header in changed_headers)):
            return {"value": base_value}
        address: dict[str, Any] = {"value": base_value or synthesize_address(components)}
        for component in sorted(components):
            address[component] = str(components[component])
        return address

    def _coerce(self, entry: MappingEntry, value: Any, flagged: list[str]) -> Any:
        if entry.is_option_field:
            return self._resolve_option(entry, value, flagged)
        if entry.field_type in TIME_FIELD_TYPES or is_zero_date_time(value):
            formatted = format_time_of_day(value)
            return formatted if formatted is not None else str(value)
        if entry.field_type in DATE_FIELD_TYPES:
            return format_date_value(value)
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, date):
            return value.isoformat()
        return value

    @staticmethod
    def _resolve_option(entry: MappingEntry, value: Any, flagged: list[str]) -> Any:
        index = _option_index(entry)

        def resolve_one(raw: Any) -> Any:
            text = str(raw).strip()
            if _NUMERIC_RE.match(text):
                return int(text)
            resolved = index.get(text.lower())
            if resolved is None:
                if entry.header not in flagged:
                    flagged.append(entry.header)
                logger.warning("Opción no reconocida en %s: %s", entry.header, text)
                return text
            return resolved

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
        if entry.field_type == "set":
            parts = [resolve_one(part) for part in str(value).split(",") if part.strip()]
            return ",".join(str(part) for part in parts)
        return resolve_one(value)

    @staticmethod
    def _resolve_linked(entry: MappingEntry, value: Any, resolver: NameResolver | None) -> int | None:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
        text = str(value).strip()
        if _NUMERIC_RE.match(text):
            return int(text)
        if resolver is None:
            return None
        collection = LINKED_ENTITY_COLLECTIONS.get(entry.field_key)
        if collection is None:
            return None
        return resolver(collection, text)
