"""Traducción entre cabeceras de la hoja y claves de campo del CRM.

El mapa cabecera → clave se construye una vez a partir de las columnas que el
usuario eligió para la tabla y se persiste. Si luego alguien renombra o
reordena columnas, ``heal_drift`` añade alias en lugar de reconstruirlo: las
entradas existentes nunca se borran.
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

from crmsync.application.two_way_sync.field_rules import (
    ADDRESS_COMPONENT_LABELS,
    ADDRESS_FIELD_TYPE,
    HEADER_SYNONYMS,
    address_sub_header,
    classify_field,
    custom_field_base,
    is_read_only_field,
    parse_address_component,
)
from crmsync.application.two_way_sync.state_keys import columns_key, header_map_key, load_json, save_json
from crmsync.core.errors import ExternalServiceError
from crmsync.domain.models import SYNC_STATUS_HEADER, ColumnConfig, FieldDefinition, FieldKind, MappingEntry
from crmsync.domain.ports import KeyValueStorePort, RemoteRecordsPort

logger = logging.getLogger(__name__)

_NON_WORD_RE = re.compile(r"[\W_]+", re.UNICODE)


def normalize_header(header: str) -> str:
    return _NON_WORD_RE.sub("", str(header or "").strip().lower())


def disambiguate_headers(names: Sequence[str]) -> list[str]:
    """Repite nombres como ``Nombre (2)``, ``Nombre (3)``… respetando el orden de columnas."""

    seen: dict[str, int] = {}
    result: list[str] = []
    for name in names:
        count = seen.get(name, 0) + 1
        seen[name] = count
        result.append(name if count == 1 else f"{name} ({count})")
    return result


def find_header_index(headers: Sequence[str], header: str) -> int | None:
    """Posición (0-based) de ``header``: primero exacta, después normalizada."""

    for index, candidate in enumerate(headers):
        if candidate == header:
            return index
    wanted = normalize_header(header)
    if not wanted:
        return None
    for index, candidate in enumerate(headers):
        if normalize_header(candidate) == wanted:
            return index
    return None


class SchemaMapper:
    def __init__(self, store: KeyValueStorePort, remote: RemoteRecordsPort | None = None) -> None:
        self._store = store
        self._remote = remote
        self._definitions_cache: dict[str, dict[str, FieldDefinition]] = {}

    def load_columns(self, table_id: str, entity_type: str) -> list[ColumnConfig]:
        payload = load_json(self._store, columns_key(table_id, entity_type), default=[])
        if not isinstance(payload, list):
            return []
        return [ColumnConfig.from_dict(item) for item in payload if isinstance(item, dict) and item.get("key")]

    def save_columns(self, table_id: str, entity_type: str, columns: Sequence[ColumnConfig]) -> dict[str, str]:
        save_json(self._store, columns_key(table_id, entity_type), [column.to_dict() for column in columns])
        mapping = self._build_mapping(entity_type, list(columns))
        save_json(self._store, header_map_key(table_id, entity_type), mapping)
        logger.info("Mapa de cabeceras guardado para %s/%s: %s entradas", table_id, entity_type, len(mapping))
        return mapping

    def resolve_mapping(self, table_id: str, entity_type: str) -> dict[str, str]:
        stored = load_json(self._store, header_map_key(table_id, entity_type), default=None)
        if isinstance(stored, dict) and stored:
            return {str(header): str(key) for header, key in stored.items()}
        columns = self.load_columns(table_id, entity_type)
        mapping = self._build_mapping(entity_type, columns)
        if columns:
            save_json(self._store, header_map_key(table_id, entity_type), mapping)
        return mapping

    def field_definitions(self, entity_type: str) -> dict[str, FieldDefinition]:
        if entity_type in self._definitions_cache:
            return self._definitions_cache[entity_type]
        definitions: dict[str, FieldDefinition] = {}
        if self._remote is not None:
            try:
                definitions = dict(self._remote.get_field_definitions(entity_type))
            except ExternalServiceError as exc:
                logger.warning("No se pudieron leer los campos de %s: %s", entity_type, exc)
                return {}
        self._definitions_cache[entity_type] = definitions
        return definitions

    def entries(self, table_id: str, entity_type: str, headers: Sequence[str]) -> list[MappingEntry | None]:
        mapping = self.resolve_mapping(table_id, entity_type)
        definitions = self.field_definitions(entity_type)
        address_bases = self._address_bases(definitions, mapping.values())
        result: list[MappingEntry | None] = []
        for header in headers:
            header = str(header or "").strip()
            if not header or header == SYNC_STATUS_HEADER:
                result.append(None)
                continue
            field_key = self._lookup(mapping, header)
            if field_key is None:
                result.append(None)
                continue
            result.append(self._entry_for(header, field_key, definitions, address_bases))
        return result

    def heal_drift(self, table_id: str, entity_type: str, current_headers: Sequence[str]) -> bool:
        mapping = self.resolve_mapping(table_id, entity_type)
        columns = self.load_columns(table_id, entity_type)
        changed = False
        for header in current_headers:
            header = str(header or "").strip()
            if not header or header == SYNC_STATUS_HEADER or header in mapping:
                continue
            field_key = self._heal_one(header, mapping, columns)
            if field_key is None:
                logger.info("Cabecera sin correspondencia en %s: %s", table_id, header)
                continue
            mapping[header] = field_key
            changed = True
            logger.info("Alias de cabecera añadido en %s: %s -> %s", table_id, header, field_key)
        if changed:
            save_json(self._store, header_map_key(table_id, entity_type), mapping)
        return changed

    def _build_mapping(self, entity_type: str, columns: list[ColumnConfig]) -> dict[str, str]:
        mapping: dict[str, str] = {}
        definitions = self.field_definitions(entity_type) if columns else {}
        headers = disambiguate_headers([column.display_name for column in columns])
        for header, column in zip(headers, columns):
            mapping[header] = column.key
        for header, column in zip(headers, columns):
            if column.name and column.name != header:
                mapping.setdefault(column.name, column.key)
        for synonym, key in HEADER_SYNONYMS.items():
            mapping.setdefault(synonym, key)
        for header, column in zip(headers, columns):
            if not self._is_address_key(column.key, definitions):
                continue
            for component, _label in ADDRESS_COMPONENT_LABELS:
                mapping.setdefault(address_sub_header(header, component), f"{column.key}_{component}")
        return mapping

    @staticmethod
    def _is_address_key(key: str, definitions: dict[str, FieldDefinition]) -> bool:
        definition = definitions.get(key)
        if definition is not None:
            return definition.field_type == ADDRESS_FIELD_TYPE
        return key == "address"

    @staticmethod
    def _address_bases(definitions: dict[str, FieldDefinition], keys) -> frozenset[str]:
        bases = {key for key, definition in definitions.items() if definition.field_type == ADDRESS_FIELD_TYPE}
        bases.update(key for key in keys if key == "address")
        return frozenset(bases)

    @staticmethod
    def _lookup(mapping: dict[str, str], header: str) -> str | None:
        if header in mapping:
            return mapping[header]
        lowered = header.lower()
        for candidate, key in mapping.items():
            if candidate.lower() == lowered:
                return key
        normalized = normalize_header(header)
        for candidate, key in mapping.items():
            if normalize_header(candidate) == normalized:
                return key
        return None

    @staticmethod
    def _heal_one(header: str, mapping: dict[str, str], columns: list[ColumnConfig]) -> str | None:
        lowered = header.lower()
        for candidate, key in mapping.items():
            if candidate.lower() == lowered:
                return key
        normalized = normalize_header(header)
        if not normalized:
            return None
        for candidate, key in mapping.items():
            if normalize_header(candidate) == normalized:
                return key
        for column in columns:
            names = (column.custom_name or "", column.name, column.key)
            if any(normalize_header(name) == normalized for name in names if name):
                return column.key
        return None

    @staticmethod
    def _definition_for(field_key: str, definitions: dict[str, FieldDefinition]) -> FieldDefinition | None:
        root = field_key.split(".", 1)[0]
        for candidate in (field_key, custom_field_base(field_key), root):
            if candidate in definitions:
                return definitions[candidate]
        return None

    def _entry_for(
        self,
        header: str,
        field_key: str,
        definitions: dict[str, FieldDefinition],
        address_bases: frozenset[str],
    ) -> MappingEntry:
        definition = self._definition_for(field_key, definitions)
        field_type = definition.field_type if definition is not None else ""
        kind = classify_field(field_key, field_type, address_bases=address_bases)
        base_key: str | None = None
        component: str | None = None
        if kind == FieldKind.ADDRESS_COMPONENT:
            parsed = parse_address_component(field_key)
            if parsed is not None:
                base_key, component = parsed
            field_type = ADDRESS_FIELD_TYPE
        elif kind == FieldKind.TIME_RANGE_PAIR:
            base_key = custom_field_base(field_key)
            component = "end" if field_key != base_key else "start"
        elif kind == FieldKind.LINKED_ENTITY:
            base_key = field_key.split(".", 1)[0]
        elif field_type == ADDRESS_FIELD_TYPE or field_key in address_bases:
            base_key = field_key
            field_type = ADDRESS_FIELD_TYPE
        return MappingEntry(
            header=header,
            field_key=field_key,
            kind=kind,
            field_type=field_type,
            base_key=base_key,
            component=component,
            read_only=is_read_only_field(field_key),
            options=definition.options if definition is not None else (),
        )
