"""Reglas sobre claves de campo del CRM.

Decide qué campos no se pueden escribir, reconoce ids de campos personalizados
y componentes de dirección, y clasifica cada clave en un ``FieldKind``.
"""

from __future__ import annotations

import re

from crmsync.application.two_way_sync.field_paths import ADDRESS_COMPONENTS, LABELED_LIST_ROOTS
from crmsync.domain.models import FieldKind

CUSTOM_FIELD_ID_RE = re.compile(r"^[0-9a-f]{40}(_until)?$")
UNTIL_SUFFIX = "_until"

READ_ONLY_FIELDS = frozenset(
    {
        "id",
        "creator_user_id",
        "add_time",
        "update_time",
        "weighted_value",
        "weighted_value_currency",
        "first_char",
        "active_flag",
        "cc_email",
        "next_activity_id",
        "next_activity_date",
        "next_activity_time",
        "next_activity_subject",
        "next_activity_type",
        "next_activity_duration",
        "next_activity_note",
        "last_activity_id",
        "last_activity_date",
        "rotten_time",
        "archive_time",
        "stage_change_time",
        "local_won_date",
        "local_lost_date",
        "local_close_date",
        "stage_order_nr",
        "person_name",
        "org_name",
        "owner_name",
        "origin",
        "origin_id",
        "has_pic",
        "pic_hash",
        "org_hidden",
        "person_hidden",
        "company_id",
        "picture",
        "picture_id",
        "was_seen",
        "selectable",
    }
)

READ_ONLY_PREFIXES = ("formatted_", "next_activity_", "last_activity_", "local_")

_READ_ONLY_PATTERNS = (
    re.compile(r"_name$"),
    re.compile(r"_email$"),
    re.compile(r"\.name$"),
    re.compile(r"\.email$"),
    re.compile(r"^cc_"),
    re.compile(r"_count$"),
    re.compile(r"_flag$"),
    re.compile(r"_hash$"),
)

# Coinciden con ``_name$`` pero son campos propios del registro.
EDITABLE_NAME_FIELDS = frozenset({"name", "first_name", "last_name", "label_ids"})

LINKED_ENTITY_COLLECTIONS = {
    "owner_id": "users",
    "user_id": "users",
    "creator_user_id": "users",
    "org_id": "organizations",
    "person_id": "persons",
    "deal_id": "deals",
}

ADDRESS_COMPONENT_LABELS = (
    ("subpremise", "Apartment/Suite"),
    ("street_number", "Street Number"),
    ("route", "Street Name"),
    ("sublocality", "District/Sublocality"),
    ("locality", "City"),
    ("admin_area_level_1", "State/Province"),
    ("admin_area_level_2", "Region"),
    ("country", "Country"),
    ("postal_code", "ZIP/Postal Code"),
    ("formatted_address", "Full/Combined Address"),
)

HEADER_SYNONYMS = {
    "Owner Name": "owner_id.name",
    "Owner": "owner_id",
    "Organization Name": "org_id.name",
    "Organization": "org_id",
    "Person Name": "person_id.name",
    "Contact Person": "person_id",
    "Deal Title": "title",
    "Deal Value": "value",
    "Deal Currency": "currency",
    "Pipeline": "pipeline_id",
    "Stage": "stage_id",
    "Expected Close Date": "expected_close_date",
    "Email": "email.work",
    "Phone": "phone.work",
    "ID": "id",
}

ADDRESS_FIELD_TYPE = "address"
DATE_FIELD_TYPES = frozenset({"date", "daterange"})
TIME_FIELD_TYPES = frozenset({"time", "timerange"})
RANGE_FIELD_TYPES = frozenset({"daterange", "timerange"})


def is_custom_field_id(key: str) -> bool:
    return bool(CUSTOM_FIELD_ID_RE.match(str(key or "")))


def custom_field_base(key: str) -> str:
    key = str(key or "")
    return key[: -len(UNTIL_SUFFIX)] if key.endswith(UNTIL_SUFFIX) else key


def is_read_only_field(key: str) -> bool:
    key = str(key or "").strip()
    if not key:
        return True
    if key in EDITABLE_NAME_FIELDS:
        return False
    if key in READ_ONLY_FIELDS:
        return True
    if linked_entity_root(key) not in (None, key):
        return True
    if any(key.startswith(prefix) for prefix in READ_ONLY_PREFIXES):
        return True
    return any(pattern.search(key) for pattern in _READ_ONLY_PATTERNS)


def parse_address_component(key: str) -> tuple[str, str] | None:
    """``<base>_<component>`` → ``(base, component)``; ``None`` si no es componente."""

    key = str(key or "")
    if key.startswith("address."):
        component = key.split(".", 1)[1]
        return ("address", component) if component in ADDRESS_COMPONENTS else None
    for component in sorted(ADDRESS_COMPONENTS, key=len, reverse=True):
        suffix = "_" + component
        if key.endswith(suffix) and len(key) > len(suffix):
            return key[: -len(suffix)], component
    return None


def address_sub_header(base_header: str, component: str) -> str:
    labels = dict(ADDRESS_COMPONENT_LABELS)
    return f"{base_header} - {labels[component]}"


def linked_entity_root(key: str) -> str | None:
    """Raíz ``person_id``/``org_id``... de la clave. Solo la raíz es editable; sus atributos anidados son de solo lectura."""
    root = str(key or "").split(".", 1)[0]
    return root if root in LINKED_ENTITY_COLLECTIONS else None


def classify_field(key: str, field_type: str = "", *, address_bases: frozenset[str] = frozenset()) -> FieldKind:
    """Clasifica una clave de campo. ``address_bases`` son las claves con tipo dirección."""

    key = str(key or "")
    root = key.split(".", 1)[0]
    if root in LABELED_LIST_ROOTS:
        return FieldKind.LABELED_LIST
    component = parse_address_component(key)
    if component is not None and (component[0] in address_bases or component[0] == "address" or is_custom_field_id(component[0])):
        return FieldKind.ADDRESS_COMPONENT
    if is_custom_field_id(key):
        if key.endswith(UNTIL_SUFFIX) or field_type in RANGE_FIELD_TYPES:
            return FieldKind.TIME_RANGE_PAIR
        return FieldKind.CUSTOM_FIELD
    if key.startswith("custom_fields."):
        return FieldKind.CUSTOM_FIELD
    if linked_entity_root(key) == key:
        return FieldKind.LINKED_ENTITY
    return FieldKind.SCALAR
