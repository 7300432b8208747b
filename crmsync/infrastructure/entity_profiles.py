"""Diferencias de la API del CRM entre tipos de entidad.

Los leads se actualizan con PATCH y el resto con PUT. Los deals aceptan los
campos personalizados anidados en ``custom_fields``; personas, organizaciones y
productos los quieren en la raíz del cuerpo.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from crmsync.domain.models import (
    ENTITY_ACTIVITIES,
    ENTITY_DEALS,
    ENTITY_LEADS,
    ENTITY_ORGANIZATIONS,
    ENTITY_PERSONS,
    ENTITY_PRODUCTS,
)


@dataclass(frozen=True)
class EntityProfile:
    entity_type: str
    update_method: str
    fields_endpoint: str
    nest_custom_fields: bool

    def shape_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        body = dict(payload)
        custom_fields = body.pop("custom_fields", None)
        if not isinstance(custom_fields, dict) or not custom_fields:
            return body
        if self.nest_custom_fields:
            body["custom_fields"] = dict(custom_fields)
            return body
        for key, value in custom_fields.items():
            body[key] = value
        return body


PROFILES = {
    ENTITY_DEALS: EntityProfile(ENTITY_DEALS, "PUT", "dealFields", True),
    ENTITY_PERSONS: EntityProfile(ENTITY_PERSONS, "PUT", "personFields", False),
    ENTITY_ORGANIZATIONS: EntityProfile(ENTITY_ORGANIZATIONS, "PUT", "organizationFields", False),
    ENTITY_ACTIVITIES: EntityProfile(ENTITY_ACTIVITIES, "PUT", "activityFields", False),
    ENTITY_LEADS: EntityProfile(ENTITY_LEADS, "PATCH", "leadFields", False),
    ENTITY_PRODUCTS: EntityProfile(ENTITY_PRODUCTS, "PUT", "productFields", False),
}


def profile_for(entity_type: str) -> EntityProfile:
    try:
        return PROFILES[entity_type]
    except KeyError:
        raise ValueError(f"Tipo de entidad no soportado: {entity_type}") from None
