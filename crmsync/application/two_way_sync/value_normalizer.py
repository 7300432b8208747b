"""Comparación de valores de celda por forma canónica.

La hoja reformatea lo que escribe el usuario (números, fechas, teléfonos), así
que dos valores se consideran iguales si lo son sus formas canónicas, nunca
por comparación literal.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Mapping, Sequence

from crmsync.application.two_way_sync.payload_builder import address_projection, is_empty_cell
from crmsync.domain.models import FieldKind, MappingEntry
from crmsync.domain.time_values import looks_like_iso_date, parse_timestamp, timestamp_key

FLOAT_EPSILON = 1e-4
MIN_NAME_LENGTH = 4

EMAIL_DOMAIN_TYPOS = {
    "gmail.comm": "gmail.com",
    "gmial.com": "gmail.com",
    "gmai.com": "gmail.com",
    "gamil.com": "gmail.com",
    "gmail.con": "gmail.com",
    "hotmail.comm": "hotmail.com",
    "yahoo.comm": "yahoo.com",
    "outlook.comm": "outlook.com",
}

NAME_FIELD_KEYS = frozenset({"name", "first_name", "last_name"})

_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_NON_DIGIT_RE = re.compile(r"\D+")


def is_structural_snapshot(value: Any) -> bool:
    return isinstance(value, dict) and bool(value.get("structural"))


def structural_snapshot(base_key: str, projection: str) -> dict[str, Any]:
    return {"structural": True, "reconstruction_key": base_key, "projection": projection}


def canonical_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip()
    if text.upper() in ("TRUE", "FALSE"):
        return text.lower()
    return text


def _as_number(text: str) -> float | None:
    if not _NUMBER_RE.match(text):
        return None
    try:
        return float(text)
    except ValueError:
        return None


def numbers_equal(left: float, right: float) -> bool:
    if left.is_integer() and right.is_integer():
        return int(left) == int(right)
    return abs(left - right) < FLOAT_EPSILON


def canonical_email(value: Any) -> str:
    text = canonical_scalar(value).lower()
    local, sep, domain = text.rpartition("@")
    if not sep:
        return text
    return f"{local}@{EMAIL_DOMAIN_TYPOS.get(domain, domain)}"


def canonical_phone(value: Any) -> str:
    return _NON_DIGIT_RE.sub("", canonical_scalar(value))


def names_equal(left: Any, right: Any) -> bool:
    """Tolera una inserción o sustitución al final (``Simpson`` ≈ ``Simpsonm``)."""

    a = canonical_scalar(left).lower()
    b = canonical_scalar(right).lower()
    if a == b:
        return True
    if min(len(a), len(b)) < MIN_NAME_LENGTH or abs(len(a) - len(b)) > 1:
        return False
    longer = max(len(a), len(b))
    divergence = next((i for i, (x, y) in enumerate(zip(a, b)) if x != y), min(len(a), len(b)))
    if divergence < longer - 2:
        return False
    if len(a) == len(b):
        return a[divergence + 1 :] == b[divergence + 1 :]
    shorter, wider = (a, b) if len(a) < len(b) else (b, a)
    return wider[:divergence] + wider[divergence + 1 :] == shorter


def _dates_equal(left: Any, right: Any) -> bool | None:
    if not (isinstance(left, date) or looks_like_iso_date(left)):
        return None
    if not (isinstance(right, date) or looks_like_iso_date(right)):
        return None
    left_ts = parse_timestamp(left)
    right_ts = parse_timestamp(right)
    if left_ts is None or right_ts is None:
        return None
    return timestamp_key(left_ts) == timestamp_key(right_ts)


def generic_equal(left: Any, right: Any) -> bool:
    if is_empty_cell(left) and is_empty_cell(right):
        return True
    dates = _dates_equal(left, right)
    if dates is not None:
        return dates
    left_text = canonical_scalar(left)
    right_text = canonical_scalar(right)
    if left_text == right_text:
        return True
    left_number = _as_number(left_text)
    right_number = _as_number(right_text)
    if left_number is not None and right_number is not None:
        return numbers_equal(left_number, right_number)
    return False


def _field_category(entry: MappingEntry | None) -> str:
    if entry is None:
        return "generic"
    root = entry.field_key.split(".", 1)[0]
    if root == "email" or entry.field_type == "email":
        return "email"
    if root == "phone" or entry.field_type == "phone":
        return "phone"
    if entry.kind == FieldKind.SCALAR and entry.field_key in NAME_FIELD_KEYS:
        return "name"
    return "generic"


class ValueNormalizer:
    def equals(
        self,
        original: Any,
        current: Any,
        entry: MappingEntry | None = None,
        *,
        row_values: Mapping[str, Any] | None = None,
        entries: Sequence[MappingEntry | None] = (),
    ) -> bool:
        if is_structural_snapshot(original):
            base_key = str(original.get("reconstruction_key") or "")
            projection = address_projection(row_values or {}, entries, base_key)
            return projection == str(original.get("projection") or "")
        if is_empty_cell(original) and is_empty_cell(current):
            return True
        category = _field_category(entry)
        if category == "email":
            return canonical_email(original) == canonical_email(current)
        if category == "phone":
            left, right = canonical_phone(original), canonical_phone(current)
            if left or right:
                return left == right
        if category == "name" and names_equal(original, current):
            return True
        return generic_equal(original, current)
