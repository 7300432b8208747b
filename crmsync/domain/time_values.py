"""Conversión de fechas y horas entre la hoja y el formato que acepta el CRM.

Las hojas de cálculo guardan las horas "sueltas" como una fecha en el epoch
de Sheets (1899-12-30) con la hora del día. Esa hora hay que leerla tal cual
(hora/minuto/segundo locales); pasarla por ISO/UTC la desplaza según la zona
horaria del host.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time
from typing import Any

SHEETS_EPOCH_DATE = date(1899, 12, 30)
SHEETS_EPOCH_PREFIX = "1899-12-30"

_ISO_DATE_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_ISO_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_AM_PM_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?\s*(am|pm)$", re.IGNORECASE)
_EMBEDDED_TIME_RE = re.compile(r"(\d{2}):(\d{2}):(\d{2})")


def looks_like_iso_date(value: Any) -> bool:
    return isinstance(value, str) and bool(_ISO_DATE_PREFIX_RE.match(value.strip()))


def is_zero_date_time(value: Any) -> bool:
    if isinstance(value, datetime):
        return value.date() == SHEETS_EPOCH_DATE
    if isinstance(value, str):
        return value.strip().startswith(SHEETS_EPOCH_PREFIX)
    return False


def _hhmmss(hours: int, minutes: int, seconds: int) -> str:
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_time_of_day(value: Any) -> str | None:
    """Convierte una hora de la hoja a ``HH:MM:SS``; ``None`` si no es una hora."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _hhmmss(value.hour, value.minute, value.second)
    if isinstance(value, time):
        return _hhmmss(value.hour, value.minute, value.second)
    text = str(value).strip()
    match = _TIME_RE.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        seconds = int(match.group(3) or 0)
        if hours > 23 or minutes > 59 or seconds > 59:
            return None
        return _hhmmss(hours, minutes, seconds)
    match = _AM_PM_RE.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        seconds = int(match.group(3) or 0)
        if hours < 1 or hours > 12:
            return None
        suffix = match.group(4).lower()
        if suffix == "pm" and hours != 12:
            hours += 12
        elif suffix == "am" and hours == 12:
            hours = 0
        return _hhmmss(hours, minutes, seconds)
    if text.startswith(SHEETS_EPOCH_PREFIX) and "T" in text:
        embedded = _EMBEDDED_TIME_RE.search(text.split("T", 1)[1])
        if embedded:
            return ":".join(embedded.groups())
    return None


def format_date_value(value: Any) -> Any:
    """Normaliza a ``YYYY-MM-DD``; si no parece fecha devuelve el valor original."""

    if value is None or value == "":
        return value
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    if _ISO_DATE_ONLY_RE.match(text):
        return text
    if looks_like_iso_date(text):
        return text[:10]
    if _TIME_RE.match(text):
        return value
    for fmt in ("%m/%d/%Y", "%d.%m.%Y", "%Y/%m/%d", "%b %d, %Y", "%d %b %Y"):
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return value


def parse_timestamp(value: Any) -> datetime | None:
    """Parsea fechas ISO (con o sin hora/zona) para compararlas por instante."""

    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not looks_like_iso_date(value):
        return None
    text = str(value).strip().replace("Z", "+00:00")
    if " " in text and "T" not in text:
        text = text.replace(" ", "T", 1)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        try:
            return datetime.fromisoformat(text[:10])
        except ValueError:
            return None


def timestamp_key(value: datetime) -> float:
    """Clave comparable: fechas sin zona se tratan como UTC para no depender del host."""

    if value.tzinfo is None:
        return (value - datetime(1970, 1, 1)).total_seconds()
    return value.timestamp()
