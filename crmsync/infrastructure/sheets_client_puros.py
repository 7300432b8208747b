from __future__ import annotations

from typing import Any

from crmsync.domain.models import SyncStatus

STATUS_BACKGROUND_COLORS = {
    SyncStatus.NOT_MODIFIED: "#FFFFFF",
    SyncStatus.MODIFIED: "#FCE8E6",
    SyncStatus.SYNCED: "#E6F4EA",
    SyncStatus.ERROR: "#FCE8E6",
}
STATUS_FONT_COLORS = {
    SyncStatus.NOT_MODIFIED: "#000000",
    SyncStatus.MODIFIED: "#D93025",
    SyncStatus.SYNCED: "#137333",
    SyncStatus.ERROR: "#D93025",
}


def calcular_backoff_lectura(intento: int, base_segundos: int = 1) -> int:
    return base_segundos * (2 ** (intento - 1))


def calcular_backoff_escritura(intento: int) -> int:
    return 2 ** (intento - 1)


def debe_reintentar(intento: int, max_intentos: int) -> bool:
    return intento < max_intentos


def extraer_worksheet_desde_operacion(operation_name: str) -> str | None:
    start = operation_name.find("(")
    end = operation_name.rfind(")")
    if start < 0 or end <= start:
        return None
    worksheet_name = operation_name[start + 1 : end].strip()
    return worksheet_name or None


def normalizar_fila(fila: list[Any], total_columnas: int) -> list[Any]:
    if total_columnas < 0:
        raise ValueError("total_columnas no puede ser negativo")
    celdas = ["" if celda is None else celda for celda in fila]
    if len(celdas) >= total_columnas:
        return celdas[:total_columnas]
    return celdas + [""] * (total_columnas - len(celdas))


def _hex_a_rgb(color: str) -> dict[str, float]:
    color = color.lstrip("#")
    red, green, blue = (int(color[i : i + 2], 16) / 255 for i in (0, 2, 4))
    return {"red": round(red, 4), "green": round(green, 4), "blue": round(blue, 4)}


def formato_celda_estado(status: SyncStatus) -> dict[str, Any] | None:
    background = STATUS_BACKGROUND_COLORS.get(status)
    font = STATUS_FONT_COLORS.get(status)
    if background is None or font is None:
        return None
    return {
        "backgroundColor": _hex_a_rgb(background),
        "textFormat": {"foregroundColor": _hex_a_rgb(font), "bold": status in (SyncStatus.MODIFIED, SyncStatus.ERROR)},
    }
