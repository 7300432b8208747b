from __future__ import annotations

from crmsync.application.two_way_sync.reporting import render_push_summary
from crmsync.domain.models import PushFailure, PushResult


def test_resumen_sin_errores() -> None:
    assert render_push_summary(PushResult(3, 0, 0)) == "Push completado: 3 actualizadas, 0 con error, 0 pendientes."


def test_resumen_lista_errores_y_pendientes() -> None:
    result = PushResult(2, 1, 4, (PushFailure(3, "2", "Bad value (Check docs)"),))

    lines = render_push_summary(result).splitlines()

    assert lines == [
        "Push completado: 2 actualizadas, 1 con error, 4 pendientes.",
        "- Fila 3 (ID 2): Bad value (Check docs)",
    ]


def test_resumen_indica_errores_ocultos() -> None:
    failures = tuple(PushFailure(row, str(row), "Rechazado") for row in range(2, 7))

    text = render_push_summary(PushResult(0, 8, 0, failures))

    assert text.count("- Fila") == 5
    assert text.endswith("... y 3 errores más. Revisa la columna 'Sync Status' de cada fila.")
