from __future__ import annotations

from crmsync.domain.models import SYNC_STATUS_HEADER, PhaseReport, PushResult


def render_push_summary(result: PushResult) -> str:
    lines = [
        "Push completado: "
        f"{result.success_count} actualizadas, {result.failure_count} con error, {result.skipped_count} pendientes."
    ]
    for failure in result.failures:
        lines.append(f"- Fila {failure.row_index} (ID {failure.record_id}): {failure.message}")
    if result.has_hidden_failures:
        hidden = result.failure_count - len(result.failures)
        lines.append(f"... y {hidden} errores más. Revisa la columna '{SYNC_STATUS_HEADER}' de cada fila.")
    return "\n".join(lines)


def render_phase(report: PhaseReport) -> str:
    detail = f" - {report.detail}" if report.detail else ""
    return f"[{report.progress_percent:>3}%] fase {report.phase.value} {report.status.value}{detail}"
