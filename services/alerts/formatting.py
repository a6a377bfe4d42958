"""
FLEETWATCH Message Formatting

Renders consolidated batches for email (subject, plain text, HTML) and SMS.
Both transports show at most max_detailed entries in full and summarise the
rest as "Y K más"; the SMS text is further cut to the character budget.
"""

import html
from datetime import datetime
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

from services.alerts.models import (
    ConnectionBatchEntry,
    FinalStatus,
    TemperatureBatchEntry,
)
from services.alerts.working_hours import to_local
from services.notify.base import RenderedMessage

SMS_TIME_FORMAT = "%d/%m %H:%M"
EMAIL_TIME_FORMAT = "%d/%m/%Y %H:%M"

STATUS_COLORS = {
    FinalStatus.DISCONNECTED: "#dc3545",
    FinalStatus.CONNECTED: "#28a745",
}

FOOTER = "Mensaje automático del sistema de monitoreo FLEETWATCH."


def _fmt(ts: Optional[datetime], tz: ZoneInfo, fmt: str = EMAIL_TIME_FORMAT) -> str:
    if ts is None:
        return "-"
    return to_local(ts, tz).strftime(fmt)


def _fmt_temp(value: float) -> str:
    return f"{value:.1f}"


def fit_sms(header: str, details: Sequence[str], total: int, footer: str, max_chars: int) -> str:
    """
    Assemble an SMS from a header, per-entry details and a footer.

    Details are dropped from the end (and counted into "Y K más") until the
    message fits; if the header and footer alone overflow, the text is cut
    with an ellipsis.
    """
    kept = list(details)
    while True:
        remaining = total - len(kept)
        parts = [header, *kept]
        if remaining > 0:
            parts.append(f"Y {remaining} más.")
        parts.append(footer)
        text = " ".join(p for p in parts if p)
        if len(text) <= max_chars or not kept:
            break
        kept.pop()

    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3].rstrip() + "..."


def _render_html(title: str, color: str, intro: str, headers: List[str], rows: List[List[str]], extra: str) -> str:
    head_cells = "".join(
        f"<th style='padding:6px 8px;text-align:left;border-bottom:1px solid #ddd;'>{h}</th>"
        for h in headers
    )
    body_rows = "".join(
        "<tr>" + "".join(f"<td style='padding:6px 8px;'>{cell}</td>" for cell in row) + "</tr>"
        for row in rows
    )
    return f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 0; padding: 20px; background: #f5f5f5;">
  <div style="max-width: 700px; margin: 0 auto; background: white; border-radius: 8px; overflow: hidden;">
    <div style="background: {color}; color: white; padding: 20px;">
      <h1 style="margin: 0; font-size: 22px;">{html.escape(title)}</h1>
    </div>
    <div style="padding: 20px;">
      <p style="margin: 0 0 16px 0;">{html.escape(intro)}</p>
      <table style="width: 100%; border-collapse: collapse;">
        <tr>{head_cells}</tr>
        {body_rows}
      </table>
      {extra}
    </div>
    <div style="background: #f8f9fa; padding: 15px 20px; font-size: 12px; color: #6c757d;">
      {FOOTER}
    </div>
  </div>
</body>
</html>
"""


def _more_line(names: Sequence[str]) -> str:
    return f"Y {len(names)} más: {', '.join(names)}"


# =============================================================================
# Temperature
# =============================================================================

def render_temperature_batch(
    entries: Sequence[TemperatureBatchEntry],
    now: datetime,
    tz: ZoneInfo,
    max_detailed: int = 3,
    sms_max_chars: int = 160,
) -> RenderedMessage:
    count = len(entries)
    subject = f"Alerta de Temperatura - {count} canales fuera de rango"
    detailed = list(entries[:max_detailed])
    others = [e.name for e in entries[max_detailed:]]

    text_lines = [
        "ALERTA DE TEMPERATURA",
        "=====================",
        "",
        f"{count} canales registraron temperaturas fuera de rango.",
        "",
    ]
    rows: List[List[str]] = []
    for entry in detailed:
        status = "Por debajo" if entry.below_range else "Por encima"
        readings = ", ".join(_fmt_temp(v) for v in entry.readings)
        postponed = " (retenida en horario laboral)" if entry.postponed else ""
        text_lines.extend([
            f"{entry.name}{postponed}",
            f"  Temperatura: {_fmt_temp(entry.temperature)}°C ({status} del rango)",
            f"  Rango: {entry.min_threshold}°C a {entry.max_threshold}°C",
            f"  Hora: {_fmt(entry.timestamp, tz)}",
            f"  Lecturas: {readings}",
            "",
        ])
        rows.append([
            html.escape(entry.name),
            f"{_fmt_temp(entry.temperature)}°C",
            f"{entry.min_threshold}°C / {entry.max_threshold}°C",
            status,
            _fmt(entry.timestamp, tz),
            html.escape(readings),
        ])
    if others:
        text_lines.extend([_more_line(others), ""])
    text_lines.extend([f"Generado: {_fmt(now, tz)}", "", "---", FOOTER])

    extra = f"<p>{html.escape(_more_line(others))}</p>" if others else ""
    html_body = _render_html(
        subject,
        "#fd7e14",
        f"{count} canales registraron temperaturas fuera de rango.",
        ["Canal", "Temperatura", "Rango", "Estado", "Hora", "Lecturas"],
        rows,
        extra,
    )

    sms_details = [f"{e.name}: {_fmt_temp(e.temperature)}°C." for e in detailed]
    short_text = fit_sms(
        f"ALERTA TEMPERATURA: {count} sensor(es) fuera de rango.",
        sms_details,
        count,
        _fmt(now, tz, SMS_TIME_FORMAT),
        sms_max_chars,
    )
    return RenderedMessage(subject=subject, text="\n".join(text_lines), html=html_body, short_text=short_text)


# =============================================================================
# Connectivity
# =============================================================================

def render_connection_batch(
    entries: Sequence[ConnectionBatchEntry],
    now: datetime,
    tz: ZoneInfo,
    max_detailed: int = 3,
    sms_max_chars: int = 160,
) -> RenderedMessage:
    count = len(entries)
    subject = f"Alerta de Conexión - {count} dispositivos con eventos"
    detailed = list(entries[:max_detailed])
    others = [e.name for e in entries[max_detailed:]]

    text_lines = [
        "ALERTA DE CONEXIÓN",
        "==================",
        "",
        f"{count} dispositivos reportaron eventos de conexión.",
        "",
    ]
    rows: List[List[str]] = []
    for entry in detailed:
        text_lines.extend([
            entry.name,
            f"  Estado final: {entry.final_status.value}",
            f"  Desconexión: {_fmt(entry.disconnect_time, tz)}",
            f"  Reconexión: {_fmt(entry.reconnect_time, tz)}",
            f"  Último evento: {_fmt(entry.last_connection_time, tz)}",
            f"  Eventos en la hora: {len(entry.events)}",
            "",
        ])
        color = STATUS_COLORS[entry.final_status]
        rows.append([
            html.escape(entry.name),
            f"<strong style='color:{color};'>{entry.final_status.value}</strong>",
            _fmt(entry.disconnect_time, tz),
            _fmt(entry.reconnect_time, tz),
            str(len(entry.events)),
        ])
    if others:
        text_lines.extend([_more_line(others), ""])
    text_lines.extend([f"Generado: {_fmt(now, tz)}", "", "---", FOOTER])

    extra = f"<p>{html.escape(_more_line(others))}</p>" if others else ""
    html_body = _render_html(
        subject,
        "#dc3545",
        f"{count} dispositivos reportaron eventos de conexión.",
        ["Canal", "Estado", "Desconexión", "Reconexión", "Eventos"],
        rows,
        extra,
    )

    sms_details = [
        f"{e.name}: {'DESCONECTADO' if e.final_status is FinalStatus.DISCONNECTED else 'RECONECTADO'}."
        for e in detailed
    ]
    short_text = fit_sms(
        f"ALERTA DESCONEXION: {count} sensor(es) reportados.",
        sms_details,
        count,
        _fmt(now, tz, SMS_TIME_FORMAT),
        sms_max_chars,
    )
    return RenderedMessage(subject=subject, text="\n".join(text_lines), html=html_body, short_text=short_text)
