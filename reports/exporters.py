# reports/exporters.py
from __future__ import annotations

import html
import io
import json
import logging
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

from analytics.stats import arrival_trend, disposition_counts, priority_counts, summarize
from db.schemas import PatientRecord

logger = logging.getLogger(__name__)

EXCEL_MIME = "application/vnd.ms-excel"
JSON_MIME = "application/json"
PDF_MIME = "application/pdf"

Column = Tuple[str, str]  # (attribute, label)

# Data table view / quick export
TABLE_COLUMNS: List[Column] = [
    ("tanggal", "DATE"),
    ("no_kib", "RM NO."),
    ("nama_pasien", "PATIENT NAME"),
    ("prioritas", "PRIORITY"),
    ("dpjp", "DPJP"),
    ("dokter_spesialis", "SPECIALIST"),
    ("jam_datang", "ARRIVAL"),
    ("jam_respon", "RESPONSE"),
    ("jam_dokter", "DR"),
    ("jam_konsul", "CONSULT"),
    ("jam_respon_spesialis", "SP RESPONSE"),
    ("ket", "STATUS"),
    ("ruangan", "ROOM"),
    ("masalah", "PROBLEM"),
]

# Full report view
REPORT_COLUMNS: List[Column] = [
    ("tanggal", "Date"),
    ("no_kib", "RM No."),
    ("nama_pasien", "Patient name"),
    ("prioritas", "Triage"),
    ("dpjp", "DPJP"),
    ("dokter_spesialis", "Specialist"),
    ("jam_datang", "Arrival"),
    ("jam_respon", "Response"),
    ("jam_dokter", "Doctor"),
    ("jam_konsul", "Consult"),
    ("jam_respon_spesialis", "Specialist response"),
    ("ket", "Status"),
    ("ruangan", "Room"),
    ("masalah", "Notes / problem"),
]

REPORT_TITLE = "ED & OUTPATIENT SERVICE REPORT"


class MalformedImportError(ValueError):
    """The uploaded file is not a JSON list of patient records."""


# ============================================================
# Table helpers
# ============================================================

def records_frame(records: Iterable[PatientRecord], columns: Sequence[Column], blank: str = "") -> pd.DataFrame:
    rows = []
    for r in records:
        rows.append({label: (getattr(r, attr) or blank) for attr, label in columns})
    return pd.DataFrame(rows, columns=[label for _, label in columns])


def period_label(start_date: Optional[str], end_date: Optional[str]) -> str:
    if start_date or end_date:
        return f"{start_date or 'Start'} to {end_date or 'End'}"
    return "All periods"


def _period_slug(start_date: Optional[str], end_date: Optional[str]) -> str:
    if start_date or end_date:
        return f"{start_date or 'Start'}_to_{end_date or 'End'}"
    return "All_Periods"


def _excel_document(body: str) -> str:
    return (
        '<html xmlns:o="urn:schemas-microsoft-com:office:office" '
        'xmlns:x="urn:schemas-microsoft-com:office:excel" '
        'xmlns="http://www.w3.org/TR/REC-html40">'
        '<head><meta charset="utf-8" />'
        "<style>table { border-collapse: collapse; } th, td { border: 1px solid black; padding: 5px; }</style>"
        f"</head><body>{body}</body></html>"
    )


# ============================================================
# Spreadsheet exports (HTML table served as .xls)
# ============================================================

def table_export(records: Sequence[PatientRecord], columns: Sequence[Column] = TABLE_COLUMNS) -> str:
    df = records_frame(records, columns, blank="")
    return _excel_document(df.to_html(index=False, border=1, escape=True))


def table_export_filename(today: Optional[date] = None) -> str:
    return f"Patient_Data_{(today or date.today()).isoformat()}.xls"


def full_report_export(
    records: Sequence[PatientRecord],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    printed_at: Optional[datetime] = None,
) -> str:
    printed_at = printed_at or datetime.now()
    df = records_frame(records, REPORT_COLUMNS, blank="-")
    body = (
        f"<h2>{html.escape(REPORT_TITLE)}</h2>"
        f"<p>Period: {html.escape(period_label(start_date, end_date))}</p>"
        f"<p>Printed at: {printed_at.strftime('%Y-%m-%d %H:%M')}</p>"
        + df.to_html(index=False, border=1, escape=True)
    )
    return _excel_document(body)


def full_report_filename(start_date: Optional[str] = None, end_date: Optional[str] = None) -> str:
    return f"Full_Report_{_period_slug(start_date, end_date)}.xls"


# ============================================================
# JSON backup / restore
# ============================================================

def backup_json(records: Iterable[PatientRecord]) -> str:
    return json.dumps([r.to_wire() for r in records], ensure_ascii=False, indent=2)


def backup_filename(today: Optional[date] = None) -> str:
    return f"Backup_MutuIGD_{(today or date.today()).isoformat()}.json"


def parse_backup(payload: Union[str, bytes]) -> List[PatientRecord]:
    """
    Read a backup file (a JSON list of sheet-shaped objects) back into records.
    Raises MalformedImportError for anything else.
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise MalformedImportError("file is not UTF-8 text") from e
    try:
        data: Any = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedImportError(f"invalid JSON: {e.msg}") from e

    if not isinstance(data, list):
        raise MalformedImportError("expected a JSON list of records")
    if not all(isinstance(item, dict) for item in data):
        raise MalformedImportError("every item must be a JSON object")
    return [PatientRecord.from_wire(item) for item in data]


# ============================================================
# Dashboard PDF
# ============================================================

def _draw_table(c: canvas.Canvas, x: float, y: float, title: str, rows: List[Tuple[str, str]]) -> float:
    c.setFont("Helvetica-Bold", 11)
    c.drawString(x, y, title)
    y -= 0.6 * cm
    c.setFont("Helvetica", 10)
    for label, value in rows:
        c.drawString(x, y, label)
        c.drawRightString(x + 7 * cm, y, value)
        y -= 0.5 * cm
    return y


def dashboard_pdf(
    records: Sequence[PatientRecord],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    printed_at: Optional[datetime] = None,
) -> bytes:
    """A4 summary of the (filtered) records: figures, category tables and the arrival trend."""
    printed_at = printed_at or datetime.now()
    stats = summarize(records)

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    left = 2 * cm
    y = height - 2 * cm

    c.setFont("Helvetica-Bold", 14)
    c.drawString(left, y, "ED Dashboard Report")
    y -= 0.7 * cm
    c.setFont("Helvetica", 10)
    c.drawString(left, y, f"Period: {period_label(start_date, end_date)}")
    y -= 0.5 * cm
    c.drawString(left, y, f"Printed at: {printed_at.strftime('%Y-%m-%d %H:%M')}")
    y -= 1.0 * cm

    y = _draw_table(c, left, y, "Summary", [
        ("Total patients", str(stats.total)),
        ("Emergency (P1)", str(stats.emergency)),
        ("Inpatient", f"{stats.inpatient} ({stats.inpatient_percent}%)"),
        ("Outpatient", str(stats.outpatient)),
        ("Waiting for doctor", str(stats.waiting)),
        ("Distinct specialists", str(stats.specialists)),
    ])
    y -= 0.5 * cm

    y_left = _draw_table(c, left, y, "Priority", [(k, str(v)) for k, v in priority_counts(records).items()])
    y_right = _draw_table(
        c, left + 9 * cm, y, "Final status",
        [(k or "-", str(v)) for k, v in disposition_counts(records).items()],
    )
    y = min(y_left, y_right) - 0.8 * cm

    trend = arrival_trend(records)
    c.setFont("Helvetica-Bold", 11)
    c.drawString(left, y, "Arrivals per hour")
    y -= 0.4 * cm

    chart_h = 5 * cm
    chart_w = width - 2 * left
    base_y = y - chart_h
    peak = max((n for _, n in trend), default=0) or 1
    bar_w = chart_w / len(trend)

    c.setStrokeColor(colors.grey)
    c.line(left, base_y, left + chart_w, base_y)
    c.setFont("Helvetica", 7)
    for i, (label, n) in enumerate(trend):
        bx = left + i * bar_w
        bh = (n / peak) * (chart_h - 0.6 * cm)
        c.setFillColor(colors.HexColor("#10b981"))
        c.rect(bx + 2, base_y, bar_w - 4, bh, stroke=0, fill=1)
        c.setFillColor(colors.black)
        c.drawCentredString(bx + bar_w / 2, base_y - 0.35 * cm, label)
        if n:
            c.drawCentredString(bx + bar_w / 2, base_y + bh + 0.1 * cm, str(n))

    c.showPage()
    c.save()
    logger.info("Rendered dashboard PDF for %d records", len(records))
    return buf.getvalue()


def dashboard_pdf_filename(start_date: Optional[str] = None, end_date: Optional[str] = None) -> str:
    return f"ED_Dashboard_Report_{_period_slug(start_date, end_date)}.pdf"
