"""
Record and summary exports.

Generates PDF (reportlab) and Excel (pandas + openpyxl) documents from the
same filtered, sorted rows the table view shows. Every document opens with a
header block:

    IVF Procedures Records
    Generated on: 2026-10-19
    Date Range: From 2026-01-01 To 2026-03-31   (only when a range is active)
    Records: 42

followed by a table holding exactly the requested columns, in order.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence
from xml.sax.saxutils import escape

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from core.exceptions import ExportError, ValidationError
from models import SUPERVISION_LEVELS, ProcedureRecord
from services.summary_service import RecordSummary

logger = logging.getLogger(__name__)

RECORDS_TITLE = "IVF Procedures Records"
SUMMARY_TITLE = "IVF Procedures Summary"

# column key -> (record attribute, header label)
EXPORT_COLUMNS: dict[str, tuple[str, str]] = {
    "mrn": ("mrn", "MRN"),
    "date": ("date", "Date"),
    "age": ("age", "Age"),
    "procedure": ("procedure", "Procedure"),
    "supervision": ("supervision", "Supervision"),
    "hospital": ("hospital", "Hospital"),
    "complicationNotes": ("complication_notes", "Complication Notes"),
    "operationNotes": ("operation_notes", "Operation Notes"),
}

_COLUMN_ALIASES = {
    "complication_notes": "complicationNotes",
    "operation_notes": "operationNotes",
}

DEFAULT_VISIBLE_COLUMNS = ("mrn", "date", "age", "procedure", "supervision", "hospital")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MEDIA_TYPE = "application/pdf"

HEAD_COLOR = colors.HexColor("#428bca")


@dataclass(frozen=True)
class ExportHeader:
    title: str
    generated_on: date
    row_count: int
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @property
    def date_range(self) -> Optional[str]:
        if self.date_from is None and self.date_to is None:
            return None
        parts = ["Date Range:"]
        if self.date_from is not None:
            parts.append(f"From {self.date_from.isoformat()}")
        if self.date_to is not None:
            parts.append(f"To {self.date_to.isoformat()}")
        return " ".join(parts)

    def lines(self) -> list[str]:
        out = [self.title, f"Generated on: {self.generated_on.isoformat()}"]
        if self.date_range:
            out.append(self.date_range)
        out.append(f"Records: {self.row_count}")
        return out


@dataclass(frozen=True)
class ExportResult:
    content: bytes
    media_type: str
    filename: str


def resolve_columns(columns: Optional[Sequence[str]]) -> list[str]:
    """Normalise the requested visible columns; unknown names are rejected."""
    if not columns:
        return list(DEFAULT_VISIBLE_COLUMNS)
    out: list[str] = []
    for raw in columns:
        key = _COLUMN_ALIASES.get(raw.strip(), raw.strip())
        if key not in EXPORT_COLUMNS:
            raise ValidationError(f"Unknown export column '{raw}'", field="columns")
        if key not in out:
            out.append(key)
    return out


def build_export_header(
    *,
    row_count: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    title: str = RECORDS_TITLE,
    generated_on: Optional[date] = None,
) -> ExportHeader:
    return ExportHeader(
        title=title,
        generated_on=generated_on or date.today(),
        row_count=row_count,
        date_from=date_from,
        date_to=date_to,
    )


def _cell(value) -> object:
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    return value


def build_rows(records: Iterable[ProcedureRecord], columns: Sequence[str]) -> list[list[object]]:
    attrs = [EXPORT_COLUMNS[c][0] for c in columns]
    return [[_cell(getattr(r, a, None)) for a in attrs] for r in records]


def _styles() -> dict[str, ParagraphStyle]:
    styles = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("ExportTitle", parent=styles["Heading1"], fontSize=20, spaceAfter=8),
        "meta": ParagraphStyle("ExportMeta", parent=styles["Normal"], fontSize=10, textColor=colors.HexColor("#475569")),
        "heading": ParagraphStyle("ExportHeading", parent=styles["Heading2"], fontSize=14, spaceBefore=12, spaceAfter=6),
        "cell": ParagraphStyle("ExportCell", parent=styles["Normal"], fontSize=8, leading=10),
    }


def _table_style() -> TableStyle:
    return TableStyle(
        [
            ("BACKGROUND", (0, 0), (-1, 0), HEAD_COLOR),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 8),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#e2e8f0")),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f8fafc")]),
            ("TOPPADDING", (0, 0), (-1, -1), 2),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
        ]
    )


def _header_flowables(header: ExportHeader, styles: dict[str, ParagraphStyle]) -> list:
    lines = header.lines()
    elements = [Paragraph(lines[0], styles["title"])]
    elements.extend(Paragraph(line, styles["meta"]) for line in lines[1:])
    elements.append(Spacer(1, 12))
    return elements


def export_records_pdf(records: Sequence[ProcedureRecord], *, columns: Sequence[str], header: ExportHeader) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        rightMargin=36,
        leftMargin=36,
        topMargin=36,
        bottomMargin=36,
        title=header.title,
    )
    styles = _styles()
    elements = _header_flowables(header, styles)

    head = [EXPORT_COLUMNS[c][1] for c in columns]
    # Wrap free text so long notes do not overflow the page.
    body = [[Paragraph(escape(v), styles["cell"]) if isinstance(v, str) else str(v) for v in row] for row in build_rows(records, columns)]
    table = Table([head] + body, colWidths=[doc.width / len(columns)] * len(columns), repeatRows=1)
    table.setStyle(_table_style())
    elements.append(table)

    doc.build(elements)
    return buffer.getvalue()


def export_records_xlsx(records: Sequence[ProcedureRecord], *, columns: Sequence[str], header: ExportHeader) -> bytes:
    lines = header.lines()
    frame = pd.DataFrame(build_rows(records, columns), columns=[EXPORT_COLUMNS[c][1] for c in columns])

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        # Header block, a blank row, then the table.
        frame.to_excel(writer, sheet_name="Records", index=False, startrow=len(lines) + 1)
        ws = writer.sheets["Records"]
        for i, line in enumerate(lines, start=1):
            ws.cell(row=i, column=1, value=line)
    return buffer.getvalue()


def export_records(
    records: Sequence[ProcedureRecord],
    *,
    fmt: str,
    columns: Optional[Sequence[str]] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    generated_on: Optional[date] = None,
) -> ExportResult:
    """
    Render ``records`` (already filtered and sorted) as PDF or XLSX.

    Column and format problems are validation errors; anything failing inside
    the document libraries becomes a generic ExportError.
    """
    fmt = (fmt or "").lower()
    if fmt not in ("pdf", "xlsx"):
        raise ValidationError(f"Unsupported export format '{fmt}'", field="format")
    visible = resolve_columns(columns)
    header = build_export_header(row_count=len(records), date_from=date_from, date_to=date_to, generated_on=generated_on)

    try:
        if fmt == "pdf":
            content = export_records_pdf(records, columns=visible, header=header)
            result = ExportResult(content, PDF_MEDIA_TYPE, "ivf_records.pdf")
        else:
            content = export_records_xlsx(records, columns=visible, header=header)
            result = ExportResult(content, XLSX_MEDIA_TYPE, "ivf_records.xlsx")
    except Exception:
        logger.exception(f"Record export ({fmt}) failed")
        raise ExportError()

    logger.info(f"Exported {len(records)} records as {fmt}", extra={"extra_fields": {"columns": visible}})
    return result


def export_summary_pdf(
    summary: RecordSummary,
    *,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    generated_on: Optional[date] = None,
) -> ExportResult:
    header = build_export_header(
        row_count=summary.total_records,
        date_from=date_from,
        date_to=date_to,
        title=SUMMARY_TITLE,
        generated_on=generated_on,
    )
    try:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, rightMargin=50, leftMargin=50, topMargin=50, bottomMargin=50, title=header.title)
        styles = _styles()
        elements = _header_flowables(header, styles)

        elements.append(Paragraph("Procedures", styles["heading"]))
        proc_rows = [["Procedure", "Total"] + list(SUPERVISION_LEVELS)]
        for p in summary.procedures:
            proc_rows.append([p.procedure, str(p.count)] + [str(p.supervision_breakdown.get(s, 0)) for s in SUPERVISION_LEVELS])
        proc_table = Table(proc_rows, repeatRows=1)
        proc_table.setStyle(_table_style())
        elements.append(proc_table)

        if summary.hospitals:
            elements.append(Paragraph("Hospitals", styles["heading"]))
            hospital_table = Table([["Hospital", "Procedures"]] + [[b.name, str(b.count)] for b in summary.hospitals], colWidths=[3 * inch, 1.2 * inch])
            hospital_table.setStyle(_table_style())
            elements.append(hospital_table)

        if summary.timeline:
            elements.append(Paragraph("Monthly Timeline", styles["heading"]))
            timeline_table = Table([["Month", "Procedures"]] + [[b.name, str(b.count)] for b in summary.timeline], colWidths=[1.5 * inch, 1.2 * inch])
            timeline_table.setStyle(_table_style())
            elements.append(timeline_table)

        doc.build(elements)
    except Exception:
        logger.exception("Summary export failed")
        raise ExportError()

    return ExportResult(buffer.getvalue(), PDF_MEDIA_TYPE, "ivf_summary.pdf")
