import io
import json
import logging
from datetime import datetime
from typing import Any, Dict, List

# ReportLab Imports
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter, landscape
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from reportlab.lib.styles import getSampleStyleSheet

from expenseflow.errors import ValidationFailed

logger = logging.getLogger(__name__)

EXPORT_TYPES = ("expenses", "approvals")
EXPORT_FORMATS = ("json", "csv", "pdf")

PDF_COLUMNS = {
    "expenses": ["expense_date", "description", "category", "amount", "converted_currency", "status"],
    "approvals": ["created_at", "expense_id", "role", "status", "priority", "action_date"],
}


def export_filename(type: str, fmt: str, today: datetime = None) -> str:
    today = today or datetime.utcnow()
    return f"{type}_{today.strftime('%Y-%m-%d')}.{fmt}"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value).replace(",", ";")


def to_csv(rows: List[Dict[str, Any]]) -> str:
    """
    Header comes from the first row's keys. Nested values are JSON encoded;
    commas inside scalar values become semicolons so no quoting is needed.
    """
    if not rows:
        return ""
    headers = list(rows[0].keys())
    lines = [",".join(headers)]
    for row in rows:
        lines.append(",".join(_cell(row.get(h)) for h in headers))
    return "\n".join(lines)


def to_json(rows: List[Dict[str, Any]], type: str, fmt: str = "json") -> Dict[str, Any]:
    return {
        "message": "Export data retrieved successfully",
        "data": rows,
        "metadata": {
            "type": type,
            "format": fmt,
            "count": len(rows),
            "generated_at": datetime.utcnow().isoformat(),
        },
    }


def to_pdf(rows: List[Dict[str, Any]], type: str) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(letter))
    styles = getSampleStyleSheet()
    story = []

    story.append(Paragraph(f"{type.capitalize()} Report", styles['Title']))
    story.append(Paragraph(f"Generated {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S')} UTC", styles['Normal']))
    story.append(Spacer(1, 12))

    columns = PDF_COLUMNS[type]
    data = [[c.replace("_", " ").title() for c in columns]]
    for row in rows:
        data.append([_pdf_cell(row.get(c)) for c in columns])

    t = Table(data, repeatRows=1)
    t.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 12),
        ('BACKGROUND', (0, 1), (-1, -1), colors.beige),
        ('GRID', (0, 0), (-1, -1), 1, colors.black),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
    ]))

    story.append(t)
    doc.build(story)
    logger.info(f"Rendered {type} PDF with {len(rows)} rows")
    return buffer.getvalue()


def _pdf_cell(value: Any) -> str:
    if value is None:
        return ""
    text = str(value)
    return text[:60] + ("..." if len(text) > 60 else "")


def validate_export(type: str, fmt: str):
    if type not in EXPORT_TYPES:
        raise ValidationFailed("Invalid report type", code="INVALID_TYPE")
    if fmt not in EXPORT_FORMATS:
        raise ValidationFailed("Invalid export format", code="INVALID_FORMAT")
