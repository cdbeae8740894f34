import csv
import io
import json
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from accredit.utils.helpers import iso

HEADER_FILL = PatternFill(start_color="1E3A8A", end_color="1E3A8A", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
SEVERITY_FILLS = {
    "critical": PatternFill(start_color="E74C3C", end_color="E74C3C", fill_type="solid"),
    "high": PatternFill(start_color="F39C12", end_color="F39C12", fill_type="solid"),
}

LOG_COLUMNS = ["Timestamp", "User", "Role", "Action", "Category", "Status", "IP", "Details"]

logger = logging.getLogger(__name__)


def _apply_header_style(ws, row: int, col_count: int) -> None:
    """Apply dark-header styling to an Excel row (1-indexed)."""
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Auto-size column widths based on content (capped at 60 chars)."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)


def _log_row(entry) -> list:
    return [
        iso(entry.created_at),
        entry.user.name if entry.user else "System",
        entry.user.role if entry.user else "system",
        entry.action,
        entry.category,
        entry.status,
        entry.ip,
        json.dumps(entry.details or {}, default=str),
    ]


# ═══════════════════════════════════════════════════════════════════════════
#  Activity log exports
# ═══════════════════════════════════════════════════════════════════════════

def activity_logs_csv(entries) -> str:
    """One row per entry; details serialised as JSON in the last column."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(LOG_COLUMNS)
    for entry in entries:
        writer.writerow(_log_row(entry))
    return buf.getvalue()


def activity_logs_json(entries) -> str:
    return json.dumps([entry.to_dict() for entry in entries], indent=2, default=str)


def activity_logs_xlsx(entries) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Activity Log"
    ws.append(LOG_COLUMNS + ["Severity"])
    _apply_header_style(ws, 1, len(LOG_COLUMNS) + 1)
    for entry in entries:
        ws.append(_log_row(entry) + [entry.severity])
        fill = SEVERITY_FILLS.get(entry.severity)
        if fill is not None:
            ws.cell(row=ws.max_row, column=len(LOG_COLUMNS) + 1).fill = fill
    ws.freeze_panes = "A2"
    _auto_width(ws)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf.getvalue()


# ═══════════════════════════════════════════════════════════════════════════
#  Reports
# ═══════════════════════════════════════════════════════════════════════════

def report_xlsx(report_type: str, report: dict) -> bytes:
    """
    Render a generated report as a workbook: a summary sheet with the
    scalar figures, then one sheet per list-valued section.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"
    ws["A1"] = f"{report_type.capitalize()} report"
    ws["A1"].font = Font(size=16, bold=True, color="1E3A8A")
    ws["A2"] = f"Generated {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    ws.append([])
    ws.append(["Metric", "Value"])
    _apply_header_style(ws, ws.max_row, 2)

    sections = {}
    for section, payload in report.items():
        if isinstance(payload, dict):
            for key, value in payload.items():
                if isinstance(value, (list, dict)):
                    sections[f"{section}.{key}"] = value
                else:
                    ws.append([f"{section}.{key}", value])
        elif isinstance(payload, list):
            sections[section] = payload
        else:
            ws.append([section, payload])
    _auto_width(ws)

    for name, rows in sections.items():
        sheet = wb.create_sheet(title=name.replace(".", " ")[:31])
        if isinstance(rows, dict):
            rows = [{"key": k, "value": v} for k, v in rows.items()]
        if not rows:
            sheet.append(["No data"])
            continue
        columns = list(rows[0].keys())
        sheet.append(columns)
        _apply_header_style(sheet, 1, len(columns))
        for row in rows:
            sheet.append([_cell(row.get(col)) for col in columns])
        _auto_width(sheet)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf.getvalue()


def _cell(value):
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value
