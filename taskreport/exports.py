"""Export formatting for report objects.

`build_export` flattens any report shape into an :class:`ExportDocument`
through declarative field tables; `render_pdf` and `render_xlsx` turn that
document into bytes and know nothing about the reports themselves.
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional, Union

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

from .schemas import LoggedTimeReport, TaskCompletionReport, TeamSummaryReport
from .utils.time_utils import app_today


Report = Union[LoggedTimeReport, TeamSummaryReport, TaskCompletionReport]

EXPORT_FORMATS = ("pdf", "xlsx")

MEDIA_TYPES = {
    "pdf": "application/pdf",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _round(value: float, decimals: int = 2) -> float:
    return round(float(value), decimals)


def fmt_hours(value: float) -> str:
    return f"{_round(value)}h"


def fmt_percent(value: float) -> str:
    return f"{_round(value * 100, 1)}%"


def fmt_count(value: int) -> str:
    return f"{int(value)} tasks"


@dataclass(frozen=True)
class ExportField:
    label: str
    accessor: Callable[[Any], Any]
    formatter: Optional[Callable[[Any], str]] = None

    def row(self, report: Any) -> "SummaryRow":
        value = self.accessor(report)
        text = self.formatter(value) if self.formatter else str(value)
        return SummaryRow(label=self.label, value=value, text=text)


@dataclass(frozen=True)
class SummaryRow:
    label: str
    value: Any
    text: str


@dataclass
class ExportTable:
    title: str
    headers: list[str]
    rows: list[list[Any]] = field(default_factory=list)


@dataclass
class ExportDocument:
    title: str
    summary: list[SummaryRow]
    tables: list[ExportTable]


LOGGED_TIME_FIELDS = [
    ExportField("Total Tasks", lambda r: r.total_tasks, fmt_count),
    ExportField("Total Logged Hours", lambda r: r.total_time, fmt_hours),
    ExportField("Avg Logged Hours (completed)", lambda r: r.avg_time, fmt_hours),
    ExportField("Completed", lambda r: r.completed_tasks, fmt_count),
    ExportField("Overdue", lambda r: r.overdue_tasks, fmt_count),
    ExportField("Blocked", lambda r: r.blocked_tasks, fmt_count),
    ExportField("WIP Hours", lambda r: r.incomplete_time, fmt_hours),
    ExportField("Overdue Logged Hours", lambda r: r.overdue_time, fmt_hours),
    ExportField("On-Time Rate", lambda r: r.on_time_completion_rate, fmt_percent),
    ExportField("Total Lateness", lambda r: r.total_delay_hours, fmt_hours),
]

TEAM_SUMMARY_FIELDS = [
    ExportField("Total Tasks", lambda r: r.total_tasks, fmt_count),
    ExportField("Team Members", lambda r: r.total_users),
    ExportField("Weeks", lambda r: len(r.week_totals)),
]

TASK_COMPLETION_FIELDS = [
    ExportField("Total Tasks", lambda r: r.total_tasks, fmt_count),
    ExportField("Completed", lambda r: r.total_completed, fmt_count),
    ExportField("In Progress", lambda r: r.total_in_progress, fmt_count),
    ExportField("To Do", lambda r: r.total_todo, fmt_count),
    ExportField("Blocked", lambda r: r.total_blocked, fmt_count),
    ExportField("Overall Completion Rate", lambda r: r.overall_completion_rate, fmt_percent),
]


def _logged_time_tables(r: LoggedTimeReport) -> list[ExportTable]:
    rows = [[task_id, _round(seconds / 3600)] for task_id, seconds in r.time_by_task.items()]
    return [ExportTable("Time by Task", ["Task ID", "Logged Hours"], rows)]


def _team_summary_tables(r: TeamSummaryReport) -> list[ExportTable]:
    counts = ["To Do", "In Progress", "Completed", "Blocked", "Total"]
    weekly = ExportTable(
        "Weekly Breakdown",
        ["Week", "Week Start", "User"] + counts,
        [
            [w.week, w.week_start, w.user_name, w.todo, w.in_progress, w.completed, w.blocked, w.total]
            for w in r.weekly_breakdown
        ],
    )
    users = ExportTable(
        "User Totals",
        ["User"] + counts,
        [[u.user_name, u.todo, u.in_progress, u.completed, u.blocked, u.total] for u in r.user_totals.values()],
    )
    weeks = ExportTable(
        "Week Totals",
        ["Week", "Week Start"] + counts,
        [[k, w.week_start, w.todo, w.in_progress, w.completed, w.blocked, w.total] for k, w in r.week_totals.items()],
    )
    return [weekly, users, weeks]


def _task_completion_tables(r: TaskCompletionReport) -> list[ExportTable]:
    per_user = ExportTable(
        "Tasks by Creator",
        [
            "User",
            "Total",
            "Completed",
            "In Progress",
            "To Do",
            "Blocked",
            "Completion Rate",
            "Avg Completion (h)",
            "On-Time",
            "Late",
            "Logged (h)",
        ],
        [
            [
                s.user_name,
                s.total_tasks,
                s.completed_tasks,
                s.in_progress_tasks,
                s.todo_tasks,
                s.blocked_tasks,
                fmt_percent(s.completion_rate),
                _round(s.avg_completion_time),
                s.on_time_completions,
                s.late_completions,
                _round(s.total_logged_time),
            ]
            for s in r.user_stats
        ],
    )
    by_project = ExportTable(
        "Completed by Project",
        ["Project ID", "Completed"],
        [[pid, n] for pid, n in r.completed_by_project.items()],
    )
    return [per_user, by_project]


_LAYOUTS: dict[str, tuple[str, list[ExportField], Callable[[Any], list[ExportTable]]]] = {
    "loggedTime": ("Logged Time Report", LOGGED_TIME_FIELDS, _logged_time_tables),
    "teamSummary": ("Team Summary Report", TEAM_SUMMARY_FIELDS, _team_summary_tables),
    "taskCompletions": ("Task Completion Report", TASK_COMPLETION_FIELDS, _task_completion_tables),
}


def build_export(report: Report) -> ExportDocument:
    try:
        title, fields, tables = _LAYOUTS[report.kind]
    except KeyError:
        raise ValueError(f"Unsupported report kind: {getattr(report, 'kind', None)!r}")
    return ExportDocument(title=title, summary=[f.row(report) for f in fields], tables=tables(report))


def export_filename(title: str, fmt: str, today: date | None = None) -> str:
    """Return '{Report_Title}_{yyyy-mm-dd}.{fmt}'."""
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {fmt!r}")
    day = today or app_today()
    safe = re.sub(r"[^A-Za-z0-9]+", "_", title).strip("_") or "Report"
    return f"{safe}_{day.isoformat()}.{fmt}"


# ---------------------- PDF ----------------------


def _cell_text(value: Any, max_chars: int) -> str:
    text = "" if value is None else str(value)
    if len(text) > max_chars:
        return text[: max(max_chars - 1, 1)] + "…"
    return text


def render_pdf(document: ExportDocument, *, generated_on: date | None = None) -> bytes:
    bio = io.BytesIO()
    c = canvas.Canvas(bio, pagesize=letter)
    c.setTitle(document.title)
    width, height = letter
    y = height - inch

    def _ensure_room(lines: float = 1.0, font: tuple[str, int] | None = None) -> None:
        nonlocal y
        if y - lines * 0.22 * inch < inch:
            c.showPage()
            y = height - inch
            if font:
                c.setFont(*font)

    c.setFont("Helvetica-Bold", 16)
    c.drawString(inch, y, document.title)
    y -= 0.3 * inch
    c.setFont("Helvetica", 9)
    c.drawString(inch, y, f"Generated {(generated_on or app_today()).isoformat()}")
    y -= 0.4 * inch

    c.setFont("Helvetica-Bold", 12)
    c.drawString(inch, y, "Summary")
    y -= 0.3 * inch
    c.setFont("Helvetica", 10)
    for item in document.summary:
        _ensure_room(font=("Helvetica", 10))
        c.drawString(inch, y, item.label)
        c.drawRightString(width - inch, y, item.text)
        y -= 0.22 * inch

    usable = width - 2 * inch
    for table in document.tables:
        _ensure_room(3)
        y -= 0.2 * inch
        c.setFont("Helvetica-Bold", 12)
        c.drawString(inch, y, table.title)
        y -= 0.3 * inch

        col_width = usable / max(len(table.headers), 1)
        # Helvetica 8pt averages roughly 4.5pt per glyph.
        max_chars = max(int(col_width / 4.5), 3)

        def _draw_row(values: list[Any], font: tuple[str, int]) -> None:
            nonlocal y
            c.setFont(*font)
            for i, v in enumerate(values):
                c.drawString(inch + i * col_width, y, _cell_text(v, max_chars))
            y -= 0.2 * inch

        _draw_row(table.headers, ("Helvetica-Bold", 8))
        if not table.rows:
            _draw_row(["(no data)"], ("Helvetica-Oblique", 8))
        for row in table.rows:
            if y - 0.2 * inch < inch:
                c.showPage()
                y = height - inch
                _draw_row(table.headers, ("Helvetica-Bold", 8))
            _draw_row(row, ("Helvetica", 8))

    c.save()
    return bio.getvalue()


# ---------------------- Spreadsheet ----------------------


_INVALID_SHEET_CHARS = re.compile(r"[\[\]\*\?/\\:]")


def _sheet_title(title: str, taken: set[str]) -> str:
    base = _INVALID_SHEET_CHARS.sub(" ", title).strip()[:31] or "Sheet"
    name = base
    n = 2
    while name in taken:
        suffix = f" ({n})"
        name = base[: 31 - len(suffix)] + suffix
        n += 1
    taken.add(name)
    return name


def _autosize(ws) -> None:
    for idx, column in enumerate(ws.iter_cols(values_only=True), start=1):
        longest = max((len(str(v)) for v in column if v is not None), default=0)
        ws.column_dimensions[get_column_letter(idx)].width = min(max(longest + 2, 10), 60)


def render_xlsx(document: ExportDocument, *, generated_on: date | None = None) -> bytes:
    wb = Workbook()
    taken: set[str] = set()
    bold = Font(bold=True)

    ws = wb.active
    ws.title = _sheet_title("Summary", taken)
    ws.append([document.title])
    ws["A1"].font = Font(bold=True, size=14)
    ws.append([f"Generated {(generated_on or app_today()).isoformat()}"])
    ws.append(["Field", "Value"])
    for cell in ws[3]:
        cell.font = bold
    for item in document.summary:
        ws.append([item.label, item.value])
    _autosize(ws)

    for table in document.tables:
        sheet = wb.create_sheet(_sheet_title(table.title, taken))
        sheet.append(table.headers)
        for cell in sheet[1]:
            cell.font = bold
        for row in table.rows:
            sheet.append(list(row))
        sheet.freeze_panes = "A2"
        _autosize(sheet)

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


RENDERERS: dict[str, Callable[..., bytes]] = {
    "pdf": render_pdf,
    "xlsx": render_xlsx,
}


def export_report(report: Report, fmt: str, *, today: date | None = None) -> tuple[str, bytes]:
    """Render a report; returns (filename, content)."""
    if fmt not in RENDERERS:
        raise ValueError(f"Unsupported export format: {fmt!r}")
    document = build_export(report)
    day = today or app_today()
    return export_filename(document.title, fmt, day), RENDERERS[fmt](document, generated_on=day)
