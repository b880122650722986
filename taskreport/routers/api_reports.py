from __future__ import annotations

import io
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ..auth import get_current_user_api, is_admin, require_admin_api
from ..db import get_db
from ..exports import EXPORT_FORMATS, MEDIA_TYPES, export_report
from ..filters import filter_departments, filter_projects
from ..models import UserInfo
from ..reports import generate_logged_time_report, generate_task_completion_report, generate_team_summary_report
from ..store import ReportFilters
from ..utils.time_utils import parse_query_datetime


logger = logging.getLogger("taskreport.api")

router = APIRouter()


REPORT_GENERATORS = {
    "time": generate_logged_time_report,
    "team": generate_team_summary_report,
    "task": generate_task_completion_report,
}

ACTION_ALIASES = {
    "metrics": "time",
    "report": "task",
}


def parse_id_list(raw: str | None) -> list[int]:
    """Parse '1,2,x,3' into [1, 2, 3]; unparseable entries are dropped."""
    if not raw:
        return []
    out: list[int] = []
    for part in str(raw).split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.append(int(part))
        except ValueError:
            continue
    return out


def build_filters(
    project_ids: str | None,
    department_ids: str | None,
    start_date: str | None,
    end_date: str | None,
) -> ReportFilters:
    return ReportFilters(
        project_ids=parse_id_list(project_ids) or None,
        department_ids=parse_id_list(department_ids) or None,
        start_date=parse_query_datetime(start_date),
        end_date=parse_query_datetime(end_date, end_of_day=True),
    )


def _resolve_report_action(action: str | None) -> str:
    name = (action or "time").strip().lower()
    return ACTION_ALIASES.get(name, name)


def _require_admin(db: Session, user: UserInfo) -> None:
    if not is_admin(db, user.id):
        raise HTTPException(status_code=403, detail="Forbidden: Admin access required")


def _run(action: str, fn, *args):
    try:
        return fn(*args)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Report action failed (action=%s)", action)
        raise HTTPException(status_code=500, detail=f"Server error: {e}")


def _generate(db: Session, action: str, filters: ReportFilters):
    return _run(action, REPORT_GENERATORS[action], db, filters)


@router.get("")
def api_reports(
    action: str | None = Query(default="time", description="time|metrics, team, task|report, departments, projects"),
    project_ids: str | None = Query(default=None, alias="projectIds"),
    department_ids: str | None = Query(default=None, alias="departmentIds"),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    db: Session = Depends(get_db),
    current_user: UserInfo = Depends(get_current_user_api),
):
    name = _resolve_report_action(action)
    filters = build_filters(project_ids, department_ids, start_date, end_date)

    if name == "departments":
        return _run(name, filter_departments, db, current_user.id, filters.project_ids)
    if name == "projects":
        return _run(name, filter_projects, db, current_user.id, filters.department_ids)

    if name not in REPORT_GENERATORS:
        raise HTTPException(status_code=400, detail="Invalid action")

    _require_admin(db, current_user)
    return _generate(db, name, filters)


@router.get("/export")
def api_export_report(
    action: str | None = Query(default="time", description="time|metrics, team, task|report"),
    format: str = Query(default="pdf", description="pdf or xlsx"),
    project_ids: str | None = Query(default=None, alias="projectIds"),
    department_ids: str | None = Query(default=None, alias="departmentIds"),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    db: Session = Depends(get_db),
    current_user: UserInfo = Depends(require_admin_api),
):
    name = _resolve_report_action(action)
    if name not in REPORT_GENERATORS:
        raise HTTPException(status_code=400, detail="Invalid action")
    fmt = (format or "").strip().lower()
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail="Invalid format (expected pdf or xlsx)")

    report = _generate(db, name, build_filters(project_ids, department_ids, start_date, end_date))

    filename, content = export_report(report, fmt)
    logger.info("Exported %s (%s bytes) for %s", filename, len(content), current_user.id)
    return StreamingResponse(
        io.BytesIO(content),
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
