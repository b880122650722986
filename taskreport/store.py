"""Task store accessor.

Read-only queries the reporting core depends on. Results are plain dict rows,
the untyped shape a backend client hands back; callers coerce them into the
records in :mod:`taskreport.schemas` before aggregating.

Access control is applied upstream of this module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.orm import Query, Session

from .models import (
    UNASSIGNED,
    Department,
    Project,
    ProjectDepartment,
    Task,
    TaskAssignment,
    TaskStatus,
    UserInfo,
)
from .schemas import UNKNOWN_USER, UserInfoRecord
from .utils.time_utils import iso_week_key, iso_week_start


logger = logging.getLogger("taskreport.store")

Row = dict[str, Any]


@dataclass(frozen=True)
class ReportFilters:
    project_ids: Optional[Sequence[int]] = None
    department_ids: Optional[Sequence[int]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


_STATUS_KEYS = {
    TaskStatus.todo: "todo",
    TaskStatus.in_progress: "inProgress",
    TaskStatus.completed: "completed",
    TaskStatus.blocked: "blocked",
}


def _scoped_project_ids(db: Session, filters: ReportFilters) -> list[int] | None:
    """Resolve the project scope of a filter.

    None means "no project restriction"; an empty list means nothing matches.
    Departments map to their projects and narrow any explicit project list.
    """
    project_ids = list(filters.project_ids or [])
    department_ids = list(filters.department_ids or [])

    if not department_ids:
        return project_ids or None

    rows = (
        db.query(ProjectDepartment.project_id)
        .filter(ProjectDepartment.department_id.in_(department_ids))
        .distinct()
        .all()
    )
    mapped = sorted({int(pid) for (pid,) in rows})
    if project_ids:
        allowed = set(mapped)
        return [pid for pid in project_ids if pid in allowed]
    return mapped


def _task_query(db: Session, filters: ReportFilters) -> Query:
    q = db.query(Task).filter(Task.is_archived.is_(False))

    project_ids = _scoped_project_ids(db, filters)
    if project_ids is not None:
        q = q.filter(Task.project_id.in_(project_ids))
    if filters.start_date is not None:
        q = q.filter(Task.created_at >= filters.start_date)
    if filters.end_date is not None:
        q = q.filter(Task.created_at <= filters.end_date)

    return q.order_by(Task.id.asc())


def _task_row(t: Task) -> Row:
    status = t.status.value if isinstance(t.status, TaskStatus) else t.status
    return {
        "id": t.id,
        "title": t.title,
        "status": status,
        "project_id": t.project_id,
        "parent_task_id": t.parent_task_id,
        "logged_time": t.logged_time,
        "deadline": t.deadline,
        "creator_id": t.creator_id,
        "created_at": t.created_at,
        "updated_at": t.updated_at,
        "is_archived": t.is_archived,
    }


def get_tasks(db: Session, filters: ReportFilters) -> list[Row]:
    rows = [_task_row(t) for t in _task_query(db, filters).all()]
    logger.debug("get_tasks: %s rows for %s", len(rows), filters)
    return rows


def get_users_by_ids(db: Session, user_ids: Iterable[str]) -> list[Row]:
    ids = sorted({str(u) for u in user_ids if u})
    if not ids:
        return []
    users = db.query(UserInfo).filter(UserInfo.id.in_(ids)).all()
    return [{"id": u.id, "first_name": u.first_name, "last_name": u.last_name} for u in users]


def get_weekly_task_stats_by_user(db: Session, filters: ReportFilters) -> list[Row]:
    """Bucket filtered tasks by ISO week of creation and by assignee.

    A task with several assignees lands in each assignee's bucket; a task
    with none lands in the "Unassigned" bucket.
    """
    tasks = _task_query(db, filters).all()
    if not tasks:
        return []

    assignees: dict[int, list[str]] = {}
    links = (
        db.query(TaskAssignment.task_id, TaskAssignment.assignee_id)
        .filter(TaskAssignment.task_id.in_([t.id for t in tasks]))
        .all()
    )
    for task_id, assignee_id in links:
        assignees.setdefault(int(task_id), []).append(str(assignee_id))

    buckets: dict[tuple[str, str], Row] = {}
    for t in tasks:
        week = iso_week_key(t.created_at)
        status_key = _STATUS_KEYS[TaskStatus(t.status)]
        for user_id in sorted(assignees.get(t.id, [])) or [UNASSIGNED]:
            b = buckets.get((week, user_id))
            if b is None:
                b = {
                    "week": week,
                    "weekStart": iso_week_start(t.created_at),
                    "userId": user_id,
                    "userName": UNASSIGNED,
                    "todo": 0,
                    "inProgress": 0,
                    "completed": 0,
                    "blocked": 0,
                    "total": 0,
                }
                buckets[(week, user_id)] = b
            b[status_key] += 1
            b["total"] += 1

    names = {
        r["id"]: UserInfoRecord.model_validate(r).display_name
        for r in get_users_by_ids(db, {uid for (_, uid) in buckets if uid != UNASSIGNED})
    }
    for (_, user_id), b in buckets.items():
        if user_id != UNASSIGNED:
            b["userName"] = names.get(user_id, UNKNOWN_USER)

    return sorted(buckets.values(), key=lambda r: (r["week"], r["userName"], r["userId"]))


# ---------------------- Filter lookups ----------------------


def get_projects_for_user(db: Session, user_id: str) -> list[Row]:
    """Projects where the user or a department colleague holds an assignment."""
    user = db.get(UserInfo, str(user_id))
    if user is None:
        return []

    if user.department_id is None:
        colleague_ids = [user.id]
    else:
        colleague_ids = [
            uid for (uid,) in db.query(UserInfo.id).filter(UserInfo.department_id == user.department_id).all()
        ]

    rows = (
        db.query(Project.id, Project.name)
        .join(Task, Task.project_id == Project.id)
        .join(TaskAssignment, TaskAssignment.task_id == Task.id)
        .filter(TaskAssignment.assignee_id.in_(colleague_ids))
        .filter(Task.is_archived.is_(False))
        .distinct()
        .order_by(Project.name.asc(), Project.id.asc())
        .all()
    )
    return [{"id": int(pid), "name": name} for pid, name in rows]


def get_project_department_links(
    db: Session,
    *,
    project_ids: Optional[Sequence[int]] = None,
    department_ids: Optional[Sequence[int]] = None,
) -> list[Row]:
    q = db.query(ProjectDepartment.project_id, ProjectDepartment.department_id)
    if project_ids is not None:
        q = q.filter(ProjectDepartment.project_id.in_(list(project_ids)))
    if department_ids is not None:
        q = q.filter(ProjectDepartment.department_id.in_(list(department_ids)))
    return [{"project_id": int(p), "department_id": int(d)} for p, d in q.all()]


def get_departments_for_projects(db: Session, project_ids: Sequence[int]) -> list[Row]:
    if not project_ids:
        return []
    dept_ids = {link["department_id"] for link in get_project_department_links(db, project_ids=project_ids)}
    if not dept_ids:
        return []
    rows = (
        db.query(Department.id, Department.name)
        .filter(Department.id.in_(sorted(dept_ids)))
        .order_by(Department.name.asc(), Department.id.asc())
        .all()
    )
    return [{"id": int(did), "name": name} for did, name in rows]


# ---------------------- Reminder lookups ----------------------


def get_open_tasks_with_deadline(db: Session) -> list[Row]:
    tasks = (
        db.query(Task)
        .filter(Task.is_archived.is_(False))
        .filter(Task.status != TaskStatus.completed)
        .filter(Task.deadline.is_not(None))
        .order_by(Task.deadline.asc(), Task.id.asc())
        .all()
    )
    rows = []
    for t in tasks:
        row = _task_row(t)
        row["description"] = t.description
        rows.append(row)
    return rows


def get_assignees_with_email(db: Session, task_ids: Sequence[int]) -> list[Row]:
    if not task_ids:
        return []
    rows = (
        db.query(TaskAssignment.task_id, TaskAssignment.assignee_id, UserInfo.email)
        .join(UserInfo, UserInfo.id == TaskAssignment.assignee_id)
        .filter(TaskAssignment.task_id.in_(list(task_ids)))
        .order_by(TaskAssignment.task_id.asc(), TaskAssignment.assignee_id.asc())
        .all()
    )
    return [{"task_id": int(tid), "assignee_id": str(aid), "email": email} for tid, aid, email in rows]


def get_assigned_tasks_with_deadline(db: Session) -> list[Row]:
    """One row per (assignee, task) for non-archived tasks that have a deadline.

    Completed tasks are included. Rows carry the assignee's e-mail and name
    and are ordered by assignee, then deadline.
    """
    rows = (
        db.query(Task, UserInfo)
        .join(TaskAssignment, TaskAssignment.task_id == Task.id)
        .join(UserInfo, UserInfo.id == TaskAssignment.assignee_id)
        .filter(Task.is_archived.is_(False))
        .filter(Task.deadline.is_not(None))
        .order_by(UserInfo.id.asc(), Task.deadline.asc(), Task.id.asc())
        .all()
    )
    out = []
    for t, u in rows:
        row = _task_row(t)
        row["assignee_id"] = u.id
        row["email"] = u.email
        row["first_name"] = u.first_name
        row["last_name"] = u.last_name
        out.append(row)
    return out
