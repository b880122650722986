from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy.orm import Session

from .schemas import DepartmentOut, ProjectOut
from .store import get_departments_for_projects, get_project_department_links, get_projects_for_user


def filter_projects(
    db: Session,
    user_id: str,
    department_ids: Optional[Sequence[int]] = None,
) -> list[ProjectOut]:
    """Projects visible to the user, narrowed to the selected departments."""
    projects = [ProjectOut.model_validate(p) for p in get_projects_for_user(db, user_id)]
    if not department_ids:
        return projects

    links = get_project_department_links(
        db,
        project_ids=[p.id for p in projects],
        department_ids=list(department_ids),
    )
    matching = {link["project_id"] for link in links}
    return [p for p in projects if p.id in matching]


def filter_departments(
    db: Session,
    user_id: str,
    project_ids: Optional[Sequence[int]] = None,
) -> list[DepartmentOut]:
    """Departments linked to the user's projects, narrowed to the selected projects."""
    projects = get_projects_for_user(db, user_id)
    if not projects:
        return []
    departments = [
        DepartmentOut.model_validate(d) for d in get_departments_for_projects(db, [p["id"] for p in projects])
    ]
    if not project_ids:
        return departments

    links = get_project_department_links(db, project_ids=list(project_ids))
    matching = {link["department_id"] for link in links}
    return [d for d in departments if d.id in matching]
