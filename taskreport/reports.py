"""Report aggregators.

Each generator reads already-scoped rows through the store accessor, coerces
them into closed records and folds them in a single pass. Store errors
propagate unchanged; an empty scope yields a zero-valued report.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from .models import UNASSIGNED, TaskStatus
from .schemas import (
    UNKNOWN_USER,
    LoggedTimeReport,
    TaskCompletionReport,
    TaskRecord,
    TeamSummaryReport,
    UserCompletionStats,
    UserInfoRecord,
    UserTotals,
    WeeklyStat,
    WeekTotals,
)
from .store import ReportFilters, get_tasks, get_users_by_ids, get_weekly_task_stats_by_user
from .utils.time_utils import hours_between, now_utc, to_utc_naive


logger = logging.getLogger("taskreport.reports")

SECONDS_PER_HOUR = 3600


def _load_tasks(db: Session, filters: ReportFilters) -> list[TaskRecord]:
    return [TaskRecord.model_validate(row) for row in get_tasks(db, filters)]


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _hours(seconds: float) -> float:
    return seconds / SECONDS_PER_HOUR


def _completed_on_time(t: TaskRecord) -> bool:
    return t.updated_at is not None and t.deadline is not None and t.updated_at <= t.deadline


def _completed_late(t: TaskRecord) -> bool:
    return t.updated_at is not None and t.deadline is not None and t.updated_at > t.deadline


def rollup_logged_time(tasks: list[TaskRecord]) -> dict[int, int]:
    """Own seconds per task, plus each direct child's seconds on its parent.

    The rollup is one level deep. A parent outside the fetched set receives
    nothing and the child still reports its own time.
    """
    time_by_task: dict[int, int] = {t.id: 0 for t in tasks}
    for t in tasks:
        time_by_task[t.id] += t.logged_time
        parent = t.parent_task_id
        if parent is not None and parent != t.id and parent in time_by_task:
            time_by_task[parent] += t.logged_time
    return time_by_task


def generate_logged_time_report(
    db: Session,
    filters: ReportFilters,
    *,
    now: datetime | None = None,
) -> LoggedTimeReport:
    tasks = _load_tasks(db, filters)
    now = to_utc_naive(now) if now is not None else now_utc()

    completed = [t for t in tasks if t.status == TaskStatus.completed]
    incomplete = [t for t in tasks if t.status != TaskStatus.completed]
    overdue = [t for t in incomplete if t.deadline is not None and now > t.deadline]
    blocked = [t for t in tasks if t.status == TaskStatus.blocked]

    # Tasks lacking a deadline or update stamp still count in the denominator.
    on_time = sum(1 for t in completed if _completed_on_time(t))

    delay_hours = sum(max(0.0, hours_between(t.deadline, t.updated_at)) for t in completed if _completed_late(t))

    completed_seconds = sum(t.logged_time for t in completed)

    report = LoggedTimeReport(
        total_tasks=len(tasks),
        total_time=_hours(sum(t.logged_time for t in tasks)),
        avg_time=_hours(_ratio(completed_seconds, len(completed))),
        completed_tasks=len(completed),
        overdue_tasks=len(overdue),
        blocked_tasks=len(blocked),
        incomplete_time=_hours(sum(t.logged_time for t in incomplete)),
        on_time_completion_rate=_ratio(on_time, len(completed)),
        total_delay_hours=delay_hours,
        overdue_time=_hours(sum(t.logged_time for t in overdue)),
        time_by_task=rollup_logged_time(tasks),
    )
    logger.debug("Logged time report: %s tasks, %s completed", report.total_tasks, report.completed_tasks)
    return report


def generate_team_summary_report(db: Session, filters: ReportFilters) -> TeamSummaryReport:
    rows = [WeeklyStat.model_validate(r) for r in get_weekly_task_stats_by_user(db, filters)]

    user_totals: dict[str, UserTotals] = {}
    week_totals: dict[str, WeekTotals] = {}
    for row in rows:
        user = user_totals.setdefault(row.user_id, UserTotals(user_name=row.user_name))
        user.add(row)
        week = week_totals.setdefault(row.week, WeekTotals(week_start=row.week_start))
        week.add(row)

    # Counted per assignee-week bucket: a task with two assignees counts twice.
    report = TeamSummaryReport(
        total_tasks=sum(r.total for r in rows),
        total_users=len(user_totals),
        weekly_breakdown=rows,
        user_totals=user_totals,
        week_totals=week_totals,
    )
    logger.debug("Team summary report: %s rows, %s users", len(rows), report.total_users)
    return report


def _display_names(db: Session, user_ids: set[str]) -> dict[str, str]:
    if not user_ids:
        return {}
    try:
        rows = get_users_by_ids(db, sorted(user_ids))
    except Exception:
        logger.warning("Display name lookup failed for %s users", len(user_ids), exc_info=True)
        return {}
    names = {}
    for row in rows:
        rec = UserInfoRecord.model_validate(row)
        names[rec.id] = rec.display_name
    missing = user_ids - names.keys()
    if missing:
        logger.warning("No display name for %s user(s); using placeholder", len(missing))
    return names


def _user_stats(user_id: str, user_name: str, tasks: list[TaskRecord]) -> UserCompletionStats:
    completed = [t for t in tasks if t.status == TaskStatus.completed]
    durations = [
        hours_between(t.created_at, t.updated_at)
        for t in completed
        if t.created_at is not None and t.updated_at is not None
    ]
    on_time = sum(1 for t in completed if _completed_on_time(t))
    logged_hours = _hours(sum(t.logged_time for t in tasks))

    return UserCompletionStats(
        user_id=user_id,
        user_name=user_name,
        total_tasks=len(tasks),
        completed_tasks=len(completed),
        in_progress_tasks=sum(1 for t in tasks if t.status == TaskStatus.in_progress),
        todo_tasks=sum(1 for t in tasks if t.status == TaskStatus.todo),
        blocked_tasks=sum(1 for t in tasks if t.status == TaskStatus.blocked),
        completion_rate=_ratio(len(completed), len(tasks)),
        avg_completion_time=_ratio(sum(durations), len(durations)),
        on_time_completions=on_time,
        late_completions=sum(1 for t in completed if _completed_late(t)),
        on_time_rate=_ratio(on_time, len(completed)),
        total_logged_time=logged_hours,
        avg_logged_time_per_task=_ratio(logged_hours, len(tasks)),
    )


def generate_task_completion_report(db: Session, filters: ReportFilters) -> TaskCompletionReport:
    tasks = _load_tasks(db, filters)
    names = _display_names(db, {t.creator_id for t in tasks if t.creator_id})

    by_creator: dict[str, list[TaskRecord]] = {}
    completed_by_project: dict[int, int] = {}
    for t in tasks:
        by_creator.setdefault(t.creator_id or UNASSIGNED, []).append(t)
        if t.status == TaskStatus.completed and t.project_id is not None:
            completed_by_project[t.project_id] = completed_by_project.get(t.project_id, 0) + 1

    stats = [
        _user_stats(uid, UNASSIGNED if uid == UNASSIGNED else names.get(uid, UNKNOWN_USER), group)
        for uid, group in by_creator.items()
    ]
    stats.sort(key=lambda s: s.total_tasks, reverse=True)

    total_completed = sum(1 for t in tasks if t.status == TaskStatus.completed)
    report = TaskCompletionReport(
        total_tasks=len(tasks),
        total_completed=total_completed,
        total_in_progress=sum(1 for t in tasks if t.status == TaskStatus.in_progress),
        total_todo=sum(1 for t in tasks if t.status == TaskStatus.todo),
        total_blocked=sum(1 for t in tasks if t.status == TaskStatus.blocked),
        overall_completion_rate=_ratio(total_completed, len(tasks)),
        user_stats=stats,
        completed_by_project=completed_by_project,
    )
    logger.debug("Completion report: %s tasks across %s creators", report.total_tasks, len(stats))
    return report
