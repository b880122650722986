"""Daily deadline reminders and the per-user daily digest.

Deadlines are compared by calendar day in the reminder timezone, so a task
due at 01:00 local time tomorrow is "due tomorrow" all day today regardless
of the UTC offset.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from .config import get_settings
from .emailer import build_digest_email, build_reminder_email, send_email
from .models import TaskStatus
from .schemas import (
    DIGEST_BUCKETS,
    DigestItem,
    DigestRunResult,
    DigestSent,
    ReminderRunResult,
    ReminderSent,
    TaskRecord,
)
from .store import get_assigned_tasks_with_deadline, get_assignees_with_email, get_open_tasks_with_deadline
from .utils.time_utils import local_date, now_utc, to_utc_naive


logger = logging.getLogger("taskreport.reminders")

# days(today - deadline) -> reminder type
REMINDER_TYPES = {
    -1: "due_tomorrow",
    0: "due_today",
    1: "overdue",
}


def reminder_tz() -> ZoneInfo:
    tz_name = get_settings().reminders.timezone
    try:
        return ZoneInfo(tz_name)
    except Exception:
        logger.warning("Unknown reminder timezone %r; falling back to UTC", tz_name)
        return ZoneInfo("UTC")


def days_until(deadline: datetime, now: datetime, tz: ZoneInfo) -> int:
    """Calendar days from now to a naive-UTC deadline, negative once past."""
    return (local_date(deadline, tz) - local_date(now, tz)).days


def reminder_type_for(deadline: datetime, now: datetime, tz: ZoneInfo) -> Optional[str]:
    """Classify a naive-UTC deadline against now; None when no reminder is due."""
    return REMINDER_TYPES.get(-days_until(deadline, now, tz))


def send_task_reminders(
    db: Session,
    *,
    send: Callable[..., None] = send_email,
    now: datetime | None = None,
) -> ReminderRunResult:
    now = to_utc_naive(now) if now is not None else now_utc()
    tz = reminder_tz()

    due: list[tuple[TaskRecord, str, Optional[str]]] = []
    for row in get_open_tasks_with_deadline(db):
        task = TaskRecord.model_validate(row)
        if task.deadline is None:
            continue
        kind = reminder_type_for(task.deadline, now, tz)
        if kind is None:
            continue
        due.append((task, kind, row.get("description")))

    if not due:
        logger.info("Task reminders: nothing due")
        return ReminderRunResult()

    assignees: dict[int, list[dict]] = {}
    for a in get_assignees_with_email(db, [t.id for t, _, _ in due]):
        assignees.setdefault(a["task_id"], []).append(a)

    result = ReminderRunResult()
    for task, kind, description in due:
        deadline_display = local_date(task.deadline, tz).isoformat()
        subject, body_text, body_html = build_reminder_email(
            task_id=task.id,
            title=task.title,
            status=task.status.value,
            description=description,
            deadline_display=deadline_display,
            reminder_type=kind,
        )
        for a in assignees.get(task.id, []):
            email = str(a.get("email") or "").strip()
            if not email:
                logger.warning("No email for assignee %s on task %s", a["assignee_id"], task.id)
                continue
            try:
                send(to_address=email, subject=subject, body_text=body_text, body_html=body_html)
            except Exception as e:
                logger.error("Failed to send %s reminder to %s for task %s: %s", kind, email, task.id, e)
                continue
            result.sent += 1
            result.emails_sent.append(
                ReminderSent(
                    task_id=task.id,
                    task_title=task.title,
                    assignee_id=a["assignee_id"],
                    assignee_email=email,
                    reminder_type=kind,
                    sent_at=now_utc(),
                )
            )
            logger.info("Reminder sent to %s for task %s (%s)", email, task.id, kind)

    logger.info("Task reminders: %s sent", result.sent)
    return result


def digest_bucket_for(
    status: TaskStatus,
    deadline: Optional[datetime],
    now: datetime,
    tz: ZoneInfo,
    upcoming_days: int = 14,
) -> Optional[str]:
    """Place a task in a digest bucket; None when it has no deadline."""
    if status == TaskStatus.completed:
        return "completed"
    if deadline is None:
        return None
    days = days_until(deadline, now, tz)
    if days < 0:
        return "overdue"
    if days == 0:
        return "due_today"
    if days <= upcoming_days:
        return "upcoming"
    return "in_progress"


def _greeting_name(row: dict) -> Optional[str]:
    parts = [str(p).strip() for p in (row.get("first_name"), row.get("last_name")) if p and str(p).strip()]
    return " ".join(parts) or None


def send_daily_digest(
    db: Session,
    *,
    send: Callable[..., None] = send_email,
    now: datetime | None = None,
) -> DigestRunResult:
    """Send each assignee one summary of their tasks that have deadlines.

    Users without an e-mail address are skipped, as are users whose tasks all
    fall beyond the upcoming window. A failed send is logged and the next user
    is tried.
    """
    now = to_utc_naive(now) if now is not None else now_utc()
    tz = reminder_tz()
    upcoming_days = int(get_settings().digest.upcoming_days)

    by_user: dict[str, list[dict]] = {}
    for row in get_assigned_tasks_with_deadline(db):
        by_user.setdefault(row["assignee_id"], []).append(row)

    result = DigestRunResult()
    if not by_user:
        logger.info("Daily digest: no assigned tasks with deadlines")
        return result

    digest_date = local_date(now, tz).isoformat()
    for user_id, rows in by_user.items():
        email = str(rows[0].get("email") or "").strip()
        if not email:
            logger.warning("User %s has no email, skipping digest", user_id)
            continue

        buckets: dict[str, list[DigestItem]] = {name: [] for name in DIGEST_BUCKETS}
        for row in rows:
            task = TaskRecord.model_validate(row)
            bucket = digest_bucket_for(task.status, task.deadline, now, tz, upcoming_days)
            if bucket is None:
                continue
            buckets[bucket].append(
                DigestItem(
                    task_id=task.id,
                    title=task.title,
                    status=task.status.value,
                    deadline_display=local_date(task.deadline, tz).isoformat(),
                    days_until_due=days_until(task.deadline, now, tz),
                )
            )

        if not any(buckets[name] for name in ("overdue", "due_today", "upcoming", "completed")):
            logger.info("User %s has nothing to report, skipping digest", user_id)
            continue

        subject, body_text, body_html = build_digest_email(
            user_name=_greeting_name(rows[0]),
            digest_date=digest_date,
            buckets=buckets,
            upcoming_days=upcoming_days,
        )
        try:
            send(to_address=email, subject=subject, body_text=body_text, body_html=body_html)
        except Exception as e:
            logger.error("Failed to send daily digest to %s (user %s): %s", email, user_id, e)
            continue

        result.sent += 1
        result.digests_sent.append(DigestSent(user_id=user_id, user_email=email, sent_at=now_utc()))
        logger.info("Daily digest sent to %s", email)

    logger.info("Daily digest: %s sent", result.sent)
    return result
