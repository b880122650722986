from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import TaskStatus
from .utils.time_utils import to_utc_naive


UNKNOWN_USER = "Unknown User"


class CamelModel(BaseModel):
    """Base for payloads exchanged as camelCase JSON (weeklyBreakdown, timeByTask, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- Store rows coerced at the boundary ---------------------------------------------


class TaskRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    title: str = ""
    status: TaskStatus
    project_id: Optional[int] = None
    parent_task_id: Optional[int] = None
    logged_time: int = Field(default=0, ge=0, description="Seconds")
    deadline: Optional[datetime] = None
    creator_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("logged_time", mode="before")
    @classmethod
    def _none_is_zero(cls, v):
        return 0 if v is None else v

    @field_validator("deadline", "created_at", "updated_at")
    @classmethod
    def _utc_naive(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_naive(v) if v is not None else None


class UserInfoRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        parts = [p.strip() for p in (self.first_name, self.last_name) if p and p.strip()]
        return " ".join(parts) or UNKNOWN_USER


class WeeklyStat(CamelModel):
    week: str
    week_start: str
    user_id: str
    user_name: str
    todo: int = 0
    in_progress: int = 0
    completed: int = 0
    blocked: int = 0
    total: int = 0


# ---- Report shapes ------------------------------------------------------------------


class LoggedTimeReport(CamelModel):
    kind: Literal["loggedTime"] = "loggedTime"
    total_tasks: int = 0
    total_time: float = 0.0
    avg_time: float = 0.0
    completed_tasks: int = 0
    overdue_tasks: int = 0
    blocked_tasks: int = 0
    incomplete_time: float = 0.0
    on_time_completion_rate: float = 0.0
    total_delay_hours: float = 0.0
    overdue_time: float = 0.0
    # Seconds per task id, parents include their direct children.
    time_by_task: Dict[int, int] = Field(default_factory=dict)


class StatusCounts(CamelModel):
    todo: int = 0
    in_progress: int = 0
    completed: int = 0
    blocked: int = 0
    total: int = 0

    def add(self, row: WeeklyStat) -> None:
        self.todo += row.todo
        self.in_progress += row.in_progress
        self.completed += row.completed
        self.blocked += row.blocked
        self.total += row.total


class UserTotals(StatusCounts):
    user_name: str


class WeekTotals(StatusCounts):
    week_start: str


class TeamSummaryReport(CamelModel):
    kind: Literal["teamSummary"] = "teamSummary"
    total_tasks: int = 0
    total_users: int = 0
    weekly_breakdown: List[WeeklyStat] = Field(default_factory=list)
    user_totals: Dict[str, UserTotals] = Field(default_factory=dict)
    week_totals: Dict[str, WeekTotals] = Field(default_factory=dict)


class UserCompletionStats(CamelModel):
    user_id: str
    user_name: str
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    todo_tasks: int = 0
    blocked_tasks: int = 0
    completion_rate: float = 0.0
    avg_completion_time: float = 0.0
    on_time_completions: int = 0
    late_completions: int = 0
    on_time_rate: float = 0.0
    total_logged_time: float = 0.0
    avg_logged_time_per_task: float = 0.0


class TaskCompletionReport(CamelModel):
    kind: Literal["taskCompletions"] = "taskCompletions"
    total_tasks: int = 0
    total_completed: int = 0
    total_in_progress: int = 0
    total_todo: int = 0
    total_blocked: int = 0
    overall_completion_rate: float = 0.0
    user_stats: List[UserCompletionStats] = Field(default_factory=list)
    completed_by_project: Dict[int, int] = Field(default_factory=dict)


# ---- Filter lookups -----------------------------------------------------------------


class ProjectOut(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class DepartmentOut(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


# ---- Reminders ----------------------------------------------------------------------


class ReminderSent(CamelModel):
    task_id: int
    task_title: str
    assignee_id: str
    assignee_email: str
    reminder_type: Literal["due_today", "due_tomorrow", "overdue"]
    sent_at: datetime


class ReminderRunResult(CamelModel):
    success: bool = True
    sent: int = 0
    emails_sent: List[ReminderSent] = Field(default_factory=list)


# ---- Daily digest ---------------------------------------------------------------------


DIGEST_BUCKETS = ("overdue", "due_today", "upcoming", "completed", "in_progress")


class DigestItem(CamelModel):
    task_id: int
    title: str
    status: str
    deadline_display: str
    # Calendar days from today to the deadline; negative when overdue.
    days_until_due: int


class DigestSent(CamelModel):
    user_id: str
    user_email: str
    sent_at: datetime


class DigestRunResult(CamelModel):
    success: bool = True
    sent: int = 0
    digests_sent: List[DigestSent] = Field(default_factory=list)
