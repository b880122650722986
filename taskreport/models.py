from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
from .utils.time_utils import now_utc


class TaskStatus(str, enum.Enum):
    todo = "To Do"
    in_progress = "In Progress"
    completed = "Completed"
    blocked = "Blocked"


# Sentinel bucket for tasks without a creator or without any assignee.
UNASSIGNED = "Unassigned"


def _enum_values(e: type[enum.Enum]) -> list[str]:
    # Persist the display values ("In Progress"), not the member names.
    return [m.value for m in e]


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class ProjectDepartment(Base):
    __tablename__ = "project_departments"

    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True
    )
    department_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("departments.id", ondelete="CASCADE"), primary_key=True
    )


class UserInfo(Base):
    """Profile row of a user managed by the upstream auth provider."""

    __tablename__ = "user_info"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    department_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True
    )

    roles: Mapped[list["UserRole"]] = relationship("UserRole", cascade="all, delete-orphan", passive_deletes=True)


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("user_info.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, values_callable=_enum_values, native_enum=False, length=32),
        default=TaskStatus.todo,
        nullable=False,
        index=True,
    )

    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    # Subtasks point at their parent; the tree is one level deep in practice.
    parent_task_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Seconds.
    logged_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deadline: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    creator_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("user_info.id", ondelete="SET NULL"), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False, index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, onupdate=now_utc)

    # Tasks are archived instead of deleted; archived rows never reach a report.
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    project: Mapped[Project] = relationship("Project")
    assignments: Mapped[list["TaskAssignment"]] = relationship(
        "TaskAssignment", back_populates="task", cascade="all, delete-orphan", passive_deletes=True
    )


class TaskAssignment(Base):
    __tablename__ = "task_assignments"

    task_id: Mapped[int] = mapped_column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    assignee_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_info.id", ondelete="CASCADE"), primary_key=True
    )

    task: Mapped[Task] = relationship("Task", back_populates="assignments")
    assignee: Mapped[UserInfo] = relationship("UserInfo")
