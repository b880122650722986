import os
import tempfile
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker


# taskreport.db binds its engine at import time, so point it at a throwaway
# settings file before any test module imports the package.
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="taskreport-tests-"))
_SESSION_SETTINGS = _SESSION_DIR / "settings.yml"
_SESSION_SETTINGS.write_text(
    """
app:
  name: "Task Reports"
  timezone: "UTC"
  base_url: ""
security:
  jwt_secret: "test-jwt-secret"
  jwt_algorithm: "HS256"
  admin_role: "admin"
database:
  path: "{db}"
email:
  enabled: false
reminders:
  enabled: false
  timezone: "Asia/Singapore"
logging:
  level: "INFO"
  dir: "{logs}"
  retention_days: 14
""".format(db=str(_SESSION_DIR / "session.db"), logs=str(_SESSION_DIR / "logs")).lstrip()
)
os.environ["TASKREPORT_SETTINGS"] = str(_SESSION_SETTINGS)


@pytest.fixture
def settings_tmp(tmp_path, monkeypatch):
    """Isolate settings per test."""
    from taskreport.config import get_settings

    path = tmp_path / "settings.yml"
    path.write_text(
        """
app:
  name: "Task Reports"
  timezone: "UTC"
  base_url: "https://tasks.example.com"
security:
  jwt_secret: "test-jwt-secret"
  jwt_algorithm: "HS256"
  admin_role: "admin"
database:
  path: "{db}"
email:
  enabled: true
  smtp_host: "smtp.example.com"
  smtp_port: 587
  smtp_from: "reports@example.com"
  use_tls: true
reminders:
  enabled: false
  timezone: "Asia/Singapore"
logging:
  level: "INFO"
  dir: "{logs}"
  retention_days: 14
""".format(db=str(tmp_path / "test.db"), logs=str(tmp_path / "logs")).lstrip()
    )
    monkeypatch.setenv("TASKREPORT_SETTINGS", str(path))
    get_settings.cache_clear()
    yield path
    get_settings.cache_clear()


def make_engine(db_path: str):
    engine = create_engine(
        f"sqlite+pysqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def make_session(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    return Session()


@pytest.fixture
def db(tmp_path):
    from taskreport.db import Base

    engine = make_engine(str(tmp_path / "reports.db"))
    Base.metadata.create_all(bind=engine)
    s = make_session(engine)
    try:
        yield s
    finally:
        s.close()
        engine.dispose()


class Seeder:
    """Small factory for rows the store queries read."""

    def __init__(self, db):
        self.db = db

    def department(self, id: int, name: str):
        from taskreport.models import Department

        d = Department(id=id, name=name)
        self.db.add(d)
        self.db.commit()
        return d

    def project(self, id: int, name: str, department_ids=()):
        from taskreport.models import Project, ProjectDepartment

        p = Project(id=id, name=name)
        self.db.add(p)
        self.db.flush()
        for did in department_ids:
            self.db.add(ProjectDepartment(project_id=id, department_id=did))
        self.db.commit()
        return p

    def user(self, id: str, first_name=None, last_name=None, *, email=None, department_id=None, roles=()):
        from taskreport.models import UserInfo, UserRole

        u = UserInfo(id=id, first_name=first_name, last_name=last_name, email=email, department_id=department_id)
        self.db.add(u)
        self.db.flush()
        for role in roles:
            self.db.add(UserRole(user_id=id, role=role))
        self.db.commit()
        return u

    def task(
        self,
        title: str,
        *,
        project_id: int,
        status=None,
        logged_time: int = 0,
        deadline: datetime | None = None,
        creator_id: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        parent_task_id: int | None = None,
        is_archived: bool = False,
        assignees=(),
        description: str | None = None,
    ):
        from taskreport.models import Task, TaskAssignment, TaskStatus

        t = Task(
            title=title,
            description=description,
            status=status or TaskStatus.todo,
            project_id=project_id,
            logged_time=logged_time,
            deadline=deadline,
            creator_id=creator_id,
            created_at=created_at or datetime(2024, 1, 10, 9, 0),
            updated_at=updated_at,
            parent_task_id=parent_task_id,
            is_archived=is_archived,
        )
        self.db.add(t)
        self.db.flush()
        for uid in assignees:
            self.db.add(TaskAssignment(task_id=t.id, assignee_id=uid))
        self.db.commit()
        return t


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture(autouse=True)
def _restore_logger_levels():
    """Undo process-global log level changes (e.g. CLI --log-level) between tests."""
    import logging

    from taskreport.logging_setup import APP_LOGGERS

    names = [None, *APP_LOGGERS]
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)
