import pytest
import yaml
from apscheduler.schedulers.background import BackgroundScheduler

from taskreport.config import get_settings
from taskreport.main import configure_jobs


@pytest.fixture
def write_settings(tmp_path, monkeypatch):
    path = tmp_path / "settings.yml"

    def _write(**sections):
        path.write_text(yaml.safe_dump(sections), encoding="utf-8")
        monkeypatch.setenv("TASKREPORT_SETTINGS", str(path))
        get_settings.cache_clear()

    yield _write
    get_settings.cache_clear()


def _jobs(sched):
    return {job.id: job for job in sched.get_jobs()}


def test_jobs_use_reminder_timezone(write_settings):
    write_settings(
        reminders={"enabled": True, "timezone": "Asia/Singapore", "hour": 8, "minute": 0},
        digest={"enabled": True, "hour": 7, "minute": 30},
        logging={"retention_days": 14},
    )
    sched = BackgroundScheduler(timezone="UTC")
    configure_jobs(sched)

    jobs = _jobs(sched)
    assert set(jobs) == {"task_reminders", "daily_digest", "log_retention"}
    assert str(jobs["task_reminders"].trigger.timezone) == "Asia/Singapore"
    assert str(jobs["daily_digest"].trigger.timezone) == "Asia/Singapore"


def test_unknown_reminder_timezone_falls_back_to_utc(write_settings, caplog):
    write_settings(
        reminders={"enabled": True, "timezone": "Not/AZone", "hour": 8, "minute": 0},
        digest={"enabled": True, "hour": 7, "minute": 30},
    )
    sched = BackgroundScheduler(timezone="UTC")
    with caplog.at_level("INFO"):
        configure_jobs(sched)

    jobs = _jobs(sched)
    assert str(jobs["task_reminders"].trigger.timezone) == "UTC"
    assert str(jobs["daily_digest"].trigger.timezone) == "UTC"

    messages = [r.getMessage() for r in caplog.records]
    assert any("Not/AZone" in m and "falling back to UTC" in m for m in messages)
    assert any("Task reminders scheduled daily at 08:00 (UTC)" in m for m in messages)
    assert any("Daily digest scheduled at 07:30 (UTC)" in m for m in messages)


def test_disabled_jobs_are_not_scheduled(write_settings):
    write_settings(reminders={"enabled": False}, digest={"enabled": False}, logging={"retention_days": 0})
    sched = BackgroundScheduler(timezone="UTC")
    configure_jobs(sched)
    assert _jobs(sched) == {}
