from datetime import datetime
from zoneinfo import ZoneInfo

from taskreport.models import TaskStatus
from taskreport.reminders import reminder_type_for, send_task_reminders


SGT = ZoneInfo("Asia/Singapore")
# 2024-03-01 10:00 in Singapore.
NOW = datetime(2024, 3, 1, 2, 0)


def test_reminder_type_uses_local_calendar_days():
    assert reminder_type_for(datetime(2024, 3, 2, 1, 0), NOW, SGT) == "due_tomorrow"
    # 2024-02-29 17:00Z is already March 1st in Singapore.
    assert reminder_type_for(datetime(2024, 2, 29, 17, 0), NOW, SGT) == "due_today"
    assert reminder_type_for(datetime(2024, 2, 29, 3, 0), NOW, SGT) == "overdue"
    assert reminder_type_for(datetime(2024, 2, 27, 3, 0), NOW, SGT) is None
    assert reminder_type_for(datetime(2024, 3, 3, 3, 0), NOW, SGT) is None


def _reminder_fixture(seed):
    seed.project(1, "Platform")
    seed.user("u1", "Alice", "Tan", email="alice@example.com")
    seed.user("u2", "Bob", "Lee", email="bob@example.com")
    seed.user("u3", "No", "Mail")
    seed.user("u4", "Bro", "Ken", email="broken@example.com")

    seed.task("far past", project_id=1, deadline=datetime(2024, 2, 27, 3, 0), assignees=["u1"])
    seed.task("overdue", project_id=1, deadline=datetime(2024, 2, 29, 3, 0), assignees=["u2"])
    seed.task(
        "today",
        project_id=1,
        deadline=datetime(2024, 2, 29, 17, 0),
        assignees=["u1", "u4"],
        status=TaskStatus.in_progress,
        description="Finish the quarterly numbers",
    )
    seed.task("tomorrow", project_id=1, deadline=datetime(2024, 3, 2, 1, 0), assignees=["u1", "u3"])
    seed.task(
        "done today",
        project_id=1,
        deadline=datetime(2024, 2, 29, 17, 0),
        assignees=["u1"],
        status=TaskStatus.completed,
    )
    seed.task("archived", project_id=1, deadline=datetime(2024, 3, 2, 1, 0), assignees=["u1"], is_archived=True)


def test_send_task_reminders(db, seed, caplog):
    _reminder_fixture(seed)
    outbox = []

    def _send(*, to_address, subject, body_text, body_html=None):
        if to_address == "broken@example.com":
            raise RuntimeError("mailbox unavailable")
        outbox.append({"to": to_address, "subject": subject, "text": body_text, "html": body_html})

    with caplog.at_level("WARNING", logger="taskreport.reminders"):
        result = send_task_reminders(db, send=_send, now=NOW)

    assert result.success is True
    assert result.sent == 3
    assert [(e.task_title, e.assignee_id, e.reminder_type) for e in result.emails_sent] == [
        ("overdue", "u2", "overdue"),
        ("today", "u1", "due_today"),
        ("tomorrow", "u1", "due_tomorrow"),
    ]
    assert [m["to"] for m in outbox] == ["bob@example.com", "alice@example.com", "alice@example.com"]

    today = outbox[1]
    assert today["subject"] == 'Reminder: Task "today" is due today'
    assert "2024-03-01" in today["text"]
    assert "In Progress" in today["text"]
    assert "Finish the quarterly numbers" in today["html"]
    assert outbox[0]["subject"] == 'Overdue: Task "overdue" is past due'

    messages = [r.getMessage() for r in caplog.records]
    assert any("broken@example.com" in m for m in messages)
    assert any("No email for assignee u3" in m for m in messages)


def test_send_task_reminders_nothing_due(db, seed):
    seed.project(1, "Platform")
    seed.user("u1", "Alice", "Tan", email="alice@example.com")
    seed.task("someday", project_id=1, deadline=datetime(2024, 6, 1), assignees=["u1"])

    def _send(**kwargs):
        raise AssertionError("nothing should be sent")

    result = send_task_reminders(db, send=_send, now=NOW)
    assert result.sent == 0
    assert result.emails_sent == []
    assert result.model_dump(by_alias=True) == {"success": True, "sent": 0, "emailsSent": []}


def test_reminder_payload_is_camel_case(db, seed):
    seed.project(1, "Platform")
    seed.user("u1", "Alice", "Tan", email="alice@example.com")
    seed.task("tomorrow", project_id=1, deadline=datetime(2024, 3, 2, 1, 0), assignees=["u1"])

    result = send_task_reminders(db, send=lambda **kw: None, now=NOW)
    payload = result.model_dump(by_alias=True)
    sent = payload["emailsSent"][0]
    assert sent["taskTitle"] == "tomorrow"
    assert sent["assigneeEmail"] == "alice@example.com"
    assert sent["reminderType"] == "due_tomorrow"
