from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from taskreport.db import get_db
from taskreport.main import app
from taskreport.models import TaskStatus
from taskreport.routers import api_reports
from taskreport.routers.api_reports import build_filters, parse_id_list
from taskreport.version import APP_VERSION


SECRET = "test-jwt-secret"


def _token(sub: str, secret: str = SECRET) -> dict:
    return {"Authorization": f"Bearer {jwt.encode({'sub': sub, 'aud': 'authenticated'}, secret, algorithm='HS256')}"}


@pytest.fixture
def client(db, seed):
    seed.department(1, "Engineering")
    seed.department(2, "Sales")
    seed.project(10, "Platform", department_ids=[1])
    seed.project(20, "Outreach", department_ids=[2])
    seed.user("admin1", "Ada", "Min", department_id=1, roles=["admin"])
    seed.user("staff1", "Sam", "Staff", department_id=1, roles=["staff"])
    seed.task(
        "done",
        project_id=10,
        status=TaskStatus.completed,
        logged_time=3600,
        deadline=datetime(2024, 1, 20),
        updated_at=datetime(2024, 1, 12),
        creator_id="admin1",
        assignees=["staff1"],
        created_at=datetime(2024, 1, 10, 9, 0),
    )
    seed.task(
        "sales",
        project_id=20,
        status=TaskStatus.in_progress,
        logged_time=1800,
        creator_id="staff1",
        created_at=datetime(2024, 1, 20, 9, 0),
    )

    app.dependency_overrides[get_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_parse_id_list_drops_malformed_entries():
    assert parse_id_list(None) == []
    assert parse_id_list("") == []
    assert parse_id_list("1, 2,x,,3.5, 4") == [1, 2, 4]


def test_build_filters_date_only_end_covers_whole_day():
    f = build_filters("1,2", None, "2024-01-01", "2024-01-31")
    assert f.project_ids == [1, 2]
    assert f.department_ids is None
    assert f.start_date == datetime(2024, 1, 1, 0, 0)
    assert f.end_date.date() == datetime(2024, 1, 31).date()
    assert (f.end_date.hour, f.end_date.minute, f.end_date.second) == (23, 59, 59)

    f = build_filters("x", "", "not-a-date", "2024-01-31T10:00:00+08:00")
    assert f.project_ids is None
    assert f.start_date is None
    assert f.end_date == datetime(2024, 1, 31, 2, 0)


def test_missing_or_invalid_token_is_401(client):
    assert client.get("/api/reports").status_code == 401
    r = client.get("/api/reports", headers=_token("admin1", secret="wrong"))
    assert r.status_code == 401
    assert r.json()["detail"] == "Unauthorized"
    assert client.get("/api/reports", headers=_token("nobody")).status_code == 401


def test_report_actions_require_admin(client):
    for action in ("time", "team", "task", "metrics", "report"):
        r = client.get(f"/api/reports?action={action}", headers=_token("staff1"))
        assert r.status_code == 403
        assert r.json()["detail"] == "Forbidden: Admin access required"


def test_invalid_action_is_400(client):
    r = client.get("/api/reports?action=bogus", headers=_token("admin1"))
    assert r.status_code == 400


def test_default_action_is_logged_time(client):
    r = client.get("/api/reports", headers=_token("admin1"))
    assert r.status_code == 200
    body = r.json()
    assert body["kind"] == "loggedTime"
    assert body["totalTasks"] == 2
    assert body["totalTime"] == pytest.approx(1.5)
    assert body["timeByTask"] == {"1": 3600, "2": 1800}

    alias = client.get("/api/reports?action=metrics", headers=_token("admin1")).json()
    assert alias == body


def test_filters_narrow_the_report(client):
    r = client.get("/api/reports?action=time&projectIds=10,abc", headers=_token("admin1"))
    assert r.json()["totalTasks"] == 1

    r = client.get("/api/reports?action=time&departmentIds=2", headers=_token("admin1"))
    assert r.json()["totalTasks"] == 1
    assert r.json()["timeByTask"] == {"2": 1800}

    r = client.get("/api/reports?action=time&startDate=2024-01-15&endDate=bad", headers=_token("admin1"))
    assert r.json()["totalTasks"] == 1

    r = client.get("/api/reports?action=time&endDate=2024-01-10", headers=_token("admin1"))
    assert r.json()["totalTasks"] == 1


def test_team_and_completion_reports(client):
    team = client.get("/api/reports?action=team", headers=_token("admin1")).json()
    assert team["kind"] == "teamSummary"
    assert team["totalTasks"] == 2
    assert [(w["week"], w["userName"]) for w in team["weeklyBreakdown"]] == [
        ("2024-W02", "Sam Staff"),
        ("2024-W03", "Unassigned"),
    ]

    task = client.get("/api/reports?action=report", headers=_token("admin1")).json()
    assert task["kind"] == "taskCompletions"
    assert task["totalCompleted"] == 1
    assert {s["userName"] for s in task["userStats"]} == {"Ada Min", "Sam Staff"}


def test_lookup_actions_only_need_authentication(client):
    projects = client.get("/api/reports?action=projects", headers=_token("staff1"))
    assert projects.status_code == 200
    assert projects.json() == [{"id": 10, "name": "Platform"}]

    departments = client.get("/api/reports?action=departments", headers=_token("staff1"))
    assert departments.json() == [{"id": 1, "name": "Engineering"}]

    narrowed = client.get("/api/reports?action=projects&departmentIds=2", headers=_token("staff1"))
    assert narrowed.json() == []


def test_generation_failure_is_500(client, monkeypatch):
    def _boom(db, filters):
        raise RuntimeError("kaboom")

    monkeypatch.setitem(api_reports.REPORT_GENERATORS, "time", _boom)
    r = client.get("/api/reports?action=time", headers=_token("admin1"))
    assert r.status_code == 500
    assert r.json()["detail"] == "Server error: kaboom"


@pytest.mark.parametrize("action, target", [("departments", "filter_departments"), ("projects", "filter_projects")])
def test_lookup_failure_is_500_and_logged(client, monkeypatch, caplog, action, target):
    def _boom(db, user_id, ids):
        raise RuntimeError("lookup down")

    monkeypatch.setattr(api_reports, target, _boom)
    with caplog.at_level("ERROR", logger="taskreport.api"):
        r = client.get(f"/api/reports?action={action}", headers=_token("staff1"))
    assert r.status_code == 500
    assert r.json()["detail"] == "Server error: lookup down"
    assert any(rec.exc_info and action in rec.getMessage() for rec in caplog.records)


def test_export_pdf_and_xlsx(client):
    r = client.get("/api/reports/export?action=time&format=pdf", headers=_token("admin1"))
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    disposition = r.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="Logged_Time_Report_')
    assert disposition.endswith('.pdf"')
    assert r.content.startswith(b"%PDF")

    r = client.get("/api/reports/export?action=team&format=xlsx", headers=_token("admin1"))
    assert r.status_code == 200
    assert "spreadsheetml" in r.headers["content-type"]
    assert "Team_Summary_Report_" in r.headers["content-disposition"]
    assert r.content[:2] == b"PK"


def test_export_validation(client):
    assert client.get("/api/reports/export?format=csv", headers=_token("admin1")).status_code == 400
    assert client.get("/api/reports/export?action=projects", headers=_token("admin1")).status_code == 400
    assert client.get("/api/reports/export", headers=_token("staff1")).status_code == 403
    assert client.get("/api/reports/export").status_code == 401


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok", "version": APP_VERSION}
