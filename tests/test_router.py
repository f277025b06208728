"""HTTP tests for the /check-ins endpoints."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.auth import get_current_user
from app.database import get_db
from app.domain.checkins.router import get_notification_dispatcher
from app.main import app

from .conftest import make_user


class AuthAs:
    """Mutable holder for the signed-in user."""

    def __init__(self) -> None:
        self.user = None

    def __call__(self):
        return self.user


@pytest.fixture
def auth():
    return AuthAs()


@pytest.fixture
def http(db, auth, dispatcher):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = auth
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def create_series(http, auth, coach, client_user, **payload):
    auth.user = coach
    body = {
        "client_id": client_user.id,
        "form_id": "weekly-form",
        "form_title": "Weekly check-in",
        "start_at": (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat(),
        "window_hours": 48,
    }
    body.update(payload)
    response = http.post("/check-ins/series", json=body)
    assert response.status_code == 200, response.text
    return response.json()


def test_health(http) -> None:
    assert http.get("/health").json() == {"status": "healthy"}


def test_create_list_and_submit(http, auth, coach, client_user) -> None:
    series = create_series(http, auth, coach, client_user)
    week_1 = f"{series['id']}_week_1"

    auth.user = client_user
    listing = http.get("/check-ins/me").json()
    assert [c["id"] for c in listing["checkins"]] == [week_1]
    assert listing["checkins"][0]["status"] == "open"
    assert listing["summary"]["pending"] == 1

    submitted = http.post(f"/check-ins/assignments/{series['id']}/responses", json={"answers": {"energy": 7}})
    assert submitted.status_code == 200, submitted.text
    assert submitted.json()["assignment_id"] == week_1

    again = http.post(f"/check-ins/assignments/{week_1}/responses", json={"answers": {"energy": 8}})
    assert again.status_code == 409
    assert "already been submitted" in again.json()["detail"]

    detail = http.get(f"/check-ins/assignments/{week_1}").json()
    assert detail["status"] == "submitted"


def test_coach_lists_series_and_client_checkins(http, auth, coach, client_user) -> None:
    series = create_series(http, auth, coach, client_user, total_weeks=6)

    listed = http.get("/check-ins/series").json()
    assert [s["id"] for s in listed] == [series["id"]]
    assert listed[0]["total_weeks"] == 6

    checkins = http.get(f"/check-ins/clients/{client_user.id}").json()
    assert checkins["summary"]["total"] == 1


def test_clients_cannot_manage_series(http, auth, client_user) -> None:
    auth.user = client_user
    response = http.post("/check-ins/series", json={"client_id": client_user.id, "form_id": "f"})
    assert response.status_code == 403


def test_other_clients_checkin_is_forbidden(http, auth, coach, client_user, other_client) -> None:
    series = create_series(http, auth, coach, client_user)

    auth.user = other_client
    response = http.get(f"/check-ins/assignments/{series['id']}_week_1")
    assert response.status_code == 403


def test_unknown_assignment_is_404(http, auth, client_user) -> None:
    auth.user = client_user
    assert http.get("/check-ins/assignments/does-not-exist").status_code == 404


def test_week_suffix_with_unicode_digit_is_404(http, auth, coach, client_user) -> None:
    series = create_series(http, auth, coach, client_user)

    auth.user = client_user
    assert http.get(f"/check-ins/assignments/{series['id']}_week_²").status_code == 404


def test_pause_resume_and_delete(http, auth, coach, client_user) -> None:
    series = create_series(http, auth, coach, client_user)

    paused = http.post(f"/check-ins/series/{series['id']}/pause").json()
    assert paused["is_paused"] is True
    resumed = http.post(f"/check-ins/series/{series['id']}/resume").json()
    assert resumed["is_paused"] is False

    deleted = http.delete(f"/check-ins/series/{series['id']}", params={"preserve_history": "false"})
    assert deleted.status_code == 200
    assert deleted.json()["deleted_assignments"] == 1


def test_update_series_window(http, auth, coach, client_user) -> None:
    series = create_series(http, auth, coach, client_user)

    updated = http.patch(f"/check-ins/series/{series['id']}", json={"window_hours": 72})
    assert updated.status_code == 200
    assert updated.json()["window_hours"] == 72


def test_extension_validation(http, auth, coach, client_user) -> None:
    series = create_series(http, auth, coach, client_user)

    auth.user = client_user
    short = http.post(f"/check-ins/assignments/{series['id']}_week_1/extension", json={"reason": "busy"})
    assert short.status_code == 422

    granted = http.post(
        f"/check-ins/assignments/{series['id']}_week_1/extension",
        json={"reason": "Travelling for work this week"},
    )
    assert granted.status_code == 200
    assert granted.json()["extension_granted"] is True


def test_open_for_check_in_is_coach_only(http, auth, coach, client_user) -> None:
    series = create_series(http, auth, coach, client_user)
    week_1 = f"{series['id']}_week_1"

    auth.user = client_user
    assert http.post(f"/check-ins/assignments/{week_1}/open-for-check-in").status_code == 403

    auth.user = coach
    opened = http.post(f"/check-ins/assignments/{week_1}/open-for-check-in")
    assert opened.status_code == 200, opened.text
    assert opened.json()["extension_granted"] is True
    assert opened.json()["is_virtual"] is False


def test_mark_missed_requires_closed_window(http, auth, coach, client_user) -> None:
    series = create_series(http, auth, coach, client_user)

    auth.user = client_user
    bad_reason = http.post(f"/check-ins/assignments/{series['id']}_week_1/mark-missed", json={"reason": "lazy"})
    assert bad_reason.status_code == 422

    too_early = http.post(f"/check-ins/assignments/{series['id']}_week_1/mark-missed", json={"reason": "sick"})
    assert too_early.status_code == 409


def test_one_off(http, auth, coach, client_user) -> None:
    auth.user = coach
    response = http.post(
        "/check-ins/one-off",
        json={"client_id": client_user.id, "form_id": "intake", "form_title": "Intake", "window_hours": 24},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["series_id"] is None
    assert body["status"] == "open"


def test_manual_reminder_sweep(http, auth, coach, client_user, dispatcher) -> None:
    create_series(
        http,
        auth,
        coach,
        client_user,
        start_at=(datetime.now(timezone.utc) - timedelta(hours=30)).isoformat(),
    )

    response = http.post("/check-ins/reminders/run")
    assert response.status_code == 200
    assert response.json()["sent"] == 1
    assert dispatcher.milestones == ["closing_24h"]


def test_manual_sweep_only_covers_callers_clients(http, auth, db, coach, client_user, dispatcher) -> None:
    create_series(
        http,
        auth,
        coach,
        client_user,
        start_at=(datetime.now(timezone.utc) - timedelta(hours=30)).isoformat(),
    )

    auth.user = make_user(db, "coach2", role="coach")
    response = http.post("/check-ins/reminders/run")
    assert response.status_code == 200
    assert response.json()["sent"] == 0
    assert dispatcher.calls == []
