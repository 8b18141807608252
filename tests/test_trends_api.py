from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from src.api.dependencies import get_trend_calculation_service, get_trend_snapshots_service
from src.core.config import get_settings
from src.main import create_app
from src.models.engagement import EmployeeRecord, TeamRecord
from src.schemas.trends import CAMPS_CATEGORIES
from src.services.trend_snapshots_service import TrendSnapshotsService
from src.shared.time import last_completed_week

RUN_TOKEN = "secret-token"


@pytest.fixture()
def client(
    build_trend_service, ratings_repository, snapshots_repository, log_repository
) -> TestClient:
    _, window_end = last_completed_week()
    ratings_repository.teams = [TeamRecord(id="team-a", name="Alpha")]
    ratings_repository.employees = [
        EmployeeRecord(id="emp-1", name="Ana", team_id="team-a"),
        EmployeeRecord(id="emp-2", name="Ben", team_id="team-a"),
    ]
    for employee_id, rating in (("emp-1", 6), ("emp-2", 8)):
        for category in CAMPS_CATEGORIES:
            ratings_repository.add_rating(employee_id, category, rating, window_end - timedelta(days=1))

    app = create_app()
    app.dependency_overrides[get_trend_calculation_service] = lambda: build_trend_service()
    app.dependency_overrides[get_trend_snapshots_service] = lambda: TrendSnapshotsService(
        snapshots_repository=snapshots_repository,
        log_repository=log_repository,
    )
    return TestClient(app)


@pytest.fixture()
def run_token(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TREND_MANUAL_RUN_TOKEN", RUN_TOKEN)
    get_settings.cache_clear()
    yield {"x-trend-run-token": RUN_TOKEN}
    get_settings.cache_clear()


def test_manual_run_disabled_without_configured_token(client: TestClient) -> None:
    response = client.post("/api/v1/trends/runs", json={})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Trend manual run endpoint is disabled"


def test_manual_run_rejects_wrong_token(client: TestClient, run_token) -> None:
    response = client.post("/api/v1/trends/runs", json={}, headers={"x-trend-run-token": "nope"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "bad_request"


def test_manual_run_defaults_to_last_completed_week(client: TestClient, run_token, log_repository) -> None:
    response = client.post("/api/v1/trends/runs", json={}, headers=run_token)

    assert response.status_code == 200
    payload = response.json()
    # team-a, emp-1, emp-2 and the organization.
    assert payload["data"]["status"] == "completed"
    assert payload["data"]["snapshotsWritten"] == 4 * len(CAMPS_CATEGORIES)
    assert payload["data"]["allItemsSucceeded"] is True
    assert payload["meta"]["dataStatus"] == "completed"
    assert log_repository.logs[0].status == "completed"

    repeat = client.post("/api/v1/trends/runs", json={}, headers=run_token)
    assert repeat.json()["data"]["status"] == "skipped"


def test_manual_run_rejects_inverted_window(client: TestClient, run_token) -> None:
    window_start, window_end = last_completed_week()
    response = client.post(
        "/api/v1/trends/runs",
        json={"windowStart": window_end.isoformat(), "windowEnd": window_start.isoformat()},
        headers=run_token,
    )
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Window start cannot be after window end"


def test_manual_run_requires_both_window_bounds(client: TestClient, run_token) -> None:
    window_start, _ = last_completed_week()
    response = client.post(
        "/api/v1/trends/runs",
        json={"windowStart": window_start.isoformat()},
        headers=run_token,
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation_error"


def test_background_run_is_accepted(client: TestClient, run_token, log_repository) -> None:
    response = client.post(
        "/api/v1/trends/runs",
        json={"runInBackground": True, "force": True},
        headers=run_token,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "accepted"
    assert data["force"] is True
    # TestClient runs background tasks before returning.
    assert [log.status for log in log_repository.logs] == ["completed"]


def test_snapshots_endpoint_returns_team_series(client: TestClient, run_token) -> None:
    client.post("/api/v1/trends/runs", json={}, headers=run_token)

    response = client.get(
        "/api/v1/trends/snapshots",
        params={"scope_type": "team", "entity_id": "team-a", "category": "CERTAINTY"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"]["granularity"] == "weekly"
    assert payload["meta"]["timeWindow"] == "weekly"
    assert payload["pagination"]["totalItems"] == 1
    item = payload["data"]["items"][0]
    assert item["currentValue"] == 7.0
    assert item["contributingCount"] == 2
    assert item["weekDelta"] is None


def test_snapshots_endpoint_requires_entity_for_team_scope(client: TestClient) -> None:
    response = client.get("/api/v1/trends/snapshots", params={"scope_type": "team"})
    assert response.status_code == 400
    assert "entity_id" in response.json()["error"]["message"]


def test_latest_run_is_not_found_before_first_run(client: TestClient) -> None:
    response = client.get("/api/v1/trends/runs/latest")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"


def test_runs_endpoints_list_processing_logs(client: TestClient, run_token) -> None:
    client.post("/api/v1/trends/runs", json={}, headers=run_token)

    latest = client.get("/api/v1/trends/runs/latest")
    assert latest.status_code == 200
    assert latest.json()["data"]["status"] == "completed"

    runs = client.get("/api/v1/trends/runs", params={"snapshot_type": "weekly"})
    assert runs.status_code == 200
    assert [item["status"] for item in runs.json()["data"]] == ["completed"]
    assert runs.json()["meta"]["source"] == "analytics_processing_log"
