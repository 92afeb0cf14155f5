"""
Route tests for the analytics API against an in-memory activity source.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.features.analytics.domain.models import Account, MessageEvent, ReportEvent, Session
from app.features.analytics.services.analytics_service import (
    AnalyticsService,
    get_analytics_service,
)
from app.features.analytics.services.chart_cache import ChartCache
from app.features.analytics.services.snapshot_cache import SnapshotCache
from app.main import app
from tests.helpers import REFERENCE, InMemoryActivitySource

ALICE = Account("a1", email="alice@acme.io")
TESTER = Account("a2", email="qa@example.com")


def _session(session_id, account_id):
    return Session(
        session_id=session_id,
        account_id=account_id,
        artist_id=None,
        created_at=REFERENCE - timedelta(days=120),
        last_activity_at=REFERENCE - timedelta(hours=1),
    )


@pytest.fixture
def source():
    messages = [
        MessageEvent(f"m{d}", "r1", REFERENCE - timedelta(days=d, hours=1)) for d in range(0, 25)
    ]
    messages.append(MessageEvent("t1", "r2", REFERENCE - timedelta(hours=2)))
    return InMemoryActivitySource(
        accounts=[ALICE, TESTER],
        sessions=[_session("r1", "a1"), _session("r2", "a2")],
        messages=messages,
        reports=[ReportEvent("rep1", "alice@acme.io", REFERENCE - timedelta(days=3))],
    )


@pytest.fixture
def client(source, fake_redis):
    service = AnalyticsService(
        source=source,
        chart_cache=ChartCache(redis_client=fake_redis, ttl_s=300, stale_ttl_s=3600, refresh_wait_s=5),
        snapshot_cache=SnapshotCache(ttl_s=300, refresh_wait_s=5),
        clock=lambda: REFERENCE,
    )
    app.dependency_overrides[get_analytics_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_metric_endpoint_returns_comparison(client):
    response = client.get(
        "/analytics/metrics/active-users", params={"period": "Last 7 Days", "exclude_test": "true"}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["metric"] == "active-users"
    assert data["period"] == "Last 7 Days"
    assert data["exclude_test"] is True
    assert data["current_value"] == 1
    assert data["direction"] in {"up", "down", "neutral"}
    assert data["error"] is None


def test_metric_endpoint_defaults_to_last_30_days(client):
    response = client.get("/analytics/metrics/power-users")

    assert response.status_code == 200
    data = response.json()
    assert data["period"] == "Last 30 Days"
    assert data["exclude_test"] is False
    assert data["current_value"] == 1


def test_unknown_metric_is_404(client):
    response = client.get("/analytics/metrics/daily-active-cats")

    assert response.status_code == 404


def test_unknown_period_falls_back(client):
    response = client.get("/analytics/metrics/usage-intensity", params={"period": "Since Tuesday"})

    assert response.status_code == 200
    assert response.json()["period"] == "Last 30 Days"


def test_overview_lists_all_metrics(client):
    response = client.get("/analytics/overview", params={"period": "Last 7 Days"})

    assert response.status_code == 200
    data = response.json()
    assert [m["metric"] for m in data["metrics"]] == [
        "active-users",
        "power-users",
        "pmf-survey-ready",
        "usage-intensity",
        "average-usage",
    ]


def test_chart_lengths_match_period(client):
    response = client.get("/analytics/charts/active-users", params={"period": "Last 24 Hours"})

    assert response.status_code == 200
    data = response.json()
    assert len(data["labels"]) == len(data["data"]) == 24
    assert data["failed_points"] == 0


def test_power_user_handles(client):
    response = client.get("/analytics/power-users/handles", params={"exclude_test": "true"})

    assert response.status_code == 200
    data = response.json()
    assert data["segment"] == "power-users"
    assert data["total_count"] == 1
    assert data["handles"][0]["handle"] == "alice@acme.io"
    assert data["handles"][0]["handle_type"] == "email"


def test_pmf_ready_handles(client):
    response = client.get("/analytics/pmf-survey-ready/handles", params={"exclude_test": "true"})

    assert response.status_code == 200
    data = response.json()
    assert data["period"] is None
    assert [h["handle"] for h in data["handles"]] == ["alice@acme.io"]


def test_upstream_outage_is_reported_in_body(client, source):
    source.fail.add("fetch_accounts")

    response = client.get("/analytics/metrics/active-users")

    assert response.status_code == 200
    data = response.json()
    assert data["current_value"] == 0
    assert data["error"]


def test_engaged_users_endpoint(client):
    response = client.get("/analytics/engaged-users", params={"period": "Last 30 Days"})

    assert response.status_code == 200
    data = response.json()
    assert data["metric"] == "engaged-users"
    assert data["current_value"] == 1


def test_engaged_user_handles(client):
    response = client.get("/analytics/engaged-users/handles", params={"exclude_test": "true"})

    assert response.status_code == 200
    data = response.json()
    assert data["segment"] == "engaged-users"
    assert [h["handle"] for h in data["handles"]] == ["alice@acme.io"]


def test_activity_consistency_endpoint(client):
    response = client.post(
        "/analytics/activity-consistency",
        json={"emails": ["alice@acme.io", "nobody@acme.io"], "period": "Last 7 Days"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["period"] == "Last 7 Days"
    assert data["active_days"] == {"alice@acme.io": 7, "nobody@acme.io": 0}


def test_activity_consistency_requires_emails(client):
    response = client.post("/analytics/activity-consistency", json={"emails": []})

    assert response.status_code == 422


def test_segment_report_leaderboard_endpoint(client):
    response = client.get("/analytics/segment-reports/leaderboard")

    assert response.status_code == 200
    data = response.json()
    assert data["since"].startswith("2024-06-01T00:00:00")
    assert data["entries"] == []
    assert data["error"] is None
