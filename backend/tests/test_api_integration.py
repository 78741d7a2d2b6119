"""
test_api_integration.py
-----------------------
Integration tests for the FastAPI application using a temporary SQLite test DB.

What these tests verify (end-to-end-ish):
- The public API endpoints respond with the expected shapes and status codes.
- The app's dependency override correctly routes DB access to the test Session.
- The performance breakdown stays within [0..100] and lists excluded metrics.
- Ingesting snapshots changes the computed score (behavioral change over time).
- Refresh endpoints persist the cached score and append score history.
- Proper error handling: 404 on missing client, 422 on bad payload or filter.

Notes:
- The database and app wiring for tests are configured in `tests/conftest.py`.
- Endpoints use the wall clock, so snapshot periods here are built relative to
  `datetime.utcnow()` rather than the fixed `now` fixture.
"""

from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

from backend.models import Client, ScoreHistory


def window_starts():
    """Start dates of the current and previous 30-day windows, as the API sees them."""
    today = datetime.utcnow()
    return (today - timedelta(days=30)).date(), (today - timedelta(days=60)).date()


def post_snapshot(client, client_id, metric_type, value, start):
    return client.post(
        f"/api/clients/{client_id}/metrics",
        json={
            "metric_type": metric_type,
            "value": value,
            "period_start": start.isoformat(),
            "period_end": (start + timedelta(days=29)).isoformat(),
        },
    )


def test_get_clients_list(client, make_client):
    """
    GET /api/clients returns a list that includes newly created clients.

    Flow:
    1) Arrange: Insert one Client via the builder fixture.
    2) Act:     Call the endpoint.
    3) Assert:  Response is 200, JSON is a list, and includes our inserted name/id.
    """
    c = make_client(name="TestCo")

    res = client.get("/api/clients")
    assert res.status_code == 200
    data = res.json()

    assert isinstance(data, list)
    row = next(r for r in data if r["id"] == c.id)
    assert row["name"] == "TestCo"
    assert row["performance_score"] is None


def test_get_client_performance_breakdown(client, make_client):
    """
    GET /api/clients/{id}/performance returns a well-formed breakdown.

    Why this matters:
    - The endpoint combines snapshots, alerts, activity and subscriptions.
    - Metrics without data must show up in `excluded_metrics`, not in `metrics`.
    """
    c = make_client(categories=("root",))
    current, previous = window_starts()
    assert post_snapshot(client, c.id, "visitors", 1200, current).status_code == 201
    assert post_snapshot(client, c.id, "visitors", 1000, previous).status_code == 201

    res = client.get(f"/api/clients/{c.id}/performance")
    assert res.status_code == 200
    body = res.json()

    for key in (
        "score", "growth_stage", "status", "evaluation_label", "plan_type", "metrics",
        "excluded_metrics", "velocity", "calculation", "flags", "red_flags", "recommendations",
    ):
        assert key in body

    assert 0 <= body["score"] <= 100
    assert body["plan_type"] == "seo"
    assert set(body["metrics"]) == {"visitors", "alerts"}
    assert body["metrics"]["visitors"]["score"] == 70
    assert set(body["excluded_metrics"]) == {"keywords", "leads", "ai_visibility", "conversions"}
    assert body["calculation"]["final_score"] == body["score"]


def test_ingesting_snapshots_changes_score(client, make_client):
    """
    Adding a rising leads series moves the score up.

    Flow:
    1) Read the baseline score (no data: only the alerts metric counts).
    2) POST current/previous leads snapshots.
    3) Read again and assert the score increased.
    """
    c = make_client(categories=("ai",))
    before = client.get(f"/api/clients/{c.id}/performance").json()["score"]

    current, previous = window_starts()
    post_snapshot(client, c.id, "leads", 30, current)
    post_snapshot(client, c.id, "leads", 20, previous)

    after = client.get(f"/api/clients/{c.id}/performance").json()
    assert after["score"] > before
    assert after["metrics"]["leads"]["delta"] == 50


def test_performance_is_read_only(client, make_client, db_session):
    """GET never writes the cached score or history."""
    c = make_client()
    assert client.get(f"/api/clients/{c.id}/performance").status_code == 200

    db_session.refresh(c)
    assert c.performance_score is None
    assert db_session.query(ScoreHistory).count() == 0


def test_refresh_persists_score_and_history(client, make_client, db_session):
    """
    POST /api/clients/{id}/performance/refresh stores the score on the client
    and appends one history row; an immediate second refresh does not.
    """
    c = make_client()

    res = client.post(f"/api/clients/{c.id}/performance/refresh")
    assert res.status_code == 200
    score = res.json()["score"]
    assert res.json()["id"] == c.id

    db_session.refresh(c)
    assert c.performance_score == score
    assert c.growth_stage == "harvesting"

    client.post(f"/api/clients/{c.id}/performance/refresh")
    history = client.get(f"/api/clients/{c.id}/score-history").json()
    assert len(history) == 1
    assert history[0]["score"] == score


def test_refresh_returns_500_when_persisting_fails(client, make_client, db_session, monkeypatch):
    """A database error on commit is surfaced as 500 and nothing is stored."""
    c = make_client()

    def boom():
        raise OperationalError("UPDATE clients", {}, Exception("disk full"))

    monkeypatch.setattr(db_session, "commit", boom)
    res = client.post(f"/api/clients/{c.id}/performance/refresh")
    monkeypatch.undo()

    assert res.status_code == 500
    db_session.expire_all()
    assert db_session.get(Client, c.id).performance_score is None


def test_batch_refresh(client, make_client):
    """POST /api/performance/refresh recomputes every active client."""
    make_client(name="A")
    make_client(name="B")
    make_client(name="Gone", status="churned")

    res = client.post("/api/performance/refresh")
    assert res.status_code == 200
    assert res.json() == {"refreshed": 2, "failed": []}


def test_dashboard_summary_and_filters(client, make_client, db_session):
    """
    GET /api/performance returns a summary over all active clients and
    filtered rows.
    """
    make_client(name="Old", tenure_days=500, categories=("root",))
    new = make_client(name="New", categories=("ai",))
    # tenure is measured against the wall clock here
    new.start_date = (datetime.utcnow() - timedelta(days=20)).date()
    new.created_at = datetime.utcnow() - timedelta(days=20)
    db_session.commit()

    res = client.get("/api/performance")
    assert res.status_code == 200
    body = res.json()
    assert body["summary"]["total_clients"] == 2
    assert set(body["summary"]["by_stage"]) == {"seedling", "sprouting", "blooming", "harvesting"}
    assert len(body["clients"]) == 2

    seedlings = client.get("/api/performance", params={"stage": "seedling"}).json()
    assert [r["name"] for r in seedlings["clients"]] == ["New"]
    assert seedlings["summary"]["total_clients"] == 2

    seo = client.get("/api/performance", params={"plan": "seo", "sort": "name"}).json()
    assert [r["name"] for r in seo["clients"]] == ["Old"]


def test_dashboard_rejects_unknown_filter_values(client):
    assert client.get("/api/performance", params={"stage": "prospect"}).status_code == 422
    assert client.get("/api/performance", params={"sort": "random"}).status_code == 422


def test_not_found_returns_404(client):
    """Every per-client endpoint answers 404 for an unknown id."""
    assert client.get("/api/clients/999999/performance").status_code == 404
    assert client.post("/api/clients/999999/performance/refresh").status_code == 404
    assert client.get("/api/clients/999999/score-history").status_code == 404
    res = post_snapshot(client, 999999, "leads", 1, window_starts()[0])
    assert res.status_code == 404
    assert res.json()["detail"] == "Client not found"


def test_metric_ingest_validation(client, make_client):
    """
    POST /api/clients/{id}/metrics validates the payload.

    - Unknown metric types and negative values fail schema validation (422).
    - A period that ends before it starts is rejected (422).
    """
    c = make_client()
    start = window_starts()[0]

    bad_type = client.post(
        f"/api/clients/{c.id}/metrics",
        json={"metric_type": "bounce_rate", "value": 1, "period_start": str(start), "period_end": str(start)},
    )
    assert bad_type.status_code == 422

    negative = client.post(
        f"/api/clients/{c.id}/metrics",
        json={"metric_type": "leads", "value": -1, "period_start": str(start), "period_end": str(start)},
    )
    assert negative.status_code == 422

    backwards = client.post(
        f"/api/clients/{c.id}/metrics",
        json={
            "metric_type": "leads",
            "value": 1,
            "period_start": str(start),
            "period_end": str(start - timedelta(days=1)),
        },
    )
    assert backwards.status_code == 422


def test_root_service_check(client):
    res = client.get("/")
    assert res.status_code == 200
    assert "running" in res.json()["message"]


def test_publishing_alert_changes_performance_alert_fields(client, make_client):
    """
    Composer -> engine round trip through the API.

    Flow:
    1) A fresh client has no alerts: "No result alerts ever sent" is flagged.
    2) POST a draft: nothing changes (drafts are not sent).
    3) PUT publish=true: `last_alert_at` is set, the red flag is gone and the
       alert appears in `alerts_history`.
    """
    c = make_client()
    before = client.get(f"/api/clients/{c.id}/performance").json()
    assert before["last_alert_at"] is None
    assert "No result alerts ever sent" in before["red_flags"]
    assert before["alerts_history"] == []

    res = client.post("/api/performance/alerts", json={
        "client_id": c.id, "message": "Traffic is up 20%", "alert_type": "milestone",
    })
    assert res.status_code == 201
    alert_id = res.json()["id"]
    assert res.json()["status"] == "draft"
    assert client.get(f"/api/clients/{c.id}/performance").json()["last_alert_at"] is None

    res = client.put(f"/api/performance/alerts/{alert_id}", json={"publish": True})
    assert res.status_code == 200
    assert res.json()["status"] == "published"
    assert res.json()["published_at"] is not None

    after = client.get(f"/api/clients/{c.id}/performance").json()
    assert after["last_alert_at"] is not None
    assert after["last_alert_type"] == "milestone"
    assert "No result alerts ever sent" not in after["red_flags"]
    assert "Send a result alert to re-engage" not in after["recommendations"]
    assert [h["id"] for h in after["alerts_history"]] == [alert_id]
    assert after["alerts_history"][0]["message"] == "Traffic is up 20%"


def test_alert_crud_and_errors(client, make_client):
    """
    - Missing client on create -> 404; bad alert_type / empty message -> 422.
    - Editing a published alert's message -> 400.
    - GET / DELETE on a missing alert -> 404.
    """
    c = make_client(name="AlertCo")

    assert client.post("/api/performance/alerts", json={
        "client_id": 999999, "message": "hi", "alert_type": "milestone",
    }).status_code == 404
    assert client.post("/api/performance/alerts", json={
        "client_id": c.id, "message": "hi", "alert_type": "spam",
    }).status_code == 422
    assert client.post("/api/performance/alerts", json={
        "client_id": c.id, "message": "", "alert_type": "milestone",
    }).status_code == 422

    res = client.post("/api/performance/alerts", json={
        "client_id": c.id, "message": "Published now", "alert_type": "intervention", "publish": True,
    })
    assert res.status_code == 201
    alert_id = res.json()["id"]

    detail = client.get(f"/api/performance/alerts/{alert_id}").json()
    assert detail["client_name"] == "AlertCo"
    assert detail["status"] == "published"

    edit = client.put(f"/api/performance/alerts/{alert_id}", json={"message": "Changed"})
    assert edit.status_code == 400
    assert edit.json()["detail"] == "Cannot edit published alert message"

    listed = client.get("/api/performance/alerts", params={"client_id": c.id, "status": "published"}).json()
    assert [a["id"] for a in listed] == [alert_id]
    assert client.get("/api/performance/alerts", params={"status": "bogus"}).status_code == 422

    assert client.delete(f"/api/performance/alerts/{alert_id}").json() == {"success": True}
    assert client.get(f"/api/performance/alerts/{alert_id}").status_code == 404
    assert client.delete(f"/api/performance/alerts/{alert_id}").status_code == 404
    assert client.put(f"/api/performance/alerts/{alert_id}", json={"publish": True}).status_code == 404
