"""
test_alerts_service.py
----------------------
Integration tests for the client alert composer in `services.alerts`.

What these tests verify:
- Drafts vs. published alerts, and the `alert_published` activity row.
- A published alert's message is frozen; drafts can be edited and published later.
- Published alerts become the client's "last alert" for the performance engine.
- Listing filters and the 20-row published history.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from backend.models import ActivityLog, ClientAlert
from backend.services.alerts import (
    AlertEditError,
    create_alert,
    delete_alert,
    get_alerts_history,
    list_alerts,
    update_alert,
)
from backend.services.performance import calculate_client_performance, get_last_alert_info


def activity_types(db_session, client_id):
    return db_session.execute(
        select(ActivityLog.activity_type).where(ActivityLog.client_id == client_id)
    ).scalars().all()


def test_create_draft_has_no_side_effects(db_session, make_client, now):
    c = make_client()
    alert = create_alert(db_session, c.id, "Rankings are climbing", "milestone", now=now)

    assert alert.status == "draft"
    assert alert.published_at is None
    assert activity_types(db_session, c.id) == []
    assert get_last_alert_info(db_session, c.id) == (None, None)


def test_create_published_stamps_time_and_logs_activity(db_session, make_client, now):
    c = make_client()
    alert = create_alert(db_session, c.id, "Leads doubled", "performance_focus", publish=True, now=now)

    assert alert.status == "published"
    assert alert.published_at == now
    log = db_session.execute(select(ActivityLog).where(ActivityLog.client_id == c.id)).scalar_one()
    assert log.activity_type == "alert_published"
    assert log.meta == {"alert_id": alert.id, "alert_type": "performance_focus"}


def test_create_for_missing_client_returns_none(db_session):
    assert create_alert(db_session, 424242, "hello", "general_update") is None


def test_publishing_a_draft_updates_engine_inputs(db_session, make_client, now):
    c = make_client()
    draft = create_alert(db_session, c.id, "Quarterly recap", "general_update", now=now - timedelta(days=2))

    before = calculate_client_performance(db_session, c.id, now)
    assert "No result alerts ever sent" in before.red_flags

    update_alert(db_session, draft.id, message="Quarterly recap v2", publish=True, now=now)

    after = calculate_client_performance(db_session, c.id, now)
    assert after.last_alert_at == now
    assert after.last_alert_type == "general_update"
    assert "No result alerts ever sent" not in after.red_flags
    assert "Send a result alert to re-engage" not in after.recommendations
    assert activity_types(db_session, c.id) == ["alert_published"]


def test_published_message_is_frozen(db_session, make_client, now):
    c = make_client()
    alert = create_alert(db_session, c.id, "Original", "milestone", publish=True, now=now)

    with pytest.raises(AlertEditError):
        update_alert(db_session, alert.id, message="Rewritten")

    # publishing again is a no-op: no second stamp, no second activity row
    update_alert(db_session, alert.id, publish=True, now=now + timedelta(days=1))
    db_session.refresh(alert)
    assert alert.message == "Original"
    assert alert.published_at == now
    assert activity_types(db_session, c.id) == ["alert_published"]


def test_update_and_delete_missing_alert(db_session):
    assert update_alert(db_session, 999, message="x") is None
    assert delete_alert(db_session, 999) is False


def test_delete_alert(db_session, make_client, now):
    c = make_client()
    alert = create_alert(db_session, c.id, "Oops", "intervention", now=now)
    assert delete_alert(db_session, alert.id) is True
    assert db_session.get(ClientAlert, alert.id) is None


def test_list_filters_and_history(db_session, make_client, now):
    a = make_client(name="A")
    b = make_client(name="B")
    for i in range(22):
        create_alert(db_session, a.id, f"update {i}", "general_update", publish=True, now=now - timedelta(hours=i))
    create_alert(db_session, a.id, "draft", "milestone", now=now)
    create_alert(db_session, b.id, "other client", "milestone", publish=True, now=now)

    assert len(list_alerts(db_session)) == 24
    assert [x.message for x in list_alerts(db_session, client_id=a.id, status="draft")] == ["draft"]
    assert {x.client_id for x in list_alerts(db_session, status="published")} == {a.id, b.id}

    history = get_alerts_history(db_session, a.id)
    assert len(history) == 20
    assert history[0].message == "update 0"
    assert all(h.status == "published" for h in history)
