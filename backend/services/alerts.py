# backend/services/alerts.py
"""
Client alert composer: drafts, publishing and alert history.

Published alerts feed the performance engine (`get_last_alert_info` reads
them first), so publishing is what clears the "no result alerts" red flag.

Rules:
- Publishing stamps `published_at` and writes an `alert_published` activity row.
- A published alert's message is frozen (`AlertEditError`).
- Missing clients / alerts are reported as None; routes turn that into 404.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import ActivityLog, Client, ClientAlert

logger = logging.getLogger(__name__)

ALERT_TYPES = ("performance_focus", "general_update", "milestone", "intervention")
ALERT_LIST_LIMIT = 50
ALERT_HISTORY_LIMIT = 20


class AlertEditError(ValueError):
    """Raised when an edit is not allowed for the alert's current status."""


def _publish(db: Session, alert: ClientAlert, now: datetime) -> None:
    alert.status = "published"
    alert.published_at = now
    db.add(ActivityLog(
        client_id=alert.client_id,
        activity_type="alert_published",
        description=f"Performance alert published: {alert.alert_type}",
        meta={"alert_id": alert.id, "alert_type": alert.alert_type},
        created_at=now,
    ))


def create_alert(
    db: Session,
    client_id: int,
    message: str,
    alert_type: str,
    publish: bool = False,
    now: Optional[datetime] = None,
) -> Optional[ClientAlert]:
    """Create a draft (or immediately published) alert; None if the client does not exist."""
    if db.get(Client, client_id) is None:
        return None
    now = now or datetime.utcnow()

    alert = ClientAlert(client_id=client_id, message=message, alert_type=alert_type, status="draft", created_at=now)
    db.add(alert)
    db.flush()  # alert.id for the activity metadata
    if publish:
        _publish(db, alert, now)
    db.commit()
    db.refresh(alert)

    logger.info("Alert %s created for client %s (%s)", alert.id, client_id, alert.status)
    return alert


def list_alerts(db: Session, client_id: Optional[int] = None, status: Optional[str] = None) -> List[ClientAlert]:
    stmt = select(ClientAlert).order_by(ClientAlert.created_at.desc(), ClientAlert.id.desc()).limit(ALERT_LIST_LIMIT)
    if client_id is not None:
        stmt = stmt.where(ClientAlert.client_id == client_id)
    if status:
        stmt = stmt.where(ClientAlert.status == status)
    return db.execute(stmt).scalars().all()


def get_alert(db: Session, alert_id: int) -> Optional[ClientAlert]:
    return db.get(ClientAlert, alert_id)


def update_alert(
    db: Session,
    alert_id: int,
    message: Optional[str] = None,
    publish: bool = False,
    now: Optional[datetime] = None,
) -> Optional[ClientAlert]:
    """
    Edit a draft's message and/or publish it. Publishing an already published
    alert is a no-op. Raises `AlertEditError` when the message of a published
    alert is changed.
    """
    alert = db.get(ClientAlert, alert_id)
    if alert is None:
        return None
    if message and alert.status == "published":
        raise AlertEditError("Cannot edit published alert message")

    now = now or datetime.utcnow()
    if message and alert.status == "draft":
        alert.message = message
    if publish and alert.status == "draft":
        _publish(db, alert, now)
    db.commit()
    db.refresh(alert)
    return alert


def delete_alert(db: Session, alert_id: int) -> bool:
    alert = db.get(ClientAlert, alert_id)
    if alert is None:
        return False
    db.delete(alert)
    db.commit()
    logger.info("Alert %s deleted", alert_id)
    return True


def get_alerts_history(db: Session, client_id: int, limit: int = ALERT_HISTORY_LIMIT) -> List[ClientAlert]:
    """Published alerts for a client, newest first."""
    return db.execute(
        select(ClientAlert)
        .where(ClientAlert.client_id == client_id)
        .where(ClientAlert.status == "published")
        .order_by(ClientAlert.created_at.desc(), ClientAlert.id.desc())
        .limit(limit)
    ).scalars().all()
