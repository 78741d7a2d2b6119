"""
main.py
FastAPI application entrypoint for the client performance service.

What this service does
----------------------
- Exposes read-only endpoints for:
    * Listing clients (id, name, status, cached score/stage)
    * Computing a client's full performance breakdown (score, stage, velocity,
      flags, red flags, recommendations)
    * The performance dashboard (summary + filtered/sorted client rows)
    * A client's score history
- Exposes write endpoints to:
    * Recompute and persist one client's score (cached fields + history row)
    * Recompute every active client (cron / batch)
    * Ingest a metric snapshot
    * Compose, publish, list and delete client alerts
- Connects to PostgreSQL via SQLAlchemy and uses models defined in `models.py`

Design decisions (high level)
-----------------------------
- Tables are created on startup if they don't exist (idempotent, safe for local dev).
- The score is computed on demand from two back-to-back 30-day windows; the
  cached copy on the client is only written by the refresh endpoints.
- Metrics with no data in either window are excluded and reported in
  `excluded_metrics` rather than scored as neutral.
"""

import logging
import os
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import FastAPI, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import Base, engine, get_db
from .models import Client, MetricSnapshot, ScoreHistory
from .schemas import (
    ClientAlertIn,
    ClientAlertOut,
    ClientAlertStatusOut,
    ClientAlertUpdate,
    ClientOut,
    DashboardClientOut,
    DashboardOut,
    MetricSnapshotIn,
    PerformanceOut,
    RefreshOut,
    ScoreHistoryOut,
    ScoreUpdateOut,
)
from .services.alerts import (
    AlertEditError,
    create_alert,
    delete_alert,
    get_alert,
    get_alerts_history,
    list_alerts,
    update_alert,
)
from .services.performance import (
    DashboardFilters,
    build_dashboard,
    calculate_client_performance,
    refresh_all_scores,
    update_client_performance_score,
)
from .services.stages import GrowthStage
from .services.weights import PlanType

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Client Performance API",
    description="Score agency clients from metric trends, result alerts, and account velocity.",
    version="0.1.0",
)


@app.on_event("startup")
def startup_event() -> None:
    """
    App lifecycle hook: run once when the server starts.

    We create tables if they do not exist yet. Sample data is generated once
    via the separate `db/seed.py` script.
    """
    Base.metadata.create_all(bind=engine)


def _get_client_or_404(db: Session, client_id: int) -> Client:
    client = db.get(Client, client_id)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@app.get("/api/clients", response_model=List[ClientOut], tags=["Clients"])
def list_clients(db: Session = Depends(get_db)) -> List[ClientOut]:
    """
    List clients with their cached performance fields.

    `performance_score` is whatever the last refresh stored; the live value
    comes from `/api/clients/{id}/performance`.
    """
    return db.execute(select(Client).order_by(Client.id)).scalars().all()


@app.get("/api/clients/{client_id}/performance", response_model=PerformanceOut, tags=["Performance"])
def client_performance(client_id: int, db: Session = Depends(get_db)) -> PerformanceOut:
    """
    Compute a client's performance breakdown. Read-only: nothing is persisted.

    Returns the final score with its base score / velocity modifier, the
    per-metric breakdown (current, previous, delta, score, weight,
    contribution), excluded metrics, stage and status labels, flags,
    red flags, recommendations and the last 20 published alerts.
    """
    result = calculate_client_performance(db, client_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return PerformanceOut.from_result(result, alerts_history=get_alerts_history(db, client_id))


@app.post("/api/clients/{client_id}/performance/refresh", response_model=ScoreUpdateOut, tags=["Performance"])
def refresh_client_performance(client_id: int, db: Session = Depends(get_db)) -> ScoreUpdateOut:
    """Recompute the score, cache it on the client and append score history when needed."""
    try:
        score = update_client_performance_score(db, client_id)
    except SQLAlchemyError:
        logger.exception("Failed to persist performance score for client %s", client_id)
        raise HTTPException(status_code=500, detail="Failed to update performance score")
    if score is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return ScoreUpdateOut(id=client_id, score=score)


@app.get("/api/clients/{client_id}/score-history", response_model=List[ScoreHistoryOut], tags=["Performance"])
def score_history(client_id: int, limit: int = Query(90, ge=1, le=365), db: Session = Depends(get_db)):
    """Score history rows, newest first (sparkline data)."""
    _get_client_or_404(db, client_id)
    return db.execute(
        select(ScoreHistory)
        .where(ScoreHistory.client_id == client_id)
        .order_by(ScoreHistory.recorded_at.desc(), ScoreHistory.id.desc())
        .limit(limit)
    ).scalars().all()


@app.get("/api/performance", response_model=DashboardOut, tags=["Performance"])
def performance_dashboard(
    stage: Optional[GrowthStage] = None,
    status: Optional[Literal["critical", "at_risk", "needs_attention", "healthy", "thriving"]] = None,
    plan: Optional[PlanType] = None,
    sort: Literal["score_desc", "score_asc", "name", "stage", "mrr_desc"] = "score_desc",
    critical_only: bool = False,
    db: Session = Depends(get_db),
) -> DashboardOut:
    """
    Dashboard over all active clients.

    The summary always covers every active client; the `clients` list is
    filtered by stage / status band / plan / critical_only and sorted.
    """
    filters = DashboardFilters(stage=stage, status=status, plan=plan, critical_only=critical_only, sort=sort)
    summary, rows = build_dashboard(db, filters)
    return DashboardOut(summary=summary, clients=[DashboardClientOut.from_result(r) for r in rows])


@app.post("/api/performance/refresh", response_model=RefreshOut, tags=["Performance"])
def refresh_all(db: Session = Depends(get_db)) -> RefreshOut:
    """Recompute and persist every active client's score (cron entrypoint)."""
    scores = refresh_all_scores(db)
    failed = [cid for cid, score in scores.items() if score is None]
    return RefreshOut(refreshed=len(scores) - len(failed), failed=failed)


@app.post("/api/clients/{client_id}/metrics", status_code=201, tags=["Ingest"])
def add_metric_snapshot(client_id: int, payload: MetricSnapshotIn, db: Session = Depends(get_db)) -> dict:
    """
    Ingest one metric snapshot for a client.

    Snapshots are immutable; re-ingesting a period adds a new row and the
    lookup picks the one with the latest period start.
    """
    _get_client_or_404(db, client_id)
    if payload.period_end < payload.period_start:
        raise HTTPException(status_code=422, detail="period_end must not be before period_start")

    snap = MetricSnapshot(
        client_id=client_id,
        metric_type=payload.metric_type,
        value=payload.value,
        period_start=payload.period_start,
        period_end=payload.period_end,
        created_at=datetime.utcnow(),
    )
    db.add(snap)
    db.commit()
    db.refresh(snap)

    return {"id": snap.id, "status": "created"}


@app.post("/api/performance/alerts", response_model=ClientAlertStatusOut, status_code=201, tags=["Alerts"])
def compose_alert(payload: ClientAlertIn, db: Session = Depends(get_db)):
    """
    Create a client alert as a draft, or publish it right away with `publish=true`.

    Publishing stamps `published_at` and logs an `alert_published` activity row.
    """
    alert = create_alert(db, payload.client_id, payload.message, payload.alert_type, payload.publish)
    if alert is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return alert


@app.get("/api/performance/alerts", response_model=List[ClientAlertOut], tags=["Alerts"])
def list_client_alerts(
    client_id: Optional[int] = None,
    status: Optional[Literal["draft", "published", "dismissed"]] = None,
    db: Session = Depends(get_db),
):
    """Latest 50 alerts, newest first, optionally filtered by client and status."""
    return [ClientAlertOut.from_alert(a) for a in list_alerts(db, client_id=client_id, status=status)]


def _get_alert_or_404(db: Session, alert_id: int):
    alert = get_alert(db, alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@app.get("/api/performance/alerts/{alert_id}", response_model=ClientAlertOut, tags=["Alerts"])
def read_alert(alert_id: int, db: Session = Depends(get_db)):
    return ClientAlertOut.from_alert(_get_alert_or_404(db, alert_id))


@app.put("/api/performance/alerts/{alert_id}", response_model=ClientAlertStatusOut, tags=["Alerts"])
def edit_alert(alert_id: int, payload: ClientAlertUpdate, db: Session = Depends(get_db)):
    """
    Edit a draft's message and/or publish it.

    Changing the message of a published alert is rejected with 400.
    """
    try:
        alert = update_alert(db, alert_id, message=payload.message, publish=payload.publish)
    except AlertEditError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@app.delete("/api/performance/alerts/{alert_id}", tags=["Alerts"])
def remove_alert(alert_id: int, db: Session = Depends(get_db)) -> dict:
    if not delete_alert(db, alert_id):
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"success": True}


@app.get("/", tags=["Meta"])
def root() -> dict:
    """
    Lightweight service check.
    """
    return {"message": "Client performance service is running"}
