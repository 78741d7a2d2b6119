# backend/services/performance.py
"""
Client performance: data access, persistence, batch refresh and dashboard.

Reads one client's snapshots, alerts and activity, turns them into a
`PerformanceInputs` and lets `scoring.compute_performance` do the math.

- `calculate_client_performance` is read-only (None when the client is missing).
- `update_client_performance_score` also writes the cached score/stage on the
  client and appends a score-history row, in one transaction.

A failure while looking up one metric snapshot does not abort the calculation:
the metric is treated as missing data and reported in `unavailable_metrics`.
Only that lookup's savepoint is rolled back.
Persistence failures are rolled back and re-raised.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import (
    ActivityLog,
    Client,
    ClientAlert,
    ClientCommunication,
    MetricSnapshot,
    ScoreHistory,
)
from .scoring import (
    METRIC_DEFINITIONS,
    AlertData,
    LineItem,
    PerformanceInputs,
    PerformanceResult,
    calculate_mrr,
    comparison_windows,
    compute_performance,
    infer_plan_type,
)
from .stages import GrowthStage
from .weights import DEFAULT_ALERT_TYPE, PlanType

logger = logging.getLogger(__name__)

# Snapshot lookup tolerance around a window start. Tuned for the fixed 30-day
# windows; scale it if the window length ever changes.
SNAPSHOT_TOLERANCE_BEFORE = timedelta(days=5)
SNAPSHOT_TOLERANCE_AFTER = timedelta(days=10)

RECENT_ALERT_DAYS = 30
IMPROVEMENT_WINDOW_DAYS = 365
IMPROVEMENT_ACTIVITY_TYPES = ("seo_ranking", "traffic_milestone", "lead_generated", "social_engagement")
HISTORY_MAX_AGE = timedelta(hours=24)

STATUS_BANDS: Dict[str, Tuple[int, int]] = {
    "critical": (0, 19),
    "at_risk": (20, 39),
    "needs_attention": (40, 59),
    "healthy": (60, 79),
    "thriving": (80, 100),
}
STAGE_ORDER = [GrowthStage.SEEDLING, GrowthStage.SPROUTING, GrowthStage.BLOOMING, GrowthStage.HARVESTING]


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------

def get_metric_value(db: Session, client_id: int, snapshot_type: str, period_start: datetime) -> Optional[float]:
    """
    Value of the snapshot whose period starts closest to (and at most 5 days
    before / 10 days after) `period_start`; latest period first. None if absent.
    """
    range_start = (period_start - SNAPSHOT_TOLERANCE_BEFORE).date()
    range_end = (period_start + SNAPSHOT_TOLERANCE_AFTER).date()
    value = db.execute(
        select(MetricSnapshot.value)
        .where(MetricSnapshot.client_id == client_id)
        .where(MetricSnapshot.metric_type == snapshot_type)
        .where(MetricSnapshot.period_start >= range_start)
        .where(MetricSnapshot.period_start <= range_end)
        .order_by(MetricSnapshot.period_start.desc(), MetricSnapshot.id.desc())
        .limit(1)
    ).scalar()
    return float(value) if value is not None else None


def get_recent_alerts(db: Session, client_id: int, now: datetime, days: int = RECENT_ALERT_DAYS) -> List[AlertData]:
    """Result alerts sent in the last `days`, grouped by alert type."""
    rows = db.execute(
        select(ClientCommunication.meta)
        .where(ClientCommunication.client_id == client_id)
        .where(ClientCommunication.comm_type == "result_alert")
        .where(ClientCommunication.created_at >= now - timedelta(days=days))
    ).scalars().all()

    counts: Dict[str, int] = {}
    for meta in rows:
        alert_type = (meta or {}).get("type") or DEFAULT_ALERT_TYPE
        counts[alert_type] = counts.get(alert_type, 0) + 1
    return [AlertData(type=t, count=c) for t, c in counts.items()]


def count_improvements(db: Session, client_id: int, now: datetime, days: int = IMPROVEMENT_WINDOW_DAYS) -> int:
    """Success result alerts + qualifying activity entries over the trailing window."""
    since = now - timedelta(days=days)
    alert_count = db.execute(
        select(func.count()).select_from(ClientCommunication)
        .where(ClientCommunication.client_id == client_id)
        .where(ClientCommunication.comm_type == "result_alert")
        .where(ClientCommunication.highlight_type == "success")
        .where(ClientCommunication.created_at >= since)
    ).scalar() or 0
    activity_count = db.execute(
        select(func.count()).select_from(ActivityLog)
        .where(ActivityLog.client_id == client_id)
        .where(ActivityLog.activity_type.in_(IMPROVEMENT_ACTIVITY_TYPES))
        .where(ActivityLog.created_at >= since)
    ).scalar() or 0
    return alert_count + activity_count


def get_last_alert_info(db: Session, client_id: int) -> Tuple[Optional[datetime], Optional[str]]:
    """Latest published client alert, falling back to the latest result-alert communication."""
    alert = db.execute(
        select(ClientAlert)
        .where(ClientAlert.client_id == client_id)
        .where(ClientAlert.status == "published")
        .where(ClientAlert.published_at.isnot(None))
        .order_by(ClientAlert.published_at.desc())
        .limit(1)
    ).scalar()
    if alert is not None:
        return alert.published_at, alert.alert_type

    comm = db.execute(
        select(ClientCommunication)
        .where(ClientCommunication.client_id == client_id)
        .where(ClientCommunication.comm_type == "result_alert")
        .order_by(ClientCommunication.created_at.desc())
        .limit(1)
    ).scalar()
    if comm is not None:
        return comm.created_at, (comm.meta or {}).get("type")

    return None, None


def _active_products(client: Client):
    for sub in client.subscriptions:
        if sub.status != "active":
            continue
        for item in sub.items:
            yield item.product
    for cp in client.client_products:
        yield cp.product


def infer_client_plan(client: Client) -> PlanType:
    return infer_plan_type(p.category for p in _active_products(client) if p is not None)


def client_mrr(client: Client) -> float:
    items = [
        LineItem(
            quantity=item.quantity,
            unit_amount=item.unit_amount,
            product_price=item.product.monthly_price if item.product is not None else None,
        )
        for sub in client.subscriptions
        if sub.status == "active"
        for item in sub.items
    ]
    return calculate_mrr(client.monthly_spend, items)


def gather_inputs(db: Session, client: Client, now: datetime) -> PerformanceInputs:
    """Fetch everything the scoring core needs for one client."""
    current_window, previous_window = comparison_windows(now)

    metric_values = {}
    unavailable = set()
    for definition in METRIC_DEFINITIONS:
        try:
            # savepoint: a failed lookup must not discard the caller's pending work
            with db.begin_nested():
                current = get_metric_value(db, client.id, definition.snapshot_type, current_window[0])
                previous = get_metric_value(db, client.id, definition.snapshot_type, previous_window[0])
        except SQLAlchemyError as exc:
            logger.warning(
                "Metric lookup failed for client %s (%s), scoring without it: %s",
                client.id, definition.snapshot_type, exc,
            )
            unavailable.add(definition.key)
            current = previous = None
        metric_values[definition.key] = (current, previous)

    last_alert_at, last_alert_type = get_last_alert_info(db, client.id)

    return PerformanceInputs(
        client_id=client.id,
        client_name=client.name,
        plan_type=infer_client_plan(client),
        start_date=client.start_date or client.created_at or now,
        stored_growth_stage=client.growth_stage,
        mrr=client_mrr(client),
        metric_values=metric_values,
        recent_alerts=get_recent_alerts(db, client.id, now),
        improvements_total=count_improvements(db, client.id, now),
        last_alert_at=last_alert_at,
        last_alert_type=last_alert_type,
        now=now,
        unavailable_metrics=unavailable,
    )


def calculate_client_performance(db: Session, client_id: int, now: Optional[datetime] = None) -> Optional[PerformanceResult]:
    """Compute the full performance analysis for a client; None if it does not exist. No writes."""
    client = db.get(Client, client_id)
    if client is None:
        return None
    now = now or datetime.utcnow()
    return compute_performance(gather_inputs(db, client, now))


# -----------------------------------------------------------------------------
# Writes
# -----------------------------------------------------------------------------

def should_record_history(last: Optional[ScoreHistory], score: int, now: datetime) -> bool:
    """A history row is written when there is none yet, the score changed, or the last one is older than 24h."""
    if last is None:
        return True
    if last.score != score:
        return True
    return last.recorded_at < now - HISTORY_MAX_AGE


def update_client_performance_score(db: Session, client_id: int, now: Optional[datetime] = None) -> Optional[int]:
    """
    Recompute the score, cache it on the client and append score history.

    Both writes are committed together. Prospects (by status or by stored
    stage) keep their stored stage; a valid stored stage is reused as-is, so
    it is never advanced here.
    Raises whatever the database raises on commit (after rolling back).
    """
    now = now or datetime.utcnow()
    result = calculate_client_performance(db, client_id, now)
    if result is None:
        return None

    client = db.get(Client, client_id)
    try:
        client.performance_score = result.score
        client.score_updated_at = now
        # prospects keep their stage until they buy
        if client.status != "prospect" and client.growth_stage != "prospect":
            client.growth_stage = result.growth_stage.value
            client.stage_updated_at = now

        last = db.execute(
            select(ScoreHistory)
            .where(ScoreHistory.client_id == client_id)
            .order_by(ScoreHistory.recorded_at.desc(), ScoreHistory.id.desc())
            .limit(1)
        ).scalar()
        if should_record_history(last, result.score, now):
            db.add(ScoreHistory(
                client_id=client_id,
                score=result.score,
                growth_stage=result.growth_stage.value,
                recorded_at=now,
            ))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Client %s scored %s (%s, %s)", client_id, result.score, result.growth_stage.value, result.plan_type.value)
    return result.score


def refresh_all_scores(db: Session, now: Optional[datetime] = None) -> Dict[int, Optional[int]]:
    """
    Batch/cron recompute for every active client. A failing client is logged
    and reported as None; the rest of the batch still runs.
    """
    now = now or datetime.utcnow()
    client_ids = db.execute(
        select(Client.id).where(Client.status == "active").order_by(Client.id)
    ).scalars().all()

    scores: Dict[int, Optional[int]] = {}
    for client_id in client_ids:
        try:
            scores[client_id] = update_client_performance_score(db, client_id, now)
        except SQLAlchemyError:
            logger.exception("Score refresh failed for client %s", client_id)
            scores[client_id] = None
    logger.info("Refreshed %d client scores", len(scores))
    return scores


# -----------------------------------------------------------------------------
# Dashboard
# -----------------------------------------------------------------------------

@dataclass
class DashboardFilters:
    stage: Optional[GrowthStage] = None
    status: Optional[str] = None  # key of STATUS_BANDS
    plan: Optional[PlanType] = None
    critical_only: bool = False
    sort: str = "score_desc"  # score_desc | score_asc | name | stage | mrr_desc


def _average(scores: List[int]) -> int:
    return int(sum(scores) / len(scores) + 0.5) if scores else 0


def summarize(results: List[PerformanceResult]) -> dict:
    by_stage = {}
    for stage in STAGE_ORDER:
        scores = [r.score for r in results if r.growth_stage == stage]
        by_stage[stage.value] = {"count": len(scores), "avg_score": _average(scores)}

    return {
        "total_clients": len(results),
        "average_score": _average([r.score for r in results]),
        "by_stage": by_stage,
        "needs_attention": sum(1 for r in results if 40 <= r.score < 60),
        "upsell_ready": sum(
            1 for r in results
            if r.score >= 80 and r.growth_stage in (GrowthStage.HARVESTING, GrowthStage.SPROUTING)
        ),
    }


def filter_and_sort(results: Iterable[PerformanceResult], filters: DashboardFilters) -> List[PerformanceResult]:
    rows = list(results)
    if filters.stage is not None:
        rows = [r for r in rows if r.growth_stage == filters.stage]
    if filters.status:
        lo, hi = STATUS_BANDS.get(filters.status, (0, 100))
        rows = [r for r in rows if lo <= r.score <= hi]
    if filters.plan is not None:
        rows = [r for r in rows if r.plan_type == filters.plan]
    if filters.critical_only:
        rows = [r for r in rows if r.score < 40]

    if filters.sort == "score_asc":
        rows.sort(key=lambda r: r.score)
    elif filters.sort == "name":
        rows.sort(key=lambda r: r.client_name.lower())
    elif filters.sort == "stage":
        rows.sort(key=lambda r: STAGE_ORDER.index(r.growth_stage))
    elif filters.sort == "mrr_desc":
        rows.sort(key=lambda r: r.mrr, reverse=True)
    else:
        rows.sort(key=lambda r: r.score, reverse=True)
    return rows


def build_dashboard(db: Session, filters: DashboardFilters, now: Optional[datetime] = None) -> Tuple[dict, List[PerformanceResult]]:
    """Compute every active client's performance; summary over all of them, rows filtered and sorted."""
    now = now or datetime.utcnow()
    client_ids = db.execute(select(Client.id).where(Client.status == "active")).scalars().all()
    results = [r for r in (calculate_client_performance(db, cid, now) for cid in client_ids) if r is not None]
    return summarize(results), filter_and_sort(results, filters)
