# db/seed.py
"""
Populate the development DB with *realistic & correlated* agency clients so
performance scores spread across thriving / healthy / at-risk / critical.

What gets generated:
- A small product catalog (root / growth SEO tiers, AI visibility, content, paid media)
- Plan-aware personas (seo / ai_optimization / full_service × trajectory)
- Tenure spread over all growth stages (seedling .. harvesting)
- Monthly metric snapshots going back 6 periods, with an explicit trend
  between the previous and the current 30-day window
- Result alerts, improvement activity and published client alerts sized by persona
"""

import argparse
import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, List, Tuple

# --- Add project root to sys.path so we can import the models & DB session ---
import sys
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from backend.db import Base, engine, SessionLocal
from backend.models import (
    ActivityLog,
    Client,
    ClientAlert,
    ClientCommunication,
    MetricSnapshot,
    Product,
    Subscription,
    SubscriptionItem,
)
from backend.services.performance import IMPROVEMENT_ACTIVITY_TYPES, refresh_all_scores
from backend.services.weights import ALERT_TYPE_WEIGHTS

try:
    from faker import Faker
except ImportError:
    raise SystemExit("Install Faker: pip install faker")

fake = Faker()

PERIODS = 6  # monthly snapshots per metric, newest = current window
PERIOD_DAYS = 30

# name, category, monthly list price
CATALOG: List[Tuple[str, str, float]] = [
    ("Root SEO", "root", 1500.0),
    ("Growth SEO", "growth", 2500.0),
    ("AI Visibility", "ai", 1200.0),
    ("Content Engine", "cultivation", 900.0),
    ("Paid Media Management", "bundle", 2000.0),
]

# Which catalog categories each plan subscribes to (plan is inferred back from these)
PLAN_BUNDLES: Dict[str, List[str]] = {
    "seo": ["root", "cultivation"],
    "ai_optimization": ["ai"],
    "full_service": ["growth", "ai", "cultivation", "bundle"],
}


# ----------------------------
# Persona model (domain-driven)
# ----------------------------
@dataclass(frozen=True)
class Persona:
    trend_ratio:        Tuple[float, float]  # current / previous for "higher is better" metrics
    keyword_trend:      Tuple[float, float]  # current / previous avg position (lower is better)
    alerts_30:          Tuple[int, int]      # result alerts sent in the last 30 days
    improvements_month: Tuple[int, int]      # success alerts + improvement activity per month
    gap_prob:           float                # chance a metric has no snapshots at all


PERSONAS = {
    "thriving":   Persona((1.15, 1.45), (0.70, 0.90), (2, 4), (4, 7), 0.05),
    "steady":     Persona((0.95, 1.15), (0.90, 1.05), (1, 2), (2, 4), 0.10),
    "struggling": Persona((0.60, 0.95), (1.05, 1.40), (0, 1), (0, 1), 0.25),
}
PERSONA_WEIGHTS = [0.35, 0.45, 0.20]  # thriving, steady, struggling

# Baseline monthly values for the previous window
BASELINES: Dict[str, Tuple[float, float]] = {
    "keyword_avg_position": (8.0, 40.0),
    "visitors": (800.0, 20000.0),
    "leads": (10.0, 250.0),
    "ai_visibility": (5.0, 60.0),
    "conversions": (2.0, 80.0),
}


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed the portal DB with realistic CORRELATED client data.")
    p.add_argument("--clients", type=int, default=40)
    p.add_argument("--reset", action="store_true")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--no-scores", action="store_true", help="skip the initial score computation")
    return p.parse_args()

def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

def ensure_tables() -> None:
    Base.metadata.create_all(bind=engine)

def rnd_dt_in_day(day: datetime) -> datetime:
    return day.replace(
        hour=random.randint(7, 21), minute=random.randint(0, 59), second=random.randint(0, 59)
    )

def _sample_int(lo_hi: Tuple[int, int]) -> int:
    lo, hi = lo_hi
    return random.randint(lo, hi)

def _sample_float(lo_hi: Tuple[float, float]) -> float:
    lo, hi = lo_hi
    return random.uniform(lo, hi)

def seed_catalog(session) -> Dict[str, Product]:
    products = {cat: Product(name=name, category=cat, monthly_price=price) for name, cat, price in CATALOG}
    session.add_all(products.values())
    session.commit()
    return products

def new_client(products: Dict[str, Product], now: datetime) -> Tuple[Client, str]:
    plan = random.choices(list(PLAN_BUNDLES), weights=[0.4, 0.25, 0.35], k=1)[0]
    # tenure spread across every growth stage
    tenure = random.choice([random.randint(15, 89), random.randint(90, 179),
                            random.randint(180, 364), random.randint(365, 900)])
    started = now - timedelta(days=tenure)
    client = Client(
        name=fake.company(),
        status=random.choices(["active", "prospect", "paused"], weights=[0.85, 0.1, 0.05], k=1)[0],
        created_at=started,
        start_date=started.date(),
    )
    sub = Subscription(status="active")
    for cat in PLAN_BUNDLES[plan]:
        product = products[cat]
        # some items carry a negotiated price in cents, others use the list price
        unit_amount = int(product.monthly_price * random.uniform(0.8, 1.0) * 100) if random.random() < 0.5 else None
        sub.items.append(SubscriptionItem(product=product, quantity=1, unit_amount=unit_amount))
    client.subscriptions.append(sub)
    return client, plan

def choose_persona() -> Tuple[str, Persona]:
    label = random.choices(list(PERSONAS), weights=PERSONA_WEIGHTS, k=1)[0]
    return label, PERSONAS[label]

def seed_snapshots(session, client: Client, persona: Persona, now: datetime) -> None:
    """
    Monthly snapshots per metric. Periods older than the previous window drift
    gently; the previous -> current step uses the persona's trend ratio.
    """
    rows: List[MetricSnapshot] = []
    for metric_type, base_range in BASELINES.items():
        if random.random() < persona.gap_prob:
            continue
        value = _sample_float(base_range)
        ratio = _sample_float(persona.keyword_trend if metric_type == "keyword_avg_position" else persona.trend_ratio)

        for period in range(PERIODS, 0, -1):
            start: date = (now - timedelta(days=PERIOD_DAYS * period)).date()
            if start < client.start_date:
                continue
            if period == 1:
                value = value * ratio
            elif period > 2:
                value = value * random.uniform(0.95, 1.05)
            rows.append(MetricSnapshot(
                client_id=client.id,
                metric_type=metric_type,
                value=round(value, 1) if metric_type == "keyword_avg_position" else float(int(value)),
                period_start=start,
                period_end=start + timedelta(days=PERIOD_DAYS - 1),
                created_at=now,
            ))
    if rows:
        session.bulk_save_objects(rows)
        session.commit()

def seed_alerts_and_activity(session, client: Client, persona: Persona, now: datetime) -> None:
    """
    Result alerts in the last 30 days, plus a year of improvement signals
    (success alerts and activity entries) at the persona's monthly rate.
    """
    alert_types = list(ALERT_TYPE_WEIGHTS)
    tenure_days = max(1, (now.date() - client.start_date).days)
    comms: List[ClientCommunication] = []
    activity: List[ActivityLog] = []

    for _ in range(_sample_int(persona.alerts_30)):
        day = now - timedelta(days=random.randint(0, min(29, tenure_days)))
        comms.append(ClientCommunication(
            client_id=client.id,
            comm_type="result_alert",
            highlight_type=random.choice(["success", "info"]),
            meta={"type": random.choice(alert_types)},
            created_at=rnd_dt_in_day(day),
        ))

    months = min(12, tenure_days // PERIOD_DAYS + 1)
    for m in range(months):
        for _ in range(_sample_int(persona.improvements_month)):
            day = now - timedelta(days=m * PERIOD_DAYS + random.randint(0, PERIOD_DAYS - 1))
            if random.random() < 0.3:
                comms.append(ClientCommunication(
                    client_id=client.id,
                    comm_type="result_alert",
                    highlight_type="success",
                    meta={"type": random.choice(alert_types)},
                    created_at=rnd_dt_in_day(day),
                ))
            else:
                activity.append(ActivityLog(
                    client_id=client.id,
                    activity_type=random.choice(IMPROVEMENT_ACTIVITY_TYPES),
                    created_at=rnd_dt_in_day(day),
                ))

    # routine noise that does not count as improvement
    for _ in range(random.randint(2, 8)):
        day = now - timedelta(days=random.randint(0, 120))
        activity.append(ActivityLog(
            client_id=client.id,
            activity_type=random.choice(["invoice_paid", "login", "report_viewed"]),
            created_at=rnd_dt_in_day(day),
        ))

    if comms:
        session.bulk_save_objects(comms)
    if activity:
        session.bulk_save_objects(activity)
    session.commit()

def seed_client_alerts(session, client: Client, persona: Persona, now: datetime) -> None:
    """A couple of published / draft portal alerts; struggling clients often have none recently."""
    rows: List[ClientAlert] = []
    for _ in range(random.randint(0, 3)):
        age = random.randint(1, 20) if persona is not PERSONAS["struggling"] else random.randint(20, 90)
        published = now - timedelta(days=age)
        status = random.choices(["published", "draft"], weights=[0.8, 0.2], k=1)[0]
        rows.append(ClientAlert(
            client_id=client.id,
            alert_type=random.choice(["performance_focus", "general_update", "milestone", "intervention"]),
            message=fake.sentence(nb_words=10),
            status=status,
            published_at=rnd_dt_in_day(published) if status == "published" else None,
            created_at=rnd_dt_in_day(published),
        ))
    if rows:
        session.bulk_save_objects(rows)
        session.commit()

def main() -> None:
    args = parse_args()
    if args.seed is not None:
        random.seed(args.seed); Faker.seed(args.seed)

    if args.reset:
        print("⚠️  Dropping & recreating tables ..."); reset_db()
    else:
        ensure_tables()

    session = SessionLocal()

    existing = session.query(Client).count()
    if existing > 0 and not args.reset:
        print(f"DB already has {existing} clients; use --reset to reseed.")
        session.close(); return

    now = datetime.utcnow()
    products = seed_catalog(session)

    target = max(10, int(args.clients))
    print(f"Creating {target} clients with plan-aware personas...")
    plans: Dict[str, int] = {}
    for _ in range(target):
        client, plan = new_client(products, now)
        session.add(client)
        session.commit()
        plans[plan] = plans.get(plan, 0) + 1

        label, persona = choose_persona()
        seed_snapshots(session, client, persona, now)
        seed_alerts_and_activity(session, client, persona, now)
        seed_client_alerts(session, client, persona, now)

    if not args.no_scores:
        print("Computing initial performance scores...")
        scores = refresh_all_scores(session, now)
        failed = sum(1 for s in scores.values() if s is None)
        print(f"Scored {len(scores) - failed} active clients ({failed} failed)")

    # Summary
    snaps = session.query(MetricSnapshot).count()
    comms = session.query(ClientCommunication).count()
    acts  = session.query(ActivityLog).count()
    print("\n✅ Seed complete")
    print(f"Clients:         {target} ({', '.join(f'{p}={n}' for p, n in sorted(plans.items()))})")
    print(f"Snapshots:       {snaps}")
    print(f"Communications:  {comms}")
    print(f"Activity:        {acts}")
    session.close()

if __name__ == "__main__":
    main()
