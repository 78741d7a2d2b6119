# backend/services/scoring.py
"""
Performance score calculation (pure core).

Metric deltas (current 30d vs previous 30d) -> 0..100 points -> plan-weighted
base score -> velocity modifier -> final score (0..100 int), plus stage,
status, flags, red flags and recommendations.

Nothing in this module touches the database. `performance.py` gathers a
`PerformanceInputs` for one client and hands it to `compute_performance`.

Points:
- 50 = no change, +1% = +1 point, clamped to 0..100.
- Keyword position is inverted (a lower position is an improvement).
- A metric with no snapshot in either window is excluded, not scored as 0,
  and its weight is redistributed over the remaining metrics.
- Alerts are always scored (0 when none were sent).
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .stages import (
    GrowthStage,
    StageFlag,
    days_since,
    get_evaluation_label,
    get_growth_stage,
    get_score_status,
    get_stage_config,
    get_stage_flags,
    is_above_expectation,
    is_below_expectation,
    parse_growth_stage,
)
from .velocity import VelocityResult, calculate_velocity_result
from .weights import (
    ALERT_TYPE_WEIGHTS,
    DEFAULT_ALERT_TYPE,
    MetricType,
    MetricWeights,
    PlanType,
    get_weights_for_plan,
    normalize_plan_type,
    redistribute_weights,
)

WINDOW_DAYS = 30
NEW_SIGNAL_DELTA = 25.0  # delta used when the previous value is 0 and the current one is positive

AI_CATEGORY_TOKEN = "ai"
_CATEGORY_SPLIT = re.compile(r"[^a-z0-9]+")
SEO_CATEGORIES = {"root", "growth"}


@dataclass(frozen=True)
class MetricDefinition:
    key: MetricType
    snapshot_type: str  # metric_snapshots.metric_type
    invert: bool


METRIC_DEFINITIONS: List[MetricDefinition] = [
    MetricDefinition(MetricType.KEYWORDS, "keyword_avg_position", True),
    MetricDefinition(MetricType.VISITORS, "visitors", False),
    MetricDefinition(MetricType.LEADS, "leads", False),
    MetricDefinition(MetricType.AI_VISIBILITY, "ai_visibility", False),
    MetricDefinition(MetricType.CONVERSIONS, "conversions", False),
]


@dataclass
class MetricScore:
    current: float
    previous: float
    delta: float
    score: int
    weight: float
    contribution: float


@dataclass
class AlertData:
    type: str
    count: int = 1


@dataclass
class LineItem:
    """Subscription line item: `unit_amount` in minor units, `product_price` in major units."""
    quantity: Optional[int] = 1
    unit_amount: Optional[float] = None
    product_price: Optional[float] = None


# (current, previous); None means "no snapshot", which is not the same as 0
MetricValues = Tuple[Optional[float], Optional[float]]


@dataclass
class PerformanceInputs:
    client_id: int
    client_name: str
    plan_type: PlanType
    start_date: datetime
    stored_growth_stage: Optional[str]
    mrr: float
    metric_values: Dict[MetricType, MetricValues]
    recent_alerts: List[AlertData]
    improvements_total: int
    last_alert_at: Optional[datetime]
    last_alert_type: Optional[str]
    now: datetime
    unavailable_metrics: Set[MetricType] = field(default_factory=set)


@dataclass
class PerformanceResult:
    client_id: int
    client_name: str
    score: int
    growth_stage: GrowthStage
    stage_label: str
    stage_icon: str
    expected_score_range: Tuple[int, int]
    score_gap: float
    below_expectation: bool
    above_expectation: bool
    status: str
    status_color: str
    evaluation_label: str
    plan_type: PlanType
    tenure_months: int
    mrr: float
    metrics: Dict[MetricType, MetricScore]
    excluded_metrics: List[MetricType]
    unavailable_metrics: List[MetricType]
    velocity: VelocityResult
    base_score: float
    velocity_modifier: float
    final_score: int
    flags: List[StageFlag]
    last_alert_at: Optional[datetime]
    last_alert_type: Optional[str]
    red_flags: List[str]
    recommendations: List[str]
    current_period: Tuple[date, date]


def _round_half_up(x: float) -> int:
    # round() is banker's rounding; scores round .5 up
    return int(math.floor(x + 0.5))


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return lo if x < lo else hi if x > hi else x


def comparison_windows(now: datetime) -> Tuple[Tuple[datetime, datetime], Tuple[datetime, datetime]]:
    """Current [now-30d, now] and previous [now-60d, now-31d] windows."""
    current = (now - timedelta(days=WINDOW_DAYS), now)
    previous = (now - timedelta(days=2 * WINDOW_DAYS), now - timedelta(days=WINDOW_DAYS + 1))
    return current, previous


def calculate_delta(current: float, previous: float, invert: bool = False) -> float:
    """
    Percentage change from `previous` to `current`.

    previous == 0 cannot be divided by: a positive current value counts as a
    new signal (+25), anything else as no change. `invert` flips the sign for
    lower-is-better metrics such as keyword position.
    """
    if previous == 0:
        return NEW_SIGNAL_DELTA if current > 0 else 0.0

    delta = (current - previous) / previous * 100.0
    return -delta if invert else delta


def delta_to_points(delta: float) -> int:
    if not math.isfinite(delta):
        return 50
    return int(_clamp(_round_half_up(50 + delta)))


def calculate_alerts_score(alerts: Optional[Iterable[AlertData]]) -> int:
    """
    Weighted alert points x 2, capped at 100 (50 weighted points = perfect score).
    Unknown alert types use the "other_update" weight.
    """
    if not alerts:
        return 0
    total = 0.0
    for alert in alerts:
        weight = ALERT_TYPE_WEIGHTS.get(alert.type, ALERT_TYPE_WEIGHTS[DEFAULT_ALERT_TYPE])
        total += weight * (alert.count or 1)
    return min(100, _round_half_up(total * 2))


def calculate_base_score(metric_scores: Dict[MetricType, MetricScore], weights: MetricWeights) -> float:
    """Weighted average of metric scores; renormalized when the weights present do not sum to 100."""
    total_score = 0.0
    total_weight = 0.0
    for metric, weight in weights.items():
        data = metric_scores.get(metric)
        if data is not None and weight:
            total_score += data.score * (weight / 100.0)
            total_weight += weight

    if total_weight > 0 and total_weight != 100:
        total_score = total_score / total_weight * 100.0
    return total_score


def calculate_final_score(base_score: float, velocity_modifier: float) -> int:
    return int(_clamp(_round_half_up(base_score * velocity_modifier)))


def infer_plan_type(categories: Iterable[Optional[str]]) -> PlanType:
    """
    Infer the plan from the product categories a client pays for.

    A category is AI when one of its words is "ai" ("AI Visibility",
    "ai-optimization"), not when the letters merely appear ("Email Marketing").
    AI-category products alone -> ai_optimization, root/growth alone -> seo,
    both or neither -> full_service.
    """
    has_ai = False
    has_seo = False
    for category in categories:
        normalized = (category or "").strip().lower()
        if AI_CATEGORY_TOKEN in _CATEGORY_SPLIT.split(normalized):
            has_ai = True
        if normalized in SEO_CATEGORIES:
            has_seo = True

    if has_ai and not has_seo:
        return PlanType.AI_OPTIMIZATION
    if has_seo and not has_ai:
        return PlanType.SEO
    return PlanType.FULL_SERVICE


def calculate_mrr(monthly_spend: Optional[float], items: Iterable[LineItem]) -> float:
    """
    Monthly recurring revenue in major units.

    A positive stored monthly spend wins. Otherwise sum quantity x unit price
    over active line items, where the billing unit amount (minor units) is
    preferred over the product's list price.
    """
    if monthly_spend is not None and float(monthly_spend) > 0:
        return float(monthly_spend)

    mrr = 0.0
    for item in items:
        quantity = item.quantity or 1
        if item.unit_amount:
            unit = float(item.unit_amount) / 100.0
        elif item.product_price:
            unit = float(item.product_price)
        else:
            unit = 0.0
        mrr += unit * quantity
    return mrr


def _metric_label(metric: MetricType) -> str:
    return metric.value.replace("_", " ")


def generate_red_flags(
    metrics: Dict[MetricType, MetricScore],
    last_alert_at: Optional[datetime],
    velocity: VelocityResult,
    now: datetime,
) -> List[str]:
    flags: List[str] = []

    if last_alert_at is not None:
        since = days_since(last_alert_at, now)
        if since > 30:
            flags.append(f"No result alerts sent in {since} days")
    else:
        flags.append("No result alerts ever sent")

    for metric, data in metrics.items():
        if data.delta < -20:
            flags.append(f"{_metric_label(metric)} down {abs(_round_half_up(data.delta))}% this period")

    if not velocity.is_in_ramp_period and velocity.ratio < 0.5:
        flags.append("Account velocity significantly below expectations")

    return flags


def generate_recommendations(
    score: int,
    stage: GrowthStage,
    metrics: Dict[MetricType, MetricScore],
    last_alert_at: Optional[datetime],
    now: datetime,
) -> List[str]:
    recommendations: List[str] = []

    if score < 40:
        recommendations.append("Schedule strategy review meeting")
        recommendations.append("Consider publishing intervention alert")

    since_alert = days_since(last_alert_at, now) if last_alert_at is not None else math.inf
    if since_alert > 14:
        recommendations.append("Send a result alert to re-engage")

    keywords = metrics.get(MetricType.KEYWORDS)
    if keywords is not None and keywords.delta < -10:
        recommendations.append("Review keyword strategy")

    visitors = metrics.get(MetricType.VISITORS)
    if visitors is not None and visitors.delta < -15:
        recommendations.append("Investigate traffic decline")

    if score >= 80 and stage == GrowthStage.HARVESTING:
        recommendations.append("Consider for case study")
        recommendations.append("Explore upsell opportunities")

    return recommendations


def score_metrics(
    metric_values: Dict[MetricType, MetricValues],
    weights: MetricWeights,
) -> Tuple[Dict[MetricType, MetricScore], List[MetricType]]:
    """Score every data metric; metrics with no value on either side are returned as excluded."""
    metrics: Dict[MetricType, MetricScore] = {}
    excluded: List[MetricType] = []

    for definition in METRIC_DEFINITIONS:
        current, previous = metric_values.get(definition.key, (None, None))
        if current is None and previous is None:
            excluded.append(definition.key)
            continue

        current_val = current if current is not None else 0.0
        previous_val = previous if previous is not None else 0.0
        delta = calculate_delta(current_val, previous_val, definition.invert)
        points = delta_to_points(delta)
        weight = weights[definition.key]
        metrics[definition.key] = MetricScore(
            current=current_val,
            previous=previous_val,
            delta=delta,
            score=points,
            weight=weight,
            contribution=points * weight / 100.0,
        )

    return metrics, excluded


def compute_performance(inputs: PerformanceInputs) -> PerformanceResult:
    """Run the full scoring pipeline on already-fetched inputs."""
    now = inputs.now
    plan = normalize_plan_type(inputs.plan_type)
    weights = get_weights_for_plan(plan)

    metrics, excluded = score_metrics(inputs.metric_values, weights)

    alerts_score = calculate_alerts_score(inputs.recent_alerts)
    metrics[MetricType.ALERTS] = MetricScore(
        current=float(sum(a.count or 1 for a in inputs.recent_alerts)),
        previous=0.0,
        delta=0.0,
        score=alerts_score,
        weight=weights[MetricType.ALERTS],
        contribution=alerts_score * weights[MetricType.ALERTS] / 100.0,
    )

    adjusted = redistribute_weights(weights, excluded) if excluded else weights
    for metric, data in metrics.items():
        weight = adjusted.get(metric)
        if weight:
            data.weight = weight
            data.contribution = data.score * weight / 100.0

    base_score = calculate_base_score(metrics, adjusted)

    velocity = calculate_velocity_result(inputs.improvements_total, inputs.start_date, plan, now)
    final_score = calculate_final_score(base_score, velocity.modifier)

    stage = parse_growth_stage(inputs.stored_growth_stage) or get_growth_stage(inputs.start_date, now)
    stage_config = get_stage_config(stage)
    status = get_score_status(final_score)
    low, high = stage_config.expected_score_range

    data_metrics = {m: s for m, s in metrics.items() if m != MetricType.ALERTS}
    current_window, _ = comparison_windows(now)

    return PerformanceResult(
        client_id=inputs.client_id,
        client_name=inputs.client_name,
        score=final_score,
        growth_stage=stage,
        stage_label=stage_config.label,
        stage_icon=stage_config.icon,
        expected_score_range=stage_config.expected_score_range,
        score_gap=final_score - (low + high) / 2.0,
        below_expectation=is_below_expectation(final_score, stage),
        above_expectation=is_above_expectation(final_score, stage),
        status=status.status,
        status_color=status.hex,
        evaluation_label=get_evaluation_label(final_score, stage),
        plan_type=plan,
        tenure_months=velocity.months_active,
        mrr=inputs.mrr,
        metrics=metrics,
        excluded_metrics=excluded,
        unavailable_metrics=sorted(inputs.unavailable_metrics, key=lambda m: m.value),
        velocity=velocity,
        base_score=base_score,
        velocity_modifier=velocity.modifier,
        final_score=final_score,
        flags=get_stage_flags(final_score, stage),
        last_alert_at=inputs.last_alert_at,
        last_alert_type=inputs.last_alert_type,
        red_flags=generate_red_flags(data_metrics, inputs.last_alert_at, velocity, now),
        recommendations=generate_recommendations(final_score, stage, data_metrics, inputs.last_alert_at, now),
        current_period=(current_window[0].date(), current_window[1].date()),
    )
