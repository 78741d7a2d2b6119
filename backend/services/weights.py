# backend/services/weights.py
"""
Plan-based metric weights.

Each service plan prioritizes different metrics; every plan table sums to 100.
When a metric has no data for a client its weight is redistributed over the
metrics that remain, so the weights always sum to 100 again.

The alert-type weights are a separate table used only by the alerts score.
"""

from enum import Enum
from typing import Dict, Iterable


class MetricType(str, Enum):
    KEYWORDS = "keywords"
    VISITORS = "visitors"
    LEADS = "leads"
    AI_VISIBILITY = "ai_visibility"
    CONVERSIONS = "conversions"
    ALERTS = "alerts"


class PlanType(str, Enum):
    SEO = "seo"
    PAID_MEDIA = "paid_media"
    AI_OPTIMIZATION = "ai_optimization"
    FULL_SERVICE = "full_service"


MetricWeights = Dict[MetricType, float]

PLAN_WEIGHTS: Dict[PlanType, MetricWeights] = {
    PlanType.SEO: {
        MetricType.KEYWORDS: 30,
        MetricType.VISITORS: 20,
        MetricType.LEADS: 15,
        MetricType.AI_VISIBILITY: 5,
        MetricType.CONVERSIONS: 10,
        MetricType.ALERTS: 20,
    },
    PlanType.PAID_MEDIA: {
        MetricType.KEYWORDS: 10,
        MetricType.VISITORS: 15,
        MetricType.LEADS: 40,
        MetricType.AI_VISIBILITY: 5,
        MetricType.CONVERSIONS: 15,
        MetricType.ALERTS: 15,
    },
    PlanType.AI_OPTIMIZATION: {
        MetricType.KEYWORDS: 10,
        MetricType.VISITORS: 15,
        MetricType.LEADS: 15,
        MetricType.AI_VISIBILITY: 35,
        MetricType.CONVERSIONS: 10,
        MetricType.ALERTS: 15,
    },
    PlanType.FULL_SERVICE: {
        MetricType.KEYWORDS: 20,
        MetricType.VISITORS: 15,
        MetricType.LEADS: 20,
        MetricType.AI_VISIBILITY: 15,
        MetricType.CONVERSIONS: 15,
        MetricType.ALERTS: 15,
    },
}

# Higher weight = more impactful alert type. "other_update" is the fallback bucket.
ALERT_TYPE_WEIGHTS: Dict[str, float] = {
    "lead_increase": 15,
    "ai_alert": 12.5,
    "keyword_ranking": 10,
    "traffic_milestone": 10,
    "campaign_milestone": 7.5,
    "other_update": 5,
}
DEFAULT_ALERT_TYPE = "other_update"


def normalize_plan_type(value) -> PlanType:
    """
    Parse a plan name into a PlanType.

    "Paid Media", "paid-media" and "PAID_MEDIA" all map to PlanType.PAID_MEDIA.
    Anything unrecognized falls back to full_service.
    """
    if isinstance(value, PlanType):
        return value
    key = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return PlanType(key)
    except ValueError:
        return PlanType.FULL_SERVICE


def get_weights_for_plan(plan_type) -> MetricWeights:
    """Return a copy of the weight table for a plan (full_service when unknown)."""
    return dict(PLAN_WEIGHTS[normalize_plan_type(plan_type)])


def redistribute_weights(weights: MetricWeights, excluded_metrics: Iterable[MetricType]) -> MetricWeights:
    """
    Drop `excluded_metrics` and scale the remaining weights back up to 100.

    Example (seo plan without ai_visibility): every remaining weight is
    multiplied by 100 / 95.

    If the excluded metrics carry all of the weight, the remaining metrics
    share it equally. An empty mapping is returned only when nothing remains.
    """
    excluded = set(excluded_metrics)
    active = [m for m in weights if m not in excluded]
    if not active:
        return {}

    active_weight = sum(weights[m] for m in active)

    if active_weight <= 0:
        equal = 100.0 / len(active)
        return {m: equal for m in active}

    scale = 100.0 / active_weight
    return {m: weights[m] * scale for m in active}
