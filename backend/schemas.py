"""
Pydantic schemas for API input/output.

These classes define how data is serialized/deserialized between the API
and clients. They are used in FastAPI route definitions as response models
or request bodies.

Schemas:
- ClientOut: lightweight client record with cached score fields.
- PerformanceOut: full performance breakdown for a single client.
- DashboardOut: summary + per-client rows for the performance dashboard.
- ScoreHistoryOut / ScoreUpdateOut / RefreshOut: persistence results.
- MetricSnapshotIn: request body for ingesting a metric snapshot.
- ClientAlertIn / ClientAlertUpdate / ClientAlertOut: the alert composer.
"""

from dataclasses import asdict
from datetime import date, datetime
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .models import ClientAlert
from .services.scoring import PerformanceResult
from .services.stages import GrowthStage
from .services.weights import MetricType, PlanType


class ClientOut(BaseModel):
    """Public client view for GET /api/clients."""
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    status: str
    performance_score: Optional[int] = None
    growth_stage: Optional[str] = None
    score_updated_at: Optional[datetime] = None


class MetricScoreOut(BaseModel):
    current: float
    previous: float
    delta: float
    score: int
    weight: float
    contribution: float


class VelocityOut(BaseModel):
    improvements_total: int
    months_active: int
    velocity: float
    expected: float
    ratio: float
    modifier: float
    is_in_ramp_period: bool
    plan_type: PlanType


class CalculationOut(BaseModel):
    base_score: float
    velocity_modifier: float
    final_score: int


class AlertHistoryOut(BaseModel):
    id: int
    type: str
    message: Optional[str] = None
    sent_at: datetime

    @classmethod
    def from_alert(cls, a: ClientAlert) -> "AlertHistoryOut":
        return cls(id=a.id, type=a.alert_type, message=a.message, sent_at=a.published_at or a.created_at)


class StageFlagOut(BaseModel):
    flag: str
    icon: str
    action: str
    priority: str


class PeriodOut(BaseModel):
    start: date
    end: date


class PerformanceOut(BaseModel):
    """Detailed breakdown returned by GET /api/clients/{id}/performance."""
    id: int
    name: str
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
    current_period: PeriodOut
    metrics: Dict[MetricType, MetricScoreOut]
    excluded_metrics: List[MetricType]
    unavailable_metrics: List[MetricType]
    velocity: VelocityOut
    calculation: CalculationOut
    flags: List[StageFlagOut]
    last_alert_at: Optional[datetime] = None
    last_alert_type: Optional[str] = None
    red_flags: List[str]
    recommendations: List[str]
    alerts_history: List[AlertHistoryOut] = []

    @classmethod
    def from_result(cls, r: PerformanceResult, alerts_history: Optional[List[ClientAlert]] = None) -> "PerformanceOut":
        return cls(
            id=r.client_id,
            name=r.client_name,
            score=r.score,
            growth_stage=r.growth_stage,
            stage_label=r.stage_label,
            stage_icon=r.stage_icon,
            expected_score_range=r.expected_score_range,
            score_gap=r.score_gap,
            below_expectation=r.below_expectation,
            above_expectation=r.above_expectation,
            status=r.status,
            status_color=r.status_color,
            evaluation_label=r.evaluation_label,
            plan_type=r.plan_type,
            tenure_months=r.tenure_months,
            mrr=r.mrr,
            current_period=PeriodOut(start=r.current_period[0], end=r.current_period[1]),
            metrics={k: MetricScoreOut(**asdict(v)) for k, v in r.metrics.items()},
            excluded_metrics=r.excluded_metrics,
            unavailable_metrics=r.unavailable_metrics,
            velocity=VelocityOut(**asdict(r.velocity)),
            calculation=CalculationOut(
                base_score=r.base_score,
                velocity_modifier=r.velocity_modifier,
                final_score=r.final_score,
            ),
            flags=[StageFlagOut(**asdict(f)) for f in r.flags],
            last_alert_at=r.last_alert_at,
            last_alert_type=r.last_alert_type,
            red_flags=r.red_flags,
            recommendations=r.recommendations,
            alerts_history=[AlertHistoryOut.from_alert(a) for a in alerts_history or []],
        )


class StageSummaryOut(BaseModel):
    count: int
    avg_score: int


class DashboardSummaryOut(BaseModel):
    total_clients: int
    average_score: int
    by_stage: Dict[GrowthStage, StageSummaryOut]
    needs_attention: int
    upsell_ready: int


class DashboardClientOut(BaseModel):
    id: int
    name: str
    score: int
    growth_stage: GrowthStage
    status: str
    plan_type: PlanType
    mrr: float
    tenure_months: int
    metrics: Dict[MetricType, MetricScoreOut]
    velocity_modifier: float
    last_alert_at: Optional[datetime] = None
    flags: List[str]

    @classmethod
    def from_result(cls, r: PerformanceResult) -> "DashboardClientOut":
        return cls(
            id=r.client_id,
            name=r.client_name,
            score=r.score,
            growth_stage=r.growth_stage,
            status=r.status,
            plan_type=r.plan_type,
            mrr=r.mrr,
            tenure_months=r.tenure_months,
            metrics={k: MetricScoreOut(**asdict(v)) for k, v in r.metrics.items()},
            velocity_modifier=r.velocity_modifier,
            last_alert_at=r.last_alert_at,
            flags=[f.flag for f in r.flags],
        )


class DashboardOut(BaseModel):
    summary: DashboardSummaryOut
    clients: List[DashboardClientOut]


class ScoreHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    score: int
    growth_stage: Optional[str] = None
    recorded_at: datetime


class ScoreUpdateOut(BaseModel):
    id: int
    score: int


class RefreshOut(BaseModel):
    refreshed: int
    failed: List[int]


class MetricSnapshotIn(BaseModel):
    """Input schema for POST /api/clients/{id}/metrics."""
    metric_type: str = Field(pattern="^(keyword_avg_position|visitors|leads|ai_visibility|conversions)$")
    value: float = Field(ge=0)
    period_start: date
    period_end: date


AlertType = Literal["performance_focus", "general_update", "milestone", "intervention"]


class ClientAlertIn(BaseModel):
    """Input schema for POST /api/performance/alerts."""
    client_id: int
    message: str = Field(min_length=1, max_length=2000)
    alert_type: AlertType
    publish: bool = False


class ClientAlertUpdate(BaseModel):
    """Input schema for PUT /api/performance/alerts/{id}."""
    message: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    publish: bool = False


class ClientAlertStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    status: str
    published_at: Optional[datetime] = None


class ClientAlertOut(BaseModel):
    id: int
    client_id: int
    client_name: str
    message: Optional[str] = None
    alert_type: str
    status: str
    published_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_alert(cls, a: ClientAlert) -> "ClientAlertOut":
        return cls(
            id=a.id,
            client_id=a.client_id,
            client_name=a.client.name,
            message=a.message,
            alert_type=a.alert_type,
            status=a.status,
            published_at=a.published_at,
            dismissed_at=a.dismissed_at,
            created_at=a.created_at,
        )
