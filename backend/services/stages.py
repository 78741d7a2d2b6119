# backend/services/stages.py
"""
Growth stages, score statuses and stage flags.

Growth stages are lifecycle classifications based on account tenure:
- seedling   (<90d)     ramp-up, foundation building
- sprouting  (90-179d)  early results appearing
- blooming   (180-364d) multi-metric growth expected
- harvesting (365d+)    mature, stable, expansion-ready

Everything here is pure: callers pass `now` when they need determinism.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple


class GrowthStage(str, Enum):
    SEEDLING = "seedling"
    SPROUTING = "sprouting"
    BLOOMING = "blooming"
    HARVESTING = "harvesting"


@dataclass(frozen=True)
class StageConfig:
    name: GrowthStage
    label: str
    icon: str
    min_days: int
    max_days: Optional[int]  # None = open ended
    expected_score_range: Tuple[int, int]
    description: str


@dataclass(frozen=True)
class StatusConfig:
    status: str
    color: str
    hex: str
    min_score: int
    max_score: int


@dataclass(frozen=True)
class StageFlag:
    flag: str
    icon: str
    action: str
    priority: str  # critical | high | medium | low


STAGE_CONFIGS: Dict[GrowthStage, StageConfig] = {
    GrowthStage.SEEDLING: StageConfig(
        GrowthStage.SEEDLING, "Seedling", "🌱", 0, 90, (40, 60), "Ramp-up period, foundation building"
    ),
    GrowthStage.SPROUTING: StageConfig(
        GrowthStage.SPROUTING, "Sprouting", "🌿", 90, 180, (50, 70), "Early results appearing"
    ),
    GrowthStage.BLOOMING: StageConfig(
        GrowthStage.BLOOMING, "Blooming", "🌸", 180, 365, (60, 80), "Multi-metric growth expected"
    ),
    GrowthStage.HARVESTING: StageConfig(
        GrowthStage.HARVESTING, "Harvesting", "🌾", 365, None, (70, 90), "Mature, stable, expansion-ready"
    ),
}

# Labels per stage for the bands 80-100, 60-79, 40-59, 20-39, 0-19 (in that order)
STAGE_EVALUATION_LABELS: Dict[GrowthStage, Tuple[str, str, str, str, str]] = {
    GrowthStage.SEEDLING: ("Exceptional Start", "Strong Start", "Normal Ramp", "Slow Start", "Stalled Launch"),
    GrowthStage.SPROUTING: ("Fast Tracker", "Ahead of Schedule", "Normal Growth", "Behind Schedule", "Failing"),
    GrowthStage.BLOOMING: ("Star Client", "On Track", "Needs Attention", "At Risk", "Critical"),
    GrowthStage.HARVESTING: ("Ideal / Premium Candidate", "Stable", "Declining", "Churn Risk", "Likely Lost"),
}

SCORE_STATUSES: List[StatusConfig] = [
    StatusConfig("Thriving", "dark-green", "#16a34a", 80, 100),
    StatusConfig("Healthy", "light-green", "#22c55e", 60, 79),
    StatusConfig("Needs Attention", "yellow", "#eab308", 40, 59),
    StatusConfig("At Risk", "orange", "#f97316", 20, 39),
    StatusConfig("Critical", "red", "#dc2626", 0, 19),
]

_BAND_FLOORS = (80, 60, 40, 20)


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


def days_since(start, now: Optional[datetime] = None) -> int:
    """Whole days elapsed since `start` (date, datetime or ISO string)."""
    now = now or datetime.utcnow()
    delta = _as_datetime(now) - _as_datetime(start)
    return int(delta.total_seconds() // 86400)


def months_active(start, now: Optional[datetime] = None) -> int:
    """Tenure in 30-day months, never less than 1."""
    return max(1, days_since(start, now) // 30)


def get_growth_stage(start, now: Optional[datetime] = None) -> GrowthStage:
    days = days_since(start, now)
    if days < 90:
        return GrowthStage.SEEDLING
    if days < 180:
        return GrowthStage.SPROUTING
    if days < 365:
        return GrowthStage.BLOOMING
    return GrowthStage.HARVESTING


def parse_growth_stage(value) -> Optional[GrowthStage]:
    """Return the stage for a stored value, or None when it is not one of the four stages."""
    if isinstance(value, GrowthStage):
        return value
    try:
        return GrowthStage(value)
    except ValueError:
        return None


def get_stage_config(stage: GrowthStage) -> StageConfig:
    return STAGE_CONFIGS[GrowthStage(stage)]


def _band_index(score: float) -> int:
    for i, floor in enumerate(_BAND_FLOORS):
        if score >= floor:
            return i
    return len(_BAND_FLOORS)


def get_evaluation_label(score: float, stage: GrowthStage) -> str:
    return STAGE_EVALUATION_LABELS[GrowthStage(stage)][_band_index(score)]


def get_score_status(score: float) -> StatusConfig:
    """Status band for a score; anything outside every band maps to the lowest one."""
    for status in SCORE_STATUSES:
        if status.min_score <= score <= status.max_score:
            return status
    return SCORE_STATUSES[-1]


def is_below_expectation(score: float, stage: GrowthStage) -> bool:
    return score < get_stage_config(stage).expected_score_range[0]


def is_above_expectation(score: float, stage: GrowthStage) -> bool:
    return score > get_stage_config(stage).expected_score_range[1]


def get_stage_flags(score: float, stage: GrowthStage) -> List[StageFlag]:
    """
    Special flags for a (score, stage) combination. Rules are independent,
    so several flags may fire at once (e.g. Critical + Churn Risk).
    """
    stage = GrowthStage(stage)
    flags: List[StageFlag] = []

    if score < 20:
        flags.append(StageFlag("Critical", "🔴", "All hands on deck", "critical"))

    if stage == GrowthStage.HARVESTING:
        if score < 40:
            flags.append(StageFlag("Churn Risk", "🚨", "Immediate intervention", "critical"))
        elif score >= 80:
            flags.append(StageFlag("Premium Candidate", "⭐", "Offer premium services", "low"))

    if stage == GrowthStage.BLOOMING and score < 40:
        flags.append(StageFlag("Problem Account", "⚠️", "Strategy review", "high"))

    if stage == GrowthStage.SPROUTING and score >= 80:
        flags.append(StageFlag("Fast Tracker", "🚀", "Upsell candidate", "low"))

    return flags
