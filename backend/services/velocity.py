# backend/services/velocity.py
"""
Velocity modifier.

Velocity = improvement events per active month. It is compared against the
plan's expected velocity and turned into a multiplier on the base score:

    ratio >= 1.5  -> 1.15  (exceeding)
    ratio >= 1.0  -> 1.00  (on track)
    ratio >= 0.5  -> 0.85  (below)
    otherwise     -> 0.70  (stagnant)

No penalty is applied while the client is inside the plan's ramp period.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .stages import days_since, months_active
from .weights import PlanType, normalize_plan_type

EXPECTED_VELOCITY: Dict[PlanType, float] = {
    PlanType.SEO: 3,              # keyword improvements / month
    PlanType.PAID_MEDIA: 2,       # lead increases / month
    PlanType.AI_OPTIMIZATION: 1,  # visibility improvements / month
    PlanType.FULL_SERVICE: 4,     # combined improvements / month
}

RAMP_PERIODS: Dict[PlanType, int] = {
    PlanType.SEO: 90,
    PlanType.PAID_MEDIA: 30,
    PlanType.AI_OPTIMIZATION: 60,
    PlanType.FULL_SERVICE: 90,
}

# (min ratio, modifier), highest ratio first; the first satisfied band wins
VELOCITY_BANDS: List[Tuple[float, float]] = [
    (1.5, 1.15),
    (1.0, 1.0),
    (0.5, 0.85),
]
STAGNANT_MODIFIER = 0.70


@dataclass
class VelocityResult:
    improvements_total: int
    months_active: int
    velocity: float
    expected: float
    ratio: float
    modifier: float
    is_in_ramp_period: bool
    plan_type: PlanType


def get_expected_velocity(plan_type) -> float:
    return EXPECTED_VELOCITY[normalize_plan_type(plan_type)]


def get_ramp_period_days(plan_type) -> int:
    return RAMP_PERIODS[normalize_plan_type(plan_type)]


def is_in_ramp_period(start, plan_type, now: Optional[datetime] = None) -> bool:
    return days_since(start, now) < get_ramp_period_days(plan_type)


def calculate_velocity(improvements_total: float, months: float) -> float:
    """Improvements per month; 0 when there is no active month to divide by."""
    if months <= 0:
        return 0.0
    return improvements_total / months


def get_velocity_modifier(velocity: float, expected: float, in_ramp_period: bool) -> float:
    if in_ramp_period:
        return 1.0
    if expected <= 0:
        return 1.0

    ratio = velocity / expected
    for min_ratio, modifier in VELOCITY_BANDS:
        if ratio >= min_ratio:
            return modifier
    return STAGNANT_MODIFIER


def calculate_velocity_result(
    improvements_total: int,
    start,
    plan_type,
    now: Optional[datetime] = None,
) -> VelocityResult:
    """Full velocity analysis for one client, every intermediate value exposed."""
    plan = normalize_plan_type(plan_type)
    months = months_active(start, now)
    velocity = calculate_velocity(improvements_total, months)
    expected = EXPECTED_VELOCITY[plan]
    in_ramp = is_in_ramp_period(start, plan, now)

    return VelocityResult(
        improvements_total=improvements_total,
        months_active=months,
        velocity=velocity,
        expected=expected,
        ratio=velocity / expected if expected > 0 else 0.0,
        modifier=get_velocity_modifier(velocity, expected, in_ramp),
        is_in_ramp_period=in_ramp,
        plan_type=plan,
    )
