"""
core/lifecycle.py -- Replacement-urgency scoring for equipment.

Each metric is normalized against its threshold so that 1.0 means "exactly at
the threshold":

  age          age_years / min_age_years
  service cost service_cost_ratio / max_service_cost_ratio
  downtime     downtime_hours / min_downtime_hours
  utilization  min_utilization_pct / utilization_pct   (inverse: low use scores high)

Factors are capped at _FACTOR_CAP so a single extreme metric cannot carry the
composite on its own. The composite is the weighted mean of the factors.
Unknown utilization (<= 0) contributes 0, matching how the asset directory
reports "no usage data".

No I/O and no mutation of inputs. Notification side effects live in
engine/lifecycle.py.
"""

from datetime import date
from typing import Optional

from dateutil.relativedelta import relativedelta

from core.models import LifecycleMetrics, LifecycleThresholds, LifecycleWeights, RecommendationScore

_FACTOR_CAP = 2.0

# Replacement cost estimate carries 10% inflation over the purchase cost.
_REPLACEMENT_COST_FACTOR = 1.1

# Estimated replacement date = purchase date + min age + this many years.
_REPLACEMENT_GRACE_YEARS = 2


def _ratio(value: float, threshold: float) -> float:
    if threshold <= 0 or value <= 0:
        return 0.0
    return min(value / threshold, _FACTOR_CAP)


def age_in_years(purchase_date: Optional[date], today: date) -> float:
    """Asset age in fractional years, 0 when the purchase date is unknown."""
    if purchase_date is None:
        return 0.0
    return round((today - purchase_date).days / 365.25, 2)


def score(
    metrics: LifecycleMetrics,
    thresholds: LifecycleThresholds,
    weights: Optional[LifecycleWeights] = None,
    asset_id: Optional[int] = None,
) -> RecommendationScore:
    """Combine the four lifecycle metrics into a RecommendationScore."""
    weights = weights or LifecycleWeights()

    factors = {
        "age": _ratio(metrics.age_years, thresholds.min_age_years),
        "service_cost": _ratio(metrics.service_cost_ratio, thresholds.max_service_cost_ratio),
        "downtime": _ratio(metrics.downtime_hours, thresholds.min_downtime_hours),
        "utilization": _ratio(thresholds.min_utilization_pct, metrics.utilization_pct)
        if metrics.utilization_pct > 0
        else 0.0,
    }
    weight_map = {
        "age": weights.age,
        "service_cost": weights.service_cost,
        "downtime": weights.downtime,
        "utilization": weights.utilization,
    }
    total_weight = sum(weight_map.values())
    if total_weight <= 0:
        raise ValueError("Lifecycle weights must sum to a positive value")
    composite = round(sum(factors[k] * weight_map[k] for k in factors) / total_weight, 4)

    reasons: list[str] = []
    if metrics.age_years >= thresholds.min_age_years:
        reasons.append(f"Asset age is {metrics.age_years:.1f} years (threshold: {thresholds.min_age_years:g} years)")
    if metrics.service_cost_ratio >= thresholds.max_service_cost_ratio:
        reasons.append(
            f"Service cost ratio is {metrics.service_cost_ratio * 100:.1f}% "
            f"(threshold: {thresholds.max_service_cost_ratio * 100:.1f}%)"
        )
    if metrics.downtime_hours >= thresholds.min_downtime_hours:
        reasons.append(
            f"Total downtime is {metrics.downtime_hours:g} hours (threshold: {thresholds.min_downtime_hours:g} hours)"
        )
    if 0 < metrics.utilization_pct < thresholds.min_utilization_pct:
        reasons.append(
            f"Utilization is {metrics.utilization_pct:.1f}% (threshold: {thresholds.min_utilization_pct:g}%)"
        )

    flagged = composite >= thresholds.replacement_threshold
    if flagged:
        recommendation = "Replace"
    elif composite >= thresholds.monitor_threshold:
        recommendation = "Monitor"
    else:
        recommendation = "Maintain"

    if composite >= thresholds.replacement_threshold * 1.5:
        priority = "High"
    elif flagged:
        priority = "Medium"
    else:
        priority = "Low"

    return RecommendationScore(
        asset_id=asset_id,
        composite=composite,
        flagged=flagged,
        recommendation=recommendation,
        priority=priority,
        factors=factors,
        reasons=reasons,
    )


def estimate_replacement(
    purchase_date: Optional[date],
    purchase_cost: Optional[float],
    thresholds: LifecycleThresholds,
) -> tuple[Optional[float], Optional[str]]:
    """Return (estimated cost, estimated ISO date) for a replacement."""
    cost = round(purchase_cost * _REPLACEMENT_COST_FACTOR, 2) if purchase_cost else None
    when = None
    if purchase_date is not None:
        years = int(thresholds.min_age_years) + _REPLACEMENT_GRACE_YEARS
        when = (purchase_date + relativedelta(years=years)).isoformat()
    return cost, when
