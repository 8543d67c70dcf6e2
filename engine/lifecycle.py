"""
engine/lifecycle.py -- Lifecycle review over the asset directory.

Scores assets with core.lifecycle.score() and records one end_of_life
notification per flagged asset per recipient. Assets are never modified;
whether to replace is a human decision.
"""

import logging
from datetime import date
from typing import Optional

from dateutil.relativedelta import relativedelta

from cmms.models import Asset, Notification, User
from cmms.store import CMMSStore
from core.lifecycle import age_in_years, estimate_replacement, score
from core.models import (
    BatchResult,
    ItemFailure,
    LifecycleMetrics,
    LifecycleThresholds,
    LifecycleWeights,
    NotificationType,
    RecommendationScore,
)
from engine.notifications import NotificationSink
from engine.scheduler import utc_today

logger = logging.getLogger("equipcare.lifecycle")

ASSET_ENTITY = "asset"


class LifecycleReviewer:
    def __init__(
        self,
        store: CMMSStore,
        sink: NotificationSink,
        thresholds: Optional[LifecycleThresholds] = None,
        weights: Optional[LifecycleWeights] = None,
        notify_roles: tuple[str, ...] = ("biomed_manager",),
    ) -> None:
        self.store = store
        self.sink = sink
        self.thresholds = thresholds or LifecycleThresholds()
        self.weights = weights
        self.notify_roles = tuple(notify_roles)

    def score_asset(self, asset: Asset, today: Optional[date] = None) -> RecommendationScore:
        """Score one asset. Raises ValueError if its purchase date is malformed."""
        today = today or utc_today()
        purchased = date.fromisoformat(asset.purchase_date) if asset.purchase_date else None
        cost_ratio = asset.total_service_cost / asset.purchase_cost if asset.purchase_cost else 0.0
        metrics = LifecycleMetrics(
            age_years=age_in_years(purchased, today),
            service_cost_ratio=round(cost_ratio, 4),
            downtime_hours=asset.total_downtime_hours,
            utilization_pct=asset.utilization_pct,
        )
        result = score(metrics, self.thresholds, self.weights, asset_id=asset.id)
        result.asset_name = asset.name
        if result.recommendation == "Replace":
            cost, when = estimate_replacement(purchased, asset.purchase_cost, self.thresholds)
            result.estimated_replacement_cost = cost
            result.estimated_replacement_date = when
        return result

    def recommendations(
        self, asset_ids: Optional[list[int]] = None, today: Optional[date] = None
    ) -> list[RecommendationScore]:
        """Score assets without notifying anyone, most urgent first."""
        scores = []
        for asset in self.store.list_assets(asset_ids):
            try:
                scores.append(self.score_asset(asset, today))
            except ValueError as e:
                logger.warning("Asset %d not scored: %s", asset.id, e)
        return sorted(scores, key=lambda s: s.composite, reverse=True)

    def review(self, asset_ids: Optional[list[int]] = None, today: Optional[date] = None) -> BatchResult:
        """Score non-disposed assets and notify about the flagged ones.

        items holds every score. A flagged asset produces one end_of_life
        notification per recipient, unless that recipient was already told.
        """
        result = BatchResult()
        assets = self.store.list_assets(asset_ids)
        result.attempted = len(assets)
        recipients = self._recipients()
        if not recipients:
            logger.warning("No active users hold roles %s; end-of-life notices will not be sent",
                           ", ".join(self.notify_roles))

        for asset in assets:
            try:
                scored = self.score_asset(asset, today)
            except ValueError as e:
                result.failures.append(ItemFailure(asset.id, "invalid_asset_data", str(e)))
                continue
            result.items.append(scored)
            if scored.flagged:
                self._notify(asset, scored, recipients)

        flagged = sum(1 for s in result.items if s.flagged)
        logger.info("Lifecycle review: %d assets scored, %d flagged", len(result.items), flagged)
        return result

    def _recipients(self) -> list[User]:
        seen: set[int] = set()
        users: list[User] = []
        for role in self.notify_roles:
            for user in self.store.users_with_role(role):
                if user.id not in seen:
                    seen.add(user.id)
                    users.append(user)
        return users

    def _notify(self, asset: Asset, scored: RecommendationScore, recipients: list[User]) -> None:
        message = f'Asset "{asset.name}" scored {scored.composite:.2f} and may need replacement consideration.'
        if scored.reasons:
            message += " " + "; ".join(scored.reasons) + "."
        for user in recipients:
            if self.sink.exists(NotificationType.END_OF_LIFE.value, ASSET_ENTITY, asset.id, user_id=user.id):
                continue
            self.sink.create(
                Notification(
                    user_id=user.id,
                    type=NotificationType.END_OF_LIFE.value,
                    title=f"End of Life: {asset.name}",
                    message=message,
                    entity_type=ASSET_ENTITY,
                    entity_id=asset.id,
                    email_recipients=[user.email] if user.email else [],
                )
            )
        logger.info("Asset %d (%s) flagged for replacement, score %.2f, priority %s",
                    asset.id, asset.name, scored.composite, scored.priority)

    def nearing_end_of_life(self, threshold_years: int = 5, today: Optional[date] = None) -> list[Asset]:
        """Non-disposed assets purchased at least threshold_years ago, oldest first."""
        cutoff = ((today or utc_today()) - relativedelta(years=threshold_years)).isoformat()
        old = [a for a in self.store.list_assets() if a.purchase_date and a.purchase_date <= cutoff]
        return sorted(old, key=lambda a: a.purchase_date)
