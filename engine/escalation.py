"""
engine/escalation.py -- Escalation Engine.

Walks overdue ScheduledWork up its escalation chain:

    Scheduled --(past due)--> Overdue, level 0
    level n --(rules[n] threshold crossed)--> level n + 1, rules[n] targets notified

Rules for a kind are ordered by (level, threshold, id); an item at level n has
had rules[0..n) actioned. One pass fires every crossed rule from rules[n]
onward, in order, so a late run never skips a threshold. Each level advance
and its notifications are one conditional write (CMMSStore.advance_escalation),
which is what keeps overlapping runs from notifying the same level twice.
"""

import logging
from datetime import date
from typing import Optional

from cmms.models import EscalationRule, Notification, ScheduledWork, User
from cmms.store import CMMSStore
from core.errors import InvalidPolicy, RuleNotFound
from core.models import BatchResult, EscalationEvent, ItemFailure, NotificationType, ThresholdKind, WorkStatus
from core.recurrence import interval_days
from engine.notifications import NotificationSink
from engine.scheduler import WORK_ENTITY, kind_label, policy_anchor, policy_frequency, utc_today

logger = logging.getLogger("equipcare.escalation")

# Default chain seeded for a kind with no rules: (days overdue, how many of
# the configured roles to notify). None means all of them.
_DEFAULT_CHAIN = ((1, 1), (3, 2), (7, None))


class EscalationEngine:
    def __init__(self, store: CMMSStore, sink: NotificationSink) -> None:
        self.store = store
        self.sink = sink

    def check_and_escalate(self, today: Optional[date] = None) -> BatchResult:
        """Evaluate every active item past its due date. Returns one EscalationEvent per level actioned."""
        today = today or utc_today()
        result = BatchResult()
        items = self.store.list_active_work(due_before=today.isoformat())
        result.attempted = len(items)
        rules_by_kind: dict[str, list[EscalationRule]] = {}

        for work in items:
            try:
                if work.kind not in rules_by_kind:
                    rules_by_kind[work.kind] = self.store.list_rules(work.kind)
                result.items.extend(self._escalate(work, rules_by_kind[work.kind], today))
            except (RuleNotFound, InvalidPolicy) as e:
                logger.warning("Escalation skipped for work %d: %s", work.id, e.message)
                result.failures.append(ItemFailure(work.id, e.code, e.message))

        logger.info(
            "check_and_escalate: %d overdue items, %d levels actioned, %d failures",
            result.attempted,
            len(result.items),
            len(result.failures),
        )
        return result

    def _escalate(self, work: ScheduledWork, rules: list[EscalationRule], today: date) -> list[EscalationEvent]:
        days_overdue = (today - date.fromisoformat(work.scheduled_date)).days

        if work.status == WorkStatus.SCHEDULED.value:
            moved = self.store.transition_work(
                work.id,
                WorkStatus.OVERDUE.value,
                from_statuses=(WorkStatus.SCHEDULED.value,),
                note=f"{days_overdue} day(s) past due",
            )
            work = moved or self.store.get_work(work.id)
            if work is None or not work.is_active:
                return []

        if not rules:
            raise RuleNotFound(work.kind)

        percent = self._percent_elapsed(work, days_overdue)
        asset = self.store.get_asset(work.asset_id)
        asset_name = asset.name if asset is not None else f"asset {work.asset_id}"
        label = kind_label(work.kind)

        events: list[EscalationEvent] = []
        level = work.escalation_level
        while level < len(rules):
            rule = rules[level]
            if not _crossed(rule, days_overdue, percent):
                break

            users = self.resolve_targets(rule.targets)
            if not users:
                logger.warning("Rule %d (%s level %d) resolves to no users; level advanced without notifications",
                               rule.id, rule.entity_type, rule.level)
            emails = [u.email for u in users if u.email] if rule.notify_email else []
            title = f"Escalation Level {level + 1}: {label} overdue for {asset_name}"
            message = (
                f"{label} for {asset_name} is {days_overdue} day(s) overdue "
                f"(scheduled: {work.scheduled_date}). "
                f"This requires immediate attention at escalation level {level + 1}."
            )
            notifications = [
                Notification(
                    user_id=u.id,
                    type=NotificationType.ESCALATION.value,
                    title=title,
                    message=message,
                    entity_type=WORK_ENTITY,
                    entity_id=work.id,
                    email_recipients=emails,
                )
                for u in users
            ]

            persisted = self.sink.record_escalation(
                work, level, notifications, note=f"Escalated to level {level + 1} by rule {rule.id}"
            )
            if persisted is None:
                logger.info("Work %d level %d already actioned by another run", work.id, level)
                break

            events.append(
                EscalationEvent(
                    work_id=work.id,
                    asset_id=work.asset_id,
                    kind=work.kind,
                    level=level,
                    rule_id=rule.id,
                    days_overdue=days_overdue,
                    recipient_ids=[u.id for u in users],
                    notification_ids=[n.id for n in persisted],
                )
            )
            logger.info("Work %d escalated to level %d (%d day(s) overdue, %d recipients)",
                        work.id, level + 1, days_overdue, len(users))
            level += 1
        return events

    def _percent_elapsed(self, work: ScheduledWork, days_overdue: int) -> Optional[float]:
        """Percent of the interval past the due date: days overdue over the policy interval.

        Not the share of the interval elapsed since the anchor. A 90-day policy
        nine days late is at 10%. None without a policy.
        """
        if work.policy_id is None:
            return None
        policy = self.store.get_policy(work.policy_id)
        if policy is None:
            return None
        days = interval_days(policy_anchor(policy), policy_frequency(policy))
        return days_overdue / days * 100

    # ------------------------------------------------------------------
    # Target resolution
    # ------------------------------------------------------------------

    def resolve_targets(self, targets: list[str]) -> list[User]:
        """Resolve "user:<id>" and "role:<name>" entries to active users.

        Order follows the chain; a user reached twice is notified once.
        """
        user_ids: list[int] = []
        for target in targets:
            prefix, _, value = target.partition(":")
            if prefix == "user" and value.isdigit():
                user_ids.append(int(value))
            elif prefix != "role" or not value:
                logger.warning("Ignoring malformed escalation target %r", target)
        by_id = {u.id: u for u in self.store.get_users(user_ids)}

        resolved: list[User] = []
        seen: set[int] = set()
        for target in targets:
            prefix, _, value = target.partition(":")
            if prefix == "user" and value.isdigit():
                candidates = [by_id[int(value)]] if int(value) in by_id else []
            elif prefix == "role" and value:
                candidates = self.store.users_with_role(value)
            else:
                continue
            for user in candidates:
                if user.id not in seen:
                    seen.add(user.id)
                    resolved.append(user)
        return resolved

    # ------------------------------------------------------------------
    # Rule administration
    # ------------------------------------------------------------------

    def seed_default_rules(self, roles: list[str], entity_type: str = "pm") -> list[EscalationRule]:
        """Create the default 1/3/7-days-overdue chain when entity_type has no rules at all.

        Level 1 notifies the first role, level 2 the first two, level 3 all of
        them. Returns the rules created (empty if rules already existed).
        """
        if not roles:
            raise ValueError("At least one role is required to seed escalation rules")
        if self.store.list_rules(entity_type, active_only=False):
            logger.info("Escalation rules for %s already exist; nothing seeded", entity_type)
            return []

        created: list[EscalationRule] = []
        for level, (days, count) in enumerate(_DEFAULT_CHAIN, start=1):
            chosen = roles if count is None else roles[:count]
            rule = EscalationRule(
                entity_type=entity_type,
                level=level,
                threshold=float(days),
                targets=[f"role:{r}" for r in chosen],
                threshold_kind=ThresholdKind.DAYS_OVERDUE.value,
                notify_email=True,
            )
            rule.id = self.store.create_rule(rule)
            created.append(rule)
        logger.info("Seeded %d default escalation rules for %s", len(created), entity_type)
        return created


def _crossed(rule: EscalationRule, days_overdue: int, percent_elapsed: Optional[float]) -> bool:
    if rule.threshold_kind == ThresholdKind.PERCENT_ELAPSED.value:
        return percent_elapsed is not None and percent_elapsed >= rule.threshold
    return days_overdue >= rule.threshold
