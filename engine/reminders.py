"""
engine/reminders.py -- Upcoming-work reminders.

For each configured offset d (default 7, 3 and 1 days), active work due exactly
d days from today gets a reminder to its assignee. The asset's department
contact is told once per work item that the equipment will be unavailable.
Both are deduplicated against notifications already recorded, so running the
trigger several times a day is harmless.
"""

import logging
from datetime import date, timedelta
from typing import Iterable, Optional

from cmms.models import Notification, ScheduledWork
from cmms.store import CMMSStore
from core.models import BatchResult, NotificationType, WorkStatus
from engine.notifications import NotificationSink
from engine.scheduler import WORK_ENTITY, kind_label, utc_today

logger = logging.getLogger("equipcare.reminders")


class ReminderDispatcher:
    def __init__(self, store: CMMSStore, sink: NotificationSink) -> None:
        self.store = store
        self.sink = sink

    def send_reminders(
        self,
        today: Optional[date] = None,
        days_before: Iterable[int] = (7, 3, 1),
        notify_departments: bool = True,
    ) -> BatchResult:
        """Create due reminders. items holds the notifications created by this call."""
        today = today or utc_today()
        result = BatchResult()
        for days in sorted(set(days_before), reverse=True):
            target = (today + timedelta(days=days)).isoformat()
            due = [
                w
                for w in self.store.list_active_work(due_from=target, due_until=target)
                if w.status != WorkStatus.OVERDUE.value
            ]
            result.attempted += len(due)
            for work in due:
                result.items.extend(self._remind(work, days, notify_departments))
        logger.info("send_reminders: %d items due, %d notifications created", result.attempted, len(result.items))
        return result

    def _remind(self, work: ScheduledWork, days: int, notify_departments: bool) -> list[Notification]:
        asset = self.store.get_asset(work.asset_id)
        asset_name = asset.name if asset is not None else f"asset {work.asset_id}"
        label = kind_label(work.kind)
        created: list[Notification] = []

        if work.assignee_id is not None:
            marker = f"due in {days} day(s)"
            if not self.sink.exists(
                NotificationType.REMINDER.value, WORK_ENTITY, work.id, title_contains=marker, user_id=work.assignee_id
            ):
                assignee = self.store.get_users([work.assignee_id])
                emails = [u.email for u in assignee if u.email]
                created.append(
                    self.sink.create(
                        Notification(
                            user_id=work.assignee_id,
                            type=NotificationType.REMINDER.value,
                            title=f"{label} {marker}: {asset_name}",
                            message=(
                                f"{label} for {asset_name} is scheduled on {work.scheduled_date} "
                                f"({days} day(s) from now)."
                            ),
                            entity_type=WORK_ENTITY,
                            entity_id=work.id,
                            email_recipients=emails,
                        )
                    )
                )
        else:
            logger.debug("Work %d has no assignee; no engineer reminder", work.id)

        contact_id = asset.contact_user_id if asset is not None else None
        if notify_departments and contact_id is not None:
            marker = f"{label} Scheduled"
            if not self.sink.exists(
                NotificationType.REMINDER.value, WORK_ENTITY, work.id, title_contains=marker, user_id=contact_id
            ):
                created.append(
                    self.sink.create(
                        Notification(
                            user_id=contact_id,
                            type=NotificationType.REMINDER.value,
                            title=f"{marker}: {asset_name}",
                            message=(
                                f"{label} is scheduled for {asset_name} in your department on "
                                f"{work.scheduled_date}. The equipment may be unavailable during this time."
                            ),
                            entity_type=WORK_ENTITY,
                            entity_id=work.id,
                        )
                    )
                )
        return created
