"""
engine/notifications.py -- Notification Sink.

Persists in-app notifications and hands them to the email transport. The
record is always written first; email is best-effort and a transport failure
is logged, never raised. The sink does not deduplicate -- callers use exists()
before creating when they need at-most-once semantics.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from cmms.models import Notification, ScheduledWork
from cmms.store import CMMSStore
from core.errors import StoreUnavailable

logger = logging.getLogger("equipcare.notifications")


@dataclass
class NotificationPage:
    items: list[Notification] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20
    total_pages: int = 0


class NotificationSink:
    def __init__(self, store: CMMSStore, transport=None) -> None:
        self.store = store
        self.transport = transport

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(self, notification: Notification) -> Notification:
        """Persist one notification, then send its email if it has recipients.

        Raises StoreUnavailable if the record cannot be written.
        """
        persisted = self.store.insert_notification(notification)
        self._deliver([persisted])
        return persisted

    def create_many(self, notifications: list[Notification]) -> tuple[list[Notification], list[Notification]]:
        """Create each notification independently. Returns (created, failed)."""
        created: list[Notification] = []
        failed: list[Notification] = []
        for n in notifications:
            try:
                created.append(self.create(n))
            except StoreUnavailable as e:
                logger.warning("Notification for user %s not recorded: %s", n.user_id, e.message)
                failed.append(n)
        return created, failed

    def record_escalation(
        self,
        work: ScheduledWork,
        expected_level: int,
        notifications: list[Notification],
        note: Optional[str] = None,
    ) -> Optional[list[Notification]]:
        """Persist an escalation level's notifications together with the level advance.

        Returns None when another run already actioned expected_level; in that
        case nothing is written and nothing is sent.
        """
        persisted = self.store.advance_escalation(work.id, expected_level, notifications, note=note)
        if persisted is None:
            return None
        self._deliver(persisted)
        return persisted

    def _deliver(self, notifications: list[Notification]) -> None:
        if self.transport is None:
            return
        # One message per distinct (title, recipients) so a fan-out to several
        # users sharing the same address list sends a single email.
        sent: set[tuple[str, tuple[str, ...]]] = set()
        for n in notifications:
            if not n.email_recipients:
                continue
            key = (n.title, tuple(n.email_recipients))
            if key in sent:
                continue
            sent.add(key)
            try:
                delivered = self.transport.send(n.email_recipients, n.title, n.message)
            except Exception:
                logger.exception("Email transport raised for notification %s", n.id)
                continue
            if not delivered:
                logger.warning("Email for notification %s was not delivered", n.id)

    # ------------------------------------------------------------------
    # Read state
    # ------------------------------------------------------------------

    def get(self, notification_id: int) -> Optional[Notification]:
        return self.store.get_notification(notification_id)

    def mark_as_read(self, notification_id: int) -> bool:
        """Idempotent. Returns False only when the notification does not exist."""
        return self.store.mark_read(notification_id)

    def mark_all_as_read(self, user_id: int) -> int:
        return self.store.mark_all_read(user_id)

    def unread_count(self, user_id: int) -> int:
        return self.store.unread_count(user_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_for_user(
        self,
        user_id: int,
        page: int = 1,
        page_size: int = 20,
        unread_only: bool = False,
    ) -> NotificationPage:
        """Return one page of a user's notifications, newest first."""
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")
        items, total = self.store.list_notifications(
            user_id,
            offset=(page - 1) * page_size,
            limit=page_size,
            unread_only=unread_only,
        )
        return NotificationPage(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        )

    def exists(
        self,
        type: str,
        entity_type: str,
        entity_id: int,
        title_contains: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> bool:
        return self.store.notification_exists(
            type, entity_type, entity_id, title_contains=title_contains, user_id=user_id
        )
