"""
engine/scheduler.py -- PM/Calibration Scheduler.

Materializes ScheduledWork records from maintenance policies. Every write that
creates work goes through CMMSStore.create_work_if_absent(), so "at most one
active record per (asset, kind)" holds even when two triggers overlap.

Batch operations return a BatchResult: one asset's failure (unknown asset,
unusable frequency) is recorded and the batch moves on. StoreUnavailable is
never caught here; it aborts the whole operation and the trigger retries.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from cmms.models import Asset, MaintenancePolicy, Notification, ScheduledWork
from cmms.store import CMMSStore
from core.errors import AssetNotFound, DuplicateActiveSchedule, InvalidPolicy, WorkNotFound
from core.models import ACTIVE_STATUSES, BatchResult, Frequency, ItemFailure, NotificationType, WorkStatus
from core.recurrence import next_due_date
from engine.notifications import NotificationSink

logger = logging.getLogger("equipcare.scheduler")

WORK_ENTITY = "scheduled_work"

_KIND_LABELS = {"pm": "Preventive maintenance", "calibration": "Calibration"}


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def kind_label(kind: str) -> str:
    return _KIND_LABELS.get(kind, kind)


def policy_anchor(policy: MaintenancePolicy) -> date:
    """Date the next interval starts from: last performed, else policy creation."""
    if policy.last_performed:
        return date.fromisoformat(policy.last_performed)
    return date.fromisoformat(policy.created_at[:10])


def policy_frequency(policy: MaintenancePolicy) -> Frequency:
    return Frequency(count=policy.frequency_count, unit=policy.frequency_unit)


class Scheduler:
    def __init__(self, store: CMMSStore, sink: Optional[NotificationSink] = None) -> None:
        self.store = store
        self.sink = sink

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def auto_schedule(self, asset_ids: Optional[list[int]] = None) -> BatchResult:
        """Create the next ScheduledWork for every policy that has no active work.

        asset_ids=None covers every asset that has not been disposed. Assets
        without policies are skipped silently. Running twice with no completion
        in between creates nothing the second time.
        """
        result = BatchResult()
        if asset_ids is None:
            targets = [(a.id, a) for a in self.store.list_assets()]
        else:
            found = {a.id: a for a in self.store.list_assets(asset_ids, include_disposed=True)}
            targets = [(i, found.get(i)) for i in dict.fromkeys(asset_ids)]
        result.attempted = len(targets)

        for asset_id, asset in targets:
            if asset is None:
                err = AssetNotFound(asset_id)
                logger.warning("auto_schedule: %s", err.message)
                result.failures.append(ItemFailure(asset_id, err.code, err.message))
                continue
            if asset.lifecycle_state == "Disposed":
                logger.info("auto_schedule: asset %d is disposed, skipping", asset_id)
                continue
            created, failures = self._schedule_asset(asset)
            result.items.extend(created)
            result.failures.extend(failures)

        logger.info(
            "auto_schedule: %d assets, %d created, %d failures",
            result.attempted,
            len(result.items),
            len(result.failures),
        )
        return result

    def _schedule_asset(self, asset: Asset) -> tuple[list[ScheduledWork], list[ItemFailure]]:
        created: list[ScheduledWork] = []
        failures: list[ItemFailure] = []
        for policy in self.store.get_policies(asset.id):
            if self.store.get_active_work(asset.id, policy.kind) is not None:
                continue
            try:
                due = next_due_date(policy_anchor(policy), policy_frequency(policy))
            except InvalidPolicy as e:
                logger.warning("auto_schedule: asset %d %s policy %d: %s", asset.id, policy.kind, policy.id, e.message)
                failures.append(ItemFailure(asset.id, e.code, e.message))
                continue
            work = self.store.create_work_if_absent(
                ScheduledWork(
                    asset_id=asset.id,
                    kind=policy.kind,
                    policy_id=policy.id,
                    scheduled_date=due.isoformat(),
                    vendor_id=policy.vendor_id,
                    assignee_id=policy.engineer_id,
                ),
                note=f"Auto-scheduled from policy {policy.id} ({policy.frequency_count} {policy.frequency_unit})",
            )
            if work is None:
                # Another trigger created it between the check and the insert.
                continue
            logger.info("Scheduled %s for asset %d on %s (work %d)", policy.kind, asset.id, work.scheduled_date, work.id)
            created.append(work)
        return created, failures

    def schedule_single(
        self,
        asset_id: int,
        scheduled_date: date,
        vendor_id: Optional[int] = None,
        kind: str = "pm",
        assignee_id: Optional[int] = None,
    ) -> ScheduledWork:
        """Manually schedule work for a date, bypassing recurrence.

        Raises AssetNotFound or DuplicateActiveSchedule.
        """
        if self.store.get_asset(asset_id) is None:
            raise AssetNotFound(asset_id)
        policy = next(iter(p for p in self.store.get_policies(asset_id) if p.kind == kind), None)
        work = self.store.create_work_if_absent(
            ScheduledWork(
                asset_id=asset_id,
                kind=kind,
                policy_id=policy.id if policy else None,
                scheduled_date=scheduled_date.isoformat(),
                vendor_id=vendor_id if vendor_id is not None else (policy.vendor_id if policy else None),
                assignee_id=assignee_id if assignee_id is not None else (policy.engineer_id if policy else None),
            ),
            note="Manually scheduled",
        )
        if work is None:
            raise DuplicateActiveSchedule(asset_id, kind)
        logger.info("Manually scheduled %s for asset %d on %s (work %d)", kind, asset_id, work.scheduled_date, work.id)
        return work

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start_work(self, work_id: int) -> ScheduledWork:
        work = self.store.transition_work(
            work_id,
            WorkStatus.IN_PROGRESS.value,
            from_statuses=(WorkStatus.SCHEDULED.value, WorkStatus.OVERDUE.value),
            note="Work started",
        )
        if work is None:
            raise WorkNotFound(work_id)
        return work

    def complete_work(self, work_id: int, completed_on: Optional[date] = None) -> Optional[date]:
        """Complete active work and advance its policy.

        Returns the next due date under the policy, or None for work without
        one. The next record itself is created by the following auto_schedule
        run, which sees the released (asset, kind) slot.
        """
        completed_on = completed_on or utc_today()
        work = self.store.transition_work(
            work_id,
            WorkStatus.COMPLETED.value,
            from_statuses=ACTIVE_STATUSES,
            note="Work completed",
            completed_date=completed_on.isoformat(),
        )
        if work is None:
            raise WorkNotFound(work_id)

        next_due = None
        if work.policy_id is not None:
            self.store.record_performed(work.policy_id, completed_on.isoformat())
            policy = self.store.get_policy(work.policy_id)
            if policy is not None and policy.is_active:
                try:
                    next_due = next_due_date(policy_anchor(policy), policy_frequency(policy))
                except InvalidPolicy as e:
                    logger.warning("Policy %d cannot produce a next due date: %s", policy.id, e.message)

        self._notify_completion(work, completed_on)
        return next_due

    def _notify_completion(self, work: ScheduledWork, completed_on: date) -> None:
        if self.sink is None:
            return
        asset = self.store.get_asset(work.asset_id)
        if asset is None or asset.contact_user_id is None:
            return
        label = kind_label(work.kind)
        self.sink.create(
            Notification(
                user_id=asset.contact_user_id,
                type=NotificationType.SYSTEM.value,
                title=f"{label} Completed: {asset.name}",
                message=(
                    f"{label} for {asset.name} has been completed on {completed_on.isoformat()}. "
                    "The equipment is now available for use."
                ),
                entity_type=WORK_ENTITY,
                entity_id=work.id,
            )
        )

    def cancel_work(self, work_id: int, reason: Optional[str] = None) -> ScheduledWork:
        work = self.store.transition_work(
            work_id,
            WorkStatus.CANCELLED.value,
            from_statuses=ACTIVE_STATUSES,
            note=f"Cancelled: {reason}" if reason else "Cancelled",
        )
        if work is None:
            raise WorkNotFound(work_id)
        logger.info("Cancelled work %d%s", work_id, f" ({reason})" if reason else "")
        return work

    def reschedule(self, work_id: int, new_date: date) -> ScheduledWork:
        """Move active work to new_date and back to Scheduled.

        The escalation level is kept, so a later overdue pass resumes the chain
        where it stopped instead of re-notifying earlier levels.
        """
        current = self.store.get_work(work_id)
        if current is None or not current.is_active:
            raise WorkNotFound(work_id)
        work = self.store.transition_work(
            work_id,
            WorkStatus.SCHEDULED.value,
            from_statuses=ACTIVE_STATUSES,
            note=f"Rescheduled from {current.scheduled_date} to {new_date.isoformat()}",
            scheduled_date=new_date.isoformat(),
        )
        if work is None:
            raise WorkNotFound(work_id)
        return work

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def upcoming(self, days_ahead: int = 30, today: Optional[date] = None) -> list[ScheduledWork]:
        """Active work due between today and today + days_ahead, inclusive."""
        today = today or utc_today()
        return self.store.list_active_work(
            due_from=today.isoformat(),
            due_until=(today + timedelta(days=days_ahead)).isoformat(),
        )

    def overdue(self, today: Optional[date] = None) -> list[ScheduledWork]:
        today = today or utc_today()
        return self.store.list_active_work(due_before=today.isoformat())

    def worklist(self, engineer_id: int) -> list[ScheduledWork]:
        """All active work assigned to one engineer, soonest first."""
        return self.store.list_active_work(assignee_id=engineer_id)
