"""Unit tests for engine/escalation.py -- Escalation Engine.

Covers:
- Scheduled work past its date moves to Overdue
- the 2025-04-10 example: 9 days overdue with thresholds 7/30/90 -> level 1
- a late run fires every crossed threshold, in order, in one pass
- re-running never re-notifies an actioned level
- two threads racing on the same item never double-fire a level
- role and user target resolution, empty chains, missing rules
- percent-elapsed thresholds
- seed_default_rules
"""

import threading
from datetime import date

import pytest
from conftest import add_asset, add_policy, add_user

import core.mailer as mailer
from cmms.models import EscalationRule
from core.mailer import SmtpTransport
from engine.escalation import EscalationEngine
from engine.notifications import NotificationSink
from engine.scheduler import Scheduler


def _chain(store, entity_type="pm", thresholds=(7, 30, 90), targets=None, notify_email=False):
    """Create one rule per threshold; targets[i] is the chain for level i + 1."""
    for i, days in enumerate(thresholds):
        store.create_rule(
            EscalationRule(
                entity_type=entity_type,
                level=i + 1,
                threshold=days,
                targets=targets[i] if targets else ["role:biomed_manager"],
                notify_email=notify_email,
            )
        )


@pytest.fixture
def overdue_pm(store, scheduler):
    """A PM due 2025-04-01 (90 days after 2025-01-01) and one manager to notify."""
    manager = add_user(store, "Mia Manager", "biomed_manager", email="mia@hospital.example")
    asset_id = add_asset(store, "Infusion Pump A")
    add_policy(store, asset_id)
    work = scheduler.auto_schedule([asset_id]).items[0]
    assert work.scheduled_date == "2025-04-01"
    return work, manager


class TestCheckAndEscalate:
    def test_nine_days_overdue_reaches_level_one(self, store, escalation, overdue_pm):
        work, manager = overdue_pm
        _chain(store)

        result = escalation.check_and_escalate(today=date(2025, 4, 10))

        assert result.outcome == "success"
        assert len(result.items) == 1
        event = result.items[0]
        assert event.work_id == work.id
        assert event.level == 0
        assert event.days_overdue == 9
        assert event.recipient_ids == [manager]
        updated = store.get_work(work.id)
        assert updated.status == "Overdue"
        assert updated.escalation_level == 1
        items, total = store.list_notifications(manager)
        assert total == 1
        assert items[0].type == "escalation"
        assert items[0].entity_id == work.id
        assert "Level 1" in items[0].title

    def test_not_yet_due_is_ignored(self, store, escalation, overdue_pm):
        work, _ = overdue_pm
        _chain(store)
        result = escalation.check_and_escalate(today=date(2025, 4, 1))
        assert result.items == []
        assert result.attempted == 0
        assert store.get_work(work.id).status == "Scheduled"

    def test_overdue_below_first_threshold_only_changes_status(self, store, escalation, overdue_pm):
        work, manager = overdue_pm
        _chain(store)
        result = escalation.check_and_escalate(today=date(2025, 4, 3))
        assert result.items == []
        assert store.get_work(work.id).status == "Overdue"
        assert store.get_work(work.id).escalation_level == 0
        assert store.unread_count(manager) == 0

    def test_late_run_fires_every_crossed_threshold_in_order(self, store, escalation, overdue_pm):
        """95 days overdue with thresholds 7/30/90: all three fire, level 1 then 2 then 3."""
        work, manager = overdue_pm
        _chain(store)

        result = escalation.check_and_escalate(today=date(2025, 7, 5))

        assert [e.level for e in result.items] == [0, 1, 2]
        assert store.get_work(work.id).escalation_level == 3
        assert store.unread_count(manager) == 3
        levels = [e.escalation_level for e in store.get_work_history(work.id)]
        assert levels == sorted(levels)

    def test_rerun_does_not_renotify(self, store, escalation, overdue_pm):
        _, manager = overdue_pm
        _chain(store)

        escalation.check_and_escalate(today=date(2025, 4, 10))
        again = escalation.check_and_escalate(today=date(2025, 4, 10))
        later = escalation.check_and_escalate(today=date(2025, 4, 20))

        assert again.items == []
        assert later.items == []
        assert store.unread_count(manager) == 1

    def test_next_level_fires_when_its_threshold_is_crossed(self, store, escalation, overdue_pm):
        work, _ = overdue_pm
        _chain(store)
        escalation.check_and_escalate(today=date(2025, 4, 10))

        result = escalation.check_and_escalate(today=date(2025, 5, 1))

        assert [e.level for e in result.items] == [1]
        assert store.get_work(work.id).escalation_level == 2

    def test_in_progress_work_escalates_without_status_change(self, store, scheduler, escalation, overdue_pm):
        work, _ = overdue_pm
        _chain(store)
        scheduler.start_work(work.id)

        result = escalation.check_and_escalate(today=date(2025, 4, 10))

        assert len(result.items) == 1
        assert store.get_work(work.id).status == "InProgress"

    def test_completed_work_is_never_escalated(self, store, scheduler, escalation, overdue_pm):
        work, _ = overdue_pm
        _chain(store)
        scheduler.complete_work(work.id, date(2025, 4, 2))
        assert escalation.check_and_escalate(today=date(2025, 7, 5)).items == []

    def test_missing_rules_is_a_per_item_failure(self, store, scheduler, escalation, overdue_pm):
        """No calibration rules: calibration item fails, PM item still escalates."""
        work, _ = overdue_pm
        _chain(store)
        other = add_asset(store, "Scale")
        cal = scheduler.schedule_single(other, date(2025, 4, 1), kind="calibration")

        result = escalation.check_and_escalate(today=date(2025, 4, 10))

        assert [e.work_id for e in result.items] == [work.id]
        assert [(f.item_id, f.code) for f in result.failures] == [(cal.id, "rule_not_found")]
        assert result.outcome == "partial"
        assert store.get_work(cal.id).status == "Overdue"

    def test_empty_target_chain_still_advances(self, store, escalation, overdue_pm):
        work, _ = overdue_pm
        _chain(store, thresholds=(7,), targets=[["role:nobody_has_this_role"]])

        result = escalation.check_and_escalate(today=date(2025, 4, 10))

        assert result.items[0].recipient_ids == []
        assert result.items[0].notification_ids == []
        assert store.get_work(work.id).escalation_level == 1

    def test_email_sent_when_rule_asks_for_it(self, store, escalation, transport, overdue_pm):
        _chain(store, thresholds=(7,), notify_email=True)
        escalation.check_and_escalate(today=date(2025, 4, 10))
        assert len(transport.sent) == 1
        recipients, subject, _ = transport.sent[0]
        assert recipients == ["mia@hospital.example"]
        assert "Level 1" in subject

    def test_no_email_without_flag(self, store, escalation, transport, overdue_pm):
        _chain(store, thresholds=(7,))
        escalation.check_and_escalate(today=date(2025, 4, 10))
        assert transport.sent == []

    def test_unsendable_title_does_not_abort_batch(self, store, monkeypatch):
        """A newline in an asset name breaks the email header; both items still escalate."""
        sent = []

        class CapturingSMTP:
            def __init__(self, host, port, timeout=None):
                pass

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

            def starttls(self):
                pass

            def send_message(self, msg):
                sent.append(msg["Subject"])

        monkeypatch.setattr(mailer.smtplib, "SMTP", CapturingSMTP)
        sink = NotificationSink(store, transport=SmtpTransport("smtp.hospital.example"))
        manager = add_user(store, "Mia Manager", "biomed_manager", email="mia@hospital.example")
        for name in ("Pump\nB", "Scale"):
            add_policy(store, add_asset(store, name))
        Scheduler(store, sink).auto_schedule()
        _chain(store, thresholds=(7,), notify_email=True)

        result = EscalationEngine(store, sink).check_and_escalate(today=date(2025, 4, 10))

        assert result.outcome == "success"
        assert len(result.items) == 2
        assert [w.escalation_level for w in store.list_active_work()] == [1, 1]
        assert store.unread_count(manager) == 2
        assert sent == ["Escalation Level 1: Preventive maintenance overdue for Scale"]

    def test_raising_transport_is_logged_not_raised(self, store, overdue_pm):
        class BrokenTransport:
            def send(self, recipients, subject, body):
                raise RuntimeError("mail relay crashed")

        _, manager = overdue_pm
        _chain(store, thresholds=(7,), notify_email=True)

        result = EscalationEngine(store, NotificationSink(store, BrokenTransport())).check_and_escalate(
            today=date(2025, 4, 10)
        )

        assert len(result.items) == 1
        assert store.unread_count(manager) == 1


class TestPercentElapsed:
    def test_percent_threshold(self, store, escalation, overdue_pm):
        """90-day interval: 9 days overdue is 10%, so a 10% rule fires and a 50% rule waits."""
        work, _ = overdue_pm
        for level, pct in ((1, 10), (2, 50)):
            store.create_rule(
                EscalationRule(
                    entity_type="pm",
                    level=level,
                    threshold=pct,
                    threshold_kind="percent_elapsed",
                    targets=["role:biomed_manager"],
                )
            )

        result = escalation.check_and_escalate(today=date(2025, 4, 10))

        assert [e.level for e in result.items] == [0]
        assert store.get_work(work.id).escalation_level == 1

    def test_manual_work_never_crosses_percent_threshold(self, store, scheduler, escalation):
        asset_id = add_asset(store)
        work = scheduler.schedule_single(asset_id, date(2025, 1, 1))
        store.create_rule(
            EscalationRule(entity_type="pm", level=1, threshold=1, threshold_kind="percent_elapsed", targets=[])
        )
        assert escalation.check_and_escalate(today=date(2025, 12, 1)).items == []
        assert store.get_work(work.id).escalation_level == 0


class TestTargetResolution:
    def test_users_and_roles_deduplicated_in_chain_order(self, store, escalation):
        eng = add_user(store, "Eve", "biomed_engineer")
        mgr = add_user(store, "Mia", "biomed_manager")
        admin = add_user(store, "Ada", "admin")

        users = escalation.resolve_targets([f"user:{admin}", "role:biomed_manager", f"user:{mgr}", "role:biomed_engineer"])

        assert [u.id for u in users] == [admin, mgr, eng]

    def test_unknown_and_malformed_targets_ignored(self, store, escalation):
        mgr = add_user(store, "Mia", "biomed_manager")
        users = escalation.resolve_targets(["user:999", "bogus", "role:", f"user:{mgr}"])
        assert [u.id for u in users] == [mgr]


class TestConcurrentEscalation:
    def test_racing_runs_fire_each_level_once(self, file_store):
        manager = add_user(file_store, "Mia", "biomed_manager")
        asset_id = add_asset(file_store)
        add_policy(file_store, asset_id)
        Scheduler(file_store).auto_schedule([asset_id])
        _chain(file_store)
        engines = [EscalationEngine(file_store, NotificationSink(file_store)) for _ in range(4)]
        barrier = threading.Barrier(len(engines))
        events: list = []
        errors: list = []

        def run(engine: EscalationEngine) -> None:
            barrier.wait()
            try:
                events.extend(engine.check_and_escalate(today=date(2025, 7, 5)).items)
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)

        threads = [threading.Thread(target=run, args=(e,)) for e in engines]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert sorted(e.level for e in events) == [0, 1, 2]
        assert file_store.unread_count(manager) == 3


class TestSeedDefaultRules:
    def test_seeds_one_three_seven_day_chain(self, store, escalation):
        rules = escalation.seed_default_rules(["biomed_engineer", "biomed_manager", "admin"])

        assert [(r.level, r.threshold) for r in rules] == [(1, 1.0), (2, 3.0), (3, 7.0)]
        assert rules[0].targets == ["role:biomed_engineer"]
        assert rules[1].targets == ["role:biomed_engineer", "role:biomed_manager"]
        assert rules[2].targets == ["role:biomed_engineer", "role:biomed_manager", "role:admin"]
        assert len(store.list_rules("pm")) == 3

    def test_existing_rules_left_alone(self, store, escalation):
        _chain(store)
        assert escalation.seed_default_rules(["admin"]) == []
        assert len(store.list_rules("pm")) == 3

    def test_roles_required(self, escalation):
        with pytest.raises(ValueError):
            escalation.seed_default_rules([])
