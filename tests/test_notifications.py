"""Unit tests for engine/notifications.py -- Notification Sink."""

import pytest
from conftest import RecordingTransport, add_user

from cmms.models import Notification
from core.errors import StoreUnavailable
from engine.notifications import NotificationSink


def _note(user_id, title="PM due", emails=None, entity_id=1):
    return Notification(
        user_id=user_id,
        type="reminder",
        title=title,
        message="Check the pump",
        entity_type="scheduled_work",
        entity_id=entity_id,
        email_recipients=emails or [],
    )


class TestCreate:
    def test_assigns_id_and_timestamp(self, store, sink):
        user = add_user(store, "Eve", "biomed_engineer")
        created = sink.create(_note(user))
        assert created.id is not None
        assert created.created_at
        assert created.is_read is False
        assert store.get_notification(created.id).title == "PM due"

    def test_email_sent_after_persisting(self, store, sink, transport):
        user = add_user(store, "Eve", "biomed_engineer")
        sink.create(_note(user, emails=["eve@hospital.example"]))
        assert transport.sent == [(["eve@hospital.example"], "PM due", "Check the pump")]

    def test_transport_failure_keeps_record(self, store):
        """An unreachable mail server never loses the in-app notification."""
        user = add_user(store, "Eve", "biomed_engineer")
        failing = RecordingTransport(fail=True)
        sink = NotificationSink(store, failing)

        created = sink.create(_note(user, emails=["eve@hospital.example"]))

        assert len(failing.sent) == 1
        assert store.get_notification(created.id) is not None
        assert sink.unread_count(user) == 1

    def test_no_transport_configured(self, store):
        user = add_user(store, "Eve", "biomed_engineer")
        created = NotificationSink(store).create(_note(user, emails=["eve@hospital.example"]))
        assert created.id is not None

    def test_create_many_reports_store_failures(self, store, sink, monkeypatch):
        user = add_user(store, "Eve", "biomed_engineer")
        real_insert = store.insert_notification

        def flaky_insert(n):
            if n.title == "broken":
                raise StoreUnavailable("insert_notification: disk I/O error")
            return real_insert(n)

        monkeypatch.setattr(store, "insert_notification", flaky_insert)

        created, failed = sink.create_many([_note(user, "first"), _note(user, "broken"), _note(user, "third")])

        assert [n.title for n in created] == ["first", "third"]
        assert [n.title for n in failed] == ["broken"]

    def test_single_create_propagates_store_failure(self, store, sink, monkeypatch):
        def down(n):
            raise StoreUnavailable("insert_notification: database is locked")

        monkeypatch.setattr(store, "insert_notification", down)
        with pytest.raises(StoreUnavailable):
            sink.create(_note(1))


class TestReadState:
    def test_get_returns_current_state(self, store, sink):
        user = add_user(store, "Eve", "biomed_engineer")
        created = sink.create(_note(user))
        sink.mark_as_read(created.id)

        assert sink.get(created.id).is_read is True
        assert sink.get(424242) is None

    def test_mark_as_read_is_idempotent(self, store, sink):
        user = add_user(store, "Eve", "biomed_engineer")
        created = sink.create(_note(user))

        assert sink.mark_as_read(created.id) is True
        assert sink.mark_as_read(created.id) is True
        assert store.get_notification(created.id).is_read is True
        assert sink.unread_count(user) == 0

    def test_mark_unknown_notification(self, sink):
        assert sink.mark_as_read(424242) is False

    def test_mark_all_as_read(self, store, sink):
        eve = add_user(store, "Eve", "biomed_engineer")
        mia = add_user(store, "Mia", "biomed_manager")
        for i in range(3):
            sink.create(_note(eve, f"n{i}"))
        sink.create(_note(mia))

        assert sink.mark_all_as_read(eve) == 3
        assert sink.mark_all_as_read(eve) == 0
        assert sink.unread_count(eve) == 0
        assert sink.unread_count(mia) == 1


class TestListForUser:
    def test_newest_first_with_page_count(self, store, sink):
        user = add_user(store, "Eve", "biomed_engineer")
        for i in range(5):
            sink.create(_note(user, f"n{i}"))

        first = sink.list_for_user(user, page=1, page_size=2)
        last = sink.list_for_user(user, page=3, page_size=2)

        assert [n.title for n in first.items] == ["n4", "n3"]
        assert first.total == 5
        assert first.total_pages == 3
        assert [n.title for n in last.items] == ["n0"]

    def test_unread_only(self, store, sink):
        user = add_user(store, "Eve", "biomed_engineer")
        read = sink.create(_note(user, "read"))
        sink.create(_note(user, "unread"))
        sink.mark_as_read(read.id)

        page = sink.list_for_user(user, unread_only=True)

        assert [n.title for n in page.items] == ["unread"]
        assert page.total == 1

    def test_empty(self, sink):
        page = sink.list_for_user(999)
        assert page.items == []
        assert page.total_pages == 0

    @pytest.mark.parametrize("page,page_size", [(0, 20), (1, 0)])
    def test_invalid_paging(self, sink, page, page_size):
        with pytest.raises(ValueError):
            sink.list_for_user(1, page=page, page_size=page_size)


class TestExists:
    def test_matches_title_fragment_and_user(self, store, sink):
        user = add_user(store, "Eve", "biomed_engineer")
        sink.create(_note(user, "PM due in 7 day(s): Pump", entity_id=5))

        assert sink.exists("reminder", "scheduled_work", 5, title_contains="due in 7 day(s)")
        assert sink.exists("reminder", "scheduled_work", 5, user_id=user)
        assert not sink.exists("reminder", "scheduled_work", 5, title_contains="due in 3 day(s)")
        assert not sink.exists("reminder", "scheduled_work", 5, user_id=user + 1)
        assert not sink.exists("escalation", "scheduled_work", 5)

    def test_percent_in_fragment_is_literal(self, store, sink):
        user = add_user(store, "Eve", "biomed_engineer")
        sink.create(_note(user, "Usage at 10% of target", entity_id=2))
        assert sink.exists("reminder", "scheduled_work", 2, title_contains="10%")
        assert not sink.exists("reminder", "scheduled_work", 2, title_contains="1%")
