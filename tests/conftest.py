"""
tests/conftest.py -- Shared test fixtures for EquipCare tests.

This module provides:
  - store / file_store: isolated CMMSStore instances
  - RecordingTransport: in-memory stand-in for the SMTP transport
  - sink / scheduler / escalation / reminders / reviewer: engine components
  - seed helpers: add_asset(), add_user(), add_policy()
  - api_client: TestClient with a patched lifespan for route tests

Design: unit tests use plain sqlite:///:memory: (one connection per thread is
enough for single-threaded tests). Race tests need several threads to see
the same database, so file_store puts a real SQLite file under tmp_path.
The API client uses a named shared-memory URI because TestClient runs sync
route handlers in a worker thread pool; plain :memory: would give each thread
a blank schema.

DEBUG must be set before any api/ import so the trigger routes accept calls
without an API key.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Optional

# CRITICAL: set before any core/api import so get_settings() sees DEBUG mode.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, attach_services
from cmms.models import Asset, MaintenancePolicy, User
from cmms.store import CMMSStore
from engine.escalation import EscalationEngine
from engine.lifecycle import LifecycleReviewer
from engine.notifications import NotificationSink
from engine.reminders import ReminderDispatcher
from engine.scheduler import Scheduler

# Rate limits would make test order matter.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Transport double
# ---------------------------------------------------------------------------


class RecordingTransport:
    """Records every send() call. fail=True simulates an unreachable SMTP server."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[list[str], str, str]] = []

    def send(self, recipients: list[str], subject: str, body: str) -> bool:
        self.sent.append((list(recipients), subject, body))
        return not self.fail


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


def add_asset(store: CMMSStore, name: str = "Infusion Pump A", **fields) -> int:
    return store.create_asset(Asset(name=name, department=fields.pop("department", "ICU"), **fields))


def add_user(store: CMMSStore, name: str, role: str, email: Optional[str] = None) -> int:
    return store.create_user(User(name=name, role=role, email=email))


def add_policy(
    store: CMMSStore,
    asset_id: int,
    kind: str = "pm",
    count: int = 90,
    unit: str = "days",
    last_performed: Optional[str] = "2025-01-01",
    engineer_id: Optional[int] = None,
) -> int:
    return store.create_policy(
        MaintenancePolicy(
            asset_id=asset_id,
            kind=kind,
            frequency_count=count,
            frequency_unit=unit,
            last_performed=last_performed,
            engineer_id=engineer_id,
            created_at="2024-12-01T00:00:00+00:00",
        )
    )


# ---------------------------------------------------------------------------
# Stores and components
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CMMSStore, None, None]:
    s = CMMSStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def file_store(tmp_path) -> Generator[CMMSStore, None, None]:
    """File-backed SQLite store shared by several threads."""
    s = CMMSStore(f"sqlite:///{tmp_path / 'equipcare-test.db'}")
    yield s
    s.close()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def sink(store, transport) -> NotificationSink:
    return NotificationSink(store, transport)


@pytest.fixture
def scheduler(store, sink) -> Scheduler:
    return Scheduler(store, sink)


@pytest.fixture
def escalation(store, sink) -> EscalationEngine:
    return EscalationEngine(store, sink)


@pytest.fixture
def reminders(store, sink) -> ReminderDispatcher:
    return ReminderDispatcher(store, sink)


@pytest.fixture
def reviewer(store, sink) -> LifecycleReviewer:
    return LifecycleReviewer(store, sink, notify_roles=("biomed_manager",))


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CMMSStore, transport: RecordingTransport):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state so routes never touch equipcare.db.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_services(app, store, transport)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, CMMSStore], None, None]:
    """Yield (client, store) for API integration tests.

    One named in-memory database per test module keeps modules independent.
    """
    db_name = request.module.__name__.rsplit(".", 1)[-1]
    store = CMMSStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    app.router.lifespan_context = _patch_lifespan(store, RecordingTransport())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store

    store.close()
