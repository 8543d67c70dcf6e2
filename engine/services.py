"""
engine/services.py -- Wires the engine components around one open store.

Both trigger surfaces (the CLI in main.py and the API lifespan in api/main.py)
build their components here so they share the same configuration mapping.
"""

from dataclasses import dataclass

from cmms.store import CMMSStore
from core.config import Settings
from core.mailer import build_transport
from engine.escalation import EscalationEngine
from engine.lifecycle import LifecycleReviewer
from engine.notifications import NotificationSink
from engine.reminders import ReminderDispatcher
from engine.scheduler import Scheduler


@dataclass
class Services:
    store: CMMSStore
    sink: NotificationSink
    scheduler: Scheduler
    escalation: EscalationEngine
    reminders: ReminderDispatcher
    lifecycle: LifecycleReviewer


def build_services(store: CMMSStore, settings: Settings, transport=None) -> Services:
    """Build every component around store. transport defaults to the configured SMTP transport."""
    sink = NotificationSink(store, transport if transport is not None else build_transport(settings))
    return Services(
        store=store,
        sink=sink,
        scheduler=Scheduler(store, sink),
        escalation=EscalationEngine(store, sink),
        reminders=ReminderDispatcher(store, sink),
        lifecycle=LifecycleReviewer(
            store,
            sink,
            thresholds=settings.lifecycle_thresholds(),
            notify_roles=tuple(settings.lifecycle_notify_roles),
        ),
    )
