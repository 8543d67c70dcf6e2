"""
cmms/models.py -- Domain dataclasses for the EquipCare maintenance store.

These are pure data containers with zero logic beyond trivial derived
properties. Scheduling, escalation and notification rules live in engine/;
persistence (including the conditional writes that guard the invariants)
lives in cmms/store.py.

Dates are ISO 8601 "YYYY-MM-DD" strings and timestamps ISO 8601 UTC strings,
exactly as stored. id is None before a record is written to the database.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Asset:
    """A piece of biomedical equipment, as known to the asset directory.

    purchase_cost doubles as the replacement cost for lifecycle scoring.
    contact_user_id is the department contact told when work completes.
    """

    name: str
    department: str = ""
    model: Optional[str] = None
    manufacturer: Optional[str] = None
    purchase_date: Optional[str] = None
    purchase_cost: Optional[float] = None
    total_service_cost: float = 0.0
    total_downtime_hours: float = 0.0
    utilization_pct: float = 0.0
    lifecycle_state: str = "Active"  # "Active" | "InRepair" | "Disposed"
    contact_user_id: Optional[int] = None
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class User:
    """A person who can receive notifications. role drives `role:` escalation targets."""

    name: str
    role: str  # "biomed_engineer" | "biomed_manager" | "admin" | ...
    email: Optional[str] = None
    is_active: bool = True
    id: Optional[int] = None


@dataclass
class MaintenancePolicy:
    """How often an asset needs PM or calibration.

    last_performed is advanced by completion events; when it is None the
    policy's creation date anchors the first due date.
    """

    asset_id: int
    kind: str  # "pm" | "calibration"
    frequency_count: int
    frequency_unit: str  # "days" | "weeks" | "months" | "years"
    vendor_id: Optional[int] = None
    engineer_id: Optional[int] = None
    last_performed: Optional[str] = None
    is_active: bool = True
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class ScheduledWork:
    """One due maintenance event for an (asset, kind) pair."""

    asset_id: int
    kind: str
    scheduled_date: str
    status: str = "Scheduled"  # "Scheduled" | "InProgress" | "Overdue" | "Completed" | "Cancelled"
    escalation_level: int = 0
    policy_id: Optional[int] = None
    vendor_id: Optional[int] = None
    assignee_id: Optional[int] = None
    completed_date: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_active(self) -> bool:
        return self.status not in ("Completed", "Cancelled")


@dataclass
class WorkEvent:
    """Immutable audit entry written whenever a ScheduledWork status or level changes.

    Records are never updated or deleted -- only inserted.
    """

    work_id: int
    status: str
    escalation_level: int
    recorded_at: str
    note: Optional[str] = None
    id: Optional[int] = None


@dataclass
class EscalationRule:
    """One step of an escalation chain.

    Rules for one entity type are evaluated in (level, threshold, id) order.
    targets entries are "user:<id>" or "role:<name>".
    """

    entity_type: str  # "pm" | "calibration"
    level: int
    threshold: float
    targets: list[str] = field(default_factory=list)
    threshold_kind: str = "days_overdue"  # "days_overdue" | "percent_elapsed" (of the interval, past due)
    notify_email: bool = False
    is_active: bool = True
    id: Optional[int] = None


@dataclass
class Notification:
    user_id: int
    type: str  # "reminder" | "escalation" | "end_of_life" | "system"
    title: str
    message: str = ""
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    is_read: bool = False
    email_recipients: list[str] = field(default_factory=list)
    id: Optional[int] = None
    created_at: str = ""
