from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Calendar units accepted in a maintenance frequency. A domain rule -- not an
# API contract. All layers (api/, CLI, store) validate units against this set.
FREQUENCY_UNITS = ("days", "weeks", "months", "years")

POLICY_KINDS = ("pm", "calibration")


class WorkStatus(str, Enum):
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"
    CANCELLED = "Cancelled"


# Active = anything that is not terminal.
TERMINAL_STATUSES = (WorkStatus.COMPLETED.value, WorkStatus.CANCELLED.value)
ACTIVE_STATUSES = (WorkStatus.SCHEDULED.value, WorkStatus.IN_PROGRESS.value, WorkStatus.OVERDUE.value)


class NotificationType(str, Enum):
    REMINDER = "reminder"
    ESCALATION = "escalation"
    END_OF_LIFE = "end_of_life"
    SYSTEM = "system"


class ThresholdKind(str, Enum):
    DAYS_OVERDUE = "days_overdue"
    PERCENT_ELAPSED = "percent_elapsed"


@dataclass(frozen=True)
class Frequency:
    count: int
    unit: str  # one of FREQUENCY_UNITS

    def __str__(self) -> str:
        return f"{self.count} {self.unit}"


# ---------------------------------------------------------------------------
# Lifecycle scoring
# ---------------------------------------------------------------------------


@dataclass
class LifecycleMetrics:
    age_years: float
    service_cost_ratio: float  # total service cost / replacement cost
    downtime_hours: float
    utilization_pct: float  # 0 means unknown


@dataclass
class LifecycleThresholds:
    min_age_years: float = 5.0
    max_service_cost_ratio: float = 0.5
    min_downtime_hours: float = 100.0
    min_utilization_pct: float = 20.0
    replacement_threshold: float = 1.0
    monitor_threshold: float = 0.75


@dataclass
class LifecycleWeights:
    age: float = 1.0
    service_cost: float = 1.0
    downtime: float = 1.0
    utilization: float = 1.0


@dataclass
class RecommendationScore:
    asset_id: Optional[int]
    composite: float
    flagged: bool
    recommendation: str  # "Replace" | "Monitor" | "Maintain"
    priority: str  # "High" | "Medium" | "Low"
    factors: dict[str, float] = field(default_factory=dict)
    reasons: list[str] = field(default_factory=list)
    asset_name: str = ""
    estimated_replacement_cost: Optional[float] = None
    estimated_replacement_date: Optional[str] = None


# ---------------------------------------------------------------------------
# Batch results
# ---------------------------------------------------------------------------


@dataclass
class ItemFailure:
    item_id: Optional[int]
    code: str
    message: str


@dataclass
class BatchResult:
    """Aggregate outcome of a batch operation.

    items holds the successful results (created work, escalation events,
    notifications, scores). failures holds one entry per problem; an input
    can fail more than once (an asset with two bad policies). attempted
    counts the inputs the batch looked at.
    """

    items: list = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    attempted: int = 0

    @property
    def outcome(self) -> str:
        if not self.failures:
            return "success"
        failed_items = {f.item_id for f in self.failures}
        if self.items or len(failed_items) < self.attempted:
            return "partial"
        return "failure"


@dataclass
class EscalationEvent:
    work_id: int
    asset_id: int
    kind: str
    level: int  # index of the rule actioned; the item is now at level + 1
    rule_id: int
    days_overdue: int
    recipient_ids: list[int] = field(default_factory=list)
    notification_ids: list[int] = field(default_factory=list)
