"""
API request and response models for the EquipCare trigger API.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in cmms/models.py and
core/models.py, which own the internal domain representation. Route handlers
map between the two through the from_domain() factories below.
"""

import re
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cmms.models import EscalationRule, Notification, ScheduledWork, WorkEvent
from core.models import BatchResult, EscalationEvent, ItemFailure, RecommendationScore

# Targets are "user:<id>" or "role:<name>".
TARGET_PATTERN = r"^(user:\d+|role:[A-Za-z0-9_\-]+)$"


def _check_targets(values: list[str]) -> list[str]:
    for v in values:
        if not re.match(TARGET_PATTERN, v):
            raise ValueError(f"Invalid target '{v}' (expected user:<id> or role:<name>)")
    return values


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class KindEnum(str, Enum):
    pm = "pm"
    calibration = "calibration"


class ThresholdKindEnum(str, Enum):
    days_overdue = "days_overdue"
    percent_elapsed = "percent_elapsed"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class AutoScheduleRequest(BaseModel):
    """Request body for POST /api/v1/schedule/auto. Omit asset_ids to cover every asset."""

    asset_ids: Optional[list[int]] = Field(default=None, max_length=1000)


class ScheduleCreate(BaseModel):
    """Request body for POST /api/v1/schedule (manual scheduling)."""

    asset_id: int
    scheduled_date: date
    kind: KindEnum = KindEnum.pm
    vendor_id: Optional[int] = None
    assignee_id: Optional[int] = None


class CompleteRequest(BaseModel):
    completed_on: Optional[date] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RescheduleRequest(BaseModel):
    scheduled_date: date


class TriggerRequest(BaseModel):
    """Optional evaluation date for trigger routes. Defaults to today (UTC)."""

    today: Optional[date] = None


class ReminderRequest(BaseModel):
    today: Optional[date] = None
    days_before: Optional[list[int]] = Field(default=None, min_length=1, max_length=10)

    @field_validator("days_before")
    @classmethod
    def non_negative(cls, values: Optional[list[int]]) -> Optional[list[int]]:
        if values is not None and any(v < 0 for v in values):
            raise ValueError("days_before entries must be zero or positive")
        return values


class RuleCreate(BaseModel):
    """Request body for POST /api/v1/escalations/rules."""

    model_config = ConfigDict(str_strip_whitespace=True)

    entity_type: KindEnum
    level: int = Field(ge=1)
    threshold: float = Field(ge=0)
    threshold_kind: ThresholdKindEnum = ThresholdKindEnum.days_overdue
    targets: list[str] = Field(min_length=1, max_length=50)
    notify_email: bool = False

    @field_validator("targets")
    @classmethod
    def validate_targets(cls, values: list[str]) -> list[str]:
        return _check_targets(values)


class RuleUpdate(BaseModel):
    """Request body for PATCH /api/v1/escalations/rules/{rule_id}. All fields optional."""

    level: Optional[int] = Field(default=None, ge=1)
    threshold: Optional[float] = Field(default=None, ge=0)
    threshold_kind: Optional[ThresholdKindEnum] = None
    targets: Optional[list[str]] = Field(default=None, min_length=1, max_length=50)
    notify_email: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("targets")
    @classmethod
    def validate_targets(cls, values: Optional[list[str]]) -> Optional[list[str]]:
        if values is None:
            return values
        return _check_targets(values)


class SeedRulesRequest(BaseModel):
    entity_type: KindEnum = KindEnum.pm
    roles: Optional[list[str]] = Field(default=None, min_length=1)


class ReadAllRequest(BaseModel):
    user_id: int


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"


class WorkResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    asset_id: int
    kind: str
    policy_id: Optional[int]
    scheduled_date: str
    status: str
    escalation_level: int
    vendor_id: Optional[int]
    assignee_id: Optional[int]
    completed_date: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, work: ScheduledWork) -> "WorkResponse":
        return cls(
            id=work.id,
            asset_id=work.asset_id,
            kind=work.kind,
            policy_id=work.policy_id,
            scheduled_date=work.scheduled_date,
            status=work.status,
            escalation_level=work.escalation_level,
            vendor_id=work.vendor_id,
            assignee_id=work.assignee_id,
            completed_date=work.completed_date,
            created_at=work.created_at,
            updated_at=work.updated_at,
        )


class WorkEventRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str
    escalation_level: int
    note: Optional[str]
    recorded_at: str

    @classmethod
    def from_domain(cls, event: WorkEvent) -> "WorkEventRow":
        return cls(
            status=event.status,
            escalation_level=event.escalation_level,
            note=event.note,
            recorded_at=event.recorded_at,
        )


class CompleteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    work_id: int
    next_due_date: Optional[date]


class RuleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    entity_type: str
    level: int
    threshold_kind: str
    threshold: float
    targets: list[str]
    notify_email: bool
    is_active: bool

    @classmethod
    def from_domain(cls, rule: EscalationRule) -> "RuleResponse":
        return cls(
            id=rule.id,
            entity_type=rule.entity_type,
            level=rule.level,
            threshold_kind=rule.threshold_kind,
            threshold=rule.threshold,
            targets=rule.targets,
            notify_email=rule.notify_email,
            is_active=rule.is_active,
        )


class NotificationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    type: str
    title: str
    message: str
    entity_type: Optional[str]
    entity_id: Optional[int]
    is_read: bool
    created_at: str

    @classmethod
    def from_domain(cls, n: Notification) -> "NotificationResponse":
        return cls(
            id=n.id,
            user_id=n.user_id,
            type=n.type,
            title=n.title,
            message=n.message,
            entity_type=n.entity_type,
            entity_id=n.entity_id,
            is_read=n.is_read,
            created_at=n.created_at,
        )


class NotificationPageResponse(BaseModel):
    """Response body for GET /api/v1/notifications. Items are newest first."""

    model_config = ConfigDict(frozen=True)

    items: list[NotificationResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class UnreadCountResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    unread: int


class ReadAllResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    updated: int


class EscalationEventRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    work_id: int
    asset_id: int
    kind: str
    level: int
    rule_id: int
    days_overdue: int
    recipient_ids: list[int]
    notification_ids: list[int]

    @classmethod
    def from_domain(cls, event: EscalationEvent) -> "EscalationEventRow":
        return cls(
            work_id=event.work_id,
            asset_id=event.asset_id,
            kind=event.kind,
            level=event.level,
            rule_id=event.rule_id,
            days_overdue=event.days_overdue,
            recipient_ids=event.recipient_ids,
            notification_ids=event.notification_ids,
        )


class RecommendationRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset_id: int
    asset_name: str
    composite: float
    flagged: bool
    recommendation: str
    priority: str
    factors: dict[str, float]
    reasons: list[str]
    estimated_replacement_cost: Optional[float]
    estimated_replacement_date: Optional[str]

    @classmethod
    def from_domain(cls, s: RecommendationScore) -> "RecommendationRow":
        return cls(
            asset_id=s.asset_id,
            asset_name=s.asset_name,
            composite=s.composite,
            flagged=s.flagged,
            recommendation=s.recommendation,
            priority=s.priority,
            factors=s.factors,
            reasons=s.reasons,
            estimated_replacement_cost=s.estimated_replacement_cost,
            estimated_replacement_date=s.estimated_replacement_date,
        )


class EndOfLifeRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset_id: int
    name: str
    department: str
    purchase_date: str


# ---------------------------------------------------------------------------
# Batch envelopes
# ---------------------------------------------------------------------------


class ItemFailureRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: Optional[int]
    code: str
    message: str

    @classmethod
    def from_domain(cls, f: ItemFailure) -> "ItemFailureRow":
        return cls(item_id=f.item_id, code=f.code, message=f.message)


class BatchMeta(BaseModel):
    """Metadata envelope shared by every batch trigger response."""

    model_config = ConfigDict(frozen=True)

    attempted: int
    succeeded: int
    failed: int
    outcome: str  # "success" | "partial" | "failure"

    @classmethod
    def from_domain(cls, result: BatchResult) -> "BatchMeta":
        return cls(
            attempted=result.attempted,
            succeeded=len(result.items),
            failed=len(result.failures),
            outcome=result.outcome,
        )


class ScheduleBatchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    meta: BatchMeta
    created: list[WorkResponse]
    failures: list[ItemFailureRow]


class EscalationBatchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    meta: BatchMeta
    events: list[EscalationEventRow]
    failures: list[ItemFailureRow]


class ReminderBatchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    meta: BatchMeta
    notifications: list[NotificationResponse]
    failures: list[ItemFailureRow]


class LifecycleBatchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    meta: BatchMeta
    scores: list[RecommendationRow]
    failures: list[ItemFailureRow]
