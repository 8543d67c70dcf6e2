"""
api/routes/v1/schedule.py -- Scheduling routes.

Routes (static paths before /{work_id} paths to avoid capture conflicts):
  POST   /schedule/auto                  -- auto_schedule trigger
  POST   /schedule/reminders             -- send_reminders trigger
  POST   /schedule                       -- manual schedule_single
  GET    /schedule/upcoming              -- active work due in the next N days
  GET    /schedule/overdue               -- active work past its date
  GET    /schedule/worklist/{engineer_id}
  POST   /schedule/{work_id}/start
  POST   /schedule/{work_id}/complete
  POST   /schedule/{work_id}/cancel
  PATCH  /schedule/{work_id}             -- reschedule
  GET    /schedule/{work_id}/history     -- audit trail

Domain errors (AssetNotFound, DuplicateActiveSchedule, WorkNotFound, ...)
propagate to the EquipCareError handler in api/main.py.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.dependencies import require_api_key
from api.limiter import READ_LIMIT, TRIGGER_LIMIT, WRITE_LIMIT, limiter
from api.models import (
    AutoScheduleRequest,
    BatchMeta,
    CancelRequest,
    CompleteRequest,
    CompleteResponse,
    ErrorDetail,
    ItemFailureRow,
    NotificationResponse,
    ReminderBatchResponse,
    ReminderRequest,
    RescheduleRequest,
    ScheduleBatchResponse,
    ScheduleCreate,
    WorkEventRow,
    WorkResponse,
)
from core.config import get_settings
from engine.reminders import ReminderDispatcher
from engine.scheduler import Scheduler

router = APIRouter(dependencies=[Depends(require_api_key)])


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


@limiter.limit(TRIGGER_LIMIT)
@router.post("/schedule/auto", response_model=ScheduleBatchResponse)
def auto_schedule(request: Request, body: Optional[AutoScheduleRequest] = None) -> ScheduleBatchResponse:
    """Create the next ScheduledWork for every policy without active work."""
    scheduler: Scheduler = request.app.state.scheduler
    result = scheduler.auto_schedule(body.asset_ids if body else None)
    return ScheduleBatchResponse(
        meta=BatchMeta.from_domain(result),
        created=[WorkResponse.from_domain(w) for w in result.items],
        failures=[ItemFailureRow.from_domain(f) for f in result.failures],
    )


@limiter.limit(TRIGGER_LIMIT)
@router.post("/schedule/reminders", response_model=ReminderBatchResponse)
def send_reminders(request: Request, body: Optional[ReminderRequest] = None) -> ReminderBatchResponse:
    """Notify assignees and department contacts about work due soon."""
    reminders: ReminderDispatcher = request.app.state.reminders
    days = (body.days_before if body else None) or get_settings().reminder_days
    result = reminders.send_reminders(today=body.today if body else None, days_before=days)
    return ReminderBatchResponse(
        meta=BatchMeta.from_domain(result),
        notifications=[NotificationResponse.from_domain(n) for n in result.items],
        failures=[ItemFailureRow.from_domain(f) for f in result.failures],
    )


# ---------------------------------------------------------------------------
# Manual scheduling and listings
# ---------------------------------------------------------------------------


@limiter.limit(WRITE_LIMIT)
@router.post("/schedule", response_model=WorkResponse, status_code=201)
def schedule_single(request: Request, body: ScheduleCreate) -> WorkResponse:
    """Schedule work on a specific date, bypassing recurrence. 409 if work is already active."""
    scheduler: Scheduler = request.app.state.scheduler
    work = scheduler.schedule_single(
        body.asset_id,
        body.scheduled_date,
        vendor_id=body.vendor_id,
        kind=body.kind.value,
        assignee_id=body.assignee_id,
    )
    return WorkResponse.from_domain(work)


@limiter.limit(READ_LIMIT)
@router.get("/schedule/upcoming", response_model=list[WorkResponse])
def upcoming(request: Request, days_ahead: int = Query(default=30, ge=0, le=366)) -> list[WorkResponse]:
    scheduler: Scheduler = request.app.state.scheduler
    return [WorkResponse.from_domain(w) for w in scheduler.upcoming(days_ahead)]


@limiter.limit(READ_LIMIT)
@router.get("/schedule/overdue", response_model=list[WorkResponse])
def overdue(request: Request) -> list[WorkResponse]:
    scheduler: Scheduler = request.app.state.scheduler
    return [WorkResponse.from_domain(w) for w in scheduler.overdue()]


@limiter.limit(READ_LIMIT)
@router.get("/schedule/worklist/{engineer_id}", response_model=list[WorkResponse])
def worklist(request: Request, engineer_id: int) -> list[WorkResponse]:
    """Active work assigned to one engineer, soonest first."""
    scheduler: Scheduler = request.app.state.scheduler
    return [WorkResponse.from_domain(w) for w in scheduler.worklist(engineer_id)]


# ---------------------------------------------------------------------------
# Transitions on one work item
# ---------------------------------------------------------------------------


@limiter.limit(WRITE_LIMIT)
@router.post("/schedule/{work_id}/start", response_model=WorkResponse)
def start_work(request: Request, work_id: int) -> WorkResponse:
    scheduler: Scheduler = request.app.state.scheduler
    return WorkResponse.from_domain(scheduler.start_work(work_id))


@limiter.limit(WRITE_LIMIT)
@router.post("/schedule/{work_id}/complete", response_model=CompleteResponse)
def complete_work(request: Request, work_id: int, body: Optional[CompleteRequest] = None) -> CompleteResponse:
    """Complete work and return the policy's next due date (null without a policy)."""
    scheduler: Scheduler = request.app.state.scheduler
    next_due = scheduler.complete_work(work_id, body.completed_on if body else None)
    return CompleteResponse(work_id=work_id, next_due_date=next_due)


@limiter.limit(WRITE_LIMIT)
@router.post("/schedule/{work_id}/cancel", response_model=WorkResponse)
def cancel_work(request: Request, work_id: int, body: Optional[CancelRequest] = None) -> WorkResponse:
    scheduler: Scheduler = request.app.state.scheduler
    return WorkResponse.from_domain(scheduler.cancel_work(work_id, body.reason if body else None))


@limiter.limit(WRITE_LIMIT)
@router.patch("/schedule/{work_id}", response_model=WorkResponse)
def reschedule(request: Request, work_id: int, body: RescheduleRequest) -> WorkResponse:
    """Move active work to a new date. The escalation level is kept."""
    scheduler: Scheduler = request.app.state.scheduler
    return WorkResponse.from_domain(scheduler.reschedule(work_id, body.scheduled_date))


@limiter.limit(READ_LIMIT)
@router.get("/schedule/{work_id}/history", response_model=list[WorkEventRow])
def work_history(request: Request, work_id: int) -> list[WorkEventRow]:
    store = request.app.state.store
    if store.get_work(work_id) is None:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="work_not_found", message=f"Scheduled work {work_id} not found").model_dump(),
        )
    return [WorkEventRow.from_domain(e) for e in store.get_work_history(work_id)]
