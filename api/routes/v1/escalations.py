"""
api/routes/v1/escalations.py -- Escalation trigger and rule administration.

Routes:
  POST   /escalations/trigger            -- check_and_escalate
  GET    /escalations/rules              -- list rules (optionally one entity type)
  POST   /escalations/rules              -- create a rule
  POST   /escalations/rules/seed         -- seed the default 1/3/7-day chain
  PATCH  /escalations/rules/{rule_id}    -- update a rule
  DELETE /escalations/rules/{rule_id}    -- deactivate a rule (rules are never deleted)
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.dependencies import require_api_key
from api.limiter import READ_LIMIT, TRIGGER_LIMIT, WRITE_LIMIT, limiter
from api.models import (
    BatchMeta,
    ErrorDetail,
    EscalationBatchResponse,
    EscalationEventRow,
    ItemFailureRow,
    KindEnum,
    RuleCreate,
    RuleResponse,
    RuleUpdate,
    SeedRulesRequest,
    TriggerRequest,
)
from cmms.models import EscalationRule
from cmms.store import CMMSStore
from core.config import get_settings
from engine.escalation import EscalationEngine

router = APIRouter(dependencies=[Depends(require_api_key)])


def _rule_not_found(rule_id: int) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="rule_not_found", message=f"Escalation rule {rule_id} not found").model_dump(),
    )


@limiter.limit(TRIGGER_LIMIT)
@router.post("/escalations/trigger", response_model=EscalationBatchResponse)
def trigger(request: Request, body: Optional[TriggerRequest] = None) -> EscalationBatchResponse:
    """Evaluate all overdue work and fire every crossed escalation level."""
    engine: EscalationEngine = request.app.state.escalation
    result = engine.check_and_escalate(today=body.today if body else None)
    return EscalationBatchResponse(
        meta=BatchMeta.from_domain(result),
        events=[EscalationEventRow.from_domain(e) for e in result.items],
        failures=[ItemFailureRow.from_domain(f) for f in result.failures],
    )


@limiter.limit(READ_LIMIT)
@router.get("/escalations/rules", response_model=list[RuleResponse])
def list_rules(
    request: Request,
    entity_type: Optional[KindEnum] = Query(default=None),
    include_inactive: bool = Query(default=False),
) -> list[RuleResponse]:
    store: CMMSStore = request.app.state.store
    rules = store.list_rules(entity_type.value if entity_type else None, active_only=not include_inactive)
    return [RuleResponse.from_domain(r) for r in rules]


@limiter.limit(WRITE_LIMIT)
@router.post("/escalations/rules", response_model=RuleResponse, status_code=201)
def create_rule(request: Request, body: RuleCreate) -> RuleResponse:
    store: CMMSStore = request.app.state.store
    rule_id = store.create_rule(
        EscalationRule(
            entity_type=body.entity_type.value,
            level=body.level,
            threshold=body.threshold,
            targets=body.targets,
            threshold_kind=body.threshold_kind.value,
            notify_email=body.notify_email,
        )
    )
    return RuleResponse.from_domain(store.get_rule(rule_id))


@limiter.limit(WRITE_LIMIT)
@router.post("/escalations/rules/seed", response_model=list[RuleResponse])
def seed_rules(request: Request, body: Optional[SeedRulesRequest] = None) -> list[RuleResponse]:
    """Create the default chain for an entity type that has no rules. Returns the rules created."""
    engine: EscalationEngine = request.app.state.escalation
    body = body or SeedRulesRequest()
    roles = body.roles or get_settings().escalation_default_roles
    return [RuleResponse.from_domain(r) for r in engine.seed_default_rules(roles, body.entity_type.value)]


@limiter.limit(WRITE_LIMIT)
@router.patch("/escalations/rules/{rule_id}", response_model=RuleResponse)
def update_rule(request: Request, rule_id: int, body: RuleUpdate) -> RuleResponse:
    store: CMMSStore = request.app.state.store
    fields = body.model_dump(exclude_none=True)
    if "threshold_kind" in fields:
        fields["threshold_kind"] = body.threshold_kind.value
    if fields and not store.update_rule(rule_id, **fields):
        raise _rule_not_found(rule_id)
    rule = store.get_rule(rule_id)
    if rule is None:
        raise _rule_not_found(rule_id)
    return RuleResponse.from_domain(rule)


@limiter.limit(WRITE_LIMIT)
@router.delete("/escalations/rules/{rule_id}", response_model=RuleResponse)
def deactivate_rule(request: Request, rule_id: int) -> RuleResponse:
    store: CMMSStore = request.app.state.store
    if not store.deactivate_rule(rule_id):
        raise _rule_not_found(rule_id)
    return RuleResponse.from_domain(store.get_rule(rule_id))
