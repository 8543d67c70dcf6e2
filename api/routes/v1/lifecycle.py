"""
api/routes/v1/lifecycle.py -- Lifecycle scoring routes.

Routes:
  POST  /lifecycle/review            -- score assets and notify on flagged ones
  GET   /lifecycle/recommendations   -- scores only, most urgent first
  GET   /lifecycle/end-of-life       -- assets older than N years
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import require_api_key
from api.limiter import READ_LIMIT, TRIGGER_LIMIT, limiter
from api.models import (
    BatchMeta,
    EndOfLifeRow,
    ItemFailureRow,
    LifecycleBatchResponse,
    RecommendationRow,
    TriggerRequest,
)
from engine.lifecycle import LifecycleReviewer

router = APIRouter(dependencies=[Depends(require_api_key)])


@limiter.limit(TRIGGER_LIMIT)
@router.post("/lifecycle/review", response_model=LifecycleBatchResponse)
def review(request: Request, body: Optional[TriggerRequest] = None) -> LifecycleBatchResponse:
    reviewer: LifecycleReviewer = request.app.state.lifecycle
    result = reviewer.review(today=body.today if body else None)
    return LifecycleBatchResponse(
        meta=BatchMeta.from_domain(result),
        scores=[RecommendationRow.from_domain(s) for s in result.items],
        failures=[ItemFailureRow.from_domain(f) for f in result.failures],
    )


@limiter.limit(READ_LIMIT)
@router.get("/lifecycle/recommendations", response_model=list[RecommendationRow])
def recommendations(
    request: Request,
    flagged_only: bool = Query(default=False),
) -> list[RecommendationRow]:
    reviewer: LifecycleReviewer = request.app.state.lifecycle
    scores = reviewer.recommendations()
    if flagged_only:
        scores = [s for s in scores if s.flagged]
    return [RecommendationRow.from_domain(s) for s in scores]


@limiter.limit(READ_LIMIT)
@router.get("/lifecycle/end-of-life", response_model=list[EndOfLifeRow])
def end_of_life(request: Request, threshold_years: int = Query(default=5, ge=1, le=50)) -> list[EndOfLifeRow]:
    reviewer: LifecycleReviewer = request.app.state.lifecycle
    return [
        EndOfLifeRow(asset_id=a.id, name=a.name, department=a.department, purchase_date=a.purchase_date)
        for a in reviewer.nearing_end_of_life(threshold_years)
    ]
