"""
api/routes/v1/notifications.py -- In-app notification routes.

Routes:
  GET   /notifications                      -- paginated list for one user, newest first
  GET   /notifications/unread-count         -- unread badge count
  POST  /notifications/read-all             -- mark every notification of a user read
  POST  /notifications/{notification_id}/read

The API key identifies the calling system, not a person, so the user is an
explicit parameter.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.dependencies import require_api_key
from api.limiter import READ_LIMIT, WRITE_LIMIT, limiter
from api.models import (
    ErrorDetail,
    NotificationPageResponse,
    NotificationResponse,
    ReadAllRequest,
    ReadAllResponse,
    UnreadCountResponse,
)
from engine.notifications import NotificationSink

router = APIRouter(dependencies=[Depends(require_api_key)])


@limiter.limit(READ_LIMIT)
@router.get("/notifications", response_model=NotificationPageResponse)
def list_notifications(
    request: Request,
    user_id: int = Query(...),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False),
) -> NotificationPageResponse:
    sink: NotificationSink = request.app.state.sink
    result = sink.list_for_user(user_id, page=page, page_size=page_size, unread_only=unread_only)
    return NotificationPageResponse(
        items=[NotificationResponse.from_domain(n) for n in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@limiter.limit(READ_LIMIT)
@router.get("/notifications/unread-count", response_model=UnreadCountResponse)
def unread_count(request: Request, user_id: int = Query(...)) -> UnreadCountResponse:
    sink: NotificationSink = request.app.state.sink
    return UnreadCountResponse(user_id=user_id, unread=sink.unread_count(user_id))


@limiter.limit(WRITE_LIMIT)
@router.post("/notifications/read-all", response_model=ReadAllResponse)
def read_all(request: Request, body: ReadAllRequest) -> ReadAllResponse:
    """Idempotent: a second call reports updated=0."""
    sink: NotificationSink = request.app.state.sink
    return ReadAllResponse(user_id=body.user_id, updated=sink.mark_all_as_read(body.user_id))


@limiter.limit(WRITE_LIMIT)
@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
def mark_read(request: Request, notification_id: int) -> NotificationResponse:
    """Idempotent: marking an already-read notification succeeds."""
    sink: NotificationSink = request.app.state.sink
    if not sink.mark_as_read(notification_id):
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(
                code="notification_not_found", message=f"Notification {notification_id} not found"
            ).model_dump(),
        )
    return NotificationResponse.from_domain(sink.get(notification_id))
