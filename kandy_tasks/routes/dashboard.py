import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import RequestContext, get_request_context, require_manager
from ..db import get_db
from ..services import dashboard, notifications
from ..services.audit import get_recent_activities, serialize_activity


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
def get_stats(db: Session = Depends(get_db), ctx: RequestContext = Depends(get_request_context)):
    return {"role": ctx.role.value, **dashboard.stats_for(db, ctx)}


@router.get("/activities")
def list_activities(
    limit: int = 20,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    limit = min(max(1, limit), 200)
    return [serialize_activity(a) for a in get_recent_activities(db, limit=limit)]


@router.get("/notifications")
def list_notifications(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    items = notifications.list_notifications(db, ctx.user_id, unread_only=unread_only)
    return [notifications.serialize_notification(n) for n in items]


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    return notifications.serialize_notification(notifications.mark_read(db, ctx.user_id, notification_id))
