"""
In-app notification service.
Records are added to the caller's transaction; clients poll for them.
"""
import uuid
from typing import Any, Dict, Iterable, Optional
from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models.enums import Role, UserStatus
from ..models.models import Notification, User


def create_notification(
    db: Session,
    user_id: uuid.UUID,
    notification_type: str,
    message: str,
    task_id: Optional[uuid.UUID] = None,
    issue_id: Optional[uuid.UUID] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        message=message,
        task_id=task_id,
        issue_id=issue_id,
        is_read=False,
    )
    db.add(notification)
    return notification


def notify_users(
    db: Session,
    user_ids: Iterable[uuid.UUID],
    notification_type: str,
    message: str,
    task_id: Optional[uuid.UUID] = None,
    issue_id: Optional[uuid.UUID] = None,
) -> list:
    return [
        create_notification(db, uid, notification_type, message, task_id=task_id, issue_id=issue_id)
        for uid in user_ids
    ]


def active_manager_ids(db: Session) -> list:
    rows = (
        db.query(User.id)
        .filter(User.role == Role.manager, User.status == UserStatus.active)
        .all()
    )
    return [row[0] for row in rows]


def list_notifications(db: Session, user_id: uuid.UUID, unread_only: bool = False, limit: int = 50) -> list:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(db: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": str(notification.id),
        "type": notification.type,
        "message": notification.message,
        "task_id": str(notification.task_id) if notification.task_id else None,
        "issue_id": str(notification.issue_id) if notification.issue_id else None,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat(),
    }
