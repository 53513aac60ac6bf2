"""
Activity log service.
Append-only audit trail with integrity hashing.
"""
import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from ..models.models import ActivityLog
from ..config import settings


def record_activity(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor_id=None,
    actor_role: Optional[str] = None,
    description: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
) -> ActivityLog:
    """
    Add an activity entry to the current transaction.

    The entry is committed together with the change it describes, so a
    rejected operation leaves no trace in the log.

    Args:
        db: Database session
        entity_type: Type of entity (task|issue|user)
        entity_id: Entity ID
        action: Action performed (CREATE|ASSIGN|START|COMPLETE|UPDATE|DELETE|LOGIN)
        actor_id: User ID who performed the action
        actor_role: Role of the actor (Admin|Manager|Electrician)
        description: Human readable summary shown in dashboards
        changes_json: Before/after diff
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)

    Returns:
        The pending ActivityLog object
    """
    timestamp_utc = datetime.now(timezone.utc)

    if integrity_secret is None:
        integrity_secret = settings.jwt_secret

    integrity_hash = None
    if integrity_secret:
        canonical_data = {
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action,
            "actor_id": str(actor_id) if actor_id else None,
            "actor_role": actor_role,
            "timestamp_utc": timestamp_utc.isoformat(),
            "changes": changes_json,
        }
        canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
        canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
        integrity_hash = hashlib.sha256(f"{canonical_json}:{integrity_secret}".encode()).hexdigest()

    entry = ActivityLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        description=description,
        changes_json=changes_json,
        timestamp_utc=timestamp_utc,
        integrity_hash=integrity_hash,
    )
    db.add(entry)
    return entry


def get_recent_activities(
    db: Session,
    entity_type: Optional[str] = None,
    limit: int = 50,
) -> list:
    query = db.query(ActivityLog)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    return query.order_by(ActivityLog.timestamp_utc.desc()).limit(limit).all()


def count_activities_since(db: Session, hours: int) -> int:
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    return db.query(ActivityLog).filter(ActivityLog.timestamp_utc >= since).count()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {"before": before_val, "after": after_val}
    return diff


def serialize_activity(entry: ActivityLog) -> Dict[str, Any]:
    return {
        "id": str(entry.id),
        "entity_type": entry.entity_type,
        "entity_id": str(entry.entity_id),
        "action": entry.action,
        "actor_id": str(entry.actor_id) if entry.actor_id else None,
        "actor_role": entry.actor_role,
        "description": entry.description,
        "changes": entry.changes_json,
        "created_at": entry.timestamp_utc.isoformat(),
    }
