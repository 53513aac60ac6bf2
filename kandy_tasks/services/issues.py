"""
Issue reporting: electricians escalate problems on their tasks, managers work
them to resolution.

    open --> in_progress --> resolved
    open -------------------> resolved
"""
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth.security import RequestContext
from ..errors import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ..models.enums import IssuePriority, IssueStatus, IssueType, RequestedAction, TaskStatus
from ..models.models import Issue, Task
from .audit import record_activity
from .notifications import active_manager_ids, create_notification, notify_users
from .validation import local_day_bounds_utc


log = structlog.get_logger(__name__)

# Tasks on which an electrician may still raise an issue
REPORTABLE_TASK_STATUSES = (TaskStatus.assigned, TaskStatus.in_progress)

ALLOWED_TRANSITIONS = {
    IssueStatus.open: (IssueStatus.in_progress, IssueStatus.resolved),
    IssueStatus.in_progress: (IssueStatus.resolved,),
    IssueStatus.resolved: (),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_issue(db: Session, issue_id: uuid.UUID) -> Issue:
    issue = db.get(Issue, issue_id)
    if issue is None:
        raise NotFoundError("Issue", issue_id)
    return issue


def get_issue_for(db: Session, ctx: RequestContext, issue_id: uuid.UUID) -> Issue:
    issue = get_issue(db, issue_id)
    if ctx.is_electrician and issue.reported_by_id != ctx.user_id:
        raise UnauthorizedError("You do not have access to this issue")
    return issue


def report_issue(
    db: Session,
    ctx: RequestContext,
    task_id: uuid.UUID,
    issue_type: IssueType,
    description: str,
    requested_action: Optional[RequestedAction] = None,
    priority: IssuePriority = IssuePriority.normal,
) -> Issue:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    if task.assigned_electrician_id is None or task.assigned_electrician_id != ctx.user_id:
        raise UnauthorizedError("Only the assigned electrician can report issues on this task")
    if task.status not in REPORTABLE_TASK_STATUSES:
        raise InvalidStateError(f"Issues cannot be reported on a {task.status.value} task")
    if not (description or "").strip():
        raise ValidationError.from_fields({"description": "Description is required"})

    issue = Issue(
        task_id=task.id,
        reported_by_id=ctx.user_id,
        issue_type=issue_type,
        description=description.strip(),
        requested_action=requested_action.value if requested_action else None,
        priority=priority,
        status=IssueStatus.open,
    )
    db.add(issue)
    db.flush()
    notify_users(
        db,
        active_manager_ids(db),
        "issue_reported",
        f"{ctx.full_name} reported a {priority.value} {issue_type.value} issue on '{task.title}'",
        task_id=task.id,
        issue_id=issue.id,
    )
    record_activity(
        db, "issue", issue.id, "CREATE",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} reported an issue on '{task.title}'",
    )
    db.commit()
    db.refresh(issue)
    log.info("issue_reported", issue_id=str(issue.id), task_id=str(task.id), priority=priority.value)
    return issue


def update_issue_status(
    db: Session,
    ctx: RequestContext,
    issue_id: uuid.UUID,
    new_status: IssueStatus,
    resolution_notes: Optional[str] = None,
) -> Issue:
    if not ctx.is_manager:
        raise UnauthorizedError("Only managers can update issue status")
    issue = get_issue(db, issue_id)
    current = issue.status
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Issue cannot move from {current.value} to {new_status.value}",
            current_status=current.value,
        )

    values: Dict[str, Any] = {"status": new_status, "updated_at": _now()}
    if new_status == IssueStatus.resolved:
        notes = (resolution_notes or "").strip()
        if not notes:
            raise ValidationError.from_fields({"resolution_notes": "Resolution notes are required to resolve an issue"})
        values.update(resolution_notes=notes, resolved_by_id=ctx.user_id, resolved_at=_now())

    result = db.execute(
        update(Issue)
        .where(Issue.id == issue.id, Issue.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        fresh = get_issue(db, issue_id)
        log.warning("issue_transition_conflict", issue_id=str(issue_id), current=fresh.status.value)
        raise InvalidTransitionError(
            f"Issue status changed to {fresh.status.value}",
            current_status=fresh.status.value,
        )

    if issue.reported_by_id:
        create_notification(
            db, issue.reported_by_id, "issue_updated",
            f"Your issue is now {new_status.value.replace('_', ' ')}",
            task_id=issue.task_id,
            issue_id=issue.id,
        )
    record_activity(
        db, "issue", issue.id, "UPDATE",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} moved issue to {new_status.value}",
        changes_json={"status": {"before": current.value, "after": new_status.value}},
    )
    db.commit()
    db.refresh(issue)
    log.info("issue_status_updated", issue_id=str(issue.id), status=new_status.value)
    return issue


def list_issues(
    db: Session,
    ctx: RequestContext,
    status: Optional[IssueStatus] = None,
    priority: Optional[IssuePriority] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list:
    """All filters are optional and combined with AND; the date range is inclusive."""
    query = db.query(Issue)
    if ctx.is_electrician:
        query = query.filter(Issue.reported_by_id == ctx.user_id)
    if status:
        query = query.filter(Issue.status == status)
    if priority:
        query = query.filter(Issue.priority == priority)
    if start_date:
        query = query.filter(Issue.created_at >= local_day_bounds_utc(start_date)[0])
    if end_date:
        query = query.filter(Issue.created_at <= local_day_bounds_utc(end_date)[1])
    return query.order_by(Issue.created_at.desc()).all()


def issue_stats(issues) -> Dict[str, int]:
    """Counts over a snapshot of issues."""
    unresolved = [i for i in issues if i.status != IssueStatus.resolved]
    return {
        "total_issues": len(issues),
        "open_issues": len(unresolved),
        "in_progress_issues": sum(1 for i in issues if i.status == IssueStatus.in_progress),
        "resolved_issues": len(issues) - len(unresolved),
        "urgent_issues": sum(1 for i in unresolved if i.priority == IssuePriority.urgent),
        "emergency_issues": sum(1 for i in unresolved if i.priority == IssuePriority.emergency),
    }
