import uuid
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth.security import RequestContext, get_request_context, require_manager, require_roles
from ..db import get_db
from ..errors import ValidationError
from ..models.enums import IssuePriority, IssueStatus, Role
from ..models.models import Issue
from ..schemas.issues import IssueCreate, IssueStatusUpdate
from ..services import issues as issue_service


router = APIRouter(prefix="/issues", tags=["issues"])


def _serialize_issue(issue: Issue) -> Dict[str, Any]:
    task = issue.task
    return {
        "id": str(issue.id),
        "task": {
            "id": str(task.id),
            "title": task.title,
            "customer_name": task.customer_name,
            "customer_address": task.customer_address,
            "status": task.status.value,
        } if task else None,
        "reported_by": {
            "id": str(issue.reported_by.id),
            "name": issue.reported_by.full_name,
        } if issue.reported_by else None,
        "issue_type": issue.issue_type.value,
        "description": issue.description,
        "requested_action": issue.requested_action,
        "priority": issue.priority.value,
        "status": issue.status.value,
        "resolution_notes": issue.resolution_notes,
        "resolved_by": {
            "id": str(issue.resolved_by.id),
            "name": issue.resolved_by.full_name,
        } if issue.resolved_by else None,
        "resolved_at": issue.resolved_at.isoformat() if issue.resolved_at else None,
        "created_at": issue.created_at.isoformat() if issue.created_at else None,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def report_issue(
    payload: IssueCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_roles(Role.electrician)),
):
    issue = issue_service.report_issue(
        db, ctx,
        task_id=payload.task_id,
        issue_type=payload.issue_type,
        description=payload.description,
        requested_action=payload.requested_action,
        priority=payload.priority,
    )
    return _serialize_issue(issue)


@router.get("")
def list_issues(
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    priority: Optional[IssuePriority] = None,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    if start_date and end_date and start_date > end_date:
        raise ValidationError.from_fields({"startDate": "Start date must not be after end date"})
    issues = issue_service.list_issues(
        db, ctx,
        status=status_filter,
        priority=priority,
        start_date=start_date,
        end_date=end_date,
    )
    return [_serialize_issue(i) for i in issues]


@router.get("/stats")
def issue_stats(db: Session = Depends(get_db), ctx: RequestContext = Depends(require_manager)):
    return issue_service.issue_stats(issue_service.list_issues(db, ctx))


@router.get("/{issue_id}")
def get_issue(issue_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(get_request_context)):
    return _serialize_issue(issue_service.get_issue_for(db, ctx, issue_id))


@router.patch("/{issue_id}/status")
def update_issue_status(
    issue_id: uuid.UUID,
    payload: IssueStatusUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    issue = issue_service.update_issue_status(db, ctx, issue_id, payload.status, payload.resolution_notes)
    return _serialize_issue(issue)
