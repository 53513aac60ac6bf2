import uuid
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth.security import RequestContext, get_request_context, require_manager
from ..db import get_db
from ..models.enums import TaskStatus
from ..models.models import Task
from ..schemas.tasks import (
    TaskAssign,
    TaskComplete,
    TaskCreate,
    TaskRating,
    TaskStatusUpdate,
    TaskUpdate,
)
from ..services import task_lifecycle


router = APIRouter(prefix="/tasks", tags=["tasks"])


def _person(user) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": str(user.id), "name": user.full_name}


def _fmt_time(value) -> Optional[str]:
    return value.strftime("%H:%M") if value else None


def _serialize_task(task: Task, ctx: RequestContext) -> Dict[str, Any]:
    is_assignee = task.assigned_electrician_id is not None and task.assigned_electrician_id == ctx.user_id
    return {
        "id": str(task.id),
        "title": task.title,
        "description": task.description,
        "customer_name": task.customer_name,
        "customer_phone": task.customer_phone,
        "customer_address": task.customer_address,
        "priority": task.priority.value,
        "status": task.status.value,
        "assigned_electrician": _person(task.assigned_electrician),
        "scheduled_date": task.scheduled_date.isoformat(),
        "scheduled_time_start": _fmt_time(task.scheduled_time_start),
        "scheduled_time_end": _fmt_time(task.scheduled_time_end),
        "estimated_hours": task.estimated_hours,
        "started_at": task.started_at.isoformat() if task.started_at else None,
        "completion_notes": task.completion_notes,
        "materials_used": task.materials_used,
        "additional_charges": task.additional_charges,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
        "rating": task.rating,
        "feedback": task.feedback,
        "created_by": _person(task.created_by),
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
        "permissions": {
            "can_start": is_assignee and task.status in task_lifecycle.STARTABLE,
            "can_complete": is_assignee and task.status == TaskStatus.in_progress,
            "can_assign": ctx.is_manager and task.status == TaskStatus.pending,
            "can_edit": ctx.is_manager and task.status != TaskStatus.completed,
            "can_delete": ctx.is_manager and task.status != TaskStatus.completed,
        },
    }


@router.get("")
def list_tasks(
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    on_date: Optional[date] = Query(None, alias="date"),
    electrician_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    tasks = task_lifecycle.list_tasks(db, ctx, status=status_filter, on_date=on_date, electrician_id=electrician_id)
    return [_serialize_task(t, ctx) for t in tasks]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    task = task_lifecycle.create_task(db, ctx, payload)
    return _serialize_task(task, ctx)


@router.get("/{task_id}")
def get_task(task_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(get_request_context)):
    return _serialize_task(task_lifecycle.get_task_for(db, ctx, task_id), ctx)


@router.put("/{task_id}")
def update_task(
    task_id: uuid.UUID,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    task = task_lifecycle.edit_task(db, ctx, task_id, payload.model_dump(exclude_unset=True))
    return _serialize_task(task, ctx)


@router.patch("/{task_id}/assign")
def assign_task(
    task_id: uuid.UUID,
    payload: TaskAssign,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    task = task_lifecycle.assign_task(db, ctx, task_id, payload.electrician_id)
    return _serialize_task(task, ctx)


@router.patch("/{task_id}/status")
def update_task_status(
    task_id: uuid.UUID,
    payload: TaskStatusUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    task = task_lifecycle.update_task_status(db, ctx, task_id, payload.status)
    return _serialize_task(task, ctx)


@router.post("/{task_id}/complete")
def complete_task(
    task_id: uuid.UUID,
    payload: TaskComplete,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    task = task_lifecycle.complete_task(
        db, ctx, task_id,
        completion_notes=payload.completion_notes,
        materials_used=payload.materials_used,
        additional_charges=payload.additional_charges,
    )
    return _serialize_task(task, ctx)


@router.post("/{task_id}/cancel")
def cancel_task(task_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(require_manager)):
    return _serialize_task(task_lifecycle.cancel_task(db, ctx, task_id), ctx)


@router.post("/{task_id}/rating")
def rate_task(
    task_id: uuid.UUID,
    payload: TaskRating,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    task = task_lifecycle.rate_task(db, ctx, task_id, payload.rating, payload.feedback)
    return _serialize_task(task, ctx)


@router.delete("/{task_id}")
def delete_task(task_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(require_manager)):
    task_lifecycle.delete_task(db, ctx, task_id)
    return {"ok": True, "id": str(task_id)}
