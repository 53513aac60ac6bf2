"""
Task lifecycle: the single authority for task status transitions.

    Pending --assign--> Assigned --start--> In Progress --complete--> Completed
    Assigned / In Progress / Cancelled --edit(status=Pending)--> Pending
    Pending / Assigned / In Progress --cancel--> Cancelled

Completed is terminal. Every transition is written as a conditional update
(``WHERE status IN expected``) so two callers racing on the same task cannot
both apply it; the loser gets ``InvalidTransitionError``.
"""
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional

import structlog
from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from ..auth.security import RequestContext
from ..errors import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ..models.enums import Role, TaskStatus
from ..models.models import Issue, Task, User
from ..schemas.tasks import TaskCreate
from .audit import compute_diff, record_activity
from .notifications import create_notification
from .validation import (
    estimate_hours,
    estimated_hours_in_range,
    is_sri_lankan_phone,
    local_today,
)


log = structlog.get_logger(__name__)

STARTABLE = (TaskStatus.pending, TaskStatus.assigned)
CANCELLABLE = (TaskStatus.pending, TaskStatus.assigned, TaskStatus.in_progress)

EDITABLE_FIELDS = (
    "title",
    "description",
    "customer_name",
    "customer_phone",
    "customer_address",
    "priority",
    "scheduled_date",
    "scheduled_time_start",
    "scheduled_time_end",
    "estimated_hours",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_manager(ctx: RequestContext, action: str) -> None:
    if not ctx.is_manager:
        raise UnauthorizedError(f"Only managers can {action} tasks")


def _ensure_assignee(task: Task, ctx: RequestContext) -> None:
    if task.assigned_electrician_id is None or task.assigned_electrician_id != ctx.user_id:
        raise UnauthorizedError("Task is not assigned to you", context={"task_id": str(task.id)})


def get_task(db: Session, task_id: uuid.UUID) -> Task:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


def _snapshot(task: Task) -> Dict[str, Any]:
    data = {}
    for field in EDITABLE_FIELDS + ("status", "assigned_electrician_id"):
        value = getattr(task, field)
        if isinstance(value, Enum):
            value = value.value
        elif value is not None and not isinstance(value, (str, int, float)):
            value = str(value)
        data[field] = value
    return data


def _apply_transition(
    db: Session,
    task: Task,
    expected: Iterable[TaskStatus],
    action: str,
    **values: Any,
) -> None:
    """Update the task only if its stored status is still one of ``expected``."""
    expected = list(expected)
    values.setdefault("updated_at", _now())
    stmt = (
        update(Task)
        .where(Task.id == task.id, Task.status.in_(expected))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    if result.rowcount == 1:
        return

    db.rollback()
    current = db.get(Task, task.id)
    if current is None:
        raise NotFoundError("Task", task.id)
    log.warning(
        "task_transition_conflict",
        task_id=str(task.id),
        action=action,
        expected=[s.value for s in expected],
        current=current.status.value,
    )
    raise InvalidTransitionError(
        f"Cannot {action} task: status changed to {current.status.value}",
        current_status=current.status.value,
    )


def _collect_field_errors(values: Dict[str, Any], check_past_date: bool) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for field, label in (
        ("title", "Task title"),
        ("customer_name", "Customer name"),
        ("customer_address", "Customer address"),
    ):
        if not (values.get(field) or "").strip():
            errors[field] = f"{label} is required"

    if not is_sri_lankan_phone(values.get("customer_phone")):
        errors["customer_phone"] = "Please enter a valid Sri Lankan phone number (mobile or landline)"

    if values.get("priority") is None:
        errors["priority"] = "Priority is required"

    scheduled: Optional[date] = values.get("scheduled_date")
    if scheduled is None:
        errors["scheduled_date"] = "Scheduled date is required"
    elif check_past_date and scheduled < local_today():
        errors["scheduled_date"] = "Scheduled date cannot be in the past"

    start = values.get("scheduled_time_start")
    end = values.get("scheduled_time_end")
    if start is None:
        errors["scheduled_time_start"] = "Start time is required"
    if end is None:
        errors["scheduled_time_end"] = "End time is required"
    if start is not None and end is not None and start >= end:
        errors["scheduled_time_end"] = "End time must be after start time"

    hours = values.get("estimated_hours")
    if hours is not None and not estimated_hours_in_range(hours):
        errors["estimated_hours"] = "Estimated hours must be between 0.5 and 24"
    return errors


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip()


def create_task(db: Session, ctx: RequestContext, data: TaskCreate) -> Task:
    _ensure_manager(ctx, "create")
    values = data.model_dump()
    errors = _collect_field_errors(values, check_past_date=True)
    if errors:
        raise ValidationError.from_fields(errors)

    hours = values["estimated_hours"]
    if hours is None:
        hours = estimate_hours(values["scheduled_time_start"], values["scheduled_time_end"])
        if not estimated_hours_in_range(hours):
            raise ValidationError.from_fields({"estimated_hours": "Estimated hours must be between 0.5 and 24"})

    task = Task(
        title=_clean_text(values["title"]),
        description=_clean_text(values["description"]) or "",
        customer_name=_clean_text(values["customer_name"]),
        customer_phone=_clean_text(values["customer_phone"]),
        customer_address=_clean_text(values["customer_address"]),
        priority=values["priority"],
        status=TaskStatus.pending,
        scheduled_date=values["scheduled_date"],
        scheduled_time_start=values["scheduled_time_start"],
        scheduled_time_end=values["scheduled_time_end"],
        estimated_hours=hours,
        created_by_id=ctx.user_id,
    )
    db.add(task)
    db.flush()
    record_activity(
        db, "task", task.id, "CREATE",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} created task '{task.title}'",
    )
    db.commit()
    db.refresh(task)
    log.info("task_created", task_id=str(task.id), created_by=str(ctx.user_id))
    return task


def assign_task(db: Session, ctx: RequestContext, task_id: uuid.UUID, electrician_id: uuid.UUID) -> Task:
    _ensure_manager(ctx, "assign")
    task = get_task(db, task_id)
    if task.status != TaskStatus.pending:
        raise InvalidTransitionError(
            f"Only Pending tasks can be assigned (task is {task.status.value})",
            current_status=task.status.value,
        )

    electrician = db.get(User, electrician_id)
    if electrician is None:
        raise NotFoundError("User", electrician_id)
    if electrician.role != Role.electrician:
        raise ValidationError.from_fields({"electrician_id": "User is not an electrician"})
    if not electrician.is_active:
        raise ValidationError.from_fields({"electrician_id": "Electrician is not active"})

    _apply_transition(
        db, task, [TaskStatus.pending], "assign",
        status=TaskStatus.assigned,
        assigned_electrician_id=electrician.id,
    )
    create_notification(
        db, electrician.id, "task_assigned",
        f"New task assigned: {task.title} on {task.scheduled_date.isoformat()}",
        task_id=task.id,
    )
    record_activity(
        db, "task", task.id, "ASSIGN",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} assigned '{task.title}' to {electrician.full_name}",
        changes_json={"assigned_electrician_id": {"before": None, "after": str(electrician.id)}},
    )
    db.commit()
    db.refresh(task)
    log.info("task_assigned", task_id=str(task.id), electrician_id=str(electrician.id))
    return task


def start_task(db: Session, ctx: RequestContext, task_id: uuid.UUID) -> Task:
    task = get_task(db, task_id)
    _ensure_assignee(task, ctx)
    if task.status not in STARTABLE:
        raise InvalidTransitionError(
            f"Task cannot be started from status {task.status.value}",
            current_status=task.status.value,
        )

    now = _now()
    _apply_transition(db, task, STARTABLE, "start", status=TaskStatus.in_progress, started_at=now)
    record_activity(
        db, "task", task.id, "START",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} started '{task.title}'",
    )
    db.commit()
    db.refresh(task)
    log.info("task_started", task_id=str(task.id), electrician_id=str(ctx.user_id))
    return task


def complete_task(
    db: Session,
    ctx: RequestContext,
    task_id: uuid.UUID,
    completion_notes: Optional[str],
    materials_used: Optional[str] = None,
    additional_charges: Optional[float] = None,
) -> Task:
    task = get_task(db, task_id)
    _ensure_assignee(task, ctx)
    if task.status != TaskStatus.in_progress:
        raise InvalidTransitionError(
            f"Only In Progress tasks can be completed (task is {task.status.value})",
            current_status=task.status.value,
        )

    errors: Dict[str, str] = {}
    notes = _clean_text(completion_notes)
    if not notes:
        errors["completion_notes"] = "Completion notes are required"
    charges = 0.0 if additional_charges is None else additional_charges
    if charges < 0:
        errors["additional_charges"] = "Additional charges cannot be negative"
    if errors:
        raise ValidationError.from_fields(errors)

    now = _now()
    _apply_transition(
        db, task, [TaskStatus.in_progress], "complete",
        status=TaskStatus.completed,
        completion_notes=notes,
        materials_used=_clean_text(materials_used) or "",
        additional_charges=charges,
        completed_at=now,
    )
    if task.created_by_id:
        create_notification(
            db, task.created_by_id, "task_completed",
            f"{ctx.full_name} completed task: {task.title}",
            task_id=task.id,
        )
    record_activity(
        db, "task", task.id, "COMPLETE",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} completed '{task.title}'",
    )
    db.commit()
    db.refresh(task)
    log.info("task_completed", task_id=str(task.id), electrician_id=str(ctx.user_id))
    return task


def edit_task(db: Session, ctx: RequestContext, task_id: uuid.UUID, patch: Dict[str, Any]) -> Task:
    """
    Apply a manager edit. Besides schedule and customer fields, the only status
    change accepted is back to Pending, which releases the electrician so the
    task can be reassigned.
    """
    _ensure_manager(ctx, "edit")
    task = get_task(db, task_id)
    if task.status == TaskStatus.completed:
        raise InvalidStateError("Completed tasks cannot be edited")

    patch = dict(patch)
    new_status = patch.pop("status", None)
    reset = False
    if new_status is not None and new_status != task.status:
        if new_status != TaskStatus.pending:
            raise ValidationError.from_fields({
                "status": "Only a change back to Pending is allowed; use assign, start or complete for other moves",
            })
        reset = True
    if task.status == TaskStatus.cancelled and not reset and patch:
        raise InvalidStateError("Cancelled tasks must be reopened to Pending before editing")

    changes = {k: v for k, v in patch.items() if k in EDITABLE_FIELDS}
    # Resubmitted values equal to the stored ones do not count as a reschedule
    times_changed = any(
        field in changes and changes[field] != getattr(task, field)
        for field in ("scheduled_time_start", "scheduled_time_end")
    )
    date_moved = "scheduled_date" in changes and changes["scheduled_date"] != task.scheduled_date
    if times_changed and changes.get("estimated_hours") is None:
        changes.pop("estimated_hours", None)
    elif "estimated_hours" in changes and changes["estimated_hours"] is None:
        changes.pop("estimated_hours")

    merged = {field: getattr(task, field) for field in EDITABLE_FIELDS}
    merged.update(changes)
    errors = _collect_field_errors(merged, check_past_date=date_moved)
    if errors:
        raise ValidationError.from_fields(errors)
    if times_changed and "estimated_hours" not in changes:
        changes["estimated_hours"] = estimate_hours(merged["scheduled_time_start"], merged["scheduled_time_end"])

    for field in ("title", "description", "customer_name", "customer_phone", "customer_address"):
        if field in changes:
            changes[field] = _clean_text(changes[field])

    before = _snapshot(task)
    previous_status = task.status
    previous_assignee = task.assigned_electrician_id
    if reset:
        changes.update(status=TaskStatus.pending, assigned_electrician_id=None, started_at=None)

    if not changes:
        return task

    _apply_transition(db, task, [previous_status], "edit", **changes)
    db.expire(task)
    after = _snapshot(task)
    if reset and previous_assignee:
        create_notification(
            db, previous_assignee, "task_unassigned",
            f"Task moved back to Pending: {task.title}",
            task_id=task.id,
        )
    record_activity(
        db, "task", task.id, "UPDATE",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} updated '{task.title}'",
        changes_json=compute_diff(before, after),
    )
    db.commit()
    db.refresh(task)
    log.info("task_updated", task_id=str(task.id), reset_to_pending=reset, previous_status=previous_status.value)
    return task


def cancel_task(db: Session, ctx: RequestContext, task_id: uuid.UUID) -> Task:
    _ensure_manager(ctx, "cancel")
    task = get_task(db, task_id)
    if task.status not in CANCELLABLE:
        raise InvalidTransitionError(
            f"Task cannot be cancelled from status {task.status.value}",
            current_status=task.status.value,
        )

    previous_assignee = task.assigned_electrician_id
    _apply_transition(
        db, task, CANCELLABLE, "cancel",
        status=TaskStatus.cancelled,
        assigned_electrician_id=None,
        started_at=None,
    )
    if previous_assignee:
        create_notification(
            db, previous_assignee, "task_cancelled",
            f"Task cancelled: {task.title}",
            task_id=task.id,
        )
    record_activity(
        db, "task", task.id, "CANCEL",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} cancelled '{task.title}'",
    )
    db.commit()
    db.refresh(task)
    log.info("task_cancelled", task_id=str(task.id))
    return task


def delete_task(db: Session, ctx: RequestContext, task_id: uuid.UUID) -> None:
    _ensure_manager(ctx, "delete")
    task = get_task(db, task_id)
    if task.status == TaskStatus.completed:
        raise InvalidStateError("Completed tasks cannot be deleted")

    title = task.title
    assignee = task.assigned_electrician_id
    db.execute(
        delete(Issue).where(Issue.task_id == task.id).execution_options(synchronize_session=False)
    )
    result = db.execute(
        delete(Task)
        .where(Task.id == task.id, Task.status != TaskStatus.completed)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        log.warning("task_delete_conflict", task_id=str(task_id))
        raise InvalidStateError("Completed tasks cannot be deleted")

    db.expunge(task)
    if assignee:
        create_notification(db, assignee, "task_deleted", f"Task removed: {title}")
    record_activity(
        db, "task", task_id, "DELETE",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} deleted '{title}'",
    )
    db.commit()
    log.info("task_deleted", task_id=str(task_id))


def rate_task(
    db: Session,
    ctx: RequestContext,
    task_id: uuid.UUID,
    rating: int,
    feedback: Optional[str] = None,
) -> Task:
    _ensure_manager(ctx, "rate")
    task = get_task(db, task_id)
    if task.status != TaskStatus.completed:
        raise InvalidStateError("Only completed tasks can be rated")
    if not 1 <= rating <= 5:
        raise ValidationError.from_fields({"rating": "Rating must be between 1 and 5"})

    task.rating = rating
    task.feedback = _clean_text(feedback)
    task.updated_at = _now()
    record_activity(
        db, "task", task.id, "RATE",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} rated '{task.title}' {rating}/5",
    )
    db.commit()
    db.refresh(task)
    return task


def update_task_status(db: Session, ctx: RequestContext, task_id: uuid.UUID, status: TaskStatus) -> Task:
    """Route a bare status change to the operation that owns that transition."""
    if status == TaskStatus.in_progress:
        return start_task(db, ctx, task_id)
    if status == TaskStatus.pending:
        return edit_task(db, ctx, task_id, {"status": TaskStatus.pending})
    if status == TaskStatus.cancelled:
        return cancel_task(db, ctx, task_id)
    if status == TaskStatus.completed:
        raise ValidationError.from_fields({"status": "Use POST /tasks/{id}/complete to complete a task"})
    raise ValidationError.from_fields({"status": "Use PATCH /tasks/{id}/assign to assign a task"})


def get_task_for(db: Session, ctx: RequestContext, task_id: uuid.UUID) -> Task:
    task = get_task(db, task_id)
    if ctx.is_electrician and task.assigned_electrician_id != ctx.user_id:
        raise UnauthorizedError("You do not have access to this task")
    return task


def list_tasks(
    db: Session,
    ctx: RequestContext,
    status: Optional[TaskStatus] = None,
    on_date: Optional[date] = None,
    electrician_id: Optional[uuid.UUID] = None,
) -> list:
    query = db.query(Task)
    if ctx.is_electrician:
        query = query.filter(Task.assigned_electrician_id == ctx.user_id)
    elif electrician_id:
        query = query.filter(Task.assigned_electrician_id == electrician_id)
    if status:
        query = query.filter(Task.status == status)
    if on_date:
        query = query.filter(Task.scheduled_date == on_date)
    return query.order_by(Task.scheduled_date.desc(), Task.scheduled_time_start.asc()).all()
