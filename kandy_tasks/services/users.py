import uuid
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ..auth.security import RequestContext, get_password_hash
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models.enums import ACTIVE_WORK_STATUSES, Role, TaskStatus, UserStatus
from ..models.models import Issue, Task, User
from ..schemas.users import UserCreate, UserUpdate
from .audit import record_activity
from .dashboard import current_task_counts
from .validation import is_sri_lankan_phone, is_valid_full_name, join_list, split_list


log = structlog.get_logger(__name__)

EMPLOYEE_CODE_PREFIX = {
    Role.admin: "ADM",
    Role.manager: "MGR",
    Role.electrician: "ELE",
}


def get_user(db: Session, user_id: uuid.UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def next_employee_code(db: Session, role: Role) -> str:
    prefix = EMPLOYEE_CODE_PREFIX[role]
    n = db.query(User).filter(User.role == role).count() + 1
    while True:
        code = f"{prefix}-{n:03d}"
        if not db.query(User).filter(User.employee_code == code).first():
            return code
        n += 1


def _check_user_fields(
    db: Session,
    values: Dict[str, Any],
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    errors: Dict[str, str] = {}
    if "full_name" in values and not is_valid_full_name(values["full_name"]):
        errors["full_name"] = "Full name cannot be only numbers and must be at least 2 characters long"
    if "phone" in values and not is_sri_lankan_phone(values["phone"]):
        errors["phone"] = "Please enter a valid Sri Lankan phone number (mobile: 07X XXX XXXX or landline: 0XX XXX XXXX)"
    if values.get("email"):
        query = db.query(User).filter(User.email == values["email"].lower())
        if exclude_id:
            query = query.filter(User.id != exclude_id)
        if query.first():
            errors["email"] = "Email is already registered"
    if values.get("employee_code"):
        query = db.query(User).filter(User.employee_code == values["employee_code"])
        if exclude_id:
            query = query.filter(User.id != exclude_id)
        if query.first():
            errors["employee_code"] = "Employee code is already in use"
    if errors:
        raise ValidationError.from_fields(errors)


def create_user(db: Session, ctx: Optional[RequestContext], data: UserCreate) -> User:
    values = data.model_dump()
    _check_user_fields(db, values)
    user = User(
        full_name=values["full_name"].strip(),
        email=values["email"].lower(),
        phone=values["phone"].strip(),
        role=values["role"],
        status=UserStatus.active,
        password_hash=get_password_hash(values["password"]),
        skills=join_list(values.get("skills")),
        certifications=join_list(values.get("certifications")),
        employee_code=values.get("employee_code") or next_employee_code(db, values["role"]),
    )
    db.add(user)
    db.flush()
    record_activity(
        db, "user", user.id, "CREATE",
        actor_id=ctx.user_id if ctx else None,
        actor_role=ctx.role.value if ctx else "system",
        description=f"User {user.full_name} ({user.role.value}) created",
    )
    db.commit()
    db.refresh(user)
    log.info("user_created", user_id=str(user.id), role=user.role.value)
    return user


def update_user(db: Session, ctx: RequestContext, user_id: uuid.UUID, data: UserUpdate) -> User:
    user = get_user(db, user_id)
    values = data.model_dump(exclude_unset=True)
    _check_user_fields(db, values, exclude_id=user.id)
    if "role" in values and values["role"] != user.role and user.id == ctx.user_id:
        raise ValidationError.from_fields({"role": "You cannot change your own role"})
    if values.get("role") not in (None, Role.electrician) and user.role == Role.electrician:
        open_tasks = _open_task_count(db, user.id)
        if open_tasks:
            raise InvalidStateError(
                f"Electrician still holds {open_tasks} open task(s); reassign them before changing the role",
                context={"user_id": str(user.id)},
            )

    for field in ("full_name", "phone", "employee_code"):
        if values.get(field) is not None:
            setattr(user, field, values[field].strip())
    if values.get("email"):
        user.email = values["email"].lower()
    if values.get("role") is not None:
        user.role = values["role"]
    if "skills" in values:
        user.skills = join_list(values["skills"])
    if "certifications" in values:
        user.certifications = join_list(values["certifications"])

    record_activity(
        db, "user", user.id, "UPDATE",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} updated user {user.full_name}",
    )
    db.commit()
    db.refresh(user)
    return user


def set_user_status(db: Session, ctx: RequestContext, user_id: uuid.UUID, status: UserStatus) -> User:
    user = get_user(db, user_id)
    if user.id == ctx.user_id and status == UserStatus.inactive:
        raise ValidationError.from_fields({"status": "You cannot deactivate your own account"})
    user.status = status
    record_activity(
        db, "user", user.id, "UPDATE",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} set {user.full_name} to {status.value}",
    )
    db.commit()
    db.refresh(user)
    return user


def reset_password(db: Session, ctx: RequestContext, user_id: uuid.UUID, new_password: str) -> User:
    user = get_user(db, user_id)
    user.password_hash = get_password_hash(new_password)
    record_activity(
        db, "user", user.id, "PASSWORD_RESET",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} reset the password of {user.full_name}",
    )
    db.commit()
    db.refresh(user)
    return user


def _open_task_count(db: Session, user_id: uuid.UUID) -> int:
    return (
        db.query(Task)
        .filter(Task.assigned_electrician_id == user_id, Task.status.in_(list(ACTIVE_WORK_STATUSES)))
        .count()
    )


def _has_work_history(db: Session, user_id: uuid.UUID) -> bool:
    task_ref = (
        db.query(Task.id)
        .filter((Task.assigned_electrician_id == user_id) | (Task.created_by_id == user_id))
        .first()
    )
    if task_ref:
        return True
    issue_ref = (
        db.query(Issue.id)
        .filter((Issue.reported_by_id == user_id) | (Issue.resolved_by_id == user_id))
        .first()
    )
    return issue_ref is not None


def delete_user(db: Session, ctx: RequestContext, user_id: uuid.UUID) -> None:
    """
    Remove a user who never touched a task or issue. Anyone with history must be
    deactivated instead, so completed work keeps its electrician and reporter.
    """
    user = get_user(db, user_id)
    if user.id == ctx.user_id:
        raise ValidationError.from_fields({"id": "You cannot delete your own account"})
    if _has_work_history(db, user.id):
        raise InvalidStateError(
            "User is referenced by tasks or issues; set the account to Inactive instead",
            context={"user_id": str(user.id)},
        )
    name = user.full_name
    db.delete(user)
    record_activity(
        db, "user", user_id, "DELETE",
        actor_id=ctx.user_id, actor_role=ctx.role.value,
        description=f"{ctx.full_name} deleted user {name}",
    )
    db.commit()


def list_users(db: Session, role: Optional[Role] = None, status: Optional[UserStatus] = None) -> list:
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if status:
        query = query.filter(User.status == status)
    return query.order_by(User.created_at.desc()).all()


def list_electricians(db: Session) -> list:
    """Electricians with their current workload and lifetime completions."""
    electricians = db.query(User).filter(User.role == Role.electrician).order_by(User.full_name).all()
    tasks = db.query(Task).filter(Task.assigned_electrician_id.isnot(None)).all()
    workload = current_task_counts(tasks)
    rows = []
    for e in electricians:
        own = [t for t in tasks if t.assigned_electrician_id == e.id]
        ratings = [t.rating for t in own if t.rating is not None]
        rows.append({
            **serialize_user(e),
            "current_tasks": workload[e.id],
            "total_tasks_completed": sum(1 for t in own if t.status == TaskStatus.completed),
            "rating": round(sum(ratings) / len(ratings), 1) if ratings else 0,
        })
    return rows


def serialize_user(u: User) -> Dict[str, Any]:
    return {
        "id": str(u.id),
        "full_name": u.full_name,
        "email": u.email,
        "phone": u.phone,
        "role": u.role.value,
        "status": u.status.value,
        "skills": split_list(u.skills),
        "certifications": split_list(u.certifications),
        "employee_code": u.employee_code,
        "created_at": u.created_at.isoformat() if u.created_at else None,
        "last_login_at": u.last_login_at.isoformat() if u.last_login_at else None,
    }
