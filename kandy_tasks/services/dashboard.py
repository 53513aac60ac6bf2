"""
Dashboard aggregation. Read-only: every figure is recomputed from the current
rows on each request.
"""
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ..auth.security import RequestContext
from ..config import settings
from ..models.enums import ACTIVE_WORK_STATUSES, Role, TaskStatus, UserStatus
from ..models.models import Issue, Task, User
from .audit import count_activities_since
from .issues import issue_stats
from .validation import local_today


def summarize_day(tasks: Iterable[Task], day: date) -> Dict[str, int]:
    """Counts for the tasks scheduled on ``day``. Pending covers not-yet-started work."""
    todays = [t for t in tasks if t.scheduled_date == day]
    return {
        "todayTasks": len(todays),
        "pendingToday": sum(1 for t in todays if t.status in (TaskStatus.pending, TaskStatus.assigned)),
        "inProgress": sum(1 for t in todays if t.status == TaskStatus.in_progress),
        "completedToday": sum(1 for t in todays if t.status == TaskStatus.completed),
    }


def summarize_tasks(tasks: Iterable[Task]) -> Dict[str, int]:
    tasks = list(tasks)
    by_status = Counter(t.status for t in tasks)
    return {
        "totalTasks": len(tasks),
        "pending": by_status[TaskStatus.pending],
        "assigned": by_status[TaskStatus.assigned],
        "inProgress": by_status[TaskStatus.in_progress],
        "completed": by_status[TaskStatus.completed],
        "cancelled": by_status[TaskStatus.cancelled],
    }


def current_task_counts(tasks: Iterable[Task]) -> Counter:
    """Assigned + In Progress tasks per electrician."""
    return Counter(
        t.assigned_electrician_id
        for t in tasks
        if t.assigned_electrician_id and t.status in ACTIVE_WORK_STATUSES
    )


def count_available_electricians(users: Iterable[User], tasks: Iterable[Task]) -> int:
    workload = current_task_counts(tasks)
    return sum(
        1
        for u in users
        if u.role == Role.electrician and u.status == UserStatus.active and workload[u.id] == 0
    )


def manager_stats(db: Session, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or local_today()
    tasks = db.query(Task).all()
    electricians = db.query(User).filter(User.role == Role.electrician).all()
    issues = db.query(Issue).all()
    issue_counts = issue_stats(issues)

    stats: Dict[str, Any] = summarize_tasks(tasks)
    stats["todayTasks"] = summarize_day(tasks, today)["todayTasks"]
    stats["activeElectricians"] = count_available_electricians(electricians, tasks)
    stats["openIssues"] = issue_counts["open_issues"]
    stats["urgentIssues"] = issue_counts["urgent_issues"]
    stats["emergencyIssues"] = issue_counts["emergency_issues"]
    return stats


def electrician_stats(db: Session, electrician_id, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or local_today()
    tasks = db.query(Task).filter(Task.assigned_electrician_id == electrician_id).all()
    stats: Dict[str, Any] = summarize_day(tasks, today)
    stats["totalCompleted"] = sum(1 for t in tasks if t.status == TaskStatus.completed)
    ratings = [t.rating for t in tasks if t.rating is not None]
    stats["avgRating"] = round(sum(ratings) / len(ratings), 1) if ratings else 0
    return stats


def admin_stats(db: Session, today: Optional[date] = None) -> Dict[str, Any]:
    users = db.query(User).all()
    by_role = Counter(u.role for u in users)
    since = datetime.now(timezone.utc) - timedelta(hours=settings.activity_window_hours)
    recent_logins = 0
    for u in users:
        last = u.last_login_at
        if last is None:
            continue
        if last.tzinfo is None:
            # SQLite returns naive values; stored as UTC
            last = last.replace(tzinfo=timezone.utc)
        if last >= since:
            recent_logins += 1

    stats: Dict[str, Any] = {
        "totalUsers": len(users),
        "admins": by_role[Role.admin],
        "managers": by_role[Role.manager],
        "electricians": by_role[Role.electrician],
        "activeUsers": sum(1 for u in users if u.status == UserStatus.active),
        "inactiveUsers": sum(1 for u in users if u.status == UserStatus.inactive),
        "recentLogins": recent_logins,
        "recentActivities": count_activities_since(db, settings.activity_window_hours),
    }
    stats.update(manager_stats(db, today))
    return stats


def stats_for(db: Session, ctx: RequestContext) -> Dict[str, Any]:
    if ctx.role is Role.admin:
        return admin_stats(db)
    if ctx.role is Role.manager:
        return manager_stats(db)
    if ctx.role is Role.electrician:
        return electrician_stats(db, ctx.user_id)
    raise ValueError(f"Unhandled role: {ctx.role}")
