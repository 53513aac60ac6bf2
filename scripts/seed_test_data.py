"""
Seed the local database with sample staff and a few scheduled jobs.

Usage:
  python scripts/seed_test_data.py

This script is idempotent: users are matched by email and tasks by title,
so running it multiple times does not create duplicates.
"""

from datetime import time, timedelta

from kandy_tasks.auth.security import RequestContext
from kandy_tasks.db import SessionLocal, Base, engine
from kandy_tasks.models.enums import Role, TaskPriority
from kandy_tasks.models.models import Task, User
from kandy_tasks.schemas.tasks import TaskCreate
from kandy_tasks.schemas.users import UserCreate
from kandy_tasks.services import task_lifecycle, users
from kandy_tasks.services.validation import local_today


def ensure_user(session, full_name: str, email: str, phone: str, role: Role, password: str, **extra) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        return user
    return users.create_user(
        session,
        None,
        UserCreate(full_name=full_name, email=email, phone=phone, role=role, password=password, **extra),
    )


def ensure_task(session, manager: User, title: str, days_ahead: int, start: time, end: time, **extra) -> Task:
    task = session.query(Task).filter(Task.title == title).first()
    if task:
        return task
    data = TaskCreate(
        title=title,
        scheduled_date=local_today() + timedelta(days=days_ahead),
        scheduled_time_start=start,
        scheduled_time_end=end,
        **extra,
    )
    return task_lifecycle.create_task(session, RequestContext.for_user(manager), data)


def main() -> None:
    # Ensure tables exist (safe for SQLite dev)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        ensure_user(session, "Nimal Perera", "admin@kandyelectricians.lk", "0771234567", Role.admin, "TestAdmin123!")
        manager = ensure_user(
            session, "Kumari Jayasinghe", "manager@kandyelectricians.lk", "0812345678", Role.manager, "TestUser123!",
        )
        sunil = ensure_user(
            session, "Sunil Bandara", "sunil@kandyelectricians.lk", "0712345678", Role.electrician, "TestUser123!",
            skills=["Wiring", "Panel upgrades"], certifications=["NVQ Level 4"],
        )
        ensure_user(
            session, "Ruwan Silva", "ruwan@kandyelectricians.lk", "0759876543", Role.electrician, "TestUser123!",
            skills=["Solar", "Fault finding"],
        )

        rewire = ensure_task(
            session, manager, "Rewire kitchen circuits", 0, time(9, 0), time(12, 30),
            description="Replace old aluminium wiring in the kitchen.",
            customer_name="Mrs. Fernando",
            customer_phone="0777654321",
            customer_address="12 Peradeniya Road, Kandy",
            priority=TaskPriority.high,
        )
        ensure_task(
            session, manager, "Install ceiling fans", 1, time(14, 0), time(16, 0),
            customer_name="Hotel Hilltop",
            customer_phone="0812223344",
            customer_address="45 Lake Drive, Kandy",
        )
        if rewire.assigned_electrician_id is None:
            task_lifecycle.assign_task(session, RequestContext.for_user(manager), rewire.id, sunil.id)

        print("Seed complete:")
        print(f"  Users: {session.query(User).count()}")
        print(f"  Tasks: {session.query(Task).count()}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
