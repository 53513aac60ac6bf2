import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["JWT_SECRET"] = "test-secret-for-kandy-tasks-which-is-long-enough"

from datetime import time, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kandy_tasks.auth.security import RequestContext, create_access_token, get_password_hash
from kandy_tasks.db import Base, get_db
from kandy_tasks.main import app
from kandy_tasks.models.enums import Role, TaskPriority, TaskStatus, UserStatus
from kandy_tasks.models.models import Task, User
from kandy_tasks.services.validation import local_today


PASSWORD = "secret123"


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(role: Role, name: str = None, status: UserStatus = UserStatus.active) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            full_name=name or f"{role.value} User {chr(64 + n)}",
            email=f"{role.value.lower()}{n}@kandyelectricians.lk",
            phone="0771234567",
            password_hash=get_password_hash(PASSWORD),
            role=role,
            status=status,
            employee_code=f"T-{n:03d}",
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def manager(make_user):
    return make_user(Role.manager, "Kumari Jayasinghe")


@pytest.fixture()
def admin(make_user):
    return make_user(Role.admin, "Nimal Perera")


@pytest.fixture()
def electrician(make_user):
    return make_user(Role.electrician, "Sunil Bandara")


@pytest.fixture()
def other_electrician(make_user):
    return make_user(Role.electrician, "Ruwan Silva")


@pytest.fixture()
def make_task(db):
    def _make(
        created_by: User,
        status: TaskStatus = TaskStatus.pending,
        assignee: User = None,
        scheduled_date=None,
        **values,
    ) -> Task:
        task = Task(
            title=values.pop("title", "Replace distribution board"),
            description=values.pop("description", ""),
            customer_name=values.pop("customer_name", "Mrs. Fernando"),
            customer_phone=values.pop("customer_phone", "0777654321"),
            customer_address=values.pop("customer_address", "12 Peradeniya Road, Kandy"),
            priority=values.pop("priority", TaskPriority.medium),
            status=status,
            assigned_electrician_id=assignee.id if assignee else None,
            scheduled_date=scheduled_date or local_today(),
            scheduled_time_start=time(9, 0),
            scheduled_time_end=time(11, 0),
            estimated_hours=values.pop("estimated_hours", 2.0),
            created_by_id=created_by.id,
            **values,
        )
        db.add(task)
        db.commit()
        db.refresh(task)
        return task

    return _make


def ctx_for(user: User) -> RequestContext:
    return RequestContext.for_user(user)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), role=user.role)}"}


def tomorrow():
    return local_today() + timedelta(days=1)
