import uuid
from datetime import datetime, date, time, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Time,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    JSON,
    Text,
    Index,
    Enum,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base
from .enums import (
    IssuePriority,
    IssueStatus,
    IssueType,
    Role,
    TaskPriority,
    TaskStatus,
    UserStatus,
)


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_column(enum_cls, **kwargs):
    # Stored by value ("In Progress", not "in_progress") as portable VARCHAR
    return mapped_column(
        Enum(
            enum_cls,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            validate_strings=True,
            length=20,
        ),
        **kwargs,
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = enum_column(Role, nullable=False, index=True)
    status: Mapped[UserStatus] = enum_column(UserStatus, nullable=False, default=UserStatus.active)
    skills: Mapped[Optional[str]] = mapped_column(Text)  # comma-joined
    certifications: Mapped[Optional[str]] = mapped_column(Text)  # comma-joined
    employee_code: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.active


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = uuid_pk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_address: Mapped[str] = mapped_column(Text, nullable=False)

    priority: Mapped[TaskPriority] = enum_column(TaskPriority, nullable=False, default=TaskPriority.medium)
    status: Mapped[TaskStatus] = enum_column(TaskStatus, nullable=False, default=TaskStatus.pending, index=True)

    assigned_electrician_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True
    )

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    scheduled_time_start: Mapped[time] = mapped_column(Time, nullable=False)
    scheduled_time_end: Mapped[time] = mapped_column(Time, nullable=False)
    estimated_hours: Mapped[float] = mapped_column(Numeric(4, 1, asdecimal=False), nullable=False)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Completion data: populated only by the complete transition
    completion_notes: Mapped[Optional[str]] = mapped_column(Text)
    materials_used: Mapped[Optional[str]] = mapped_column(Text)
    additional_charges: Mapped[Optional[float]] = mapped_column(Numeric(10, 2, asdecimal=False))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)

    rating: Mapped[Optional[int]] = mapped_column(Integer)
    feedback: Mapped[Optional[str]] = mapped_column(Text)

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    assigned_electrician = relationship("User", foreign_keys=[assigned_electrician_id])
    created_by = relationship("User", foreign_keys=[created_by_id])
    issues = relationship("Issue", back_populates="task", cascade="all, delete-orphan")


class Issue(Base):
    __tablename__ = "task_issues"

    id: Mapped[uuid.UUID] = uuid_pk()
    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reported_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    issue_type: Mapped[IssueType] = enum_column(IssueType, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    requested_action: Mapped[Optional[str]] = mapped_column(String(50))
    priority: Mapped[IssuePriority] = enum_column(IssuePriority, nullable=False, default=IssuePriority.normal)
    status: Mapped[IssueStatus] = enum_column(IssueStatus, nullable=False, default=IssueStatus.open, index=True)

    resolution_notes: Mapped[Optional[str]] = mapped_column(Text)
    resolved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL")
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="issues")
    reported_by = relationship("User", foreign_keys=[reported_by_id])
    resolved_by = relationship("User", foreign_keys=[resolved_by_id])


class Notification(Base):
    """In-app notifications polled by the dashboards"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # task_assigned|task_completed|issue_reported|issue_updated
    message: Mapped[str] = mapped_column(Text, nullable=False)
    task_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    issue_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index('idx_notifications_user_read', 'user_id', 'is_read'),
        Index('idx_notifications_created', 'created_at'),
    )


class ActivityLog(Base):
    """Append-only audit trail of task, issue and user actions"""
    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # task|issue|user
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|ASSIGN|START|COMPLETE|UPDATE|DELETE|LOGIN
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))
    description: Mapped[Optional[str]] = mapped_column(Text)
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (
        Index('idx_activity_entity', 'entity_type', 'entity_id'),
        Index('idx_activity_actor', 'actor_id', 'timestamp_utc'),
    )
