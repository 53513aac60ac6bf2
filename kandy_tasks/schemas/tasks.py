import uuid
from datetime import date, time
from typing import Optional

from pydantic import BaseModel, Field

from ..models.enums import TaskPriority, TaskStatus


class TaskCreate(BaseModel):
    title: str
    description: Optional[str] = None
    customer_name: str
    customer_phone: str
    customer_address: str
    priority: TaskPriority = TaskPriority.medium
    scheduled_date: date
    scheduled_time_start: time
    scheduled_time_end: time
    estimated_hours: Optional[float] = None  # derived from the time window when omitted


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    priority: Optional[TaskPriority] = None
    scheduled_date: Optional[date] = None
    scheduled_time_start: Optional[time] = None
    scheduled_time_end: Optional[time] = None
    estimated_hours: Optional[float] = None
    status: Optional[TaskStatus] = None


class TaskAssign(BaseModel):
    electrician_id: uuid.UUID


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskComplete(BaseModel):
    completion_notes: Optional[str] = None
    materials_used: Optional[str] = None
    additional_charges: Optional[float] = None


class TaskRating(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback: Optional[str] = None
