import uuid
from typing import Optional

from pydantic import BaseModel

from ..models.enums import IssuePriority, IssueStatus, IssueType, RequestedAction


class IssueCreate(BaseModel):
    task_id: uuid.UUID
    issue_type: IssueType
    description: str
    requested_action: Optional[RequestedAction] = None
    priority: IssuePriority = IssuePriority.normal


class IssueStatusUpdate(BaseModel):
    status: IssueStatus
    resolution_notes: Optional[str] = None
