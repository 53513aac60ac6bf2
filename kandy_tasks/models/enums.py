import enum


class Role(str, enum.Enum):
    admin = "Admin"
    manager = "Manager"
    electrician = "Electrician"


class UserStatus(str, enum.Enum):
    active = "Active"
    inactive = "Inactive"


class TaskStatus(str, enum.Enum):
    pending = "Pending"
    assigned = "Assigned"
    in_progress = "In Progress"
    completed = "Completed"
    cancelled = "Cancelled"


class TaskPriority(str, enum.Enum):
    low = "Low"
    medium = "Medium"
    high = "High"
    urgent = "Urgent"


class IssueType(str, enum.Enum):
    access = "access"
    materials = "materials"
    scope = "scope"
    safety = "safety"
    customer = "customer"
    equipment = "equipment"
    other = "other"


class IssuePriority(str, enum.Enum):
    normal = "normal"
    urgent = "urgent"
    emergency = "emergency"


class IssueStatus(str, enum.Enum):
    open = "open"
    in_progress = "in_progress"
    resolved = "resolved"


class RequestedAction(str, enum.Enum):
    reschedule = "reschedule"
    assistance = "assistance"
    manager = "manager"
    customer_contact = "customer_contact"
    materials = "materials"


# Roles allowed to run manager operations on tasks and issues
MANAGER_ROLES = frozenset({Role.manager, Role.admin})

# Statuses in which a task holds an assigned electrician
ASSIGNED_STATUSES = frozenset({TaskStatus.assigned, TaskStatus.in_progress, TaskStatus.completed})

# Statuses counting toward an electrician's current workload
ACTIVE_WORK_STATUSES = frozenset({TaskStatus.assigned, TaskStatus.in_progress})
