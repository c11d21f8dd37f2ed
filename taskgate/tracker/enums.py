from enum import Enum


class UserRole(str, Enum):
    """Global user roles. All finer-grained rights come from project relationships."""
    ADMIN = "admin"
    MEMBER = "member"


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Vote(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class MemberRole(str, Enum):
    DEVELOPER = "developer"
    DESIGNER = "designer"
    MANAGER = "manager"
    QA = "qa"
    OTHER = "other"


class TaskStatus(str, Enum):
    TO_DO = "to_do"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IssueType(str, Enum):
    BUG = "bug"
    CHANGE_REQUEST = "change_request"


class TicketCategory(str, Enum):
    CONTENT = "content"
    DESIGN = "design"
    LAYOUT = "layout"
    FUNCTIONALITY = "functionality"
    PERFORMANCE = "performance"


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class ResourceKind(str, Enum):
    """Resource types the visibility resolver knows how to scope."""
    PROJECT = "project"
    TASK = "task"
    TICKET = "ticket"


class NotificationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"


class AuditAction(str, Enum):
    CREATE_PROJECT = "CREATE_PROJECT"
    UPDATE_PROJECT = "UPDATE_PROJECT"
    UPDATE_PROJECT_STATUS = "UPDATE_PROJECT_STATUS"
    DELETE_PROJECT = "DELETE_PROJECT"
    CREATE_TASK = "CREATE_TASK"
    DELETE_TASK = "DELETE_TASK"
    CREATE_TICKET = "CREATE_TICKET"
    UPDATE_TICKET_STATUS = "UPDATE_TICKET_STATUS"
    DELETE_TICKET = "DELETE_TICKET"
    USER_ROLE_UPDATE = "USER_ROLE_UPDATE"
