from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from taskgate.tracker.enums import (
    ApprovalStatus,
    IssueType,
    MemberRole,
    ProjectStatus,
    TaskPriority,
    TaskStatus,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    UserRole,
    Vote,
)


class MemberIn(BaseModel):
    user_id: int
    role: MemberRole = MemberRole.DEVELOPER


class MemberOut(BaseModel):
    user_id: int
    role: MemberRole

    class Config:
        from_attributes = True


class ApprovalOut(BaseModel):
    head_id: int
    status: ApprovalStatus
    decided_at: Optional[datetime]
    comment: Optional[str]

    class Config:
        from_attributes = True


class ProjectCreate(BaseModel):
    name: str = Field(..., max_length=200)
    description: Optional[str] = None
    client_name: Optional[str] = Field(None, max_length=200)
    start_date: Optional[date] = None
    delivery_date: Optional[date] = None
    department: Optional[str] = Field(None, max_length=120)
    assigned_to_id: Optional[int] = None
    project_heads: List[int]
    members: List[MemberIn] = []

    @field_validator("project_heads")
    @classmethod
    def at_least_one_head(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("Please provide at least one project head")
        return v


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    client_name: Optional[str] = Field(None, max_length=200)
    start_date: Optional[date] = None
    delivery_date: Optional[date] = None
    department: Optional[str] = Field(None, max_length=120)
    assigned_to_id: Optional[int] = None
    project_heads: Optional[List[int]] = None
    members: Optional[List[MemberIn]] = None
    status: Optional[ProjectStatus] = None
    rejection_reason: Optional[str] = None


class ProjectOut(BaseModel):
    id: int
    name: str
    description: Optional[str]
    client_name: Optional[str]
    start_date: Optional[date]
    delivery_date: Optional[date]
    department: Optional[str]
    status: ProjectStatus
    creator_id: Optional[int]
    assigned_to_id: Optional[int]
    head_ids: List[int]
    approvals: List[ApprovalOut] = []
    members: List[MemberOut] = []
    approved_at: Optional[datetime]
    rejection_reason: Optional[str]
    decided_by_admin: bool
    change_request_count: int

    class Config:
        from_attributes = True


class ProjectSummaryOut(BaseModel):
    id: int
    name: str
    client_name: Optional[str]
    department: Optional[str]
    status: ProjectStatus
    creator_id: Optional[int]
    change_request_count: int

    class Config:
        from_attributes = True


class VoteIn(BaseModel):
    vote: Vote
    comment: Optional[str] = None


class StatusIn(BaseModel):
    status: ProjectStatus
    reason: Optional[str] = None


class ResyncOut(BaseModel):
    project_id: int
    change_request_count: int


class TaskCreate(BaseModel):
    project_id: int
    task_name: str = Field(..., max_length=300)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TO_DO
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_developer_id: Optional[int] = None
    due_date: Optional[date] = None
    start_date: Optional[date] = None


class TaskUpdate(BaseModel):
    task_name: Optional[str] = Field(None, max_length=300)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_developer_id: Optional[int] = None
    due_date: Optional[date] = None
    start_date: Optional[date] = None


class TaskOut(BaseModel):
    id: int
    project_id: int
    task_name: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    assigned_developer_id: Optional[int]
    created_by_id: Optional[int]
    due_date: Optional[date]
    start_date: Optional[date]
    ticket_used: int
    max_tickets: int

    class Config:
        from_attributes = True


class TicketCreate(BaseModel):
    task_id: int
    issue_type: IssueType
    category: TicketCategory
    description: str = Field(..., min_length=1)
    priority: TicketPriority = TicketPriority.MEDIUM


class TicketUpdate(BaseModel):
    category: Optional[TicketCategory] = None
    description: Optional[str] = Field(None, min_length=1)
    priority: Optional[TicketPriority] = None
    status: Optional[TicketStatus] = None

    class Config:
        # issue_type is fixed once the ticket exists
        extra = "forbid"


class TicketOut(BaseModel):
    id: int
    task_id: int
    requested_by_id: Optional[int]
    issue_type: IssueType
    category: TicketCategory
    description: str
    priority: TicketPriority
    status: TicketStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserCreate(BaseModel):
    email: str = Field(..., max_length=255)
    full_name: Optional[str] = Field(None, max_length=200)
    department: Optional[str] = Field(None, max_length=120)
    role: UserRole = UserRole.MEMBER


class RoleIn(BaseModel):
    role: UserRole
