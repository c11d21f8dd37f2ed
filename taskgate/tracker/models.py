from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, Relationship, mapped_column, relationship

from taskgate.db.base import Base
from taskgate.tracker.enums import (
    ApprovalStatus,
    IssueType,
    MemberRole,
    NotificationSeverity,
    ProjectStatus,
    TaskPriority,
    TaskStatus,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    UserRole,
)


# --- user model (minimal) ---
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True,
    )
    full_name: Mapped[Optional[str]] = mapped_column(String(200))
    department: Mapped[Optional[str]] = mapped_column(String(120), index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Global role; the only system-wide permission axis
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole), default=UserRole.MEMBER, nullable=False, index=True
    )


# --- project ---
class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    client_name: Mapped[Optional[str]] = mapped_column(String(200))
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    delivery_date: Mapped[Optional[date]] = mapped_column(Date)
    department: Mapped[Optional[str]] = mapped_column(String(120), index=True)

    status: Mapped[ProjectStatus] = mapped_column(
        SQLEnum(ProjectStatus), default=ProjectStatus.PENDING, index=True,
        nullable=False,
    )
    creator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True,
    )
    assigned_to_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True,
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    # True while the current status comes from an admin override
    decided_by_admin: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )

    # Admission slots taken by change-request tickets across all tasks
    change_request_count: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False,
    )
    # Bumped by every aggregate status write; guards the vote fold
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # relationships
    creator: Relationship[User] = relationship("User", foreign_keys=[creator_id])
    assigned_to: Relationship[Optional[User]] = relationship(
        "User", foreign_keys=[assigned_to_id],
    )
    heads: Relationship[List["ProjectHead"]] = relationship(
        "ProjectHead",
        back_populates="project",
        order_by="ProjectHead.position",
        passive_deletes=True,
    )
    approvals: Relationship[List["ProjectApproval"]] = relationship(
        "ProjectApproval",
        back_populates="project",
        order_by="ProjectApproval.id",
        passive_deletes=True,
    )
    members: Relationship[List["ProjectMember"]] = relationship(
        "ProjectMember", back_populates="project", passive_deletes=True,
    )
    tasks: Relationship[List["Task"]] = relationship(
        "Task", back_populates="project", passive_deletes=True,
    )

    @property
    def head_ids(self) -> List[int]:
        return [head.user_id for head in self.heads]


class ProjectHead(Base):
    """A required approver of a project. Heads keep their insertion order."""

    __tablename__ = "project_heads"

    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True,
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), primary_key=True, index=True,
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    project: Relationship[Project] = relationship("Project", back_populates="heads")
    user: Relationship[User] = relationship("User")


class ProjectApproval(Base):
    """One head's decision on a project, keyed by (project, head)."""

    __tablename__ = "project_approvals"
    __table_args__ = (
        UniqueConstraint("project_id", "head_id", name="uq_project_approvals_head"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    head_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False,
    )
    status: Mapped[ApprovalStatus] = mapped_column(
        SQLEnum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False,
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    comment: Mapped[Optional[str]] = mapped_column(Text)

    project: Relationship[Project] = relationship(
        "Project", back_populates="approvals",
    )


class ProjectMember(Base):
    __tablename__ = "project_members"

    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True,
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), primary_key=True, index=True,
    )
    role: Mapped[MemberRole] = mapped_column(
        SQLEnum(MemberRole), default=MemberRole.DEVELOPER, nullable=False,
    )

    project: Relationship[Project] = relationship("Project", back_populates="members")
    user: Relationship[User] = relationship("User")


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    task_name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[TaskStatus] = mapped_column(
        SQLEnum(TaskStatus), default=TaskStatus.TO_DO, index=True, nullable=False,
    )
    priority: Mapped[TaskPriority] = mapped_column(
        SQLEnum(TaskPriority), default=TaskPriority.MEDIUM, nullable=False,
    )
    assigned_developer_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True,
    )
    created_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True,
    )
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    # informational counters, never an admission gate
    ticket_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_tickets: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    # relationships
    project: Relationship[Project] = relationship("Project", back_populates="tasks")
    assigned_developer: Relationship[Optional[User]] = relationship(
        "User", foreign_keys=[assigned_developer_id],
    )
    created_by: Relationship[Optional[User]] = relationship(
        "User", foreign_keys=[created_by_id],
    )
    tickets: Relationship[List["Ticket"]] = relationship(
        "Ticket", back_populates="task", passive_deletes=True,
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    requested_by_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True,
    )
    issue_type: Mapped[IssueType] = mapped_column(
        SQLEnum(IssueType), nullable=False, index=True,
    )
    category: Mapped[TicketCategory] = mapped_column(
        SQLEnum(TicketCategory), nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[TicketPriority] = mapped_column(
        SQLEnum(TicketPriority), default=TicketPriority.MEDIUM, nullable=False,
    )
    status: Mapped[TicketStatus] = mapped_column(
        SQLEnum(TicketStatus), default=TicketStatus.OPEN, index=True, nullable=False,
    )

    task: Relationship[Task] = relationship("Task", back_populates="tickets")
    requested_by: Relationship[User] = relationship("User")


# --- collaborator storage, written by the taskiq side-effect tasks ---
class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True,
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    resource_type: Mapped[Optional[str]] = mapped_column(String(32))
    resource_id: Mapped[Optional[int]] = mapped_column(Integer)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[NotificationSeverity] = mapped_column(
        SQLEnum(NotificationSeverity), default=NotificationSeverity.INFO,
        nullable=False,
    )
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
