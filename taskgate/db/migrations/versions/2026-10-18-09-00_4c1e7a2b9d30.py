"""create tracker tables.

Revision ID: 4c1e7a2b9d30
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "4c1e7a2b9d30"
down_revision = None
branch_labels = None
depends_on = None

user_role = sa.Enum("ADMIN", "MEMBER", name="userrole")
project_status = sa.Enum(
    "DRAFT",
    "PENDING",
    "APPROVED",
    "REJECTED",
    "ACTIVE",
    "ON_HOLD",
    "COMPLETED",
    "CANCELLED",
    name="projectstatus",
)
approval_status = sa.Enum("PENDING", "APPROVED", "REJECTED", name="approvalstatus")
member_role = sa.Enum(
    "DEVELOPER", "DESIGNER", "MANAGER", "QA", "OTHER", name="memberrole",
)
task_status = sa.Enum("TO_DO", "IN_PROGRESS", "IN_REVIEW", "DONE", name="taskstatus")
task_priority = sa.Enum("LOW", "MEDIUM", "HIGH", name="taskpriority")
issue_type = sa.Enum("BUG", "CHANGE_REQUEST", name="issuetype")
ticket_category = sa.Enum(
    "CONTENT",
    "DESIGN",
    "LAYOUT",
    "FUNCTIONALITY",
    "PERFORMANCE",
    name="ticketcategory",
)
ticket_priority = sa.Enum("LOW", "MEDIUM", "HIGH", "URGENT", name="ticketpriority")
ticket_status = sa.Enum(
    "OPEN", "IN_PROGRESS", "RESOLVED", "REJECTED", name="ticketstatus",
)
notification_severity = sa.Enum(
    "INFO", "WARNING", "SUCCESS", "ERROR", name="notificationseverity",
)

ENUMS = (
    user_role,
    project_status,
    approval_status,
    member_role,
    task_status,
    task_priority,
    issue_type,
    ticket_category,
    ticket_priority,
    ticket_status,
    notification_severity,
)


def _timestamps() -> list:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Run the migration."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("department", sa.String(length=120), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("role", user_role, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_department"), "users", ["department"])
    op.create_index(op.f("ix_users_role"), "users", ["role"])

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("client_name", sa.String(length=200), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("delivery_date", sa.Date(), nullable=True),
        sa.Column("department", sa.String(length=120), nullable=True),
        sa.Column("status", project_status, nullable=False),
        sa.Column("creator_id", sa.Integer(), nullable=False),
        sa.Column("assigned_to_id", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column(
            "decided_by_admin", sa.Boolean(), server_default=sa.false(), nullable=False,
        ),
        sa.Column(
            "change_request_count", sa.Integer(), server_default="0", nullable=False,
        ),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["creator_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_projects_department"), "projects", ["department"])
    op.create_index(op.f("ix_projects_status"), "projects", ["status"])
    op.create_index(op.f("ix_projects_creator_id"), "projects", ["creator_id"])
    op.create_index(op.f("ix_projects_assigned_to_id"), "projects", ["assigned_to_id"])

    op.create_table(
        "project_heads",
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("project_id", "user_id"),
    )
    op.create_index(op.f("ix_project_heads_user_id"), "project_heads", ["user_id"])

    op.create_table(
        "project_approvals",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("head_id", sa.Integer(), nullable=False),
        sa.Column("status", approval_status, nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["head_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "head_id", name="uq_project_approvals_head"),
    )
    op.create_index(
        op.f("ix_project_approvals_project_id"), "project_approvals", ["project_id"],
    )

    op.create_table(
        "project_members",
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", member_role, nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("project_id", "user_id"),
    )
    op.create_index(op.f("ix_project_members_user_id"), "project_members", ["user_id"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("task_name", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", task_status, nullable=False),
        sa.Column("priority", task_priority, nullable=False),
        sa.Column("assigned_developer_id", sa.Integer(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("ticket_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("max_tickets", sa.Integer(), server_default="2", nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_developer_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tasks_project_id"), "tasks", ["project_id"])
    op.create_index(op.f("ix_tasks_status"), "tasks", ["status"])
    op.create_index(
        op.f("ix_tasks_assigned_developer_id"), "tasks", ["assigned_developer_id"],
    )
    op.create_index(op.f("ix_tasks_created_by_id"), "tasks", ["created_by_id"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("requested_by_id", sa.Integer(), nullable=False),
        sa.Column("issue_type", issue_type, nullable=False),
        sa.Column("category", ticket_category, nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("priority", ticket_priority, nullable=False),
        sa.Column("status", ticket_status, nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["requested_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tickets_task_id"), "tickets", ["task_id"])
    op.create_index(op.f("ix_tickets_requested_by_id"), "tickets", ["requested_by_id"])
    op.create_index(op.f("ix_tickets_issue_type"), "tickets", ["issue_type"])
    op.create_index(op.f("ix_tickets_status"), "tickets", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("details", sa.Text(), nullable=False),
        sa.Column("resource_type", sa.String(length=32), nullable=True),
        sa.Column("resource_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_logs_user_id"), "audit_logs", ["user_id"])
    op.create_index(op.f("ix_audit_logs_action"), "audit_logs", ["action"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("severity", notification_severity, nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"])


def downgrade() -> None:
    """Undo the migration."""
    for table in (
        "notifications",
        "audit_logs",
        "tickets",
        "tasks",
        "project_members",
        "project_approvals",
        "project_heads",
        "projects",
        "users",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for enum in ENUMS:
        enum.drop(bind, checkfirst=True)
