"""
Role-scoped visibility.

``resolve`` turns an actor and a resource kind into a SQL boolean clause that
selects the projects, tasks or tickets the actor may read or act on. It only
builds expressions: no session, no I/O, no state, so the same input always
yields the same clause. Every clause is an OR of independent relationship
checks, which keeps visibility monotonic: adding a membership, assignment or
authorship can only widen what an actor sees.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import ColumnElement, or_, select, true

from taskgate.tracker.enums import ResourceKind
from taskgate.tracker.models import (
    Project,
    ProjectHead,
    ProjectMember,
    Task,
    Ticket,
)

if TYPE_CHECKING:
    from taskgate.tracker.permissions import Actor


def resolve(
    actor: Actor,
    kind: ResourceKind,
    *,
    single_record: bool = False,
) -> ColumnElement[bool]:
    """
    Build the visibility clause for ``kind``.

    :param single_record: also grant project reads through a shared
        department. Only meaningful for single project lookups.
    """
    if actor.is_admin:
        return true()
    if kind is ResourceKind.PROJECT:
        return project_clause(actor, single_record=single_record)
    if kind is ResourceKind.TASK:
        return task_clause(actor)
    if kind is ResourceKind.TICKET:
        return ticket_clause(actor)
    raise ValueError(f"Unknown resource kind: {kind!r}")


def project_clause(actor: Actor, *, single_record: bool = False) -> ColumnElement[bool]:
    clauses = [
        Project.creator_id == actor.id,
        Project.assigned_to_id == actor.id,
        Project.id.in_(
            select(ProjectHead.project_id).where(ProjectHead.user_id == actor.id)
        ),
        Project.id.in_(
            select(ProjectMember.project_id).where(ProjectMember.user_id == actor.id)
        ),
    ]
    if single_record and actor.department:
        clauses.append(Project.department == actor.department)
    return or_(*clauses)


def task_clause(actor: Actor) -> ColumnElement[bool]:
    # a task can be visible while its project is not, e.g. direct assignment
    return or_(
        Task.project_id.in_(select(Project.id).where(project_clause(actor))),
        Task.assigned_developer_id == actor.id,
        Task.created_by_id == actor.id,
    )


def ticket_clause(actor: Actor) -> ColumnElement[bool]:
    return or_(
        Ticket.task_id.in_(select(Task.id).where(task_clause(actor))),
        Ticket.requested_by_id == actor.id,
    )
