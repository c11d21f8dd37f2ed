"""
Admission control for change-request tickets.

Every project shares a fixed pool of change-request slots across all of its
tasks. The pool is a counter on the project row, taken with a single
conditional ``UPDATE ... WHERE change_request_count < limit`` so two
concurrent requests can never both claim the last slot. Bug tickets are
never counted.
"""
from __future__ import annotations

from typing import Optional

from loguru import logger
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.settings import settings
from taskgate.tracker.enums import IssueType
from taskgate.tracker.models import Project, Task, Ticket
from taskgate.tracker.utils import AdmissionLimitReached, _get_or_404


async def admit_ticket(
    session: AsyncSession,
    task_id: int,
    issue_type: IssueType,
    *,
    limit: Optional[int] = None,
) -> Task:
    """
    Claim an admission slot for a new ticket on ``task_id``.

    Runs inside the caller's transaction; the slot only becomes durable when
    the caller commits it together with the ticket row.
    """
    task = await _get_or_404(session, Task, task_id)
    if issue_type is not IssueType.CHANGE_REQUEST:
        return task

    limit = settings.max_change_requests if limit is None else limit
    stmt = (
        update(Project)
        .where(
            Project.id == task.project_id,
            Project.change_request_count < limit,
        )
        .values(change_request_count=Project.change_request_count + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        logger.info(
            "Change request refused for project {}: limit of {} reached",
            task.project_id,
            limit,
        )
        raise AdmissionLimitReached(task.project_id, limit)
    return task


async def record_ticket_use(session: AsyncSession, task_id: int) -> None:
    """Bump the task's informational ticket counter after a ticket is stored."""
    stmt = (
        update(Task)
        .where(Task.id == task_id)
        .values(ticket_used=Task.ticket_used + 1)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def release_ticket(session: AsyncSession, ticket: Ticket) -> None:
    """
    Undo a ticket's counters after it is deleted.

    Both decrements are floored at zero inside the UPDATE itself, so racing
    deletes cannot drive a counter negative.
    """
    await session.execute(
        update(Task)
        .where(Task.id == ticket.task_id, Task.ticket_used > 0)
        .values(ticket_used=Task.ticket_used - 1)
        .execution_options(synchronize_session=False)
    )
    if ticket.issue_type is IssueType.CHANGE_REQUEST:
        await session.execute(
            update(Project)
            .where(
                Project.id == select(Task.project_id)
                .where(Task.id == ticket.task_id)
                .scalar_subquery(),
                Project.change_request_count > 0,
            )
            .values(change_request_count=Project.change_request_count - 1)
            .execution_options(synchronize_session=False)
        )


async def release_task_tickets(session: AsyncSession, task: Task) -> int:
    """
    Free the project slots held by change requests of a task about to be deleted.

    Returns the number of slots released.
    """
    held = await session.scalar(
        select(func.count(Ticket.id)).where(
            Ticket.task_id == task.id,
            Ticket.issue_type == IssueType.CHANGE_REQUEST,
        )
    )
    if not held:
        return 0
    await session.execute(
        update(Project)
        .where(Project.id == task.project_id)
        .values(
            change_request_count=case(
                (Project.change_request_count > held, Project.change_request_count - held),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )
    return held


async def count_change_requests(session: AsyncSession, project_id: int) -> int:
    """Count stored change-request tickets across every task of a project."""
    stmt = (
        select(func.count(Ticket.id))
        .join(Task, Task.id == Ticket.task_id)
        .where(
            Task.project_id == project_id,
            Ticket.issue_type == IssueType.CHANGE_REQUEST,
        )
    )
    return (await session.scalar(stmt)) or 0


async def resync_change_request_count(session: AsyncSession, project_id: int) -> int:
    """
    Reset a project's slot counter from the stored tickets.

    Repairs projects whose tickets predate the counter column.
    """
    count = await count_change_requests(session, project_id)
    await session.execute(
        update(Project)
        .where(Project.id == project_id)
        .values(change_request_count=count)
        .execution_options(synchronize_session=False)
    )
    return count
