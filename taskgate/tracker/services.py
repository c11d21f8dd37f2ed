from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from loguru import logger
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.settings import settings
from taskgate.tracker import admission, side_effects, visibility
from taskgate.tracker.approvals import (
    Transition,
    announce_transition,
    fold_approvals,
    load_approvals,
    load_project,
    set_status_by_admin,
    verdict_values,
    vote_governs,
)
from taskgate.tracker.enums import (
    ApprovalStatus,
    AuditAction,
    IssueType,
    MemberRole,
    NotificationSeverity,
    ProjectStatus,
    ResourceKind,
    TaskPriority,
    TaskStatus,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    UserRole,
)
from taskgate.tracker.models import (
    Project,
    ProjectApproval,
    ProjectHead,
    ProjectMember,
    Task,
    Ticket,
    User,
)
from taskgate.tracker.permissions import MODELS, Actor, PermissionChecker, verify_visible
from taskgate.tracker.utils import (
    Conflict,
    Forbidden,
    InvalidInput,
    NotFound,
    _get_or_404,
    commit_or_fail,
    retry_on_conflict,
    utcnow,
)

# statuses in which the creator or a head may still edit project fields
EDITABLE_STATUSES = frozenset(
    {
        ProjectStatus.DRAFT,
        ProjectStatus.PENDING,
        ProjectStatus.APPROVED,
        ProjectStatus.REJECTED,
    }
)

PROJECT_FIELDS = frozenset(
    {
        "name",
        "description",
        "client_name",
        "start_date",
        "delivery_date",
        "department",
        "assigned_to_id",
    }
)
TASK_FIELDS = frozenset(
    {
        "task_name",
        "description",
        "status",
        "priority",
        "assigned_developer_id",
        "due_date",
        "start_date",
        "max_tickets",
    }
)
TICKET_FIELDS = frozenset({"category", "description", "priority", "status"})



# ---- Users ----
async def create_user(
    session: AsyncSession,
    *,
    email: str,
    full_name: Optional[str] = None,
    department: Optional[str] = None,
    role: UserRole = UserRole.MEMBER,
    active: bool = True,
) -> User:
    """Register a user record. Credentials live with the identity service."""
    user = User(
        email=email,
        full_name=full_name,
        department=department,
        role=role,
        active=active,
    )
    session.add(user)
    try:
        await session.flush()  # push so integrity errors surface
    except IntegrityError as exc:
        raise Conflict("email already exists") from exc
    await session.refresh(user)
    return user


async def get_user(session: AsyncSession, user_id: int) -> User:
    return await _get_or_404(session, User, user_id)


async def list_users(
    session: AsyncSession,
    actor: Actor,
    limit: int = 100,
    offset: int = 0,
) -> List[User]:
    if not actor.is_admin:
        raise Forbidden("Admin privileges required")
    q = select(User).order_by(User.id).offset(offset).limit(limit)
    return list((await session.execute(q)).scalars().all())


async def search_users(session: AsyncSession, query: Optional[str], limit: int = 10) -> List[User]:
    """
    Find users by name or email for head and member pickers.

    A blank query returns the first ``limit`` users.
    """
    q = select(User).order_by(User.full_name, User.email).limit(limit)
    if query and query.strip():
        pattern = f"%{query.strip()}%"
        q = q.where(or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))
    return list((await session.execute(q)).scalars().all())


async def update_user_global_role(
    session: AsyncSession,
    actor: Actor,
    user_id: int,
    new_role: UserRole,
) -> User:
    """Update a user's global role"""
    if not actor.is_admin:
        raise Forbidden("Admin privileges required")
    user = await _get_or_404(session, User, user_id)
    user.role = new_role
    await commit_or_fail(session)
    await side_effects.dispatcher.audit(
        actor.id,
        AuditAction.USER_ROLE_UPDATE,
        f"User {user.email} role set to {new_role.value}",
        resource_type="User",
        resource_id=user.id,
    )
    return user


async def _ensure_users_exist(session: AsyncSession, user_ids: Iterable[int]) -> None:
    wanted = set(user_ids)
    if not wanted:
        return
    found = set(
        (await session.execute(select(User.id).where(User.id.in_(wanted)))).scalars().all()
    )
    missing = sorted(wanted - found)
    if missing:
        raise NotFound(f"Users not found: {missing}")


def _unique_heads(head_ids: Sequence[int]) -> List[int]:
    # keep the first occurrence, heads are an ordered set
    return list(dict.fromkeys(head_ids))


def _normalise_members(
    members: Iterable[Any],
) -> Dict[int, MemberRole]:
    normalised: Dict[int, MemberRole] = {}
    for member in members:
        if isinstance(member, tuple):
            user_id, role = member
        elif isinstance(member, dict):
            user_id, role = member["user_id"], member.get("role", MemberRole.DEVELOPER)
        else:
            user_id, role = member.user_id, member.role
        normalised[user_id] = MemberRole(role)
    return normalised


# ---- Projects ----
async def create_project(
    session: AsyncSession,
    actor: Actor,
    *,
    name: str,
    project_heads: Sequence[int],
    members: Iterable[Any] = (),
    description: Optional[str] = None,
    client_name: Optional[str] = None,
    start_date: Optional[date] = None,
    delivery_date: Optional[date] = None,
    assigned_to_id: Optional[int] = None,
    department: Optional[str] = None,
) -> Project:
    """
    Create a project awaiting approval from every one of its heads.

    The creator is added to the members as manager unless listed already.
    """
    head_ids = _unique_heads(project_heads)
    if not head_ids:
        raise InvalidInput("Please provide at least one project head")
    if not name or not name.strip():
        raise InvalidInput("Please provide project name")

    member_roles = _normalise_members(members)
    member_roles.setdefault(actor.id, MemberRole.MANAGER)
    referenced = [*head_ids, *member_roles]
    if assigned_to_id is not None:
        referenced.append(assigned_to_id)
    await _ensure_users_exist(session, referenced)

    project = Project(
        name=name.strip(),
        description=description,
        client_name=client_name,
        start_date=start_date,
        delivery_date=delivery_date,
        department=department if department is not None else actor.department,
        status=ProjectStatus.PENDING,
        creator_id=actor.id,
        assigned_to_id=assigned_to_id,
    )
    session.add(project)
    await session.flush()  # Get the project ID

    session.add_all(
        ProjectHead(project_id=project.id, user_id=head_id, position=position)
        for position, head_id in enumerate(head_ids)
    )
    session.add_all(
        ProjectApproval(project_id=project.id, head_id=head_id)
        for head_id in head_ids
    )
    session.add_all(
        ProjectMember(project_id=project.id, user_id=user_id, role=role)
        for user_id, role in member_roles.items()
    )
    await commit_or_fail(session)
    project = await load_project(session, project.id)

    events = side_effects.dispatcher
    await events.audit(
        actor.id,
        AuditAction.CREATE_PROJECT,
        f"Project {project.name} created",
        resource_type="Project",
        resource_id=project.id,
    )
    await events.notify(
        head_ids,
        "Project approval requested",
        f'Project "{project.name}" is waiting for your approval.',
        exclude=[actor.id],
    )
    await events.notify(
        member_roles,
        "Added to project",
        f'You have been added to project "{project.name}".',
        exclude=[actor.id, *head_ids],
    )
    return project


async def get_project(session: AsyncSession, project_id: int, actor: Actor) -> Project:
    """Single project read; the department channel applies here only."""
    await verify_visible(
        session,
        actor,
        ResourceKind.PROJECT,
        project_id,
        single_record=settings.department_visibility,
    )
    return await load_project(session, project_id)


async def list_visible(
    session: AsyncSession,
    actor: Actor,
    kind: ResourceKind,
    *,
    limit: int = 100,
    offset: int = 0,
    **filters: Any,
) -> list:
    """
    List the records of ``kind`` the actor may see.

    Visibility is applied first; ``filters`` are plain equality filters on
    model columns and only ever narrow the visible set. None values are
    ignored.
    """
    model = MODELS[kind]
    q = select(model).where(visibility.resolve(actor, kind))
    for field, value in filters.items():
        if value is None:
            continue
        # relationships and other attributes are not filterable
        if field not in model.__table__.columns:
            raise InvalidInput(f"Unknown filter {field!r} for {kind.value}")
        q = q.where(getattr(model, field) == value)
    q = q.order_by(model.created_at.desc(), model.id.desc()).offset(offset).limit(limit)
    result = await session.execute(q)
    return list(result.scalars().all())


async def update_project(
    session: AsyncSession,
    project_id: int,
    actor: Actor,
    **patch: Any,
) -> Project:
    """
    Edit project fields.

    Creator and heads may edit until the project becomes active; admins any
    time. A status in the patch is an admin override and is routed through
    the approval coordinator.
    Replacing the heads folds the status again from the decisions that
    remain, unless an admin override holds it.
    """
    project = await load_project(session, project_id)
    if not actor.is_admin:
        is_owner = project.creator_id == actor.id or await PermissionChecker.is_project_head(
            session, actor.id, project_id,
        )
        if not is_owner:
            raise Forbidden("Only the creator or a project head can edit this project")
        if project.status not in EDITABLE_STATUSES:
            raise Forbidden(f"Project can no longer be edited once {project.status.value}")
        if patch.get("status") is not None:
            raise Forbidden("Only admins can change project status directly")

    status = patch.pop("status", None)
    reason = patch.pop("rejection_reason", None)
    heads = patch.pop("project_heads", None)
    members = patch.pop("members", None)
    unknown = set(patch) - PROJECT_FIELDS
    if unknown:
        raise InvalidInput(f"Unknown project fields: {sorted(unknown)}")
    if "name" in patch:
        if not patch["name"] or not patch["name"].strip():
            raise InvalidInput("Please provide project name")
        patch["name"] = patch["name"].strip()

    if heads is not None:
        heads = _unique_heads(heads)
        if not heads:
            raise InvalidInput("A project needs at least one project head")
        await _ensure_users_exist(session, heads)
    member_roles = _normalise_members(members) if members is not None else None
    if member_roles:
        await _ensure_users_exist(session, member_roles)
    if patch.get("assigned_to_id") is not None:
        await _ensure_users_exist(session, [patch["assigned_to_id"]])

    changed = sorted(patch)
    if heads is not None:
        changed.append("project_heads")
    if member_roles is not None:
        changed.append("members")
    if changed:
        transition = await retry_on_conflict(
            session,
            lambda: _apply_project_patch(session, project_id, patch, heads, member_roles),
        )
        await side_effects.dispatcher.audit(
            actor.id,
            AuditAction.UPDATE_PROJECT,
            f"Project {project_id} fields updated: {changed}",
            resource_type="Project",
            resource_id=project_id,
        )
        if transition.changed:
            await announce_transition(actor, transition, source="head change")

    if status is not None:
        return await set_status_by_admin(
            session, project_id, actor, ProjectStatus(status), reason=reason,
        )
    return await load_project(session, project_id)


async def _apply_project_patch(
    session: AsyncSession,
    project_id: int,
    fields: Dict[str, Any],
    heads: Optional[List[int]],
    member_roles: Optional[Dict[int, MemberRole]],
) -> Transition:
    """
    Write a field patch under the project's version guard.

    A new head set changes which decisions count, so the status is folded
    again from the remaining approval rows in the same write.
    """
    project = await load_project(session, project_id)
    read_version = project.version
    old_status = new_status = project.status
    values: Dict[str, Any] = dict(fields, version=read_version + 1)
    activated = False

    if heads is not None:
        await _replace_heads(session, project, heads)
        rows = await load_approvals(session, project_id)
        if rows and vote_governs(project):
            verdict = fold_approvals(rows)
            folded, activated = verdict_values(project, verdict, utcnow())
            values.update(folded)
            new_status = verdict.status
    if member_roles is not None:
        await _replace_members(session, project, member_roles)

    result = await session.execute(
        update(Project)
        .where(Project.id == project_id, Project.version == read_version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise Conflict(f"Project {project_id} was modified concurrently")
    await commit_or_fail(session)
    project = await load_project(session, project_id)
    return Transition(
        project, old_status, new_status, activated=activated, changed=old_status != new_status,
    )


async def _replace_heads(session: AsyncSession, project: Project, heads: List[int]) -> None:
    """
    Swap the head list while keeping one approval row per head.

    Decisions of heads that stay are kept; new heads start pending.
    """
    kept = set(heads)
    existing = {head.user_id: head for head in project.heads}
    for user_id, head in existing.items():
        if user_id not in kept:
            await session.delete(head)
    for position, head_id in enumerate(heads):
        head = existing.get(head_id)
        if head is None:
            session.add(ProjectHead(project_id=project.id, user_id=head_id, position=position))
        else:
            head.position = position

    if project.approvals:
        decided = {approval.head_id for approval in project.approvals}
        for approval in project.approvals:
            if approval.head_id not in kept:
                await session.delete(approval)
        session.add_all(
            ProjectApproval(
                project_id=project.id, head_id=head_id, status=ApprovalStatus.PENDING,
            )
            for head_id in heads
            if head_id not in decided
        )
    await session.flush()


async def _replace_members(
    session: AsyncSession,
    project: Project,
    member_roles: Dict[int, MemberRole],
) -> None:
    existing = {member.user_id: member for member in project.members}
    for user_id, member in existing.items():
        if user_id not in member_roles:
            await session.delete(member)
    for user_id, role in member_roles.items():
        member = existing.get(user_id)
        if member is None:
            session.add(ProjectMember(project_id=project.id, user_id=user_id, role=role))
        else:
            member.role = role
    await session.flush()


async def delete_project(session: AsyncSession, project_id: int, actor: Actor) -> None:
    """
    Delete a project with all of its tasks and tickets.

    The cascade runs as one transaction: either everything is gone or, on a
    storage failure, nothing is and Fatal is raised.
    """
    project = await _get_or_404(session, Project, project_id)
    if not actor.is_admin and project.creator_id != actor.id:
        raise Forbidden("Only the creator or an admin can delete this project")
    name = project.name

    task_ids = select(Task.id).where(Task.project_id == project_id).scalar_subquery()
    for stmt in (
        delete(Ticket).where(Ticket.task_id.in_(task_ids)),
        delete(Task).where(Task.project_id == project_id),
        delete(ProjectApproval).where(ProjectApproval.project_id == project_id),
        delete(ProjectHead).where(ProjectHead.project_id == project_id),
        delete(ProjectMember).where(ProjectMember.project_id == project_id),
        delete(Project).where(Project.id == project_id),
    ):
        await session.execute(stmt.execution_options(synchronize_session=False))
    await commit_or_fail(session)
    session.expunge_all()
    logger.info("Project {} deleted by user {}", project_id, actor.id)

    await side_effects.dispatcher.audit(
        actor.id,
        AuditAction.DELETE_PROJECT,
        f"Project {name} deleted",
        resource_type="Project",
        resource_id=project_id,
    )


# ---- Tasks ----
async def create_task(
    session: AsyncSession,
    actor: Actor,
    *,
    project_id: int,
    task_name: str,
    description: Optional[str] = None,
    status: TaskStatus = TaskStatus.TO_DO,
    priority: TaskPriority = TaskPriority.MEDIUM,
    assigned_developer_id: Optional[int] = None,
    due_date: Optional[date] = None,
    start_date: Optional[date] = None,
    max_tickets: int = 2,
) -> Task:
    await verify_visible(session, actor, ResourceKind.PROJECT, project_id)
    if assigned_developer_id is not None:
        await _ensure_users_exist(session, [assigned_developer_id])
    task = Task(
        project_id=project_id,
        task_name=task_name,
        description=description,
        status=status,
        priority=priority,
        assigned_developer_id=assigned_developer_id,
        created_by_id=actor.id,
        due_date=due_date,
        start_date=start_date,
        ticket_used=0,
        max_tickets=max_tickets,
    )
    session.add(task)
    await commit_or_fail(session)
    await session.refresh(task)

    events = side_effects.dispatcher
    await events.audit(
        actor.id,
        AuditAction.CREATE_TASK,
        f"Task {task.task_name} created",
        resource_type="Task",
        resource_id=task.id,
    )
    await events.notify(
        [assigned_developer_id],
        "New Task Assigned",
        f'You have been assigned to task "{task.task_name}".',
        exclude=[actor.id],
    )
    return task


async def get_task(session: AsyncSession, task_id: int, actor: Actor) -> Task:
    return await verify_visible(session, actor, ResourceKind.TASK, task_id)


async def update_task(session: AsyncSession, task_id: int, actor: Actor, **patch: Any) -> Task:
    task = await verify_visible(session, actor, ResourceKind.TASK, task_id)
    unknown = set(patch) - TASK_FIELDS
    if unknown:
        raise InvalidInput(f"Unknown task fields: {sorted(unknown)}")
    new_developer = patch.get("assigned_developer_id")
    reassigned = (
        "assigned_developer_id" in patch
        and new_developer is not None
        and new_developer != task.assigned_developer_id
    )
    if reassigned:
        await _ensure_users_exist(session, [new_developer])

    for k, v in patch.items():
        setattr(task, k, v)
    session.add(task)
    await commit_or_fail(session)
    await session.refresh(task)

    if reassigned:
        await side_effects.dispatcher.notify(
            [new_developer],
            "New Task Assigned",
            f'You have been assigned to task "{task.task_name}".',
            exclude=[actor.id],
        )
    return task


async def delete_task(session: AsyncSession, task_id: int, actor: Actor) -> None:
    """Delete a task and its tickets, giving their admission slots back."""
    task = await _get_or_404(session, Task, task_id)
    if not actor.is_admin and task.created_by_id not in (None, actor.id):
        raise Forbidden("Access denied. You can only delete your own tasks.")
    name = task.task_name

    released = await admission.release_task_tickets(session, task)
    await session.execute(
        delete(Ticket)
        .where(Ticket.task_id == task_id)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        delete(Task)
        .where(Task.id == task_id)
        .execution_options(synchronize_session=False)
    )
    await commit_or_fail(session)
    session.expunge_all()

    await side_effects.dispatcher.audit(
        actor.id,
        AuditAction.DELETE_TASK,
        f"Task {name} and its tickets deleted ({released} change request slots freed)",
        resource_type="Task",
        resource_id=task_id,
    )


# ---- Tickets ----
async def create_ticket(
    session: AsyncSession,
    actor: Actor,
    *,
    task_id: int,
    issue_type: IssueType,
    category: TicketCategory,
    description: str,
    priority: TicketPriority = TicketPriority.MEDIUM,
) -> Ticket:
    """
    Open a ticket on a task.

    Change requests must win an admission slot first; the slot, the ticket
    row and the task counter are committed together.
    """
    if not description or not description.strip():
        raise InvalidInput("Please provide all required fields")
    await verify_visible(session, actor, ResourceKind.TASK, task_id)

    # a refused slot matched no row, so there is nothing to roll back
    task = await admission.admit_ticket(session, task_id, issue_type)

    ticket = Ticket(
        task_id=task_id,
        requested_by_id=actor.id,
        issue_type=issue_type,
        category=category,
        description=description,
        priority=priority,
        status=TicketStatus.OPEN,
    )
    session.add(ticket)
    await session.flush()
    await admission.record_ticket_use(session, task_id)
    await commit_or_fail(session)
    await session.refresh(ticket)

    events = side_effects.dispatcher
    await events.audit(
        actor.id,
        AuditAction.CREATE_TICKET,
        f"Ticket created in task {task.task_name}",
        resource_type="Ticket",
        resource_id=ticket.id,
    )
    await events.notify(
        [task.assigned_developer_id],
        "New Ticket Created",
        f'A new ticket "{description[:30]}" has been created on your task '
        f'"{task.task_name}".',
        NotificationSeverity.WARNING,
        exclude=[actor.id],
    )
    return ticket


async def get_ticket(session: AsyncSession, ticket_id: int, actor: Actor) -> Ticket:
    return await verify_visible(session, actor, ResourceKind.TICKET, ticket_id)


async def update_ticket(
    session: AsyncSession,
    ticket_id: int,
    actor: Actor,
    **patch: Any,
) -> Ticket:
    """Edit a ticket. The issue type is fixed at creation, it decides admission."""
    ticket = await verify_visible(session, actor, ResourceKind.TICKET, ticket_id)
    if "issue_type" in patch:
        raise InvalidInput("The issue type of a ticket cannot be changed")
    unknown = set(patch) - TICKET_FIELDS
    if unknown:
        raise InvalidInput(f"Unknown ticket fields: {sorted(unknown)}")

    old_status = ticket.status
    for k, v in patch.items():
        setattr(ticket, k, v)
    session.add(ticket)
    await commit_or_fail(session)
    await session.refresh(ticket)

    if ticket.status != old_status:
        events = side_effects.dispatcher
        await events.audit(
            actor.id,
            AuditAction.UPDATE_TICKET_STATUS,
            f"Ticket status updated to {ticket.status.value}",
            resource_type="Ticket",
            resource_id=ticket.id,
        )
        await events.notify(
            [ticket.requested_by_id],
            "Ticket Status Updated",
            f'Your ticket "{ticket.description[:30]}" has been updated to '
            f"{ticket.status.value}.",
            NotificationSeverity.SUCCESS
            if ticket.status is TicketStatus.RESOLVED
            else NotificationSeverity.INFO,
            exclude=[actor.id],
        )
    return ticket


async def delete_ticket(session: AsyncSession, ticket_id: int, actor: Actor) -> None:
    ticket = await verify_visible(session, actor, ResourceKind.TICKET, ticket_id)
    result = await session.execute(
        delete(Ticket)
        .where(Ticket.id == ticket_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # deleted by a concurrent request, which also released its counters
        raise NotFound(f"Ticket with id={ticket_id} not found")
    await admission.release_ticket(session, ticket)
    await commit_or_fail(session)
    session.expunge(ticket)

    await side_effects.dispatcher.audit(
        actor.id,
        AuditAction.DELETE_TICKET,
        "Ticket deleted",
        resource_type="Ticket",
        resource_id=ticket_id,
    )


async def resync_change_requests(session: AsyncSession, project_id: int, actor: Actor) -> int:
    """Recount a project's admission counter from its stored change requests."""
    if not PermissionChecker.is_admin(actor):
        raise Forbidden("Admin privileges required")
    await _get_or_404(session, Project, project_id)
    count = await admission.resync_change_request_count(session, project_id)
    await commit_or_fail(session)
    logger.info("Project {} change request counter resynced to {}", project_id, count)
    return count
