"""
Project approval workflow.

Every project head casts an independent vote. Votes are folded into the
project status with veto semantics: one rejection rejects the project, and
only unanimous approval activates it. Admins bypass the vote entirely with a
direct status write.

Concurrency: a vote touches only its own ``project_approvals`` row, and the
aggregate status is written with ``WHERE version = <version read>``. When two
votes race, the loser's status write matches no row, raises Conflict, and the
whole vote is replayed once from a fresh read.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskgate.tracker import side_effects
from taskgate.tracker.enums import (
    ApprovalStatus,
    AuditAction,
    NotificationSeverity,
    ProjectStatus,
    Vote,
)
from taskgate.tracker.models import Project, ProjectApproval, ProjectHead
from taskgate.tracker.permissions import Actor
from taskgate.tracker.utils import (
    Conflict,
    Forbidden,
    NotFound,
    commit_or_fail,
    retry_on_conflict,
    utcnow,
)

HEAD_REJECTION_REASON = "Rejected by project head"
ADMIN_REJECTION_REASON = "Rejected by admin"

# Statuses the vote fold is allowed to move between; anything else is an
# administrative state that votes do not touch.
VOTE_GOVERNED = frozenset(
    {ProjectStatus.PENDING, ProjectStatus.ACTIVE, ProjectStatus.REJECTED}
)


@dataclass(frozen=True)
class Verdict:
    status: ProjectStatus
    rejection_reason: Optional[str] = None


@dataclass
class Transition:
    project: Project
    old_status: ProjectStatus
    new_status: ProjectStatus
    activated: bool = False
    changed: bool = True


def fold_approvals(
    approvals: Sequence[ProjectApproval],
    deciding_comment: Optional[str] = None,
) -> Verdict:
    """
    Derive the aggregate status from the heads' decisions.

    Rejection dominates: a single rejected row rejects the project even when
    every other head approved. ``deciding_comment`` is the comment of the
    rejection being cast right now, if any; otherwise the most recent
    rejection's comment is used.
    """
    rejected = [a for a in approvals if a.status == ApprovalStatus.REJECTED]
    if rejected:
        reason = deciding_comment
        if not reason:
            latest = max(
                rejected,
                key=lambda a: (a.decided_at.timestamp() if a.decided_at else 0.0, a.id),
            )
            reason = latest.comment
        return Verdict(ProjectStatus.REJECTED, reason or HEAD_REJECTION_REASON)
    if approvals and all(a.status == ApprovalStatus.APPROVED for a in approvals):
        return Verdict(ProjectStatus.ACTIVE)
    return Verdict(ProjectStatus.PENDING)


def vote_governs(project: Project) -> bool:
    """True when the heads' decisions, not an admin, own the project status."""
    return project.status in VOTE_GOVERNED and not project.decided_by_admin


def verdict_values(
    project: Project,
    verdict: Verdict,
    now: datetime,
) -> Tuple[dict, bool]:
    """
    Column values that move ``project`` to ``verdict``.

    The flag is True when this write activates the project for the first
    time; ``approved_at`` is never overwritten.
    """
    values: dict = {"status": verdict.status}
    if verdict.status is ProjectStatus.REJECTED:
        values["rejection_reason"] = verdict.rejection_reason
    elif project.status is ProjectStatus.REJECTED:
        values["rejection_reason"] = None
    activated = verdict.status is ProjectStatus.ACTIVE and project.approved_at is None
    if activated:
        values["approved_at"] = now
    return values, activated


async def load_approvals(session: AsyncSession, project_id: int) -> Sequence[ProjectApproval]:
    result = await session.execute(
        select(ProjectApproval)
        .where(ProjectApproval.project_id == project_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def load_project(session: AsyncSession, project_id: int) -> Project:
    """Fresh read of a project with heads, approvals and members."""
    q = (
        select(Project)
        .options(
            selectinload(Project.heads),
            selectinload(Project.approvals),
            selectinload(Project.members),
        )
        .where(Project.id == project_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(q)
    project = result.scalars().first()
    if project is None:
        raise NotFound("Project not found")
    return project


async def _head_ids(session: AsyncSession, project_id: int) -> list[int]:
    q = (
        select(ProjectHead.user_id)
        .where(ProjectHead.project_id == project_id)
        .order_by(ProjectHead.position)
    )
    return list((await session.execute(q)).scalars().all())


async def ensure_approvals(
    session: AsyncSession,
    project_id: int,
    head_ids: Sequence[int],
) -> bool:
    """
    Repair legacy projects that have heads but no approval rows.

    Creates one pending row per head and commits it on its own. Returns True
    when rows were created. Losing the race to another request doing the same
    repair is fine: the unique (project, head) key rejects the duplicates.
    """
    existing = await session.scalar(
        select(ProjectApproval.id).where(ProjectApproval.project_id == project_id).limit(1)
    )
    if existing is not None or not head_ids:
        return False
    session.add_all(
        ProjectApproval(project_id=project_id, head_id=head_id)
        for head_id in head_ids
    )
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.info("Approvals for project {} initialised concurrently", project_id)
        return False
    logger.info("Initialised {} approval rows for project {}", len(head_ids), project_id)
    return True


async def submit_vote(
    session: AsyncSession,
    project_id: int,
    actor: Actor,
    vote: Vote,
    comment: Optional[str] = None,
) -> Project:
    """
    Apply one head's vote, or an admin's override, and return the project.

    Raises NotFound for an unknown project and Forbidden unless the actor is
    one of its heads or an admin.
    """
    await load_project(session, project_id)
    head_ids = await _head_ids(session, project_id)
    if not actor.is_admin and actor.id not in head_ids:
        raise Forbidden("Only a project head can approve or reject this project")

    await ensure_approvals(session, project_id, head_ids)

    if actor.is_admin:
        status = ProjectStatus.ACTIVE if vote is Vote.APPROVE else ProjectStatus.REJECTED
        return await set_status_by_admin(
            session, project_id, actor, status, reason=comment,
        )

    transition = await retry_on_conflict(
        session,
        lambda: _apply_head_vote(session, project_id, actor, vote, comment),
    )
    if transition.changed:
        await announce_transition(actor, transition, source="vote")
    return transition.project


async def _apply_head_vote(
    session: AsyncSession,
    project_id: int,
    actor: Actor,
    vote: Vote,
    comment: Optional[str],
) -> Transition:
    project = await load_project(session, project_id)
    read_version = project.version
    old_status = project.status

    row = await session.scalar(
        select(ProjectApproval)
        .where(
            ProjectApproval.project_id == project_id,
            ProjectApproval.head_id == actor.id,
        )
        .execution_options(populate_existing=True)
    )
    if row is None:
        raise Forbidden("Actor is not a registered head of this project")

    decision = (
        ApprovalStatus.APPROVED if vote is Vote.APPROVE else ApprovalStatus.REJECTED
    )
    if row.status == decision:
        # re-casting the same vote changes nothing
        return Transition(project, old_status, old_status, changed=False)

    now = utcnow()
    await session.execute(
        update(ProjectApproval)
        .where(
            ProjectApproval.project_id == project_id,
            ProjectApproval.head_id == actor.id,
        )
        .values(
            status=decision,
            decided_at=now,
            comment=comment if decision == ApprovalStatus.REJECTED else None,
        )
        .execution_options(synchronize_session=False)
    )

    approvals = await load_approvals(session, project_id)
    verdict = fold_approvals(
        approvals,
        deciding_comment=comment if decision == ApprovalStatus.REJECTED else None,
    )

    values: dict = {"version": read_version + 1}
    new_status = old_status
    activated = False
    if vote_governs(project):
        new_status = verdict.status
        folded, activated = verdict_values(project, verdict, now)
        values.update(folded)
    else:
        logger.info(
            "Vote recorded on project {} without changing its {} status",
            project_id,
            old_status.value,
        )

    await _write_status(session, project_id, read_version, values)
    await commit_or_fail(session)
    project = await load_project(session, project_id)
    return Transition(project, old_status, new_status, activated=activated)


async def set_status_by_admin(
    session: AsyncSession,
    project_id: int,
    actor: Actor,
    status: ProjectStatus,
    reason: Optional[str] = None,
) -> Project:
    """
    Admin override: write the project status directly, bypassing the vote.

    Approval rows are left as they are and ignored while the override holds.
    Writing ``pending`` lifts the override and hands control back to the vote.
    """
    if not actor.is_admin:
        raise Forbidden("Only admins can set a project's status directly")

    transition = await retry_on_conflict(
        session,
        lambda: _apply_admin_status(session, project_id, status, reason),
    )
    if transition.changed:
        await announce_transition(actor, transition, source="admin")
    return transition.project


async def _apply_admin_status(
    session: AsyncSession,
    project_id: int,
    status: ProjectStatus,
    reason: Optional[str],
) -> Transition:
    project = await load_project(session, project_id)
    read_version = project.version
    old_status = project.status

    values: dict = {
        "status": status,
        "version": read_version + 1,
        "decided_by_admin": status is not ProjectStatus.PENDING,
    }
    if status is ProjectStatus.REJECTED:
        values["rejection_reason"] = reason or ADMIN_REJECTION_REASON
    elif old_status is ProjectStatus.REJECTED:
        values["rejection_reason"] = None
    activated = status is ProjectStatus.ACTIVE and project.approved_at is None
    if activated:
        values["approved_at"] = utcnow()

    await _write_status(session, project_id, read_version, values)
    await commit_or_fail(session)
    project = await load_project(session, project_id)
    return Transition(
        project, old_status, status, activated=activated, changed=old_status != status,
    )


async def _write_status(
    session: AsyncSession,
    project_id: int,
    read_version: int,
    values: dict,
) -> None:
    result = await session.execute(
        update(Project)
        .where(Project.id == project_id, Project.version == read_version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise Conflict(f"Project {project_id} was modified concurrently")


async def announce_transition(actor: Actor, transition: Transition, *, source: str) -> None:
    """Audit the transition and notify the people it concerns."""
    project = transition.project
    events = side_effects.dispatcher
    await events.audit(
        actor.id,
        AuditAction.UPDATE_PROJECT_STATUS,
        f"Project {project.name} status {transition.old_status.value} -> "
        f"{transition.new_status.value} ({source})",
        resource_type="Project",
        resource_id=project.id,
    )
    if transition.activated:
        await events.notify(
            [project.creator_id, *(m.user_id for m in project.members)],
            "Project approved",
            f'Project "{project.name}" has been approved and is now active.',
            NotificationSeverity.SUCCESS,
        )
    elif transition.new_status != transition.old_status:
        severity = (
            NotificationSeverity.WARNING
            if transition.new_status is ProjectStatus.REJECTED
            else NotificationSeverity.INFO
        )
        await events.notify(
            [project.creator_id, *(m.user_id for m in project.members)],
            "Project status updated",
            f'Project "{project.name}" is now {transition.new_status.value}.',
            severity,
            exclude=[actor.id],
        )
