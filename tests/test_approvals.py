import anyio
import pytest
from sqlalchemy import delete

from taskgate.tracker import approvals, services
from taskgate.tracker.approvals import fold_approvals
from taskgate.tracker.enums import (
    ApprovalStatus,
    AuditAction,
    ProjectStatus,
    UserRole,
    Vote,
)
from taskgate.tracker.models import ProjectApproval
from taskgate.tracker.permissions import Actor
from taskgate.tracker.utils import Forbidden, NotFound


async def _two_head_project(session, make_user):
    creator = await make_user()
    h1 = await make_user()
    h2 = await make_user()
    project = await services.create_project(
        session, creator, name="Website", project_heads=[h1.id, h2.id],
    )
    return creator, h1, h2, project


def _statuses(project):
    return {a.head_id: a.status for a in project.approvals}


@pytest.mark.anyio
async def test_unanimous_approval_activates(session, make_user, notified):
    creator, h1, h2, project = await _two_head_project(session, make_user)
    assert project.status is ProjectStatus.PENDING
    assert _statuses(project) == {
        h1.id: ApprovalStatus.PENDING,
        h2.id: ApprovalStatus.PENDING,
    }

    project = await approvals.submit_vote(session, project.id, h1, Vote.APPROVE)
    assert project.status is ProjectStatus.PENDING
    assert project.approved_at is None

    project = await approvals.submit_vote(session, project.id, h2, Vote.APPROVE)
    assert project.status is ProjectStatus.ACTIVE
    assert project.approved_at is not None
    assert ("Project approved", [creator.id]) in notified()


@pytest.mark.anyio
async def test_rejection_dominates_earlier_approval(session, make_user, audited):
    _, h1, h2, project = await _two_head_project(session, make_user)

    await approvals.submit_vote(session, project.id, h1, Vote.APPROVE)
    project = await approvals.submit_vote(
        session, project.id, h2, Vote.REJECT, comment="Budget is missing",
    )

    assert project.status is ProjectStatus.REJECTED
    assert project.rejection_reason == "Budget is missing"
    assert _statuses(project)[h1.id] is ApprovalStatus.APPROVED
    assert AuditAction.UPDATE_PROJECT_STATUS.value in audited()


@pytest.mark.anyio
async def test_rejection_without_comment_uses_default_reason(session, make_user):
    _, h1, _, project = await _two_head_project(session, make_user)

    project = await approvals.submit_vote(session, project.id, h1, Vote.REJECT)

    assert project.rejection_reason == approvals.HEAD_REJECTION_REASON


@pytest.mark.anyio
async def test_head_can_flip_rejection_back_to_pending(session, make_user):
    _, h1, h2, project = await _two_head_project(session, make_user)

    await approvals.submit_vote(session, project.id, h1, Vote.REJECT, comment="no")
    project = await approvals.submit_vote(session, project.id, h1, Vote.APPROVE)

    assert project.status is ProjectStatus.PENDING
    assert project.rejection_reason is None
    project = await approvals.submit_vote(session, project.id, h2, Vote.APPROVE)
    assert project.status is ProjectStatus.ACTIVE


@pytest.mark.anyio
async def test_same_vote_twice_is_idempotent(session, make_user, audited):
    _, h1, _, project = await _two_head_project(session, make_user)

    first = await approvals.submit_vote(session, project.id, h1, Vote.APPROVE)
    snapshot = (first.status, first.version, _statuses(first))
    audits = len(audited())
    second = await approvals.submit_vote(session, project.id, h1, Vote.APPROVE)

    assert (second.status, second.version, _statuses(second)) == snapshot
    assert len(audited()) == audits


@pytest.mark.anyio
async def test_approved_at_is_set_only_once(session, make_user):
    _, h1, h2, project = await _two_head_project(session, make_user)
    admin = await make_user(role=UserRole.ADMIN)

    await approvals.submit_vote(session, project.id, h1, Vote.APPROVE)
    project = await approvals.submit_vote(session, project.id, h2, Vote.APPROVE)
    approved_at = project.approved_at

    await approvals.set_status_by_admin(session, project.id, admin, ProjectStatus.ON_HOLD)
    project = await approvals.set_status_by_admin(
        session, project.id, admin, ProjectStatus.ACTIVE,
    )

    assert project.status is ProjectStatus.ACTIVE
    assert project.approved_at == approved_at


@pytest.mark.anyio
async def test_admin_override_activates_without_votes(session, make_user):
    _, h1, h2, project = await _two_head_project(session, make_user)
    admin = await make_user(role=UserRole.ADMIN)

    project = await approvals.set_status_by_admin(
        session, project.id, admin, ProjectStatus.ACTIVE,
    )

    assert project.status is ProjectStatus.ACTIVE
    assert project.decided_by_admin is True
    assert project.approved_at is not None
    assert set(_statuses(project).values()) == {ApprovalStatus.PENDING}


@pytest.mark.anyio
async def test_votes_do_not_undo_admin_override(session, make_user):
    _, h1, _, project = await _two_head_project(session, make_user)
    admin = await make_user(role=UserRole.ADMIN)
    await approvals.set_status_by_admin(session, project.id, admin, ProjectStatus.ACTIVE)

    project = await approvals.submit_vote(session, project.id, h1, Vote.REJECT)

    assert project.status is ProjectStatus.ACTIVE
    assert _statuses(project)[h1.id] is ApprovalStatus.REJECTED

    # handing the decision back to the heads re-enables the fold
    project = await approvals.set_status_by_admin(
        session, project.id, admin, ProjectStatus.PENDING,
    )
    assert project.decided_by_admin is False


@pytest.mark.anyio
async def test_admin_rejection_reason(session, make_user):
    _, _, _, project = await _two_head_project(session, make_user)
    admin = await make_user(role=UserRole.ADMIN)

    rejected = await approvals.set_status_by_admin(
        session, project.id, admin, ProjectStatus.REJECTED,
    )
    assert rejected.rejection_reason == approvals.ADMIN_REJECTION_REASON

    rejected = await approvals.submit_vote(
        session, project.id, admin, Vote.REJECT, comment="Out of scope",
    )
    assert rejected.rejection_reason == "Out of scope"


@pytest.mark.anyio
async def test_only_heads_and_admins_may_vote(session, make_user):
    creator, _, _, project = await _two_head_project(session, make_user)

    with pytest.raises(Forbidden):
        await approvals.submit_vote(session, project.id, creator, Vote.APPROVE)
    with pytest.raises(Forbidden):
        await approvals.set_status_by_admin(
            session, project.id, creator, ProjectStatus.ACTIVE,
        )
    with pytest.raises(NotFound):
        await approvals.submit_vote(session, 4242, creator, Vote.APPROVE)


@pytest.mark.anyio
async def test_missing_approval_rows_are_initialised_lazily(session, make_user):
    _, h1, h2, project = await _two_head_project(session, make_user)
    await session.execute(
        delete(ProjectApproval).where(ProjectApproval.project_id == project.id)
    )
    await session.commit()

    project = await approvals.submit_vote(session, project.id, h1, Vote.APPROVE)

    assert _statuses(project) == {
        h1.id: ApprovalStatus.APPROVED,
        h2.id: ApprovalStatus.PENDING,
    }
    assert project.status is ProjectStatus.PENDING


@pytest.mark.anyio
async def test_concurrent_final_votes_activate_once(session, session_factory, make_user):
    _, h1, h2, project = await _two_head_project(session, make_user)
    results = {}

    async def vote(actor: Actor) -> None:
        async with session_factory() as own_session:
            results[actor.id] = await approvals.submit_vote(
                own_session, project.id, actor, Vote.APPROVE,
            )

    async with anyio.create_task_group() as tg:
        tg.start_soon(vote, h1)
        tg.start_soon(vote, h2)

    final = await approvals.load_project(session, project.id)
    assert final.status is ProjectStatus.ACTIVE
    assert set(_statuses(final).values()) == {ApprovalStatus.APPROVED}
    assert final.approved_at is not None


def test_fold_prefers_latest_rejection_comment():
    rows = [
        ProjectApproval(id=1, head_id=1, status=ApprovalStatus.APPROVED),
        ProjectApproval(id=2, head_id=2, status=ApprovalStatus.REJECTED, comment="old"),
        ProjectApproval(id=3, head_id=3, status=ApprovalStatus.REJECTED, comment="new"),
    ]

    verdict = fold_approvals(rows)

    assert verdict.status is ProjectStatus.REJECTED
    assert verdict.rejection_reason == "new"
    assert fold_approvals(rows[:1]).status is ProjectStatus.ACTIVE
    assert fold_approvals([]).status is ProjectStatus.PENDING
