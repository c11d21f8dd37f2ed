from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from taskgate.tracker import approvals, services, side_effects
from taskgate.tracker.enums import (
    AuditAction,
    NotificationSeverity,
    ProjectStatus,
    Vote,
)
from taskgate.tracker.models import AuditLog, Notification


@pytest.mark.anyio
async def test_notify_dedups_and_skips_excluded(events):
    await events.notify([3, None, 1, 3, 2], "Hello", "body", exclude=[2])
    await events.notify([5], "Nobody", "body", exclude=[5])

    events.notify_task.kiq.assert_awaited_once_with(
        user_ids=[1, 3],
        title="Hello",
        message="body",
        severity=NotificationSeverity.INFO.value,
    )


@pytest.mark.anyio
async def test_enqueue_failure_is_swallowed():
    broken = MagicMock(task_name="broken")
    broken.kiq = AsyncMock(side_effect=ConnectionError("broker down"))
    dispatcher = side_effects.SideEffectDispatcher(audit_task=broken, notify_task=broken)

    await dispatcher.audit(1, AuditAction.CREATE_PROJECT, "created")
    await dispatcher.notify([1], "t", "m")

    assert broken.kiq.await_count == 2


@pytest.mark.anyio
async def test_transition_survives_dispatch_failure(session, make_user, monkeypatch):
    creator = await make_user()
    head = await make_user()
    broken = MagicMock(task_name="broken")
    broken.kiq = AsyncMock(side_effect=RuntimeError("queue full"))
    monkeypatch.setattr(
        side_effects,
        "dispatcher",
        side_effects.SideEffectDispatcher(audit_task=broken, notify_task=broken),
    )

    project = await services.create_project(
        session, creator, name="Resilient", project_heads=[head.id],
    )
    project = await approvals.submit_vote(session, project.id, head, Vote.APPROVE)

    assert project.status is ProjectStatus.ACTIVE
    assert broken.kiq.await_count > 0


@pytest.mark.anyio
async def test_write_helpers_persist_rows(session, make_user):
    actor = await make_user()
    other = await make_user()

    await side_effects.write_audit(
        session,
        actor_id=actor.id,
        action=AuditAction.DELETE_TICKET.value,
        details="Ticket deleted",
        resource_type="Ticket",
        resource_id=7,
    )
    await side_effects.write_notifications(
        session,
        user_ids=[actor.id, other.id],
        title="Ticket Status Updated",
        message="resolved",
        severity=NotificationSeverity.SUCCESS,
    )
    await session.commit()

    audit = (await session.execute(select(AuditLog))).scalar_one()
    rows = (await session.execute(select(Notification))).scalars().all()
    assert (audit.action, audit.resource_id) == ("DELETE_TICKET", 7)
    assert {n.user_id for n in rows} == {actor.id, other.id}
    assert all(n.severity is NotificationSeverity.SUCCESS and not n.read for n in rows)


@pytest.mark.anyio
async def test_broker_tasks_use_their_own_session(session, session_factory, make_user, monkeypatch):
    actor = await make_user()
    monkeypatch.setattr(side_effects, "get_db_session_factory", lambda: session_factory)

    await side_effects.record_audit(
        actor.id, AuditAction.CREATE_TASK.value, "Task created", "Task", 1,
    )
    await side_effects.send_notifications([actor.id], "New Task Assigned", "go")

    audits = (await session.execute(select(AuditLog))).scalars().all()
    notes = (await session.execute(select(Notification))).scalars().all()
    assert [a.details for a in audits] == ["Task created"]
    assert [(n.user_id, n.severity) for n in notes] == [
        (actor.id, NotificationSeverity.INFO),
    ]
