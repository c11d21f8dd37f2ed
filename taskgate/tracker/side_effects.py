"""
Fire-and-forget audit records and in-app notifications.

Core transitions commit first; the dispatcher then enqueues taskiq tasks and
never waits for them to run. Failing to enqueue is logged and swallowed, it
never fails or undoes the transition that triggered it.
"""
from __future__ import annotations

from typing import Any, Iterable, List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.db.session_factory import get_db_session_factory
from taskgate.tkq import broker
from taskgate.tracker.enums import AuditAction, NotificationSeverity
from taskgate.tracker.models import AuditLog, Notification


async def write_audit(
    session: AsyncSession,
    *,
    actor_id: Optional[int],
    action: str,
    details: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[int] = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=actor_id,
        action=action,
        details=details,
        resource_type=resource_type,
        resource_id=resource_id,
    )
    session.add(entry)
    await session.flush()
    return entry


async def write_notifications(
    session: AsyncSession,
    *,
    user_ids: Iterable[int],
    title: str,
    message: str,
    severity: NotificationSeverity = NotificationSeverity.INFO,
) -> List[Notification]:
    rows = [
        Notification(user_id=user_id, title=title, message=message, severity=severity)
        for user_id in user_ids
    ]
    session.add_all(rows)
    await session.flush()
    return rows


@broker.task(task_name="taskgate.record_audit")
async def record_audit(
    actor_id: Optional[int],
    action: str,
    details: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[int] = None,
) -> None:
    session_factory = get_db_session_factory()
    async with session_factory() as session:
        await write_audit(
            session,
            actor_id=actor_id,
            action=action,
            details=details,
            resource_type=resource_type,
            resource_id=resource_id,
        )
        await session.commit()


@broker.task(task_name="taskgate.send_notifications")
async def send_notifications(
    user_ids: List[int],
    title: str,
    message: str,
    severity: str = NotificationSeverity.INFO.value,
) -> None:
    session_factory = get_db_session_factory()
    async with session_factory() as session:
        await write_notifications(
            session,
            user_ids=user_ids,
            title=title,
            message=message,
            severity=NotificationSeverity(severity),
        )
        await session.commit()


class SideEffectDispatcher:
    """Enqueues audit and notification work without awaiting its completion."""

    def __init__(self, audit_task: Any = record_audit, notify_task: Any = send_notifications):
        self.audit_task = audit_task
        self.notify_task = notify_task

    async def audit(
        self,
        actor_id: Optional[int],
        action: AuditAction,
        details: str,
        *,
        resource_type: Optional[str] = None,
        resource_id: Optional[int] = None,
    ) -> None:
        await self._enqueue(
            self.audit_task,
            actor_id=actor_id,
            action=action.value,
            details=details,
            resource_type=resource_type,
            resource_id=resource_id,
        )

    async def notify(
        self,
        user_ids: Iterable[Optional[int]],
        title: str,
        message: str,
        severity: NotificationSeverity = NotificationSeverity.INFO,
        *,
        exclude: Iterable[Optional[int]] = (),
    ) -> None:
        skipped = set(exclude)
        recipients = sorted(
            {user_id for user_id in user_ids if user_id is not None} - skipped
        )
        if not recipients:
            return
        await self._enqueue(
            self.notify_task,
            user_ids=recipients,
            title=title,
            message=message,
            severity=severity.value,
        )

    @staticmethod
    async def _enqueue(task: Any, **kwargs: Any) -> None:
        try:
            await task.kiq(**kwargs)
        except Exception:
            logger.exception(
                "Failed to dispatch side effect {}",
                getattr(task, "task_name", task),
            )


dispatcher = SideEffectDispatcher()
