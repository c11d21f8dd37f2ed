import os

os.environ.setdefault("TASKGATE_ENVIRONMENT", "pytest")

from itertools import count  # noqa: E402
from typing import Any, AsyncGenerator, Callable, Optional  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from taskgate.db.meta import meta  # noqa: E402
from taskgate.db.models import load_all_models  # noqa: E402
from taskgate.tracker import side_effects  # noqa: E402
from taskgate.tracker.enums import IssueType, TicketCategory, UserRole  # noqa: E402
from taskgate.tracker.models import User  # noqa: E402
from taskgate.tracker.permissions import Actor  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """A fresh SQLite database file per test."""
    load_all_models()
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskgate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(meta.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def events(monkeypatch) -> side_effects.SideEffectDispatcher:
    """Real dispatcher wired to mocked taskiq tasks, so nothing leaves the test."""
    audit_task = MagicMock(task_name="taskgate.record_audit")
    audit_task.kiq = AsyncMock()
    notify_task = MagicMock(task_name="taskgate.send_notifications")
    notify_task.kiq = AsyncMock()
    dispatcher = side_effects.SideEffectDispatcher(
        audit_task=audit_task, notify_task=notify_task,
    )
    monkeypatch.setattr(side_effects, "dispatcher", dispatcher)
    return dispatcher


@pytest.fixture
def audited(events: side_effects.SideEffectDispatcher) -> Callable[[], list]:
    """Audit actions enqueued so far, in order."""
    return lambda: [c.kwargs["action"] for c in events.audit_task.kiq.await_args_list]


@pytest.fixture
def notified(events: side_effects.SideEffectDispatcher) -> Callable[[], list]:
    """(title, recipients) of every notification enqueued so far."""
    return lambda: [
        (c.kwargs["title"], c.kwargs["user_ids"])
        for c in events.notify_task.kiq.await_args_list
    ]


_emails = count(1)


@pytest.fixture
def make_user(session: AsyncSession) -> Callable[..., Any]:
    async def _make_user(
        role: UserRole = UserRole.MEMBER,
        department: Optional[str] = None,
    ) -> Actor:
        user = User(
            email=f"user{next(_emails)}@example.com",
            full_name="Test User",
            department=department,
            role=role,
            active=True,
        )
        session.add(user)
        await session.commit()
        return Actor.from_user(user)

    return _make_user


@pytest.fixture
def ticket_payload() -> Callable[..., dict]:
    def _payload(task_id: int, issue_type: IssueType = IssueType.CHANGE_REQUEST) -> dict:
        return {
            "task_id": task_id,
            "issue_type": issue_type,
            "category": TicketCategory.FUNCTIONALITY,
            "description": "Move the checkout button above the fold",
        }

    return _payload
