from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")


# ---- Custom exceptions ----
class ServiceError(Exception):
    """Base class for service errors."""


class NotFound(ServiceError):
    pass


class Forbidden(ServiceError):
    pass


class InvalidInput(ServiceError):
    pass


class Conflict(ServiceError):
    """A conditional write lost a race with a concurrent request."""


class Fatal(ServiceError):
    """Storage failed; nothing of the operation was committed."""


class AdmissionLimitReached(ServiceError):
    """
    The project has used all of its change-request slots.

    Kept apart from InvalidInput so callers can render a specific message;
    ``type`` is the machine-readable marker sent to clients.
    """

    type = "major_change_limit"

    def __init__(self, project_id: int, limit: int):
        self.project_id = project_id
        self.limit = limit
        super().__init__(
            f"Project major change limit reached ({limit}/{limit}). "
            "Please create a bug ticket or contact an admin."
        )


# ---- Utilities ----
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _get_or_404(session: AsyncSession, model, pk: int):
    obj = await session.get(model, pk)
    if obj is None:
        raise NotFound(f"{model.__name__} with id={pk} not found")
    return obj


async def commit_or_fail(session: AsyncSession) -> None:
    """Commit the current unit of work or roll all of it back and raise Fatal."""
    try:
        await session.commit()
    except DBAPIError as exc:
        await session.rollback()
        logger.error("Commit failed, transaction rolled back: {}", exc)
        raise Fatal("Storage failure, the operation was not applied") from exc


async def retry_on_conflict(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 2,
) -> T:
    """
    Run ``operation``; on Conflict roll back and run it again from a fresh read.

    The operation must re-read everything it depends on, since the previous
    attempt's view of the rows is what went stale.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Conflict:
            await session.rollback()
            if attempt == attempts:
                raise
            logger.info("Write conflict (attempt {}/{}), retrying", attempt, attempts)
    raise AssertionError("unreachable")
