from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.auth.dependencies import get_current_user_db
from taskgate.tracker import visibility
from taskgate.tracker.enums import ResourceKind, UserRole
from taskgate.tracker.models import Project, ProjectHead, Task, Ticket, User
from taskgate.tracker.utils import Forbidden, _get_or_404

MODELS = {
    ResourceKind.PROJECT: Project,
    ResourceKind.TASK: Task,
    ResourceKind.TICKET: Ticket,
}


@dataclass(frozen=True)
class Actor:
    """
    The capability a request acts with.

    Built once from the authenticated user and passed explicitly into every
    operation, so business rules never reach for request globals.
    """

    id: int
    role: UserRole
    department: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=user.role, department=user.department)


class PermissionChecker:
    """Relationship checks shared by the services."""

    @staticmethod
    def is_admin(user: Union[User, Actor]) -> bool:
        """Check if user is admin"""
        return user.role == UserRole.ADMIN

    @staticmethod
    async def is_project_head(
        session: AsyncSession,
        user_id: int,
        project_id: int,
    ) -> bool:
        stmt = select(ProjectHead.user_id).where(
            ProjectHead.project_id == project_id,
            ProjectHead.user_id == user_id,
        )
        result = await session.execute(stmt)
        return result.first() is not None

    @staticmethod
    async def can_see(
        session: AsyncSession,
        actor: Actor,
        kind: ResourceKind,
        pk: int,
        *,
        single_record: bool = False,
    ) -> bool:
        """Check whether the resolver's clause admits the given record."""
        model = MODELS[kind]
        stmt = select(model.id).where(
            model.id == pk,
            visibility.resolve(actor, kind, single_record=single_record),
        )
        result = await session.execute(stmt)
        return result.first() is not None


async def verify_visible(
    session: AsyncSession,
    actor: Actor,
    kind: ResourceKind,
    pk: int,
    *,
    single_record: bool = False,
):
    """
    Load a record the actor is allowed to see.

    Raises NotFound when the id does not resolve and Forbidden when it
    resolves outside the actor's visibility scope.
    """
    obj = await _get_or_404(session, MODELS[kind], pk)
    if not await PermissionChecker.can_see(
        session, actor, kind, pk, single_record=single_record,
    ):
        raise Forbidden(f"Access denied to {kind.value} {pk}")
    return obj


def require_admin(current_user: User = Depends(get_current_user_db)) -> User:
    """Dependency to require admin role"""
    if not PermissionChecker.is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return current_user
