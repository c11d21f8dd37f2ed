from functools import wraps
from typing import Any, List, Optional, cast

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.auth.dependencies import get_current_user_db
from taskgate.auth.schemas import UserOut
from taskgate.db.dependencies import get_db_session
from taskgate.tracker import approvals, services
from taskgate.tracker.enums import (
    IssueType,
    ProjectStatus,
    ResourceKind,
    TaskStatus,
    TicketStatus,
)
from taskgate.tracker.models import User
from taskgate.tracker.permissions import Actor, require_admin
from taskgate.tracker.schemas import (
    ProjectCreate,
    ProjectOut,
    ProjectSummaryOut,
    ProjectUpdate,
    ResyncOut,
    RoleIn,
    StatusIn,
    TaskCreate,
    TaskOut,
    TaskUpdate,
    TicketCreate,
    TicketOut,
    TicketUpdate,
    UserCreate,
    VoteIn,
)
from taskgate.tracker.utils import (
    AdmissionLimitReached,
    Conflict,
    F,
    Fatal,
    Forbidden,
    InvalidInput,
    NotFound,
    ServiceError,
)


def translate_service_errors(fn: F) -> F:
    """
    Decorator which translates service exceptions into HTTPExceptions while
    preserving the wrapped function's signature so FastAPI/OpenAPI behave correctly.
    """

    @wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await fn(*args, **kwargs)
        except NotFound as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except Forbidden as e:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
        except AdmissionLimitReached as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"message": str(e), "type": e.type},
            )
        except InvalidInput as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except Conflict as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except Fatal as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
            )
        except ServiceError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return cast(F, wrapper)


router = APIRouter()
tasks_router = APIRouter()
tickets_router = APIRouter()
users_router = APIRouter()


# -----------------------
# Project endpoints
# -----------------------
@router.post(
    "",
    response_model=ProjectOut,
    status_code=status.HTTP_201_CREATED,
)
@translate_service_errors
async def create_project(
    payload: ProjectCreate,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a project. It stays pending until every project head approves."""
    return await services.create_project(
        session,
        Actor.from_user(current_user),
        name=payload.name,
        project_heads=payload.project_heads,
        members=payload.members,
        description=payload.description,
        client_name=payload.client_name,
        start_date=payload.start_date,
        delivery_date=payload.delivery_date,
        assigned_to_id=payload.assigned_to_id,
        department=payload.department,
    )


@router.get("", response_model=List[ProjectSummaryOut])
@translate_service_errors
async def list_projects(
    limit: int = 50,
    offset: int = 0,
    status_filter: Optional[ProjectStatus] = Query(None, alias="status"),
    department: Optional[str] = None,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """List the projects the user can see."""
    return await services.list_visible(
        session,
        Actor.from_user(current_user),
        ResourceKind.PROJECT,
        limit=limit,
        offset=offset,
        status=status_filter,
        department=department,
    )


@router.get("/{project_id}", response_model=ProjectOut)
@translate_service_errors
async def get_project(
    project_id: int,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """Get project details with its heads, approvals and members."""
    return await services.get_project(session, project_id, Actor.from_user(current_user))


@router.patch("/{project_id}", response_model=ProjectOut)
@translate_service_errors
async def update_project(
    project_id: int,
    payload: ProjectUpdate,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Edit a project.
    Creator and heads until it is active; admins any time.
    """
    return await services.update_project(
        session,
        project_id,
        Actor.from_user(current_user),
        **payload.model_dump(exclude_unset=True),
    )


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
@translate_service_errors
async def delete_project(
    project_id: int,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a project with its tasks and tickets. Creator or admin."""
    await services.delete_project(session, project_id, Actor.from_user(current_user))


@router.post("/{project_id}/vote", response_model=ProjectOut)
@translate_service_errors
async def vote_on_project(
    project_id: int,
    payload: VoteIn,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Approve or reject a project as one of its heads.
    An admin's vote is applied as a direct status override.
    """
    return await approvals.submit_vote(
        session,
        project_id,
        Actor.from_user(current_user),
        payload.vote,
        payload.comment,
    )


@router.patch("/{project_id}/status", response_model=ProjectOut)
@translate_service_errors
async def set_project_status(
    project_id: int,
    payload: StatusIn,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Set a project's status directly, bypassing the head vote. Admin only."""
    return await approvals.set_status_by_admin(
        session,
        project_id,
        Actor.from_user(current_user),
        payload.status,
        reason=payload.reason,
    )


@router.post("/{project_id}/change-requests/resync", response_model=ResyncOut)
@translate_service_errors
async def resync_change_requests(
    project_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Recount the project's change request counter from its tickets. Admin only."""
    count = await services.resync_change_requests(
        session, project_id, Actor.from_user(current_user),
    )
    return ResyncOut(project_id=project_id, change_request_count=count)


# -----------------------
# Task endpoints
# -----------------------
@tasks_router.post("", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
@translate_service_errors
async def create_task(
    payload: TaskCreate,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a task on a project the user can see."""
    return await services.create_task(
        session,
        Actor.from_user(current_user),
        **payload.model_dump(),
    )


@tasks_router.get("", response_model=List[TaskOut])
@translate_service_errors
async def list_tasks(
    limit: int = 100,
    offset: int = 0,
    project_id: Optional[int] = None,
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    assigned_developer_id: Optional[int] = None,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    return await services.list_visible(
        session,
        Actor.from_user(current_user),
        ResourceKind.TASK,
        limit=limit,
        offset=offset,
        project_id=project_id,
        status=status_filter,
        assigned_developer_id=assigned_developer_id,
    )


@tasks_router.get("/{task_id}", response_model=TaskOut)
@translate_service_errors
async def get_task(
    task_id: int,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    return await services.get_task(session, task_id, Actor.from_user(current_user))


@tasks_router.patch("/{task_id}", response_model=TaskOut)
@translate_service_errors
async def update_task(
    task_id: int,
    payload: TaskUpdate,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    return await services.update_task(
        session,
        task_id,
        Actor.from_user(current_user),
        **payload.model_dump(exclude_unset=True),
    )


@tasks_router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
@translate_service_errors
async def delete_task(
    task_id: int,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a task and its tickets. Task creator or admin."""
    await services.delete_task(session, task_id, Actor.from_user(current_user))


# -----------------------
# Ticket endpoints
# -----------------------
@tickets_router.post("", response_model=TicketOut, status_code=status.HTTP_201_CREATED)
@translate_service_errors
async def create_ticket(
    payload: TicketCreate,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Open a ticket on a task.
    Change requests are refused once the project has used its slots.
    """
    return await services.create_ticket(
        session,
        Actor.from_user(current_user),
        **payload.model_dump(),
    )


@tickets_router.get("", response_model=List[TicketOut])
@translate_service_errors
async def list_tickets(
    limit: int = 100,
    offset: int = 0,
    task_id: Optional[int] = None,
    issue_type: Optional[IssueType] = None,
    status_filter: Optional[TicketStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    return await services.list_visible(
        session,
        Actor.from_user(current_user),
        ResourceKind.TICKET,
        limit=limit,
        offset=offset,
        task_id=task_id,
        issue_type=issue_type,
        status=status_filter,
    )


@tickets_router.get("/{ticket_id}", response_model=TicketOut)
@translate_service_errors
async def get_ticket(
    ticket_id: int,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    return await services.get_ticket(session, ticket_id, Actor.from_user(current_user))


@tickets_router.patch("/{ticket_id}", response_model=TicketOut)
@translate_service_errors
async def update_ticket(
    ticket_id: int,
    payload: TicketUpdate,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    return await services.update_ticket(
        session,
        ticket_id,
        Actor.from_user(current_user),
        **payload.model_dump(exclude_unset=True),
    )


@tickets_router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
@translate_service_errors
async def delete_ticket(
    ticket_id: int,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a ticket, giving back its change request slot if it held one."""
    await services.delete_ticket(session, ticket_id, Actor.from_user(current_user))


# -----------------------
# User administration
# -----------------------
@users_router.get("", response_model=List[UserOut])
@translate_service_errors
async def list_users(
    limit: int = 100,
    offset: int = 0,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """List every user. Admin only."""
    return await services.list_users(
        session, Actor.from_user(current_user), limit=limit, offset=offset,
    )


@users_router.get("/search", response_model=List[UserOut])
@translate_service_errors
async def search_users(
    q: Optional[str] = None,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    """Search users by name or email, e.g. to pick project heads."""
    return await services.search_users(session, q)


@users_router.get("/{user_id}", response_model=UserOut)
@translate_service_errors
async def get_user(
    user_id: int,
    current_user: User = Depends(get_current_user_db),
    session: AsyncSession = Depends(get_db_session),
):
    return await services.get_user(session, user_id)


@users_router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
@translate_service_errors
async def create_user(
    payload: UserCreate,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Register a user. Admin only."""
    return await services.create_user(session, **payload.model_dump())


@users_router.patch("/{user_id}/role", response_model=UserOut)
@translate_service_errors
async def update_user_global_role(
    user_id: int,
    payload: RoleIn,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Update a user's global role. Admin only."""
    return await services.update_user_global_role(
        session, Actor.from_user(current_user), user_id, payload.role,
    )
