from __future__ import annotations

from fastapi import APIRouter, Depends

from taskgate.auth.dependencies import get_current_user
from taskgate.auth.schemas import UserOut

router = APIRouter()


@router.get("/users/me", response_model=UserOut)
async def read_users_me(current_user: UserOut = Depends(get_current_user)):
    """Return the authenticated user's details."""
    return current_user
