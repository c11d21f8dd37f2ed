from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.auth.schemas import UserOut
from taskgate.db.dependencies import get_db_session
from taskgate.settings import settings
from taskgate.tracker.models import User

# Tokens are issued by the identity service; this app only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/token")


async def get_current_user_db(
    token: str = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """
    Dependency that decodes a JWT token and returns the full SQLAlchemy User object.
    The 'sub' claim carries the user's id.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=[settings.algorithm]
        )
        user_id_str = payload.get("sub")
        if user_id_str is None:
            raise credentials_exception
        user_id = int(user_id_str)
    except (JWTError, ValueError):
        raise credentials_exception

    stmt = select(User).where(User.id == user_id)
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()

    if user is None or not user.active:
        raise credentials_exception

    return user


async def get_current_user(
    user: User = Depends(get_current_user_db),
) -> UserOut:
    """Dependency that returns the public-facing UserOut model."""
    return UserOut.model_validate(user)
