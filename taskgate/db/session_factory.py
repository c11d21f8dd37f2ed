from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from taskgate.settings import settings

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Create the engine once. This is the core connection pool."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            str(settings.db_url),
            echo=settings.db_echo,
            pool_pre_ping=True,
        )
    return _engine


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory for code that runs outside a web request,
    e.g. taskiq workers writing audit records and notifications.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            expire_on_commit=False,
        )
    return _session_factory
