from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from loguru import logger

from taskgate.db.session_factory import get_db_session_factory, get_engine
from taskgate.settings import settings
from taskgate.tkq import broker


def _setup_db(app: FastAPI) -> None:  # pragma: no cover
    """
    Creates connection to the database.

    The engine and session factory are shared with the taskiq tasks
    and stored in the application's state property.

    :param app: fastAPI application.
    """
    app.state.db_engine = get_engine()
    app.state.db_session_factory = get_db_session_factory()


@asynccontextmanager
async def lifespan_setup(
    app: FastAPI,
) -> AsyncGenerator[None, None]:  # pragma: no cover
    """
    Actions to run on application startup.

    This function uses fastAPI app to store data
    in the state, such as db_engine.

    :param app: the fastAPI application.
    :return: function that actually performs actions.
    """

    app.middleware_stack = None
    if not broker.is_worker_process:
        await broker.startup()
    _setup_db(app)
    app.middleware_stack = app.build_middleware_stack()
    logger.info("taskgate started in {} environment", settings.environment)

    yield
    if not broker.is_worker_process:
        await broker.shutdown()
    await app.state.db_engine.dispose()
