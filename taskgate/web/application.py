from fastapi import FastAPI

from taskgate.db.models import load_all_models
from taskgate.log import configure_logging
from taskgate.web.api.router import api_router
from taskgate.web.lifespan import lifespan_setup


def get_app() -> FastAPI:
    """
    Get FastAPI application.

    This is the main constructor of an application.

    :return: application.
    """
    configure_logging()
    load_all_models()
    app = FastAPI(
        title="taskgate",
        lifespan=lifespan_setup,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Main router for the API.
    app.include_router(router=api_router, prefix="/api")

    return app
