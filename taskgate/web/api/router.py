from fastapi.routing import APIRouter

from taskgate.auth import auth_router
from taskgate.tracker import endpoints as tracker
from taskgate.web.api import monitoring

api_router = APIRouter()
api_router.include_router(monitoring.router)
api_router.include_router(auth_router, tags=["authentication"])
api_router.include_router(tracker.router, prefix="/projects", tags=["projects"])
api_router.include_router(tracker.tasks_router, prefix="/tasks", tags=["tasks"])
api_router.include_router(tracker.tickets_router, prefix="/tickets", tags=["tickets"])
api_router.include_router(tracker.users_router, prefix="/users", tags=["users"])
