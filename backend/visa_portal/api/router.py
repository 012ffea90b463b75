from fastapi import APIRouter

from visa_portal.api.routes import health, notifications, messages, admin, realtime

api_router = APIRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])  # GET /
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])  # list, read, delete
api_router.include_router(messages.router, prefix="/messages", tags=["messages"])  # POST /, GET /
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])  # admin endpoints
api_router.include_router(realtime.router, tags=["realtime"])  # WS /ws?token=...
