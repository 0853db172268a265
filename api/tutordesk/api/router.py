from fastapi import APIRouter

from tutordesk.api.routes import health, messages, metrics, notifications, requirements, students, ws

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(requirements.router, prefix="/requirements", tags=["requirements"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(messages.router, prefix="/messages", tags=["messages"])
api_router.include_router(students.router, prefix="/students", tags=["students"])
api_router.include_router(metrics.router, prefix="/metrics", tags=["metrics"])
api_router.include_router(ws.router, prefix="/ws", tags=["realtime"])
