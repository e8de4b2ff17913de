from fastapi import APIRouter

from robojs.api.routes import collections, events, health, notifications, tasks, ws

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(collections.router)
api_router.include_router(tasks.router)
api_router.include_router(notifications.router)
api_router.include_router(events.router)
api_router.include_router(ws.router)
