"""
API v1 Router
汇总所有 API 路由
"""

from fastapi import APIRouter

from app.api.v1.sessions import router as sessions_router
from app.api.v1.ws import router as ws_router  # WebSocket live session

api_router = APIRouter()

api_router.include_router(sessions_router)
api_router.include_router(ws_router)
