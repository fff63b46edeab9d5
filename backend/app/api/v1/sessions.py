"""
Session API Routes
历史会话查询、删除与手动润色
"""

from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse

from app.api.deps import get_polishing_coordinator, get_session_store
from app.core.exceptions import ResourceNotFoundError
from app.schemas.session import (
    PolishRequest,
    PolishResponse,
    PolishStatusResponse,
    SessionDetail,
    SessionListItem,
)
from app.services.polishing import PolishingCoordinator
from app.services.polishing.coordinator import STATUS_BUSY, STATUS_ERROR
from app.services.session_store import SessionStore

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.get("", response_model=list[SessionListItem])
async def list_sessions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: SessionStore = Depends(get_session_store),
):
    """List sessions, newest first"""
    return await store.list_sessions(limit=limit, offset=offset)


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: UUID,
    store: SessionStore = Depends(get_session_store),
):
    """Get a session with its segments ordered by start time"""
    session = await store.get_session(session_id)
    if not session:
        raise ResourceNotFoundError("Session", str(session_id))
    return session


@router.delete("/{session_id}")
async def delete_session(
    session_id: UUID,
    store: SessionStore = Depends(get_session_store),
):
    """Delete a session and its segments"""
    deleted = await store.delete_session(session_id)
    if not deleted:
        raise ResourceNotFoundError("Session", str(session_id))
    return {"message": "Session deleted"}


@router.post("/{session_id}/polish", response_model=PolishResponse)
async def polish_session(
    session_id: UUID,
    request: PolishRequest | None = Body(default=None),
    store: SessionStore = Depends(get_session_store),
    coordinator: PolishingCoordinator = Depends(get_polishing_coordinator),
):
    """
    手动润色整个会话的待处理片段

    与后台润色共用同一把锁，正在润色时返回 409。
    """
    session = await store.get_session(session_id, with_segments=False)
    if not session:
        raise ResourceNotFoundError("Session", str(session_id))

    request = request or PolishRequest()
    result = await coordinator.attempt_polishing(
        session_id, manual=True, api_key=request.api_key, model=request.model
    )
    response = PolishResponse(
        status=result.status, message=result.message, polished_count=result.polished_count
    )

    if result.status == STATUS_BUSY:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=response.model_dump())
    if result.status == STATUS_ERROR:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=response.model_dump()
        )
    return response


@router.get("/{session_id}/polish-status", response_model=PolishStatusResponse)
async def get_polish_status(
    session_id: UUID,
    coordinator: PolishingCoordinator = Depends(get_polishing_coordinator),
):
    """Current polishing state (idle when the session does not exist)"""
    polishing = await coordinator.get_polishing_status(session_id)
    return PolishStatusResponse(
        is_polishing=polishing.is_polishing,
        status=polishing.status,
        last_polished_at=polishing.last_polished_at,
    )
