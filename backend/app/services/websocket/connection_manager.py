"""
WebSocket Connection Manager
连接管理器 + 客户端事件发送

所有下行消息格式: {"type": <event>, ...payload}
"""

from __future__ import annotations

from typing import Any

from fastapi import WebSocket
from loguru import logger

# 客户端事件
EVENT_SESSION_CREATED = "session-created"
EVENT_TRANSCRIPT = "transcript"
EVENT_INSTANT_TRANSLATION = "instant-translation"
EVENT_TWO_WAY_TRANSLATION = "two-way-translation"
EVENT_DEEPGRAM_READY = "deepgram-ready"
EVENT_DEEPGRAM_CLOSED = "deepgram-closed"
EVENT_POLISH_STARTED = "polish-started"
EVENT_POLISH_COMPLETED = "polish-completed"
EVENT_POLISH_BUSY = "polish-busy"
EVENT_POLISH_ERROR = "polish-error"
EVENT_ERROR = "error"
EVENT_PONG = "pong"


class ConnectionManager:
    """管理 WebSocket 连接"""

    def __init__(self):
        self.active_connections: dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket, client_id: str):
        """接受并注册连接"""
        await websocket.accept()
        self.active_connections[client_id] = websocket
        logger.debug(f"WebSocket connected: {client_id}")

    def disconnect(self, client_id: str):
        """断开连接"""
        if client_id in self.active_connections:
            del self.active_connections[client_id]
            logger.debug(f"WebSocket disconnected: {client_id}")

    def get(self, client_id: str) -> WebSocket | None:
        return self.active_connections.get(client_id)

    def is_connected(self, client_id: str) -> bool:
        return client_id in self.active_connections

    async def send_json(self, client_id: str, data: dict) -> bool:
        """发送 JSON 消息，返回是否成功"""
        websocket = self.active_connections.get(client_id)
        if not websocket:
            return False

        try:
            await websocket.send_json(data)
            return True
        except Exception as e:
            logger.warning(f"Failed to send to {client_id}: {e}")
            self.disconnect(client_id)
            return False

    async def send_event(
        self, client_id: str, event: str, payload: dict[str, Any] | None = None
    ) -> bool:
        """发送一个类型化事件"""
        data = {"type": event}
        if payload:
            data.update(payload)
        return await self.send_json(client_id, data)

    # ========== 会话 / 上游连接 ==========

    async def send_session_created(self, client_id: str, session_id: str) -> bool:
        return await self.send_event(client_id, EVENT_SESSION_CREATED, {"session_id": session_id})

    async def send_deepgram_ready(self, client_id: str) -> bool:
        return await self.send_event(client_id, EVENT_DEEPGRAM_READY)

    async def send_deepgram_closed(
        self, client_id: str, code: int | None = None, reason: str = ""
    ) -> bool:
        return await self.send_event(
            client_id, EVENT_DEEPGRAM_CLOSED, {"code": code, "reason": reason}
        )

    # ========== 转录 / 翻译 ==========

    async def send_transcript(
        self,
        client_id: str,
        text: str,
        is_final: bool,
        language: str | None = None,
    ) -> bool:
        """发送转录结果 (interim / final)"""
        data: dict[str, Any] = {"text": text, "is_final": is_final}
        if language:
            data["language"] = language
        return await self.send_event(client_id, EVENT_TRANSCRIPT, data)

    async def send_instant_translation(self, client_id: str, segment: dict[str, Any]) -> bool:
        return await self.send_event(client_id, EVENT_INSTANT_TRANSLATION, segment)

    async def send_two_way_translation(self, client_id: str, segment: dict[str, Any]) -> bool:
        return await self.send_event(client_id, EVENT_TWO_WAY_TRANSLATION, segment)

    # ========== 润色 ==========

    async def send_polish_started(self, client_id: str, session_id: str) -> bool:
        return await self.send_event(client_id, EVENT_POLISH_STARTED, {"session_id": session_id})

    async def send_polish_completed(
        self, client_id: str, session_id: str, polished_count: int, message: str | None = None
    ) -> bool:
        return await self.send_event(
            client_id,
            EVENT_POLISH_COMPLETED,
            {"session_id": session_id, "polished_count": polished_count, "message": message},
        )

    async def send_polish_busy(self, client_id: str, session_id: str, message: str | None = None) -> bool:
        return await self.send_event(
            client_id, EVENT_POLISH_BUSY, {"session_id": session_id, "message": message}
        )

    async def send_polish_error(self, client_id: str, session_id: str | None, message: str) -> bool:
        return await self.send_event(
            client_id, EVENT_POLISH_ERROR, {"session_id": session_id, "message": message}
        )

    # ========== 通用 ==========

    async def send_error(self, client_id: str, message: str, kind: str | None = None) -> bool:
        """发送错误消息 (连接保持)"""
        data: dict[str, Any] = {"message": message}
        if kind:
            data["kind"] = kind
        return await self.send_event(client_id, EVENT_ERROR, data)

    async def send_pong(self, client_id: str) -> bool:
        return await self.send_event(client_id, EVENT_PONG)


# 全局连接管理器实例
manager = ConnectionManager()
