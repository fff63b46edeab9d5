# WebSocket Services Package
"""
WebSocket 服务模块

包含:
- session.py: 连接参数与会话状态
- connection_manager.py: 连接管理与事件发送
- orchestrator.py: 实时会话驱动
"""

from app.services.websocket.connection_manager import ConnectionManager, manager
from app.services.websocket.orchestrator import SessionOrchestrator
from app.services.websocket.session import LiveSessionConfig, LiveSessionState

__all__ = [
    "ConnectionManager",
    "LiveSessionConfig",
    "LiveSessionState",
    "SessionOrchestrator",
    "manager",
]
