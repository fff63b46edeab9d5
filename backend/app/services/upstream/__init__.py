"""
Upstream transcription package

- events.py: 上游事件变体
- deepgram.py: Deepgram 实时连接
- manager.py: 连接状态机 (就绪/缓冲/重连)
"""

from app.services.upstream.deepgram import DeepgramConfig, DeepgramLiveConnection
from app.services.upstream.events import (
    UpstreamClosed,
    UpstreamError,
    UpstreamEvent,
    UpstreamOpen,
    UpstreamTranscript,
    Word,
)
from app.services.upstream.manager import (
    ConnectionState,
    UpstreamConnection,
    UpstreamConnectionManager,
)

__all__ = [
    "ConnectionState",
    "DeepgramConfig",
    "DeepgramLiveConnection",
    "UpstreamClosed",
    "UpstreamConnection",
    "UpstreamConnectionManager",
    "UpstreamError",
    "UpstreamEvent",
    "UpstreamOpen",
    "UpstreamTranscript",
    "Word",
]
