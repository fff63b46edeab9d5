"""
Deepgram Live Connection
Deepgram 实时转录 WebSocket 连接

工作原理:
1. 建立到 Deepgram 的 WebSocket 连接 (一次 events() 迭代对应一条连接)
2. 音频块直接透传
3. Results 消息转换为 UpstreamTranscript，连接结束时产出一次 UpstreamClosed

两方对话模式使用 language=multi，Deepgram 会在每个词上附带语言标签。
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed

from app.core.config import settings
from app.core.languages import DEEPGRAM_MULTILINGUAL, get_deepgram_language_code

from .events import (
    UpstreamClosed,
    UpstreamError,
    UpstreamEvent,
    UpstreamOpen,
    UpstreamTranscript,
    Word,
)


@dataclass
class DeepgramConfig:
    """Deepgram 连接参数"""

    api_key: str
    model: str = "nova-3"
    language: str = "fr"
    multilingual: bool = False  # 两方对话模式
    smart_format: bool = True
    interim_results: bool = True
    punctuate: bool = True
    url: str = ""


def build_listen_url(config: DeepgramConfig) -> str:
    """构建 /listen 查询参数

    浏览器发送 WebM/Opus，不指定 encoding 让 Deepgram 自动识别容器格式。
    """
    language = (
        DEEPGRAM_MULTILINGUAL if config.multilingual else get_deepgram_language_code(config.language)
    )
    params = {
        "model": config.model,
        "language": language,
        "punctuate": str(config.punctuate).lower(),
        "interim_results": str(config.interim_results).lower(),
        "smart_format": str(config.smart_format).lower(),
    }
    base_url = config.url or settings.DEEPGRAM_URL
    return f"{base_url}?{urlencode(params)}"


def parse_results_message(data: dict[str, Any]) -> UpstreamTranscript | None:
    """Results 消息 -> UpstreamTranscript；空文本返回 None"""
    if data.get("type") != "Results":
        return None

    alternatives = data.get("channel", {}).get("alternatives", [])
    if not alternatives:
        return None

    alt = alternatives[0]
    text = (alt.get("transcript") or "").strip()
    if not text:
        return None

    words = tuple(
        Word(
            word=w.get("punctuated_word") or w.get("word", ""),
            language=w.get("language"),
            confidence=w.get("confidence", 1.0),
            start=w.get("start", 0.0),
            end=w.get("end", 0.0),
        )
        for w in alt.get("words", [])
    )

    return UpstreamTranscript(
        text=text,
        is_final=bool(data.get("is_final", False)),
        words=words,
        start=data.get("start", 0.0),
        duration=data.get("duration", 0.0),
        confidence=alt.get("confidence", 1.0),
    )


class DeepgramLiveConnection:
    """单条 Deepgram 实时连接"""

    def __init__(self, config: DeepgramConfig):
        self.config = config
        self._ws = None
        self._finished = False

    async def events(self) -> AsyncIterator[UpstreamEvent]:
        """连接并产出事件，直到连接结束"""
        url = build_listen_url(self.config)
        try:
            self._ws = await websockets.connect(
                url,
                additional_headers={"Authorization": f"Token {self.config.api_key}"},
                ping_interval=20,
                ping_timeout=10,
            )
        except Exception as e:
            logger.error(f"Failed to connect to Deepgram: {e}")
            yield UpstreamError(f"Deepgram connection failed: {e}")
            yield UpstreamClosed(reason="connect failed")
            return

        logger.info(
            f"Connected to Deepgram: model={self.config.model}, multilingual={self.config.multilingual}"
        )
        yield UpstreamOpen()

        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    continue
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON from Deepgram: {message[:100]}")
                    continue

                msg_type = data.get("type", "")
                if msg_type == "Results":
                    event = parse_results_message(data)
                    if event:
                        yield event
                elif msg_type == "Metadata":
                    logger.debug(f"Deepgram metadata: request_id={data.get('request_id')}")
                elif msg_type == "Error":
                    yield UpstreamError(data.get("description") or data.get("message") or "Deepgram error")

        except ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd else None
            reason = e.rcvd.reason if e.rcvd else ""
            if not self._finished:
                logger.warning(f"Deepgram connection closed abnormally: code={code} reason={reason}")
                yield UpstreamError(f"Deepgram connection lost (code {code})")
            yield UpstreamClosed(code=code, reason=reason)
            return
        except Exception as e:
            if not self._finished:
                logger.error(f"Deepgram listener error: {e}")
                yield UpstreamError(f"Deepgram listener error: {e}")
            yield UpstreamClosed(reason=str(e))
            return

        yield UpstreamClosed(
            code=getattr(self._ws, "close_code", None),
            reason=getattr(self._ws, "close_reason", None) or "",
        )

    async def send(self, chunk: bytes) -> None:
        if self._ws is None:
            raise RuntimeError("Deepgram connection is not open")
        await self._ws.send(chunk)

    async def finish(self) -> None:
        """发送 CloseStream 并关闭；可重复调用，忽略已关闭连接的错误"""
        if self._finished:
            return
        self._finished = True

        if self._ws is None:
            return

        try:
            await self._ws.send(json.dumps({"type": "CloseStream"}))
            await asyncio.sleep(0.1)  # 等待最后的结果
        except Exception as e:
            logger.debug(f"CloseStream not sent: {e}")

        try:
            await self._ws.close()
        except Exception as e:
            logger.debug(f"Deepgram close ignored: {e}")
