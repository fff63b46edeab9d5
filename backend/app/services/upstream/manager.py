"""
Upstream Connection Manager
上游转录连接状态机

状态: IDLE -> CONNECTING -> READY -> CLOSED
- send(): READY 时直接透传；否则只保留最近的一个未发送音频块 (pending)，
  连接已关闭时触发重建
- 进入 READY 时先发送 pending，再恢复正常透传
- 主动重建期间 (is_recreating_connection) 不向客户端报告错误
- 被替换的旧连接产生的事件一律丢弃

事件通过 events() 以单一队列交给消费方，消费方按到达顺序处理。
重连没有退避和次数上限。
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from enum import Enum
from typing import Protocol

from loguru import logger

from .events import UpstreamClosed, UpstreamError, UpstreamEvent, UpstreamOpen


class ConnectionState(str, Enum):
    """上游连接状态"""

    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class UpstreamConnection(Protocol):
    """一条上游连接 (一次 events() 迭代对应一次连接生命周期)"""

    def events(self) -> AsyncIterator[UpstreamEvent]: ...

    async def send(self, chunk: bytes) -> None: ...

    async def finish(self) -> None: ...


ConnectionFactory = Callable[[], UpstreamConnection]


class UpstreamConnectionManager:
    """每个客户端会话维护一条上游连接"""

    def __init__(self, connection_factory: ConnectionFactory, label: str = ""):
        self._factory = connection_factory
        self.label = label

        self.state = ConnectionState.IDLE
        self.pending_chunk: bytes | None = None
        self.is_recreating_connection = False
        self.reconnect_count = 0

        self._connection: UpstreamConnection | None = None
        self._generation = 0
        self._pump_task: asyncio.Task | None = None
        self._retired: set[asyncio.Task] = set()
        self._send_lock = asyncio.Lock()
        self._outbox: asyncio.Queue[UpstreamEvent | None] = asyncio.Queue()
        self._closed = False

    # ==================== 公共接口 ====================

    @property
    def is_ready(self) -> bool:
        return self.state == ConnectionState.READY

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """建立第一条连接"""
        if self._closed or self.state != ConnectionState.IDLE:
            return
        self._open_connection()

    async def send(self, chunk: bytes) -> None:
        """发送音频块；未就绪时缓存为 pending 并按需触发重建"""
        async with self._send_lock:
            if self._closed:
                return

            if self.state == ConnectionState.READY and self._connection is not None:
                try:
                    await self._connection.send(chunk)
                    return
                except Exception as e:
                    logger.warning(f"[{self.label}] Upstream send failed, reconnecting: {e}")
                    self.state = ConnectionState.CLOSED

            # 只保留最近一个未发送的块
            self.pending_chunk = chunk

            if self.state in (ConnectionState.IDLE, ConnectionState.CLOSED):
                self._recreate()

    async def events(self) -> AsyncIterator[UpstreamEvent]:
        """按到达顺序产出需要交给客户端的事件，close() 后结束"""
        while True:
            event = await self._outbox.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        """关闭上游连接；可重复调用，忽略已关闭连接的错误"""
        if self._closed:
            return
        self._closed = True
        self.state = ConnectionState.CLOSED
        self.pending_chunk = None

        connection = self._connection
        self._connection = None
        if connection is not None:
            await self._finish_quietly(connection)

        if self._pump_task and not self._pump_task.done():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass

        if self._retired:
            await asyncio.gather(*self._retired, return_exceptions=True)

        self._outbox.put_nowait(None)
        logger.info(f"[{self.label}] Upstream connection closed")

    # ==================== 内部方法 ====================

    def _open_connection(self) -> None:
        self._generation += 1
        generation = self._generation
        self._connection = self._factory()
        self.state = ConnectionState.CONNECTING
        self._pump_task = asyncio.create_task(self._pump(self._connection, generation))
        logger.debug(f"[{self.label}] Upstream connecting (generation {generation})")

    def _recreate(self) -> None:
        """主动重建连接 (旧连接在后台关闭)"""
        old = self._connection
        if old is not None:
            self.is_recreating_connection = True
            self.reconnect_count += 1
            logger.info(f"[{self.label}] Recreating upstream connection (#{self.reconnect_count})")
            task = asyncio.create_task(self._finish_quietly(old))
            self._retired.add(task)
            task.add_done_callback(self._retired.discard)
        self._open_connection()

    async def _finish_quietly(self, connection: UpstreamConnection) -> None:
        try:
            await connection.finish()
        except Exception as e:
            logger.debug(f"[{self.label}] Ignoring error while closing upstream: {e}")

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._closed

    async def _pump(self, connection: UpstreamConnection, generation: int) -> None:
        """消费一条连接的事件流并驱动状态机"""
        try:
            async for event in connection.events():
                if not self._is_current(generation):
                    break
                await self._handle_event(connection, event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.label}] Upstream event stream failed: {e}")
            if self._is_current(generation):
                self.state = ConnectionState.CLOSED
                if not self.is_recreating_connection:
                    await self._outbox.put(UpstreamError(str(e)))
            return

        # 事件流结束但未收到 Closed
        if self._is_current(generation) and self.state != ConnectionState.CLOSED:
            self.state = ConnectionState.CLOSED

    async def _handle_event(self, connection: UpstreamConnection, event: UpstreamEvent) -> None:
        if isinstance(event, UpstreamOpen):
            async with self._send_lock:
                chunk, self.pending_chunk = self.pending_chunk, None
                if chunk is not None:
                    try:
                        await connection.send(chunk)
                    except Exception as e:
                        logger.warning(f"[{self.label}] Failed to flush pending chunk: {e}")
                self.state = ConnectionState.READY
                self.is_recreating_connection = False
            logger.info(f"[{self.label}] Upstream ready")
            await self._outbox.put(event)

        elif isinstance(event, UpstreamError):
            logger.warning(f"[{self.label}] Upstream error: {event.message}")
            if not self.is_recreating_connection:
                await self._outbox.put(event)

        elif isinstance(event, UpstreamClosed):
            self.state = ConnectionState.CLOSED
            if self.is_recreating_connection:
                # 重建出的连接没能就绪，之后的关闭按异常处理
                self.is_recreating_connection = False
                logger.warning(f"[{self.label}] Recreated upstream connection closed before ready")
            await self._outbox.put(event)

        else:
            await self._outbox.put(event)
