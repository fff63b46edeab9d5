"""
Polish Lock
每个会话同一时刻最多一个润色操作

两层保护:
1. 进程内集合 - 快速拒绝，不访问数据库
2. 数据库条件更新 - is_polishing 为 false 时才能置为 true，
   覆盖多进程/重启后集合看不到的情况
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger

from app.core.exceptions import PersistenceError
from app.models.session import POLISHING_ERROR, POLISHING_IDLE
from app.services.session_store import SessionStore


class PolishLock:
    """Session-level polishing lock"""

    def __init__(self, store: SessionStore):
        self.store = store
        self._active: set[str] = set()

    def is_active(self, session_id: str | uuid.UUID) -> bool:
        return str(session_id) in self._active

    async def try_acquire(self, session_id: str | uuid.UUID) -> bool:
        """尝试加锁；已被占用、会话不存在或数据库失败都返回 False"""
        key = str(session_id)
        if key in self._active:
            return False

        # 先占位，避免等待数据库期间同进程内的第二个请求穿过快速路径
        self._active.add(key)
        try:
            acquired = await self.store.try_acquire_polish_lock(session_id)
        except PersistenceError as e:
            logger.error(f"Failed to acquire polish lock for session {key}: {e}")
            acquired = False

        if not acquired:
            self._active.discard(key)
        return acquired

    async def release(self, session_id: str | uuid.UUID, status: str = POLISHING_IDLE) -> None:
        """释放锁 (best effort，失败只记录日志)"""
        key = str(session_id)
        try:
            await self.store.release_polish_lock(session_id, status)
        except PersistenceError as e:
            logger.error(f"Failed to release polish lock for session {key}: {e}")
        finally:
            self._active.discard(key)

    def forget(self, session_id: str | uuid.UUID) -> None:
        """只清除进程内标记 (数据库锁已由其它写入清除)"""
        self._active.discard(str(session_id))

    @asynccontextmanager
    async def hold(self, session_id: str | uuid.UUID) -> AsyncIterator[bool]:
        """加锁上下文: 产出是否拿到锁；异常退出时以 error 状态释放

        正常退出时如果调用方没有自行完成收尾，则以 idle 状态释放。
        """
        acquired = await self.try_acquire(session_id)
        if not acquired:
            yield False
            return

        try:
            yield True
        except BaseException:
            await self.release(session_id, POLISHING_ERROR)
            raise
        else:
            if self.is_active(session_id):
                await self.release(session_id, POLISHING_IDLE)
