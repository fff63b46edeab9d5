"""
Session Store
会话/片段持久化 - 对关系数据库的简单 CRUD 封装

每个操作使用独立的数据库会话，避免长连接 (WebSocket) 持有一个会话跨越多次 await。
需要跨进程互斥的两处使用单条 SQL 完成:
- 润色锁: UPDATE ... WHERE is_polishing = false (条件更新，按影响行数判断)
- 片段计数: UPDATE ... SET segment_count = segment_count + 1 (原子自增)
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import noload

from app.core.database import async_session
from app.core.exceptions import PersistenceError
from app.models.session import (
    MODE_ONE_WAY,
    POLISHING_IDLE,
    POLISHING_PROCESSING,
    Segment,
    Session,
)


def _as_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class SessionStore:
    """Persisted session/segment store"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory or async_session

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """打开会话并在退出时提交，数据库错误统一转换为 PersistenceError"""
        try:
            async with self._session_factory() as db:
                yield db
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Store operation '{operation}' failed: {e}")
            raise PersistenceError(f"{operation} failed: {e}") from e

    # ========== Session ==========

    async def create_session(
        self,
        mode: str = MODE_ONE_WAY,
        input_language: str = "fr",
        output_language: str = "en",
        language_a: str | None = None,
        language_b: str | None = None,
    ) -> Session:
        async with self._transaction("create_session") as db:
            session = Session(
                mode=mode,
                input_language=input_language,
                output_language=output_language,
                language_a=language_a,
                language_b=language_b,
                segment_count=0,
                is_polishing=False,
                polishing_status=POLISHING_IDLE,
            )
            db.add(session)
            await db.flush()
            await db.refresh(session)
        logger.info(f"Session created: {session.id} ({mode})")
        return session

    async def get_session(
        self, session_id: str | uuid.UUID, with_segments: bool = True
    ) -> Session | None:
        """读取会话，片段按开始时间排序"""
        async with self._transaction("get_session") as db:
            stmt = select(Session).where(Session.id == _as_uuid(session_id))
            if not with_segments:
                stmt = stmt.options(noload(Session.segments))
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def list_sessions(self, limit: int = 100, offset: int = 0) -> list[Session]:
        async with self._transaction("list_sessions") as db:
            result = await db.execute(
                select(Session)
                .options(noload(Session.segments))
                .order_by(Session.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def update_session(self, session_id: str | uuid.UUID, **fields: Any) -> bool:
        """更新会话字段，返回是否命中"""
        if not fields:
            return False
        async with self._transaction("update_session") as db:
            result = await db.execute(
                update(Session).where(Session.id == _as_uuid(session_id)).values(**fields)
            )
            return result.rowcount > 0

    async def delete_session(self, session_id: str | uuid.UUID) -> bool:
        async with self._transaction("delete_session") as db:
            # 显式删除片段 (SQLite 默认不启用外键级联)
            await db.execute(delete(Segment).where(Segment.session_id == _as_uuid(session_id)))
            result = await db.execute(delete(Session).where(Session.id == _as_uuid(session_id)))
            return result.rowcount > 0

    async def get_segment_count(self, session_id: str | uuid.UUID) -> int | None:
        """当前持久化的片段计数；会话不存在时返回 None"""
        async with self._transaction("get_segment_count") as db:
            result = await db.execute(
                select(Session.segment_count).where(Session.id == _as_uuid(session_id))
            )
            return result.scalar_one_or_none()

    async def increment_segment_count(self, session_id: str | uuid.UUID) -> None:
        async with self._transaction("increment_segment_count") as db:
            await db.execute(
                update(Session)
                .where(Session.id == _as_uuid(session_id))
                .values(segment_count=Session.segment_count + 1)
            )

    async def finalize_session(self, session_id: str | uuid.UUID, duration: int) -> str | None:
        """断开时的收尾: 读取当前计数，0 则删除，否则写入时长

        Returns:
            "deleted" / "updated"，会话不存在时返回 None
        """
        sid = _as_uuid(session_id)
        async with self._transaction("finalize_session") as db:
            result = await db.execute(select(Session.segment_count).where(Session.id == sid))
            count = result.scalar_one_or_none()
            if count is None:
                return None

            if count == 0:
                await db.execute(delete(Segment).where(Segment.session_id == sid))
                await db.execute(delete(Session).where(Session.id == sid))
                logger.info(f"Session {sid} deleted (no segments)")
                return "deleted"

            await db.execute(update(Session).where(Session.id == sid).values(duration=duration))
            logger.info(f"Session {sid} finalized: {count} segments, {duration}s")
            return "updated"

    async def delete_empty_sessions(self) -> int:
        """删除所有片段数为 0 的会话 (维护脚本使用)"""
        async with self._transaction("delete_empty_sessions") as db:
            empty = select(Session.id).where(Session.segment_count == 0)
            # 崩溃时可能留下已写入但未计数的片段
            await db.execute(delete(Segment).where(Segment.session_id.in_(empty)))
            result = await db.execute(delete(Session).where(Session.segment_count == 0))
            return result.rowcount or 0

    # ========== Segment ==========

    async def create_segment(
        self,
        session_id: str | uuid.UUID,
        original_text: str,
        raw_translation: str | None,
        start_time: float = 0.0,
        end_time: float = 0.0,
        detected_language: str | None = None,
        translation_direction: str | None = None,
    ) -> Segment:
        async with self._transaction("create_segment") as db:
            segment = Segment(
                session_id=_as_uuid(session_id),
                original_text=original_text,
                raw_translation=raw_translation,
                start_time=start_time,
                end_time=end_time,
                detected_language=detected_language,
                translation_direction=translation_direction,
                is_final=True,
            )
            db.add(segment)
            await db.flush()
            await db.refresh(segment)
            return segment

    async def update_segment_polished(self, segment_id: str | uuid.UUID, text: str) -> bool:
        """写入润色结果；只更新已有即时翻译的片段"""
        async with self._transaction("update_segment_polished") as db:
            result = await db.execute(
                update(Segment)
                .where(Segment.id == _as_uuid(segment_id), Segment.raw_translation.is_not(None))
                .values(polished_translation=text)
            )
            return result.rowcount > 0

    async def list_backlog(self, session_id: str | uuid.UUID) -> list[Segment]:
        """待润色片段: 有即时翻译、无润色翻译，按开始时间排序"""
        async with self._transaction("list_backlog") as db:
            result = await db.execute(
                select(Segment)
                .where(
                    Segment.session_id == _as_uuid(session_id),
                    Segment.raw_translation.is_not(None),
                    Segment.polished_translation.is_(None),
                )
                .order_by(Segment.start_time, Segment.created_at)
            )
            return list(result.scalars().all())

    # ========== Polishing lock ==========

    async def try_acquire_polish_lock(self, session_id: str | uuid.UUID) -> bool:
        """条件更新: 仅当 is_polishing 为 false 时加锁，按影响行数判断是否成功"""
        async with self._transaction("try_acquire_polish_lock") as db:
            result = await db.execute(
                update(Session)
                .where(Session.id == _as_uuid(session_id), Session.is_polishing.is_(False))
                .values(is_polishing=True, polishing_status=POLISHING_PROCESSING)
            )
            return result.rowcount == 1

    async def release_polish_lock(self, session_id: str | uuid.UUID, status: str) -> None:
        await self.update_session(session_id, is_polishing=False, polishing_status=status)

    async def complete_polishing(self, session_id: str | uuid.UUID, polished_count: int) -> None:
        await self.update_session(
            session_id,
            last_polished_at=datetime.utcnow(),
            last_polished_index=polished_count,
            polishing_status=POLISHING_IDLE,
            is_polishing=False,
        )
