"""
Polishing Coordinator
批量润色协调器

流程:
1. 加锁 (进程内集合 + 数据库条件更新)，失败返回 busy
2. 读取待润色片段 (有即时翻译、无润色翻译)
3. 自动触发时片段数不足 batch_size 则直接释放锁
4. 两方对话模式按翻译方向分组，每组单独一次批量请求
5. 解析带编号标记的回复，缺失的片段回退为即时翻译
6. 更新 last_polished_at / last_polished_index，状态回到 idle

任何异常都会以 error 状态释放锁并返回 error。
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from app.core.config import settings
from app.core.exceptions import TranslationServiceError
from app.models.session import (
    DIRECTION_A_TO_B,
    DIRECTION_B_TO_A,
    POLISHING_IDLE,
    Segment,
)
from app.services.polishing.lock import PolishLock
from app.services.session_store import SessionStore
from app.services.translation_dispatcher import TranslationDispatcher

STATUS_SUCCESS = "success"
STATUS_BUSY = "busy"
STATUS_ERROR = "error"

# [SEGMENT_n] ... [END_SEGMENT_n]，缺少结束标记时截止到下一个开始标记或文本末尾
_SEGMENT_PATTERN = re.compile(
    r"\[\s*SEGMENT_(\d+)\s*\]\s*(.*?)\s*"
    r"(?:\[\s*END_SEGMENT_\1\s*\]|(?=\[\s*SEGMENT_\d+\s*\])|\Z)",
    re.DOTALL | re.IGNORECASE,
)
# 旧格式: [1] text [2] text
_NUMBERED_PATTERN = re.compile(r"\[(\d+)\]\s*([^\[]+)")


@dataclass
class PolishResult:
    """一次润色尝试的结果"""

    status: str
    message: str | None = None
    polished_count: int = 0

    @property
    def is_busy(self) -> bool:
        return self.status == STATUS_BUSY


@dataclass
class PolishingStatus:
    is_polishing: bool
    status: str
    last_polished_at: datetime | None = None


def parse_polished_reply(text: str) -> dict[int, str]:
    """解析批量回复，返回 {0-based 索引: 润色文本}

    同一编号出现多次时保留第一次；空内容视为缺失。
    """
    result: dict[int, str] = {}
    if not text:
        return result

    for match in _SEGMENT_PATTERN.finditer(text):
        number = int(match.group(1))
        content = match.group(2).strip()
        if number >= 1 and content:
            result.setdefault(number - 1, content)

    if result:
        return result

    for match in _NUMBERED_PATTERN.finditer(text):
        number = int(match.group(1))
        content = match.group(2).strip()
        if number >= 1 and content:
            result.setdefault(number - 1, content)

    return result


class PolishingCoordinator:
    """Batch polishing with per-session mutual exclusion"""

    def __init__(
        self,
        store: SessionStore,
        dispatcher: TranslationDispatcher,
        batch_size: int | None = None,
        lock: PolishLock | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.batch_size = batch_size or settings.POLISHING_BATCH_SIZE
        self.lock = lock or PolishLock(store)

    async def attempt_polishing(
        self,
        session_id: str | uuid.UUID,
        manual: bool = False,
        api_key: str | None = None,
        model: str | None = None,
    ) -> PolishResult:
        """尝试润色会话的待处理片段

        Args:
            session_id: 会话 ID
            manual: 用户手动触发 (不受 batch_size 限制)
            api_key: 客户端提供的 OpenRouter key，未提供时使用服务端配置
            model: 客户端指定的模型
        """
        try:
            async with self.lock.hold(session_id) as acquired:
                if not acquired:
                    logger.debug(f"Polishing skipped, session {session_id} is busy")
                    return PolishResult(
                        status=STATUS_BUSY,
                        message="Session is already being polished or not found",
                    )
                return await self._polish_locked(session_id, manual, api_key, model)
        except Exception as e:
            logger.error(f"Polishing failed for session {session_id}: {e}")
            return PolishResult(status=STATUS_ERROR, message=_error_message(e))

    async def _polish_locked(
        self,
        session_id: str | uuid.UUID,
        manual: bool,
        api_key: str | None,
        model: str | None,
    ) -> PolishResult:
        session = await self.store.get_session(session_id, with_segments=False)
        if session is None:
            return PolishResult(status=STATUS_ERROR, message="Session not found")

        backlog = await self.store.list_backlog(session_id)
        if not backlog:
            return PolishResult(status=STATUS_SUCCESS, message="No segments to polish")

        if not manual and len(backlog) < self.batch_size:
            return PolishResult(
                status=STATUS_SUCCESS,
                message=f"Waiting for more segments ({len(backlog)}/{self.batch_size})",
            )

        if session.is_two_way:
            groups = [
                (
                    [s for s in backlog if s.translation_direction == DIRECTION_A_TO_B],
                    session.language_a,
                    session.language_b,
                ),
                (
                    [s for s in backlog if s.translation_direction == DIRECTION_B_TO_A],
                    session.language_b,
                    session.language_a,
                ),
            ]
        else:
            groups = [(backlog, session.input_language, session.output_language)]

        total = 0
        for segments, source_lang, target_lang in groups:
            if segments:
                total += await self._polish_group(segments, source_lang, target_lang, api_key, model)

        await self.store.complete_polishing(session_id, total)
        # complete_polishing 已清除数据库锁
        self.lock.forget(session_id)

        logger.info(f"Polished {total} segments for session {session_id} (manual={manual})")
        return PolishResult(
            status=STATUS_SUCCESS,
            message=f"Successfully polished {total} segments",
            polished_count=total,
        )

    async def _polish_group(
        self,
        segments: list[Segment],
        source_lang: str,
        target_lang: str,
        api_key: str | None,
        model: str | None,
    ) -> int:
        """同一翻译方向的一组片段，一次批量请求"""
        logger.info(f"Polishing {len(segments)} segments ({source_lang} -> {target_lang})")

        reply = await self.dispatcher.polish_batch(
            [s.original_text for s in segments],
            source_lang,
            target_lang,
            api_key=api_key,
            model=model,
        )
        polished = parse_polished_reply(reply)

        for idx, segment in enumerate(segments):
            text = polished.get(idx)
            if text is None:
                logger.warning(
                    f"Failed to parse polished text for segment {idx + 1}, using raw translation"
                )
                text = segment.raw_translation
            await self.store.update_segment_polished(segment.id, text)

        return len(segments)

    async def get_polishing_status(self, session_id: str | uuid.UUID) -> PolishingStatus:
        """会话不存在时返回默认的 idle 状态"""
        session = await self.store.get_session(session_id, with_segments=False)
        if session is None:
            return PolishingStatus(is_polishing=False, status=POLISHING_IDLE)
        return PolishingStatus(
            is_polishing=bool(session.is_polishing),
            status=session.polishing_status or POLISHING_IDLE,
            last_polished_at=session.last_polished_at,
        )


def _error_message(error: Exception) -> str:
    if isinstance(error, TranslationServiceError):
        return error.provider_message
    return getattr(error, "message", None) or str(error) or "Unknown error occurred"
