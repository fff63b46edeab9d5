"""
Polishing Scheduler
后台定时润色 - 每个会话一个 asyncio 任务

- register() 会先取消同一会话已有的定时任务，避免重连后重复计时
- 单次润色失败只记录日志，不影响下一次
- 取消只发生在两次润色之间；正在执行的润色被 shield 保护，继续完成
"""

from __future__ import annotations

import asyncio
import uuid

from loguru import logger

from app.core.config import settings
from app.services.polishing.coordinator import PolishingCoordinator


class PolishingScheduler:
    """Per-session background polishing timers"""

    def __init__(self, coordinator: PolishingCoordinator, interval: float | None = None):
        self.coordinator = coordinator
        self.interval = interval or settings.POLISHING_INTERVAL
        self._timers: dict[str, asyncio.Task] = {}
        self._inflight: set[asyncio.Task] = set()

    @property
    def active_sessions(self) -> list[str]:
        return list(self._timers)

    def is_registered(self, session_id: str | uuid.UUID) -> bool:
        task = self._timers.get(str(session_id))
        return task is not None and not task.done()

    def register(
        self,
        session_id: str | uuid.UUID,
        interval: float | None = None,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        """启动会话的后台润色，已有定时任务会被替换"""
        key = str(session_id)
        self.unregister(key)

        period = interval or self.interval
        self._timers[key] = asyncio.create_task(
            self._run(key, period, api_key, model), name=f"polishing-{key}"
        )
        logger.info(f"Started background polishing for session {key} every {period}s")

    def unregister(self, session_id: str | uuid.UUID) -> bool:
        """停止会话的后台润色；没有定时任务时返回 False"""
        key = str(session_id)
        task = self._timers.pop(key, None)
        if task is None:
            return False
        task.cancel()
        logger.info(f"Stopped background polishing for session {key}")
        return True

    start_background_polishing = register
    stop_background_polishing = unregister

    async def stop_all(self) -> None:
        """停止全部定时任务，并等待正在执行的润色结束"""
        tasks = list(self._timers.values())
        for key in list(self._timers):
            self.unregister(key)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run(
        self, session_id: str, interval: float, api_key: str | None, model: str | None
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._tick(session_id, api_key, model)

    async def _tick(self, session_id: str, api_key: str | None, model: str | None) -> None:
        logger.debug(f"Background polishing triggered for session {session_id}")
        attempt = asyncio.ensure_future(
            self.coordinator.attempt_polishing(session_id, manual=False, api_key=api_key, model=model)
        )
        self._inflight.add(attempt)
        attempt.add_done_callback(self._inflight.discard)

        try:
            result = await asyncio.shield(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Background polishing tick failed for session {session_id}: {e}")
            return

        logger.debug(
            f"Background polishing result for session {session_id}: "
            f"{result.status} ({result.message})"
        )
