"""
Session Orchestrator
实时会话驱动 - 每个 WebSocket 连接一个实例

生命周期:
1. 第一个音频块到达时创建 Session 记录，按需启动后台润色，再建立上游连接
2. 单一事件循环 (_dispatch_events) 按到达顺序处理上游事件:
   final 转录 -> 语言检测 (两方对话) -> 即时翻译 -> 推送 -> 持久化 -> 计数 +1
3. 断开时: 停止后台润色 -> 关闭上游连接 -> 读取持久化的片段数，
   为 0 删除会话，否则写入时长
"""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from app.core.exceptions import PersistenceError, TranslationServiceError
from app.core.logging import log_ws_event
from app.models.session import MODE_ONE_WAY, MODE_TWO_WAY
from app.services.language_detection import (
    DetectionResult,
    detect_dominant_language,
    translation_direction,
)
from app.services.polishing.coordinator import STATUS_BUSY, STATUS_SUCCESS, PolishingCoordinator
from app.services.polishing.scheduler import PolishingScheduler
from app.services.session_store import SessionStore
from app.services.translation_dispatcher import TranslationDispatcher
from app.services.upstream import (
    DeepgramConfig,
    DeepgramLiveConnection,
    UpstreamClosed,
    UpstreamConnectionManager,
    UpstreamError,
    UpstreamEvent,
    UpstreamOpen,
    UpstreamTranscript,
)
from app.services.upstream.manager import ConnectionFactory
from app.services.websocket.connection_manager import ConnectionManager
from app.services.websocket.session import LiveSessionConfig, LiveSessionState

COMMAND_POLISH = "polish-current-session"
COMMAND_PING = "ping"

# 断开时等待事件循环处理完剩余事件的时间
DRAIN_TIMEOUT = 5.0


class SessionOrchestrator:
    """Per-connection live session driver"""

    def __init__(
        self,
        client_id: str,
        config: LiveSessionConfig,
        store: SessionStore,
        dispatcher: TranslationDispatcher,
        coordinator: PolishingCoordinator,
        scheduler: PolishingScheduler,
        sender: ConnectionManager,
        connection_factory: ConnectionFactory | None = None,
    ):
        self.client_id = client_id
        self.config = config
        self.store = store
        self.dispatcher = dispatcher
        self.coordinator = coordinator
        self.scheduler = scheduler
        self.sender = sender
        self._connection_factory = connection_factory or self._deepgram_factory

        self.state = LiveSessionState(client_id=client_id)
        self.upstream: UpstreamConnectionManager | None = None
        self._dispatch_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()
        self._torn_down = False

    @property
    def session_id(self) -> str | None:
        return self.state.session_id

    def _deepgram_factory(self) -> DeepgramLiveConnection:
        return DeepgramLiveConnection(
            DeepgramConfig(
                api_key=self.config.resolved_deepgram_key,
                model=self.config.deepgram_model,
                language=self.config.transcription_language,
                multilingual=self.config.is_two_way,
            )
        )

    # ==================== 音频 ====================

    async def handle_audio(self, chunk: bytes) -> None:
        """转发音频块；第一个块触发会话创建

        Raises:
            PersistenceError: 会话创建失败 (已通知客户端)
        """
        if self._torn_down or not chunk:
            return

        if not self.state.has_session:
            await self._start_session()

        await self.upstream.send(chunk)

    async def _start_session(self) -> None:
        config = self.config
        mode = MODE_TWO_WAY if config.is_two_way else MODE_ONE_WAY

        try:
            session = await self.store.create_session(
                mode=mode,
                input_language=config.input_lang,
                output_language=config.output_lang,
                language_a=config.language_a if config.is_two_way else None,
                language_b=config.language_b if config.is_two_way else None,
            )
        except PersistenceError:
            await self.sender.send_error(self.client_id, "Failed to create session")
            raise

        session_id = str(session.id)
        self.state.start(session_id)
        await self.sender.send_session_created(self.client_id, session_id)
        log_ws_event("session_created", self.client_id, session_id, {"mode": mode})

        if config.enable_polishing:
            self.scheduler.register(
                session_id,
                interval=config.polishing_interval,
                api_key=config.openrouter_key,
                model=config.openrouter_model,
            )
            self.state.polishing_registered = True

        self.upstream = UpstreamConnectionManager(self._connection_factory, label=self.client_id)
        await self.upstream.start()
        self._dispatch_task = asyncio.create_task(
            self._dispatch_events(), name=f"dispatch-{self.client_id}"
        )

    # ==================== 上游事件 ====================

    async def _dispatch_events(self) -> None:
        """单一事件循环，按到达顺序处理"""
        async for event in self.upstream.events():
            try:
                await self._handle_upstream_event(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[{self.client_id}] Failed to handle upstream event: {e}")

    async def _handle_upstream_event(self, event: UpstreamEvent) -> None:
        if isinstance(event, UpstreamOpen):
            await self.sender.send_deepgram_ready(self.client_id)

        elif isinstance(event, UpstreamTranscript):
            if event.is_final:
                await self._handle_final_transcript(event)
            else:
                await self.sender.send_transcript(
                    self.client_id, event.text, False, language=self._interim_language()
                )

        elif isinstance(event, UpstreamError):
            await self.sender.send_error(
                self.client_id, f"Transcription error: {event.message}", kind="transcription_error"
            )

        elif isinstance(event, UpstreamClosed):
            await self.sender.send_deepgram_closed(self.client_id, event.code, event.reason)

    def _interim_language(self) -> str | None:
        return None if self.config.is_two_way else self.config.input_lang

    async def _handle_final_transcript(self, event: UpstreamTranscript) -> None:
        text = event.text.strip()
        if not text:
            return

        # 到达时刻在翻译之前读取，翻译耗时不影响片段顺序
        arrived_at = self.state.elapsed()

        config = self.config
        detection = None
        direction = None
        if config.is_two_way:
            detection = detect_dominant_language(event.words, config.language_a, config.language_b)
            source_lang, target_lang = detection.language, detection.other
            direction = translation_direction(source_lang, config.language_a)
        else:
            source_lang, target_lang = config.input_lang, config.output_lang

        await self.sender.send_transcript(self.client_id, text, True, language=source_lang)

        try:
            translation = await self.dispatcher.translate_instant(text, source_lang, target_lang)
        except TranslationServiceError as e:
            logger.warning(f"[{self.client_id}] Instant translation failed: {e.message}")
            await self.sender.send_error(self.client_id, e.provider_message, kind=e.kind)
            return

        # 使用会话时钟，上游重连后 Deepgram 的时间偏移会归零
        start_time, end_time = self.state.stamp_segment(arrived_at, event.duration)

        segment: dict[str, Any] = {
            "session_id": self.session_id,
            "original_text": text,
            "translated_text": translation,
            "start_time": start_time,
            "end_time": end_time,
            "is_final": True,
        }

        if detection is not None:
            segment.update(
                {
                    "detected_language": detection.language,
                    "target_language": detection.other,
                    "translation_direction": direction,
                    "confidence": detection.confidence,
                }
            )
            await self.sender.send_two_way_translation(self.client_id, segment)
        else:
            await self.sender.send_instant_translation(self.client_id, segment)

        await self._persist_segment(text, translation, start_time, end_time, detection, direction)

    async def _persist_segment(
        self,
        text: str,
        translation: str,
        start_time: float,
        end_time: float,
        detection: DetectionResult | None,
        direction: str | None,
    ) -> None:
        """保存片段并原子自增计数；失败只记录日志"""
        try:
            await self.store.create_segment(
                self.session_id,
                original_text=text,
                raw_translation=translation,
                start_time=start_time,
                end_time=end_time,
                detected_language=detection.language if detection else None,
                translation_direction=direction,
            )
            await self.store.increment_segment_count(self.session_id)
        except PersistenceError as e:
            logger.error(f"[{self.client_id}] Failed to save segment: {e}")

    # ==================== 客户端命令 ====================

    async def handle_command(self, data: dict[str, Any]) -> None:
        action = data.get("action") or data.get("type")

        if action == COMMAND_PING:
            await self.sender.send_pong(self.client_id)
        elif action == COMMAND_POLISH:
            # 润色可能耗时数秒，不阻塞音频接收
            task = asyncio.create_task(self._polish_current_session(data))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
        else:
            await self.sender.send_error(self.client_id, f"Unknown command: {action}")

    async def _polish_current_session(self, data: dict[str, Any]) -> None:
        session_id = self.session_id
        if session_id is None:
            await self.sender.send_polish_error(self.client_id, None, "No active session")
            return

        await self.sender.send_polish_started(self.client_id, session_id)
        result = await self.coordinator.attempt_polishing(
            session_id,
            manual=True,
            api_key=data.get("openRouterKey") or self.config.openrouter_key,
            model=data.get("openRouterModel") or self.config.openrouter_model,
        )
        log_ws_event("polish", self.client_id, session_id, {"status": result.status})

        if result.status == STATUS_SUCCESS:
            await self.sender.send_polish_completed(
                self.client_id, session_id, result.polished_count, result.message
            )
        elif result.status == STATUS_BUSY:
            await self.sender.send_polish_busy(self.client_id, session_id, result.message)
        else:
            await self.sender.send_polish_error(
                self.client_id, session_id, result.message or "Polishing failed"
            )

    # ==================== 断开 ====================

    async def teardown(self) -> str | None:
        """断开收尾，可重复调用

        Returns:
            "deleted" / "updated"；没有创建会话或收尾失败时返回 None
        """
        if self._torn_down:
            return None
        self._torn_down = True

        session_id = self.session_id

        if session_id and self.state.polishing_registered:
            self.scheduler.unregister(session_id)
            self.state.polishing_registered = False

        if self.upstream is not None:
            await self.upstream.close()

        if self._dispatch_task is not None and not self._dispatch_task.done():
            try:
                await asyncio.wait_for(self._dispatch_task, timeout=DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning(f"[{self.client_id}] Dispatch loop did not drain, cancelled")

        if session_id is None:
            return None

        try:
            outcome = await self.store.finalize_session(session_id, self.state.duration_seconds())
        except PersistenceError as e:
            logger.error(f"[{self.client_id}] Failed to finalize session {session_id}: {e}")
            return None

        log_ws_event("session_closed", self.client_id, session_id, {"outcome": outcome})
        return outcome
