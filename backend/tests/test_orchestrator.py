"""
Tests for services/websocket/orchestrator.py
实时会话: 懒创建、final 处理、两方对话、断开收尾、客户端命令
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.exceptions import PersistenceError, TranslationProviderError
from app.services.upstream import UpstreamClosed, UpstreamOpen, UpstreamTranscript, Word
from app.services.websocket.connection_manager import ConnectionManager
from app.services.websocket.orchestrator import SessionOrchestrator
from app.services.websocket.session import LiveSessionConfig

CLIENT_ID = "live_test"


async def eventually(check, timeout: float = 2.0):
    """轮询直到 check() 为真 (数据库写入在线程中完成)"""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        result = check()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def fake_ws():
    ws = MagicMock()
    ws.send_json = AsyncMock()
    return ws


@pytest.fixture
def sender(fake_ws):
    connections = ConnectionManager()
    connections.active_connections[CLIENT_ID] = fake_ws
    return connections


@pytest.fixture
def scheduler():
    return MagicMock()


def sent_messages(fake_ws, event_type=None):
    messages = [c.args[0] for c in fake_ws.send_json.await_args_list]
    if event_type is None:
        return messages
    return [m for m in messages if m["type"] == event_type]


@pytest.fixture
async def make_orchestrator(store, mock_dispatcher, coordinator, scheduler, sender, factory):
    created = []

    def _make(**config_fields):
        config = LiveSessionConfig(
            **{
                "deepgramKey": "dg-key",
                "inputLang": "fr",
                "outputLang": "en",
                "enablePolishing": True,
                "polishingInterval": 10,
                **config_fields,
            }
        )
        orchestrator = SessionOrchestrator(
            CLIENT_ID,
            config,
            store,
            mock_dispatcher,
            coordinator,
            scheduler,
            sender,
            connection_factory=factory,
        )
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        await orchestrator.teardown()


class TestLazySessionCreation:
    @pytest.mark.asyncio
    async def test_no_session_before_audio(self, make_orchestrator, factory):
        orchestrator = make_orchestrator()

        assert orchestrator.session_id is None
        assert factory.connections == []
        assert await orchestrator.teardown() is None

    @pytest.mark.asyncio
    async def test_first_chunk_creates_session(self, make_orchestrator, store, scheduler, factory, fake_ws):
        orchestrator = make_orchestrator()

        await orchestrator.handle_audio(b"chunk-1")

        session_id = orchestrator.session_id
        assert session_id is not None
        assert await store.get_session(session_id, with_segments=False) is not None
        assert sent_messages(fake_ws, "session-created") == [
            {"type": "session-created", "session_id": session_id}
        ]
        scheduler.register.assert_called_once_with(
            session_id, interval=10, api_key=None, model=orchestrator.config.openrouter_model
        )

        factory.latest.emit(UpstreamOpen())
        await eventually(lambda: sent_messages(fake_ws, "deepgram-ready"))
        assert factory.latest.sent == [b"chunk-1"]

        await orchestrator.handle_audio(b"chunk-2")
        assert factory.latest.sent == [b"chunk-1", b"chunk-2"]
        assert len(factory.connections) == 1

        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_polishing_disabled_skips_scheduler(self, make_orchestrator, scheduler):
        orchestrator = make_orchestrator(enablePolishing=False)

        await orchestrator.handle_audio(b"chunk")
        await orchestrator.teardown()

        scheduler.register.assert_not_called()
        scheduler.unregister.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_failure_notifies_client(self, make_orchestrator, store, fake_ws):
        store.create_session = AsyncMock(side_effect=PersistenceError("db down"))
        orchestrator = make_orchestrator()

        with pytest.raises(PersistenceError):
            await orchestrator.handle_audio(b"chunk")

        assert sent_messages(fake_ws, "error")[0]["message"] == "Failed to create session"
        assert orchestrator.session_id is None


class TestFinalTranscripts:
    @pytest.mark.asyncio
    async def test_final_emitted_and_persisted(self, make_orchestrator, store, factory, fake_ws):
        orchestrator = make_orchestrator()
        await orchestrator.handle_audio(b"chunk")
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(UpstreamTranscript(text="Bonj", is_final=False))
        factory.latest.emit(UpstreamTranscript(text="Bonjour à tous", is_final=True, duration=1.2))

        session_id = orchestrator.session_id
        await eventually(lambda: _segment_count(store, session_id, 1))

        transcripts = sent_messages(fake_ws, "transcript")
        assert transcripts[0] == {"type": "transcript", "text": "Bonj", "is_final": False, "language": "fr"}
        assert transcripts[1]["is_final"] is True

        [translation] = sent_messages(fake_ws, "instant-translation")
        assert translation["session_id"] == session_id
        assert translation["original_text"] == "Bonjour à tous"
        assert translation["translated_text"] == "[en] Bonjour à tous"
        assert translation["end_time"] >= translation["start_time"] >= 0

        session = await store.get_session(session_id)
        assert session.segments[0].raw_translation == "[en] Bonjour à tous"

        assert await orchestrator.teardown() == "updated"

    @pytest.mark.asyncio
    async def test_empty_final_ignored(self, make_orchestrator, factory, mock_dispatcher, fake_ws):
        orchestrator = make_orchestrator()
        await orchestrator.handle_audio(b"chunk")
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(UpstreamTranscript(text="   ", is_final=True))
        factory.latest.emit(UpstreamClosed(code=1000))
        await eventually(lambda: sent_messages(fake_ws, "deepgram-closed"))

        mock_dispatcher.translate_instant.assert_not_called()
        assert await orchestrator.teardown() == "deleted"

    @pytest.mark.asyncio
    async def test_two_way_event_carries_direction(self, make_orchestrator, store, factory, fake_ws, mock_dispatcher):
        orchestrator = make_orchestrator(mode="two-way", languageA="nl", languageB="fr")
        await orchestrator.handle_audio(b"chunk")
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(
            UpstreamTranscript(
                text="Merci beaucoup",
                is_final=True,
                words=(Word("Merci", language="fr"), Word("beaucoup", language="fr")),
            )
        )

        await eventually(lambda: _segment_count(store, orchestrator.session_id, 1))

        [event] = sent_messages(fake_ws, "two-way-translation")
        assert event["detected_language"] == "fr"
        assert event["target_language"] == "nl"
        assert event["translation_direction"] == "B_to_A"
        assert event["confidence"] == 1.0
        mock_dispatcher.translate_instant.assert_awaited_with("Merci beaucoup", "fr", "nl")

        session = await store.get_session(orchestrator.session_id)
        assert session.mode == "two-way"
        assert session.segments[0].translation_direction == "B_to_A"

        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_translation_error_keeps_connection(self, make_orchestrator, store, factory, fake_ws, mock_dispatcher):
        mock_dispatcher.translate_instant = AsyncMock(
            side_effect=TranslationProviderError("Too many requests", provider="LibreTranslate")
        )
        orchestrator = make_orchestrator()
        await orchestrator.handle_audio(b"chunk")
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(UpstreamTranscript(text="Bonjour", is_final=True))

        await eventually(lambda: sent_messages(fake_ws, "error"))

        [error] = sent_messages(fake_ws, "error")
        assert error == {"type": "error", "message": "Too many requests", "kind": "provider_error"}
        assert not orchestrator.upstream.is_closed
        assert await store.get_segment_count(orchestrator.session_id) == 0

        assert await orchestrator.teardown() == "deleted"

    @pytest.mark.asyncio
    async def test_persist_failure_still_emits(self, make_orchestrator, store, factory, fake_ws):
        orchestrator = make_orchestrator()
        await orchestrator.handle_audio(b"chunk")
        store.create_segment = AsyncMock(side_effect=PersistenceError("disk full"))
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(UpstreamTranscript(text="Bonjour", is_final=True))

        await eventually(lambda: sent_messages(fake_ws, "instant-translation"))
        await eventually(lambda: store.create_segment.await_count == 1)

        assert len(sent_messages(fake_ws, "instant-translation")) == 1
        # 收尾读取持久化的计数 (0)，而不是已推送的片段数
        assert await orchestrator.teardown() == "deleted"

    @pytest.mark.asyncio
    async def test_slow_translation_keeps_arrival_order(
        self, make_orchestrator, store, factory, mock_dispatcher
    ):
        """第一个片段翻译较慢，第二个片段音频更长，持久化顺序仍与到达顺序一致"""

        async def translate(text, source_lang, target_lang):
            if text == "first":
                await asyncio.sleep(0.3)
            return f"[{target_lang}] {text}"

        mock_dispatcher.translate_instant = AsyncMock(side_effect=translate)
        orchestrator = make_orchestrator()
        await orchestrator.handle_audio(b"chunk")
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(UpstreamTranscript(text="first", is_final=True, duration=0.5))
        factory.latest.emit(UpstreamTranscript(text="second", is_final=True, duration=2.0))

        session_id = orchestrator.session_id
        await eventually(lambda: _segment_count(store, session_id, 2))

        session = await store.get_session(session_id)
        assert [s.original_text for s in session.segments] == ["first", "second"]
        first, second = session.segments
        assert first.end_time >= first.start_time
        assert second.start_time >= first.end_time
        assert second.end_time >= second.start_time

        backlog = await store.list_backlog(session_id)
        assert [s.original_text for s in backlog] == ["first", "second"]

        await orchestrator.teardown()


class TestTeardown:
    @pytest.mark.asyncio
    async def test_empty_session_deleted(self, make_orchestrator, store, scheduler):
        orchestrator = make_orchestrator()
        await orchestrator.handle_audio(b"chunk")
        session_id = orchestrator.session_id

        outcome = await orchestrator.teardown()

        assert outcome == "deleted"
        assert await store.get_session(session_id) is None
        scheduler.unregister.assert_called_once_with(session_id)

    @pytest.mark.asyncio
    async def test_session_with_segments_gets_duration(self, make_orchestrator, store, factory):
        orchestrator = make_orchestrator()
        await orchestrator.handle_audio(b"chunk")
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(UpstreamTranscript(text="Bonjour", is_final=True))
        await eventually(lambda: _segment_count(store, orchestrator.session_id, 1))
        orchestrator.state.started_at -= 42

        outcome = await orchestrator.teardown()

        assert outcome == "updated"
        session = await store.get_session(orchestrator.session_id, with_segments=False)
        assert session.duration >= 42

    @pytest.mark.asyncio
    async def test_teardown_closes_upstream_once(self, make_orchestrator, factory):
        orchestrator = make_orchestrator()
        await orchestrator.handle_audio(b"chunk")

        await orchestrator.teardown()
        assert await orchestrator.teardown() is None

        assert factory.latest.finished
        assert orchestrator.upstream.is_closed

    @pytest.mark.asyncio
    async def test_audio_after_teardown_ignored(self, make_orchestrator, factory):
        orchestrator = make_orchestrator()
        await orchestrator.teardown()

        await orchestrator.handle_audio(b"late")

        assert factory.connections == []


class TestCommands:
    @pytest.mark.asyncio
    async def test_ping(self, make_orchestrator, fake_ws):
        orchestrator = make_orchestrator()

        await orchestrator.handle_command({"action": "ping"})

        assert sent_messages(fake_ws) == [{"type": "pong"}]

    @pytest.mark.asyncio
    async def test_unknown_command(self, make_orchestrator, fake_ws):
        orchestrator = make_orchestrator()

        await orchestrator.handle_command({"action": "dance"})

        assert sent_messages(fake_ws, "error")[0]["message"] == "Unknown command: dance"

    @pytest.mark.asyncio
    async def test_polish_without_session(self, make_orchestrator, fake_ws):
        orchestrator = make_orchestrator()

        await orchestrator.handle_command({"action": "polish-current-session"})
        await asyncio.gather(*orchestrator._background_tasks)

        assert sent_messages(fake_ws, "polish-error") == [
            {"type": "polish-error", "session_id": None, "message": "No active session"}
        ]

    @pytest.mark.asyncio
    async def test_polish_current_session(self, make_orchestrator, store, factory, fake_ws, mock_dispatcher):
        orchestrator = make_orchestrator()
        await orchestrator.handle_audio(b"chunk")
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(UpstreamTranscript(text="Bonjour", is_final=True))
        await eventually(lambda: _segment_count(store, orchestrator.session_id, 1))

        await orchestrator.handle_command(
            {"action": "polish-current-session", "openRouterKey": "client-key"}
        )
        await asyncio.gather(*orchestrator._background_tasks)

        session_id = orchestrator.session_id
        assert sent_messages(fake_ws, "polish-started") == [
            {"type": "polish-started", "session_id": session_id}
        ]
        [completed] = sent_messages(fake_ws, "polish-completed")
        assert completed["polished_count"] == 1
        assert mock_dispatcher.polish_batch.await_args.kwargs["api_key"] == "client-key"

        session = await store.get_session(session_id)
        assert session.segments[0].polished_translation == "polished en: Bonjour"

        await orchestrator.teardown()

    @pytest.mark.asyncio
    async def test_polish_busy(self, make_orchestrator, store, coordinator, fake_ws):
        orchestrator = make_orchestrator()
        await orchestrator.handle_audio(b"chunk")
        await store.try_acquire_polish_lock(orchestrator.session_id)

        await orchestrator.handle_command({"type": "polish-current-session"})
        await asyncio.gather(*orchestrator._background_tasks)

        assert len(sent_messages(fake_ws, "polish-busy")) == 1

        await orchestrator.teardown()


async def _segment_count(store, session_id, expected):
    return await store.get_segment_count(session_id) == expected
