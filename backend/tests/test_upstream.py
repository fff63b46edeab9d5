"""
Tests for services/upstream
连接状态机: 缓冲、重建、旧连接事件丢弃；Deepgram 消息解析
"""

import asyncio

import pytest

from app.services.upstream import (
    ConnectionState,
    DeepgramConfig,
    UpstreamClosed,
    UpstreamConnectionManager,
    UpstreamError,
    UpstreamOpen,
    UpstreamTranscript,
)
from app.services.upstream.deepgram import build_listen_url, parse_results_message


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


async def drain(manager: UpstreamConnectionManager) -> list:
    """关闭并取出所有交给消费方的事件"""
    await manager.close()
    return [event async for event in manager.events()]


@pytest.fixture
async def manager(factory):
    mgr = UpstreamConnectionManager(factory, label="test")
    yield mgr
    await mgr.close()


class TestBuffering:
    """未就绪时只保留最近一个音频块"""

    @pytest.mark.asyncio
    async def test_chunk_sent_once_on_open(self, manager, factory):
        await manager.start()
        assert manager.state == ConnectionState.CONNECTING

        await manager.send(b"a")
        assert factory.latest.sent == []
        assert manager.pending_chunk == b"a"

        factory.latest.emit(UpstreamOpen())
        await settle()

        assert manager.state == ConnectionState.READY
        assert factory.latest.sent == [b"a"]
        assert manager.pending_chunk is None

        await manager.send(b"b")
        assert factory.latest.sent == [b"a", b"b"]

    @pytest.mark.asyncio
    async def test_latest_chunk_wins(self, manager, factory):
        await manager.start()

        await manager.send(b"first")
        await manager.send(b"second")
        await manager.send(b"third")
        factory.latest.emit(UpstreamOpen())
        await settle()

        assert factory.latest.sent == [b"third"]

    @pytest.mark.asyncio
    async def test_send_before_start_opens_connection(self, manager, factory):
        await manager.send(b"a")

        assert len(factory.connections) == 1
        assert manager.state == ConnectionState.CONNECTING
        assert manager.reconnect_count == 0


class TestRecreate:
    @pytest.mark.asyncio
    async def test_send_after_close_recreates(self, manager, factory):
        await manager.start()
        first = factory.latest
        first.emit(UpstreamOpen())
        first.emit(UpstreamClosed(code=1011, reason="timeout"))
        await settle()
        assert manager.state == ConnectionState.CLOSED

        await manager.send(b"x")
        await settle()

        assert len(factory.connections) == 2
        assert first.finished
        assert manager.is_recreating_connection
        assert manager.reconnect_count == 1
        assert manager.pending_chunk == b"x"

        second = factory.latest
        second.emit(UpstreamOpen())
        await settle()

        assert second.sent == [b"x"]
        assert manager.is_ready
        assert not manager.is_recreating_connection

    @pytest.mark.asyncio
    async def test_send_failure_while_ready_recreates(self, manager, factory):
        await manager.start()
        first = factory.latest
        first.emit(UpstreamOpen())
        await settle()

        first.fail_send = True
        await manager.send(b"y")

        assert len(factory.connections) == 2
        assert manager.pending_chunk == b"y"
        assert manager.state == ConnectionState.CONNECTING

    @pytest.mark.asyncio
    async def test_errors_suppressed_while_recreating(self, factory):
        manager = UpstreamConnectionManager(factory)
        await manager.start()
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(UpstreamClosed())
        await settle()
        await manager.send(b"x")

        factory.latest.emit(UpstreamError("handshake hiccup"))
        factory.latest.emit(UpstreamOpen())
        await settle()
        factory.latest.emit(UpstreamError("real problem"))
        await settle()

        events = await drain(manager)

        errors = [e.message for e in events if isinstance(e, UpstreamError)]
        assert errors == ["real problem"]
        assert sum(isinstance(e, UpstreamOpen) for e in events) == 2

    @pytest.mark.asyncio
    async def test_superseded_connection_events_dropped(self, factory):
        factory.end_on_finish = False
        manager = UpstreamConnectionManager(factory)
        await manager.start()
        first = factory.latest
        first.emit(UpstreamOpen())
        first.emit(UpstreamClosed())
        await settle()
        await manager.send(b"x")
        await settle()

        first.emit(UpstreamTranscript(text="stale", is_final=True))
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(UpstreamTranscript(text="fresh", is_final=True))
        await settle()

        events = await drain(manager)

        texts = [e.text for e in events if isinstance(e, UpstreamTranscript)]
        assert texts == ["fresh"]


class TestEventsAndClose:
    @pytest.mark.asyncio
    async def test_events_forwarded_in_order(self, factory):
        manager = UpstreamConnectionManager(factory)
        await manager.start()
        factory.latest.emit(UpstreamOpen())
        factory.latest.emit(UpstreamTranscript(text="hel", is_final=False))
        factory.latest.emit(UpstreamTranscript(text="hello", is_final=True))
        await settle()

        events = await drain(manager)

        assert isinstance(events[0], UpstreamOpen)
        assert [e.text for e in events[1:]] == ["hel", "hello"]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, factory):
        manager = UpstreamConnectionManager(factory)
        await manager.start()

        await manager.close()
        await manager.close()

        assert manager.is_closed
        assert factory.latest.finished
        assert [e async for e in manager.events()] == []

    @pytest.mark.asyncio
    async def test_send_after_close_ignored(self, factory):
        manager = UpstreamConnectionManager(factory)
        await manager.start()
        await manager.close()

        await manager.send(b"late")

        assert len(factory.connections) == 1
        assert manager.pending_chunk is None

    @pytest.mark.asyncio
    async def test_finish_errors_ignored(self, factory):
        manager = UpstreamConnectionManager(factory)
        await manager.start()

        async def broken_finish():
            raise RuntimeError("already closed")

        factory.latest.finish = broken_finish

        await manager.close()  # 不抛出

        assert manager.is_closed


class TestDeepgram:
    def test_listen_url_single_language(self):
        url = build_listen_url(
            DeepgramConfig(api_key="k", model="nova-3", language="zh", url="wss://dg.test/v1/listen")
        )

        assert url.startswith("wss://dg.test/v1/listen?")
        assert "model=nova-3" in url
        assert "language=zh-CN" in url
        assert "interim_results=true" in url
        assert "encoding" not in url

    def test_listen_url_multilingual(self):
        url = build_listen_url(
            DeepgramConfig(api_key="k", language="nl", multilingual=True, url="wss://dg.test")
        )

        assert "language=multi" in url

    def test_parse_final_results(self):
        data = {
            "type": "Results",
            "is_final": True,
            "start": 1.5,
            "duration": 2.0,
            "channel": {
                "alternatives": [
                    {
                        "transcript": " Bonjour tout le monde ",
                        "confidence": 0.93,
                        "words": [
                            {"word": "bonjour", "punctuated_word": "Bonjour", "language": "fr"},
                            {"word": "tout", "language": "fr"},
                        ],
                    }
                ]
            },
        }

        event = parse_results_message(data)

        assert event.text == "Bonjour tout le monde"
        assert event.is_final is True
        assert event.end == 3.5
        assert event.confidence == 0.93
        assert [w.word for w in event.words] == ["Bonjour", "tout"]
        assert event.words[0].language == "fr"

    def test_parse_ignores_empty_and_other_types(self):
        empty = {"type": "Results", "channel": {"alternatives": [{"transcript": "  "}]}}

        assert parse_results_message(empty) is None
        assert parse_results_message({"type": "Metadata"}) is None
        assert parse_results_message({"type": "Results", "channel": {}}) is None
