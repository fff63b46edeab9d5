"""
Pytest Fixtures
共享测试夹具
"""

import asyncio
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.database import Base


@pytest.fixture
async def db_engine(tmp_path):
    """每个测试一个独立的 SQLite 文件 (并发写入测试需要真实连接池)"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )

    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory):
    """SessionStore bound to the test database"""
    from app.services.session_store import SessionStore

    return SessionStore(session_factory)


@pytest.fixture
def mock_dispatcher():
    """TranslationDispatcher mock: 即时翻译加前缀，批量润色按标记原样返回"""
    from app.services.llm_service import build_batch_text

    dispatcher = MagicMock()

    async def translate_instant(text, source_lang, target_lang):
        return f"[{target_lang}] {text}"

    async def polish_batch(texts, source_lang, target_lang, api_key=None, model=None):
        return build_batch_text([f"polished {target_lang}: {t}" for t in texts])

    dispatcher.translate_instant = AsyncMock(side_effect=translate_instant)
    dispatcher.polish_batch = AsyncMock(side_effect=polish_batch)
    return dispatcher


@pytest.fixture
def coordinator(store, mock_dispatcher):
    from app.services.polishing import PolishingCoordinator

    return PolishingCoordinator(store, mock_dispatcher, batch_size=5)


@pytest.fixture
async def client(store, coordinator) -> AsyncGenerator[AsyncClient, None]:
    """Get test client (store/coordinator 指向测试数据库)"""
    from app.api.deps import get_polishing_coordinator, get_session_store
    from app.main import app

    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_polishing_coordinator] = lambda: coordinator

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def session_with_segments(store):
    """Factory: 创建会话并写入 n 个已即时翻译的片段"""

    async def _create(count: int, **session_fields):
        session = await store.create_session(**session_fields)
        for i in range(count):
            await store.create_segment(
                session.id,
                original_text=f"phrase {i}",
                raw_translation=f"raw {i}",
                start_time=float(i),
                end_time=float(i) + 0.5,
            )
            await store.increment_segment_count(session.id)
        return session

    return _create


class FakeConnection:
    """由队列驱动的上游连接"""

    def __init__(self, end_on_finish: bool = True):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.sent: list[bytes] = []
        self.finished = False
        self.fail_send = False
        self.end_on_finish = end_on_finish

    async def events(self):
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event

    async def send(self, chunk: bytes) -> None:
        if self.fail_send:
            raise ConnectionError("socket gone")
        self.sent.append(chunk)

    async def finish(self) -> None:
        self.finished = True
        if self.end_on_finish:
            self.queue.put_nowait(None)

    def emit(self, event) -> None:
        self.queue.put_nowait(event)


class FakeConnectionFactory:
    """记录创建过的每条连接"""

    def __init__(self, end_on_finish: bool = True):
        self.connections: list[FakeConnection] = []
        self.end_on_finish = end_on_finish

    def __call__(self) -> FakeConnection:
        connection = FakeConnection(end_on_finish=self.end_on_finish)
        self.connections.append(connection)
        return connection

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]


@pytest.fixture
def factory() -> FakeConnectionFactory:
    """上游连接工厂 (测试用)"""
    return FakeConnectionFactory()
