"""
Database Configuration
异步数据库引擎与会话工厂
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings

_connect_args = {"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {}

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    connect_args=_connect_args,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Declarative base for all ORM models"""

    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: 每个请求一个数据库会话"""
    async with async_session() as session:
        yield session


async def init_db() -> None:
    """Create all tables"""
    import app.models  # noqa: F401  (注册所有模型)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
