"""
删除片段数为 0 的会话

正常情况下断开连接时已经删除空会话，这里清理进程异常退出留下的记录。

Usage:
    cd backend && python -m scripts.cleanup_empty_sessions
"""

import asyncio
import sys

from loguru import logger

from app.core.database import engine, init_db
from app.core.exceptions import PersistenceError
from app.core.logging import setup_logging
from app.services.session_store import SessionStore


async def cleanup_empty_sessions(store: SessionStore | None = None) -> int:
    """Delete sessions with segment_count == 0, returns the number deleted"""
    store = store or SessionStore()
    logger.info("Starting cleanup of sessions with 0 segments...")

    deleted = await store.delete_empty_sessions()
    if deleted == 0:
        logger.info("No empty sessions to clean up")
    else:
        logger.info(f"Successfully deleted {deleted} empty sessions")
    return deleted


async def main() -> int:
    setup_logging()
    await init_db()
    try:
        await cleanup_empty_sessions()
    except PersistenceError as e:
        logger.error(f"Error cleaning up empty sessions: {e}")
        return 1
    finally:
        await engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
