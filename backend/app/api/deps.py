"""
API Dependencies
共用的依赖注入

服务对象在进程内共享: 润色锁的进程内集合和后台定时任务都挂在这些单例上。
测试通过 app.dependency_overrides 替换。
"""

from functools import lru_cache

from app.services.polishing import PolishingCoordinator, PolishingScheduler
from app.services.session_store import SessionStore
from app.services.translation_dispatcher import TranslationDispatcher
from app.services.websocket.connection_manager import ConnectionManager, manager


@lru_cache
def get_session_store() -> SessionStore:
    return SessionStore()


@lru_cache
def get_translation_dispatcher() -> TranslationDispatcher:
    return TranslationDispatcher()


@lru_cache
def get_polishing_coordinator() -> PolishingCoordinator:
    return PolishingCoordinator(get_session_store(), get_translation_dispatcher())


@lru_cache
def get_polishing_scheduler() -> PolishingScheduler:
    return PolishingScheduler(get_polishing_coordinator())


def get_connection_manager() -> ConnectionManager:
    return manager
