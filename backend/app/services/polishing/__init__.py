"""
Polishing Services
批量润色: 加锁、协调、后台定时
"""

from app.services.polishing.coordinator import (
    PolishingCoordinator,
    PolishingStatus,
    PolishResult,
    parse_polished_reply,
)
from app.services.polishing.lock import PolishLock
from app.services.polishing.scheduler import PolishingScheduler

__all__ = [
    "PolishLock",
    "PolishResult",
    "PolishingCoordinator",
    "PolishingScheduler",
    "PolishingStatus",
    "parse_polished_reply",
]
