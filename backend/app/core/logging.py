"""
Logging Configuration
日志配置 - 开发环境彩色输出，生产环境 JSON 结构化

使用方法:
    from app.core.logging import setup_logging
    setup_logging()
"""

from __future__ import annotations

import json
import sys
from typing import Any

from loguru import logger

from app.core.config import settings

# 这些 extra 字段只在进程内部使用，不写入 JSON 日志
_INTERNAL_EXTRA_KEYS = ("color",)


def json_serializer(record: dict) -> str:
    """将 loguru 记录序列化为单行 JSON"""
    entry: dict[str, Any] = {
        "timestamp": record["time"].strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
        "level": record["level"].name,
        "message": record["message"],
        "module": record["name"],
        "function": record["function"],
        "line": record["line"],
    }

    extra = {
        key: value
        for key, value in (record["extra"] or {}).items()
        if not key.startswith("_") and key not in _INTERNAL_EXTRA_KEYS
    }
    if extra:
        entry["extra"] = extra

    exc = record["exception"]
    if exc:
        entry["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value) if exc.value else None,
            "traceback": "".join(exc.traceback.format()) if exc.traceback else None,
        }

    return json.dumps(entry, ensure_ascii=False, default=str)


def json_sink(message):
    """JSON 日志输出 sink"""
    sys.stderr.write(json_serializer(message.record) + "\n")
    sys.stderr.flush()


# 彩色格式 (开发环境)
COLORED_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging() -> None:
    """
    配置日志系统

    - development/test: 彩色格式输出到 stderr
    - production: JSON 格式输出到 stderr，便于日志收集
    """
    logger.remove()

    if settings.ENVIRONMENT == "production":
        logger.add(
            json_sink,
            level=settings.LOG_LEVEL,
            backtrace=True,
            diagnose=False,  # 不在生产日志中输出变量值 (可能包含 API Key)
        )
        logger.info("Logging configured", format="json", level=settings.LOG_LEVEL)
    else:
        logger.add(
            sys.stderr,
            level=settings.LOG_LEVEL,
            format=COLORED_FORMAT,
            backtrace=True,
            diagnose=True,
        )


def log_ws_event(
    event: str,
    client_id: str,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
):
    """记录发往客户端的 WebSocket 事件"""
    extra: dict[str, Any] = {"event": event, "client_id": client_id}
    if session_id:
        extra["session_id"] = session_id
    if details:
        extra.update(details)
    logger.debug(f"WS -> {event}", **extra)


def log_external_call(
    service: str,
    provider: str,
    duration_ms: float,
    success: bool,
    error: str | None = None,
):
    """记录外部服务调用 (翻译/LLM/STT)"""
    level = "info" if success else "warning"
    getattr(logger, level)(
        f"External call: {service}/{provider}",
        service=service,
        provider=provider,
        duration_ms=round(duration_ms, 2),
        success=success,
        error=error,
    )
