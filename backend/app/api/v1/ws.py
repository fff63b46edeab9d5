"""
WebSocket API Routes
实时转录翻译接口

连接参数通过查询字符串传入 (deepgramKey, inputLang, mode, languageA ...)，
未提供的 key 使用服务端配置。
- 二进制帧: 音频块
- 文本帧: JSON 命令 {"action": "polish-current-session" | "ping"}
"""

from __future__ import annotations

import json
import uuid

import pydantic
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from loguru import logger
from starlette.websockets import WebSocketState

from app.api.deps import (
    get_connection_manager,
    get_polishing_coordinator,
    get_polishing_scheduler,
    get_session_store,
    get_translation_dispatcher,
)
from app.core.exceptions import PersistenceError
from app.core.languages import is_language_pair_supported
from app.core.logging import log_ws_event
from app.services.polishing import PolishingCoordinator, PolishingScheduler
from app.services.session_store import SessionStore
from app.services.translation_dispatcher import TranslationDispatcher
from app.services.websocket import ConnectionManager, LiveSessionConfig, SessionOrchestrator

router = APIRouter(prefix="/ws", tags=["WebSocket"])

CLOSE_INVALID_CONFIG = 1008  # policy violation
CLOSE_SERVER_ERROR = 1011


@router.websocket("/live")
async def websocket_live(
    websocket: WebSocket,
    store: SessionStore = Depends(get_session_store),
    dispatcher: TranslationDispatcher = Depends(get_translation_dispatcher),
    coordinator: PolishingCoordinator = Depends(get_polishing_coordinator),
    scheduler: PolishingScheduler = Depends(get_polishing_scheduler),
    connections: ConnectionManager = Depends(get_connection_manager),
):
    """Live transcription + translation endpoint"""
    client_id = f"live_{uuid.uuid4().hex[:12]}"
    await connections.connect(websocket, client_id)

    # === 1. 连接参数 ===
    try:
        config = LiveSessionConfig.model_validate(dict(websocket.query_params))
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        await connections.send_error(client_id, f"Invalid session config: {first['msg']}")
        await _close(websocket, connections, client_id)
        return

    if not config.resolved_deepgram_key:
        await connections.send_error(client_id, "Missing API keys")
        await _close(websocket, connections, client_id)
        return

    if not config.is_two_way and not is_language_pair_supported(config.input_lang, config.output_lang):
        await connections.send_error(
            client_id, f"Unsupported language pair: {config.input_lang} -> {config.output_lang}"
        )
        await _close(websocket, connections, client_id)
        return

    orchestrator = SessionOrchestrator(
        client_id=client_id,
        config=config,
        store=store,
        dispatcher=dispatcher,
        coordinator=coordinator,
        scheduler=scheduler,
        sender=connections,
    )
    log_ws_event("connected", client_id, details={"mode": config.mode})

    # === 2. 消息循环 ===
    try:
        while True:
            try:
                message = await websocket.receive()

                if message["type"] == "websocket.disconnect":
                    logger.info(f"WebSocket disconnected: {client_id}")
                    break

                if message.get("bytes") is not None:
                    await orchestrator.handle_audio(message["bytes"])

                elif message.get("text") is not None:
                    try:
                        data = json.loads(message["text"])
                    except json.JSONDecodeError:
                        await connections.send_error(client_id, "Invalid JSON command")
                        continue
                    if not isinstance(data, dict):
                        await connections.send_error(client_id, "Invalid JSON command")
                        continue
                    await orchestrator.handle_command(data)

            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected: {client_id}")
                break
            except PersistenceError:
                # 会话创建失败，客户端已收到 error
                await _close(websocket, connections, client_id, code=CLOSE_SERVER_ERROR)
                break
            except RuntimeError as e:
                if websocket.client_state == WebSocketState.DISCONNECTED:
                    logger.info(f"WebSocket already closed: {client_id}")
                    break
                logger.error(f"WebSocket runtime error: {e}")
                await connections.send_error(client_id, str(e))
            except Exception as e:
                logger.error(f"WebSocket error: {e}")
                await connections.send_error(client_id, str(e))

    finally:
        await orchestrator.teardown()
        connections.disconnect(client_id)
        log_ws_event("disconnected", client_id, orchestrator.session_id)


async def _close(
    websocket: WebSocket,
    connections: ConnectionManager,
    client_id: str,
    code: int = CLOSE_INVALID_CONFIG,
) -> None:
    try:
        if websocket.client_state != WebSocketState.DISCONNECTED:
            await websocket.close(code=code)
    except RuntimeError as e:
        logger.debug(f"WebSocket close ignored: {e}")
    finally:
        connections.disconnect(client_id)
