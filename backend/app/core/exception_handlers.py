"""
Exception Handlers
全局异常处理器，将自定义异常转换为 HTTP 响应
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from app.core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    InvalidAPIKeyError,
    LinguaRelayError,
    PersistenceError,
    ResourceNotFoundError,
    TranslationServiceError,
    ValidationError,
)


def register_exception_handlers(app: FastAPI) -> None:
    """注册全局异常处理器"""

    @app.exception_handler(ResourceNotFoundError)
    async def resource_not_found_handler(request: Request, exc: ResourceNotFoundError):
        return JSONResponse(
            status_code=404,
            content={"detail": exc.message},
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": exc.message, "field": exc.field},
        )

    @app.exception_handler(InvalidAPIKeyError)
    async def invalid_api_key_handler(request: Request, exc: InvalidAPIKeyError):
        logger.warning(f"Invalid API key for {exc.provider}")
        return JSONResponse(
            status_code=401,
            content={"detail": exc.provider_message, "kind": exc.kind, "provider": exc.provider},
        )

    @app.exception_handler(TranslationServiceError)
    async def translation_error_handler(request: Request, exc: TranslationServiceError):
        logger.error(f"Translation Service Error: {exc.message}", provider=exc.provider)
        return JSONResponse(
            status_code=502,
            content={
                "detail": exc.provider_message,
                "service": "translation",
                "kind": exc.kind,
                "provider": exc.provider,
            },
        )

    @app.exception_handler(ExternalServiceError)
    async def external_service_handler(request: Request, exc: ExternalServiceError):
        logger.error(f"External Service Error: {exc.message}", service=exc.service)
        return JSONResponse(
            status_code=502,
            content={"detail": exc.message, "service": exc.service},
        )

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(f"Persistence Error: {exc.message}")
        return JSONResponse(
            status_code=503,
            content={"detail": exc.message},
        )

    @app.exception_handler(ConfigurationError)
    async def config_error_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration Error: {exc.message}")
        return JSONResponse(
            status_code=500,
            content={"detail": exc.message},
        )

    @app.exception_handler(LinguaRelayError)
    async def linguarelay_error_handler(request: Request, exc: LinguaRelayError):
        """兜底处理所有 LinguaRelayError"""
        logger.error(f"LinguaRelay Error: {exc.message}")
        return JSONResponse(
            status_code=500,
            content={"detail": exc.message},
        )
