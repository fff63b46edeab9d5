"""
LinguaRelay Backend - FastAPI Application
实时转录 + 即时翻译 + LLM 润色
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.__version__ import __version__
from app.api.deps import get_polishing_scheduler, get_translation_dispatcher
from app.api.v1.router import api_router
from app.core.config import settings
from app.core.database import init_db
from app.core.exception_handlers import register_exception_handlers
from app.core.logging import setup_logging

# Configure logging (JSON in production, colored in development)
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("🚀 Starting LinguaRelay Backend...")
    logger.info(f"📝 Environment: {settings.ENVIRONMENT}")
    await init_db()
    logger.info("✅ Database tables initialized")
    yield
    logger.info("👋 Shutting down LinguaRelay Backend...")
    # 停止后台润色定时任务，等待正在执行的润色结束
    await get_polishing_scheduler().stop_all()


app = FastAPI(
    title="LinguaRelay API",
    description="实时转录翻译系统 API",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include API routes
app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check with dependency status"""
    from sqlalchemy import text

    from app.core.database import async_session

    result = {
        "status": "healthy",
        "version": __version__,
        "checks": {},
    }

    # Check PostgreSQL / SQLite
    db_type = "postgresql" if "postgresql" in settings.DATABASE_URL else "sqlite"
    try:
        async with async_session() as db:
            await db.execute(text("SELECT 1"))
        result["checks"][db_type] = "ok"
    except Exception as e:
        result["checks"][db_type] = f"error: {type(e).__name__}"
        result["status"] = "degraded"

    # LibreTranslate 不可用时即时翻译失败，标记为 degraded
    if await get_translation_dispatcher().instant.check_health():
        result["checks"]["libretranslate"] = "ok"
    else:
        result["checks"]["libretranslate"] = "unavailable"
        result["status"] = "degraded"

    return result


@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "Welcome to LinguaRelay API", "docs": "/docs", "version": __version__}
