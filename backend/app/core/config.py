"""
Application Configuration
从环境变量加载配置
"""

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Environment
    ENVIRONMENT: str = "development"

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Ensure critical settings are configured in production"""
        if self.ENVIRONMENT == "production":
            if "sqlite" in self.DATABASE_URL:
                raise ValueError(
                    "Production must use PostgreSQL! Please set DATABASE_URL environment variable."
                )
        if self.POLISHING_BATCH_SIZE < 1:
            raise ValueError("POLISHING_BATCH_SIZE must be at least 1")
        return self

    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"  # DEBUG, INFO, WARNING, ERROR

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database (SQLite for development, PostgreSQL for production)
    DATABASE_URL: str = "sqlite+aiosqlite:///./linguarelay.db"

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ]

    # Deepgram (live transcription)
    DEEPGRAM_API_KEY: str = ""
    DEEPGRAM_MODEL: str = "nova-3"
    DEEPGRAM_URL: str = "wss://api.deepgram.com/v1/listen"

    # LibreTranslate (instant translation)
    LIBRETRANSLATE_URL: str = "http://libretranslate:5000"
    LIBRETRANSLATE_API_KEY: str = ""
    TRANSLATION_CACHE_SIZE: int = 1000

    # OpenRouter (LLM polishing)
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_REFERER: str = "http://localhost:3000"
    DEFAULT_LLM_MODEL: str = "google/gemini-flash-1.5"

    # Provider HTTP timeout (seconds)
    PROVIDER_TIMEOUT: float = 30.0

    # Live polishing
    ENABLE_LIVE_POLISHING: bool = False
    POLISHING_INTERVAL: float = 30.0  # seconds
    POLISHING_BATCH_SIZE: int = 5  # minimum backlog for automatic polishing

    # Session defaults
    DEFAULT_INPUT_LANG: str = "fr"
    DEFAULT_OUTPUT_LANG: str = "en"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
