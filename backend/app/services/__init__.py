"""
Services module
Export all services
"""

from app.services.instant_translator import InstantTranslator, TranslationCache
from app.services.llm_service import LLMService, get_llm_service
from app.services.session_store import SessionStore
from app.services.translation_dispatcher import TranslationDispatcher

__all__ = [
    "InstantTranslator",
    "LLMService",
    "SessionStore",
    "TranslationCache",
    "TranslationDispatcher",
    "get_llm_service",
]
