"""
Instant Translator
即时翻译 - LibreTranslate 客户端 + 有界 FIFO 缓存

低延迟、逐片段同步调用；重复短语直接命中缓存。
"""

from __future__ import annotations

import time
from collections import OrderedDict

import httpx
from loguru import logger

from app.core.config import settings
from app.core.exceptions import (
    InvalidAPIKeyError,
    TranslationNetworkError,
    TranslationProviderError,
)
from app.core.languages import get_libretranslate_language_code
from app.core.logging import log_external_call

PROVIDER = "LibreTranslate"


class TranslationCache:
    """固定容量缓存，超出容量时淘汰最早写入的条目 (FIFO，读取不刷新顺序)"""

    def __init__(self, capacity: int = 1000):
        self.capacity = capacity
        self._items: OrderedDict[tuple[str, str, str], str] = OrderedDict()

    @staticmethod
    def make_key(text: str, source_lang: str, target_lang: str) -> tuple[str, str, str]:
        return (source_lang, target_lang, text)

    def get(self, text: str, source_lang: str, target_lang: str) -> str | None:
        return self._items.get(self.make_key(text, source_lang, target_lang))

    def put(self, text: str, source_lang: str, target_lang: str, value: str) -> None:
        key = self.make_key(text, source_lang, target_lang)
        if key in self._items:
            self._items[key] = value
            return
        self._items[key] = value
        while len(self._items) > self.capacity:
            self._items.popitem(last=False)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: tuple[str, str, str]) -> bool:
        return key in self._items


class InstantTranslator:
    """LibreTranslate client"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        cache: TranslationCache | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.LIBRETRANSLATE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.LIBRETRANSLATE_API_KEY
        self.cache = cache if cache is not None else TranslationCache(settings.TRANSLATION_CACHE_SIZE)
        self.timeout = timeout or settings.PROVIDER_TIMEOUT
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        )

    async def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        """翻译单个片段；空白输入直接返回空字符串"""
        if not text or not text.strip():
            return ""

        source = get_libretranslate_language_code(source_lang)
        target = get_libretranslate_language_code(target_lang)

        cached = self.cache.get(text, source, target)
        if cached is not None:
            logger.debug("LibreTranslate: cache hit")
            return cached

        payload = {"q": text, "source": source, "target": target, "format": "text"}
        if self.api_key:
            payload["api_key"] = self.api_key

        started = time.perf_counter()
        try:
            async with self._client() as client:
                resp = await client.post("/translate", json=payload)
        except httpx.RequestError as e:
            log_external_call(
                "translate", PROVIDER, (time.perf_counter() - started) * 1000, False, str(e)
            )
            raise TranslationNetworkError(provider=PROVIDER, details=str(e)) from e

        elapsed_ms = (time.perf_counter() - started) * 1000

        if resp.status_code in (401, 403):
            log_external_call("translate", PROVIDER, elapsed_ms, False, f"HTTP {resp.status_code}")
            raise InvalidAPIKeyError(provider=PROVIDER)

        if resp.status_code >= 400:
            message = _error_message(resp)
            log_external_call("translate", PROVIDER, elapsed_ms, False, message)
            raise TranslationProviderError(
                f"LibreTranslate API error: {message}",
                provider=PROVIDER,
                status_code=resp.status_code,
            )

        try:
            translated = resp.json()["translatedText"]
        except (ValueError, KeyError, TypeError) as e:
            raise TranslationProviderError(
                "LibreTranslate returned an unexpected response", provider=PROVIDER
            ) from e

        log_external_call("translate", PROVIDER, elapsed_ms, True)
        self.cache.put(text, source, target, translated)
        return translated

    async def check_health(self) -> bool:
        """GET /languages 可达即视为健康"""
        try:
            async with self._client() as client:
                resp = await client.get("/languages")
            return resp.status_code == 200
        except httpx.RequestError as e:
            logger.warning(f"LibreTranslate health check failed: {e}")
            return False


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP {resp.status_code}"
