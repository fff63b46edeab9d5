"""
Translation Dispatcher
统一的翻译入口: 即时路径 (LibreTranslate) + 润色路径 (LLM)

两条路径都是 text-in / text-out；错误按 InvalidAPIKeyError / TranslationProviderError /
TranslationNetworkError 分类抛出，不做自动重试。
"""

from __future__ import annotations

from app.services.instant_translator import InstantTranslator
from app.services.llm_service import LLMService, get_llm_service


class TranslationDispatcher:
    """Instant + polish translation paths"""

    def __init__(
        self,
        instant: InstantTranslator | None = None,
        llm: LLMService | None = None,
    ):
        self.instant = instant or InstantTranslator()
        self.llm = llm or get_llm_service()

    async def translate_instant(self, text: str, source_lang: str, target_lang: str) -> str:
        """低延迟翻译，空白输入返回空字符串"""
        return await self.instant.translate(text, source_lang, target_lang)

    async def translate_llm(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        api_key: str | None = None,
        model: str | None = None,
    ) -> str:
        """经 LLM 的普通翻译"""
        llm = self.llm.with_overrides(api_key, model)
        return await llm.translate(text, source_lang, target_lang)

    async def polish(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        api_key: str | None = None,
        model: str | None = None,
    ) -> str:
        """单片段润色"""
        llm = self.llm.with_overrides(api_key, model)
        return await llm.polish(text, source_lang, target_lang)

    async def polish_batch(
        self,
        texts: list[str],
        source_lang: str,
        target_lang: str,
        api_key: str | None = None,
        model: str | None = None,
    ) -> str:
        """批量润色，返回带标记的原始回复"""
        llm = self.llm.with_overrides(api_key, model)
        return await llm.polish_batch(texts, source_lang, target_lang)
