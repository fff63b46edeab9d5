"""
LLM Service
润色翻译 - OpenRouter (OpenAI 兼容接口)

两种提示词模式:
- 单片段润色: source -> target，强调译文质量
- 批量润色: 每个片段包在 [SEGMENT_n]...[END_SEGMENT_n] 标记中，一次请求完成，
  要求模型保留全部标记并在片段之间保持术语一致
"""

from __future__ import annotations

import time

import openai
from loguru import logger
from openai import AsyncOpenAI

from app.core.config import settings
from app.core.exceptions import (
    InvalidAPIKeyError,
    MissingConfigError,
    TranslationNetworkError,
    TranslationProviderError,
)
from app.core.languages import get_language_name
from app.core.logging import log_external_call

PROVIDER = "OpenRouter"


def segment_start_marker(index: int) -> str:
    """1-based marker"""
    return f"[SEGMENT_{index}]"


def segment_end_marker(index: int) -> str:
    return f"[END_SEGMENT_{index}]"


def build_batch_text(texts: list[str]) -> str:
    """把片段列表拼成带编号标记的批量输入"""
    blocks = [
        f"{segment_start_marker(i)}\n{text.strip()}\n{segment_end_marker(i)}"
        for i, text in enumerate(texts, start=1)
    ]
    return "\n\n".join(blocks)


def build_translate_prompt(source_lang: str, target_lang: str) -> str:
    source_name = get_language_name(source_lang)
    target_name = get_language_name(target_lang)
    return (
        f"Translate the following {source_name} text to {target_name}. "
        "Only output the translation, no explanations."
    )


def build_polish_prompt(source_lang: str, target_lang: str) -> str:
    source_name = get_language_name(source_lang)
    target_name = get_language_name(target_lang)
    return (
        f"Translate the following {source_name} text to {target_name} with high quality, "
        "natural phrasing, proper grammar, and excellent flow. "
        "Maintain the original meaning and nuance. "
        "Only output the translation, no explanations."
    )


def build_batch_polish_prompt(source_lang: str, target_lang: str) -> str:
    source_name = get_language_name(source_lang)
    target_name = get_language_name(target_lang)
    return f"""You are a professional translator polishing live {source_name} to {target_name} translations.
Each input segment is {source_name} speech. Produce a polished {target_name} translation for every segment.

<rules>
1. MAINTAIN ALL segment markers EXACTLY as shown: [SEGMENT_N] and [END_SEGMENT_N]
2. Polish each segment considering the FULL CONTEXT of all segments for consistency
3. Ensure consistent tone, terminology, and style across ALL segments
4. Improve grammar, naturalness, and flow while preserving the original meaning
5. Return ALL segments with the SAME marker structure - do not skip any segments
6. Output ONLY the polished segments with markers, no explanations or additional text
</rules>"""


class LLMService:
    """OpenRouter client for polished translation"""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENROUTER_API_KEY
        self.model = model or settings.DEFAULT_LLM_MODEL
        self.base_url = base_url or settings.OPENROUTER_BASE_URL
        self.timeout = timeout or settings.PROVIDER_TIMEOUT

        if self.api_key:
            self.client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,  # 重试策略由调用方决定
                default_headers={"HTTP-Referer": settings.OPENROUTER_REFERER},
            )
        else:
            self.client = None

    def with_overrides(self, api_key: str | None = None, model: str | None = None) -> LLMService:
        """客户端提供了自己的 key/model 时返回新实例，否则复用当前实例"""
        if (not api_key or api_key == self.api_key) and (not model or model == self.model):
            return self
        return LLMService(
            api_key=api_key or self.api_key,
            model=model or self.model,
            base_url=self.base_url,
            timeout=self.timeout,
        )

    async def _complete(self, system_prompt: str, user_content: str, operation: str) -> str:
        if not self.client:
            raise MissingConfigError("OPENROUTER_API_KEY")

        started = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                temperature=0.3,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            log_external_call(operation, PROVIDER, _elapsed(started), False, "invalid api key")
            raise InvalidAPIKeyError(provider=PROVIDER) from e
        except openai.APIStatusError as e:
            message = _provider_message(e)
            log_external_call(operation, PROVIDER, _elapsed(started), False, message)
            if e.status_code in (401, 403):
                raise InvalidAPIKeyError(provider=PROVIDER) from e
            raise TranslationProviderError(
                f"OpenRouter API error: {message}", provider=PROVIDER, status_code=e.status_code
            ) from e
        except openai.APIConnectionError as e:
            log_external_call(operation, PROVIDER, _elapsed(started), False, str(e))
            raise TranslationNetworkError(provider=PROVIDER, details=str(e)) from e

        log_external_call(operation, PROVIDER, _elapsed(started), True)

        content = response.choices[0].message.content if response.choices else None
        if content is None:
            raise TranslationProviderError("OpenRouter returned an empty response", provider=PROVIDER)
        return content.strip()

    async def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        """普通翻译 (即时翻译服务不可用时的替代路径)"""
        if not text.strip():
            return ""
        return await self._complete(
            build_translate_prompt(source_lang, target_lang), text, "translate"
        )

    async def polish(self, text: str, source_lang: str, target_lang: str) -> str:
        """单片段高质量翻译"""
        if not text.strip():
            return ""
        return await self._complete(build_polish_prompt(source_lang, target_lang), text, "polish")

    async def polish_batch(self, texts: list[str], source_lang: str, target_lang: str) -> str:
        """批量润色，返回模型原始回复 (由调用方按标记解析)"""
        if not texts:
            return ""
        logger.info(
            f"LLM batch polish: {len(texts)} segments ({source_lang} -> {target_lang}), model={self.model}"
        )
        return await self._complete(
            build_batch_polish_prompt(source_lang, target_lang),
            build_batch_text(texts),
            "polish_batch",
        )


def _elapsed(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def _provider_message(error: openai.APIStatusError) -> str:
    """从供应商错误体中取出可读信息"""
    body = error.body
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
        if isinstance(inner, str):
            return inner
        if body.get("message"):
            return str(body["message"])
    return error.message


def get_llm_service(api_key: str | None = None, model: str | None = None) -> LLMService:
    """Get LLM service instance"""
    return LLMService(api_key=api_key, model=model)
