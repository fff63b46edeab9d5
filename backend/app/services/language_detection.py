"""
Language Detection
两方对话模式的语言判定

根据 Deepgram 多语种转录返回的逐词语言标签，对单条 final 结果做多数投票。
每条结果独立判定，不做跨片段的滑动平均。
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from app.models.session import DIRECTION_A_TO_B, DIRECTION_B_TO_A


@dataclass(frozen=True)
class DetectionResult:
    """语言判定结果"""

    language: str  # 主导语言
    other: str  # 另一方语言 (翻译目标)
    confidence: float


def normalize_language_code(code: str | None) -> str:
    """BCP-47 -> 主语言子标签，例如 'nl-NL' -> 'nl'，'zh-CN' -> 'zh'"""
    if not code:
        return ""
    return code.split("-")[0].lower()


def _word_language(word: Any) -> str | None:
    if isinstance(word, dict):
        return word.get("language")
    return getattr(word, "language", None)


def detect_dominant_language(
    words: Iterable[Any], language_a: str, language_b: str
) -> DetectionResult:
    """统计标记为 A / B 的词数，返回主导语言

    - 两种语言以外的标签忽略
    - 平票时取 language_a
    - 没有任何可识别标签时取 language_a，confidence 为 0
    """
    lang_a = normalize_language_code(language_a)
    lang_b = normalize_language_code(language_b)
    count_a = 0
    count_b = 0

    for word in words:
        normalized = normalize_language_code(_word_language(word))
        if not normalized:
            continue
        if normalized == lang_a:
            count_a += 1
        elif normalized == lang_b:
            count_b += 1

    total = count_a + count_b
    if total == 0:
        return DetectionResult(language=language_a, other=language_b, confidence=0.0)

    if count_a >= count_b:
        return DetectionResult(language=language_a, other=language_b, confidence=count_a / total)
    return DetectionResult(language=language_b, other=language_a, confidence=count_b / total)


detect = detect_dominant_language


def translation_direction(dominant: str, language_a: str) -> str:
    """主导语言为 A 时翻译方向为 A_to_B，否则为 B_to_A"""
    if normalize_language_code(dominant) == normalize_language_code(language_a):
        return DIRECTION_A_TO_B
    return DIRECTION_B_TO_A
