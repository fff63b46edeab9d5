"""
Language Registry
支持的语言表，以及各供应商的语言代码映射
"""

from typing import TypedDict


class LanguageInfo(TypedDict, total=False):
    code: str
    label: str
    deepgram_code: str  # Deepgram 使用的代码 (与标准代码不同时)
    libretranslate_code: str  # LibreTranslate 使用的代码 (与标准代码不同时)


# 语音输入语言
INPUT_LANGUAGES: list[LanguageInfo] = [
    {"code": "fr", "label": "French"},
    {"code": "nl", "label": "Dutch"},
    {"code": "es", "label": "Spanish"},
    {"code": "de", "label": "German"},
    {"code": "it", "label": "Italian"},
    {"code": "pt", "label": "Portuguese"},
    {"code": "ru", "label": "Russian"},
    {"code": "zh", "label": "Chinese", "deepgram_code": "zh-CN"},
    {"code": "ja", "label": "Japanese"},
    {"code": "ar", "label": "Arabic"},
    {"code": "en", "label": "English"},
]

# 翻译目标语言
OUTPUT_LANGUAGES: list[LanguageInfo] = [
    {"code": "en", "label": "English"},
    {"code": "fr", "label": "French"},
    {"code": "nl", "label": "Dutch"},
    {"code": "es", "label": "Spanish"},
    {"code": "de", "label": "German"},
    {"code": "it", "label": "Italian"},
    {"code": "pt", "label": "Portuguese"},
    {"code": "ru", "label": "Russian"},
    {"code": "zh", "label": "Chinese", "libretranslate_code": "zh"},
    {"code": "ja", "label": "Japanese"},
]

# Deepgram 多语种模式 (两方对话)
DEEPGRAM_MULTILINGUAL = "multi"


def _find(code: str) -> LanguageInfo | None:
    for lang in INPUT_LANGUAGES + OUTPUT_LANGUAGES:
        if lang["code"] == code:
            return lang
    return None


def get_deepgram_language_code(code: str) -> str:
    lang = next((item for item in INPUT_LANGUAGES if item["code"] == code), None)
    return (lang or {}).get("deepgram_code", code)


def get_libretranslate_language_code(code: str) -> str:
    lang = _find(code)
    return (lang or {}).get("libretranslate_code", code)


def get_language_name(code: str) -> str:
    """Display name used in LLM prompts, e.g. 'fr' -> 'French'"""
    lang = _find(code)
    return lang["label"] if lang else code.upper()


def is_language_pair_supported(input_code: str, output_code: str) -> bool:
    input_ok = any(lang["code"] == input_code for lang in INPUT_LANGUAGES)
    output_ok = any(lang["code"] == output_code for lang in OUTPUT_LANGUAGES)
    return input_ok and output_ok
