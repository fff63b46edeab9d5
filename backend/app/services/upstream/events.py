"""
Upstream Events
上游转录连接产生的事件 (带标签的变体)

连接只负责把供应商消息转换成这些事件；状态机与业务处理由消费方完成。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class Word:
    """单词及其语言标签 (多语种模式下才有 language)"""

    word: str
    language: str | None = None
    confidence: float = 1.0
    start: float = 0.0
    end: float = 0.0


@dataclass(frozen=True)
class UpstreamOpen:
    """连接已就绪"""


@dataclass(frozen=True)
class UpstreamTranscript:
    """转录结果 (interim 或 final)"""

    text: str
    is_final: bool = False
    words: tuple[Word, ...] = field(default_factory=tuple)
    start: float = 0.0
    duration: float = 0.0
    confidence: float = 1.0

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class UpstreamError:
    """可恢复的上游错误"""

    message: str


@dataclass(frozen=True)
class UpstreamClosed:
    """连接已关闭"""

    code: int | None = None
    reason: str = ""


UpstreamEvent = Union[UpstreamOpen, UpstreamTranscript, UpstreamError, UpstreamClosed]
