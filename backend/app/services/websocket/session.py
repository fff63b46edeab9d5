"""
WebSocket Session State
实时会话的配置与连接内状态
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, field_validator

from app.core.config import settings
from app.models.session import MODE_ONE_WAY, MODE_TWO_WAY


class LiveSessionConfig(BaseModel):
    """客户端连接参数 (WebSocket 查询参数)，未提供的 key 使用服务端配置"""

    deepgram_key: str | None = Field(default=None, alias="deepgramKey")
    deepgram_model: str = Field(default_factory=lambda: settings.DEEPGRAM_MODEL, alias="deepgramModel")
    openrouter_key: str | None = Field(default=None, alias="openRouterKey")
    openrouter_model: str = Field(
        default_factory=lambda: settings.DEFAULT_LLM_MODEL, alias="openRouterModel"
    )
    mode: str = MODE_ONE_WAY
    input_lang: str = Field(default_factory=lambda: settings.DEFAULT_INPUT_LANG, alias="inputLang")
    output_lang: str = Field(default_factory=lambda: settings.DEFAULT_OUTPUT_LANG, alias="outputLang")
    language_a: str | None = Field(default=None, alias="languageA")
    language_b: str | None = Field(default=None, alias="languageB")
    enable_polishing: bool = Field(
        default_factory=lambda: settings.ENABLE_LIVE_POLISHING, alias="enablePolishing"
    )
    polishing_interval: float = Field(
        default_factory=lambda: settings.POLISHING_INTERVAL, alias="polishingInterval", gt=0
    )

    class Config:
        populate_by_name = True

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        if v not in (MODE_ONE_WAY, MODE_TWO_WAY):
            raise ValueError(f"mode must be '{MODE_ONE_WAY}' or '{MODE_TWO_WAY}'")
        return v

    @property
    def is_two_way(self) -> bool:
        return self.mode == MODE_TWO_WAY and bool(self.language_a) and bool(self.language_b)

    @property
    def resolved_deepgram_key(self) -> str:
        return self.deepgram_key or settings.DEEPGRAM_API_KEY

    @property
    def resolved_openrouter_key(self) -> str:
        return self.openrouter_key or settings.OPENROUTER_API_KEY

    @property
    def transcription_language(self) -> str:
        """单向模式的转录语言；两方对话模式使用 language_a 作为默认值"""
        if self.is_two_way:
            return self.language_a
        return self.input_lang


@dataclass
class LiveSessionState:
    """单个 WebSocket 连接内的会话状态"""

    client_id: str
    session_id: str | None = None
    started_at: float = field(default_factory=time.monotonic)
    polishing_registered: bool = False
    # 上一个片段的结束时间，保证片段时间按到达顺序单调
    last_end_time: float = 0.0

    @property
    def has_session(self) -> bool:
        return self.session_id is not None

    def start(self, session_id: str) -> None:
        self.session_id = session_id
        self.started_at = time.monotonic()

    def elapsed(self) -> float:
        """距会话开始的秒数"""
        return time.monotonic() - self.started_at

    def stamp_segment(self, arrived_at: float, duration: float) -> tuple[float, float]:
        """按到达时刻和音频时长计算片段时间

        start 不早于上一个片段的 end，end 不早于 start。
        """
        start_time = round(max(self.last_end_time, arrived_at - duration, 0.0), 3)
        end_time = max(round(arrived_at, 3), start_time)
        self.last_end_time = end_time
        return start_time, end_time

    def duration_seconds(self) -> int:
        return int(self.elapsed())
