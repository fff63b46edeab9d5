"""
Session Schemas
会话/片段的请求与响应模型
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

# ========== Segment Schemas ==========


class SegmentResponse(BaseModel):
    """Persisted segment"""

    id: UUID
    start_time: float
    end_time: float
    original_text: str
    raw_translation: str | None = None
    polished_translation: str | None = None
    display_translation: str
    detected_language: str | None = None
    translation_direction: str | None = None

    class Config:
        from_attributes = True


# ========== Session Schemas ==========


class SessionListItem(BaseModel):
    """Session summary for history list"""

    id: UUID
    created_at: datetime
    duration: int | None = None
    segment_count: int
    mode: str
    input_language: str
    output_language: str
    language_a: str | None = None
    language_b: str | None = None
    polishing_status: str
    last_polished_at: datetime | None = None

    class Config:
        from_attributes = True


class SessionDetail(SessionListItem):
    """Session with ordered segments"""

    last_polished_index: int = 0
    segments: list[SegmentResponse] = []


# ========== Polishing Schemas ==========


class PolishRequest(BaseModel):
    """Manual polish request (keys fall back to server settings)"""

    api_key: str | None = Field(default=None, alias="openRouterKey")
    model: str | None = Field(default=None, alias="openRouterModel")

    class Config:
        populate_by_name = True


class PolishResponse(BaseModel):
    """Result of one polishing attempt"""

    status: Literal["success", "busy", "error"]
    message: str | None = None
    polished_count: int = 0


class PolishStatusResponse(BaseModel):
    """Current polishing state of a session"""

    is_polishing: bool
    status: str
    last_polished_at: datetime | None = None
