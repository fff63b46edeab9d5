"""
Session Models
实时翻译会话与转录片段
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.core.types import UUID

# Session.mode
MODE_ONE_WAY = "one-way"
MODE_TWO_WAY = "two-way"

# Session.polishing_status
POLISHING_IDLE = "idle"
POLISHING_PROCESSING = "processing"
POLISHING_ERROR = "error"

# Segment.translation_direction
DIRECTION_A_TO_B = "A_to_B"
DIRECTION_B_TO_A = "B_to_A"

TRANSLATION_PLACEHOLDER = "..."


class Session(Base):
    """One live recording (created lazily on the first audio chunk)"""

    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(), primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds, set at teardown
    segment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    mode: Mapped[str] = mapped_column(String(10), default=MODE_ONE_WAY)  # one-way, two-way
    input_language: Mapped[str] = mapped_column(String(10), default="fr")
    output_language: Mapped[str] = mapped_column(String(10), default="en")
    language_a: Mapped[str | None] = mapped_column(String(10), nullable=True)
    language_b: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # 润色锁与状态 (条件更新保证同一会话只有一个润色任务)
    polishing_status: Mapped[str] = mapped_column(
        String(20), default=POLISHING_IDLE
    )  # idle, processing, error
    is_polishing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_polished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_polished_index: Mapped[int] = mapped_column(Integer, default=0)

    # Relationships
    segments: Mapped[list["Segment"]] = relationship(
        "Segment",
        back_populates="session",
        order_by="[Segment.start_time, Segment.created_at]",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def is_two_way(self) -> bool:
        return self.mode == MODE_TWO_WAY and bool(self.language_a) and bool(self.language_b)


class Segment(Base):
    """One final transcript unit and its translations"""

    __tablename__ = "segments"

    id: Mapped[uuid.UUID] = mapped_column(UUID(), primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_time: Mapped[float] = mapped_column(Float, default=0.0)  # seconds since session start
    end_time: Mapped[float] = mapped_column(Float, default=0.0)
    original_text: Mapped[str] = mapped_column(Text, nullable=False)
    raw_translation: Mapped[str | None] = mapped_column(Text, nullable=True)
    polished_translation: Mapped[str | None] = mapped_column(Text, nullable=True)
    detected_language: Mapped[str | None] = mapped_column(String(10), nullable=True)
    translation_direction: Mapped[str | None] = mapped_column(
        String(10), nullable=True
    )  # A_to_B, B_to_A
    is_final: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    session: Mapped["Session"] = relationship("Session", back_populates="segments")

    @property
    def display_translation(self) -> str:
        """polished -> raw -> placeholder"""
        return self.polished_translation or self.raw_translation or TRANSLATION_PLACEHOLDER
