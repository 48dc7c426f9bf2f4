from __future__ import annotations

import datetime as dt
from uuid import UUID

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, relationship

from switchyard.schemas.switching import SWITCH_REASON_MAX_LENGTH

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ProviderSession(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    会话在某个 Provider/模型上的一段连续使用区间。

    - 同一会话内 ordinal 从 1 开始递增，时间上首尾相接、互不重叠；
    - 任意时刻最多只有一个 ended_at 为空的 session（部分唯一索引兜底）；
    - message_count / total_* 为快照，结束时冻结。
    """

    __tablename__ = "conversation_provider_sessions"
    __table_args__ = (
        UniqueConstraint("conversation_id", "ordinal", name="uq_provider_sessions_conversation_ordinal"),
        Index(
            "uq_provider_sessions_open_per_conversation",
            "conversation_id",
            unique=True,
            postgresql_where=text("ended_at IS NULL"),
            sqlite_where=text("ended_at IS NULL"),
        ),
    )

    conversation_id: Mapped[UUID] = Column(
        PG_UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ordinal: Mapped[int] = Column(Integer, nullable=False)
    provider_name: Mapped[str] = Column(String(50), nullable=False, index=True)
    model_name: Mapped[str] = Column(String(100), nullable=False)
    switch_type: Mapped[str] = Column(
        String(16),
        nullable=False,
        doc="initial/manual/fallback",
    )
    switch_reason: Mapped[str | None] = Column(String(SWITCH_REASON_MAX_LENGTH), nullable=True)
    previous_provider_name: Mapped[str | None] = Column(String(50), nullable=True)
    previous_model_name: Mapped[str | None] = Column(String(100), nullable=True)
    started_at: Mapped[dt.datetime] = Column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[dt.datetime | None] = Column(DateTime(timezone=True), nullable=True)
    message_count: Mapped[int] = Column(Integer, nullable=False, server_default=text("0"), default=0)
    total_input_tokens: Mapped[int] = Column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    total_output_tokens: Mapped[int] = Column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    total_cost: Mapped[float] = Column(Float, nullable=False, server_default=text("0"), default=0.0)

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="sessions")

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


__all__ = ["ProviderSession"]
