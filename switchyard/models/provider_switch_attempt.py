from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ProviderSwitchAttempt(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    一次切换操作中对单个候选的尝试记录。

    同一次 switch_with_fallback 调用里的所有尝试共享 attempt_group，position 为候选顺序。
    """

    __tablename__ = "provider_switch_attempts"

    conversation_id: Mapped[UUID] = Column(
        PG_UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attempt_group: Mapped[UUID] = Column(PG_UUID(as_uuid=True), nullable=False, index=True)
    position: Mapped[int] = Column(Integer, nullable=False)
    provider_name: Mapped[str] = Column(String(50), nullable=False)
    model_name: Mapped[str | None] = Column(String(100), nullable=True)
    succeeded: Mapped[bool] = Column(
        Boolean, nullable=False, server_default=text("false"), default=False
    )
    error_type: Mapped[str | None] = Column(String(64), nullable=True)
    error_message: Mapped[str | None] = Column(Text, nullable=True)


__all__ = ["ProviderSwitchAttempt"]
