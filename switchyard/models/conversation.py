from __future__ import annotations

import datetime as dt

from sqlalchemy import Column, DateTime, Float, Integer, String, text
from sqlalchemy.orm import Mapped, relationship

from switchyard.db.types import JSONBCompat
from switchyard.schemas.context import ContextPreservationPlan, ConversationMetadata, FallbackPreference

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Conversation(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    一个跨 Provider 的会话。

    - provider_name / model_name 是当前绑定，只在切换提交时修改；
    - total_* 为运行总计，每条消息记账后累加；
    - metadata 只通过 ConversationMetadata 读写（切换日志 + 最近一次上下文保留方案）。
    """

    __tablename__ = "conversations"

    title: Mapped[str | None] = Column(String(255), nullable=True)
    provider_name: Mapped[str] = Column(String(50), nullable=False, index=True)
    model_name: Mapped[str] = Column(String(100), nullable=False)
    total_cost: Mapped[float] = Column(
        Float, nullable=False, server_default=text("0"), default=0.0
    )
    total_input_tokens: Mapped[int] = Column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    total_output_tokens: Mapped[int] = Column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    total_messages: Mapped[int] = Column(
        Integer, nullable=False, server_default=text("0"), default=0
    )
    last_activity_at: Mapped[dt.datetime | None] = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSONBCompat(), nullable=True)

    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.sequence",
    )
    sessions: Mapped[list["ProviderSession"]] = relationship(
        "ProviderSession",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ProviderSession.ordinal",
    )

    def get_metadata(self) -> ConversationMetadata:
        return ConversationMetadata.model_validate(self.metadata_json or {})

    def set_metadata(self, meta: ConversationMetadata) -> None:
        # 重新赋值整个 dict，JSON 列的原地修改不会被 ORM 追踪。
        self.metadata_json = meta.model_dump(mode="json")

    @property
    def last_context_preservation(self) -> ContextPreservationPlan | None:
        return self.get_metadata().last_context_preservation

    @property
    def fallback_preferences(self) -> list[FallbackPreference]:
        return self.get_metadata().fallback_preferences


__all__ = ["Conversation"]
