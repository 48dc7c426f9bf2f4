from __future__ import annotations

from uuid import UUID

from sqlalchemy import Column, Float, ForeignKey, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class CostRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """单条消息的费用流水，按记账当时生效的定价计算，之后不再重算。"""

    __tablename__ = "cost_records"

    conversation_id: Mapped[UUID] = Column(
        PG_UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    session_id: Mapped[UUID] = Column(
        PG_UUID(as_uuid=True),
        ForeignKey("conversation_provider_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    message_id: Mapped[UUID | None] = Column(
        PG_UUID(as_uuid=True),
        ForeignKey("messages.id", ondelete="SET NULL"),
        nullable=True,
    )
    provider_name: Mapped[str] = Column(String(50), nullable=False, index=True)
    model_name: Mapped[str] = Column(String(100), nullable=False)
    input_tokens: Mapped[int] = Column(Integer, nullable=False, server_default=text("0"), default=0)
    output_tokens: Mapped[int] = Column(Integer, nullable=False, server_default=text("0"), default=0)
    input_cost: Mapped[float] = Column(Float, nullable=False, server_default=text("0"), default=0.0)
    output_cost: Mapped[float] = Column(Float, nullable=False, server_default=text("0"), default=0.0)
    total_cost: Mapped[float] = Column(Float, nullable=False, server_default=text("0"), default=0.0)
    currency: Mapped[str] = Column(String(3), nullable=False)
    pricing_source: Mapped[str] = Column(
        String(32),
        nullable=False,
        doc="stored_override / driver_static_default / universal_fallback",
    )
    unit: Mapped[str] = Column(String(32), nullable=False)


__all__ = ["CostRecord"]
