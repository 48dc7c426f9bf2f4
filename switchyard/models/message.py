from __future__ import annotations

from uuid import UUID

from sqlalchemy import Column, Float, ForeignKey, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Message(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """会话中的一条消息；sequence 在追加时分配，之后不再修改。"""

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence", name="uq_messages_conversation_sequence"),
    )

    conversation_id: Mapped[UUID] = Column(
        PG_UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = Column(String(16), nullable=False, doc="user/assistant/system")
    content: Mapped[str] = Column(Text, nullable=False)
    sequence: Mapped[int] = Column(Integer, nullable=False)
    token_count: Mapped[int | None] = Column(
        Integer,
        nullable=True,
        doc="驱动给出的 token 数；为空时上下文规划按 ceil(len/4) 估算",
    )
    input_tokens: Mapped[int] = Column(Integer, nullable=False, server_default=text("0"), default=0)
    output_tokens: Mapped[int] = Column(Integer, nullable=False, server_default=text("0"), default=0)
    cost: Mapped[float] = Column(Float, nullable=False, server_default=text("0"), default=0.0)
    provider_name: Mapped[str | None] = Column(String(50), nullable=True)
    model_name: Mapped[str | None] = Column(String(100), nullable=True)

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")


__all__ = ["Message"]
