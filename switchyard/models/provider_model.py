from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, relationship

from switchyard.db.types import JSONBCompat

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ProviderModel(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Per-provider model metadata stored in the database."""

    __tablename__ = "provider_models"
    __table_args__ = (
        UniqueConstraint("provider_id", "name", name="uq_provider_models_provider_name"),
    )

    provider_id: Mapped[UUID] = Column(
        PG_UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = Column(String(100), nullable=False)
    display_name: Mapped[str | None] = Column(String(100), nullable=True)
    context_window: Mapped[int] = Column(Integer, nullable=False)
    capabilities = Column(JSONBCompat(), nullable=True)
    status: Mapped[str] = Column(
        String(16),
        nullable=False,
        server_default=text("'active'"),
        default="active",
        doc="active/inactive；inactive 的模型不能作为切换目标",
    )
    is_default: Mapped[bool] = Column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
        doc="切换时未指定模型则优先使用该 Provider 的默认模型",
    )

    provider: Mapped["Provider"] = relationship("Provider", back_populates="models")

    @property
    def is_active(self) -> bool:
        return self.status == "active"


__all__ = ["ProviderModel"]
