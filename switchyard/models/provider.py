from __future__ import annotations

from sqlalchemy import Column, String, text
from sqlalchemy.orm import Mapped, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Provider(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """已注册的上游 Provider；name 同时作为驱动注册表里的查找键。"""

    __tablename__ = "providers"

    name: Mapped[str] = Column(String(50), unique=True, nullable=False, index=True)
    display_name: Mapped[str | None] = Column(String(100), nullable=True)
    driver: Mapped[str] = Column(
        String(32),
        nullable=False,
        server_default=text("'openai_compatible'"),
        default="openai_compatible",
        doc="驱动类型：openai_compatible / mock 等",
    )
    base_url: Mapped[str | None] = Column(String(255), nullable=True)
    status: Mapped[str] = Column(
        String(16),
        nullable=False,
        server_default=text("'active'"),
        default="active",
        doc="运营状态：active/inactive/maintenance",
    )

    models: Mapped[list["ProviderModel"]] = relationship(
        "ProviderModel",
        back_populates="provider",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ProviderModel.name",
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"


__all__ = ["Provider"]
