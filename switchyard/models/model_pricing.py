from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, Column, Date, Float, Index, String, text
from sqlalchemy.orm import Mapped

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ModelPricingRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    定价覆盖（优先级最高的定价来源）。

    每个 (provider, model) 只有一条 is_current=true 的记录；被替换的旧记录保留用于审计。
    """

    __tablename__ = "model_pricing"
    __table_args__ = (
        Index("ix_model_pricing_provider_model", "provider_name", "model_name"),
        Index(
            "uq_model_pricing_current",
            "provider_name",
            "model_name",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
    )

    provider_name: Mapped[str] = Column(String(50), nullable=False)
    model_name: Mapped[str] = Column(String(100), nullable=False)
    input_rate: Mapped[float | None] = Column(Float, nullable=True)
    output_rate: Mapped[float | None] = Column(Float, nullable=True)
    flat_rate: Mapped[float | None] = Column(Float, nullable=True)
    unit: Mapped[str] = Column(String(32), nullable=False)
    currency: Mapped[str] = Column(String(3), nullable=False)
    billing_model: Mapped[str] = Column(String(32), nullable=False)
    effective_date: Mapped[dt.date | None] = Column(Date, nullable=True)
    is_current: Mapped[bool] = Column(
        Boolean,
        nullable=False,
        server_default=text("true"),
        default=True,
    )


__all__ = ["ModelPricingRecord"]
