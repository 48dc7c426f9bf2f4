from __future__ import annotations

import datetime as dt
from typing import ClassVar

from pydantic import BaseModel, Field


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ProviderSwitched(BaseModel):
    """会话成功切换到新的 Provider/模型后发出（仅在提交之后）。"""

    event_name: ClassVar[str] = "provider_switched"

    conversation_id: str
    from_provider: str | None = None
    to_provider: str
    from_model: str | None = None
    to_model: str
    reason: str | None = None
    switch_type: str
    timestamp: dt.datetime = Field(default_factory=_utcnow)


class CostCalculated(BaseModel):
    """一条消息的费用入账后发出。"""

    event_name: ClassVar[str] = "cost_calculated"

    conversation_id: str
    provider: str
    model: str
    cost: float
    currency: str
    input_tokens: int = 0
    output_tokens: int = 0
    timestamp: dt.datetime = Field(default_factory=_utcnow)


SwitchyardEvent = ProviderSwitched | CostCalculated


__all__ = ["CostCalculated", "ProviderSwitched", "SwitchyardEvent"]
