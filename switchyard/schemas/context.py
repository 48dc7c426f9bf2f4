from __future__ import annotations

import datetime as dt
from typing import Any

from pydantic import BaseModel, Field, model_validator

FULL_CARRY = "full_carry"
TRUNCATE_OLDEST = "truncate_oldest"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ContextPreservationPlan(BaseModel):
    """
    一次切换时的上下文保留方案。

    - 系统消息总是优先保留；
    - 其余消息从最新往最旧累加，第一条放不下的消息处停止，保留的是一段连续的「最新后缀」；
    - 方案本身只描述保留哪些消息，不会修改任何消息。
    """

    target_provider: str
    target_model: str
    context_window: int = Field(..., ge=0)
    budget_tokens: int = Field(..., ge=0)
    safety_margin: float
    strategy: str = Field(..., description="full_carry / truncate_oldest / 自定义摘要策略名")
    original_message_count: int = 0
    preserved_message_count: int = 0
    dropped_message_count: int = 0
    preserved_sequences: list[int] = Field(default_factory=list)
    system_tokens: int = 0
    preserved_tokens: int = Field(default=0, description="实际携带的 token 数（含系统消息与摘要）")
    system_prompt_exceeds_budget: bool = False
    summary: str | None = None
    summary_tokens: int = 0
    created_at: dt.datetime = Field(default_factory=_utcnow)


class SwitchRecord(BaseModel):
    """会话元数据里的一条切换日志。"""

    from_provider: str | None = None
    from_model: str | None = None
    to_provider: str
    to_model: str
    reason: str | None = None
    switch_type: str
    session_ordinal: int
    context_strategy: str | None = None
    switched_at: dt.datetime = Field(default_factory=_utcnow)


class FallbackPreference(BaseModel):
    """用户偏好的 fallback 目标；model 为空时使用该 Provider 的默认模型。"""

    provider: str = Field(..., min_length=1)
    model: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"provider": value}
        return value


class ConversationMetadata(BaseModel):
    """Conversation.metadata 的类型化视图；业务代码不直接读写原始 JSON。"""

    switch_log: list[SwitchRecord] = Field(default_factory=list)
    last_context_preservation: ContextPreservationPlan | None = None
    fallback_preferences: list[FallbackPreference] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "ContextPreservationPlan",
    "ConversationMetadata",
    "FULL_CARRY",
    "FallbackPreference",
    "SwitchRecord",
    "TRUNCATE_OLDEST",
]
