from __future__ import annotations

import datetime as dt
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .context import ContextPreservationPlan, FallbackPreference

SWITCH_REASON_MAX_LENGTH = 255


def clip_reason(reason: str | None) -> str | None:
    """把切换原因截断到可落库的长度；异常文本拼出来的原因可能任意长。"""
    if reason is None or len(reason) <= SWITCH_REASON_MAX_LENGTH:
        return reason
    return reason[: SWITCH_REASON_MAX_LENGTH - 3] + "..."


class SwitchType(str, Enum):
    INITIAL = "initial"
    MANUAL = "manual"
    FALLBACK = "fallback"


class FallbackStrategy(str, Enum):
    AUTO = "auto"
    COST_OPTIMIZED = "cost_optimized"
    CAPABILITY_MATCHED = "capability_matched"
    USER_PREFERENCE = "user_preference"


class SwitchOptions(BaseModel):
    preserve_context: bool = True
    reason: str | None = Field(default="manual", max_length=SWITCH_REASON_MAX_LENGTH)
    validate_credentials: bool = True
    # 由 fallback 流程内部设置，调用方一般不需要关心。
    switch_type: SwitchType = SwitchType.MANUAL

    model_config = ConfigDict(frozen=True)


class FallbackCandidate(BaseModel):
    provider: str = Field(..., min_length=1)
    model: str | None = None


class SwitchRequest(BaseModel):
    provider: str = Field(..., min_length=1, description="目标 Provider 名称")
    model: str | None = Field(default=None, description="目标模型；为空时使用 Provider 的默认模型")
    reason: str | None = Field(default="manual", max_length=SWITCH_REASON_MAX_LENGTH)
    preserve_context: bool = True
    validate_credentials: bool = True

    def to_options(self) -> SwitchOptions:
        return SwitchOptions(
            preserve_context=self.preserve_context,
            reason=self.reason,
            validate_credentials=self.validate_credentials,
        )


class FallbackRequest(BaseModel):
    candidates: list[FallbackCandidate] = Field(..., min_length=1, description="按优先级排列的候选")
    reason: str | None = Field(default="fallback", max_length=SWITCH_REASON_MAX_LENGTH)
    max_attempts: int | None = Field(default=None, ge=1, description="最多尝试的候选数，为空表示全部尝试")
    preserve_context: bool = True
    validate_credentials: bool = True

    def to_options(self) -> SwitchOptions:
        return SwitchOptions(
            preserve_context=self.preserve_context,
            reason=self.reason,
            validate_credentials=self.validate_credentials,
            switch_type=SwitchType.FALLBACK,
        )


class AutoFallbackRequest(BaseModel):
    error: str = Field(..., min_length=1, description="触发 fallback 的上游错误描述")
    strategy: FallbackStrategy = FallbackStrategy.AUTO
    max_attempts: int | None = Field(default=None, ge=1, description="为空时使用 FALLBACK_MAX_ATTEMPTS")


class FallbackPreferencesRequest(BaseModel):
    preferences: list[FallbackPreference] = Field(default_factory=list, description="按优先级排列的偏好 Provider")


class ConversationCreateRequest(BaseModel):
    provider: str = Field(..., min_length=1)
    model: str | None = None
    title: str | None = None
    system_prompt: str | None = None


class MessageCreateRequest(BaseModel):
    role: str = Field(..., pattern="^(user|assistant|system)$")
    content: str
    token_count: int | None = Field(default=None, ge=0)


class TrackCostRequest(BaseModel):
    """驱动返回的一次调用结果；message_id 可选，用于把费用记录挂到具体消息上。"""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    content: str | None = None
    message_id: UUID | None = None


class ConversationResponse(BaseModel):
    id: UUID
    title: str | None = None
    provider_name: str
    model_name: str
    total_cost: float
    total_input_tokens: int
    total_output_tokens: int
    total_messages: int
    last_activity_at: dt.datetime | None = None
    created_at: dt.datetime
    updated_at: dt.datetime
    last_context_preservation: ContextPreservationPlan | None = None
    fallback_preferences: list[FallbackPreference] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class ProviderSessionResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    ordinal: int
    provider_name: str
    model_name: str
    switch_type: str
    switch_reason: str | None = None
    previous_provider_name: str | None = None
    previous_model_name: str | None = None
    started_at: dt.datetime
    ended_at: dt.datetime | None = None
    message_count: int
    total_input_tokens: int
    total_output_tokens: int
    total_cost: float

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class SwitchAttemptResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    attempt_group: UUID
    position: int
    provider_name: str
    model_name: str | None = None
    succeeded: bool
    error_type: str | None = None
    error_message: str | None = None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class AvailableModel(BaseModel):
    name: str
    display_name: str | None = None
    context_window: int
    is_default: bool = False
    capabilities: list[str] = Field(default_factory=list)


class AvailableProvider(BaseModel):
    name: str
    display_name: str | None = None
    driver: str
    models: list[AvailableModel] = Field(default_factory=list)


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    role: str
    content: str
    sequence: int
    token_count: int | None = None
    input_tokens: int
    output_tokens: int
    cost: float
    provider_name: str | None = None
    model_name: str | None = None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class CostRecordResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    session_id: UUID
    message_id: UUID | None = None
    provider_name: str
    model_name: str
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    currency: str
    pricing_source: str
    unit: str
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


__all__ = [
    "SWITCH_REASON_MAX_LENGTH",
    "AvailableModel",
    "AutoFallbackRequest",
    "AvailableProvider",
    "ConversationCreateRequest",
    "ConversationResponse",
    "CostRecordResponse",
    "FallbackCandidate",
    "FallbackPreferencesRequest",
    "FallbackRequest",
    "FallbackStrategy",
    "MessageCreateRequest",
    "MessageResponse",
    "ProviderSessionResponse",
    "SwitchAttemptResponse",
    "SwitchOptions",
    "SwitchRequest",
    "SwitchType",
    "TrackCostRequest",
    "clip_reason",
]
