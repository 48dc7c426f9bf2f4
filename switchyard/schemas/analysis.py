from __future__ import annotations

import datetime as dt
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ProviderCostBreakdown(BaseModel):
    provider: str
    total_cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    message_count: int = 0
    session_count: int = 0
    cost_per_message: float = 0.0
    cost_per_1k_tokens: float = 0.0
    percentage: float = Field(default=0.0, description="该 Provider 费用占会话总费用的百分比")


class SwitchingImpact(BaseModel):
    switch_count: int = 0
    fallback_count: int = 0
    most_expensive_provider: str | None = None
    least_expensive_provider: str | None = None
    cost_delta: float = Field(
        default=0.0,
        description="(最贵 Provider 单条费用 - 最便宜 Provider 单条费用) × 最贵 Provider 上的消息数",
    )
    beneficial_switches: int = 0
    detrimental_switches: int = 0


class EfficiencyEntry(BaseModel):
    rank: int
    provider: str
    cost_per_1k_tokens: float
    cost_per_message: float


class EfficiencyRanking(BaseModel):
    ranking: list[EfficiencyEntry] = Field(default_factory=list)
    most_efficient: str | None = None
    least_efficient: str | None = None


class CostTrendPoint(BaseModel):
    date: dt.date
    total_cost: float
    message_count: int
    total_tokens: int


class Recommendation(BaseModel):
    type: str
    priority: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class CostAnalysis(BaseModel):
    conversation_id: str
    currency: str
    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0
    total_messages: int = 0
    provider_breakdown: list[ProviderCostBreakdown] = Field(default_factory=list)
    switching_impact: SwitchingImpact = Field(default_factory=SwitchingImpact)
    efficiency: EfficiencyRanking = Field(default_factory=EfficiencyRanking)
    cost_trend: list[CostTrendPoint] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)


class HistoryFilters(BaseModel):
    provider: str | None = None
    switch_type: str | None = None
    start_date: dt.datetime | None = None
    end_date: dt.datetime | None = None
    conversation_id: UUID | None = None


class BreakdownEntry(BaseModel):
    key: str
    count: int
    percentage: float
    total_cost: float = 0.0
    message_count: int = 0


class ProviderStatistics(BaseModel):
    total_sessions: int = 0
    total_messages: int = 0
    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    average_session_duration_seconds: float | None = Field(
        default=None, description="仅统计已结束的 session；没有已结束 session 时为空"
    )
    provider_breakdown: list[BreakdownEntry] = Field(default_factory=list)
    switch_type_breakdown: list[BreakdownEntry] = Field(default_factory=list)


class FallbackTransition(BaseModel):
    from_provider: str | None = None
    to_provider: str
    count: int


class FallbackAnalysis(BaseModel):
    total_fallbacks: int = 0
    total_sessions: int = 0
    fallback_rate: float = Field(default=0.0, description="fallback session 数 / session 总数，取值 0~1")
    most_common_fallback_source: str | None = None
    most_common_fallback_target: str | None = None
    transitions: list[FallbackTransition] = Field(default_factory=list)
    failed_attempts: int = 0


__all__ = [
    "BreakdownEntry",
    "CostAnalysis",
    "CostTrendPoint",
    "EfficiencyEntry",
    "EfficiencyRanking",
    "FallbackAnalysis",
    "FallbackTransition",
    "HistoryFilters",
    "ProviderCostBreakdown",
    "ProviderStatistics",
    "Recommendation",
    "SwitchingImpact",
]
