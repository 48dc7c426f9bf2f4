"""
Pydantic models shared by the switching, pricing and analytics layers.
"""

from .analysis import (
    BreakdownEntry,
    CostAnalysis,
    CostTrendPoint,
    EfficiencyEntry,
    EfficiencyRanking,
    FallbackAnalysis,
    FallbackTransition,
    HistoryFilters,
    ProviderCostBreakdown,
    ProviderStatistics,
    Recommendation,
    SwitchingImpact,
)
from .context import (
    FULL_CARRY,
    TRUNCATE_OLDEST,
    ContextPreservationPlan,
    ConversationMetadata,
    FallbackPreference,
    SwitchRecord,
)
from .events import CostCalculated, ProviderSwitched, SwitchyardEvent
from .pricing import (
    CostBreakdown,
    CostCalculationRequest,
    PricingCandidate,
    PricingCompareRequest,
    PricingComparisonEntry,
    PricingDescriptor,
    PricingHistoryItem,
    PricingOverrideRequest,
    PricingSource,
)
from .switching import (
    AutoFallbackRequest,
    AvailableModel,
    AvailableProvider,
    ConversationCreateRequest,
    ConversationResponse,
    CostRecordResponse,
    FallbackCandidate,
    FallbackPreferencesRequest,
    FallbackRequest,
    FallbackStrategy,
    MessageCreateRequest,
    MessageResponse,
    ProviderSessionResponse,
    SwitchAttemptResponse,
    SwitchOptions,
    SwitchRequest,
    SwitchType,
    TrackCostRequest,
)

__all__ = [
    "AutoFallbackRequest",
    "AvailableModel",
    "AvailableProvider",
    "BreakdownEntry",
    "ContextPreservationPlan",
    "ConversationCreateRequest",
    "ConversationMetadata",
    "ConversationResponse",
    "CostAnalysis",
    "CostBreakdown",
    "CostCalculated",
    "CostCalculationRequest",
    "CostRecordResponse",
    "CostTrendPoint",
    "EfficiencyEntry",
    "EfficiencyRanking",
    "FULL_CARRY",
    "FallbackAnalysis",
    "FallbackCandidate",
    "FallbackPreference",
    "FallbackPreferencesRequest",
    "FallbackRequest",
    "FallbackStrategy",
    "FallbackTransition",
    "HistoryFilters",
    "MessageCreateRequest",
    "MessageResponse",
    "PricingCandidate",
    "PricingCompareRequest",
    "PricingComparisonEntry",
    "PricingDescriptor",
    "PricingHistoryItem",
    "PricingOverrideRequest",
    "PricingSource",
    "ProviderCostBreakdown",
    "ProviderSessionResponse",
    "ProviderStatistics",
    "ProviderSwitched",
    "Recommendation",
    "SwitchAttemptResponse",
    "SwitchOptions",
    "SwitchRecord",
    "SwitchRequest",
    "SwitchType",
    "SwitchingImpact",
    "SwitchyardEvent",
    "TRUNCATE_OLDEST",
    "TrackCostRequest",
]
