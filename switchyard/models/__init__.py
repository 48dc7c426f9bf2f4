from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from .conversation import Conversation
from .cost_record import CostRecord
from .message import Message
from .model_pricing import ModelPricingRecord
from .provider import Provider
from .provider_model import ProviderModel
from .provider_session import ProviderSession
from .provider_switch_attempt import ProviderSwitchAttempt

__all__ = [
    "Base",
    "Conversation",
    "CostRecord",
    "Message",
    "ModelPricingRecord",
    "Provider",
    "ProviderModel",
    "ProviderSession",
    "ProviderSwitchAttempt",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
]
