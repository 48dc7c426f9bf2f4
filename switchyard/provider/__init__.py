"""
Provider drivers and the registry that maps provider names to them.
"""

from .driver import (
    CredentialCheck,
    DriverError,
    DriverResponse,
    ModelInfo,
    ProviderDriver,
    TokenUsage,
)
from .mock import MockDriver
from .openai_compat import OpenAICompatibleDriver
from .registry import DriverRegistry, build_default_registry

__all__ = [
    "CredentialCheck",
    "DriverError",
    "DriverRegistry",
    "DriverResponse",
    "MockDriver",
    "ModelInfo",
    "OpenAICompatibleDriver",
    "ProviderDriver",
    "TokenUsage",
    "build_default_registry",
]
