"""
切换子系统的领域异常。

- ValidationError 家族：请求本身不合法（Provider/模型不存在、定价数据格式错误等），同步抛出，不做任何部分写入；
- ProviderUnavailableError：目标 Provider 暂时不可用，单次切换时向上抛出，fallback 流程中被捕获并记录；
- ConversationStateError：会话状态一致性被破坏（例如没有活跃 session 时记账），属于致命错误；
- FallbackExhaustedError：所有候选都失败后的聚合错误。
"""

from __future__ import annotations

from typing import Any, Sequence


class SwitchyardError(Exception):
    """Base class for every error raised by the switching subsystem."""

    error_code = "switchyard_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(SwitchyardError):
    error_code = "validation_error"


class PricingValidationError(ValidationError):
    error_code = "pricing_validation_error"

    def __init__(self, errors: Sequence[str], *, message: str | None = None) -> None:
        self.errors = list(errors)
        text = message or "Invalid pricing data: " + "; ".join(self.errors)
        super().__init__(text, details={"errors": self.errors})


class ProviderNotFoundError(ValidationError):
    error_code = "provider_not_found"

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Provider '{provider}' not found",
            details={"provider": provider},
        )
        self.provider = provider


class ProviderInactiveError(ValidationError):
    error_code = "provider_inactive"

    def __init__(self, provider: str, status: str) -> None:
        super().__init__(
            f"Provider '{provider}' is not active (status={status})",
            details={"provider": provider, "status": status},
        )
        self.provider = provider
        self.status = status


class ModelNotFoundError(ValidationError):
    error_code = "model_not_found"

    def __init__(self, provider: str, model: str | None) -> None:
        if model:
            text = f"Model '{model}' is not available on provider '{provider}'"
        else:
            text = f"Provider '{provider}' has no active model"
        super().__init__(text, details={"provider": provider, "model": model})
        self.provider = provider
        self.model = model


class InvalidSwitchRequestError(ValidationError):
    error_code = "invalid_switch_request"


class ConversationNotFoundError(ValidationError):
    error_code = "conversation_not_found"

    def __init__(self, conversation_id: Any) -> None:
        super().__init__(
            f"Conversation {conversation_id} not found",
            details={"conversation_id": str(conversation_id)},
        )
        self.conversation_id = str(conversation_id)


class ProviderUnavailableError(SwitchyardError):
    """目标 Provider 当前不可用（驱动不可达、模型未上架或凭证无效），可通过 fallback 恢复。"""

    error_code = "provider_unavailable"

    def __init__(self, provider: str, reason: str, *, model: str | None = None) -> None:
        super().__init__(
            f"Provider '{provider}' is unavailable: {reason}",
            details={"provider": provider, "model": model, "reason": reason},
        )
        self.provider = provider
        self.model = model
        self.reason = reason


class ConversationStateError(SwitchyardError):
    error_code = "conversation_state_error"


class FallbackExhaustedError(SwitchyardError):
    """所有候选 Provider 都切换失败；attempts 按尝试顺序列出每个候选及失败原因。"""

    error_code = "fallback_exhausted"

    def __init__(self, attempts: Sequence[dict[str, Any]]) -> None:
        self.attempts = [dict(item) for item in attempts]
        summary = ", ".join(
            f"{item.get('provider')}/{item.get('model') or '-'}: {item.get('reason')}"
            for item in self.attempts
        )
        super().__init__(
            f"All fallback providers failed ({summary})" if summary else "No fallback candidates given",
            details={"attempts": self.attempts},
        )


__all__ = [
    "ConversationNotFoundError",
    "ConversationStateError",
    "FallbackExhaustedError",
    "InvalidSwitchRequestError",
    "ModelNotFoundError",
    "PricingValidationError",
    "ProviderInactiveError",
    "ProviderNotFoundError",
    "ProviderUnavailableError",
    "SwitchyardError",
    "ValidationError",
]
