from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

from pydantic import BaseModel, Field

from .static_pricing import lookup_static_pricing


class DriverError(Exception):
    """驱动调用上游失败（网络错误、非 2xx 响应或无法解析的响应体）。"""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ModelInfo(BaseModel):
    id: str
    context_window: int | None = None
    capabilities: list[str] = Field(default_factory=list)


class CredentialCheck(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class DriverResponse(BaseModel):
    content: str = ""
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: str | None = None
    model: str | None = None


class ProviderDriver(ABC):
    """
    上游 Provider 的最小接口。

    切换编排只依赖 get_available_models / validate_credentials；send_message 供调用方发送
    经过上下文规划后的消息列表。
    """

    #: 该驱动使用的静态价格表名（openai / gemini / xai / local），为空表示没有内置价格。
    pricing_table: str | None = None

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def send_message(
        self,
        context: Sequence[dict[str, Any]],
        options: dict[str, Any] | None = None,
    ) -> DriverResponse:
        raise NotImplementedError

    @abstractmethod
    def get_available_models(self) -> list[ModelInfo]:
        raise NotImplementedError

    @abstractmethod
    def validate_credentials(self) -> CredentialCheck:
        raise NotImplementedError

    def get_static_pricing(self, model: str) -> dict[str, Any] | None:
        if not self.pricing_table:
            return None
        return lookup_static_pricing(self.pricing_table, model)

    def close(self) -> None:
        """Release any client resources held by the driver."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


__all__ = ["CredentialCheck", "DriverError", "DriverResponse", "ModelInfo", "ProviderDriver", "TokenUsage"]
