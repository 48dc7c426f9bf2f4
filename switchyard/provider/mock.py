from __future__ import annotations

from typing import Any, Iterable, Sequence

from .driver import CredentialCheck, DriverError, DriverResponse, ModelInfo, ProviderDriver, TokenUsage


class MockDriver(ProviderDriver):
    """
    本地可配置的驱动，用于开发环境和测试。

    - available=False 时 get_available_models 抛出 DriverError，模拟上游不可达；
    - credentials_valid=False 时 validate_credentials 返回无效结果；
    - send_message 按 len/4 估算 token，并回显最后一条消息。
    """

    def __init__(
        self,
        name: str,
        *,
        models: Iterable[ModelInfo | str] = (),
        available: bool = True,
        credentials_valid: bool = True,
        pricing_table: str | None = None,
        reply: str | None = None,
    ) -> None:
        super().__init__(name)
        self.models = [m if isinstance(m, ModelInfo) else ModelInfo(id=m) for m in models]
        self.available = available
        self.credentials_valid = credentials_valid
        self.pricing_table = pricing_table
        self.reply = reply
        self.calls: list[str] = []

    def get_available_models(self) -> list[ModelInfo]:
        self.calls.append("get_available_models")
        if not self.available:
            raise DriverError(self.name, "mock provider is unreachable")
        return list(self.models)

    def validate_credentials(self) -> CredentialCheck:
        self.calls.append("validate_credentials")
        if self.credentials_valid:
            return CredentialCheck(valid=True)
        return CredentialCheck(valid=False, errors=["mock credentials rejected"])

    def send_message(
        self,
        context: Sequence[dict[str, Any]],
        options: dict[str, Any] | None = None,
    ) -> DriverResponse:
        self.calls.append("send_message")
        if not self.available:
            raise DriverError(self.name, "mock provider is unreachable")
        prompt_chars = sum(len(str(item.get("content") or "")) for item in context)
        last = str(context[-1].get("content") or "") if context else ""
        content = self.reply if self.reply is not None else f"echo: {last}"
        return DriverResponse(
            content=content,
            token_usage=TokenUsage(
                input_tokens=-(-prompt_chars // 4),
                output_tokens=-(-len(content) // 4),
            ),
            finish_reason="stop",
            model=(options or {}).get("model"),
        )


__all__ = ["MockDriver"]
