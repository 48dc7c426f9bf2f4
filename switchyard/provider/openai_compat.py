"""
OpenAI 兼容协议的驱动。

OpenAI、xAI 以及大多数本地推理服务（Ollama / LM Studio / vLLM）都暴露
`/models` 与 `/chat/completions` 两个端点，这里只依赖这两个端点。
"""

from __future__ import annotations

from typing import Any, Sequence

import httpx

from switchyard.logging_config import logger
from switchyard.settings import settings

from .driver import CredentialCheck, DriverError, DriverResponse, ModelInfo, ProviderDriver, TokenUsage


def _context_window_of(raw_model: dict[str, Any]) -> int | None:
    value = (
        raw_model.get("context_window")
        or raw_model.get("context_length")
        or raw_model.get("max_context")
    )
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _capabilities_of(raw_model: dict[str, Any]) -> list[str]:
    raw_caps = raw_model.get("capabilities") or []
    if isinstance(raw_caps, str):
        return [raw_caps.lower()]
    if isinstance(raw_caps, list):
        return [str(c).lower() for c in raw_caps if isinstance(c, str)]
    return []


class OpenAICompatibleDriver(ProviderDriver):
    def __init__(
        self,
        name: str,
        *,
        base_url: str,
        api_key: str | None = None,
        pricing_table: str | None = None,
        models_path: str = "/models",
        chat_completions_path: str = "/chat/completions",
        require_api_key: bool = True,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(name)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.pricing_table = pricing_table
        self.models_path = models_path
        self.chat_completions_path = chat_completions_path
        self.require_api_key = require_api_key
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.driver_timeout_seconds,
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise DriverError(self.name, f"request to {path} failed: {exc}") from exc

        if resp.status_code >= 400:
            raise DriverError(
                self.name,
                f"{path} returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise DriverError(self.name, f"{path} returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise DriverError(self.name, f"{path} returned an unexpected payload")
        return body

    def get_available_models(self) -> list[ModelInfo]:
        body = self._request("GET", self.models_path)
        items = body.get("data") or body.get("models") or []
        models: list[ModelInfo] = []
        for raw in items:
            if not isinstance(raw, dict):
                continue
            model_id = raw.get("id") or raw.get("name")
            if not isinstance(model_id, str):
                continue
            models.append(
                ModelInfo(
                    id=model_id,
                    context_window=_context_window_of(raw),
                    capabilities=_capabilities_of(raw),
                )
            )
        return models

    def validate_credentials(self) -> CredentialCheck:
        if self.require_api_key and not self.api_key:
            return CredentialCheck(valid=False, errors=["API key is not configured"])
        try:
            self._request("GET", self.models_path)
        except DriverError as exc:
            if exc.status_code in (401, 403):
                return CredentialCheck(valid=False, errors=[f"credentials rejected (HTTP {exc.status_code})"])
            logger.warning("Provider %s: credential check failed: %s", self.name, exc)
            return CredentialCheck(valid=False, errors=[str(exc)])
        return CredentialCheck(valid=True)

    def send_message(
        self,
        context: Sequence[dict[str, Any]],
        options: dict[str, Any] | None = None,
    ) -> DriverResponse:
        opts = dict(options or {})
        model = opts.pop("model", None)
        if not model:
            raise DriverError(self.name, "send_message requires options['model']")
        payload: dict[str, Any] = {"model": model, "messages": list(context)}
        payload.update(opts)

        body = self._request("POST", self.chat_completions_path, json=payload)
        choices = body.get("choices") or []
        first = choices[0] if choices and isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        usage = body.get("usage") or {}
        return DriverResponse(
            content=str(message.get("content") or ""),
            token_usage=TokenUsage(
                input_tokens=int(usage.get("prompt_tokens") or 0),
                output_tokens=int(usage.get("completion_tokens") or 0),
            ),
            finish_reason=first.get("finish_reason"),
            model=body.get("model") or model,
        )

    def close(self) -> None:
        self._client.close()


__all__ = ["OpenAICompatibleDriver"]
