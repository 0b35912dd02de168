"""OpenRouter API client implementation."""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from .base import Message, RetryConfig
from .openai_compat import OpenAICompatibleClient

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterClient(OpenAICompatibleClient):
    """OpenAI-compatible client adding OpenRouter provider routing preferences."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 120.0,
        temperature: float = 0.2,
        max_tokens: int | None = None,
        retry_config: RetryConfig | None = None,
        provider_only: Sequence[str] | None = None,
        provider_config: Dict[str, Any] | None = None,
        default_headers: Dict[str, str] | None = None,
    ) -> None:
        super().__init__(
            api_key,
            model,
            base_url=base_url,
            timeout=timeout,
            temperature=temperature,
            max_tokens=max_tokens,
            retry_config=retry_config,
            default_headers=default_headers,
            provider_name="OpenRouter",
        )
        self._provider_config = self._merge_provider_config(provider_only, provider_config)

    @staticmethod
    def _merge_provider_config(
        provider_only: Sequence[str] | None,
        provider_config: Dict[str, Any] | None,
    ) -> Dict[str, Any]:
        config: Dict[str, Any] = dict(provider_config or {})
        if provider_only:
            config = {**config, "only": list(provider_only)}
        return config

    def _prepare_payload(self, messages: Sequence[Message]) -> Dict[str, Any]:
        payload = super()._prepare_payload(messages)
        if self._provider_config:
            payload["provider"] = self._provider_config
        return payload


__all__ = ["OpenRouterClient", "DEFAULT_BASE_URL"]
