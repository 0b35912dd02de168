"""Client for OpenAI-compatible chat-completions endpoints."""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from .base import HTTPChatLLMClient, Message, RetryConfig

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatibleClient(HTTPChatLLMClient):
    """Chat-completions client for OpenAI and API-compatible servers (vLLM, Ollama, DeepSeek)."""

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
        default_headers: Dict[str, str] | None = None,
        provider_name: str = "OpenAI",
    ) -> None:
        super().__init__(
            provider_name,
            api_key,
            model,
            base_url=base_url,
            timeout=timeout,
            temperature=temperature,
            max_tokens=max_tokens,
            retry_config=retry_config,
        )
        self._default_headers = dict(default_headers or {})

    def _build_headers(self, extra_headers: Dict[str, str] | None = None) -> Dict[str, str]:
        headers = super()._build_headers()
        if self._default_headers:
            headers.update(self._default_headers)
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def _prepare_payload(self, messages: Sequence[Message]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_payload() for message in messages],
            "temperature": self.temperature,
        }
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload


__all__ = ["OpenAICompatibleClient", "DEFAULT_BASE_URL"]
