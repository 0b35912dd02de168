"""Factory helpers for LLM providers."""
from __future__ import annotations

from typing import Any

from .base import (
    ChunkSink,
    Completion,
    HTTPChatLLMClient,
    LLMClient,
    Message,
    ModelConnectionError,
    ModelInvocationError,
    ModelRateLimitError,
    ModelResponseError,
    ModelRetryExhaustedError,
    ModelTimeoutError,
    RetryConfig,
    Role,
    TextPart,
    ToolCall,
    ToolCallPart,
    ToolResultPart,
)
from .openai_compat import DEFAULT_BASE_URL as OPENAI_DEFAULT_BASE_URL, OpenAICompatibleClient
from .openrouter import DEFAULT_BASE_URL as OPENROUTER_DEFAULT_BASE_URL, OpenRouterClient

DEEPSEEK_DEFAULT_BASE_URL = "https://api.deepseek.com/v1"
OLLAMA_DEFAULT_BASE_URL = "http://localhost:11434/v1"

_PROVIDER_MAP = {
    "openai": {
        "client": OpenAICompatibleClient,
        "default_base_url": OPENAI_DEFAULT_BASE_URL,
    },
    "deepseek": {
        "client": OpenAICompatibleClient,
        "default_base_url": DEEPSEEK_DEFAULT_BASE_URL,
        "init_kwargs": {"provider_name": "DeepSeek"},
    },
    "ollama": {
        "client": OpenAICompatibleClient,
        "default_base_url": OLLAMA_DEFAULT_BASE_URL,
        "init_kwargs": {"provider_name": "Ollama"},
    },
    "openrouter": {
        "client": OpenRouterClient,
        "default_base_url": OPENROUTER_DEFAULT_BASE_URL,
    },
}

_SHARED_KWARGS = {"timeout", "temperature", "max_tokens", "retry_config", "default_headers"}


def create_client(
    provider: str,
    api_key: str | None,
    model: str,
    base_url: str | None = None,
    **provider_kwargs: Any,
) -> LLMClient:
    key = provider.lower()
    try:
        provider_entry = _PROVIDER_MAP[key]
    except KeyError as exc:
        raise ValueError(f"Unsupported LLM provider: {provider}") from exc

    client_cls = provider_entry["client"]
    init_kwargs = dict(provider_entry.get("init_kwargs", {}))

    if key == "openrouter":
        init_kwargs.update(provider_kwargs)
    else:
        # OpenRouter routing options are meaningless for plain OpenAI-compatible endpoints.
        init_kwargs.update({k: v for k, v in provider_kwargs.items() if k in _SHARED_KWARGS})

    effective_base_url = base_url or provider_entry.get("default_base_url")
    if effective_base_url:
        init_kwargs.setdefault("base_url", effective_base_url)

    return client_cls(api_key=api_key, model=model, **init_kwargs)


def client_from_settings(settings: Any) -> LLMClient:
    """Build the configured model gateway from :class:`Settings`."""
    return create_client(
        settings.provider,
        settings.api_key,
        settings.model,
        base_url=settings.base_url,
        timeout=settings.request_timeout,
        temperature=settings.temperature,
        default_headers=settings.request_headers,
        provider_only=settings.provider_only,
        provider_config=settings.provider_config,
    )


__all__ = [
    "ChunkSink",
    "Completion",
    "DEEPSEEK_DEFAULT_BASE_URL",
    "HTTPChatLLMClient",
    "LLMClient",
    "Message",
    "ModelConnectionError",
    "ModelInvocationError",
    "ModelRateLimitError",
    "ModelResponseError",
    "ModelRetryExhaustedError",
    "ModelTimeoutError",
    "OLLAMA_DEFAULT_BASE_URL",
    "OPENAI_DEFAULT_BASE_URL",
    "OPENROUTER_DEFAULT_BASE_URL",
    "OpenAICompatibleClient",
    "OpenRouterClient",
    "RetryConfig",
    "Role",
    "TextPart",
    "ToolCall",
    "ToolCallPart",
    "ToolResultPart",
    "client_from_settings",
    "create_client",
]
