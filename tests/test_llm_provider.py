import json

import pytest

from langchat.core.utils.config import Settings
from langchat.core.utils.deadline import CancellationError, Deadline
from langchat.providers.llm import client_from_settings, create_client
from langchat.providers.llm.base import (
    Message,
    ModelRateLimitError,
    ModelResponseError,
    ModelRetryExhaustedError,
    RetryConfig,
    Role,
    TextPart,
    ToolCallPart,
)
from langchat.providers.llm.openai_compat import OpenAICompatibleClient
from langchat.providers.llm.openrouter import OpenRouterClient


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, lines=()):
        self.status_code = status_code
        self._payload = payload
        self._lines = list(lines)
        self.text = json.dumps(payload) if payload is not None else ""
        self.encoding = None

    def json(self):
        return self._payload

    def iter_lines(self, decode_unicode=False):
        for line in self._lines:
            if decode_unicode and isinstance(line, bytes):
                line = line.decode(self.encoding or "ISO-8859-1")
            yield line

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_backoff_jitter_range(monkeypatch):
    config = RetryConfig(initial_delay=1.0, max_delay=10.0, backoff_multiplier=2.0, jitter_ratio=0.25)
    client = OpenAICompatibleClient(api_key="test", model="demo", retry_config=config)

    captured = {}

    def fake_uniform(low: float, high: float) -> float:
        captured["low"] = low
        captured["high"] = high
        return high

    monkeypatch.setattr("langchat.providers.llm.base.random.uniform", fake_uniform)

    delay = client._calculate_delay(3)

    assert delay == pytest.approx(5.0)
    assert captured["low"] == pytest.approx(3.0)
    assert captured["high"] == pytest.approx(5.0)


def test_error_mapping():
    client = OpenAICompatibleClient(api_key="test", model="demo")

    assert isinstance(client._error_from_status(429, "Too Many Requests"), ModelRateLimitError)
    assert isinstance(client._error_from_status(500, "Server error"), ModelResponseError)


def test_tool_call_parsing(monkeypatch):
    client = OpenAICompatibleClient(api_key="test", model="demo")
    captured = {}

    def fake_post(payload, *, deadline, extra_headers=None):
        captured.update(payload)
        return {
            "choices": [
                {
                    "message": {
                        "content": "Searching ",
                        "tool_calls": [
                            {
                                "id": "call_1",
                                "function": {"name": "search", "arguments": {"query": "greet"}},
                            },
                            {"function": {"name": "echo"}},
                        ],
                    }
                }
            ]
        }

    monkeypatch.setattr(client, "_post", fake_post)
    tools = [{"type": "function", "function": {"name": "search", "parameters": {"type": "object"}}}]

    completion = client.generate([Message.text(Role.HUMAN, "search for greet")], tools=tools)

    assert captured["tools"] == tools
    assert captured["tool_choice"] == "auto"
    assert captured["messages"] == [{"role": "user", "content": "search for greet"}]
    assert completion.text == "Searching"
    assert [(c.id, c.name, c.arguments) for c in completion.tool_calls] == [
        ("call_1", "search", '{"query": "greet"}'),
        ("call_1", "echo", "{}"),
    ]


def test_malformed_response_raises_response_error(monkeypatch):
    client = OpenAICompatibleClient(api_key="test", model="demo")
    monkeypatch.setattr(client, "_post", lambda payload, *, deadline, extra_headers=None: {"choices": []})

    with pytest.raises(ModelResponseError):
        client.generate([Message.text(Role.HUMAN, "hi")])


def test_retryable_status_exhausts_retries(monkeypatch):
    client = OpenAICompatibleClient(
        api_key="test",
        model="demo",
        retry_config=RetryConfig(max_retries=2, initial_delay=0.0),
    )
    attempts = []

    def fake_post(*args, **kwargs):
        attempts.append(kwargs["timeout"])
        return _FakeResponse(503, {"error": "busy"})

    monkeypatch.setattr("langchat.providers.llm.base.requests.post", fake_post)

    with pytest.raises(ModelRetryExhaustedError):
        client.generate([Message.text(Role.HUMAN, "hi")])
    assert len(attempts) == 2


def test_cancelled_deadline_prevents_request(monkeypatch):
    client = OpenAICompatibleClient(api_key="test", model="demo")
    monkeypatch.setattr(
        "langchat.providers.llm.base.requests.post",
        lambda *a, **k: pytest.fail("request must not be sent"),
    )
    deadline = Deadline.never()
    deadline.cancel()

    with pytest.raises(CancellationError):
        client.generate([Message.text(Role.HUMAN, "hi")], deadline=deadline)


def test_streaming_forwards_deltas_and_collects_tool_calls(monkeypatch):
    client = OpenAICompatibleClient(api_key="test", model="demo")
    events = [
        {"choices": [{"delta": {"content": "Hel"}}]},
        {"choices": [{"delta": {"content": "lo"}}]},
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "c9", "function": {"name": "ec"}}]}}]},
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"name": "ho", "arguments": "{}"}}]}}]},
    ]
    lines = [f"data: {json.dumps(event)}" for event in events] + ["", "data: [DONE]"]
    sent = {}

    def fake_post(url, **kwargs):
        sent.update(json.loads(kwargs["data"]))
        assert kwargs["stream"] is True
        return _FakeResponse(lines=lines)

    monkeypatch.setattr("langchat.providers.llm.base.requests.post", fake_post)
    chunks = []

    completion = client.generate([Message.text(Role.HUMAN, "hi")], on_chunk=chunks.append)

    assert sent["stream"] is True
    assert chunks == [b"Hel", b"lo"]
    assert completion.text == "Hello"
    assert [(c.id, c.name) for c in completion.tool_calls] == [("c9", "echo")]


def test_message_payload_wire_format():
    call_message = Message(Role.AI, (TextPart("checking"), ToolCallPart("c1", "echo", '{"input": "x"}')))
    result_message = Message.tool_result("c1", "echo", "echo:x")

    assert Message.text(Role.SYSTEM, "be nice").to_payload() == {"role": "system", "content": "be nice"}
    assert call_message.to_payload() == {
        "role": "assistant",
        "content": "checking",
        "tool_calls": [
            {"id": "c1", "type": "function", "function": {"name": "echo", "arguments": '{"input": "x"}'}}
        ],
    }
    assert result_message.to_payload() == {
        "role": "tool",
        "tool_call_id": "c1",
        "name": "echo",
        "content": "echo:x",
    }


def test_create_client_rejects_unknown_provider():
    with pytest.raises(ValueError):
        create_client("nonexistent", "key", "model")


def test_create_client_drops_routing_options_for_plain_providers():
    client = create_client("deepseek", "key", "deepseek-chat", provider_only=["X"], timeout=9.0)

    assert isinstance(client, OpenAICompatibleClient)
    assert not isinstance(client, OpenRouterClient)
    assert client.base_url == "https://api.deepseek.com/v1"
    assert client.timeout == 9.0


def test_openrouter_payload_includes_provider_preferences():
    client = create_client(
        "openrouter",
        "key",
        "meta/llama",
        provider_only=["Cerebras"],
        provider_config={"priority": ["Cerebras"]},
        default_headers={"HTTP-Referer": "https://example.com"},
    )

    payload = client._prepare_payload([Message.text(Role.HUMAN, "hi")])
    headers = client._build_headers()

    assert payload["provider"] == {"priority": ["Cerebras"], "only": ["Cerebras"]}
    assert headers["Authorization"] == "Bearer key"
    assert headers["HTTP-Referer"] == "https://example.com"


def test_client_from_settings_uses_configured_provider():
    settings = Settings(provider="ollama", model="llama3", request_timeout=30.0)

    client = client_from_settings(settings)

    assert client.base_url == "http://localhost:11434/v1"
    assert client.model == "llama3"
    assert client.timeout == 30.0
    assert "Authorization" not in client._build_headers()


def test_streaming_decodes_multibyte_text_as_utf8(monkeypatch):
    client = OpenAICompatibleClient(api_key="test", model="demo")
    event = {"choices": [{"delta": {"content": "你好 👋"}}]}
    lines = [f"data: {json.dumps(event, ensure_ascii=False)}".encode("utf-8"), b"data: [DONE]"]
    monkeypatch.setattr(
        "langchat.providers.llm.base.requests.post",
        lambda url, **kwargs: _FakeResponse(lines=lines),
    )
    chunks = []

    completion = client.generate([Message.text(Role.HUMAN, "hi")], on_chunk=chunks.append)

    assert completion.text == "你好 👋"
    assert b"".join(chunks).decode("utf-8") == "你好 👋"
