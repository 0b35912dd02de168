"""Message model and abstractions for LLM providers."""
from __future__ import annotations

import json
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

import requests

from ...core.utils.deadline import CancellationError, Deadline
from ...core.utils.logger import get_logger

LOGGER = get_logger(__name__)

ChunkSink = Callable[[bytes], None]


class Role(str, Enum):
    SYSTEM = "system"
    HUMAN = "human"
    AI = "ai"
    TOOL = "tool"


_WIRE_ROLES = {
    Role.SYSTEM: "system",
    Role.HUMAN: "user",
    Role.AI: "assistant",
    Role.TOOL: "tool",
}


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ToolCallPart:
    """Tool invocation requested by the model; ``arguments`` is the raw JSON string."""

    id: str
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class ToolResultPart:
    call_id: str
    name: str
    content: str


Part = Union[TextPart, ToolCallPart, ToolResultPart]


@dataclass(frozen=True)
class Message:
    """One entry of the conversation timeline; part order is significant."""

    role: Role
    parts: Tuple[Part, ...] = ()

    @classmethod
    def text(cls, role: Role, text: str) -> "Message":
        return cls(role=role, parts=(TextPart(text),))

    @classmethod
    def tool_result(cls, call_id: str, name: str, content: str) -> "Message":
        return cls(role=Role.TOOL, parts=(ToolResultPart(call_id=call_id, name=name, content=content),))

    @property
    def first_text(self) -> Optional[str]:
        for part in self.parts:
            if isinstance(part, TextPart):
                return part.text
        return None

    @property
    def tool_calls(self) -> List[ToolCallPart]:
        return [part for part in self.parts if isinstance(part, ToolCallPart)]

    @property
    def tool_results(self) -> List[ToolResultPart]:
        return [part for part in self.parts if isinstance(part, ToolResultPart)]

    def to_payload(self) -> Dict[str, Any]:
        """Render the message in the OpenAI chat-completions wire format."""
        payload: Dict[str, Any] = {"role": _WIRE_ROLES[self.role]}
        if self.role is Role.TOOL:
            result = self.tool_results[0] if self.tool_results else None
            if result is not None:
                payload["tool_call_id"] = result.call_id
                payload["name"] = result.name
                payload["content"] = result.content
            return payload
        texts = [part.text for part in self.parts if isinstance(part, TextPart)]
        payload["content"] = "".join(texts) if texts else None
        calls = self.tool_calls
        if calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in calls
            ]
        return payload


@dataclass(frozen=True)
class ToolCall:
    """Single tool/function invocation requested by the model."""

    id: str
    name: str
    arguments: str = "{}"


@dataclass
class Completion:
    """Generated text and structured tool-call requests of one model call."""

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    initial_delay: float = 0.5
    max_delay: float = 5.0
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.1
    retryable_status_codes: set[int] = field(default_factory=lambda: {429, 500, 502, 503, 504})


class ModelInvocationError(RuntimeError):
    """Raised when the model backend fails to produce a completion."""


class ModelRateLimitError(ModelInvocationError):
    """Raised when the provider reports a rate limit condition."""


class ModelTimeoutError(ModelInvocationError):
    """Raised when a request times out before the provider responds."""


class ModelConnectionError(ModelInvocationError):
    """Raised when the client is unable to reach the provider."""


class ModelResponseError(ModelInvocationError):
    """Raised when the provider returns a malformed or error response."""


class ModelRetryExhaustedError(ModelInvocationError):
    """Raised when retry attempts are exhausted without success."""


class LLMClient(Protocol):
    """Protocol for the model gateway consumed by the orchestration core."""

    def generate(
        self,
        messages: Sequence[Message],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        on_chunk: Optional[ChunkSink] = None,
        deadline: Optional[Deadline] = None,
    ) -> Completion:
        """Produce a completion for ``messages``; stream text deltas to ``on_chunk``."""
        ...


class HTTPChatLLMClient(ABC):
    """Common HTTP/JSON client functionality shared by provider implementations."""

    _COMPLETIONS_PATH = "/chat/completions"

    def __init__(
        self,
        provider_name: str,
        api_key: Optional[str],
        model: str,
        *,
        base_url: str,
        timeout: float = 120.0,
        temperature: float = 0.2,
        max_tokens: int | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._provider_name = provider_name
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.retry_config = retry_config or RetryConfig()

    def configure_retry(self, retry_config: RetryConfig) -> None:
        """Configure retry behavior."""
        self.retry_config = retry_config

    def configure_timeout(self, timeout: float) -> None:
        """Configure request timeout."""
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    def _request_url(self) -> str:
        return f"{self.base_url}{self._COMPLETIONS_PATH}"

    def _build_headers(self, extra_headers: Dict[str, str] | None = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def _error_from_status(self, status_code: int, response_text: str) -> ModelInvocationError:
        message = f"{self._provider_name} API error {status_code}: {response_text}"
        if status_code == 429:
            return ModelRateLimitError(message)
        if status_code in {408, 504}:
            return ModelTimeoutError(message)
        if status_code in {502, 503}:
            return ModelConnectionError(message)
        return ModelResponseError(message)

    def _calculate_delay(self, attempt: int) -> float:
        base_delay = min(
            self.retry_config.max_delay,
            self.retry_config.initial_delay * (self.retry_config.backoff_multiplier ** (attempt - 1)),
        )
        if base_delay <= 0:
            return 0.0
        jitter_ratio = max(0.0, self.retry_config.jitter_ratio)
        if jitter_ratio == 0:
            return base_delay
        jitter_span = base_delay * jitter_ratio
        lower = max(0.0, base_delay - jitter_span)
        upper = base_delay + jitter_span
        return random.uniform(lower, upper)

    def _wrap_transport_error(self, exc: Exception, deadline: Deadline) -> Exception:
        if isinstance(exc, requests.Timeout):
            if deadline.expired:
                return CancellationError(f"{self._provider_name} request exceeded the call deadline")
            return ModelTimeoutError(f"{self._provider_name} request timed out: {exc}")
        return ModelConnectionError(f"{self._provider_name} connection failed: {exc}")

    def _decode_json(self, response: requests.Response) -> Dict[str, Any]:
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise ModelResponseError(f"Invalid JSON response from {self._provider_name} API") from exc

    def _sleep_before_retry(self, attempt: int, deadline: Deadline) -> None:
        delay = self._calculate_delay(attempt)
        bounded = deadline.clamp(delay) or 0.0
        time.sleep(bounded)
        deadline.check(f"{self._provider_name} request")

    def _post(
        self,
        payload: Dict[str, Any],
        *,
        deadline: Deadline,
        extra_headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        url = self._request_url()
        headers = self._build_headers(extra_headers)
        body = json.dumps(payload)
        last_error: ModelInvocationError | None = None

        for attempt in range(1, self.retry_config.max_retries + 1):
            deadline.check(f"{self._provider_name} request")
            try:
                response = requests.post(
                    url,
                    headers=headers,
                    data=body,
                    timeout=deadline.clamp(self.timeout),
                )

                if response.status_code in self.retry_config.retryable_status_codes:
                    error = self._error_from_status(response.status_code, response.text)
                    last_error = error
                    if attempt == self.retry_config.max_retries:
                        raise ModelRetryExhaustedError(
                            f"{self._provider_name} request exhausted retries: {error}"
                        ) from error
                    LOGGER.debug("%s returned %s, retrying", self._provider_name, response.status_code)
                    self._sleep_before_retry(attempt, deadline)
                    continue

                if response.status_code >= 400:
                    raise self._error_from_status(response.status_code, response.text)

                return self._decode_json(response)

            except (requests.Timeout, requests.ConnectionError) as exc:
                wrapped = self._wrap_transport_error(exc, deadline)
                if isinstance(wrapped, CancellationError):
                    raise wrapped from exc
                last_error = wrapped  # type: ignore[assignment]
                if attempt == self.retry_config.max_retries:
                    raise wrapped from exc
                self._sleep_before_retry(attempt, deadline)
            except requests.RequestException as exc:
                raise ModelResponseError(f"{self._provider_name} request failed: {exc}") from exc

        if last_error is None:
            message = f"{self._provider_name} request failed for an unknown reason"
            raise ModelRetryExhaustedError(message)
        raise ModelRetryExhaustedError(
            f"{self._provider_name} request failed after {self.retry_config.max_retries} attempts: {last_error}"
        ) from last_error

    # ------------------------------------------------------------------
    # High level API
    # ------------------------------------------------------------------

    @abstractmethod
    def _prepare_payload(self, messages: Sequence[Message]) -> Dict[str, Any]:
        """Return the provider-specific request payload."""

    def generate(
        self,
        messages: Sequence[Message],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        on_chunk: Optional[ChunkSink] = None,
        deadline: Optional[Deadline] = None,
        extra_headers: Dict[str, str] | None = None,
    ) -> Completion:
        deadline = deadline or Deadline.never()
        payload = self._prepare_payload(messages)
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        if on_chunk is not None:
            return self._stream(payload, on_chunk, deadline=deadline, extra_headers=extra_headers)
        data = self._post(payload, deadline=deadline, extra_headers=extra_headers)
        message = self._extract_choice_message(data, "chat response")
        content = message.get("content") or ""
        if not isinstance(content, str):
            content = str(content)
        return Completion(
            text=content.strip(),
            tool_calls=self._parse_tool_calls(message.get("tool_calls") or []),
        )

    def _stream(
        self,
        payload: Dict[str, Any],
        on_chunk: ChunkSink,
        *,
        deadline: Deadline,
        extra_headers: Dict[str, str] | None = None,
    ) -> Completion:
        payload["stream"] = True
        url = self._request_url()
        headers = self._build_headers(extra_headers)
        accumulated: List[str] = []
        pending_calls: Dict[int, Dict[str, str]] = {}

        deadline.check(f"{self._provider_name} stream")
        try:
            with requests.post(
                url,
                headers=headers,
                data=json.dumps(payload),
                timeout=deadline.clamp(self.timeout),
                stream=True,
            ) as response:
                if response.status_code >= 400:
                    raise self._error_from_status(response.status_code, response.text)
                # SSE bodies are UTF-8; without a charset requests would assume ISO-8859-1.
                response.encoding = "utf-8"

                for line in response.iter_lines(decode_unicode=True):
                    deadline.check(f"{self._provider_name} stream")
                    if not line or not line.startswith("data: "):
                        continue
                    chunk = line[len("data: "):]
                    if chunk == "[DONE]":
                        break
                    try:
                        data = json.loads(chunk)
                    except json.JSONDecodeError:
                        continue
                    self._merge_tool_call_deltas(data, pending_calls)
                    delta = self._parse_stream_delta(data)
                    if not delta:
                        continue
                    accumulated.append(delta)
                    on_chunk(delta.encode("utf-8"))
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise self._wrap_transport_error(exc, deadline) from exc
        except requests.RequestException as exc:
            raise ModelResponseError(f"{self._provider_name} stream failed: {exc}") from exc

        tool_calls = [
            ToolCall(
                id=entry.get("id") or f"call_{index}",
                name=entry.get("name", ""),
                arguments=entry.get("arguments") or "{}",
            )
            for index, entry in sorted(pending_calls.items())
            if entry.get("name")
        ]
        return Completion(text="".join(accumulated).strip(), tool_calls=tool_calls)

    # ------------------------------------------------------------------
    # Response parsing helpers
    # ------------------------------------------------------------------

    def _extract_choice_message(self, data: Dict[str, Any], context: str) -> Dict[str, Any]:
        try:
            return data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ModelResponseError(
                f"Unexpected {self._provider_name} response structure for {context}"
            ) from exc

    def _parse_stream_delta(self, data: Dict[str, Any]) -> str | None:
        try:
            delta = data["choices"][0]["delta"].get("content")
        except (KeyError, IndexError, AttributeError, TypeError):
            return None
        if not delta:
            return None
        if isinstance(delta, str):
            return delta
        return str(delta)

    def _merge_tool_call_deltas(self, data: Dict[str, Any], pending: Dict[int, Dict[str, str]]) -> None:
        try:
            deltas = data["choices"][0]["delta"].get("tool_calls") or []
        except (KeyError, IndexError, AttributeError, TypeError):
            return
        for position, delta in enumerate(deltas):
            index = delta.get("index", position)
            entry = pending.setdefault(index, {"id": "", "name": "", "arguments": ""})
            if delta.get("id"):
                entry["id"] = delta["id"]
            function_data = delta.get("function") or {}
            if function_data.get("name"):
                entry["name"] += function_data["name"]
            if function_data.get("arguments"):
                entry["arguments"] += function_data["arguments"]

    def _parse_tool_calls(self, tool_calls_raw: Iterable[Dict[str, Any]]) -> List[ToolCall]:
        parsed: List[ToolCall] = []
        for index, call in enumerate(tool_calls_raw):
            function_data = call.get("function", {}) or {}
            name = function_data.get("name") or ""
            raw_args = function_data.get("arguments") or "{}"
            if not isinstance(raw_args, str):
                raw_args = json.dumps(raw_args)
            parsed.append(
                ToolCall(
                    id=call.get("id") or f"call_{index}",
                    name=name,
                    arguments=raw_args,
                )
            )
        return parsed


__all__ = [
    "ChunkSink",
    "Completion",
    "HTTPChatLLMClient",
    "LLMClient",
    "Message",
    "ModelConnectionError",
    "ModelInvocationError",
    "ModelRateLimitError",
    "ModelResponseError",
    "ModelRetryExhaustedError",
    "ModelTimeoutError",
    "Part",
    "RetryConfig",
    "Role",
    "TextPart",
    "ToolCall",
    "ToolCallPart",
    "ToolResultPart",
]
