from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from langchat.agent.bootstrap import CapabilityBootstrapper
from langchat.core.utils.config import Settings
from langchat.providers.llm.base import Completion, Message, ToolCall
from langchat.skills.loader import SkillDescriptor
from langchat.tools.registry import FunctionTool, Tool

Reply = Union[Completion, str, Exception, Callable[..., Completion]]


@dataclass
class RecordedCall:
    messages: List[Message]
    tools: Optional[List[Dict[str, Any]]]
    streamed: bool


@dataclass
class FakeLLMClient:
    """Scripted model gateway: replies are consumed in order, the last one repeats."""

    replies: List[Reply] = field(default_factory=list)
    chunk_size: int = 4
    calls: List[RecordedCall] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def generate(self, messages: Sequence[Message], *, tools=None, on_chunk=None, deadline=None) -> Completion:
        with self._lock:
            self.calls.append(RecordedCall(list(messages), tools, on_chunk is not None))
            if not self.replies:
                raise AssertionError("FakeLLMClient has no scripted reply")
            reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if deadline is not None:
            deadline.check("fake generate")
        if isinstance(reply, Exception):
            raise reply
        if callable(reply) and not isinstance(reply, Completion):
            reply = reply(messages, tools=tools)
        if isinstance(reply, str):
            reply = Completion(text=reply)
        if on_chunk is not None and reply.text:
            for start in range(0, len(reply.text), self.chunk_size):
                on_chunk(reply.text[start : start + self.chunk_size].encode("utf-8"))
        return reply


def tool_call(name: str, arguments: str = "{}", call_id: str = "call_1") -> Completion:
    return Completion(text="", tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


class StaticBootstrapper(CapabilityBootstrapper):
    """Bootstrapper publishing a fixed capability set without background work."""

    def __init__(self, skills: Sequence[SkillDescriptor] = (), tools: Sequence[Tool] = ()) -> None:
        super().__init__()
        self._skills = list(skills)
        self._tools = list(tools)
        self.closed = 0

    def start(self) -> None:
        with self._lock:
            self._loaded = True
        self._done.set()

    def close(self) -> None:
        self.closed += 1
        super().close()


@pytest.fixture
def fake_client() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test", chat_timeout=10.0)


@pytest.fixture
def echo_tool() -> FunctionTool:
    return FunctionTool(
        "echo",
        lambda text: f"echo:{text}",
        description="Echo the input back.",
        parameters={"type": "object", "properties": {"input": {"type": "string"}}},
    )


@pytest.fixture
def failing_tool() -> FunctionTool:
    def _boom(_: str) -> str:
        raise RuntimeError("boom")

    return FunctionTool("explode", _boom, description="Always fails.")


@pytest.fixture
def skills_dir(tmp_path: Path) -> Path:
    root = tmp_path / "skills"
    summarizer = root / "summarizer"
    (summarizer / "scripts").mkdir(parents=True)
    (summarizer / "SKILL.md").write_text(
        "---\n"
        "name: summarizer\n"
        "description: Summarize long documents\n"
        "---\n"
        "# Summarizer\n\nSummarize the given text in three sentences.\n",
        encoding="utf-8",
    )
    (summarizer / "scripts" / "count.py").write_text(
        "import sys\nprint(len(sys.argv) - 1)\n",
        encoding="utf-8",
    )
    return root
