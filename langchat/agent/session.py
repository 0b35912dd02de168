"""Conversation session: owned history, serialized calls, capability routing."""
from __future__ import annotations

import threading
from typing import List, Optional, Tuple
from uuid import uuid4

from ..core.utils.config import Settings
from ..core.utils.deadline import CancellationError, Deadline, ensure_deadline
from ..core.utils.logger import get_logger, reset_correlation_id, set_correlation_id
from ..providers.llm import client_from_settings
from ..providers.llm.base import ChunkSink, LLMClient, Message, Part, Role, TextPart, ToolCallPart
from ..skills.loader import SkillDescriptor
from ..tools.registry import ToolExecutionError, ToolRegistry, UnknownToolError, resolve_tool_input
from .bootstrap import CapabilityBootstrapper
from .decision import DecisionParseError
from .react import LoopResultError, ReactLoop
from .selection import SelectionPolicy, UnknownSkillError, format_tool_result
from .streaming import StreamRelay

LOGGER = get_logger(__name__)


class ConversationSession:
    """One conversation with a model, optionally assisted by skills and tools.

    ``chat`` and ``chat_stream`` are serialized by an exclusive lock held for
    the whole call, so the history only ever grows by whole exchanges. Skills
    and external tools are loaded in the background; a call made before loading
    finishes uses whatever is already available.
    """

    def __init__(
        self,
        client: LLMClient,
        *,
        settings: Optional[Settings] = None,
        bootstrapper: Optional[CapabilityBootstrapper] = None,
        system_prompt: Optional[str] = None,
        session_id: Optional[str] = None,
        start_bootstrap: bool = True,
    ) -> None:
        self.client = client
        self.settings = settings or Settings()
        self.session_id = session_id or f"chat-{uuid4()}"
        prompt = system_prompt if system_prompt is not None else self.settings.system_prompt
        self._history: List[Message] = [Message.text(Role.SYSTEM, prompt)]
        self._lock = threading.Lock()
        self._policy = SelectionPolicy(client)
        self.bootstrapper = bootstrapper or CapabilityBootstrapper.from_settings(self.settings)
        if start_bootstrap:
            self.bootstrapper.start()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "ConversationSession":
        return cls(client_from_settings(settings), settings=settings, **kwargs)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def history(self) -> Tuple[Message, ...]:
        return tuple(self._history)

    @property
    def skills(self) -> List[SkillDescriptor]:
        return self.bootstrapper.skills

    @property
    def tools(self) -> ToolRegistry:
        return self.bootstrapper.tools

    @property
    def loading(self) -> bool:
        return self.bootstrapper.loading

    @property
    def loaded(self) -> bool:
        return self.bootstrapper.loaded

    def wait_until_loaded(self, timeout: Optional[float] = None) -> bool:
        return self.bootstrapper.wait_until_loaded(timeout)

    # ------------------------------------------------------------------
    # Public calls
    # ------------------------------------------------------------------

    def chat(
        self,
        message: str,
        enable_skills: bool = False,
        enable_mcp: bool = False,
        *,
        deadline: Optional[Deadline] = None,
    ) -> str:
        return self.chat_stream(message, enable_skills, enable_mcp, None, deadline=deadline)

    def chat_stream(
        self,
        message: str,
        enable_skills: bool = False,
        enable_mcp: bool = False,
        on_chunk: Optional[ChunkSink] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> str:
        deadline = ensure_deadline(deadline, self.settings.chat_timeout)
        relay = StreamRelay(on_chunk)
        self._acquire(deadline)
        token = set_correlation_id(self.session_id)
        try:
            self._history.append(Message.text(Role.HUMAN, message))

            if enable_skills:
                text = self._skill_path(message, relay, deadline)
                if text:
                    return self._reply(text)

            if enable_mcp:
                text = self._tool_path(message, deadline)
                if text is not None:
                    return self._reply(text)

            completion = self.client.generate(list(self._history), on_chunk=relay.as_sink(), deadline=deadline)
            return self._reply(completion.text)
        finally:
            reset_correlation_id(token)
            self._lock.release()

    def close(self) -> None:
        """Release external tool providers; safe to call more than once."""
        self.bootstrapper.close()

    def __enter__(self) -> "ConversationSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _acquire(self, deadline: Deadline) -> None:
        deadline.check("chat")
        remaining = deadline.remaining()
        timeout = -1 if remaining == float("inf") else remaining
        if not self._lock.acquire(timeout=timeout):
            raise CancellationError("chat timed out waiting for the session")

    def _reply(self, text: str) -> str:
        self._history.append(Message.text(Role.AI, text))
        return text

    def _skill_path(self, message: str, relay: StreamRelay, deadline: Deadline) -> Optional[str]:
        skills = self.skills
        if not skills:
            return None
        try:
            selected = self._policy.select_skill(message, skills, deadline)
        except (DecisionParseError, UnknownSkillError) as exc:
            LOGGER.warning("Skill selection error: %s", exc)
            return None
        if selected is None:
            return None

        for skill in skills:
            if skill.name != selected.name:
                continue
            try:
                text = self._run_skill(skill, message, relay, deadline)
            except (LoopResultError, ToolExecutionError) as exc:
                LOGGER.warning("Skill %s failed: %s", skill.name, exc)
                continue
            if text:
                return text
        return None

    def _run_skill(self, skill: SkillDescriptor, message: str, relay: StreamRelay, deadline: Deadline) -> str:
        loop = ReactLoop(
            self.client,
            skill.registry(),
            preamble=[Message.text(Role.SYSTEM, skill.system_preamble)],
            max_iterations=self.settings.skill_max_iterations,
            tool_support=self.settings.tool_support,
            on_chunk=relay.as_sink(),
        )
        LOGGER.info("Running skill %s", skill.name)
        return loop.run([Message.text(Role.HUMAN, message)], deadline)

    def _tool_path(self, message: str, deadline: Deadline) -> Optional[str]:
        tools = self.tools
        if not len(tools):
            return None
        if self.settings.tool_support:
            self._tool_round_trip(tools, deadline)
            return None

        try:
            selection = self._policy.select_tool(message, tools, deadline)
        except (DecisionParseError, UnknownToolError) as exc:
            LOGGER.warning("Tool selection error: %s", exc)
            return None
        if selection is None:
            return None
        try:
            tool_input = resolve_tool_input(selection.decision.arguments_json())
            result = tools.execute(selection.name, tool_input, deadline=deadline)
        except ToolExecutionError as exc:
            LOGGER.warning("Tool %s call failed: %s", selection.name, exc)
            return None
        LOGGER.info("Successfully used tool '%s'", selection.name)
        return format_tool_result(selection.name, result)

    def _tool_round_trip(self, tools: ToolRegistry, deadline: Deadline) -> None:
        """One structured tool-calling exchange; results join the history.

        The call message and its results are published together, so a
        cancelled exchange leaves no unanswered tool call behind.
        """
        completion = self.client.generate(list(self._history), tools=tools.schema(), deadline=deadline)
        if not completion.tool_calls:
            return
        parts: List[Part] = [TextPart(completion.text)] if completion.text else []
        parts.extend(ToolCallPart(call.id, call.name, call.arguments) for call in completion.tool_calls)
        exchange: List[Message] = [Message(Role.AI, tuple(parts))]
        for call in completion.tool_calls:
            try:
                result = tools.execute(call.name, resolve_tool_input(call.arguments), deadline=deadline)
            except (ToolExecutionError, UnknownToolError) as exc:
                result = f"Error: {exc}"
            exchange.append(Message.tool_result(call.id, call.name, result))
        self._history.extend(exchange)


__all__ = ["ConversationSession"]
