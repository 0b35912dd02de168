"""Bounded ReAct loop alternating model calls and tool execution."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Union

from ..core.utils.deadline import CancellationError, Deadline
from ..core.utils.logger import get_logger
from ..providers.llm.base import ChunkSink, LLMClient, Message, Part, Role, TextPart, ToolCallPart
from ..tools.registry import Tool, ToolRegistry, resolve_tool_input
from .decision import DecisionParseError, looks_like_decision, parse_decision

LOGGER = get_logger(__name__)

DEFAULT_MAX_ITERATIONS = 20
MAX_ITERATIONS_MESSAGE = "Maximum iterations reached. Please try a simpler query."

TOOL_MENU_TEMPLATE = """Available tools:
{menu}

If you need a tool, respond with a JSON object:
- {{"use_tool": true, "tool_name": "exact tool name", "args": {{"parameter": "value"}}, "reason": "why this tool is appropriate"}}
- Return ONLY valid JSON
- Do NOT use markdown code fences
- Select the tool that can best accomplish the user's request

If no tool is needed, answer with plain text."""


class LoopNode(str, Enum):
    AGENT = "agent"
    TOOL = "tool"
    END = "end"


class ReactEvent(str, Enum):
    NODE_START = "node_start"
    NODE_END = "node_end"


ReactObserver = Callable[[ReactEvent, LoopNode], None]


class LoopResultError(RuntimeError):
    """Raised when a finished loop has no text to return."""


@dataclass
class LoopState:
    """Messages and iteration counter owned by one loop run."""

    messages: List[Message] = field(default_factory=list)
    iteration_count: int = 0
    menu_injected: bool = False
    agent_visits: int = 0
    tool_visits: int = 0

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def append(self, message: Message) -> None:
        self.messages.append(message)


def tool_result_text(name: str, result: str) -> str:
    return f"Tool '{name}' completed with result: {result}"


class ReactLoop:
    """Run the agent/tool state machine until the model stops asking for tools.

    With ``tool_support`` the tool schema is attached to every model call and
    tool requests arrive as structured calls. Without it a textual tool menu
    is injected once and the model answers with a JSON decision which is
    executed inline before looping back to the agent.
    """

    def __init__(
        self,
        client: LLMClient,
        tools: Union[ToolRegistry, Iterable[Tool]] = (),
        *,
        preamble: Sequence[Message] = (),
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        tool_support: bool = True,
        on_chunk: Optional[ChunkSink] = None,
        on_event: Optional[ReactObserver] = None,
    ) -> None:
        self.client = client
        self.tools = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)
        self.preamble = list(preamble)
        self.max_iterations = max(1, int(max_iterations))
        self.tool_support = tool_support
        self.on_chunk = on_chunk
        self.on_event = on_event

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, messages: Sequence[Message], deadline: Optional[Deadline] = None) -> str:
        return self.result(self.run_state(messages, deadline))

    def run_state(self, messages: Sequence[Message], deadline: Optional[Deadline] = None) -> LoopState:
        state = LoopState(messages=[*self.preamble, *messages])
        node = LoopNode.AGENT
        while node is not LoopNode.END:
            if deadline is not None:
                deadline.check("react loop")
            if node is LoopNode.AGENT:
                node = self._agent_node(state, deadline)
            else:
                node = self._tool_node(state, deadline)
        LOGGER.debug(
            "ReAct loop finished after %d agent and %d tool visit(s)",
            state.agent_visits,
            state.tool_visits,
        )
        return state

    @staticmethod
    def result(state: LoopState) -> str:
        last = state.last_message
        text = last.first_text if last is not None else None
        if text is None:
            raise LoopResultError("ReAct loop finished without a text result")
        return text

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def _emit(self, event: ReactEvent, node: LoopNode) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event, node)
        except Exception as exc:  # noqa: BLE001 - observers cannot break the loop
            LOGGER.debug("ReAct observer failed on %s/%s: %s", event.value, node.value, exc)

    def _cutoff(self, state: LoopState) -> LoopNode:
        LOGGER.info("ReAct loop hit the iteration limit (%d)", self.max_iterations)
        state.append(Message.text(Role.AI, MAX_ITERATIONS_MESSAGE))
        return LoopNode.END

    def _inject_menu(self, state: LoopState) -> None:
        if state.menu_injected or not len(self.tools):
            return
        position = 0
        while position < len(state.messages) and state.messages[position].role is Role.SYSTEM:
            position += 1
        # Every loop tool is listed, run_* script tools included, so skill
        # scripts stay reachable without structured tool calls.
        menu = TOOL_MENU_TEMPLATE.format(menu=self.tools.menu())
        state.messages.insert(position, Message.text(Role.SYSTEM, menu))
        state.menu_injected = True

    def _agent_node(self, state: LoopState, deadline: Optional[Deadline]) -> LoopNode:
        state.agent_visits += 1
        if state.iteration_count >= self.max_iterations:
            return self._cutoff(state)

        self._emit(ReactEvent.NODE_START, LoopNode.AGENT)
        schema = None
        if self.tool_support:
            schema = self.tools.schema() or None
        else:
            self._inject_menu(state)

        completion = self.client.generate(
            list(state.messages),
            tools=schema,
            on_chunk=self.on_chunk,
            deadline=deadline,
        )
        parts: List[Part] = []
        if completion.text:
            parts.append(TextPart(completion.text))
        parts.extend(ToolCallPart(call.id, call.name, call.arguments) for call in completion.tool_calls)
        state.append(Message(Role.AI, tuple(parts)))
        state.iteration_count += 1
        self._emit(ReactEvent.NODE_END, LoopNode.AGENT)
        return self._next_node(state, deadline)

    def _next_node(self, state: LoopState, deadline: Optional[Deadline]) -> LoopNode:
        last = state.last_message
        if last is None:
            return LoopNode.END
        if last.tool_calls:
            if state.iteration_count >= self.max_iterations:
                return self._cutoff(state)
            return LoopNode.TOOL
        if self.tool_support:
            return LoopNode.END

        text = last.first_text or ""
        if not looks_like_decision(text, "tool"):
            return LoopNode.END
        try:
            decision = parse_decision(text, "tool")
        except DecisionParseError as exc:
            LOGGER.debug("Ignoring malformed tool decision: %s", exc)
            return LoopNode.END
        if not decision.positive:
            return LoopNode.END
        tool = self.tools.find(decision.target_name)
        if tool is None:
            LOGGER.info("Model asked for unknown tool %r", decision.target_name)
            return LoopNode.END
        if state.iteration_count >= self.max_iterations:
            return self._cutoff(state)

        name = tool.descriptor.name
        LOGGER.info("Selected tool '%s' because: %s", name, decision.rationale)
        result = self._execute(name, resolve_tool_input(decision.arguments_json()), deadline)
        state.append(Message.text(Role.AI, tool_result_text(name, result)))
        return LoopNode.AGENT

    def _tool_node(self, state: LoopState, deadline: Optional[Deadline]) -> LoopNode:
        state.tool_visits += 1
        self._emit(ReactEvent.NODE_START, LoopNode.TOOL)
        last = state.last_message
        calls = last.tool_calls if last is not None and last.role is Role.AI else []
        for call in calls:
            result = self._execute(call.name, resolve_tool_input(call.arguments), deadline)
            state.append(Message.tool_result(call.id, call.name, result))
        self._emit(ReactEvent.NODE_END, LoopNode.TOOL)
        return LoopNode.AGENT

    def _execute(self, name: str, tool_input: str, deadline: Optional[Deadline]) -> str:
        try:
            return self.tools.execute(name, tool_input, deadline=deadline)
        except CancellationError:
            raise
        except Exception as exc:  # noqa: BLE001 - tool failures become result text
            LOGGER.warning("Tool %s failed: %s", name, exc)
            return f"Error: {exc}"


__all__ = [
    "DEFAULT_MAX_ITERATIONS",
    "LoopNode",
    "LoopResultError",
    "LoopState",
    "MAX_ITERATIONS_MESSAGE",
    "ReactEvent",
    "ReactLoop",
    "ReactObserver",
    "tool_result_text",
]
