"""Model-driven choice of at most one skill or tool for a user message."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, TypeVar

from ..core.utils.deadline import Deadline
from ..core.utils.logger import get_logger
from ..providers.llm.base import LLMClient, Message, Role
from ..skills.loader import SkillDescriptor
from ..tools.registry import Tool, ToolRegistry, UnknownToolError
from .decision import Decision, DecisionParseError, parse_decision

LOGGER = get_logger(__name__)

T = TypeVar("T")

SKILL_SELECTOR_PROMPT = (
    "You are a helpful assistant that selects appropriate skills for tasks. "
    "Respond only with valid JSON."
)
TOOL_SELECTOR_PROMPT = (
    "You are a helpful assistant that selects appropriate tools for tasks. "
    "Respond only with valid JSON."
)

_SKILL_REQUEST = """Based on the user's message, determine if any of the available skills should be used to help with this task.

Available skills:
{listing}

User message: {message}

Respond with a JSON object:
- If no skill is needed: {{"use_skill": false, "reason": "reason why no skill is needed"}}
- If a skill is needed: {{"use_skill": true, "skill_name": "exact skill name", "reason": "why this skill is appropriate"}}

IMPORTANT:
- Return ONLY valid JSON
- Do NOT use markdown code fences
- Choose the skill that best matches the user's needs"""

_TOOL_REQUEST = """Based on the user's message, determine which tool should be used.

Available tools:
{listing}

User message: {message}

Respond with a JSON object:
- If no tool is needed: {{"use_tool": false, "reason": "reason why no tool is needed"}}
- If a tool is needed: {{"use_tool": true, "tool_name": "exact tool name", "args": {{"parameter": "value"}}, "reason": "why this tool is appropriate"}}

IMPORTANT:
- Return ONLY valid JSON
- Do NOT use markdown code fences
- Select the tool that can best accomplish the user's request"""


class UnknownSkillError(LookupError):
    """Raised when a decision names a skill that is not loaded."""


@dataclass(frozen=True)
class ToolSelection:
    tool: Tool
    decision: Decision

    @property
    def name(self) -> str:
        return self.tool.descriptor.name


def numbered_listing(entries: Iterable[Tuple[str, str]]) -> str:
    return "\n".join(f"{index}. {name}: {description}" for index, (name, description) in enumerate(entries, 1))


def match_candidate(name: str, candidates: Sequence[T], key) -> Optional[T]:
    """Case-insensitive exact match on ``key(candidate)``; the first match wins."""
    wanted = (name or "").strip().casefold()
    if not wanted:
        return None
    for candidate in candidates:
        if key(candidate).casefold() == wanted:
            return candidate
    return None


def format_tool_result(name: str, result: str) -> str:
    return f"I used the '{name}' tool to help with your request. Here's the result:\n\n{result}"


class SelectionPolicy:
    """Ask the model once whether a skill or tool should handle a message.

    Parse failures and unknown targets are raised to the caller, which treats
    them as "no selection". Model failures and cancellation propagate as-is.
    """

    def __init__(self, client: LLMClient) -> None:
        self.client = client

    def _decide(self, system_prompt: str, request: str, kind: str, deadline: Optional[Deadline]) -> Decision:
        messages: List[Message] = [
            Message.text(Role.SYSTEM, system_prompt),
            Message.text(Role.HUMAN, request),
        ]
        completion = self.client.generate(messages, deadline=deadline)
        text = (completion.text or "").strip()
        LOGGER.debug("%s selection decision: %s", kind.capitalize(), text)
        if not text:
            raise DecisionParseError(f"Empty {kind} selection response")
        return parse_decision(text, kind)  # type: ignore[arg-type]

    def select_skill(
        self,
        message: str,
        skills: Sequence[SkillDescriptor],
        deadline: Optional[Deadline] = None,
    ) -> Optional[SkillDescriptor]:
        if not skills:
            return None
        listing = numbered_listing((skill.name, skill.description) for skill in skills)
        decision = self._decide(
            SKILL_SELECTOR_PROMPT,
            _SKILL_REQUEST.format(listing=listing, message=message),
            "skill",
            deadline,
        )
        if not decision.positive:
            LOGGER.info("No skill selected: %s", decision.rationale)
            return None
        skill = match_candidate(decision.target_name, skills, key=lambda item: item.name)
        if skill is None:
            raise UnknownSkillError(f"Skill '{decision.target_name}' not found in available skills")
        LOGGER.info("Selected skill '%s' because: %s", skill.name, decision.rationale)
        return skill

    def select_tool(
        self,
        message: str,
        tools: ToolRegistry,
        deadline: Optional[Deadline] = None,
    ) -> Optional[ToolSelection]:
        if not len(tools):
            return None
        listing = numbered_listing((d.name, d.description) for d in tools.descriptors())
        decision = self._decide(
            TOOL_SELECTOR_PROMPT,
            _TOOL_REQUEST.format(listing=listing, message=message),
            "tool",
            deadline,
        )
        if not decision.positive:
            LOGGER.info("No tool selected: %s", decision.rationale)
            return None
        tool = tools.find(decision.target_name)
        if tool is None:
            raise UnknownToolError(f"Tool '{decision.target_name}' not found in available tools")
        LOGGER.info("Selected tool '%s' because: %s", tool.descriptor.name, decision.rationale)
        return ToolSelection(tool=tool, decision=decision)


__all__ = [
    "SKILL_SELECTOR_PROMPT",
    "SelectionPolicy",
    "TOOL_SELECTOR_PROMPT",
    "ToolSelection",
    "UnknownSkillError",
    "format_tool_result",
    "match_candidate",
    "numbered_listing",
]
