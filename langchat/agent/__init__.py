"""Conversation orchestration: session, selection policy and ReAct loop."""
from __future__ import annotations

from .bootstrap import BootstrapError, CapabilityBootstrapper
from .decision import Decision, DecisionParseError, looks_like_decision, parse_decision, strip_code_fence
from .react import (
    DEFAULT_MAX_ITERATIONS,
    MAX_ITERATIONS_MESSAGE,
    LoopNode,
    LoopResultError,
    LoopState,
    ReactEvent,
    ReactLoop,
)
from .selection import SelectionPolicy, ToolSelection, UnknownSkillError, format_tool_result, match_candidate
from .session import ConversationSession
from .streaming import StreamRelay

__all__ = [
    "BootstrapError",
    "CapabilityBootstrapper",
    "ConversationSession",
    "DEFAULT_MAX_ITERATIONS",
    "Decision",
    "DecisionParseError",
    "LoopNode",
    "LoopResultError",
    "LoopState",
    "MAX_ITERATIONS_MESSAGE",
    "ReactEvent",
    "ReactLoop",
    "SelectionPolicy",
    "StreamRelay",
    "ToolSelection",
    "UnknownSkillError",
    "format_tool_result",
    "looks_like_decision",
    "match_candidate",
    "parse_decision",
    "strip_code_fence",
]
