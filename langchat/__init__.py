"""Public package interface for the langchat conversation core."""
from __future__ import annotations

from importlib import metadata as _metadata

try:
    __version__ = _metadata.version("langchat")
except _metadata.PackageNotFoundError:  # pragma: no cover - fallback when not installed
    __version__ = "0.1.0"

from . import agent, core, mcp, providers, skills, tools
from .agent import (
    BootstrapError,
    CapabilityBootstrapper,
    ConversationSession,
    Decision,
    DecisionParseError,
    LoopResultError,
    ReactLoop,
    SelectionPolicy,
    StreamRelay,
    parse_decision,
    strip_code_fence,
)
from .core import CancellationError, Deadline, Settings, configure_logging, get_logger, load_settings
from .mcp import MCPToolProvider, ToolProviderError, close_with_grace, load_mcp_config
from .providers.llm import (
    Completion,
    LLMClient,
    Message,
    ModelInvocationError,
    Role,
    TextPart,
    ToolCall,
    ToolCallPart,
    ToolResultPart,
    create_client,
)
from .skills import SkillDescriptor, SkillLoadError, load_skills
from .tools import FunctionTool, ToolDescriptor, ToolExecutionError, ToolRegistry, UnknownToolError

__all__ = [
    "__version__",
    "BootstrapError",
    "CancellationError",
    "CapabilityBootstrapper",
    "Completion",
    "ConversationSession",
    "Deadline",
    "Decision",
    "DecisionParseError",
    "FunctionTool",
    "LLMClient",
    "LoopResultError",
    "MCPToolProvider",
    "Message",
    "ModelInvocationError",
    "ReactLoop",
    "Role",
    "SelectionPolicy",
    "Settings",
    "SkillDescriptor",
    "SkillLoadError",
    "StreamRelay",
    "TextPart",
    "ToolCall",
    "ToolCallPart",
    "ToolDescriptor",
    "ToolExecutionError",
    "ToolProviderError",
    "ToolRegistry",
    "ToolResultPart",
    "UnknownToolError",
    "agent",
    "close_with_grace",
    "configure_logging",
    "core",
    "create_client",
    "get_logger",
    "load_mcp_config",
    "load_settings",
    "load_skills",
    "mcp",
    "parse_decision",
    "providers",
    "skills",
    "strip_code_fence",
    "tools",
]
