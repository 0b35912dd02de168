"""Tool executor and the tools bundled with skill packages."""
from __future__ import annotations

from .registry import (
    FunctionTool,
    Tool,
    ToolDescriptor,
    ToolExecutionError,
    ToolRegistry,
    UnknownToolError,
    resolve_tool_input,
)
from .scripts import ReadFileTool, ScriptTool, script_tool_name

__all__ = [
    "FunctionTool",
    "ReadFileTool",
    "ScriptTool",
    "Tool",
    "ToolDescriptor",
    "ToolExecutionError",
    "ToolRegistry",
    "UnknownToolError",
    "resolve_tool_input",
    "script_tool_name",
]
