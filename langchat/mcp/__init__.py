"""External tool providers (Model Context Protocol servers)."""
from __future__ import annotations

from .config import MCPServerConfig, ToolProviderError, load_mcp_config, parse_mcp_config
from .provider import MCPTool, MCPToolProvider, ToolProvider, close_with_grace

__all__ = [
    "MCPServerConfig",
    "MCPTool",
    "MCPToolProvider",
    "ToolProvider",
    "ToolProviderError",
    "close_with_grace",
    "load_mcp_config",
    "parse_mcp_config",
]
