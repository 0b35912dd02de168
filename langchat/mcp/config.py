"""MCP server configuration (``mcpServers`` JSON documents)."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional


class ToolProviderError(RuntimeError):
    """Raised when an external tool provider cannot be configured, reached or listed."""


@dataclass(frozen=True)
class MCPServerConfig:
    name: str
    command: str
    args: List[str] = field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    cwd: Optional[str] = None


def parse_mcp_config(data: Mapping[str, Any]) -> List[MCPServerConfig]:
    """Validate a decoded ``{"mcpServers": {...}}`` document."""
    if not isinstance(data, Mapping):
        raise ToolProviderError("MCP config must be a JSON object")
    servers = data.get("mcpServers", data.get("servers"))
    if not isinstance(servers, Mapping):
        raise ToolProviderError("MCP config is missing the 'mcpServers' object")

    parsed: List[MCPServerConfig] = []
    for name, entry in servers.items():
        if not isinstance(entry, Mapping):
            raise ToolProviderError(f"MCP server {name!r} must be an object")
        command = entry.get("command")
        if not command or not isinstance(command, str):
            raise ToolProviderError(f"MCP server {name!r} has no command")
        args = entry.get("args") or []
        if not isinstance(args, list):
            raise ToolProviderError(f"MCP server {name!r} args must be a list")
        env = entry.get("env")
        if env is not None and not isinstance(env, Mapping):
            raise ToolProviderError(f"MCP server {name!r} env must be an object")
        parsed.append(
            MCPServerConfig(
                name=str(name),
                command=command,
                args=[str(arg) for arg in args],
                env=None if env is None else {str(k): str(v) for k, v in env.items()},
                cwd=entry.get("cwd"),
            )
        )
    return parsed


def load_mcp_config(path: Path) -> List[MCPServerConfig]:
    """Read and validate the MCP server list stored at ``path``."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ToolProviderError(f"Failed to read MCP config {path}: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ToolProviderError(f"Invalid JSON in MCP config {path}: {exc}") from exc
    return parse_mcp_config(data)


__all__ = ["MCPServerConfig", "ToolProviderError", "load_mcp_config", "parse_mcp_config"]
