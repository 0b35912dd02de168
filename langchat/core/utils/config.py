"""Configuration loading utilities for the chat agent."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback for <3.11
    import tomli as tomllib  # type: ignore


CONFIG_FILENAMES: tuple[str, ...] = (".langchat.toml", "langchat.toml")
DEFAULT_CONFIG_PATHS = (
    Path.home() / ".config" / "langchat" / "config.toml",
    Path.home() / ".langchat.toml",
)
ENV_PREFIX = "LANGCHAT_"

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant. Be concise and friendly."


def find_config_in_parents(
    start_path: Path, config_name: str | Sequence[str] = ".langchat.toml"
) -> Optional[Path]:
    """Search parent directories starting from ``start_path`` for configuration files."""

    if isinstance(config_name, str):
        candidate_names: tuple[str, ...] = (config_name,)
    else:
        candidate_names = tuple(config_name)

    current = start_path.resolve()
    if current.is_file():
        current = current.parent

    while True:
        for name in candidate_names:
            candidate = current / name
            if candidate.is_file():
                return candidate.resolve()
        if current.parent == current:
            break
        current = current.parent
    return None


@dataclass
class Settings:
    """Runtime configuration for a conversation session."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    provider_only: Sequence[str] = ()
    provider_config: Dict[str, Any] = field(default_factory=dict)
    request_headers: Dict[str, str] = field(default_factory=dict)
    temperature: float = 0.2
    request_timeout: float = 120.0
    log_level: str = "INFO"
    structured_logging: bool = False
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    skills_dir: Optional[Path] = None
    mcp_config: Optional[Path] = None
    tool_support: bool = False
    skill_max_iterations: int = 5
    chat_timeout: float = 120.0
    bootstrap_timeout: float = 60.0
    list_tools_timeout: float = 30.0
    close_grace_period: float = 5.0
    script_timeout: float = 120.0


_BOOL_FIELDS = {"structured_logging", "tool_support"}
_INT_FIELDS = {"skill_max_iterations"}
_FLOAT_FIELDS = {
    "temperature",
    "request_timeout",
    "chat_timeout",
    "bootstrap_timeout",
    "list_tools_timeout",
    "close_grace_period",
    "script_timeout",
}
_PATH_FIELDS = {"skills_dir", "mcp_config"}


def _cast_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in {"1", "true", "on", "yes", "y"}
    return bool(value)


def _load_from_file(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        return {}
    with path.open("rb") as handle:
        data = tomllib.load(handle)
    return {k.replace("-", "_"): v for k, v in data.items()}


def _load_from_env(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    env: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        name = key[len(prefix) :].lower()
        if name in _BOOL_FIELDS:
            env[name] = _cast_bool(value)
        elif name in _INT_FIELDS:
            env[name] = int(value)
        elif name in _FLOAT_FIELDS:
            env[name] = float(value)
        elif name == "provider_only":
            env[name] = tuple(filter(None, (item.strip() for item in value.split(","))))
        elif name in {"provider_config", "request_headers"}:
            try:
                env[name] = json.loads(value)
            except json.JSONDecodeError:
                env[name] = {}
        else:
            env[name] = value
    return env


def _resolve_relative(value: Any, base: Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base / path).resolve()
    return path


def load_settings(explicit_path: Optional[Path] = None) -> Settings:
    """Load configuration, merging file and environment sources."""

    file_data: Dict[str, Any] = {}
    config_dir = Path.cwd()
    if explicit_path:
        file_data.update(_load_from_file(explicit_path))
        config_dir = Path(explicit_path).resolve().parent
    else:
        search_paths = []
        cwd = Path.cwd()
        project_config = find_config_in_parents(cwd, CONFIG_FILENAMES)
        if project_config:
            search_paths.append(project_config)
        search_paths.extend(DEFAULT_CONFIG_PATHS)
        seen_paths = set()
        for candidate in search_paths:
            if candidate in seen_paths:
                continue
            seen_paths.add(candidate)
            file_data = _load_from_file(candidate)
            if file_data:
                config_dir = candidate.parent
                break

    env_data = _load_from_env()
    merged: Dict[str, Any] = {**file_data, **env_data}

    # File-relative paths are resolved against the config file, env paths against cwd.
    for key in _PATH_FIELDS:
        value = merged.get(key)
        if value in (None, ""):
            merged.pop(key, None)
            continue
        base = Path.cwd() if key in env_data else config_dir
        merged[key] = _resolve_relative(value, base)

    provider_only = merged.get("provider_only")
    if provider_only is not None and not isinstance(provider_only, tuple):
        if isinstance(provider_only, str):
            merged["provider_only"] = tuple(filter(None, (item.strip() for item in provider_only.split(","))))
        else:
            merged["provider_only"] = tuple(provider_only)

    for key in ("provider_config", "request_headers"):
        value = merged.get(key)
        if value is None or isinstance(value, dict):
            continue
        if isinstance(value, str):
            try:
                merged[key] = json.loads(value)
            except json.JSONDecodeError:
                merged[key] = {}
            continue
        merged[key] = dict(value)

    # Unknown keys are attached as attributes so experimental toggles stay reachable.
    known_fields = set(Settings.__dataclass_fields__)
    init_kwargs = {key: value for key, value in merged.items() if key in known_fields}
    settings = Settings(**init_kwargs)
    for key, value in merged.items():
        if key not in known_fields:
            setattr(settings, key, value)
    return settings


__all__ = [
    "CONFIG_FILENAMES",
    "DEFAULT_SYSTEM_PROMPT",
    "Settings",
    "find_config_in_parents",
    "load_settings",
]
