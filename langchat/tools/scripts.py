"""Tools bundled with skill packages: script runners and a scoped file reader."""
from __future__ import annotations

import json
import os
import re
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..core.utils.deadline import CancellationError, Deadline
from ..core.utils.logger import get_logger
from .registry import ToolDescriptor, ToolExecutionError

LOGGER = get_logger(__name__)

DEFAULT_SCRIPT_TIMEOUT = 120.0
MAX_OUTPUT_CHARS = 20_000

SCRIPT_PARAMETERS: Mapping[str, Any] = {
    "type": "object",
    "properties": {
        "args": {
            "type": "array",
            "description": "Arguments to pass to the script.",
            "items": {"type": "string"},
        },
    },
}

READ_FILE_PARAMETERS: Mapping[str, Any] = {
    "type": "object",
    "properties": {
        "filePath": {
            "type": "string",
            "description": "Path of the file to read, relative to the skill directory.",
        },
    },
    "required": ["filePath"],
}


def script_tool_name(relative_path: str) -> str:
    """``scripts/fetch-data.py`` -> ``run_scripts_fetch_data_py``."""
    return "run_" + re.sub(r"[^A-Za-z0-9]", "_", relative_path)


def _parse_json_object(tool_input: str, tool_name: str) -> Dict[str, Any]:
    if not tool_input or not tool_input.strip():
        return {}
    try:
        data = json.loads(tool_input)
    except json.JSONDecodeError as exc:
        raise ToolExecutionError(f"failed to decode {tool_name} arguments: {exc}") from exc
    if not isinstance(data, dict):
        raise ToolExecutionError(f"{tool_name} arguments must be a JSON object")
    return data


class ScriptTool:
    """Run a script shipped in a skill package and return its combined output."""

    def __init__(
        self,
        script_path: Path,
        *,
        skill_root: Path,
        timeout: float = DEFAULT_SCRIPT_TIMEOUT,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.script_path = Path(script_path)
        self.skill_root = Path(skill_root)
        self.timeout = timeout
        self._env = dict(env or {})
        relative = self.script_path.relative_to(self.skill_root).as_posix()
        kind = "python" if self.script_path.suffix == ".py" else "shell"
        self.descriptor = ToolDescriptor(
            name=script_tool_name(relative),
            description=f"Executes the {kind} script '{relative}'.",
            parameters=dict(SCRIPT_PARAMETERS),
        )

    def command(self, args: Sequence[str]) -> List[str]:
        if self.script_path.suffix == ".py":
            return [sys.executable, str(self.script_path), *args]
        return ["bash", str(self.script_path), *args]

    def call(self, tool_input: str, *, deadline: Optional[Deadline] = None) -> str:
        params = _parse_json_object(tool_input, self.descriptor.name)
        raw_args = params.get("args") or []
        if not isinstance(raw_args, list):
            raise ToolExecutionError(f"{self.descriptor.name} expects 'args' to be a list")
        command = self.command([str(arg) for arg in raw_args])

        timeout = deadline.clamp(self.timeout) if deadline is not None else self.timeout
        LOGGER.debug("Running skill script: %s", " ".join(command))
        try:
            process = subprocess.run(
                command,
                cwd=str(self.skill_root),
                env=self._prepare_env(),
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            if deadline is not None and deadline.expired:
                raise CancellationError(f"{self.descriptor.name} exceeded the call deadline") from exc
            raise ToolExecutionError(f"{self.descriptor.name} timed out after {timeout:.0f}s") from exc
        except OSError as exc:
            raise ToolExecutionError(f"{self.descriptor.name} could not start: {exc}") from exc

        output = _truncate((process.stdout or "") + (process.stderr or ""))
        if process.returncode != 0:
            raise ToolExecutionError(
                f"{self.descriptor.name} exited with status {process.returncode}: {output.strip()}"
            )
        return output

    def _prepare_env(self) -> Mapping[str, str]:
        base = os.environ.copy()
        base.update(self._env)
        base.setdefault("PYTHONUNBUFFERED", "1")
        return base


class ReadFileTool:
    """Read a text file; relative paths resolve against the skill directory."""

    def __init__(self, skill_root: Path) -> None:
        self.skill_root = Path(skill_root).resolve()
        self.descriptor = ToolDescriptor(
            name="read_file",
            description="Reads the content of a file from the skill package.",
            parameters=dict(READ_FILE_PARAMETERS),
        )

    def call(self, tool_input: str, *, deadline: Optional[Deadline] = None) -> str:
        stripped = (tool_input or "").strip()
        if stripped.startswith("{"):
            params = _parse_json_object(stripped, self.descriptor.name)
            raw_path = params.get("filePath") or params.get("path")
        else:
            raw_path = stripped
        if not raw_path:
            raise ToolExecutionError("read_file requires 'filePath'")
        target = Path(raw_path)
        if not target.is_absolute():
            target = self.skill_root / target
        target = target.resolve()
        if self.skill_root not in target.parents and target != self.skill_root:
            raise ToolExecutionError(f"read_file refuses paths outside the skill: {raw_path}")
        try:
            return _truncate(target.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ToolExecutionError(f"read_file failed for {raw_path}: {exc}") from exc


def _truncate(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated {len(text) - limit} chars]"


__all__ = ["ReadFileTool", "ScriptTool", "script_tool_name"]
