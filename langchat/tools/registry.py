"""Tool descriptors, the tool executor registry and input validation helpers."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from ..core.utils.deadline import CancellationError, Deadline
from ..core.utils.logger import get_logger

LOGGER = get_logger(__name__)

EMPTY_SCHEMA: Mapping[str, Any] = {"type": "object", "properties": {}}


class UnknownToolError(KeyError):
    """Raised when a tool name is not registered with the executor."""

    def __str__(self) -> str:  # KeyError quotes its argument otherwise
        return str(self.args[0]) if self.args else "unknown tool"


class ToolExecutionError(RuntimeError):
    """Raised when a registered tool fails to produce a result."""


@dataclass(frozen=True)
class ToolDescriptor:
    """Name, description and JSON-schema parameters advertised to the model."""

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=lambda: dict(EMPTY_SCHEMA))

    def describe(self) -> str:
        """Description followed by ``name(type) description`` for each parameter."""
        properties = self.parameters.get("properties") or {}
        required = set(self.parameters.get("required") or ())
        fragments = [self.description.strip()]
        for name, spec in properties.items():
            spec = spec if isinstance(spec, Mapping) else {}
            marker = "" if name in required else "?"
            text = f"{name}{marker}({spec.get('type', 'any')})"
            if spec.get("description"):
                text += f" {spec['description']}"
            fragments.append(text)
        return " ".join(fragment for fragment in fragments if fragment)

    def to_function(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.parameters or EMPTY_SCHEMA),
            },
        }


class Tool(Protocol):
    """Executable capability with an advertised descriptor."""

    descriptor: ToolDescriptor

    def call(self, tool_input: str, *, deadline: Optional[Deadline] = None) -> str:
        ...


class FunctionTool:
    """Adapt a plain callable ``handler(tool_input) -> str`` to the tool protocol."""

    def __init__(
        self,
        name: str,
        handler: Callable[[str], str],
        *,
        description: str = "",
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.descriptor = ToolDescriptor(name, description, dict(parameters or EMPTY_SCHEMA))
        self._handler = handler

    def call(self, tool_input: str, *, deadline: Optional[Deadline] = None) -> str:
        if deadline is not None:
            deadline.check(f"tool {self.descriptor.name}")
        return str(self._handler(tool_input))

    def __repr__(self) -> str:
        return f"FunctionTool({self.descriptor.name!r})"


def resolve_tool_input(arguments: str) -> str:
    """Prefer the string field ``input`` of a JSON object, else return the raw arguments."""
    try:
        parsed = json.loads(arguments) if arguments else None
    except (TypeError, json.JSONDecodeError):
        return arguments
    if isinstance(parsed, dict) and isinstance(parsed.get("input"), str):
        return parsed["input"]
    return arguments


class ToolRegistry:
    """Executes tools by name; the active tool set of a loop or session."""

    def __init__(self, tools: Iterable[Tool] = (), *, validate_input: bool = True) -> None:
        self._tools: Dict[str, Tool] = {}
        self._validate_input = validate_input
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        name = tool.descriptor.name
        if not name:
            LOGGER.debug("Skipping tool without a name: %r", tool)
            return
        if name in self._tools:
            LOGGER.warning("Duplicate tool %r ignored; keeping the first registration", name)
            return
        self._tools[name] = tool

    def get(self, name: str) -> Tool:
        if name not in self._tools:
            raise UnknownToolError(f"Tool '{name}' is not registered")
        return self._tools[name]

    def find(self, name: str) -> Optional[Tool]:
        """Case-insensitive exact lookup; the first registered match wins."""
        wanted = (name or "").strip().casefold()
        for tool in self._tools.values():
            if tool.descriptor.name.casefold() == wanted:
                return tool
        return None

    def names(self) -> List[str]:
        return list(self._tools)

    def descriptors(self) -> List[ToolDescriptor]:
        return [tool.descriptor for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self):
        return iter(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def schema(self) -> List[Dict[str, Any]]:
        return [descriptor.to_function() for descriptor in self.descriptors()]

    def menu(self) -> str:
        return "\n".join(f"- {d.name}: {d.describe()}" for d in self.descriptors())

    def execute(self, name: str, tool_input: str, deadline: Optional[Deadline] = None) -> str:
        tool = self.get(name)
        if deadline is not None:
            deadline.check(f"tool {name}")
        if self._validate_input:
            self._validate(tool.descriptor, tool_input)
        try:
            return tool.call(tool_input, deadline=deadline)
        except (CancellationError, ToolExecutionError):
            raise
        except Exception as exc:  # noqa: BLE001 - tool failures surface as ToolExecutionError
            raise ToolExecutionError(f"{name} failed: {exc}") from exc

    def _validate(self, descriptor: ToolDescriptor, tool_input: str) -> None:
        try:
            payload = json.loads(tool_input) if tool_input else None
        except (TypeError, json.JSONDecodeError):
            return
        if not isinstance(payload, dict) or not descriptor.parameters:
            return
        try:
            Draft7Validator.check_schema(dict(descriptor.parameters))
            validator = Draft7Validator(dict(descriptor.parameters))
            errors = sorted(validator.iter_errors(payload), key=lambda exc: list(exc.path))
        except SchemaError:
            LOGGER.debug("Tool %s advertises an invalid schema; skipping validation", descriptor.name)
            return
        if errors:
            raise ToolExecutionError(f"Invalid input for {descriptor.name}: {errors[0].message}")


__all__ = [
    "EMPTY_SCHEMA",
    "FunctionTool",
    "Tool",
    "ToolDescriptor",
    "ToolExecutionError",
    "ToolRegistry",
    "UnknownToolError",
    "resolve_tool_input",
]
