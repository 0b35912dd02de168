"""Parse the JSON selection decisions a model writes in free text."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

DecisionKind = Literal["skill", "tool"]

_FENCE = "```"
_OPENING_FENCE = re.compile(r"^```[A-Za-z0-9_+-]*")


class DecisionParseError(ValueError):
    """Raised when model output cannot be read as a selection decision."""


@dataclass(frozen=True)
class Decision:
    """Yes/no selection of a skill or tool, derived from model output."""

    positive: bool
    target_name: str = ""
    rationale: str = ""
    args: Optional[Dict[str, Any]] = None

    def arguments_json(self) -> str:
        """Arguments as a JSON object string (``{}`` when absent)."""
        return json.dumps(self.args or {})


def _zero_value(value: Any, field_name: str) -> Any:
    # JSON null reads as the zero value: false for flags, "" for strings.
    if value is not None:
        return value
    return False if field_name.startswith("use_") else ""


class SkillDecisionPayload(BaseModel):
    use_skill: bool = False
    skill_name: Optional[str] = ""
    reason: Optional[str] = ""

    @field_validator("use_skill", "skill_name", "reason", mode="before")
    @classmethod
    def _null_as_zero(cls, value: Any, info) -> Any:
        return _zero_value(value, info.field_name)


class ToolDecisionPayload(BaseModel):
    use_tool: bool = False
    tool_name: Optional[str] = ""
    args: Optional[Dict[str, Any]] = Field(default=None)
    reason: Optional[str] = ""

    @field_validator("use_tool", "tool_name", "reason", mode="before")
    @classmethod
    def _null_as_zero(cls, value: Any, info) -> Any:
        return _zero_value(value, info.field_name)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence (```json or bare ```)."""
    cleaned = (text or "").strip()
    if not cleaned.startswith(_FENCE):
        return cleaned
    cleaned = _OPENING_FENCE.sub("", cleaned, count=1)
    if cleaned.rstrip().endswith(_FENCE):
        cleaned = cleaned.rstrip()[: -len(_FENCE)]
    return cleaned.strip()


def _decision_key(kind: DecisionKind) -> str:
    return "use_skill" if kind == "skill" else "use_tool"


def looks_like_decision(text: str, kind: DecisionKind) -> bool:
    cleaned = strip_code_fence(text)
    return cleaned.startswith("{") and f'"{_decision_key(kind)}"' in cleaned


def parse_decision(text: str, kind: DecisionKind) -> Decision:
    """Decode ``text`` into a :class:`Decision` or raise :class:`DecisionParseError`."""
    if kind not in ("skill", "tool"):
        raise ValueError(f"Unknown decision kind: {kind!r}")
    cleaned = strip_code_fence(text)
    if not cleaned:
        raise DecisionParseError(f"Empty {kind} decision")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise DecisionParseError(f"Failed to parse {kind} decision: {exc}") from exc
    if not isinstance(data, dict):
        raise DecisionParseError(f"{kind.capitalize()} decision must be a JSON object")

    try:
        if kind == "skill":
            skill = SkillDecisionPayload.model_validate(data)
            return Decision(skill.use_skill, (skill.skill_name or "").strip(), skill.reason or "")
        tool = ToolDecisionPayload.model_validate(data)
        return Decision(tool.use_tool, (tool.tool_name or "").strip(), tool.reason or "", tool.args)
    except ValidationError as exc:
        raise DecisionParseError(f"Invalid {kind} decision: {exc.errors()[0].get('msg')}") from exc


__all__ = [
    "Decision",
    "DecisionKind",
    "DecisionParseError",
    "SkillDecisionPayload",
    "ToolDecisionPayload",
    "looks_like_decision",
    "parse_decision",
    "strip_code_fence",
]
