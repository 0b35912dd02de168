"""Markdown front-matter (YAML) parsing for skill package descriptors.

A Claude-style ``SKILL.md`` starts with a YAML block delimited by ``---``
lines, followed by the Markdown instructions for the skill:

  ---
  name: summarizer
  description: Summarize long documents
  allowed-tools: [read_file]
  ---
  # Summarizer
  ...

OpenAI-style ``skill.md`` files carry no front-matter; the name then comes from
the directory and the description from the first paragraph after the title.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml


FRONTMATTER_DELIM = "---"


@dataclass
class SkillMeta:
    name: str
    description: str = ""
    allowed_tools: List[str] = field(default_factory=list)
    model: Optional[str] = None
    author: Optional[str] = None
    version: Optional[str] = None
    license: Optional[str] = None


def split_frontmatter(text: str) -> Tuple[Dict[str, Any], str]:
    """Split ``text`` into (frontmatter_dict, body). Raises ValueError on parse issues."""
    lines = text.splitlines()
    if not lines or lines[0].strip() != FRONTMATTER_DELIM:
        raise ValueError("Frontmatter not found: missing leading '---' delimiter")
    end_index = None
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONTMATTER_DELIM:
            end_index = i
            break
    if end_index is None:
        raise ValueError("Frontmatter not closed: missing trailing '---'")

    fm_text = "\n".join(lines[1:end_index])
    body = "\n".join(lines[end_index + 1 :]).strip()

    try:
        fm_dict = yaml.safe_load(fm_text) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Failed to parse YAML frontmatter: {exc}") from exc
    if not isinstance(fm_dict, dict):
        raise ValueError("Frontmatter must be a YAML mapping (object)")
    return fm_dict, body


def load_markdown_with_frontmatter(path: Path) -> Tuple[Dict[str, Any], str]:
    """Extract YAML frontmatter and body text from a Markdown file."""
    return split_frontmatter(Path(path).read_text(encoding="utf-8"))


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(value)]


def meta_from_frontmatter(fm: Dict[str, Any], *, fallback_name: str) -> SkillMeta:
    name = str(fm.get("name") or fallback_name).strip()
    return SkillMeta(
        name=name,
        description=str(fm.get("description") or "").strip(),
        allowed_tools=_as_list(fm.get("allowed-tools", fm.get("allowed_tools"))),
        model=fm.get("model"),
        author=fm.get("author"),
        version=None if fm.get("version") is None else str(fm.get("version")),
        license=fm.get("license"),
    )


_DESCRIPTION_RE = re.compile(r"^#\s+.*?\n\n(.*?)\n##", re.DOTALL)


def meta_from_plain_markdown(text: str, *, directory_name: str) -> SkillMeta:
    """Derive metadata for a skill file without frontmatter."""
    name = directory_name.replace("-", " ").replace("_", " ")
    match = _DESCRIPTION_RE.search(text)
    if match:
        description = re.sub(r"\s+", " ", match.group(1).strip())
    else:
        description_lines: List[str] = []
        in_first_section = False
        for line in text.splitlines():
            line = line.strip()
            if line.startswith("# ") and not in_first_section:
                in_first_section = True
                continue
            if in_first_section:
                if line.startswith("#"):
                    break
                if line:
                    description_lines.append(line)
        description = " ".join(description_lines) or name
    return SkillMeta(name=name, description=description)


__all__ = [
    "SkillMeta",
    "load_markdown_with_frontmatter",
    "meta_from_frontmatter",
    "meta_from_plain_markdown",
    "split_frontmatter",
]
