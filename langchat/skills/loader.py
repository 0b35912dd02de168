"""Discover skill packages on disk and turn them into skill descriptors."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from ..core.utils.logger import get_logger
from ..tools.registry import Tool, ToolDescriptor, ToolRegistry
from ..tools.scripts import DEFAULT_SCRIPT_TIMEOUT, ReadFileTool, ScriptTool
from .frontmatter import (
    SkillMeta,
    load_markdown_with_frontmatter,
    meta_from_frontmatter,
    meta_from_plain_markdown,
)

LOGGER = get_logger(__name__)

CLAUDE_SKILL_FILE = "SKILL.md"
OPENAI_SKILL_FILE = "skill.md"
RESOURCE_DIRS: Tuple[str, ...] = ("scripts", "references", "assets", "templates")
BUILTIN_TOOL_NAMES: Tuple[str, ...] = ("read_file",)


class SkillLoadError(RuntimeError):
    """Raised when a skills directory or package cannot be read."""


@dataclass
class SkillDescriptor:
    """Named capability bundle: instructions plus the tools scoped to it."""

    name: str
    description: str
    body: str = ""
    path: Optional[Path] = None
    allowed_tools: List[str] = field(default_factory=list)
    tools: List[Tool] = field(default_factory=list)
    resources: List[Path] = field(default_factory=list)

    @property
    def system_preamble(self) -> str:
        return f"Skill: {self.name}\n{self.body}"

    @property
    def tool_descriptors(self) -> List[ToolDescriptor]:
        return [tool.descriptor for tool in self.tools]

    def registry(self) -> ToolRegistry:
        return ToolRegistry(self.tools)


def _skill_file(directory: Path) -> Optional[Path]:
    # Directory listing rather than Path.exists so that case-insensitive
    # filesystems still tell SKILL.md and skill.md apart.
    names = {child.name for child in directory.iterdir() if child.is_file()}
    for candidate in (CLAUDE_SKILL_FILE, OPENAI_SKILL_FILE):
        if candidate in names:
            return directory / candidate
    return None


def find_resource_files(skill_dir: Path) -> List[Path]:
    """Files under the conventional resource directories of a skill package."""
    found: List[Path] = []
    for dirname in RESOURCE_DIRS:
        root = skill_dir / dirname
        if not root.is_dir():
            continue
        found.extend(sorted(path for path in root.rglob("*") if path.is_file()))
    return found


def build_skill_tools(
    skill_dir: Path,
    meta: SkillMeta,
    *,
    script_timeout: float = DEFAULT_SCRIPT_TIMEOUT,
) -> List[Tool]:
    tools: List[Tool] = []
    allowed = {name.casefold() for name in meta.allowed_tools}
    for name in BUILTIN_TOOL_NAMES:
        if allowed and name.casefold() not in allowed:
            continue
        tools.append(ReadFileTool(skill_dir))

    scripts_dir = skill_dir / "scripts"
    if scripts_dir.is_dir():
        for script in sorted(path for path in scripts_dir.rglob("*") if path.is_file()):
            if script.name.startswith("."):
                continue
            tools.append(ScriptTool(script, skill_root=skill_dir, timeout=script_timeout))
    return tools


def load_skill(skill_dir: Path, *, script_timeout: float = DEFAULT_SCRIPT_TIMEOUT) -> SkillDescriptor:
    """Parse a single skill package directory."""
    skill_dir = Path(skill_dir)
    skill_file = _skill_file(skill_dir)
    if skill_file is None:
        raise SkillLoadError(f"No {CLAUDE_SKILL_FILE} or {OPENAI_SKILL_FILE} in {skill_dir}")

    try:
        if skill_file.name == CLAUDE_SKILL_FILE:
            frontmatter, body = load_markdown_with_frontmatter(skill_file)
            meta = meta_from_frontmatter(frontmatter, fallback_name=skill_dir.name)
        else:
            text = skill_file.read_text(encoding="utf-8")
            meta = meta_from_plain_markdown(text, directory_name=skill_dir.name)
            body = text.strip()
    except (OSError, ValueError) as exc:
        raise SkillLoadError(f"Failed to parse {skill_file}: {exc}") from exc

    if not meta.name:
        raise SkillLoadError(f"Skill at {skill_dir} has no name")

    return SkillDescriptor(
        name=meta.name,
        description=meta.description,
        body=body,
        path=skill_dir,
        allowed_tools=list(meta.allowed_tools),
        tools=build_skill_tools(skill_dir, meta, script_timeout=script_timeout),
        resources=find_resource_files(skill_dir),
    )


def _candidate_dirs(root: Path) -> Iterable[Path]:
    yield root
    for path in sorted(root.rglob("*")):
        if path.is_dir() and not any(part.startswith(".") for part in path.relative_to(root).parts):
            yield path


def load_skills(path: Path, *, script_timeout: float = DEFAULT_SCRIPT_TIMEOUT) -> List[SkillDescriptor]:
    """Load every skill package below ``path``.

    A directory counts as a package when it holds ``SKILL.md`` or ``skill.md``.
    Packages that fail to parse are logged and skipped; duplicate names keep
    the first package found.
    """
    root = Path(path)
    if not root.is_dir():
        raise SkillLoadError(f"Skills directory not found: {root}")

    skills: List[SkillDescriptor] = []
    seen: set[str] = set()
    for directory in _candidate_dirs(root):
        try:
            if _skill_file(directory) is None:
                continue
            skill = load_skill(directory, script_timeout=script_timeout)
        except (SkillLoadError, OSError) as exc:
            LOGGER.warning("Skipping skill package %s: %s", directory, exc)
            continue
        if skill.name in seen:
            LOGGER.warning("Duplicate skill %r at %s ignored", skill.name, directory)
            continue
        seen.add(skill.name)
        skills.append(skill)

    LOGGER.info("Loaded %d skill(s) from %s", len(skills), root)
    return skills


def skill_names(skills: Sequence[SkillDescriptor]) -> List[str]:
    return [skill.name for skill in skills]


__all__ = [
    "SkillDescriptor",
    "SkillLoadError",
    "build_skill_tools",
    "find_resource_files",
    "load_skill",
    "load_skills",
    "skill_names",
]
