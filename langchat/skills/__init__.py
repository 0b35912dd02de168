"""Skill packages: Markdown instructions plus scoped tools."""
from __future__ import annotations

from .frontmatter import SkillMeta, load_markdown_with_frontmatter, split_frontmatter
from .loader import (
    SkillDescriptor,
    SkillLoadError,
    build_skill_tools,
    find_resource_files,
    load_skill,
    load_skills,
    skill_names,
)

__all__ = [
    "SkillDescriptor",
    "SkillLoadError",
    "SkillMeta",
    "build_skill_tools",
    "find_resource_files",
    "load_markdown_with_frontmatter",
    "load_skill",
    "load_skills",
    "skill_names",
    "split_frontmatter",
]
