"""Core utilities shared across the chat agent."""
from __future__ import annotations

from .utils import (
    DEFAULT_SYSTEM_PROMPT,
    CancellationError,
    Deadline,
    Settings,
    configure_logging,
    ensure_deadline,
    get_logger,
    load_settings,
)

__all__ = [
    "CancellationError",
    "DEFAULT_SYSTEM_PROMPT",
    "Deadline",
    "Settings",
    "configure_logging",
    "ensure_deadline",
    "get_logger",
    "load_settings",
]
