"""Convenience exports for common utility helpers."""
from __future__ import annotations

from .config import DEFAULT_SYSTEM_PROMPT, Settings, find_config_in_parents, load_settings
from .deadline import CancellationError, Deadline, ensure_deadline
from .logger import (
    configure_logging,
    get_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
)

__all__ = [
    "CancellationError",
    "DEFAULT_SYSTEM_PROMPT",
    "Deadline",
    "Settings",
    "configure_logging",
    "ensure_deadline",
    "find_config_in_parents",
    "get_correlation_id",
    "get_logger",
    "load_settings",
    "reset_correlation_id",
    "set_correlation_id",
]
