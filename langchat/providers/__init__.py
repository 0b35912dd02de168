"""Provider integrations (LLM backends)."""
from __future__ import annotations

from .llm import client_from_settings, create_client

__all__ = ["client_from_settings", "create_client"]
