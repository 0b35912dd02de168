"""Background loading of skills and external tool providers."""
from __future__ import annotations

import threading
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..core.utils.config import Settings
from ..core.utils.logger import get_logger
from ..mcp.provider import MCPToolProvider, ToolProvider, close_with_grace
from ..skills.loader import SkillDescriptor, load_skills
from ..tools.registry import Tool, ToolRegistry

LOGGER = get_logger(__name__)

SkillLoader = Callable[[Path], Sequence[SkillDescriptor]]
ProviderFactory = Callable[[Path], ToolProvider]


class BootstrapError(RuntimeError):
    """Raised (and logged) when a skill or tool source fails to load."""


class CapabilityBootstrapper:
    """Load skills and external tools once, on a daemon thread.

    Readers see whatever has been published so far; a call that starts before
    loading finishes simply runs with fewer capabilities.
    """

    def __init__(
        self,
        skills_dir: Optional[Path] = None,
        mcp_config: Optional[Path] = None,
        *,
        skill_loader: SkillLoader = load_skills,
        provider_factory: ProviderFactory = MCPToolProvider.from_config,
        bootstrap_timeout: float = 60.0,
        list_tools_timeout: float = 30.0,
        close_grace: float = 5.0,
    ) -> None:
        self.skills_dir = Path(skills_dir) if skills_dir else None
        self.mcp_config = Path(mcp_config) if mcp_config else None
        self._skill_loader = skill_loader
        self._provider_factory = provider_factory
        self.bootstrap_timeout = bootstrap_timeout
        self.list_tools_timeout = list_tools_timeout
        self.close_grace = close_grace

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._loading = False
        self._loaded = False
        self._skills: List[SkillDescriptor] = []
        self._tools: List[Tool] = []
        self._provider: Optional[ToolProvider] = None
        self._errors: List[BootstrapError] = []
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "CapabilityBootstrapper":
        return cls(
            settings.skills_dir,
            settings.mcp_config,
            skill_loader=partial(load_skills, script_timeout=settings.script_timeout),
            provider_factory=partial(MCPToolProvider.from_config, call_timeout=settings.chat_timeout),
            bootstrap_timeout=settings.bootstrap_timeout,
            list_tools_timeout=settings.list_tools_timeout,
            close_grace=settings.close_grace_period,
        )

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def loading(self) -> bool:
        with self._lock:
            return self._loading

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._loaded

    @property
    def skills(self) -> List[SkillDescriptor]:
        with self._lock:
            return list(self._skills)

    @property
    def tools(self) -> ToolRegistry:
        with self._lock:
            return ToolRegistry(self._tools)

    @property
    def errors(self) -> List[BootstrapError]:
        with self._lock:
            return list(self._errors)

    def wait_until_loaded(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._loading = True
            self._loaded = False
            self._thread = threading.Thread(target=self.run, name="langchat-bootstrap", daemon=True)
        self._thread.start()

    def run(self) -> None:
        """Load every configured capability source; never raises."""
        with self._lock:
            self._loading = True
        LOGGER.info("Starting background tools initialization")
        try:
            self._load_skills()
            self._load_provider()
        except Exception as exc:  # noqa: BLE001 - bootstrap faults stay local
            self._record(BootstrapError(f"Unexpected bootstrap failure: {exc}"), exc)
        finally:
            with self._lock:
                self._loading = False
                self._loaded = True
                skills_count, tools_count = len(self._skills), len(self._tools)
            self._done.set()
            LOGGER.info("Tools initialization complete: %d skill(s), %d tool(s) loaded", skills_count, tools_count)

    def close(self) -> None:
        """Release the provider; one still connecting is released when it finishes."""
        with self._lock:
            self._closed = True
            provider, self._provider = self._provider, None
            self._tools = []
        if provider is not None:
            LOGGER.info("Closing external tool provider")
            close_with_grace(provider, self.close_grace)

    # ------------------------------------------------------------------
    # Loading steps
    # ------------------------------------------------------------------

    def _record(self, error: BootstrapError, cause: Optional[BaseException] = None) -> None:
        error.__cause__ = cause
        with self._lock:
            self._errors.append(error)
        LOGGER.error("%s", error)

    def _load_skills(self) -> None:
        if self.skills_dir is None:
            return
        try:
            skills = list(self._skill_loader(self.skills_dir))
        except Exception as exc:  # noqa: BLE001 - skills are optional
            self._record(BootstrapError(f"Failed to load skills from {self.skills_dir}: {exc}"), exc)
            return
        with self._lock:
            self._skills = skills

    def _load_provider(self) -> None:
        if self.mcp_config is None:
            return
        provider: Optional[ToolProvider] = None
        try:
            provider = self._provider_factory(self.mcp_config)
            provider.connect(self.bootstrap_timeout)
            tools = list(provider.list_tools(self.list_tools_timeout))
        except Exception as exc:  # noqa: BLE001 - MCP is optional
            self._record(BootstrapError(f"MCP initialization failed (continuing without MCP): {exc}"), exc)
            if provider is not None:
                close_with_grace(provider, self.close_grace)
            return

        if not tools:
            LOGGER.info("No MCP tools found, closing provider")
            close_with_grace(provider, self.close_grace)
            return

        with self._lock:
            closed = self._closed
            if not closed:
                self._provider = provider
                self._tools = tools
        if closed:
            LOGGER.info("Bootstrapper closed while connecting, releasing MCP provider")
            close_with_grace(provider, self.close_grace)
            return
        LOGGER.info("Loaded %d MCP tool(s)", len(tools))


__all__ = ["BootstrapError", "CapabilityBootstrapper", "ProviderFactory", "SkillLoader"]
