"""External tool providers backed by MCP servers.

The ``mcp`` SDK is asyncio based while the conversation core is synchronous.
Each :class:`MCPToolProvider` therefore runs a private event loop on a daemon
thread. One long-lived owner task enters every server's stdio transport and
client session, reports readiness, then parks until :meth:`close` wakes it so
that the transports are unwound by the same task that opened them.
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import json
import threading
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client

from ..core.utils.deadline import CancellationError, Deadline
from ..core.utils.logger import get_logger
from ..tools.registry import EMPTY_SCHEMA, Tool, ToolDescriptor, ToolExecutionError
from .config import MCPServerConfig, ToolProviderError, load_mcp_config

LOGGER = get_logger(__name__)

DEFAULT_CALL_TIMEOUT = 120.0
MAX_RESULT_CHARS = 20_000


class ToolProvider(Protocol):
    """Long-latency handle on an external tool set; callers bound every call."""

    def connect(self, timeout: float) -> None:
        ...

    def list_tools(self, timeout: float) -> List[Tool]:
        ...

    def close(self) -> None:
        ...


def _tool_arguments(tool_input: str) -> Dict[str, Any]:
    text = (tool_input or "").strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {"input": tool_input}
    if isinstance(parsed, dict):
        return parsed
    return {"input": tool_input}


def _result_text(result: Any) -> str:
    parts: List[str] = []
    for item in getattr(result, "content", None) or []:
        text = getattr(item, "text", None)
        parts.append(text if isinstance(text, str) else str(item))
    output = "\n".join(parts)
    if len(output) > MAX_RESULT_CHARS:
        output = output[:MAX_RESULT_CHARS] + f"\n... [truncated {len(output) - MAX_RESULT_CHARS} chars]"
    return output


def _parameters(schema: Any) -> Dict[str, Any]:
    if not isinstance(schema, Mapping):
        return dict(EMPTY_SCHEMA)
    parameters = dict(schema)
    parameters.setdefault("type", "object")
    if not isinstance(parameters.get("properties"), Mapping):
        parameters["properties"] = {}
    return parameters


class MCPTool:
    """Synchronous facade over one tool exposed by an MCP server."""

    def __init__(self, provider: "MCPToolProvider", server: str, descriptor: ToolDescriptor) -> None:
        self._provider = provider
        self.server = server
        self.descriptor = descriptor

    def call(self, tool_input: str, *, deadline: Optional[Deadline] = None) -> str:
        return self._provider.call_tool(
            self.server,
            self.descriptor.name,
            _tool_arguments(tool_input),
            deadline=deadline,
        )

    def __repr__(self) -> str:
        return f"MCPTool({self.server!r}, {self.descriptor.name!r})"


class MCPToolProvider:
    """Connects to the configured MCP servers over stdio and exposes their tools."""

    def __init__(
        self,
        servers: Sequence[MCPServerConfig],
        *,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
    ) -> None:
        self._servers = list(servers)
        self.call_timeout = call_timeout
        self._sessions: Dict[str, ClientSession] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._owner: Optional[concurrent.futures.Future] = None
        self._shutdown: Optional[asyncio.Event] = None

    @classmethod
    def from_config(cls, path: Path, **kwargs: Any) -> "MCPToolProvider":
        return cls(load_mcp_config(path), **kwargs)

    @property
    def connected(self) -> bool:
        return bool(self._sessions) and self._owner is not None and not self._owner.done()

    # ------------------------------------------------------------------
    # Event loop plumbing
    # ------------------------------------------------------------------

    def _start_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            loop = asyncio.new_event_loop()
            thread = threading.Thread(
                target=self._run_loop, args=(loop,), name="langchat-mcp-loop", daemon=True
            )
            self._loop, self._thread = loop, thread
            thread.start()
        return self._loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    async def _enter_server(self, server: MCPServerConfig, stack: AsyncExitStack, timeout: float) -> ClientSession:
        params = StdioServerParameters(
            command=server.command,
            args=list(server.args),
            env=server.env,
            cwd=server.cwd,
        )
        read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
        session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
        await asyncio.wait_for(session.initialize(), timeout=timeout)
        return session

    async def _own_sessions(self, ready: concurrent.futures.Future, timeout: float) -> None:
        self._shutdown = asyncio.Event()
        try:
            async with AsyncExitStack() as stack:
                for server in self._servers:
                    server_stack = AsyncExitStack()
                    await server_stack.__aenter__()
                    try:
                        session = await self._enter_server(server, server_stack, timeout)
                    except Exception as exc:  # noqa: BLE001 - one bad server must not sink the rest
                        LOGGER.warning("MCP server %s failed to start: %s", server.name, exc)
                        await server_stack.aclose()
                        continue
                    stack.push_async_callback(server_stack.aclose)
                    self._sessions[server.name] = session
                    LOGGER.debug("MCP server %s initialized", server.name)

                if not self._sessions:
                    raise ToolProviderError("No MCP server could be started")
                ready.set_result(list(self._sessions))
                await self._shutdown.wait()
        except asyncio.CancelledError:
            if not ready.done():
                ready.cancel()
            raise
        except Exception as exc:
            if not ready.done():
                ready.set_exception(exc)
            else:
                LOGGER.warning("MCP transport shutdown reported an error: %s", exc)
        finally:
            self._sessions.clear()

    # ------------------------------------------------------------------
    # ToolProvider API
    # ------------------------------------------------------------------

    def connect(self, timeout: float) -> None:
        if self._owner is not None:
            raise ToolProviderError("MCP provider is already connected")
        if not self._servers:
            raise ToolProviderError("No MCP servers configured")
        loop = self._start_loop()
        ready: concurrent.futures.Future = concurrent.futures.Future()
        self._owner = asyncio.run_coroutine_threadsafe(self._own_sessions(ready, timeout), loop)
        try:
            names = ready.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            raise ToolProviderError(f"Connecting to MCP servers timed out after {timeout:.0f}s") from exc
        except ToolProviderError:
            raise
        except Exception as exc:
            raise ToolProviderError(f"Failed to connect to MCP servers: {exc}") from exc
        LOGGER.info("Connected to %d MCP server(s): %s", len(names), ", ".join(names))

    async def _list_all(self) -> List[Tool]:
        tools: List[Tool] = []
        seen: Dict[str, str] = {}
        for server, session in list(self._sessions.items()):
            result = await session.list_tools()
            for tool in result.tools:
                if tool.name in seen:
                    LOGGER.warning(
                        "Duplicate MCP tool %r from %s ignored (already provided by %s)",
                        tool.name,
                        server,
                        seen[tool.name],
                    )
                    continue
                seen[tool.name] = server
                descriptor = ToolDescriptor(
                    name=tool.name,
                    description=tool.description or "",
                    parameters=_parameters(tool.inputSchema),
                )
                tools.append(MCPTool(self, server, descriptor))
        return tools

    def list_tools(self, timeout: float) -> List[Tool]:
        loop = self._require_loop()
        future = asyncio.run_coroutine_threadsafe(self._list_all(), loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise ToolProviderError(f"Listing MCP tools timed out after {timeout:.0f}s") from exc
        except Exception as exc:
            raise ToolProviderError(f"Failed to list MCP tools: {exc}") from exc

    def call_tool(
        self,
        server: str,
        name: str,
        arguments: Dict[str, Any],
        *,
        deadline: Optional[Deadline] = None,
    ) -> str:
        loop = self._require_loop()
        session = self._sessions.get(server)
        if session is None:
            raise ToolExecutionError(f"MCP server {server!r} is not connected")
        if deadline is not None:
            deadline.check(f"MCP tool {name}")
        timeout = deadline.clamp(self.call_timeout) if deadline is not None else self.call_timeout

        future = asyncio.run_coroutine_threadsafe(session.call_tool(name, arguments), loop)
        try:
            result = future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            if deadline is not None and deadline.expired:
                raise CancellationError(f"MCP tool {name} exceeded the call deadline") from exc
            raise ToolExecutionError(f"MCP tool {name} timed out after {timeout:.0f}s") from exc
        except Exception as exc:
            raise ToolExecutionError(f"MCP tool {name} failed: {exc}") from exc

        output = _result_text(result)
        if getattr(result, "isError", False):
            raise ToolExecutionError(output or f"MCP tool {name} reported an error")
        return output

    def close(self) -> None:
        """Wake the owner task, wait for the transports to unwind, stop the loop."""
        loop, owner = self._loop, self._owner
        if loop is None:
            return
        if owner is not None and not owner.done():
            if self._shutdown is not None:
                loop.call_soon_threadsafe(self._shutdown.set)
            else:
                owner.cancel()
            try:
                owner.result()
            except concurrent.futures.CancelledError:
                pass
        loop.call_soon_threadsafe(loop.stop)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._loop = self._thread = self._owner = self._shutdown = None
        LOGGER.debug("MCP provider closed")

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or not self._sessions:
            raise ToolProviderError("MCP provider is not connected")
        return self._loop


def close_with_grace(provider: Any, grace: float) -> bool:
    """Close ``provider`` on a helper thread, waiting at most ``grace`` seconds.

    Returns ``True`` when the close finished in time without error. A close that
    overruns is abandoned on its daemon thread; faults are logged, never raised.
    """
    if provider is None:
        return True
    outcome: concurrent.futures.Future = concurrent.futures.Future()

    def _close() -> None:
        try:
            provider.close()
        except Exception as exc:  # noqa: BLE001 - handed to the waiting thread
            outcome.set_exception(exc)
        else:
            outcome.set_result(None)

    threading.Thread(target=_close, name="langchat-provider-close", daemon=True).start()
    try:
        outcome.result(timeout=grace)
    except concurrent.futures.TimeoutError:
        LOGGER.warning("Tool provider close timed out after %.1fs; continuing without waiting", grace)
        return False
    except Exception as exc:  # noqa: BLE001 - release is best effort
        LOGGER.error("Failed to close tool provider: %s", exc)
        return False
    return True


__all__ = [
    "MCPTool",
    "MCPToolProvider",
    "ToolProvider",
    "close_with_grace",
]
