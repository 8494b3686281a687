"""MCP connections and the per-request tool registry built from them"""

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import anyio
from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client

from ..models.config import EndpointConfig
from ..models.tool import ToolOutput, ToolSpec
from .error_handler import (
    EndpointConnectionError,
    is_schema_validation_error,
    is_schema_validation_message,
)

logger = logging.getLogger(__name__)


class MCPConnection:
    """One live client session to a single MCP tool-provider endpoint.

    The transport and session contexts are held in an exit stack. They must be
    exited by the task that entered them, so connections are opened and
    released from the request task.
    """

    def __init__(self, endpoint: EndpointConfig, session: ClientSession, exit_stack: AsyncExitStack,
                 timeout: float = 30.0):
        self.endpoint = endpoint
        self.session = session
        self.timeout = timeout
        self._exit_stack = exit_stack
        self._released = False

    @property
    def url(self) -> str:
        return self.endpoint.url

    @property
    def released(self) -> bool:
        return self._released

    @classmethod
    async def open(cls, endpoint: EndpointConfig, timeout: float = 30.0) -> "MCPConnection":
        """Establish the transport and initialize an MCP session."""
        headers = endpoint.header_map()
        exit_stack = AsyncExitStack()
        try:
            if endpoint.type == "sse":
                read_stream, write_stream = await exit_stack.enter_async_context(
                    sse_client(endpoint.url, headers=headers)
                )
            else:
                read_stream, write_stream, _ = await exit_stack.enter_async_context(
                    streamablehttp_client(endpoint.url, headers=headers)
                )
            session = await exit_stack.enter_async_context(ClientSession(read_stream, write_stream))
            await asyncio.wait_for(session.initialize(), timeout=timeout)
        except BaseException as e:
            # A cancelled handshake still closes whatever was opened
            with anyio.CancelScope(shield=True):
                try:
                    await exit_stack.aclose()
                except Exception as close_error:
                    logger.debug(f"Error closing half-open connection to {endpoint.url}: {close_error}")
            if not isinstance(e, Exception):
                raise
            raise EndpointConnectionError(
                f"Failed to connect to MCP endpoint {endpoint.url}: {e}",
                {"url": endpoint.url, "type": endpoint.type},
            ) from e

        logger.info(f"Connected to MCP endpoint {endpoint.url} ({endpoint.type})")
        return cls(endpoint, session, exit_stack, timeout)

    async def list_tools(self) -> List[ToolSpec]:
        """Fetch the endpoint's tool catalog."""
        response = await asyncio.wait_for(self.session.list_tools(), timeout=self.timeout)
        tools = response.tools if hasattr(response, "tools") else []
        specs = []
        for tool in tools:
            specs.append(
                ToolSpec(
                    name=tool.name,
                    description=tool.description or "",
                    input_schema=dict(tool.inputSchema or {"type": "object"}),
                    invoke=self._invoker(tool.name),
                    endpoint=self.url,
                )
            )
        logger.info(f"MCP tools from {self.url}: {[spec.name for spec in specs]}")
        return specs

    def _invoker(self, tool_name: str) -> Callable[[Dict[str, Any]], Awaitable[ToolOutput]]:
        async def invoke(arguments: Dict[str, Any]) -> ToolOutput:
            return await self.invoke(tool_name, arguments)
        return invoke

    async def invoke(self, tool_name: str, arguments: Dict[str, Any]) -> ToolOutput:
        """Call a tool on this endpoint."""
        result = await self.session.call_tool(tool_name, arguments)
        return ToolOutput.from_mcp(result)

    async def release(self) -> None:
        """Close the session and transport. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        try:
            await self._exit_stack.aclose()
        except RuntimeError as e:
            # Raised when the contexts were entered by a different task
            if "cancel scope" in str(e).lower():
                logger.debug(f"Connection to {self.url} closed from a different task: {e}")
            else:
                raise
        logger.info(f"Released MCP connection to {self.url}")


def tolerant(spec: ToolSpec) -> ToolSpec:
    """Wrap a tool so schema-validation failures degrade to a placeholder result."""
    original = spec.invoke

    async def invoke(arguments: Dict[str, Any]) -> ToolOutput:
        try:
            output = await original(arguments)
        except Exception as e:
            if is_schema_validation_error(e):
                logger.info(f"Schema validation bypassed for {spec.name}")
                return ToolOutput.schema_placeholder()
            raise
        if output.is_error and is_schema_validation_message(output.as_text()):
            logger.info(f"Schema validation bypassed for {spec.name}")
            return ToolOutput.schema_placeholder()
        return output

    return ToolSpec(
        name=spec.name,
        description=spec.description,
        input_schema=spec.input_schema,
        invoke=invoke,
        endpoint=spec.endpoint,
    )


ConnectFn = Callable[[EndpointConfig], Awaitable[MCPConnection]]


class ToolRegistry:
    """Tools of every connection established for one request, keyed by name."""

    def __init__(self, connections: Optional[List[MCPConnection]] = None,
                 tools: Optional[Dict[str, ToolSpec]] = None):
        self.connections: List[MCPConnection] = connections or []
        self.tools: Dict[str, ToolSpec] = tools or {}
        self._released = False

    @classmethod
    async def build(cls, endpoints: Iterable[EndpointConfig], connect: Optional[ConnectFn] = None,
                    timeout: float = 30.0) -> "ToolRegistry":
        """Connect to each endpoint in turn and merge the catalogs.

        If the build itself is cancelled, connections opened so far are released.
        """
        registry = cls()
        try:
            await registry.populate(endpoints, connect=connect, timeout=timeout)
        except BaseException:
            await registry.release()
            raise
        return registry

    async def populate(self, endpoints: Iterable[EndpointConfig], connect: Optional[ConnectFn] = None,
                       timeout: float = 30.0, stop: Optional[asyncio.Event] = None) -> None:
        """Connect to each endpoint in turn, adding its tools to this registry.

        A failing endpoint is logged and skipped; it never aborts the build. Once
        ``stop`` is set no further endpoint is contacted. Every connection is
        tracked as soon as it is open, so the owner can release a partial build.
        """
        if connect is None:
            async def connect(endpoint: EndpointConfig) -> MCPConnection:
                return await MCPConnection.open(endpoint, timeout=timeout)

        for endpoint in endpoints:
            if stop is not None and stop.is_set():
                logger.info("Tool registry build stopped, skipping remaining endpoints")
                break
            try:
                connection = await connect(endpoint)
            except Exception as e:
                logger.error(f"Failed to initialize MCP client for {endpoint.url}: {e}")
                continue
            # Tracked before discovery so a failed catalog fetch is still released
            self.connections.append(connection)
            try:
                specs = await connection.list_tools()
            except Exception as e:
                logger.error(f"Tool discovery failed for {endpoint.url}: {e}")
                continue
            for spec in specs:
                # Later endpoints win on name collisions
                self.tools[spec.name] = tolerant(spec)

        logger.info(
            f"Tool registry ready: {len(self.tools)} tools from "
            f"{len(self.connections)} connection(s)"
        )

    def __len__(self) -> int:
        return len(self.tools)

    def __contains__(self, name: object) -> bool:
        return name in self.tools

    def names(self) -> List[str]:
        return list(self.tools.keys())

    def get(self, name: str) -> Optional[ToolSpec]:
        return self.tools.get(name)

    def subset(self, names: Iterable[str]) -> Dict[str, ToolSpec]:
        """Materialize the given names, in the given order, skipping unknown ones."""
        return {name: self.tools[name] for name in names if name in self.tools}

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        """Release every connection, logging individual failures. Idempotent.

        Runs shielded from cancellation so a disconnecting caller cannot leave
        connections half released.
        """
        if self._released:
            return
        with anyio.CancelScope(shield=True):
            for connection in self.connections:
                try:
                    await connection.release()
                except Exception as e:
                    logger.error(f"Error during MCP client cleanup for {connection.url}: {e}")
        self._released = True
