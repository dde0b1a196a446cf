"""MCP (Model Context Protocol) connector for actionflow.

Runs connector actions as tools on an MCP server, and can export the
server's tools as registry definitions.

Requires: pip install actionflow[mcp]
"""

import asyncio
import json
from contextlib import AsyncExitStack
from typing import Any, Optional, Union

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.client.streamable_http import streamablehttp_client

from actionflow.exceptions import DispatchFailure
from actionflow.executors import ConnectorExecutor
from actionflow.tools import ToolDefinition

DEFAULT_TIMEOUT = 30.0


def _decode(text_parts: list[str]) -> Any:
    decoded = []
    for text in text_parts:
        try:
            decoded.append(json.loads(text))
        except ValueError:
            decoded.append(text)
    if len(decoded) == 1:
        return decoded[0]
    return decoded or None


class MCPExecutor(ConnectorExecutor):
    """Manages one MCP server connection and triggers actions on it.

    Supports two transports:
    - stdio: MCPExecutor(StdioServerParameters(command="python", args=["server.py"]))
    - streamable HTTP: MCPExecutor("http://localhost:8000/mcp")

    Args:
        server_params: StdioServerParameters for stdio, or a URL string for HTTP.
        timeout: Timeout in seconds for initialize, list_tools and each call.
        provider_config_key: Binding given to exported tool definitions.

    Usage as async context manager:
        async with MCPExecutor(server_params) as executor:
            for tool in await executor.list_tool_definitions():
                registry.register(tool)
    """

    def __init__(
        self,
        server_params: Union[StdioServerParameters, str],
        timeout: float = DEFAULT_TIMEOUT,
        provider_config_key: str = "mcp",
    ):
        self._server_params = server_params
        self._timeout = timeout
        self.provider_config_key = provider_config_key
        self._exit_stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None

    async def connect(self) -> None:
        """Open transport and initialize the session."""
        if self._exit_stack is not None:
            await self.disconnect()

        self._exit_stack = AsyncExitStack()
        try:
            if isinstance(self._server_params, str):
                transport = await self._exit_stack.enter_async_context(
                    streamablehttp_client(self._server_params)
                )
            else:
                transport = await self._exit_stack.enter_async_context(
                    stdio_client(self._server_params)
                )

            read_stream, write_stream, *_ = transport
            self._session = await self._exit_stack.enter_async_context(
                ClientSession(read_stream, write_stream)
            )
            await asyncio.wait_for(self._session.initialize(), timeout=self._timeout)
        except BaseException:
            await self.disconnect()
            raise

    async def disconnect(self) -> None:
        if self._exit_stack:
            await self._exit_stack.aclose()
            self._exit_stack = None
            self._session = None

    async def __aenter__(self) -> "MCPExecutor":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise DispatchFailure("MCP executor is not connected")
        return self._session

    async def list_tool_definitions(self, category: str = "General") -> list[ToolDefinition]:
        session = self._require_session()
        tools_result = await asyncio.wait_for(session.list_tools(), timeout=self._timeout)
        return [
            ToolDefinition(
                name=t.name,
                description=t.description or "",
                parameters=t.inputSchema or {"type": "object", "properties": {}},
                provider_config_key=self.provider_config_key,
                category=category,
            )
            for t in tools_result.tools
        ]

    async def trigger(
        self,
        provider_config_key: str,
        connection_id: str,
        action_name: str,
        payload: dict,
    ) -> Any:
        session = self._require_session()
        try:
            result = await asyncio.wait_for(
                session.call_tool(action_name, arguments=payload),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            raise DispatchFailure(
                f"MCP tool '{action_name}' timed out after {self._timeout}s"
            )

        text_parts = [c.text for c in result.content if hasattr(c, "text")]
        if result.isError:
            return {
                "success": False,
                "message": " ".join(text_parts) or f"MCP tool '{action_name}' returned an error",
            }
        return {"success": True, "data": _decode(text_parts)}
