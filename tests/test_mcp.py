import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from actionflow.dispatcher import ToolDispatcher
from actionflow.exceptions import DispatchFailure
from actionflow.execution import ToolCall
from actionflow.mcp import DEFAULT_TIMEOUT, MCPExecutor, _decode


def _make_text_content(text: str):
    """Create a mock TextContent object."""
    content = MagicMock()
    content.text = text
    return content


def _make_image_content():
    """Create a mock non-text content object (e.g. ImageContent)."""
    return MagicMock(spec=[])  # no .text attribute


def _mock_mcp_infra(tools=None):
    mock_session = AsyncMock()
    mock_session.list_tools.return_value = MagicMock(tools=tools or [])
    mock_session.initialize = AsyncMock()
    return mock_session, MagicMock(), MagicMock()


def _context(value):
    cm = AsyncMock()
    cm.__aenter__.return_value = value
    cm.__aexit__.return_value = False
    return cm


def _connected_executor(session, timeout=DEFAULT_TIMEOUT):
    executor = MCPExecutor("http://localhost:8000/mcp", timeout=timeout)
    executor._session = session
    return executor


def _call_result(*contents, is_error=False):
    result = MagicMock()
    result.isError = is_error
    result.content = list(contents)
    return result


# --- _decode ---


class TestDecode:
    def test_single_json_block(self):
        assert _decode(['{"records": [1, 2]}']) == {"records": [1, 2]}

    def test_plain_text(self):
        assert _decode(["hello world"]) == "hello world"

    def test_multiple_blocks(self):
        assert _decode(["1", "two"]) == [1, "two"]

    def test_empty(self):
        assert _decode([]) is None


# --- trigger ---


class TestTrigger:
    async def test_success_returns_decoded_data(self):
        session = AsyncMock()
        session.call_tool.return_value = _call_result(_make_text_content('{"id": "evt_1"}'))

        executor = _connected_executor(session)
        response = await executor.trigger("mcp", "conn-1", "create_event", {"summary": "Sync"})

        assert response == {"success": True, "data": {"id": "evt_1"}}
        session.call_tool.assert_called_once_with("create_event", arguments={"summary": "Sync"})

    async def test_error_result(self):
        session = AsyncMock()
        session.call_tool.return_value = _call_result(_make_text_content("calendar not found"), is_error=True)

        response = await _connected_executor(session).trigger("mcp", "c", "create_event", {})

        assert response == {"success": False, "message": "calendar not found"}

    async def test_error_without_text(self):
        session = AsyncMock()
        session.call_tool.return_value = _call_result(_make_image_content(), is_error=True)

        response = await _connected_executor(session).trigger("mcp", "c", "render", {})

        assert response["message"] == "MCP tool 'render' returned an error"

    async def test_non_text_content_is_skipped(self):
        session = AsyncMock()
        session.call_tool.return_value = _call_result(_make_image_content(), _make_text_content("caption"))

        response = await _connected_executor(session).trigger("mcp", "c", "render", {})

        assert response["data"] == "caption"

    async def test_timeout(self):
        session = AsyncMock()

        async def slow_call(*args, **kwargs):
            await asyncio.sleep(10)

        session.call_tool.side_effect = slow_call
        executor = _connected_executor(session, timeout=0.01)

        with pytest.raises(DispatchFailure, match="timed out"):
            await executor.trigger("mcp", "c", "slow", {})

    async def test_not_connected(self):
        with pytest.raises(DispatchFailure, match="not connected"):
            await MCPExecutor("http://localhost:8000/mcp").trigger("mcp", "c", "x", {})


# --- connection lifecycle ---


class TestMCPExecutorConnection:
    async def test_connect_stdio_and_list_tools(self):
        mock_tool = MagicMock()
        mock_tool.name = "create_event"
        mock_tool.description = "Create a calendar event"
        mock_tool.inputSchema = {"properties": {"summary": {"type": "string"}}, "required": ["summary"]}
        mock_session, mock_read, mock_write = _mock_mcp_infra([mock_tool])

        with patch("actionflow.mcp.stdio_client") as mock_stdio:
            mock_stdio.return_value = _context((mock_read, mock_write))

            with patch("actionflow.mcp.ClientSession") as mock_session_cls:
                mock_session_cls.return_value = _context(mock_session)

                from mcp.client.stdio import StdioServerParameters

                executor = MCPExecutor(
                    StdioServerParameters(command="python", args=["server.py"]),
                    provider_config_key="calendar-mcp",
                )
                await executor.connect()
                definitions = await executor.list_tool_definitions(category="Calendar")

                [definition] = definitions
                assert definition.name == "create_event"
                assert definition.provider_config_key == "calendar-mcp"
                assert definition.category == "Calendar"
                assert definition.required == ["summary"]
                mock_session.initialize.assert_awaited_once()

                await executor.disconnect()
                assert executor._session is None

    async def test_connect_http(self):
        mock_session, mock_read, mock_write = _mock_mcp_infra()

        with patch("actionflow.mcp.streamablehttp_client") as mock_http:
            mock_http.return_value = _context((mock_read, mock_write, MagicMock()))

            with patch("actionflow.mcp.ClientSession") as mock_session_cls:
                mock_session_cls.return_value = _context(mock_session)

                async with MCPExecutor("http://localhost:8000/mcp") as executor:
                    assert await executor.list_tool_definitions() == []

                mock_http.assert_called_once_with("http://localhost:8000/mcp")
                assert executor._exit_stack is None

    async def test_connect_failure_cleans_up(self):
        """If connect() fails partway through, resources are cleaned up."""
        mock_session, mock_read, mock_write = _mock_mcp_infra()
        mock_session.initialize.side_effect = RuntimeError("init failed")

        with patch("actionflow.mcp.stdio_client") as mock_stdio:
            mock_stdio.return_value = _context((mock_read, mock_write))

            with patch("actionflow.mcp.ClientSession") as mock_session_cls:
                mock_session_cls.return_value = _context(mock_session)

                from mcp.client.stdio import StdioServerParameters

                executor = MCPExecutor(StdioServerParameters(command="echo", args=["hi"]))
                with pytest.raises(RuntimeError, match="init failed"):
                    await executor.connect()

                assert executor._exit_stack is None
                assert executor._session is None

    async def test_disconnect_without_connect(self):
        executor = MCPExecutor("http://localhost:8000/mcp")
        await executor.disconnect()
        assert executor._session is None

    async def test_dispatch_through_registry(self, registry, connections):
        session = AsyncMock()
        session.call_tool.return_value = _call_result(_make_text_content('["Work", "Home"]'))
        executor = _connected_executor(session)
        registry.register({"name": "mcp_calendars", "providerConfigKey": "mcp", "actionName": "list_calendars"})

        result = await ToolDispatcher(registry, connections, executor).execute_tool(
            ToolCall(id="c1", name="mcp_calendars", arguments={}, user_id="user-1")
        )

        assert result.ok
        assert result.data == ["Work", "Home"]
