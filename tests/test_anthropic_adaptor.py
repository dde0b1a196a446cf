"""Tests for the Anthropic adaptor."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from actionflow.execution import Message, ToolCall


# --- Test fixtures ---


def event(type, **fields):
    return SimpleNamespace(type=type, **fields)


def text_delta(text, index=0):
    return event("content_block_delta", index=index, delta=SimpleNamespace(type="text_delta", text=text))


def tool_start(index, id, name):
    return event(
        "content_block_start",
        index=index,
        content_block=SimpleNamespace(type="tool_use", id=id, name=name),
    )


def json_delta(index, partial):
    return event(
        "content_block_delta",
        index=index,
        delta=SimpleNamespace(type="input_json_delta", partial_json=partial),
    )


def stop(reason):
    return event("message_delta", delta=SimpleNamespace(stop_reason=reason))


def event_stream(*events):
    async def iterate():
        for e in events:
            yield e

    return iterate()


@pytest.fixture
def adaptor():
    with patch("actionflow.adaptors.anthropic.AsyncAnthropic") as mock_cls:
        mock_client = MagicMock()
        mock_client.messages = MagicMock()
        mock_client.messages.create = AsyncMock()
        mock_cls.return_value = mock_client

        from actionflow.adaptors.anthropic import AnthropicAdaptor

        yield AnthropicAdaptor(api_key="test-key")


# --- Initialization ---


class TestInit:
    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with patch("actionflow.adaptors.anthropic.AsyncAnthropic"):
            from actionflow.adaptors.anthropic import AnthropicAdaptor

            with pytest.raises(ValueError, match="Anthropic API key not provided"):
                AnthropicAdaptor()

    def test_env_api_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")
        with patch("actionflow.adaptors.anthropic.AsyncAnthropic") as mock_cls:
            from actionflow.adaptors.anthropic import AnthropicAdaptor

            adaptor = AnthropicAdaptor(model="claude-haiku-4-5")
            assert adaptor.model == "claude-haiku-4-5"
            mock_cls.assert_called_once_with(api_key="env-key")


# --- Message conversion ---


class TestConvertMessages:
    def test_system_is_extracted(self, adaptor):
        system, messages = adaptor._convert_messages(
            [
                Message(role="system", content="Be brief"),
                Message(role="system", content="Use markdown"),
                Message(role="user", content="Hi"),
            ]
        )
        assert system == "Be brief\n\nUse markdown"
        assert messages == [{"role": "user", "content": "Hi"}]

    def test_tool_flow(self, adaptor):
        _, messages = adaptor._convert_messages(
            [
                Message(
                    role="assistant",
                    content="Checking",
                    tool_calls=[ToolCall(id="tu_1", name="list_calendars", arguments={})],
                ),
                Message(role="tool", content="[]", tool_call_id="tu_1"),
            ]
        )
        assert messages[0]["content"][1] == {"type": "tool_use", "id": "tu_1", "name": "list_calendars", "input": {}}
        assert messages[1]["role"] == "user"
        assert messages[1]["content"][0]["tool_use_id"] == "tu_1"

    def test_convert_tool(self, adaptor):
        tool = {"type": "function", "function": {"name": "t", "description": "d", "parameters": None}}
        assert adaptor._convert_tool(tool) == {
            "name": "t",
            "description": "d",
            "input_schema": {"type": "object", "properties": {}},
        }


# --- Streaming ---


class TestStream:
    @pytest.mark.asyncio
    async def test_text_stream(self, adaptor):
        adaptor.client.messages.create.return_value = event_stream(
            event("message_start"), text_delta("Hel"), text_delta("lo"), stop("end_turn")
        )

        deltas = [d async for d in adaptor.stream([Message(role="system", content="sys"), Message(role="user", content="Hi")], temperature=0.5)]

        assert [d.content for d in deltas[:2]] == ["Hel", "lo"]
        assert deltas[-1].finish_reason == "stop"
        kwargs = adaptor.client.messages.create.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["system"] == "sys"
        assert kwargs["temperature"] == 0.5
        assert "tools" not in kwargs

    @pytest.mark.asyncio
    async def test_tool_use_through_complete(self, adaptor):
        adaptor.client.messages.create.return_value = event_stream(
            text_delta("Let me send that."),
            tool_start(1, "toolu_1", "send_email"),
            json_delta(1, '{"to": '),
            json_delta(1, '"a@b.c"}'),
            stop("tool_use"),
        )
        tools = [{"type": "function", "function": {"name": "send_email", "parameters": {"type": "object"}}}]

        result = await adaptor.complete([Message(role="user", content="mail")], tools, tool_choice="any")

        assert result.content == "Let me send that."
        assert result.finish_reason == "tool_calls"
        [call] = result.tool_calls
        assert (call.id, call.name, call.arguments) == ("toolu_1", "send_email", {"to": "a@b.c"})
        kwargs = adaptor.client.messages.create.call_args.kwargs
        assert kwargs["tool_choice"] == {"type": "any"}
        assert kwargs["tools"][0]["input_schema"] == {"type": "object"}

    @pytest.mark.asyncio
    async def test_max_tokens_stop_reason(self, adaptor):
        adaptor.client.messages.create.return_value = event_stream(stop("max_tokens"))
        result = await adaptor.complete([Message(role="user", content="long")])
        assert result.finish_reason == "length"
