"""Tests for tool dispatch and response normalization."""

import pytest

from actionflow.connections import ConnectionStore, InMemoryKeyValueStore
from actionflow.dispatcher import ToolDispatcher, normalize_response, shape_entity_arguments
from actionflow.exceptions import DispatchFailure, ToolValidationError
from actionflow.execution import ResultStatus, ToolCall, ToolResult

from conftest import FakeExecutor


def call(name="send_email", arguments=None, user_id="user-1", call_id="c1"):
    return ToolCall(id=call_id, name=name, arguments=arguments or {}, session_id="s1", user_id=user_id)


class TestNormalizeResponse:
    def test_success_flag(self):
        result = normalize_response("t", {"success": True, "data": {"id": 1}})
        assert result.ok
        assert result.data == {"id": 1}

    def test_missing_flag_without_error_is_success(self):
        result = normalize_response("t", {"id": 1})
        assert result.ok
        assert result.data == {"id": 1}

    def test_missing_flag_with_error_fails(self):
        result = normalize_response("t", {"error": "quota exceeded"})
        assert not result.ok
        assert result.error == "quota exceeded"
        assert result.error_type == "DispatchFailure"

    def test_errors_list_joined(self):
        result = normalize_response("t", {"success": False, "errors": [{"message": "a"}, "b"]})
        assert result.error == "a; b"

    def test_message_used_when_success_false(self):
        assert normalize_response("t", {"success": False, "message": "nope"}).error == "nope"

    def test_default_failure_message(self):
        assert normalize_response("t", {"success": False}).error == "Tool 't' failed."

    def test_non_dict_is_success(self):
        assert normalize_response("t", ["a", "b"]).data == ["a", "b"]

    def test_tool_result_passes_through(self):
        existing = ToolResult.failure("t", "x")
        assert normalize_response("t", existing) is existing


class TestEntityShaping:
    def test_flattens_nested_identifier(self):
        args = shape_entity_arguments(
            "fetch_entity",
            {
                "identifier": {
                    "type": {"operation": "fetch", "entityType": "Contact", "filters": {"Name": "Ada"}}
                },
                "fields": {"limit": 5},
            },
        )
        assert args == {"operation": "fetch", "entityType": "Contact", "filters": {"Name": "Ada"}, "limit": 5}

    def test_operation_defaults_to_tool_prefix(self):
        args = shape_entity_arguments("update_entity", {"entityType": "Deal", "identifier": "006"})
        assert args["operation"] == "update"

    def test_missing_entity_type_raises(self):
        with pytest.raises(ToolValidationError, match="Missing operation/entityType for fetch_entity"):
            shape_entity_arguments("fetch_entity", {"identifier": "003"})


class TestExecuteTool:
    @pytest.mark.asyncio
    async def test_dispatches_with_binding(self, dispatcher, executor):
        result = await dispatcher.execute_tool(call(arguments={"to": "a@b.c"}))

        assert result.ok
        assert result.data == {"ok": True}
        assert executor.calls == [
            {
                "provider_config_key": "google-mail",
                "connection_id": "conn-1",
                "action_name": "send-email",
                "payload": {"to": "a@b.c"},
            }
        ]

    @pytest.mark.asyncio
    async def test_action_name_defaults_to_tool_name(self, dispatcher, executor):
        await dispatcher.execute_tool(call(name="list_calendars"))
        assert executor.calls[0]["action_name"] == "list_calendars"

    @pytest.mark.asyncio
    async def test_missing_provider_key(self, dispatcher, executor):
        result = await dispatcher.execute_tool(call(name="unbound_tool"))
        assert result.status == ResultStatus.FAILED
        assert result.error == "Configuration missing 'providerConfigKey' for tool: unbound_tool"
        assert result.error_type == "ConfigurationError"
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_no_active_connection(self, registry, executor):
        dispatcher = ToolDispatcher(registry, ConnectionStore(InMemoryKeyValueStore()), executor)
        result = await dispatcher.execute_tool(call())
        assert result.error_type == "NoActiveConnection"
        assert "No active connection" in result.error
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_executor_failure_becomes_result(self, registry, connections):
        executor = FakeExecutor({"send-email": DispatchFailure("Connector action 'send-email' failed (500): boom")})
        dispatcher = ToolDispatcher(registry, connections, executor)
        result = await dispatcher.execute_tool(call())
        assert result.error_type == "DispatchFailure"
        assert result.error.endswith("boom")

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_result(self, registry, connections):
        executor = FakeExecutor({"send-email": RuntimeError("socket closed")})
        dispatcher = ToolDispatcher(registry, connections, executor)
        result = await dispatcher.execute_tool(call())
        assert not result.ok
        assert result.error == "socket closed"
        assert result.error_type == "DispatchFailure"

    @pytest.mark.asyncio
    async def test_connector_error_body(self, registry, connections):
        executor = FakeExecutor({"send-email": {"success": False, "error": "Mailbox full"}})
        dispatcher = ToolDispatcher(registry, connections, executor)
        result = await dispatcher.execute_tool(call())
        assert result.error == "Mailbox full"

    @pytest.mark.asyncio
    async def test_entity_shaping_applied(self, dispatcher, executor):
        await dispatcher.execute_tool(call(name="fetch_entity", arguments={"entityType": "Lead", "identifier": "00Q"}))
        assert executor.calls[0]["payload"] == {"entityType": "Lead", "identifier": "00Q", "operation": "fetch"}

    @pytest.mark.asyncio
    async def test_shaping_failure_skips_executor(self, dispatcher, executor):
        result = await dispatcher.execute_tool(call(name="fetch_entity", arguments={"identifier": "00Q"}))
        assert result.error_type == "ToolValidationError"
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_custom_shaper(self, dispatcher, executor):
        dispatcher.register_shaper("send_email", lambda name, args: {**args, "format": "html"})
        await dispatcher.execute_tool(call(arguments={"to": "a@b.c"}))
        assert executor.calls[0]["payload"] == {"to": "a@b.c", "format": "html"}


class TestDispatchHooks:
    @pytest.mark.asyncio
    async def test_before_hook_rewrites_arguments(self, dispatcher, executor):
        @dispatcher.hooks.on("before_tool_dispatch")
        async def add_signature(event):
            return {"arguments": {**event.arguments, "body": "Hi\n--\nSent by bot"}}

        await dispatcher.execute_tool(call(arguments={"to": "a@b.c", "body": "Hi"}))
        assert executor.calls[0]["payload"]["body"].endswith("Sent by bot")

    @pytest.mark.asyncio
    async def test_skip_with_cached_result(self, dispatcher, executor):
        @dispatcher.hooks.on("before_tool_dispatch")
        async def cache(event):
            return {"action": "skip", "cached_result": {"success": True, "data": "cached"}}

        result = await dispatcher.execute_tool(call())
        assert result.data == "cached"
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_after_and_error_hooks(self, registry, connections):
        dispatcher = ToolDispatcher(registry, connections, FakeExecutor({"send-email": RuntimeError("down")}))
        seen = []

        @dispatcher.hooks.on("on_dispatch_error")
        async def on_error(event):
            seen.append(("error", event.error_message))

        @dispatcher.hooks.on("after_tool_dispatch")
        async def after(event):
            seen.append(("after", event.result.status.value))

        await dispatcher.execute_tool(call())
        assert seen == [("error", "down"), ("after", "failed")]

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_dispatch(self, dispatcher):
        @dispatcher.hooks.on("before_tool_dispatch")
        async def broken(event):
            raise ValueError("bug in hook")

        result = await dispatcher.execute_tool(call())
        assert result.ok
