"""Tests for hook system."""

import pytest

from actionflow.execution import ActionPlan, ActionStep, ToolCall, ToolResult
from actionflow.hooks import (
    AfterToolDispatchEventData,
    BeforeToolDispatchEventData,
    HookEvent,
    HookRegistry,
    HookResponse,
    Middleware,
    RunFinalizedEventData,
)


def before_event(arguments=None):
    return BeforeToolDispatchEventData(
        tool_call=ToolCall(id="c1", name="send_email", arguments={}),
        provider_config_key="google-mail",
        action_name="send-email",
        arguments=arguments or {},
    )


# --- HookRegistry Tests ---


class TestHookRegistryBasic:
    @pytest.mark.asyncio
    async def test_hook_registration_and_triggering(self):
        """Test basic hook registration and triggering."""
        registry = HookRegistry()

        events = []

        @registry.on("before_tool_dispatch")
        async def capture_event(event):
            events.append(event)

        await registry.trigger("before_tool_dispatch", before_event({"to": "x"}))

        assert len(events) == 1
        assert events[0].arguments == {"to": "x"}

    @pytest.mark.asyncio
    async def test_hook_with_response(self):
        """Test hook that returns response to influence dispatch."""
        registry = HookRegistry()

        @registry.on("before_tool_dispatch")
        async def cache(event):
            return {"action": "skip", "cached_result": {"success": True}}

        response = await registry.trigger("before_tool_dispatch", before_event())

        assert response is not None
        assert response.action == "skip"
        assert response.cached_result == {"success": True}

    @pytest.mark.asyncio
    async def test_first_response_wins(self):
        registry = HookRegistry()
        calls = []

        @registry.on("before_tool_dispatch")
        async def handler1(event):
            calls.append("h1")

        @registry.on("before_tool_dispatch")
        async def handler2(event):
            calls.append("h2")
            return {"arguments": {"a": 1}}

        @registry.on("before_tool_dispatch")
        async def handler3(event):
            calls.append("h3")

        response = await registry.trigger("before_tool_dispatch", before_event())

        assert calls == ["h1", "h2"]
        assert response.arguments == {"a": 1}

    @pytest.mark.asyncio
    async def test_hook_exception_does_not_crash(self):
        """Test that hook exception doesn't crash execution."""
        registry = HookRegistry()

        @registry.on("run_finalized")
        async def bad_hook(event):
            raise ValueError("Intentional error")

        @registry.on("run_finalized")
        async def good_hook(event):
            return None

        # Should not raise, just log warning
        response = await registry.trigger("run_finalized", RunFinalizedEventData(run=None))

        assert response is None

    def test_invalid_hook_name_raises(self):
        """Test that invalid hook name raises error."""
        registry = HookRegistry()

        with pytest.raises(ValueError) as exc_info:
            registry.register_handler("invalid_hook_name", lambda e: None)

        assert "Invalid hook name" in str(exc_info.value)

    def test_has_handlers(self):
        registry = HookRegistry()

        assert registry.has_handlers("plan_accepted") is False

        @registry.on("plan_accepted")
        async def handler(event):
            pass

        assert registry.has_handlers("plan_accepted") is True

    def test_clear(self):
        registry = HookRegistry()

        @registry.on("plan_accepted")
        async def handler(event):
            pass

        registry.clear()
        assert registry.has_handlers("plan_accepted") is False


class TestHookResponse:
    def test_from_dict(self):
        response = HookResponse.from_dict({"action": "skip", "arguments": {"query": "new query"}})

        assert response.action == "skip"
        assert response.arguments == {"query": "new query"}

    def test_from_dict_none(self):
        assert HookResponse.from_dict(None) is None

    def test_from_dict_ignores_unknown_fields(self):
        """Test that from_dict ignores unknown fields."""
        response = HookResponse.from_dict({"action": "skip", "unknown_field": "ignored"})

        assert response.action == "skip"
        assert not hasattr(response, "unknown_field")

    def test_from_response_instance(self):
        existing = HookResponse(action="skip")
        assert HookResponse.from_dict(existing) is existing


# --- Middleware ---


class TestMiddleware:
    @pytest.mark.asyncio
    async def test_use_registers_every_hook_method(self):
        class Audit(Middleware):
            def __init__(self):
                self.results = []

            async def after_tool_dispatch(self, event):
                self.results.append(event.result.status.value)

        registry = HookRegistry()
        audit = Audit()
        registry.use(audit)

        for event in HookEvent:
            assert registry.has_handlers(event.value)

        await registry.trigger(
            "after_tool_dispatch",
            AfterToolDispatchEventData(
                tool_call=ToolCall(id="c1", name="t", arguments={}),
                result=ToolResult.success("t"),
                execution_time_ms=1.0,
            ),
        )
        assert audit.results == ["success"]

    @pytest.mark.asyncio
    async def test_plan_accepted_fires_from_launcher(self, launcher, channel):
        accepted = []

        class Recorder(Middleware):
            async def plan_accepted(self, event):
                accepted.append([a.tool_name for a in event.actions])

        launcher.hooks.use(Recorder())
        plan = ActionPlan(steps=[ActionStep(id="a", intent="Compose", tool="send_email")])
        await launcher.process_action_plan(plan, "s1", "user-1", message_id="m1")

        assert accepted == [["send_email"]]

    @pytest.mark.asyncio
    async def test_run_finalized_fires_once(self, launcher):
        finalized = []

        @launcher.hooks.on("run_finalized")
        async def record(event):
            finalized.append(event.run.status.value)

        plan = ActionPlan(steps=[ActionStep(id="a", intent="List", tool="list_calendars")])
        await launcher.process_action_plan(plan, "s1", "user-1")

        assert finalized == ["success"]


class TestHookEventEnum:
    def test_all_hook_events_exist(self):
        expected = [
            "plan_accepted",
            "before_tool_dispatch",
            "after_tool_dispatch",
            "on_dispatch_error",
            "run_finalized",
        ]

        actual = [e.value for e in HookEvent]
        assert sorted(actual) == sorted(expected)
