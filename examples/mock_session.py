#!/usr/bin/env python3
"""Run a full session against a scripted model and connector.

No API keys are needed: a mock completion client answers every request
and a mock connector executor returns canned CRM and email results. The
script prints every client event, so you can follow a plan from
generation through confirmation to the final narration.

Run:
    python examples/mock_session.py
"""

import asyncio
import json
import logging
import os
import sys

from actionflow import (
    CompletionClient,
    CompletionDelta,
    ConnectorExecutor,
    QueueChannel,
    SessionHandler,
    Settings,
)
from actionflow.connections import InMemoryKeyValueStore
from actionflow.model import ToolCallDelta
from actionflow.prompts import PLANNER_META_TOOL_NAME

TOOL_CONFIG = os.path.join(os.path.dirname(os.path.abspath(__file__)), "tool_config.json")

PLAN = {
    "plan": [
        {
            "id": "step1",
            "intent": "Find Ada in the CRM",
            "tool": "fetch_entity",
            "arguments": {"entityType": "Contact", "identifier": "Ada Lovelace"},
        },
        {
            "id": "step2",
            "intent": "Email Ada about the renewal",
            "tool": "send_email",
            "arguments": {
                "to": "{{step1.result.records[0].Email}}",
                "subject": "Renewal",
                "body": "Hi {{step1.result.records[0].FirstName}}, shall we talk renewal next week?",
            },
        },
    ]
}


class MockCompletionClient(CompletionClient):
    """Answers each request by its purpose instead of calling a model."""

    async def stream(self, messages, tools=None, **kwargs):
        if kwargs.get("tool_choice") == "auto":
            # Tool identification finds nothing; the narration asks for a plan.
            yield CompletionDelta(finish_reason="stop")
        elif "response_format" in kwargs:
            yield CompletionDelta(content=json.dumps(PLAN), finish_reason="stop")
        elif tools is None:
            yield CompletionDelta(content="I found Ada and sent her the renewal email.")
            yield CompletionDelta(finish_reason="stop")
        else:
            yield CompletionDelta(content="## On it\nI'll look Ada up and draft the email.\n")
            arguments = json.dumps({"userInput": messages[-1].content})
            yield CompletionDelta(
                tool_calls=[ToolCallDelta(index=0, id="call_plan", name=PLANNER_META_TOOL_NAME, arguments=arguments)]
            )
            yield CompletionDelta(finish_reason="tool_calls")


class MockExecutor(ConnectorExecutor):
    async def trigger(self, provider_config_key, connection_id, action_name, payload):
        print(f"  -> {provider_config_key}/{action_name} via {connection_id}: {payload}")
        if action_name == "salesforce-fetch-entity":
            return {
                "success": True,
                "data": {"records": [{"FirstName": "Ada", "Email": "ada@example.com"}]},
            }
        return {"success": True, "data": {"messageId": "msg_123"}}


def print_events(channel: QueueChannel, session_id: str) -> None:
    for event in channel.drain(session_id):
        data = event.to_dict()
        content = json.dumps(data["content"])
        if len(content) > 100:
            content = content[:100] + "..."
        print(f"  [{data['type']}] {content}")


async def run() -> int:
    channel = QueueChannel()
    settings = Settings(tool_config_path=TOOL_CONFIG)
    handler = SessionHandler.from_settings(
        settings,
        client=MockCompletionClient(),
        channel=channel,
        executor=MockExecutor(),
        kv=InMemoryKeyValueStore(),
    )
    session_id = "demo-session"
    handler.open(session_id)

    print("\n== init")
    await handler.handle_message(session_id, {"type": "init", "content": {"userId": "user-1"}})
    await handler.handle_message(
        session_id, {"type": "update_active_connection", "content": {"connectionId": "conn-42"}}
    )
    print_events(channel, session_id)

    print("\n== content")
    await handler.handle_message(
        session_id, {"type": "content", "content": "Email Ada Lovelace about her renewal"}
    )
    print_events(channel, session_id)

    print("\n== execute_action")
    for action in handler.launcher.get_active_actions(session_id):
        print(f"  confirming {action.tool_display_name} ({action.id})")
        await handler.handle_message(
            session_id, {"type": "execute_action", "content": {"actionId": action.id}}
        )
    print_events(channel, session_id)

    run_state = handler.store.get(session_id).run
    print(f"\nRun {run_state.id} finished with status {run_state.status.value}")
    handler.close(session_id)
    return 0 if run_state.status.value == "success" else 1


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    return asyncio.run(run())


if __name__ == "__main__":
    sys.exit(main())
