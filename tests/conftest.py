import json

import pytest

from actionflow.channel import QueueChannel
from actionflow.connections import ConnectionStore, InMemoryKeyValueStore
from actionflow.dispatcher import ToolDispatcher
from actionflow.executors import ConnectorExecutor
from actionflow.launcher import ActionLauncher
from actionflow.model import CompletionClient, CompletionDelta, ToolCallDelta
from actionflow.store import SessionStore
from actionflow.tools import ToolRegistry

TOOL_DEFINITIONS = [
    {
        "name": "fetch_emails",
        "description": "Fetch recent emails",
        "providerConfigKey": "google-mail",
        "actionName": "fetch-emails",
        "category": "Email",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "max_results": {"type": "integer", "description": "How many"},
            },
        },
    },
    {
        "name": "send_email",
        "description": "Send an email",
        "providerConfigKey": "google-mail",
        "actionName": "send-email",
        "category": "Email",
        "parameters": {
            "type": "object",
            "properties": {
                "to": {"type": "string", "prompt": "Who should receive it?"},
                "subject": {"type": "string"},
                "body": {"type": "string"},
            },
            "required": ["to", "subject", "body"],
        },
    },
    {
        "name": "fetch_entity",
        "description": "Fetch CRM records",
        "providerConfigKey": "salesforce-2",
        "actionName": "salesforce-fetch-entity",
        "category": "CRM",
        "parameters": {
            "type": "object",
            "properties": {
                "operation": {"type": "string"},
                "entityType": {"type": "string", "enum": ["Account", "Contact", "Deal", "Lead"]},
                "identifier": {"type": "string"},
                "filters": {"type": "object"},
            },
            "required": ["entityType"],
        },
        "rules": [{"anyOf": ["identifier", "filters"]}],
    },
    {
        "name": "list_calendars",
        "description": "List the user's calendars",
        "providerConfigKey": "google-calendar",
        "category": "Calendar",
    },
    {
        "name": "create_calendar_event",
        "description": "Create a calendar event",
        "providerConfigKey": "google-calendar",
        "category": "Calendar",
        "parameters": {
            "type": "object",
            "properties": {
                "summary": {"type": "string"},
                "start": {"type": "string"},
                "end": {"type": "string"},
                "attendees": {
                    "type": "array",
                    "items": {"type": "string"},
                    "hint": "Who should be invited?",
                },
            },
            "required": ["summary", "start", "end"],
        },
    },
    {
        "name": "unbound_tool",
        "description": "A tool without a provider binding",
    },
]


class FakeExecutor(ConnectorExecutor):
    """Records every trigger and answers from a table keyed by action name."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    async def trigger(self, provider_config_key, connection_id, action_name, payload):
        self.calls.append(
            {
                "provider_config_key": provider_config_key,
                "connection_id": connection_id,
                "action_name": action_name,
                "payload": payload,
            }
        )
        response = self.responses.get(action_name, {"success": True, "data": {"ok": True}})
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(payload)
        return response


class ScriptedClient(CompletionClient):
    """Completion client replaying scripted deltas.

    Each entry of ``scripts`` is consumed by one call and is either a list of
    CompletionDelta objects or an exception to raise. An exception inside the
    list is raised mid-stream.
    """

    def __init__(self, scripts=None, route=None):
        self.scripts = list(scripts or [])
        self.route = route
        self.requests = []

    async def stream(self, messages, tools=None, **kwargs):
        self.requests.append({"messages": messages, "tools": tools, "kwargs": kwargs})
        script = self.route(messages, tools, kwargs) if self.route else self.scripts.pop(0)
        if isinstance(script, Exception):
            raise script
        for delta in script:
            if isinstance(delta, Exception):
                raise delta
            yield delta


def text_deltas(*chunks):
    return [CompletionDelta(content=c) for c in chunks] + [CompletionDelta(finish_reason="stop")]


def tool_call_deltas(*calls):
    """calls: (id, name, arguments dict) tuples, streamed in two fragments each."""
    deltas = []
    for index, (call_id, name, arguments) in enumerate(calls):
        encoded = json.dumps(arguments)
        half = len(encoded) // 2
        deltas.append(CompletionDelta(tool_calls=[ToolCallDelta(index=index, id=call_id, name=name, arguments=encoded[:half])]))
        deltas.append(CompletionDelta(tool_calls=[ToolCallDelta(index=index, arguments=encoded[half:])]))
    deltas.append(CompletionDelta(finish_reason="tool_calls"))
    return deltas


@pytest.fixture
def registry():
    return ToolRegistry(tools=TOOL_DEFINITIONS)


@pytest.fixture
def channel():
    return QueueChannel()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def connections():
    return ConnectionStore(InMemoryKeyValueStore({"active-connection:user-1": "conn-1"}))


@pytest.fixture
def store():
    store = SessionStore()
    store.open("s1", "user-1")
    return store


@pytest.fixture
def dispatcher(registry, connections, executor):
    return ToolDispatcher(registry, connections, executor)


@pytest.fixture
def launcher(registry, store, dispatcher, channel):
    return ActionLauncher(registry, store, dispatcher, channel)


def event_types(channel, session_id="s1"):
    return [event.type.value for event in channel.drain(session_id)]
