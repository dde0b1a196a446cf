from actionflow.adaptors.openai import OpenAIAdaptor

# Conditional imports for optional SDK-based adaptors
try:
    from actionflow.adaptors.anthropic import AnthropicAdaptor
except ImportError:
    pass

try:
    from actionflow.adaptors.ollama import OllamaAdaptor
except ImportError:
    pass

from actionflow.channel import EventChannel, EventType, QueueChannel, StreamEvent
from actionflow.config import Settings
from actionflow.connections import ConnectionStore, InMemoryKeyValueStore, KeyValueStore
from actionflow.conversation import ConversationService, TurnResult, merge_tool_calls
from actionflow.dependencies import (
    ArgumentTemplate,
    StepReference,
    compile_arguments,
    cyclic_steps,
    resolve_arguments,
)
from actionflow.dispatcher import ToolDispatcher, normalize_response
from actionflow.exceptions import (
    ActionFlowError,
    ActionNotFound,
    ActionNotReady,
    ConfigurationError,
    DispatchFailure,
    NoActiveConnection,
    PlanGenerationError,
    SessionNotFound,
    ToolNotFound,
    ToolValidationError,
    UnresolvedDependency,
)
from actionflow.execution import (
    ActionPlan,
    ActionStatus,
    ActionStep,
    ActiveAction,
    Message,
    ParameterDefinition,
    Run,
    RunStatus,
    ToolCall,
    ToolExecutionStep,
    ToolResult,
)
from actionflow.executors import ConnectorExecutor, NangoExecutor
from actionflow.hooks import (
    AfterToolDispatchEventData,
    BeforeToolDispatchEventData,
    HookEvent,
    HookRegistry,
    HookResponse,
    Middleware,
    OnDispatchErrorEventData,
    PlanAcceptedEventData,
    RunFinalizedEventData,
)
from actionflow.launcher import ActionLauncher
from actionflow.markdown import MarkdownStreamParser, markdown_segments
from actionflow.model import CompletionClient, CompletionDelta, ToolCallCandidate
from actionflow.planner import Planner, accept_plan
from actionflow.session import SessionHandler
from actionflow.store import SessionState, SessionStore
from actionflow.tools import ToolDefinition, ToolRegistry

__all__ = [
    # Core
    "ActionLauncher",
    "ActionPlan",
    "ActionStep",
    "ActiveAction",
    "ActionStatus",
    "Message",
    "ParameterDefinition",
    "Run",
    "RunStatus",
    "ToolCall",
    "ToolExecutionStep",
    "ToolResult",
    "ToolDefinition",
    "ToolRegistry",
    "ToolDispatcher",
    "normalize_response",
    "SessionHandler",
    "SessionState",
    "SessionStore",
    "Settings",
    # Dependencies
    "ArgumentTemplate",
    "StepReference",
    "compile_arguments",
    "cyclic_steps",
    "resolve_arguments",
    # Planning and conversation
    "CompletionClient",
    "CompletionDelta",
    "ToolCallCandidate",
    "ConversationService",
    "TurnResult",
    "merge_tool_calls",
    "Planner",
    "accept_plan",
    "MarkdownStreamParser",
    "markdown_segments",
    "OpenAIAdaptor",
    "AnthropicAdaptor",
    "OllamaAdaptor",
    # Connectors and channel
    "ConnectorExecutor",
    "NangoExecutor",
    "ConnectionStore",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "EventChannel",
    "EventType",
    "QueueChannel",
    "StreamEvent",
    # Hooks
    "HookRegistry",
    "HookEvent",
    "HookResponse",
    "Middleware",
    "PlanAcceptedEventData",
    "BeforeToolDispatchEventData",
    "AfterToolDispatchEventData",
    "OnDispatchErrorEventData",
    "RunFinalizedEventData",
    # Exceptions
    "ActionFlowError",
    "ActionNotFound",
    "ActionNotReady",
    "ConfigurationError",
    "DispatchFailure",
    "NoActiveConnection",
    "PlanGenerationError",
    "SessionNotFound",
    "ToolNotFound",
    "ToolValidationError",
    "UnresolvedDependency",
]
