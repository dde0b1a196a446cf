"""Hook system for actionflow.

Lets applications observe or steer dispatch and run lifecycle without
touching the dispatcher or launcher.

- HookRegistry holds every handler
- The @hooks.on decorator and Middleware subclasses both register into it
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class HookEvent(str, Enum):
    """Available hook points."""

    PLAN_ACCEPTED = "plan_accepted"

    BEFORE_TOOL_DISPATCH = "before_tool_dispatch"
    AFTER_TOOL_DISPATCH = "after_tool_dispatch"
    ON_DISPATCH_ERROR = "on_dispatch_error"

    RUN_FINALIZED = "run_finalized"


# ============================================================================
# Hook Event Data Classes
# ============================================================================


@dataclass
class PlanAcceptedEventData:
    """Called after a plan has been turned into actions."""

    session_id: str
    plan: Any  # ActionPlan
    actions: List[Any]  # ActiveAction objects
    message_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class BeforeToolDispatchEventData:
    """Called before a tool call reaches the connector."""

    tool_call: Any  # ToolCall
    provider_config_key: str
    action_name: str
    arguments: Dict[str, Any]


@dataclass
class AfterToolDispatchEventData:
    """Called once a dispatch produced a result, successful or not."""

    tool_call: Any
    result: Any  # ToolResult
    execution_time_ms: float


@dataclass
class OnDispatchErrorEventData:
    """Called when dispatch raised before producing a result."""

    tool_call: Any
    error: Exception
    error_message: str


@dataclass
class RunFinalizedEventData:
    run: Any  # Run
    timestamp: datetime = field(default_factory=datetime.now)


# ============================================================================
# Hook Response
# ============================================================================


@dataclass
class HookResponse:
    """What a hook can return to influence dispatch."""

    action: Optional[str] = None  # 'skip'
    cached_result: Optional[Any] = None  # raw response used when skipping
    arguments: Optional[Dict[str, Any]] = None  # replacement tool arguments

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["HookResponse"]:
        if data is None:
            return None
        if isinstance(data, HookResponse):
            return data
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


# ============================================================================
# Hook Registry
# ============================================================================


class HookRegistry:
    """Central registry for all hooks.

    Usage:
        hooks = HookRegistry()

        @hooks.on('after_tool_dispatch')
        async def log_dispatch(event):
            print(f"{event.tool_call.name}: {event.result.status}")
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {
            event.value: [] for event in HookEvent
        }

    def on(self, hook_name: str):
        """Decorator for registering hook handlers."""

        def decorator(func: Callable) -> Callable:
            self.register_handler(hook_name, func)
            return func

        return decorator

    def register_handler(self, hook_name: str, handler: Callable) -> None:
        """Register a hook handler.

        Raises:
            ValueError: If hook_name is not valid
        """
        if hook_name not in self._handlers:
            valid_hooks = [e.value for e in HookEvent]
            raise ValueError(
                f"Invalid hook name '{hook_name}'. Valid hooks: {valid_hooks}"
            )
        self._handlers[hook_name].append(handler)

    def use(self, middleware: "Middleware") -> None:
        """Register every coroutine method of a middleware named after a hook."""
        for event in HookEvent:
            handler = getattr(middleware, event.value, None)
            if handler is not None and asyncio.iscoroutinefunction(handler):
                self.register_handler(event.value, handler)

    async def trigger(
        self,
        hook_name: str,
        event_data: Any,
    ) -> Optional[HookResponse]:
        """Execute all handlers for a hook.

        Returns:
            First non-None response from any handler, or None
        """
        for handler in self._handlers.get(hook_name, []):
            try:
                result = await handler(event_data)
                if result is not None:
                    return HookResponse.from_dict(result)
            except Exception as e:
                logger.warning(f"Hook '{hook_name}' raised exception: {e}")

        return None

    def has_handlers(self, hook_name: str) -> bool:
        return len(self._handlers.get(hook_name, [])) > 0

    def clear(self) -> None:
        for hook_name in self._handlers:
            self._handlers[hook_name] = []


# ============================================================================
# Middleware Base Class
# ============================================================================


class Middleware:
    """Base class for stateful hook handlers.

    Usage:
        class Audit(Middleware):
            async def after_tool_dispatch(self, event):
                audit_log.append(event.result)

        hooks.use(Audit())
    """

    async def plan_accepted(self, event: PlanAcceptedEventData) -> Optional[Dict]:
        pass

    async def before_tool_dispatch(
        self, event: BeforeToolDispatchEventData
    ) -> Optional[Dict]:
        pass

    async def after_tool_dispatch(
        self, event: AfterToolDispatchEventData
    ) -> Optional[Dict]:
        pass

    async def on_dispatch_error(self, event: OnDispatchErrorEventData) -> Optional[Dict]:
        pass

    async def run_finalized(self, event: RunFinalizedEventData) -> Optional[Dict]:
        pass
