import logging
import time
from typing import Any, Callable, Optional

from actionflow.connections import ConnectionStore
from actionflow.exceptions import ActionFlowError, ConfigurationError, ToolValidationError
from actionflow.execution import ToolCall, ToolResult
from actionflow.executors import ConnectorExecutor
from actionflow.hooks import (
    AfterToolDispatchEventData,
    BeforeToolDispatchEventData,
    HookRegistry,
    OnDispatchErrorEventData,
)
from actionflow.tools import ToolRegistry, is_blank

logger = logging.getLogger(__name__)

ArgumentShaper = Callable[[str, dict], dict]

ENTITY_TOOLS = ("fetch_entity", "create_entity", "update_entity")


def shape_entity_arguments(tool_name: str, arguments: dict) -> dict:
    """Flatten CRM entity arguments and check the fields every operation needs.

    Completion models sometimes nest the whole call under ``identifier.type``;
    that shape is rewritten to top-level ``operation``/``entityType``/``filters``.
    """
    args = dict(arguments)
    identifier = args.get("identifier")
    if isinstance(identifier, dict) and isinstance(identifier.get("type"), dict):
        logger.warning(f"Malformed {tool_name} arguments, flattening identifier.type")
        nested = identifier["type"]
        args = {
            "operation": nested.get("operation"),
            "entityType": nested.get("entityType"),
            "filters": nested.get("filters"),
            **(args.get("fields") or {}),
        }
        args = {k: v for k, v in args.items() if v is not None}

    if is_blank(args.get("operation")):
        args["operation"] = tool_name.split("_", 1)[0]
    if is_blank(args.get("entityType")):
        raise ToolValidationError(
            f"Missing operation/entityType for {tool_name}", missing=["entityType"]
        )
    return args


def _error_text(response: dict, include_message: bool) -> Optional[str]:
    errors = response.get("errors")
    if isinstance(errors, list) and errors:
        return "; ".join(
            e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors
        )
    if isinstance(errors, str) and errors:
        return errors
    error = response.get("error")
    if isinstance(error, dict):
        return error.get("message") or str(error)
    if error:
        return str(error)
    if include_message and response.get("message"):
        return str(response["message"])
    return None


def normalize_response(tool_name: str, response: Any) -> ToolResult:
    """Fold a connector's response into a ToolResult.

    ``success: true`` is a success. A missing ``success`` flag is a success
    unless the body carries ``error``/``errors``. Everything else fails with
    the best error string available.
    """
    if isinstance(response, ToolResult):
        return response
    if not isinstance(response, dict):
        return ToolResult.success(tool_name, response)

    data = response["data"] if "data" in response else response
    success = response.get("success")

    if success is True:
        return ToolResult.success(tool_name, data)
    if success is None:
        error = _error_text(response, include_message=False)
        if error is None:
            return ToolResult.success(tool_name, data)
        return ToolResult.failure(tool_name, error, error_type="DispatchFailure")

    return ToolResult.failure(
        tool_name,
        _error_text(response, include_message=True) or f"Tool '{tool_name}' failed.",
        error_type="DispatchFailure",
        data=response.get("data"),
    )


class ToolDispatcher:
    """Sends a tool call to the connector bound to its tool.

    ``execute_tool`` never raises: every failure comes back as a failed
    ToolResult whose ``error_type`` names the failure class.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        connections: ConnectionStore,
        executor: ConnectorExecutor,
        hooks: Optional[HookRegistry] = None,
    ):
        self.registry = registry
        self.connections = connections
        self.executor = executor
        self.hooks = hooks or HookRegistry()
        self._shapers: dict[str, ArgumentShaper] = {
            name: shape_entity_arguments for name in ENTITY_TOOLS
        }

    def register_shaper(self, tool_name: str, shaper: ArgumentShaper) -> None:
        self._shapers[tool_name] = shaper

    def _binding(self, tool_call: ToolCall) -> tuple[str, str, dict]:
        provider_config_key = self.registry.provider_config_key(tool_call.name)
        if not provider_config_key:
            raise ConfigurationError(
                f"Configuration missing 'providerConfigKey' for tool: {tool_call.name}"
            )
        arguments = dict(tool_call.arguments)
        shaper = self._shapers.get(tool_call.name)
        if shaper is not None:
            arguments = shaper(tool_call.name, arguments)
        return provider_config_key, self.registry.action_name(tool_call.name), arguments

    async def execute_tool(self, tool_call: ToolCall) -> ToolResult:
        start = time.time()
        try:
            provider_config_key, action_name, arguments = self._binding(tool_call)
            connection_id = await self.connections.require_active_connection(
                tool_call.user_id
            )

            hook_response = await self.hooks.trigger(
                "before_tool_dispatch",
                BeforeToolDispatchEventData(
                    tool_call=tool_call,
                    provider_config_key=provider_config_key,
                    action_name=action_name,
                    arguments=arguments,
                ),
            )
            if hook_response and hook_response.arguments is not None:
                arguments = hook_response.arguments

            if (
                hook_response
                and hook_response.action == "skip"
                and hook_response.cached_result is not None
            ):
                response = hook_response.cached_result
            else:
                logger.info(f"Dispatching {tool_call.name} ({tool_call.id}) as {action_name}")
                response = await self.executor.trigger(
                    provider_config_key, connection_id, action_name, arguments
                )
            result = normalize_response(tool_call.name, response)

        except ConfigurationError as e:
            logger.error(f"Tool '{tool_call.name}' is misconfigured: {e}")
            result = await self._failure(tool_call, e)
        except ActionFlowError as e:
            logger.warning(f"Tool '{tool_call.name}' failed: {e}")
            result = await self._failure(tool_call, e)
        except Exception as e:
            logger.error(f"Tool '{tool_call.name}' raised: {e}", exc_info=True)
            result = await self._failure(tool_call, e)

        await self.hooks.trigger(
            "after_tool_dispatch",
            AfterToolDispatchEventData(
                tool_call=tool_call,
                result=result,
                execution_time_ms=(time.time() - start) * 1000,
            ),
        )
        return result

    async def _failure(self, tool_call: ToolCall, error: Exception) -> ToolResult:
        message = str(error) or f"Tool '{tool_call.name}' failed."
        await self.hooks.trigger(
            "on_dispatch_error",
            OnDispatchErrorEventData(tool_call=tool_call, error=error, error_message=message),
        )
        error_type = type(error).__name__ if isinstance(error, ActionFlowError) else "DispatchFailure"
        return ToolResult.failure(tool_call.name, message, error_type=error_type)
