"""Inbound client protocol.

Messages are dicts shaped like ``{"type": ..., "content": ...}``:

- ``init``: binds the session to a user (``userId``, or whatever the
  injected ``authenticate`` coroutine derives from the message)
- ``content``: a new user turn, ``content`` is the text
- ``execute_action``: ``{"actionId"}``; any other fields are ignored
- ``update_parameter``: ``{"actionId", "paramName", "value"}``
- ``rerun_plan``: ``{"plan": [...]}``, step ids are kept
- ``update_active_connection``: ``{"connectionId"}``
"""

import logging
import uuid
from typing import Awaitable, Callable, Optional

from actionflow.channel import EventChannel, EventType, StreamEvent
from actionflow.config import Settings
from actionflow.connections import ConnectionStore, KeyValueStore
from actionflow.conversation import ConversationService, stream_text
from actionflow.dispatcher import ToolDispatcher
from actionflow.exceptions import ActionFlowError, PlanGenerationError
from actionflow.execution import ActionPlan, Message
from actionflow.executors import ConnectorExecutor, NangoExecutor
from actionflow.hooks import HookRegistry
from actionflow.launcher import ActionLauncher
from actionflow.model import CompletionClient
from actionflow.planner import Planner, single_step_plan
from actionflow.prompts import NO_PLAN_MESSAGE
from actionflow.runs import add_assistant_response, is_terminal
from actionflow.store import SessionState, SessionStore
from actionflow.tools import ToolRegistry

logger = logging.getLogger(__name__)

Authenticator = Callable[[dict], Awaitable[Optional[str]]]


async def _user_id_from_message(message: dict) -> Optional[str]:
    content = message.get("content")
    if isinstance(content, dict) and content.get("userId"):
        return content["userId"]
    return message.get("userId")


class SessionHandler:
    def __init__(
        self,
        store: SessionStore,
        channel: EventChannel,
        conversation: ConversationService,
        planner: Planner,
        launcher: ActionLauncher,
        connections: ConnectionStore,
        authenticate: Optional[Authenticator] = None,
        stream_chunk_size: int = 10,
    ):
        self.store = store
        self.channel = channel
        self.conversation = conversation
        self.planner = planner
        self.launcher = launcher
        self.connections = connections
        self.authenticate = authenticate or _user_id_from_message
        self.stream_chunk_size = stream_chunk_size
        self._handlers = {
            "content": self._handle_content,
            "execute_action": self._handle_execute_action,
            "update_parameter": self._handle_update_parameter,
            "rerun_plan": self._handle_rerun_plan,
            "update_active_connection": self._handle_update_active_connection,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: CompletionClient,
        channel: EventChannel,
        executor: Optional[ConnectorExecutor] = None,
        kv: Optional[KeyValueStore] = None,
        hooks: Optional[HookRegistry] = None,
        authenticate: Optional[Authenticator] = None,
    ) -> "SessionHandler":
        """Wire every component from settings."""
        registry = ToolRegistry(settings.tool_config_path)
        store = SessionStore()
        connections = ConnectionStore(kv)
        executor = executor or NangoExecutor(
            secret_key=settings.nango_secret_key, base_url=settings.nango_base_url
        )
        dispatcher = ToolDispatcher(registry, connections, executor, hooks)
        return cls(
            store=store,
            channel=channel,
            conversation=ConversationService(
                client,
                registry,
                channel,
                narration_temperature=settings.narration_temperature,
                max_tokens=settings.max_tokens,
                history_limit=settings.history_limit,
            ),
            planner=Planner(
                client,
                registry,
                temperature=settings.planner_temperature,
                max_tokens=settings.max_tokens,
                model=settings.planner_model,
            ),
            launcher=ActionLauncher(registry, store, dispatcher, channel, dispatcher.hooks),
            connections=connections,
            authenticate=authenticate,
            stream_chunk_size=settings.stream_chunk_size,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self, session_id: str) -> SessionState:
        return self.store.open(session_id)

    def close(self, session_id: str) -> None:
        """Discard the session's actions and run. In-flight calls are not cancelled."""
        self.store.close(session_id)
        self.channel.discard(session_id)

    def _error(self, session_id: str, message: str) -> None:
        self.channel.send(session_id, StreamEvent(type=EventType.ERROR, content=message))

    async def handle_message(self, session_id: str, message: dict) -> None:
        """Route one inbound message. Failures become ``error`` events."""
        message_type = message.get("type")
        try:
            if message_type == "init":
                await self._handle_init(session_id, message)
                return

            state = self.store.get(session_id)
            if not state.user_id:
                raise ActionFlowError("Not authenticated")
            handler = self._handlers.get(message_type)
            if handler is None:
                raise ActionFlowError(f"Unknown message type '{message_type}'")

            async with state.lock:
                await handler(state, message.get("content"))

        except ActionFlowError as e:
            logger.warning(f"{message_type} rejected for session {session_id}: {e}")
            self._error(session_id, str(e))
        except Exception as e:
            logger.error(f"Error handling {message_type} for session {session_id}: {e}", exc_info=True)
            self._error(session_id, f"Server Error: {e}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_init(self, session_id: str, message: dict) -> None:
        user_id = await self.authenticate(message)
        if not user_id:
            raise ActionFlowError("Authentication failed")
        self.store.open(session_id, user_id)
        self.channel.send(session_id, StreamEvent(type=EventType.AUTH_SUCCESS))
        logger.info(f"Session {session_id} authenticated")

    async def _handle_content(self, state: SessionState, content) -> None:
        if not isinstance(content, str) or not content.strip():
            raise ActionFlowError("content must be a non-empty string")

        message_id = str(uuid.uuid4())
        history = list(state.history)
        turn = await self.conversation.process_message(state, content, message_id)

        if turn.needs_planning:
            try:
                plan = await self.planner.generate_plan(
                    turn.planner_input or content,
                    history=history,
                    hints=turn.executable_calls,
                )
            except PlanGenerationError as e:
                logger.warning(f"No plan for session {state.session_id}: {e}")
                await stream_text(
                    self.channel, state.session_id, str(uuid.uuid4()), NO_PLAN_MESSAGE,
                    chunk_size=self.stream_chunk_size,
                )
                return
        elif turn.is_single_step:
            plan = single_step_plan(turn.executable_calls[0])
        else:
            return

        await self._launch_plan(state, plan, content, message_id)

    async def _launch_plan(
        self,
        state: SessionState,
        plan: ActionPlan,
        user_input: str,
        message_id: str,
        initiated_by: str = "user",
    ) -> None:
        await self.launcher.process_action_plan(
            plan,
            state.session_id,
            state.user_id,
            message_id,
            user_input=user_input,
            initiated_by=initiated_by,
        )
        await self._conclude(state)

    async def _conclude(self, state: SessionState) -> None:
        """Narrate a run once it reached a terminal status."""
        run = state.run
        if run is None or not is_terminal(run) or run.assistant_response is not None:
            return
        summary = await self.planner.summarize_run(run)
        await stream_text(
            self.channel, state.session_id, str(uuid.uuid4()), summary,
            chunk_size=self.stream_chunk_size,
        )
        state.run = add_assistant_response(state.run, summary)
        state.history.append(Message(role="assistant", content=summary))

    def _field(self, content, name: str):
        if not isinstance(content, dict) or content.get(name) in (None, ""):
            raise ActionFlowError(f"Missing '{name}' in message content")
        return content[name]

    async def _handle_execute_action(self, state: SessionState, content) -> None:
        action_id = self._field(content, "actionId")
        await self.launcher.confirm_action(state.session_id, state.user_id, action_id)
        await self._conclude(state)

    async def _handle_update_parameter(self, state: SessionState, content) -> None:
        action_id = self._field(content, "actionId")
        param_name = self._field(content, "paramName")
        action = self.launcher.update_parameter_value(
            state.session_id, action_id, param_name, content.get("value")
        )
        if action is None:
            raise ActionFlowError(f"Cannot update '{param_name}' on action '{action_id}'")

    async def _handle_rerun_plan(self, state: SessionState, content) -> None:
        raw_plan = content.get("plan", content) if isinstance(content, dict) else content
        plan = ActionPlan.from_payload(raw_plan)
        if not len(plan):
            raise ActionFlowError("rerun_plan requires at least one step")
        user_input = state.run.user_input if state.run else ""
        await self._launch_plan(
            state, plan, user_input, str(uuid.uuid4()), initiated_by="rerun"
        )

    async def _handle_update_active_connection(self, state: SessionState, content) -> None:
        connection_id = self._field(content, "connectionId")
        await self.connections.set_active_connection(state.user_id, connection_id)
        self.channel.send(
            state.session_id,
            StreamEvent(type=EventType.CONNECTION_UPDATED_ACK, content={"updated": True}),
        )
