"""Turns accepted plans into live actions and drives them to completion.

Action lifecycle::

    collecting_parameters -> ready -> executing -> completed | failed

An action is ``collecting_parameters`` exactly while it has missing
parameters. Ready actions run without confirmation when their tool takes no
parameters or when they are the only step of their plan; everything else
waits for the client to confirm.
"""

import asyncio
import logging
from typing import Optional

from actionflow.channel import EventChannel, EventType, StreamEvent
from actionflow.dependencies import (
    StepReference,
    compile_arguments,
    cyclic_steps,
    resolve_arguments,
)
from actionflow.dispatcher import ToolDispatcher
from actionflow.exceptions import (
    ActionNotFound,
    ActionNotReady,
    ToolValidationError,
    UnresolvedDependency,
)
from actionflow.execution import (
    ActionPlan,
    ActionStatus,
    ActiveAction,
    ToolCall,
    ToolResult,
    to_wire,
)
from actionflow.hooks import HookRegistry, PlanAcceptedEventData, RunFinalizedEventData
from actionflow.runs import (
    completed_results,
    create_run,
    finalize_run,
    is_terminal,
    record_tool_result,
    start_tool_execution,
)
from actionflow.store import SessionState, SessionStore
from actionflow.tools import ToolRegistry, is_blank

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (ActionStatus.COLLECTING_PARAMETERS, ActionStatus.READY)


class ActionLauncher:
    def __init__(
        self,
        registry: ToolRegistry,
        store: SessionStore,
        dispatcher: ToolDispatcher,
        channel: EventChannel,
        hooks: Optional[HookRegistry] = None,
    ):
        self.registry = registry
        self.store = store
        self.dispatcher = dispatcher
        self.channel = channel
        self.hooks = hooks or dispatcher.hooks

    def _send(
        self,
        session_id: str,
        event_type: EventType,
        content,
        message_id: Optional[str] = None,
        is_final: bool = False,
    ) -> None:
        self.channel.send(
            session_id,
            StreamEvent(
                type=event_type,
                content=to_wire(content),
                message_id=message_id,
                is_final=is_final,
            ),
        )

    # ------------------------------------------------------------------
    # Plan intake
    # ------------------------------------------------------------------

    def _evaluate(self, action: ActiveAction) -> None:
        """Recompute missing parameters, parameter list and status from arguments."""
        missing = self.registry.missing_params(action.tool_name, action.arguments)
        action.missing_parameters = missing
        action.parameters = self.registry.parameter_definitions(
            action.tool_name, action.arguments, missing
        )
        action.status = ActionStatus.COLLECTING_PARAMETERS if missing else ActionStatus.READY

    def _auto_executes(self, action: ActiveAction, plan_size: int) -> bool:
        if action.status != ActionStatus.READY:
            return False
        return plan_size == 1 or not self.registry.has_parameters(action.tool_name)

    async def process_action_plan(
        self,
        plan: ActionPlan,
        session_id: str,
        user_id: str,
        message_id: Optional[str] = None,
        user_input: str = "",
        analysis: Optional[str] = None,
        initiated_by: str = "user",
    ) -> list[ActiveAction]:
        """Create one action per plan step and start whatever may run.

        Replaces the session's run with a fresh one built from the plan and
        discards the actions of the plan it supersedes. Steps whose
        placeholders depend on themselves through a cycle fail at once.

        Raises:
            ToolNotFound: if a step names an unknown tool. Nothing is stored.
        """
        state = self.store.get(session_id)
        for step in plan:
            self.registry.get(step.tool)

        superseded = [a.id for a in state.actions.values() if not a.is_terminal]
        if superseded:
            logger.info(f"Discarding {len(superseded)} superseded action(s) in {session_id}")
        self.store.clear_actions(session_id)

        state.run = create_run(
            session_id,
            user_id,
            user_input,
            plan,
            context=state.history,
            connection_id=await self.dispatcher.connections.get_active_connection(user_id),
            initiated_by=initiated_by,
        )

        actions = []
        for step in plan:
            action = ActiveAction(
                id=step.id,
                tool_name=step.tool,
                tool_display_name=self.registry.display_name(step.tool),
                description=step.intent,
                arguments=dict(step.arguments),
                message_id=message_id,
            )
            self._evaluate(action)
            self.store.put_action(session_id, action, compile_arguments(step.arguments))
            actions.append(action)
            logger.info(
                f"Action {action.id} ({action.tool_name}) stored as {action.status.value}"
            )

        await self.hooks.trigger(
            "plan_accepted",
            PlanAcceptedEventData(
                session_id=session_id, plan=plan, actions=actions, message_id=message_id
            ),
        )
        self._send(
            session_id,
            EventType.PLAN_GENERATED,
            {
                "messageId": message_id,
                "planOverview": actions,
                "analysis": analysis
                or f"Plan generated successfully with {len(actions)} actions.",
            },
            message_id=message_id,
            is_final=True,
        )

        cyclic = cyclic_steps(state.templates)
        for action in actions:
            if action.id in cyclic:
                refs = [r for r in state.templates[action.id].references if r.step_id in cyclic]
                await self._fail_blocked(
                    state, action, refs, "Circular dependency on"
                )

        collecting = [a for a in actions if a.status == ActionStatus.COLLECTING_PARAMETERS]
        if collecting:
            self._send(
                session_id,
                EventType.PARAMETER_COLLECTION_REQUIRED,
                {
                    "actions": collecting,
                    "analysis": "Some actions need more information before they can run.",
                    "messageId": message_id,
                },
                message_id=message_id,
            )

        ready = [a for a in actions if a.status == ActionStatus.READY]
        automatic = [a for a in ready if self._auto_executes(a, len(plan))]
        to_confirm = [a for a in ready if a not in automatic]
        if to_confirm:
            self._send(
                session_id,
                EventType.ACTION_CONFIRMATION_REQUIRED,
                {
                    "actions": to_confirm,
                    "analysis": "Please confirm these actions before they run.",
                    "messageId": message_id,
                },
                message_id=message_id,
            )

        for action in automatic:
            self.store.approve(session_id, action.id)
        if automatic:
            await self.advance(session_id, user_id)
        return actions

    # ------------------------------------------------------------------
    # Parameter collection
    # ------------------------------------------------------------------

    def update_parameter_value(
        self,
        session_id: str,
        action_id: str,
        param_name: str,
        value,
    ) -> Optional[ActiveAction]:
        """Set one parameter and re-evaluate the action.

        Returns None when the action or parameter is unknown, or when the
        action is already executing or finished.
        """
        state = self.store.find(session_id)
        action = state.actions.get(action_id) if state else None
        if action is None:
            logger.warning(f"update_parameter for unknown action {action_id}")
            return None
        if action.status not in EDITABLE_STATUSES:
            logger.warning(f"Action {action_id} is {action.status.value}, not editable")
            return None
        tool = self.registry.get(action.tool_name)
        if param_name not in tool.properties and param_name not in action.missing_parameters:
            logger.warning(f"Tool '{action.tool_name}' has no parameter '{param_name}'")
            return None

        was_ready = action.status == ActionStatus.READY
        arguments = dict(action.arguments)
        if is_blank(value):
            arguments.pop(param_name, None)
        else:
            arguments[param_name] = value
        action.arguments = arguments
        action.error = None
        state.templates[action.id] = compile_arguments(arguments)
        self._evaluate(action)

        if action.status == ActionStatus.READY and not was_ready:
            self._send(
                session_id,
                EventType.ACTION_READY_FOR_CONFIRMATION,
                {"action": action, "messageId": action.message_id},
                message_id=action.message_id,
            )
        elif action.status != ActionStatus.READY and action_id in state.approved:
            state.approved.remove(action_id)
        return action

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _require_ready(self, state: SessionState, action_id: str) -> ActiveAction:
        action = state.actions.get(action_id)
        if action is None:
            raise ActionNotFound(f"Action '{action_id}' not found")
        if action.status != ActionStatus.READY:
            raise ActionNotReady(
                f"Action '{action_id}' is {action.status.value}, not ready"
            )
        return action

    async def execute_action(
        self, session_id: str, user_id: str, action_id: str
    ) -> ActiveAction:
        """Dispatch a ready action now, using the arguments stored for it.

        Raises:
            ActionNotFound, ActionNotReady, UnresolvedDependency
        """
        state = self.store.get(session_id)
        action = self._require_ready(state, action_id)
        arguments = resolve_arguments(state.templates[action.id], completed_results(state.run))
        if action_id in state.approved:
            state.approved.remove(action_id)
        return await self._dispatch(state, action, arguments, user_id)

    async def confirm_action(
        self, session_id: str, user_id: str, action_id: str
    ) -> ActiveAction:
        """Approve a ready action; it runs as soon as its dependencies resolve."""
        state = self.store.get(session_id)
        action = self._require_ready(state, action_id)
        self.store.approve(session_id, action_id)
        await self.advance(session_id, user_id)
        return action

    async def advance(self, session_id: str, user_id: str) -> None:
        """Dispatch approved actions until nothing else can make progress.

        Independent actions run concurrently. An action waiting on a step
        that failed, or on a step this session does not know, fails without
        being dispatched.
        """
        state = self.store.get(session_id)
        while True:
            results = completed_results(state.run)
            runnable = []
            progressed = False

            for action_id in list(state.approved):
                action = state.actions.get(action_id)
                if action is None or action.status != ActionStatus.READY:
                    state.approved.remove(action_id)
                    continue
                try:
                    arguments = resolve_arguments(state.templates[action_id], results)
                except UnresolvedDependency as e:
                    dead = self._dead_references(state, e.references, results)
                    if dead:
                        state.approved.remove(action_id)
                        await self._fail_blocked(state, action, dead)
                        progressed = True
                    continue
                state.approved.remove(action_id)
                runnable.append((action, arguments))

            if runnable:
                await asyncio.gather(
                    *(self._dispatch(state, a, args, user_id) for a, args in runnable)
                )
            elif not progressed:
                return

    def _dead_references(
        self,
        state: SessionState,
        references: list[StepReference],
        results: dict,
    ) -> list[StepReference]:
        """References that can never resolve: their step finished or does not exist."""
        return [
            ref
            for ref in references
            if ref.step_id in results or ref.step_id not in state.actions
        ]

    async def _fail_blocked(
        self,
        state: SessionState,
        action: ActiveAction,
        references: list[StepReference],
        reason: str = "A step this action depends on did not complete",
    ) -> None:
        names = ", ".join(ref.render() for ref in references)
        logger.warning(f"Action {action.id} cannot resolve {names}")
        result = ToolResult.failure(
            action.tool_name,
            f"{reason}: {names}",
            error_type="UnresolvedDependency",
        )
        action.status = ActionStatus.FAILED
        action.result = result
        action.error = result.error
        self._send_status(state.session_id, action)
        await self._record(state, action.id, result)

    async def _dispatch(
        self,
        state: SessionState,
        action: ActiveAction,
        arguments: dict,
        user_id: str,
    ) -> ActiveAction:
        session_id = state.session_id
        try:
            arguments = self.registry.validate_arguments(action.tool_name, arguments)
        except ToolValidationError as e:
            logger.warning(f"Action {action.id} failed validation: {e}")
            action.missing_parameters = list(
                dict.fromkeys(action.missing_parameters + e.missing + e.invalid)
            )
            action.parameters = self.registry.parameter_definitions(
                action.tool_name, action.arguments, action.missing_parameters
            )
            action.status = ActionStatus.COLLECTING_PARAMETERS
            action.error = str(e)
            self._send(
                session_id,
                EventType.PARAMETER_COLLECTION_REQUIRED,
                {"actions": [action], "analysis": str(e), "messageId": action.message_id},
                message_id=action.message_id,
            )
            return action

        action.status = ActionStatus.EXECUTING
        action.error = None
        if state.run is not None:
            state.run = start_tool_execution(state.run, action.id)
        self._send(
            session_id,
            EventType.ACTION_STATUS,
            {
                "actionId": action.id,
                "status": "starting",
                "message": f"Starting {action.tool_display_name}...",
            },
            message_id=action.id,
        )

        result = await self.dispatcher.execute_tool(
            ToolCall(
                id=action.id,
                name=action.tool_name,
                arguments=arguments,
                session_id=session_id,
                user_id=user_id,
            )
        )

        action.result = result
        action.status = ActionStatus.COMPLETED if result.ok else ActionStatus.FAILED
        action.error = result.error
        self._send_status(session_id, action)
        await self._record(state, action.id, result)
        return action

    def _send_status(self, session_id: str, action: ActiveAction) -> None:
        self._send(
            session_id,
            EventType.ACTION_STATUS,
            {
                "actionId": action.id,
                "status": action.status,
                "result": action.result,
                "error": action.error,
            },
            message_id=action.id,
        )

    async def _record(self, state: SessionState, action_id: str, result: ToolResult) -> None:
        if state.run is None:
            return
        before = state.run
        state.run = finalize_run(record_tool_result(before, action_id, result))
        self._send(state.session_id, EventType.RUN_UPDATED, state.run)
        if is_terminal(state.run) and not is_terminal(before):
            await self.hooks.trigger("run_finalized", RunFinalizedEventData(run=state.run))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_action(self, session_id: str, action_id: str) -> Optional[ActiveAction]:
        return self.store.get_action(session_id, action_id)

    def get_active_actions(self, session_id: str) -> list[ActiveAction]:
        return [a for a in self.store.list_actions(session_id) if not a.is_terminal]

    def clear_actions(self, session_id: str) -> None:
        self.store.clear_actions(session_id)
