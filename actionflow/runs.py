"""State transitions over a Run.

Every function returns a new Run and leaves its argument untouched, so a
caller can keep the previous value for comparison or discard it.
"""

import logging
import time
import uuid
from dataclasses import replace
from typing import Optional

from actionflow.execution import (
    ActionPlan,
    Message,
    Run,
    RunStatus,
    StepStatus,
    ToolCall,
    ToolExecutionStep,
    ToolResult,
)

logger = logging.getLogger(__name__)

CONTEXT_MESSAGE_LIMIT = 10
CONTEXT_CHAR_LIMIT = 500

TERMINAL_STATUSES = frozenset(
    {RunStatus.SUCCESS, RunStatus.PARTIAL_SUCCESS, RunStatus.FAILED, RunStatus.COMPLETED}
)


def _rank(status: RunStatus) -> int:
    if status == RunStatus.PENDING:
        return 0
    if status == RunStatus.RUNNING:
        return 1
    return 2


def _truncate_context(messages: Optional[list[Message]]) -> list[Message]:
    kept = []
    for msg in (messages or [])[-CONTEXT_MESSAGE_LIMIT:]:
        content = msg.content or ""
        if len(content) > CONTEXT_CHAR_LIMIT:
            content = content[:CONTEXT_CHAR_LIMIT] + "..."
        kept.append(Message(role=msg.role, content=content))
    return kept


def is_terminal(run: Run) -> bool:
    return run.status in TERMINAL_STATUSES


def create_run(
    session_id: str,
    user_id: str,
    user_input: str,
    plan: ActionPlan,
    context: Optional[list[Message]] = None,
    connection_id: Optional[str] = None,
    initiated_by: str = "user",
) -> Run:
    """Create a pending Run with one step per plan step.

    Step ids and tool-call ids are the plan step ids.
    """
    steps = [
        ToolExecutionStep(
            step_id=step.id,
            tool_call=ToolCall(
                id=step.id,
                name=step.tool,
                arguments=dict(step.arguments),
                session_id=session_id,
                user_id=user_id,
            ),
        )
        for step in plan
    ]
    return Run(
        id=f"run_{uuid.uuid4()}",
        session_id=session_id,
        user_id=user_id,
        user_input=user_input,
        steps=steps,
        plan_id=plan.id,
        connection_id=connection_id,
        context_messages=_truncate_context(context),
        initiated_by=initiated_by,
    )


def _with_status(run: Run, status: RunStatus) -> RunStatus:
    if _rank(status) < _rank(run.status):
        logger.warning(f"Ignoring {run.status.value} -> {status.value} for run {run.id}")
        return run.status
    return status


def start_tool_execution(run: Run, tool_call_id: str, now: Optional[float] = None) -> Run:
    if run.step(tool_call_id) is None:
        logger.warning(f"Run {run.id} has no step '{tool_call_id}'")
        return run

    now = now if now is not None else time.time()
    steps = [
        replace(step, status=StepStatus.EXECUTING, started_at=now)
        if step.step_id == tool_call_id
        else step
        for step in run.steps
    ]
    status = run.status
    if run.status == RunStatus.PENDING:
        status = _with_status(run, RunStatus.RUNNING)
    return replace(run, steps=steps, status=status)


def record_tool_result(
    run: Run,
    tool_call_id: str,
    result: ToolResult,
    now: Optional[float] = None,
) -> Run:
    """Attach a result to a step. The run-level status is left alone."""
    if run.step(tool_call_id) is None:
        logger.warning(f"Run {run.id} has no step '{tool_call_id}'")
        return run

    now = now if now is not None else time.time()
    steps = []
    for step in run.steps:
        if step.step_id == tool_call_id:
            step = replace(
                step,
                status=StepStatus.COMPLETED if result.ok else StepStatus.FAILED,
                result=result,
                started_at=step.started_at or now,
                finished_at=now,
            )
        steps.append(step)
    return replace(run, steps=steps)


def finalize_run(run: Run, now: Optional[float] = None) -> Run:
    """Aggregate step outcomes once every step has a result.

    Returns the run unchanged while any step is still waiting, so it can be
    called after each individual result.
    """
    if is_terminal(run):
        return run
    if any(step.result is None for step in run.steps):
        return run

    results = [step.result for step in run.steps]
    succeeded = sum(1 for r in results if r.ok)
    if not results:
        status = RunStatus.FAILED
    elif succeeded == len(results):
        status = RunStatus.SUCCESS
    elif succeeded:
        status = RunStatus.PARTIAL_SUCCESS
    else:
        status = RunStatus.FAILED

    logger.info(f"Run {run.id} finalized as {status.value}")
    return replace(
        run,
        status=_with_status(run, status),
        completed_at=now if now is not None else time.time(),
    )


def add_assistant_response(run: Run, text: str) -> Run:
    return replace(run, assistant_response=text)


def completed_results(run: Optional[Run]) -> dict[str, ToolResult]:
    if run is None:
        return {}
    return {step.step_id: step.result for step in run.steps if step.result is not None}
