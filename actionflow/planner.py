import json
import logging
import uuid
from typing import Optional

from actionflow.dependencies import compile_arguments
from actionflow.exceptions import PlanGenerationError
from actionflow.execution import (
    ActionPlan,
    ActionStep,
    Message,
    PlanStepStatus,
    Run,
)
from actionflow.model import CompletionClient, ToolCallCandidate
from actionflow.prompts import PLANNER_PROMPT, SUMMARY_PROMPT
from actionflow.tools import ToolRegistry

logger = logging.getLogger(__name__)

SUMMARY_DATA_LIMIT = 2000


def accept_plan(plan: ActionPlan) -> ActionPlan:
    """Give every step a fresh unique id and rewrite placeholders to match.

    Steps whose arguments reference other steps are marked conditional.
    """
    mapping = {step.id: str(uuid.uuid4()) for step in plan}
    steps = []
    for step in plan:
        template = compile_arguments(step.arguments).remap(mapping)
        steps.append(
            ActionStep(
                id=mapping[step.id],
                intent=step.intent,
                tool=step.tool,
                arguments=template.to_raw(),
                status=PlanStepStatus.CONDITIONAL if template.references else PlanStepStatus.READY,
                required_params=list(step.required_params),
            )
        )
    return ActionPlan(steps=steps, id=plan.id)


def single_step_plan(candidate: ToolCallCandidate, intent: Optional[str] = None) -> ActionPlan:
    """Wrap one identified tool call; its provider id becomes the step id."""
    return ActionPlan(
        steps=[
            ActionStep(
                id=candidate.id,
                intent=intent or f"Run {candidate.name}",
                tool=candidate.name,
                arguments=dict(candidate.arguments),
            )
        ]
    )


def fallback_summary(run: Run) -> str:
    completed = [s.tool_call.name for s in run.steps if s.result is not None and s.result.ok]
    failed = [
        f"{s.tool_call.name} ({s.result.error})"
        for s in run.steps
        if s.result is not None and not s.result.ok
    ]
    parts = []
    if completed:
        parts.append(f"Completed: {', '.join(completed)}.")
    if failed:
        parts.append(f"Failed: {', '.join(failed)}.")
    return " ".join(parts) or "Nothing was executed for this request."


class Planner:
    """Generates plans and the narration that closes a run."""

    def __init__(
        self,
        client: CompletionClient,
        registry: ToolRegistry,
        temperature: float = 0.1,
        max_tokens: int = 1000,
        model: Optional[str] = None,
    ):
        self.client = client
        self.registry = registry
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.model = model

    def _completion_kwargs(self, **extra) -> dict:
        kwargs = {"max_tokens": self.max_tokens, **extra}
        if self.model:
            kwargs["model"] = self.model
        return kwargs

    def _tool_catalogue(self) -> str:
        return json.dumps(
            [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                }
                for tool in self.registry.definitions()
            ],
            indent=2,
        )

    async def generate_plan(
        self,
        user_input: str,
        history: Optional[list[Message]] = None,
        hints: Optional[list[ToolCallCandidate]] = None,
    ) -> ActionPlan:
        """Ask the completion model for a JSON plan and accept it.

        Raises:
            PlanGenerationError: when the output is not a usable plan.
        """
        prompt = user_input
        if hints:
            suggested = [{"tool": c.name, "arguments": c.arguments} for c in hints]
            prompt += f"\n\nTool calls identified so far: {json.dumps(suggested)}"

        messages = [
            Message(role="system", content=PLANNER_PROMPT.format(tools=self._tool_catalogue())),
            *(history or []),
            Message(role="user", content=prompt),
        ]
        try:
            result = await self.client.complete(
                messages,
                None,
                **self._completion_kwargs(
                    temperature=self.temperature,
                    response_format={"type": "json_object"},
                ),
            )
        except Exception as e:
            raise PlanGenerationError(f"Plan request failed: {e}") from e

        try:
            payload = json.loads(result.content)
        except json.JSONDecodeError as e:
            raise PlanGenerationError(f"Planner returned invalid JSON: {e}") from e

        raw_steps = payload.get("plan") if isinstance(payload, dict) else payload
        if not isinstance(raw_steps, list):
            raise PlanGenerationError("Planner response has no 'plan' list")

        usable = []
        for index, raw in enumerate(raw_steps):
            if not isinstance(raw, dict) or raw.get("tool") not in self.registry:
                logger.warning(f"Dropping plan step with unknown tool: {raw!r}")
                continue
            usable.append({"id": f"step{index + 1}", **raw})
        if not usable:
            raise PlanGenerationError("Planner returned no usable steps")

        plan = accept_plan(ActionPlan.from_payload({"plan": usable}))
        logger.info(f"Generated plan {plan.id} with {len(plan)} step(s)")
        return plan

    async def summarize_run(self, run: Run) -> str:
        """Narrate a finished run from its step results and errors."""
        report = {
            "request": run.user_input,
            "status": run.status.value,
            "steps": [
                {
                    "tool": step.tool_call.name,
                    "status": step.result.status.value if step.result else "pending",
                    "data": json.dumps(step.result.data, default=str)[:SUMMARY_DATA_LIMIT]
                    if step.result and step.result.data is not None
                    else None,
                    "error": step.result.error if step.result else None,
                }
                for step in run.steps
            ],
        }
        messages = [
            Message(role="system", content=SUMMARY_PROMPT),
            Message(role="user", content=json.dumps(report)),
        ]
        try:
            result = await self.client.complete(
                messages, None, **self._completion_kwargs(temperature=0.5)
            )
            if result.content.strip():
                return result.content.strip()
        except Exception as e:
            logger.warning(f"Run summary failed for {run.id}: {e}")
        return fallback_summary(run)
