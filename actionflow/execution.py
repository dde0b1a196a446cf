import time
import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Optional


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    COMPLETED = "completed"  # terminal, reserved for clients; finalize_run never sets it


class StepStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionStatus(str, Enum):
    COLLECTING_PARAMETERS = "collecting_parameters"
    READY = "ready"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStepStatus(str, Enum):
    READY = "ready"
    CONDITIONAL = "conditional"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class Message:
    role: str  # "user" | "assistant" | "system"
    content: str
    tool_call_id: Optional[str] = None
    tool_calls: Optional[list] = None


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict
    session_id: str = ""
    user_id: str = ""


@dataclass
class ToolResult:
    status: ResultStatus
    tool_name: str
    data: Any = None
    error: Optional[str] = None  # only set on failure
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @classmethod
    def success(cls, tool_name: str, data: Any = None) -> "ToolResult":
        return cls(status=ResultStatus.SUCCESS, tool_name=tool_name, data=data)

    @classmethod
    def failure(
        cls,
        tool_name: str,
        error: str,
        error_type: Optional[str] = None,
        data: Any = None,
    ) -> "ToolResult":
        return cls(
            status=ResultStatus.FAILED,
            tool_name=tool_name,
            data=data,
            error=error or f"Tool '{tool_name}' failed.",
            error_type=error_type,
        )


@dataclass
class ToolExecutionStep:
    step_id: str
    tool_call: ToolCall
    status: StepStatus = StepStatus.PENDING
    result: Optional[ToolResult] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None


@dataclass
class Run:
    id: str
    session_id: str
    user_id: str
    user_input: str
    steps: list[ToolExecutionStep] = field(default_factory=list)
    status: RunStatus = RunStatus.PENDING
    started_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    assistant_response: Optional[str] = None
    plan_id: Optional[str] = None
    connection_id: Optional[str] = None
    context_messages: list[Message] = field(default_factory=list)
    initiated_by: str = "user"

    def step(self, step_id: str) -> Optional[ToolExecutionStep]:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None


@dataclass
class ActionStep:
    id: str
    intent: str
    tool: str
    arguments: dict = field(default_factory=dict)
    status: PlanStepStatus = PlanStepStatus.READY
    required_params: list[str] = field(default_factory=list)


@dataclass
class ActionPlan:
    steps: list[ActionStep] = field(default_factory=list)
    id: str = field(default_factory=lambda: f"plan_{uuid.uuid4().hex}")

    def __iter__(self):
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @classmethod
    def from_payload(cls, payload: Any) -> "ActionPlan":
        """Build a plan from a client or planner payload.

        Accepts a bare list of steps, ``{"plan": [...]}`` or
        ``{"id": ..., "steps": [...]}``. Step ids present in the payload are
        preserved.
        """
        plan_id = None
        if isinstance(payload, dict):
            plan_id = payload.get("id")
            raw_steps = payload.get("steps", payload.get("plan", []))
        else:
            raw_steps = payload or []

        steps = []
        for raw in raw_steps:
            status = raw.get("status") or PlanStepStatus.READY.value
            steps.append(
                ActionStep(
                    id=raw.get("id") or f"step_{uuid.uuid4().hex[:12]}",
                    intent=raw.get("intent", ""),
                    tool=raw.get("tool", ""),
                    arguments=dict(raw.get("arguments") or {}),
                    status=PlanStepStatus(status),
                    required_params=list(
                        raw.get("requiredParams", raw.get("required_params", []))
                    ),
                )
            )

        if plan_id:
            return cls(steps=steps, id=plan_id)
        return cls(steps=steps)


@dataclass
class ParameterDefinition:
    name: str
    type: str
    description: str = ""
    required: bool = False
    current_value: Any = None
    hint: Optional[str] = None
    enum: Optional[list] = None


@dataclass
class ActiveAction:
    id: str
    tool_name: str
    tool_display_name: str
    description: str
    arguments: dict = field(default_factory=dict)
    parameters: list[ParameterDefinition] = field(default_factory=list)
    missing_parameters: list[str] = field(default_factory=list)
    status: ActionStatus = ActionStatus.COLLECTING_PARAMETERS
    message_id: Optional[str] = None
    result: Optional[ToolResult] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ActionStatus.COMPLETED, ActionStatus.FAILED)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_wire(value: Any) -> Any:
    """Convert dataclasses and enums into JSON-ready structures.

    Dataclass field names become camelCase. Keys of plain dicts (tool
    arguments, result payloads) are left untouched.
    """
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {_camel(f.name): to_wire(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {k: to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    return value
