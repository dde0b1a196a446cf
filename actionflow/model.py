import json
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from actionflow.execution import Message

logger = logging.getLogger(__name__)


@dataclass
class ToolCallDelta:
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""  # JSON fragment


@dataclass
class CompletionDelta:
    content: str = ""
    tool_calls: list[ToolCallDelta] = field(default_factory=list)
    finish_reason: Optional[str] = None


@dataclass
class ToolCallCandidate:
    id: str
    name: str
    arguments: dict


@dataclass
class CompletionResult:
    content: str = ""
    tool_calls: list[ToolCallCandidate] = field(default_factory=list)
    finish_reason: Optional[str] = None


class ToolCallAccumulator:
    """Reassembles streamed tool calls keyed by their delta index.

    The first id seen for an index wins; name and argument fragments are
    concatenated in arrival order.
    """

    def __init__(self):
        self._calls: dict[int, dict] = {}

    def add(self, delta: ToolCallDelta) -> None:
        call = self._calls.setdefault(delta.index, {"id": None, "name": "", "arguments": ""})
        if delta.id and not call["id"]:
            call["id"] = delta.id
        if delta.name:
            call["name"] += delta.name
        if delta.arguments:
            call["arguments"] += delta.arguments

    def result(self) -> list[ToolCallCandidate]:
        candidates = []
        for index in sorted(self._calls):
            call = self._calls[index]
            if not call["id"] or not call["name"]:
                logger.warning(f"Dropping incomplete tool call at index {index}")
                continue
            try:
                arguments = json.loads(call["arguments"]) if call["arguments"].strip() else {}
            except json.JSONDecodeError:
                logger.warning(f"Dropping tool call {call['name']}: arguments are not valid JSON")
                continue
            if not isinstance(arguments, dict):
                logger.warning(f"Dropping tool call {call['name']}: arguments are not an object")
                continue
            candidates.append(
                ToolCallCandidate(id=call["id"], name=call["name"], arguments=arguments)
            )
        return candidates


class CompletionClient:
    """Streamed chat-completion endpoint."""

    def stream(
        self,
        messages: list[Message],
        tools: Optional[list[dict]] = None,
        **kwargs,
    ) -> AsyncIterator[CompletionDelta]:
        """Yield content and tool-call deltas until the model finishes.

        ``tools`` are OpenAI-style function records. Recognised kwargs:
        tool_choice, max_tokens, temperature, response_format.
        """
        raise NotImplementedError

    async def complete(
        self,
        messages: list[Message],
        tools: Optional[list[dict]] = None,
        **kwargs,
    ) -> CompletionResult:
        """Drain ``stream`` into a single result."""
        content = []
        accumulator = ToolCallAccumulator()
        finish_reason = None
        async for delta in self.stream(messages, tools, **kwargs):
            if delta.content:
                content.append(delta.content)
            for tool_delta in delta.tool_calls:
                accumulator.add(tool_delta)
            if delta.finish_reason:
                finish_reason = delta.finish_reason
        return CompletionResult(
            content="".join(content),
            tool_calls=accumulator.result(),
            finish_reason=finish_reason,
        )
