"""One user turn: narration and tool identification run side by side.

The narration stream talks to the user (and may ask for a plan through the
planner meta-tool); the identification stream only proposes tool calls.
Both are awaited together, each may fail on its own, and their tool calls
are merged afterwards, deduplicated by id.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from actionflow.channel import EventChannel, EventType, SegmentStatus, StreamEvent
from actionflow.execution import Message, to_wire
from actionflow.markdown import ParsedSegment, markdown_segments
from actionflow.model import (
    CompletionClient,
    CompletionResult,
    ToolCallAccumulator,
    ToolCallCandidate,
)
from actionflow.prompts import (
    FALLBACK_ACKNOWLEDGEMENT,
    NARRATION_PROMPT,
    PLANNER_META_TOOL,
    PLANNER_META_TOOL_NAME,
    TOOL_IDENTIFICATION_PROMPT,
)
from actionflow.store import SessionState
from actionflow.tools import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    narration: str = ""
    tool_calls: list[ToolCallCandidate] = field(default_factory=list)
    plan_requested: bool = False
    planner_input: Optional[str] = None
    narration_failed: bool = False

    @property
    def executable_calls(self) -> list[ToolCallCandidate]:
        return [c for c in self.tool_calls if c.name != PLANNER_META_TOOL_NAME]

    @property
    def needs_planning(self) -> bool:
        return self.plan_requested or len(self.executable_calls) > 1

    @property
    def is_single_step(self) -> bool:
        return not self.needs_planning and len(self.executable_calls) == 1


def merge_tool_calls(*groups: list[ToolCallCandidate]) -> list[ToolCallCandidate]:
    """Concatenate candidate lists, keeping the first call seen for each id."""
    merged: dict[str, ToolCallCandidate] = {}
    for group in groups:
        for call in group:
            merged.setdefault(call.id, call)
    return list(merged.values())


def _segment_event(message_id: str, status: SegmentStatus, segment=None) -> StreamEvent:
    content = {"status": status.value}
    if segment is not None:
        content["segment"] = to_wire(segment)
    return StreamEvent(
        type=EventType.CONVERSATIONAL_TEXT_SEGMENT,
        content=content,
        message_id=message_id,
        is_final=status == SegmentStatus.END_STREAM,
    )


def stream_end_event(message_id: str) -> StreamEvent:
    return StreamEvent(
        type=EventType.STREAM_END,
        message_id=message_id,
        is_final=True,
        stream_type="conversational",
    )


async def stream_text(
    channel: EventChannel,
    session_id: str,
    message_id: str,
    text: str,
    chunk_size: int = 10,
    end_stream: bool = True,
) -> None:
    """Send a complete string as conversational segments of chunk_size words."""
    channel.send(session_id, _segment_event(message_id, SegmentStatus.START_STREAM))
    words = text.split(" ")
    for start in range(0, len(words), chunk_size):
        chunk = " ".join(words[start:start + chunk_size])
        if start + chunk_size < len(words):
            chunk += " "
        channel.send(
            session_id,
            _segment_event(
                message_id,
                SegmentStatus.STREAMING,
                {"segment": chunk, "styles": [], "type": "text"},
            ),
        )
        await asyncio.sleep(0)
    channel.send(session_id, _segment_event(message_id, SegmentStatus.END_STREAM))
    if end_stream:
        channel.send(session_id, stream_end_event(message_id))


class ConversationService:
    def __init__(
        self,
        client: CompletionClient,
        registry: ToolRegistry,
        channel: EventChannel,
        narration_temperature: float = 0.5,
        max_tokens: int = 1000,
        history_limit: int = 20,
    ):
        self.client = client
        self.registry = registry
        self.channel = channel
        self.narration_temperature = narration_temperature
        self.max_tokens = max_tokens
        self.history_limit = history_limit

    async def process_message(
        self, state: SessionState, text: str, message_id: str
    ) -> TurnResult:
        """Run both streams for one user message and merge what they found.

        Narration is forwarded to the client as it arrives. ``stream_end`` is
        sent once both streams settled, whatever happened.
        """
        session_id = state.session_id
        tools = self.registry.to_openai_tools(self.registry.relevant_categories(text))
        user_message = Message(role="user", content=text)

        try:
            narration, identified = await asyncio.gather(
                self._narrate(
                    session_id,
                    message_id,
                    [
                        Message(role="system", content=NARRATION_PROMPT),
                        *state.history[-self.history_limit:],
                        user_message,
                    ],
                    tools,
                ),
                self._identify_tools(
                    [Message(role="system", content=TOOL_IDENTIFICATION_PROMPT), user_message],
                    tools,
                ),
                return_exceptions=True,
            )

            turn = TurnResult()
            narration_calls: list[ToolCallCandidate] = []
            if isinstance(narration, BaseException):
                logger.warning(f"Narration stream failed for {session_id}: {narration}")
                turn.narration_failed = True
                turn.narration = FALLBACK_ACKNOWLEDGEMENT
                await stream_text(
                    self.channel, session_id, message_id, FALLBACK_ACKNOWLEDGEMENT, end_stream=False
                )
            else:
                turn.narration = narration.content
                narration_calls = narration.tool_calls

            if isinstance(identified, BaseException):
                logger.warning(f"Tool identification failed for {session_id}: {identified}")
                identified = []

            calls = []
            for call in merge_tool_calls(narration_calls, identified):
                if call.name == PLANNER_META_TOOL_NAME:
                    turn.plan_requested = True
                    turn.planner_input = call.arguments.get("userInput") or turn.planner_input
                elif call.name not in self.registry:
                    logger.warning(f"Ignoring call to unknown tool '{call.name}'")
                else:
                    calls.append(call)
            turn.tool_calls = calls
            logger.info(
                f"Turn {message_id}: {len(calls)} tool call(s), plan requested={turn.plan_requested}"
            )
        finally:
            self.channel.send(session_id, stream_end_event(message_id))

        state.history.append(user_message)
        if turn.narration:
            state.history.append(Message(role="assistant", content=turn.narration))
        del state.history[:-self.history_limit]
        return turn

    async def _narrate(
        self,
        session_id: str,
        message_id: str,
        messages: list[Message],
        tools: list[dict],
    ) -> CompletionResult:
        content = []
        accumulator = ToolCallAccumulator()

        def forward(parsed: ParsedSegment) -> None:
            self.channel.send(
                session_id, _segment_event(message_id, parsed.status, parsed.segment)
            )

        with markdown_segments(forward) as parser:
            async for delta in self.client.stream(
                messages,
                tools + [PLANNER_META_TOOL],
                temperature=self.narration_temperature,
                max_tokens=self.max_tokens,
            ):
                if delta.content:
                    content.append(delta.content)
                    parser.feed(delta.content)
                for tool_delta in delta.tool_calls:
                    accumulator.add(tool_delta)

        return CompletionResult(content="".join(content), tool_calls=accumulator.result())

    async def _identify_tools(
        self, messages: list[Message], tools: list[dict]
    ) -> list[ToolCallCandidate]:
        if not tools:
            return []
        result = await self.client.complete(
            messages, tools, tool_choice="auto", max_tokens=self.max_tokens
        )
        return result.tool_calls
