"""Outbound client channel.

Components never talk to a transport directly; they call
``channel.send(session_id, event)``. Events for one session are delivered in
the order they were sent.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from actionflow.execution import to_wire

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    AUTH_SUCCESS = "auth_success"
    PLAN_GENERATED = "plan_generated"
    PARAMETER_COLLECTION_REQUIRED = "parameter_collection_required"
    ACTION_CONFIRMATION_REQUIRED = "action_confirmation_required"
    ACTION_READY_FOR_CONFIRMATION = "action_ready_for_confirmation"
    ACTION_STATUS = "action_status"
    CONVERSATIONAL_TEXT_SEGMENT = "conversational_text_segment"
    STREAM_END = "stream_end"
    RUN_UPDATED = "run_updated"
    CONNECTION_UPDATED_ACK = "connection_updated_ack"
    ERROR = "error"


class SegmentStatus(str, Enum):
    START_STREAM = "START_STREAM"
    STREAMING = "STREAMING"
    END_STREAM = "END_STREAM"


@dataclass
class StreamEvent:
    type: EventType
    content: Any = None
    message_id: Optional[str] = None
    is_final: bool = False
    stream_type: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "type": to_wire(self.type),
            "content": to_wire(self.content),
            "isFinal": self.is_final,
        }
        if self.message_id is not None:
            data["messageId"] = self.message_id
        if self.stream_type is not None:
            data["streamType"] = self.stream_type
        return data


class EventChannel:
    def send(self, session_id: str, event: StreamEvent) -> None:
        raise NotImplementedError

    def discard(self, session_id: str) -> None:
        """Drop anything buffered for a closed session."""


class QueueChannel(EventChannel):
    """Buffers events in one asyncio.Queue per session.

    A transport task reads ``await channel.queue(session_id).get()`` and
    writes ``event.to_dict()`` to its socket.
    """

    def __init__(self):
        self._queues: dict[str, asyncio.Queue] = {}

    def queue(self, session_id: str) -> asyncio.Queue:
        if session_id not in self._queues:
            self._queues[session_id] = asyncio.Queue()
        return self._queues[session_id]

    def send(self, session_id: str, event: StreamEvent) -> None:
        self.queue(session_id).put_nowait(event)

    def drain(self, session_id: str) -> list[StreamEvent]:
        events = []
        queue = self._queues.get(session_id)
        while queue is not None and not queue.empty():
            events.append(queue.get_nowait())
        return events

    def discard(self, session_id: str) -> None:
        self._queues.pop(session_id, None)
