import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from actionflow.dependencies import ArgumentTemplate
from actionflow.exceptions import SessionNotFound
from actionflow.execution import ActiveAction, Message, Run

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Everything one session owns. Nothing here is shared across sessions."""

    session_id: str
    user_id: Optional[str] = None
    actions: dict[str, ActiveAction] = field(default_factory=dict)
    templates: dict[str, ArgumentTemplate] = field(default_factory=dict)
    approved: list[str] = field(default_factory=list)
    run: Optional[Run] = None
    history: list[Message] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionStore:
    """In-memory map of live sessions and their actions.

    Created once per process and passed to the components that need it.
    """

    def __init__(self):
        self._sessions: dict[str, SessionState] = {}

    def open(self, session_id: str, user_id: Optional[str] = None) -> SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            state = SessionState(session_id=session_id, user_id=user_id)
            self._sessions[session_id] = state
            logger.info(f"Session {session_id} opened")
        elif user_id is not None:
            state.user_id = user_id
        return state

    def find(self, session_id: str) -> Optional[SessionState]:
        return self._sessions.get(session_id)

    def get(self, session_id: str) -> SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            raise SessionNotFound(f"Session '{session_id}' is not open")
        return state

    def close(self, session_id: str) -> bool:
        """Discard the session's actions and run reference."""
        state = self._sessions.pop(session_id, None)
        if state is None:
            return False
        logger.info(f"Session {session_id} closed with {len(state.actions)} action(s)")
        return True

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    # --- actions ---

    def put_action(
        self,
        session_id: str,
        action: ActiveAction,
        template: Optional[ArgumentTemplate] = None,
    ) -> ActiveAction:
        state = self.get(session_id)
        state.actions[action.id] = action
        if template is not None:
            state.templates[action.id] = template
        return action

    def get_action(self, session_id: str, action_id: str) -> Optional[ActiveAction]:
        state = self.find(session_id)
        if state is None:
            return None
        return state.actions.get(action_id)

    def list_actions(self, session_id: str) -> list[ActiveAction]:
        state = self.find(session_id)
        return list(state.actions.values()) if state else []

    def clear_actions(self, session_id: str) -> None:
        state = self.find(session_id)
        if state is None:
            return
        state.actions.clear()
        state.templates.clear()
        state.approved.clear()

    def approve(self, session_id: str, action_id: str) -> None:
        state = self.get(session_id)
        if action_id not in state.approved:
            state.approved.append(action_id)
