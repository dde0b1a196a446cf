class ActionFlowError(Exception):
    """Base exception for actionflow errors."""


class ConfigurationError(ActionFlowError):
    """Raised when a tool has no provider binding or credentials are missing."""


class NoActiveConnection(ActionFlowError):
    """Raised when the user has no active connector connection."""


class ToolValidationError(ActionFlowError):
    """Raised when tool arguments are missing or invalid."""

    def __init__(
        self,
        message: str,
        missing: list[str] | None = None,
        invalid: list[str] | None = None,
    ):
        super().__init__(message)
        self.missing = list(missing or [])
        self.invalid = list(invalid or [])


class DispatchFailure(ActionFlowError):
    """Raised when the connector platform rejects a call."""


class ToolNotFound(ActionFlowError):
    """Raised when a tool name is not in the registry."""


class ActionNotFound(ActionFlowError):
    """Raised when an action id is unknown for the session."""


class ActionNotReady(ActionFlowError):
    """Raised when an action is executed outside the ready state."""


class UnresolvedDependency(ActionNotReady):
    """Raised when a step references results that are not available yet."""

    def __init__(self, message: str, references: list | None = None):
        super().__init__(message)
        self.references = list(references or [])


class PlanGenerationError(ActionFlowError):
    """Raised when the planner output cannot be turned into a plan."""


class SessionNotFound(ActionFlowError):
    """Raised when a message arrives for a session that is not open."""
