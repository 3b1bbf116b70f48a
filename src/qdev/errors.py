"""Exception hierarchy shared by retrieval and session code."""

from __future__ import annotations


class QDevError(Exception):
    """Base class for recoverable errors raised by this package."""


class ConversationIdNotFoundError(RuntimeError):
    """Raised when a session's conversation id is read before it is assigned."""

    def __init__(self) -> None:
        super().__init__("Conversation ID not found")


class SessionStateNotInitializedError(RuntimeError):
    """Raised when a session's state is read before initialization."""

    def __init__(self) -> None:
        super().__init__("State should be initialized before it's read")


class IllegalStateTransitionError(QDevError):
    """Raised when a state is asked to interact before it can."""


class FeatureDevServiceError(QDevError):
    """A failure reported by (or while talking to) the code generation service."""


class RetrievalError(QDevError):
    """A supplemental context failure attributed to one pipeline phase."""

    def __init__(self, phase: str, message: str) -> None:
        super().__init__(f"[{phase}] {message}")
        self.phase = phase


class OperationCancelledError(QDevError):
    """Raised at a yield point when the caller cancelled the operation."""


class RetrievalTimeoutError(TimeoutError):
    """Raised at a yield point once the operation's deadline has passed."""
