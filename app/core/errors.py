"""
Pipeline error taxonomy.

Each external collaborator raises its own error class; the pipeline decides
at a fixed seam whether the failure is absorbed (NLU, booking, dispatch) or
surfaced as a failed processing result (persistence).
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all conversational pipeline errors."""
    pass


class ValidationError(PipelineError):
    """Raised when an inbound message is malformed or incomplete."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid message: {', '.join(self.errors)}")


class ClassificationError(PipelineError):
    """Raised when the intent classifier fails."""
    pass


class ExtractionError(PipelineError):
    """Raised when the entity extractor fails."""
    pass


class BookingError(PipelineError):
    """Raised when the external appointment service fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class DispatchError(PipelineError):
    """Raised when an outgoing message cannot be sent through a channel."""
    pass


class PersistenceError(PipelineError):
    """Raised when a conversation, message or audit write fails."""
    pass


class AdapterNotFoundError(PipelineError, KeyError):
    """Raised when no channel adapter is registered for a channel type."""

    def __init__(self, channel_type: str):
        self.channel_type = channel_type
        super().__init__(f"No adapter registered for channel '{channel_type}'")

    def __str__(self) -> str:
        return self.args[0]


class ConversationBusyError(PipelineError):
    """Raised when a conversation lock cannot be acquired in time."""

    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Conversation {key} busy for more than {timeout}s")
