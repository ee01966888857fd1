"""Domain and application exceptions.

These are business-logic errors, not HTTP errors. The presentation layer
(``presentation.exception_handlers``) translates them into HTTP responses.
"""


class AssistantError(Exception):
    """Base class for all Clinician Assistant errors."""


class StoreLookupError(AssistantError):
    """Raised when the record store is unreachable, times out or errors."""


class NotFoundError(AssistantError):
    """Raised when a named patient cannot be resolved to any record."""

    def __init__(self, reference: str) -> None:
        super().__init__(f"No patient record matches '{reference}'")
        self.reference = reference


class ConversationNotFoundError(AssistantError):
    """Raised when a conversation id does not exist."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class EmptyMessageError(AssistantError, ValueError):
    """Raised when the caller sends a blank user message."""
