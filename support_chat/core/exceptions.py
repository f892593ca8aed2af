"""Error taxonomy for the chat pipeline.

Every error raised across module boundaries derives from ``ChatError`` so the
API layer can map it to a response in one place.
"""
import math
from typing import Optional


class ChatError(Exception):
    """
    Base class for chat pipeline errors.

    Attributes:
        code: Machine-readable error code
        message: User-facing message
        http_status: Status code used when the error reaches the HTTP layer
    """

    code = "CHAT_ERROR"
    http_status = 500

    def __init__(self, message: str, *, code: Optional[str] = None, http_status: Optional[int] = None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        super().__init__(message)


class ThrottledError(ChatError):
    """Caller exceeded its rate-limit window. Retryable after ``retry_after_ms``."""

    code = "THROTTLED"
    http_status = 429

    def __init__(self, message: str, retry_after_ms: int):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms

    @property
    def retry_after_seconds(self) -> int:
        return max(1, math.ceil(self.retry_after_ms / 1000))


class InvalidCursorError(ChatError):
    """Pagination cursor could not be decoded."""

    code = "INVALID_CURSOR"
    http_status = 400

    def __init__(self, cursor: str):
        super().__init__("Invalid request")
        self.cursor = cursor


class ConversationMissingError(ChatError):
    """A message was inserted for a conversation that was never ensured."""

    code = "CONVERSATION_MISSING"
    http_status = 500

    def __init__(self, conversation_id):
        super().__init__(f"Conversation {conversation_id} does not exist")
        self.conversation_id = conversation_id


class CompletionFailure(ChatError):
    """The language model call timed out, errored or returned something unusable."""

    code = "COMPLETION_FAILED"
    http_status = 502


class StorageFailure(ChatError):
    """The durable store failed (connectivity, constraint violation, ...)."""

    code = "STORAGE_FAILED"
    http_status = 500
