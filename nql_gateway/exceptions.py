"""Domain-specific exceptions for conversation budgeting and dispatch."""
from __future__ import annotations

from typing import Optional


class ConversationError(Exception):
    """Base class for conversation pipeline errors."""


class ConversationValidationError(ConversationError):
    """Base class for structural validation errors."""


class EmptyMessageError(ConversationValidationError):
    """Raised when a user or assistant message is empty or whitespace-only."""


class UnbalancedTurnsError(ConversationValidationError):
    """Raised when user messages do not outnumber assistant messages by exactly one."""


class RequestTooLargeError(ConversationError):
    """Raised when the pending message alone does not fit the context window."""

    def __init__(self, message: str, *, total_tokens: int, context_window: int) -> None:
        super().__init__(message)
        self.total_tokens = total_tokens
        self.context_window = context_window


class DispatchError(ConversationError):
    """Raised when the completion backend reports a failure."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DispatchCancelledError(ConversationError):
    """Raised when the caller cancels a dispatch or its deadline elapses."""


class TokenizerError(ConversationError):
    """Raised when no exact tokenizer exists for a deployment."""
