"""Pydantic schemas exposed by the NQL gateway."""
from .chat import (
    ChatCompletionRequest,
    ChatMessage,
    CompletionResult,
    ConversationRequest,
    ModelProfileResponse,
)

__all__ = [
    "ChatMessage",
    "ConversationRequest",
    "ChatCompletionRequest",
    "CompletionResult",
    "ModelProfileResponse",
]
