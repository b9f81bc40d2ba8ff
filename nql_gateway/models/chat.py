"""Pydantic models representing budgeted chat conversations."""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..profiles import GptModel


class ChatMessage(BaseModel):
    """Single role-tagged message sent to the completion backend."""

    role: Literal["system", "user", "assistant"] = Field(
        ..., description="Role of the author (system, user, assistant)"
    )
    content: str = Field(..., description="Text content of the message")


class ConversationRequest(BaseModel):
    """A conversation awaiting the reply to its last user message.

    The Nth assistant message answers the Nth user message; the final user
    message is the pending question and has no reply yet.
    """

    model: GptModel = Field(
        default=GptModel.GPT_4O_MINI,
        description="Model the conversation is addressed to",
    )
    system_message: Optional[str] = Field(
        default=None, description="Optional instruction sent ahead of the turns"
    )
    user_messages: List[str] = Field(
        default_factory=list,
        description="User messages in chronological order, pending question last",
    )
    assistant_messages: List[str] = Field(
        default_factory=list,
        description="Assistant replies to every user message but the last",
    )


class ChatCompletionRequest(ConversationRequest):
    """HTTP payload for budgeted chat completions."""

    model: Optional[GptModel] = Field(
        default=None,
        description="Model override; the configured default model is used when omitted",
    )
    timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds to wait for the backend before giving up",
    )


class CompletionResult(BaseModel):
    """Token-accounted reply of the completion backend."""

    tokens_used: int = Field(
        ..., ge=0, description="Input tokens sent plus tokens of the reply"
    )
    status_code: int = Field(..., description="Status reported by the backend")
    message: str = Field(..., description="Assistant reply produced by the model")
    model: Optional[str] = Field(
        default=None, description="Deployment that generated the reply"
    )
    evicted_turns: int = Field(
        default=0, ge=0, description="Oldest turns dropped to fit the context window"
    )


class ModelProfileResponse(BaseModel):
    """Public description of a served model."""

    model: GptModel
    deployment_name: str
    context_window: int = Field(..., ge=1)
    max_output_tokens: int = Field(..., ge=1)
