"""Fit multi-turn conversations into a model's context window.

The :class:`ConversationBudgetManager` validates a :class:`ConversationRequest`,
counts the exact token cost of every message, evicts the oldest completed
turns until the conversation plus the reserved output fits the model's context
window, and dispatches the fitted messages to the completion backend.

Token accounting keeps a single running total::

    system + all user messages (pending one included) + all assistant messages
           + max output tokens

Eviction removes whole (user, assistant) pairs from the front of the history
and stops as soon as the total fits or no completed turn is left.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from .clients import ChatCompletionResult, OpenAIClientError
from .exceptions import (
    DispatchCancelledError,
    DispatchError,
    EmptyMessageError,
    RequestTooLargeError,
    UnbalancedTurnsError,
)
from .models import ChatMessage, CompletionResult, ConversationRequest
from .profiles import ModelProfile, get_profile
from .telemetry import budget_span
from .tokenizer import Tokenizer

logger = logging.getLogger(__name__)


class CompletionBackend(Protocol):
    async def create_chat_completion(
        self, messages: Sequence[Dict[str, str]], deployment_name: str, **params
    ) -> ChatCompletionResult:
        ...


@dataclass(frozen=True)
class FittedRequest:
    """Messages that fit the context window of ``profile``."""

    profile: ModelProfile
    messages: Tuple[ChatMessage, ...]
    total_tokens: int
    evicted_turns: int = 0

    @property
    def input_tokens(self) -> int:
        return self.total_tokens - self.profile.max_output_tokens

    @property
    def available_output_tokens(self) -> int:
        """Tokens the backend may still generate for this request."""

        return self.profile.context_window - self.input_tokens

    def as_payload(self) -> List[Dict[str, str]]:
        return [message.model_dump() for message in self.messages]


def _is_blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


def validate_conversation(request: ConversationRequest) -> None:
    """Check the structural invariants of ``request``.

    Raises :class:`EmptyMessageError` when any turn is blank and
    :class:`UnbalancedTurnsError` unless there is exactly one more user
    message than assistant messages.
    """

    if any(_is_blank(message) for message in request.user_messages) or any(
        _is_blank(message) for message in request.assistant_messages
    ):
        raise EmptyMessageError("Messages can not be empty.")

    if len(request.user_messages) != len(request.assistant_messages) + 1:
        raise UnbalancedTurnsError(
            "Expected exactly one pending user message: got "
            f"{len(request.user_messages)} user and "
            f"{len(request.assistant_messages)} assistant messages."
        )


class ConversationBudgetManager:
    """Validate, trim and dispatch conversations for token-limited models."""

    def __init__(self, tokenizer: Tokenizer, backend: CompletionBackend) -> None:
        self._tokenizer = tokenizer
        self._backend = backend

    def _count(self, profile: ModelProfile, text: str) -> int:
        return self._tokenizer.count_tokens(profile.deployment_name, text)

    def prepare(self, request: ConversationRequest) -> FittedRequest:
        """Return the conversation trimmed to the model's context window."""

        validate_conversation(request)
        profile = get_profile(request.model)

        with budget_span(profile) as span:
            system_message = request.system_message
            users = tuple(request.user_messages)
            assistants = tuple(request.assistant_messages)

            user_costs = [self._count(profile, message) for message in users]
            assistant_costs = [self._count(profile, message) for message in assistants]

            # a blank system message is counted but never sent
            total = self._count(profile, system_message) if system_message is not None else 0
            total += sum(assistant_costs)
            total += sum(user_costs)
            total += profile.max_output_tokens
            span.untrimmed(total, turns=len(assistants))

            start = 0
            while start < len(assistants) and total > profile.context_window:
                total -= user_costs[start]
                total -= assistant_costs[start]
                start += 1

            if total > profile.context_window:
                span.too_large(total, profile.context_window)
                logger.info(
                    "Conversation exceeds context window after trimming",
                    extra={
                        "model": profile.deployment_name,
                        "total_tokens": total,
                        "context_window": profile.context_window,
                    },
                )
                raise RequestTooLargeError(
                    "Input size larger than context window.",
                    total_tokens=total,
                    context_window=profile.context_window,
                )
            span.fitted(total, evicted_turns=start)

        messages = []
        if not _is_blank(system_message):
            messages.append(ChatMessage(role="system", content=system_message))
        for user, assistant in zip(users[start:], assistants[start:]):
            messages.append(ChatMessage(role="user", content=user))
            messages.append(ChatMessage(role="assistant", content=assistant))
        messages.append(ChatMessage(role="user", content=users[-1]))

        logger.debug(
            "Conversation fitted",
            extra={
                "model": profile.deployment_name,
                "total_tokens": total,
                "evicted_turns": start,
                "retained_turns": len(assistants) - start,
            },
        )
        return FittedRequest(
            profile=profile,
            messages=tuple(messages),
            total_tokens=total,
            evicted_turns=start,
        )

    async def dispatch(
        self,
        fitted: FittedRequest,
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CompletionResult:
        """Send ``fitted`` to the backend and account for the tokens used.

        ``timeout`` bounds the wait in seconds and ``cancel_event`` lets the
        caller abandon the call; either raises :class:`DispatchCancelledError`.
        """

        profile = fitted.profile
        if cancel_event is not None and cancel_event.is_set():
            raise DispatchCancelledError("Dispatch cancelled before sending the request.")

        call = asyncio.ensure_future(
            self._backend.create_chat_completion(
                fitted.as_payload(),
                deployment_name=profile.deployment_name,
                max_tokens=profile.max_output_tokens,
            )
        )
        try:
            response = await self._await_completion(call, timeout, cancel_event)
        except OpenAIClientError as exc:
            raise DispatchError(exc.message, status_code=exc.status_code) from exc

        tokens_used = fitted.input_tokens + self._count(profile, response.content)
        logger.info(
            "Chat completion dispatched",
            extra={
                "model": profile.deployment_name,
                "status_code": response.status_code,
                "tokens_used": tokens_used,
                "evicted_turns": fitted.evicted_turns,
            },
        )
        return CompletionResult(
            tokens_used=tokens_used,
            status_code=response.status_code,
            message=response.content,
            model=response.model,
            evicted_turns=fitted.evicted_turns,
        )

    async def _await_completion(
        self,
        call: "asyncio.Future[ChatCompletionResult]",
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> ChatCompletionResult:
        waiters = {call}
        cancelled = None
        if cancel_event is not None:
            cancelled = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancelled)

        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancelled is not None:
                cancelled.cancel()
            if not call.done():
                call.cancel()

        if call.cancelled() or not call.done():
            logger.warning("Chat completion abandoned before the backend answered")
            raise DispatchCancelledError("Dispatch cancelled before the backend answered.")
        return call.result()

    async def complete(
        self,
        request: ConversationRequest,
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CompletionResult:
        """Prepare ``request`` and dispatch it in a single call."""

        fitted = self.prepare(request)
        return await self.dispatch(fitted, timeout=timeout, cancel_event=cancel_event)
