"""Wrapper around the OpenAI chat completion API."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from openai import APIStatusError, OpenAI, OpenAIError
from opentelemetry import trace

from .telemetry import model_attributes, record_completion, record_failure

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class OpenAIClientError(RuntimeError):
    """Raised when the OpenAI client fails to fulfil a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class ChatCompletionResult:
    """Container for chat completion responses."""

    content: str
    status_code: int
    model: str
    usage: Optional[Dict[str, Any]] = None
    finish_reason: Optional[str] = None


def _usage_as_dict(usage: Any) -> Optional[Dict[str, Any]]:
    if usage is None:
        return None
    if isinstance(usage, dict):
        return usage
    if hasattr(usage, "model_dump"):
        return usage.model_dump()
    return None


class OpenAIClient:
    """Simple wrapper around the official OpenAI client."""

    def __init__(self, api_key: str) -> None:
        self._client = OpenAI(api_key=api_key)

    async def create_chat_completion(
        self,
        messages: Iterable[Dict[str, str]],
        deployment_name: str,
        **params: Any,
    ) -> ChatCompletionResult:
        """Call the Chat Completions API and normalise the response."""

        def _call() -> ChatCompletionResult:
            try:
                raw = self._client.chat.completions.with_raw_response.create(
                    model=deployment_name,
                    messages=list(messages),
                    **params,
                )
            except APIStatusError as exc:
                logger.error(
                    "OpenAI chat completion rejected with status %s", exc.status_code
                )
                raise OpenAIClientError(exc.message, status_code=exc.status_code) from exc
            except OpenAIError as exc:
                logger.exception("OpenAI chat completion failed")
                raise OpenAIClientError(str(exc)) from exc

            response = raw.parse()
            if not response.choices:
                raise OpenAIClientError(
                    "No choices returned by OpenAI chat completion",
                    status_code=raw.status_code,
                )

            choice = response.choices[0]
            content = getattr(choice.message, "content", None)
            if content is None:
                raise OpenAIClientError(
                    "Chat completion did not include content",
                    status_code=raw.status_code,
                )

            return ChatCompletionResult(
                content=content,
                status_code=raw.status_code,
                model=response.model or deployment_name,
                usage=_usage_as_dict(getattr(response, "usage", None)),
                finish_reason=getattr(choice, "finish_reason", None),
            )

        with tracer.start_as_current_span("OpenAI.chatCompletion") as span:
            for key, value in model_attributes(deployment_name).items():
                span.set_attribute(key, value)
            span.set_attribute("llm.operation", "chat.completion")
            try:
                result = await asyncio.to_thread(_call)
            except OpenAIClientError as exc:
                record_failure(span, exc, exc.status_code)
                raise
            record_completion(span, result)
            return result
