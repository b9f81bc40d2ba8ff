#!/usr/bin/env python3
"""NQL Gateway application serving budgeted chat completions."""
from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()

import logging
import time
import uuid
from functools import lru_cache
from typing import Dict, List

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bind_contextvars, unbind_contextvars

from .budget import ConversationBudgetManager
from .clients import OpenAIClient
from .config import Settings, get_settings
from .exceptions import (
    ConversationValidationError,
    DispatchCancelledError,
    DispatchError,
    RequestTooLargeError,
)
from .models import (
    ChatCompletionRequest,
    CompletionResult,
    ConversationRequest,
    ModelProfileResponse,
)
from .profiles import list_profiles
from .telemetry import (
    configure_logging,
    configure_tracing,
    reset_correlation_id,
    set_correlation_id,
    tracing_enabled,
)
from .tokenizer import TiktokenTokenizer

SERVICE_NAME = "nql-gateway"

logger = logging.getLogger("nql_gateway")

configure_logging(SERVICE_NAME)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with a correlation id and report its latency."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex
        token = set_correlation_id(correlation_id)
        bind_contextvars(correlation_id=correlation_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
            unbind_contextvars("correlation_id")
        duration_ms = (time.perf_counter() - start) * 1000

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "%s %s -> %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={"status_code": response.status_code, "duration_ms": round(duration_ms, 2)},
        )
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time-ms"] = f"{duration_ms:.2f}"
        return response


app = FastAPI(title="NQL Gateway", version="0.1.0")
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)
if tracing_enabled():
    configure_tracing(app, SERVICE_NAME)


# Dependency factories -----------------------------------------------------

@lru_cache()
def get_tokenizer() -> TiktokenTokenizer:
    return TiktokenTokenizer()


def get_openai_client(settings: Settings = Depends(get_settings)) -> OpenAIClient:
    return OpenAIClient(api_key=settings.openai_api_key)


def get_budget_manager(
    openai_client: OpenAIClient = Depends(get_openai_client),
    tokenizer: TiktokenTokenizer = Depends(get_tokenizer),
) -> ConversationBudgetManager:
    return ConversationBudgetManager(tokenizer=tokenizer, backend=openai_client)


def _dispatch_status(exc: DispatchError) -> int:
    if exc.status_code is not None and exc.status_code >= 400:
        return exc.status_code
    return 502


# Routes -------------------------------------------------------------------


@app.get("/")
async def root() -> Dict[str, str]:
    return {"message": "NQL Gateway operational"}


@app.get("/healthz")
async def healthz(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    """Readiness check for container orchestrators."""

    return {"status": "ok", "openai": "configured" if settings.openai_api_key else "missing"}


@app.get("/models", response_model=List[ModelProfileResponse])
async def list_models() -> List[ModelProfileResponse]:
    return [
        ModelProfileResponse(
            model=profile.model,
            deployment_name=profile.deployment_name,
            context_window=profile.context_window,
            max_output_tokens=profile.max_output_tokens,
        )
        for profile in list_profiles()
    ]


@app.post("/chat/completions", response_model=CompletionResult)
async def chat_completion(
    payload: ChatCompletionRequest,
    manager: ConversationBudgetManager = Depends(get_budget_manager),
    settings: Settings = Depends(get_settings),
) -> CompletionResult:
    conversation = ConversationRequest(
        model=payload.model or settings.default_model,
        system_message=payload.system_message,
        user_messages=payload.user_messages,
        assistant_messages=payload.assistant_messages,
    )
    timeout = payload.timeout or settings.dispatch_timeout

    try:
        return await manager.complete(conversation, timeout=timeout)
    except (ConversationValidationError, RequestTooLargeError) as exc:
        logger.info("Conversation rejected: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DispatchCancelledError as exc:
        logger.warning("Chat completion timed out", extra={"timeout": timeout})
        raise HTTPException(status_code=504, detail=str(exc)) from exc
    except DispatchError as exc:
        logger.warning(
            "Chat completion failed: %s",
            exc.message,
            extra={"status_code": exc.status_code, "model": conversation.model.value},
        )
        raise HTTPException(status_code=_dispatch_status(exc), detail=exc.message) from exc
