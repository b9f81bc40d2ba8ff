"""Tracing and structured logging for budgeted chat completions.

Spans record token figures only. Log events pass through
:func:`redact_message_content` so conversation text never leaves the process.
"""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

import structlog
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode
from structlog.stdlib import ProcessorFormatter

from .profiles import ModelProfile

if TYPE_CHECKING:  # pragma: no cover
    from .clients import ChatCompletionResult

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
tracer = trace.get_tracer(__name__)
_tracing_configured = False

CONTENT_KEYS = frozenset(
    {"content", "messages", "message", "system_message", "user_messages", "assistant_messages"}
)
REDACTED = "[redacted]"


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(value: str) -> Token:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token) -> None:
    correlation_id_var.reset(token)


# Tracing ------------------------------------------------------------------


class BudgetSpan:
    """Records how a conversation was fitted to its model's context window."""

    def __init__(self, span: Span) -> None:
        self._span = span

    def untrimmed(self, total_tokens: int, turns: int) -> None:
        self._span.set_attribute("conversation.untrimmed_tokens", total_tokens)
        self._span.set_attribute("conversation.turns", turns)

    def fitted(self, total_tokens: int, evicted_turns: int) -> None:
        self._span.set_attribute("conversation.total_tokens", total_tokens)
        self._span.set_attribute("conversation.evicted_turns", evicted_turns)

    def too_large(self, total_tokens: int, context_window: int) -> None:
        self._span.set_attribute("conversation.total_tokens", total_tokens)
        self._span.set_status(
            Status(StatusCode.ERROR, f"{total_tokens} tokens exceed window of {context_window}")
        )


@contextmanager
def budget_span(profile: ModelProfile) -> Iterator[BudgetSpan]:
    """Open the span covering token accounting and trimming for ``profile``."""

    with tracer.start_as_current_span("ConversationBudget.prepare") as span:
        for key, value in model_attributes(profile.deployment_name).items():
            span.set_attribute(key, value)
        span.set_attribute("llm.context_window", profile.context_window)
        span.set_attribute("llm.max_output_tokens", profile.max_output_tokens)
        yield BudgetSpan(span)


def model_attributes(deployment_name: str) -> Dict[str, Any]:
    attributes: Dict[str, Any] = {"llm.system": "openai", "llm.model": deployment_name}
    correlation_id = get_correlation_id()
    if correlation_id:
        attributes["correlation.id"] = correlation_id
    return attributes


def record_completion(span: Span, result: "ChatCompletionResult") -> None:
    span.set_status(Status(StatusCode.OK))
    span.set_attribute("http.status_code", result.status_code)
    if result.finish_reason:
        span.set_attribute("llm.finish_reason", result.finish_reason)
    for usage_key, usage_value in (result.usage or {}).items():
        if isinstance(usage_value, (int, float)):
            span.set_attribute(f"llm.usage.{usage_key}", usage_value)


def record_failure(span: Span, exc: Exception, status_code: Optional[int]) -> None:
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, str(exc)))
    if status_code is not None:
        span.set_attribute("http.status_code", status_code)


def parse_otlp_headers(raw_value: Optional[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for item in (raw_value or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def tracing_enabled() -> bool:
    return bool(os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"))


def configure_tracing(app: FastAPI, service_name: str) -> None:
    """Export spans over OTLP/HTTP and instrument ``app``; runs once per process."""

    global _tracing_configured
    if _tracing_configured:
        return

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    endpoint = os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"].rstrip("/")
    exporter = OTLPSpanExporter(
        endpoint=f"{endpoint}/v1/traces",
        headers=parse_otlp_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS")) or None,
    )
    provider = TracerProvider(
        resource=Resource.create({"service.name": os.getenv("OTEL_SERVICE_NAME", service_name)})
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor().instrument_app(app, tracer_provider=provider)
    _tracing_configured = True


# Logging ------------------------------------------------------------------


def add_correlation_id(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("correlation_id", get_correlation_id() or "unknown")
    return event_dict


def redact_message_content(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Replace conversation text passed through ``extra=`` or bound context."""

    for key in CONTENT_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def configure_logging(service_name: str, level: Optional[str] = None) -> None:
    """Render stdlib and structlog records as JSON on stderr."""

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        redact_message_content,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=shared_processors,
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel((level or os.getenv("NQL_GATEWAY_LOG_LEVEL", "INFO")).upper())

    structlog.configure(
        processors=shared_processors + [ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if tracing_enabled() or os.getenv("OTEL_EXPORTER_OTLP_LOGS_ENDPOINT"):
        _export_logs(service_name, root_logger)


def _export_logs(service_name: str, root_logger: logging.Logger) -> None:
    from opentelemetry._logs import set_logger_provider
    from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
    from opentelemetry.sdk.resources import Resource

    try:
        provider = LoggerProvider(
            resource=Resource.create({"service.name": os.getenv("OTEL_SERVICE_NAME", service_name)})
        )
        provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter()))
        set_logger_provider(provider)
        root_logger.addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=provider))
    except Exception:  # pragma: no cover - exporter misconfiguration must not stop the app
        root_logger.exception("Failed to configure OTLP log exporter")
