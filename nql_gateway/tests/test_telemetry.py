from __future__ import annotations

from typing import Any, Dict

from opentelemetry.trace import StatusCode

from nql_gateway.clients import ChatCompletionResult
from nql_gateway.telemetry import (
    REDACTED,
    BudgetSpan,
    get_correlation_id,
    model_attributes,
    parse_otlp_headers,
    record_completion,
    redact_message_content,
    reset_correlation_id,
    set_correlation_id,
)


class RecordingSpan:
    def __init__(self) -> None:
        self.attributes: Dict[str, Any] = {}
        self.status = None

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_status(self, status) -> None:
        self.status = status


def test_parse_otlp_headers() -> None:
    assert parse_otlp_headers(None) == {}
    assert parse_otlp_headers("api-key=abc, tenant = nql ,broken,=skip") == {
        "api-key": "abc",
        "tenant": "nql",
    }


def test_correlation_id_roundtrip() -> None:
    assert get_correlation_id() is None
    token = set_correlation_id("corr-1")
    try:
        assert get_correlation_id() == "corr-1"
        assert model_attributes("gpt-4o")["correlation.id"] == "corr-1"
    finally:
        reset_correlation_id(token)
    assert "correlation.id" not in model_attributes("gpt-4o")


def test_conversation_text_is_redacted_from_log_events() -> None:
    event = {
        "event": "Conversation fitted",
        "total_tokens": 53,
        "messages": [{"role": "user", "content": "secret"}],
        "system_message": "internal schema",
    }

    redacted = redact_message_content(None, "info", event)

    assert redacted == {
        "event": "Conversation fitted",
        "total_tokens": 53,
        "messages": REDACTED,
        "system_message": REDACTED,
    }


def test_budget_span_records_trimming() -> None:
    span = RecordingSpan()
    recorder = BudgetSpan(span)  # type: ignore[arg-type]

    recorder.untrimmed(71, turns=3)
    recorder.fitted(53, evicted_turns=1)

    assert span.attributes == {
        "conversation.untrimmed_tokens": 71,
        "conversation.turns": 3,
        "conversation.total_tokens": 53,
        "conversation.evicted_turns": 1,
    }


def test_budget_span_marks_oversized_conversation() -> None:
    span = RecordingSpan()

    BudgetSpan(span).too_large(22, context_window=21)  # type: ignore[arg-type]

    assert span.attributes["conversation.total_tokens"] == 22
    assert span.status.status_code is StatusCode.ERROR


def test_record_completion_keeps_numeric_usage() -> None:
    span = RecordingSpan()
    result = ChatCompletionResult(
        content="SELECT 1",
        status_code=200,
        model="gpt-4o",
        usage={"total_tokens": 12, "details": None},
        finish_reason="stop",
    )

    record_completion(span, result)  # type: ignore[arg-type]

    assert span.status.status_code is StatusCode.OK
    assert span.attributes == {
        "http.status_code": 200,
        "llm.finish_reason": "stop",
        "llm.usage.total_tokens": 12,
    }
