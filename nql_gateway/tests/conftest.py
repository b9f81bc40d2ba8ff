from __future__ import annotations

import os
import sys
from collections.abc import Generator
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("NQL_GATEWAY_OPENAI_API_KEY", "test-key")

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from nql_gateway import main
from nql_gateway.budget import ConversationBudgetManager
from nql_gateway.clients import ChatCompletionResult, OpenAIClientError


class WordTokenizer:
    """Deterministic tokenizer charging one token per whitespace separated word."""

    def __init__(self) -> None:
        self.deployments: List[str] = []

    def count_tokens(self, deployment_name: str, text: str) -> int:
        self.deployments.append(deployment_name)
        return len(text.split())


class DummyBackend:
    def __init__(self, reply: str = "SELECT 1", status_code: int = 200) -> None:
        self.reply = reply
        self.status_code = status_code
        self.calls: List[Dict[str, Any]] = []

    async def create_chat_completion(
        self,
        messages: List[Dict[str, str]],
        deployment_name: str,
        **params: Any,
    ) -> ChatCompletionResult:
        self.calls.append(
            {"messages": list(messages), "deployment_name": deployment_name, **params}
        )
        return ChatCompletionResult(
            content=self.reply,
            status_code=self.status_code,
            model=deployment_name,
        )


class FailingBackend(DummyBackend):
    def __init__(self, message: str = "backend down", status_code: Optional[int] = 503) -> None:
        super().__init__()
        self.message = message
        self.failure_status = status_code

    async def create_chat_completion(self, messages, deployment_name, **params):
        self.calls.append({"messages": list(messages), "deployment_name": deployment_name})
        raise OpenAIClientError(self.message, status_code=self.failure_status)


@pytest.fixture()
def tokenizer() -> WordTokenizer:
    return WordTokenizer()


@pytest.fixture()
def backend() -> DummyBackend:
    return DummyBackend(reply="a b c")


@pytest.fixture()
def manager(tokenizer: WordTokenizer, backend: DummyBackend) -> ConversationBudgetManager:
    return ConversationBudgetManager(tokenizer=tokenizer, backend=backend)


@pytest.fixture()
def client(
    tokenizer: WordTokenizer,
    backend: DummyBackend,
) -> Generator[TestClient, None, None]:
    main.app.dependency_overrides[main.get_budget_manager] = lambda: ConversationBudgetManager(
        tokenizer=tokenizer, backend=backend
    )
    with TestClient(main.app) as http_client:
        yield http_client
    main.app.dependency_overrides.clear()


@pytest.fixture()
def failing_backend() -> FailingBackend:
    return FailingBackend()


@pytest.fixture()
def failing_client(
    tokenizer: WordTokenizer,
    failing_backend: FailingBackend,
) -> Generator[TestClient, None, None]:
    main.app.dependency_overrides[main.get_budget_manager] = lambda: ConversationBudgetManager(
        tokenizer=tokenizer, backend=failing_backend
    )
    with TestClient(main.app) as http_client:
        yield http_client
    main.app.dependency_overrides.clear()
