"""Exact token counting for chat deployments."""
from __future__ import annotations

from functools import lru_cache
from typing import Protocol

import tiktoken

from .exceptions import TokenizerError


class Tokenizer(Protocol):
    """Capability returning the token cost of a text for a deployment."""

    def count_tokens(self, deployment_name: str, text: str) -> int:
        ...


@lru_cache(maxsize=32)
def _encoding_for(deployment_name: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(deployment_name)
    except KeyError as exc:
        raise TokenizerError(
            f"No tokenizer registered for deployment '{deployment_name}'"
        ) from exc


class TiktokenTokenizer:
    """Count tokens with the encoding tiktoken maps to each deployment."""

    def count_tokens(self, deployment_name: str, text: str) -> int:
        if not text:
            return 0
        encoding = _encoding_for(deployment_name)
        return len(encoding.encode(text, disallowed_special=()))
