"""Static catalogue of the chat models served by the gateway."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping


class GptModel(str, Enum):
    """Models a conversation can be addressed to."""

    GPT_4O = "gpt-4o"
    GPT_4O_MINI = "gpt-4o-mini"


@dataclass(frozen=True)
class ModelProfile:
    """Deployment and token limits of a chat model."""

    model: GptModel
    deployment_name: str
    context_window: int
    max_output_tokens: int


MODEL_PROFILES: Mapping[GptModel, ModelProfile] = MappingProxyType(
    {
        GptModel.GPT_4O: ModelProfile(
            model=GptModel.GPT_4O,
            deployment_name="gpt-4o",
            context_window=128_000,
            max_output_tokens=4_096,
        ),
        GptModel.GPT_4O_MINI: ModelProfile(
            model=GptModel.GPT_4O_MINI,
            deployment_name="gpt-4o-mini",
            context_window=128_000,
            max_output_tokens=4_096,
        ),
    }
)


def get_profile(model: GptModel | str) -> ModelProfile:
    """Return the profile registered for ``model``.

    Raises ``KeyError`` when the model is not part of the catalogue.
    """

    try:
        return MODEL_PROFILES[GptModel(model)]
    except ValueError as exc:
        raise KeyError(f"Unknown model '{model}'") from exc


def list_profiles() -> List[ModelProfile]:
    return list(MODEL_PROFILES.values())
