from __future__ import annotations

import dataclasses

import pytest

from nql_gateway.profiles import MODEL_PROFILES, GptModel, get_profile, list_profiles


def test_catalogue_limits() -> None:
    for model in GptModel:
        profile = get_profile(model)
        assert profile.model is model
        assert profile.deployment_name == model.value
        assert profile.context_window == 128_000
        assert profile.max_output_tokens == 4_096


def test_lookup_by_name() -> None:
    assert get_profile("gpt-4o-mini") is MODEL_PROFILES[GptModel.GPT_4O_MINI]
    assert len(list_profiles()) == 2


def test_unknown_model() -> None:
    with pytest.raises(KeyError):
        get_profile("gpt-2")


def test_catalogue_is_immutable() -> None:
    with pytest.raises(TypeError):
        MODEL_PROFILES[GptModel.GPT_4O] = MODEL_PROFILES[GptModel.GPT_4O_MINI]  # type: ignore[index]
    with pytest.raises(dataclasses.FrozenInstanceError):
        MODEL_PROFILES[GptModel.GPT_4O].context_window = 1  # type: ignore[misc]
