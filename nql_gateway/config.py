"""Configuration utilities for the NQL gateway service."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .profiles import GptModel


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    openai_api_key: Optional[str] = None
    default_model: GptModel = GptModel.GPT_4O_MINI
    dispatch_timeout: Optional[float] = Field(default=None, gt=0)
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, value: List[str] | str) -> List[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("dispatch_timeout", mode="before")
    @classmethod
    def parse_timeout(cls, value: Optional[str | float]) -> Optional[str | float]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        data = {
            "openai_api_key": os.getenv("NQL_GATEWAY_OPENAI_API_KEY")
            or os.getenv("OPENAI_API_KEY"),
            "default_model": os.getenv("NQL_GATEWAY_DEFAULT_MODEL", "gpt-4o-mini"),
            "dispatch_timeout": os.getenv("NQL_GATEWAY_DISPATCH_TIMEOUT"),
            "allowed_origins": os.getenv("NQL_GATEWAY_ALLOWED_ORIGINS", "*"),
        }
        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    settings = Settings.from_env()
    if not settings.openai_api_key:
        raise ValueError(
            "OPENAI API key must be provided via NQL_GATEWAY_OPENAI_API_KEY or OPENAI_API_KEY"
        )
    return settings
