"""Map provider names to adapter classes."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .base import BaseProvider
from .claude import ClaudeProvider
from .errors import ProviderConfigurationError
from .gemini import GeminiProvider
from .openai import OpenAIProvider


class ProviderFactory:
    PROVIDERS: Mapping[str, type[BaseProvider]] = {
        "openai": OpenAIProvider,
        "claude": ClaudeProvider,
        "gemini": GeminiProvider,
    }
    ALIASES: Mapping[str, str] = {"anthropic": "claude", "google": "gemini"}

    @classmethod
    def normalise(cls, name: str) -> str:
        key = (name or "").strip().lower()
        key = cls.ALIASES.get(key, key)
        if key not in cls.PROVIDERS:
            raise ProviderConfigurationError(f"Unknown provider '{name}'")
        return key

    @classmethod
    def provider_class(cls, name: str) -> type[BaseProvider]:
        return cls.PROVIDERS[cls.normalise(name)]

    @classmethod
    def provider_names(cls) -> list[str]:
        return list(cls.PROVIDERS)

    @classmethod
    def create(cls, name: str, api_key: str | None, model: str | None = None, **kwargs: Any) -> BaseProvider:
        return cls.provider_class(name)(api_key, model, **kwargs)
