"""Generation parameter defaults per provider."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class ResponseParameterStore:
    """Maintain provider specific generation defaults."""

    _DEFAULTS: Mapping[str, dict[str, Any]] = {
        "openai": {"temperature": 0.7, "max_tokens": 2000},
        "claude": {"temperature": 0.7, "max_tokens": 4096},
        "gemini": {"temperature": 0.7, "max_tokens": 2048, "top_k": 40, "top_p": 0.95},
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, Any]] | None = None):
        self._defaults: dict[str, dict[str, Any]] = {
            provider: dict(params) for provider, params in self._DEFAULTS.items()
        }
        if overrides:
            for provider, params in overrides.items():
                self._defaults.setdefault(provider.lower(), {}).update(params)

    def defaults_for_provider(self, provider: str) -> dict[str, Any]:
        return dict(self._defaults.get(provider.lower(), {"temperature": 0.7}))

    def merge(self, provider: str, *overrides: Mapping[str, Any] | None) -> dict[str, Any]:
        """Merge overrides on top of provider defaults, skipping ``None`` values."""

        params = self.defaults_for_provider(provider)
        for override in overrides:
            if override:
                params.update({k: v for k, v in override.items() if v is not None})
        return params
