"""Credential resolution for the supported model vendors."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from ..config_store import ConfigStore, provider_key


@dataclass(frozen=True)
class ProviderCredentials:
    """Container for the key and preferred model resolved for a provider."""

    provider: str
    api_key: str | None
    model: str | None = None
    source: str | None = None
    extras: dict[str, str] = field(default_factory=dict)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


class CredentialResolver:
    """Resolve provider credentials from overrides, the config store or env.

    Lookup order prefers explicit overrides (handy in tests), then values an
    operator saved in the config store, then environment variables listed in
    ``_DEFAULT_ENV_MAP``.
    """

    _DEFAULT_ENV_MAP: Mapping[str, tuple[str, ...]] = {
        "openai": ("OPENAI_API_KEY",),
        "claude": ("ANTHROPIC_API_KEY",),
        "gemini": ("GOOGLE_AI_API_KEY", "GOOGLE_API_KEY"),
    }

    def __init__(
        self,
        config_store: ConfigStore | None = None,
        overrides: Mapping[str, Mapping[str, str]] | None = None,
    ) -> None:
        self._config = config_store
        self._overrides = {k.lower(): dict(v) for k, v in (overrides or {}).items()}

    def get_credentials(self, provider: str) -> ProviderCredentials:
        key = provider.lower()
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=key,
                api_key=override.get("api_key"),
                model=override.get("model"),
                source="override",
                extras={k: v for k, v in override.items() if k not in {"api_key", "model"}},
            )
        model = None
        if self._config is not None:
            model = self._config.get(provider_key(key, "model")) or None
            api_key = self._config.get(provider_key(key, "api_key"))
            if api_key:
                return ProviderCredentials(key, api_key, model=model, source="config")
        for env_var in self._DEFAULT_ENV_MAP.get(key, ()):
            api_key = os.getenv(env_var)
            if api_key:
                return ProviderCredentials(key, api_key, model=model, source="env")
        return ProviderCredentials(key, None, model=model)
