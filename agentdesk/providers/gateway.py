"""Uniform entry point for every AI generation call."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

import requests

from ..config_store import DEFAULT_PROVIDER_KEY, ConfigStore, provider_key
from . import schemas
from .base import BaseProvider, CompletionResult
from .credentials import CredentialResolver
from .errors import ProviderConfigurationError, ProviderError
from .factory import ProviderFactory
from .formatting import Message

logger = logging.getLogger(__name__)

PREFERENCE_ORDER = ("openai", "claude", "gemini")


class ProviderGateway:
    """Pick a vendor, build its adapter and run the call.

    Provider selection precedence: an explicit provider, then the configured
    ``AI_DEFAULT_PROVIDER``, then the first configured provider in
    :data:`PREFERENCE_ORDER`, then the first provider the factory knows.
    """

    def __init__(
        self,
        config_store: ConfigStore | None = None,
        *,
        credentials: CredentialResolver | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        self._config = config_store
        self._credentials = credentials or CredentialResolver(config_store)
        self._session = session
        self._timeout = timeout

    # ------------------------------------------------------------------
    # Selection

    def available_providers(self) -> list[str]:
        return ProviderFactory.provider_names()

    def is_configured(self, provider: str) -> bool:
        return self._credentials.get_credentials(ProviderFactory.normalise(provider)).configured

    def configured_providers(self) -> list[str]:
        return [name for name in self.available_providers() if self.is_configured(name)]

    def default_provider(self) -> str:
        if self._config is not None:
            configured_default = self._config.get(DEFAULT_PROVIDER_KEY)
            if configured_default:
                try:
                    return ProviderFactory.normalise(configured_default)
                except ProviderConfigurationError:
                    logger.warning("Ignoring unknown default provider %r", configured_default)
        for name in PREFERENCE_ORDER:
            if self.is_configured(name):
                return name
        return self.available_providers()[0]

    def default_model(self, provider: str) -> str:
        name = ProviderFactory.normalise(provider)
        credentials = self._credentials.get_credentials(name)
        cls = ProviderFactory.provider_class(name)
        if credentials.model and credentials.model in cls.models:
            return credentials.model
        return cls.default_model

    def validate(self, provider: str | None, model: str | None = None) -> tuple[str, str]:
        """Return a normalised ``(provider, model)`` pair or raise."""

        name = ProviderFactory.normalise(provider) if provider else self.default_provider()
        cls = ProviderFactory.provider_class(name)
        model = model or self.default_model(name)
        if model not in cls.models:
            raise ProviderConfigurationError(f"Model '{model}' is not supported by {name}")
        return name, model

    def provider_for(self, provider: str | None = None, model: str | None = None) -> BaseProvider:
        name, model = self.validate(provider, model)
        credentials = self._credentials.get_credentials(name)
        if not credentials.configured:
            raise ProviderConfigurationError(f"{name} API key is not configured")
        kwargs: dict[str, Any] = {"timeout": self._timeout}
        if self._session is not None:
            kwargs["session"] = self._session
        return ProviderFactory.create(name, credentials.api_key, model, **kwargs)

    # ------------------------------------------------------------------
    # Completions

    def chat_completion(
        self,
        messages: Sequence[Message],
        *,
        provider: str | None = None,
        model: str | None = None,
        **options: Any,
    ) -> CompletionResult:
        adapter = self.provider_for(provider, model)
        try:
            return adapter.chat_completion(messages, **options)
        except ProviderError as exc:
            logger.error(
                "Chat completion failed provider=%s model=%s status=%s retryable=%s",
                adapter.name,
                adapter.model,
                exc.status_code,
                exc.retryable,
            )
            raise

    def text_completion(
        self, prompt: str, *, provider: str | None = None, model: str | None = None, **options: Any
    ) -> CompletionResult:
        return self.chat_completion(
            [{"role": "user", "content": prompt}], provider=provider, model=model, **options
        )

    def stream_chat_completion(
        self,
        messages: Sequence[Message],
        on_chunk: Callable[[str], None],
        *,
        provider: str | None = None,
        model: str | None = None,
        **options: Any,
    ) -> CompletionResult:
        adapter = self.provider_for(provider, model)
        return adapter.stream_chat_completion(messages, on_chunk, **options)

    # ------------------------------------------------------------------
    # Administration

    def provider_status(self) -> schemas.ProviderStatusList:
        default = self.default_provider()
        statuses = []
        for name in self.available_providers():
            credentials = self._credentials.get_credentials(name)
            cls = ProviderFactory.provider_class(name)
            statuses.append(
                schemas.ProviderStatus(
                    provider=name,
                    configured=credentials.configured,
                    api_key_present=bool(credentials.api_key),
                    model=self.default_model(name),
                    default=name == default,
                    available_models=[
                        schemas.ModelCapabilities(
                            name=info.name,
                            context_length=info.context_length,
                            supports_vision=info.supports_vision,
                            supports_tools=info.supports_tools,
                        )
                        for info in cls.models.values()
                    ],
                )
            )
        return schemas.ProviderStatusList(default_provider=default, providers=statuses)

    def configure_provider(
        self,
        provider: str,
        *,
        api_key: str | None = None,
        model: str | None = None,
        make_default: bool = False,
    ) -> schemas.ProviderStatus:
        if self._config is None:
            raise ProviderConfigurationError("No config store available to save provider settings")
        name = ProviderFactory.normalise(provider)
        if model is not None:
            self.validate(name, model)
            self._config.set(provider_key(name, "model"), model)
        if api_key is not None:
            self._config.set(provider_key(name, "api_key"), api_key)
        if make_default:
            self._config.set(DEFAULT_PROVIDER_KEY, name)
        logger.info("Provider %s configured (model=%s, default=%s)", name, model, make_default)
        status = self.provider_status()
        return next(item for item in status.providers if item.provider == name)

    def test_connection(self, provider: str, model: str | None = None) -> schemas.ConnectionTestResult:
        name = ProviderFactory.normalise(provider)
        try:
            result = self.chat_completion(
                [{"role": "user", "content": "Hello"}],
                provider=name,
                model=model,
                max_tokens=5,
            )
        except (ProviderConfigurationError, ProviderError) as exc:
            return schemas.ConnectionTestResult(provider=name, model=model, success=False, error=str(exc))
        return schemas.ConnectionTestResult(
            provider=name, model=result.model, success=True, response=result.content
        )
