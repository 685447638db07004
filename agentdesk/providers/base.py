"""Common plumbing shared by the vendor adapters."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

import requests

from .errors import ProviderConfigurationError, ProviderError, error_for_status
from .formatting import Message

logger = logging.getLogger(__name__)

PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30"))
DEFAULT_TEMPERATURE = 0.7


@dataclass(frozen=True)
class ModelInfo:
    """Capabilities advertised for a vendor model."""

    name: str
    context_length: int
    supports_vision: bool = False
    supports_tools: bool = False


@dataclass
class CompletionResult:
    """Normalised answer returned by every adapter."""

    content: str
    model: str
    provider: str
    usage: dict[str, int] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return int(self.usage.get("total_tokens", 0))


def normalise_usage(prompt_tokens: Any, completion_tokens: Any, total: Any = None) -> dict[str, int]:
    prompt = int(prompt_tokens or 0)
    completion = int(completion_tokens or 0)
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": int(total) if total is not None else prompt + completion,
    }


class BaseProvider(ABC):
    """Base class for HTTP adapters talking to a model vendor."""

    name: ClassVar[str]
    models: ClassVar[Mapping[str, ModelInfo]]
    default_model: ClassVar[str]

    def __init__(
        self,
        api_key: str | None,
        model: str | None = None,
        *,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        if not api_key:
            raise ProviderConfigurationError(f"{self.name} API key is not configured")
        model = model or self.default_model
        if model not in self.models:
            raise ProviderConfigurationError(
                f"Model '{model}' is not supported by {self.name}"
            )
        self.api_key = api_key
        self.model = model
        self._session = session or requests.Session()
        self._timeout = timeout if timeout is not None else PROVIDER_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # Catalog

    @classmethod
    def available_models(cls) -> list[str]:
        return list(cls.models)

    @property
    def model_info(self) -> ModelInfo:
        return self.models[self.model]

    @property
    def supports_tools(self) -> bool:
        return self.model_info.supports_tools

    @property
    def supports_vision(self) -> bool:
        return self.model_info.supports_vision

    @property
    def context_length(self) -> int:
        return self.model_info.context_length

    # ------------------------------------------------------------------
    # Vendor hooks

    @abstractmethod
    def endpoint(self) -> str: ...

    @abstractmethod
    def headers(self) -> dict[str, str]: ...

    @abstractmethod
    def format_messages(self, messages: Sequence[Message]) -> Any: ...

    @abstractmethod
    def build_payload(
        self, messages: Sequence[Message], *, temperature: float, max_tokens: int | None, **options: Any
    ) -> dict[str, Any]: ...

    @abstractmethod
    def extract_content(self, data: Mapping[str, Any]) -> str: ...

    @abstractmethod
    def extract_usage(self, data: Mapping[str, Any]) -> dict[str, int]: ...

    # ------------------------------------------------------------------
    # Public API

    def chat_completion(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int | None = None,
        **options: Any,
    ) -> CompletionResult:
        payload = self.build_payload(
            messages, temperature=temperature, max_tokens=max_tokens, **options
        )
        response = self._post(payload)
        data = response.json()
        return CompletionResult(
            content=self.extract_content(data),
            model=self.model,
            provider=self.name,
            usage=self.extract_usage(data),
            raw=data,
        )

    def text_completion(self, prompt: str, **options: Any) -> CompletionResult:
        return self.chat_completion([{"role": "user", "content": prompt}], **options)

    def stream_chat_completion(
        self,
        messages: Sequence[Message],
        on_chunk: Callable[[str], None],
        **options: Any,
    ) -> CompletionResult:
        """Stream a completion; adapters without streaming emit one chunk."""

        result = self.chat_completion(messages, **options)
        if result.content:
            on_chunk(result.content)
        return result

    # ------------------------------------------------------------------
    # HTTP helpers

    def _post(self, payload: dict[str, Any], *, stream: bool = False) -> requests.Response:
        try:
            response = self._session.post(
                self.endpoint(),
                json=payload,
                headers=self.headers(),
                timeout=self._timeout,
                stream=stream,
            )
        except requests.Timeout as exc:
            raise ProviderError(
                f"{self.name} request timed out", provider=self.name, retryable=True
            ) from exc
        except requests.ConnectionError as exc:
            raise ProviderError(
                f"Could not reach {self.name}", provider=self.name, retryable=True
            ) from exc
        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.error(
                "%s request failed with status %s: %s", self.name, response.status_code, detail
            )
            raise error_for_status(self.name, response.status_code, detail)
        return response


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or "").strip()[:500]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    return str(body)[:500]
