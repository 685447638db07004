"""OpenAI chat completions adapter."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import requests

from .base import BaseProvider, CompletionResult, ModelInfo, normalise_usage
from .errors import ProviderError
from .formatting import Message, format_openai_messages

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseProvider):
    name = "openai"
    base_url = "https://api.openai.com/v1"
    default_model = "gpt-4o-mini"
    models: Mapping[str, ModelInfo] = {
        "gpt-4o": ModelInfo("gpt-4o", 128_000, supports_vision=True, supports_tools=True),
        "gpt-4o-mini": ModelInfo("gpt-4o-mini", 128_000, supports_vision=True, supports_tools=True),
        "gpt-4-turbo": ModelInfo("gpt-4-turbo", 128_000, supports_vision=True, supports_tools=True),
        "gpt-4": ModelInfo("gpt-4", 8_192, supports_tools=True),
        "gpt-3.5-turbo": ModelInfo("gpt-3.5-turbo", 16_385, supports_tools=True),
    }

    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def format_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        return format_openai_messages(messages)

    def build_payload(
        self, messages: Sequence[Message], *, temperature: float, max_tokens: int | None, **options: Any
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self.format_messages(messages),
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        for key in ("top_p", "frequency_penalty", "presence_penalty", "stop", "tools", "tool_choice"):
            if options.get(key) is not None:
                payload[key] = options[key]
        return payload

    def extract_content(self, data: Mapping[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") or {}
        return message.get("content") or ""

    def extract_usage(self, data: Mapping[str, Any]) -> dict[str, int]:
        usage = data.get("usage") or {}
        return normalise_usage(
            usage.get("prompt_tokens"), usage.get("completion_tokens"), usage.get("total_tokens")
        )

    def stream_chat_completion(
        self,
        messages: Sequence[Message],
        on_chunk: Callable[[str], None],
        *,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **options: Any,
    ) -> CompletionResult:
        payload = self.build_payload(
            messages, temperature=temperature, max_tokens=max_tokens, **options
        )
        payload["stream"] = True
        response = self._post(payload, stream=True)
        parts: list[str] = []
        with response:
            try:
                for line in response.iter_lines(decode_unicode=True):
                    if not line or not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed stream event from openai")
                        continue
                    for choice in event.get("choices") or []:
                        delta = (choice.get("delta") or {}).get("content")
                        if delta:
                            parts.append(delta)
                            on_chunk(delta)
            except requests.RequestException as exc:
                logger.error("openai stream interrupted after %d chunk(s): %s", len(parts), exc)
                raise ProviderError(
                    "openai stream was interrupted", provider=self.name, retryable=True
                ) from exc
        return CompletionResult(
            content="".join(parts),
            model=self.model,
            provider=self.name,
            usage=normalise_usage(0, 0),
            raw={"stream": True},
        )
