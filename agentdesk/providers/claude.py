"""Anthropic Claude messages API adapter."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .base import BaseProvider, ModelInfo, normalise_usage
from .formatting import Message, format_claude_messages

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


class ClaudeProvider(BaseProvider):
    name = "claude"
    base_url = "https://api.anthropic.com/v1"
    default_model = "claude-3-5-sonnet-20241022"
    models: Mapping[str, ModelInfo] = {
        name: ModelInfo(name, 200_000, supports_vision=True, supports_tools=True)
        for name in (
            "claude-3-5-sonnet-20241022",
            "claude-3-5-haiku-20241022",
            "claude-3-opus-20240229",
            "claude-3-sonnet-20240229",
            "claude-3-haiku-20240307",
        )
    }

    def endpoint(self) -> str:
        return f"{self.base_url}/messages"

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def format_messages(self, messages: Sequence[Message]) -> tuple[str | None, list[dict[str, str]]]:
        return format_claude_messages(messages)

    def build_payload(
        self, messages: Sequence[Message], *, temperature: float, max_tokens: int | None, **options: Any
    ) -> dict[str, Any]:
        system, turns = self.format_messages(messages)
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": turns,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": temperature,
        }
        if system:
            payload["system"] = system
        for key in ("top_p", "top_k", "stop_sequences", "tools"):
            if options.get(key) is not None:
                payload[key] = options[key]
        return payload

    def extract_content(self, data: Mapping[str, Any]) -> str:
        blocks = data.get("content") or []
        return "".join(
            block.get("text", "") for block in blocks if block.get("type", "text") == "text"
        )

    def extract_usage(self, data: Mapping[str, Any]) -> dict[str, int]:
        usage = data.get("usage") or {}
        return normalise_usage(usage.get("input_tokens"), usage.get("output_tokens"))
