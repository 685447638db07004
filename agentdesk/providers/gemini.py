"""Google Gemini generateContent adapter."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .base import BaseProvider, ModelInfo, normalise_usage
from .formatting import Message, format_gemini_contents, format_gemini_tools


class GeminiProvider(BaseProvider):
    name = "gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta"
    default_model = "gemini-1.5-flash"
    models: Mapping[str, ModelInfo] = {
        "gemini-1.5-pro": ModelInfo("gemini-1.5-pro", 2_000_000, supports_vision=True, supports_tools=True),
        "gemini-1.5-flash": ModelInfo("gemini-1.5-flash", 1_000_000, supports_vision=True, supports_tools=True),
        "gemini-1.0-pro": ModelInfo("gemini-1.0-pro", 32_000, supports_tools=True),
    }

    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    def format_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        return format_gemini_contents(messages)

    def build_payload(
        self, messages: Sequence[Message], *, temperature: float, max_tokens: int | None, **options: Any
    ) -> dict[str, Any]:
        generation_config: dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            generation_config["maxOutputTokens"] = max_tokens
        if options.get("top_k") is not None:
            generation_config["topK"] = options["top_k"]
        if options.get("top_p") is not None:
            generation_config["topP"] = options["top_p"]
        payload: dict[str, Any] = {
            "contents": self.format_messages(messages),
            "generationConfig": generation_config,
        }
        tools = format_gemini_tools(options.get("tools"))
        if tools:
            payload["tools"] = tools
        return payload

    def extract_content(self, data: Mapping[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def extract_usage(self, data: Mapping[str, Any]) -> dict[str, int]:
        usage = data.get("usageMetadata") or {}
        return normalise_usage(
            usage.get("promptTokenCount"),
            usage.get("candidatesTokenCount"),
            usage.get("totalTokenCount"),
        )
