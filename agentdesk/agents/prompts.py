"""Prompt construction for installed agents."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from ..conversations.schemas import ConversationMessage

HISTORY_LIMIT = 10


class PromptTemplateStore:
    """Resolve the system prompt for an agent category and provider."""

    _DEFAULT_GUIDANCE: Mapping[str, Mapping[str, str]] = {
        "general": {
            "default": "Keep answers short and friendly. Offer a human agent when you are unsure.",
        },
        "technical": {
            "default": "Prefer numbered steps. Ask for logs or screenshots before guessing.",
        },
        "billing": {
            "default": "Never request full card numbers or passwords.",
        },
        "multilingual": {
            "default": "Reply in the customer's language.",
            "gemini": "Reply in the customer's language and keep regional formats (dates, currency).",
        },
        "management": {
            "default": "Summarise the case in three bullet points for the human team before handing off.",
        },
    }

    def __init__(self, extra_guidance: Mapping[str, Mapping[str, str]] | None = None):
        self._guidance: dict[str, dict[str, str]] = {
            key: dict(value) for key, value in self._DEFAULT_GUIDANCE.items()
        }
        if extra_guidance:
            for category, mapping in extra_guidance.items():
                self._guidance.setdefault(category, {}).update(mapping)

    def resolve(self, base_prompt: str, category: str, provider: str, custom_prompt: str | None = None) -> str:
        """Return the system prompt for the category/provider combination.

        A custom prompt replaces the template prompt entirely; otherwise the
        category guidance (provider specific when available) is appended.
        """

        if custom_prompt:
            return custom_prompt
        category_guidance = self._guidance.get(category.lower()) or self._guidance["general"]
        guidance = category_guidance.get(provider.lower()) or category_guidance.get("default")
        return f"{base_prompt}\n\n{guidance}".strip() if guidance else base_prompt

    def build_messages(
        self,
        system_prompt: str,
        history: Iterable[ConversationMessage],
        message: str,
        limit: int = HISTORY_LIMIT,
    ) -> list[dict[str, str]]:
        """System prompt, the last ``limit`` messages, then the new message."""

        recent = list(history)[-limit:] if limit > 0 else []
        messages = [{"role": "system", "content": system_prompt}]
        for item in recent:
            role = "assistant" if item.direction == "outgoing" else "user"
            messages.append({"role": role, "content": item.content})
        messages.append({"role": "user", "content": message})
        return messages
