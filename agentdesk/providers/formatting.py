"""Vendor specific message shaping.

Every adapter receives the same ``[{"role": ..., "content": ...}]`` list and
turns it into the structure its API expects. The helpers are pure so the
rules can be tested without any HTTP plumbing.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

SYNTHETIC_GREETING = "Hello"

Message = Mapping[str, Any]


def _text(message: Message) -> str:
    content = message.get("content")
    return "" if content is None else str(content)


def format_openai_messages(messages: Iterable[Message]) -> list[dict[str, Any]]:
    """OpenAI accepts the generic shape as-is; copy it so callers keep theirs."""

    return [{"role": m["role"], "content": _text(m)} for m in messages]


def format_claude_messages(
    messages: Iterable[Message],
) -> tuple[str | None, list[dict[str, str]]]:
    """Return ``(system, messages)`` for the Anthropic messages API.

    System prompts are lifted into the top-level ``system`` field, consecutive
    turns from the same role are merged and the conversation always opens with
    a user turn.
    """

    system_parts: list[str] = []
    turns: list[dict[str, str]] = []
    for message in messages:
        role = message.get("role", "user")
        content = _text(message)
        if role == "system":
            if content:
                system_parts.append(content)
            continue
        role = "assistant" if role == "assistant" else "user"
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"] = f"{turns[-1]['content']}\n\n{content}"
        else:
            turns.append({"role": role, "content": content})
    if turns and turns[0]["role"] != "user":
        turns.insert(0, {"role": "user", "content": SYNTHETIC_GREETING})
    system = "\n\n".join(system_parts) if system_parts else None
    return system, turns


def format_gemini_contents(messages: Iterable[Message]) -> list[dict[str, Any]]:
    """Return Gemini ``contents``: roles are ``user`` or ``model``, user first."""

    contents: list[dict[str, Any]] = []
    for message in messages:
        role = "user" if message.get("role", "user") == "user" else "model"
        contents.append({"role": role, "parts": [{"text": _text(message)}]})
    if contents and contents[0]["role"] != "user":
        contents.insert(0, {"role": "user", "parts": [{"text": SYNTHETIC_GREETING}]})
    return contents


def format_gemini_tools(tools: Iterable[Mapping[str, Any]] | None) -> list[dict[str, Any]] | None:
    """Convert OpenAI style ``{"type": "function", "function": {...}}`` tools."""

    declarations = []
    for tool in tools or ():
        function = tool.get("function") or tool
        declaration = {"name": function["name"]}
        for key in ("description", "parameters"):
            if function.get(key) is not None:
                declaration[key] = function[key]
        declarations.append({"functionDeclarations": [declaration]})
    return declarations or None
