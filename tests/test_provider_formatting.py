from agentdesk.providers.formatting import (
    format_claude_messages,
    format_gemini_contents,
    format_openai_messages,
)


def test_openai_messages_are_copied():
    original = [{"role": "system", "content": "Be brief"}, {"role": "user", "content": "Hi"}]

    formatted = format_openai_messages(original)

    assert formatted == original
    assert formatted[0] is not original[0]


def test_claude_lifts_system_and_merges_turns():
    system, turns = format_claude_messages(
        [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Hi"},
            {"role": "user", "content": "Are you there?"},
            {"role": "assistant", "content": "Yes"},
        ]
    )

    assert system == "Be brief"
    assert turns == [
        {"role": "user", "content": "Hi\n\nAre you there?"},
        {"role": "assistant", "content": "Yes"},
    ]


def test_claude_conversation_starts_with_user():
    system, turns = format_claude_messages([{"role": "assistant", "content": "Welcome back"}])

    assert system is None
    assert turns[0] == {"role": "user", "content": "Hello"}
    assert turns[1]["role"] == "assistant"


def test_gemini_roles_and_parts():
    contents = format_gemini_contents(
        [
            {"role": "assistant", "content": "How can I help?"},
            {"role": "user", "content": "Reset my password"},
        ]
    )

    assert contents == [
        {"role": "user", "parts": [{"text": "Hello"}]},
        {"role": "model", "parts": [{"text": "How can I help?"}]},
        {"role": "user", "parts": [{"text": "Reset my password"}]},
    ]


def test_empty_inputs_stay_empty():
    assert format_openai_messages([]) == []
    assert format_claude_messages([]) == (None, [])
    assert format_gemini_contents([]) == []
