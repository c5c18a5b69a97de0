"""Tests for message prefix helpers and token estimates."""

from __future__ import annotations

from chatrelay.providers import ChatMessage
from chatrelay.services.message_utils import (
    extract_properties_from_message,
    last_user_message,
    with_model_prefix,
)
from chatrelay.services.prompts import build_context_prompt, strip_work_dir
from chatrelay.services.tokens import count_messages_tokens, estimate_tokens


def test_extracts_model_and_provider_prefix() -> None:
    message = ChatMessage(role="user", content="[Model: grok-beta]\n\n[Provider: xAI]\n\nHello")

    props = extract_properties_from_message(message, "gpt-4o", "OpenAI")

    assert props.model == "grok-beta"
    assert props.provider == "xAI"
    assert props.content == "Hello"


def test_missing_prefix_uses_defaults() -> None:
    props = extract_properties_from_message(
        ChatMessage(role="user", content="Hello"), "gpt-4o", "OpenAI"
    )

    assert (props.model, props.provider, props.content) == ("gpt-4o", "OpenAI", "Hello")
    assert extract_properties_from_message(None, "m", "p").model == "m"


def test_prefix_round_trips_through_extraction() -> None:
    text = with_model_prefix("llama3", "Ollama", "continue")

    props = extract_properties_from_message(ChatMessage(role="user", content=text), "x", "y")

    assert (props.model, props.provider, props.content) == ("llama3", "Ollama", "continue")


def test_last_user_message_skips_assistant_turns() -> None:
    messages = [
        ChatMessage(role="user", content="first"),
        ChatMessage(role="assistant", content="reply"),
        ChatMessage(role="user", content="second"),
        ChatMessage(role="assistant", content="reply"),
    ]

    assert last_user_message(messages).content == "second"
    assert last_user_message([ChatMessage(role="system", content="s")]) is None


def test_token_estimates() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abc") == 1
    assert estimate_tokens("a" * 40) == 10
    assert count_messages_tokens([ChatMessage(role="user", content="a" * 40)]) == 14


def test_context_prompt_strips_work_dir() -> None:
    prompt = build_context_prompt({"/home/project/src/main.py": "print(1)"})

    assert strip_work_dir("/home/project/src/main.py") == "/src/main.py"
    assert 'filePath="/src/main.py"' in prompt
    assert "print(1)" in prompt
