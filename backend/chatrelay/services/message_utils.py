"""Helpers for the ``[Model: x]`` / ``[Provider: y]`` message prefix."""

from __future__ import annotations

import re
from dataclasses import dataclass

from chatrelay.providers.base import ChatMessage

MODEL_REGEX = re.compile(r"^\[Model: (.*?)\]\n\n")
PROVIDER_REGEX = re.compile(r"\[Provider: (.*?)\]\n\n")


@dataclass(frozen=True)
class MessageProperties:
    model: str
    provider: str
    content: str


def extract_properties_from_message(
    message: ChatMessage | None, default_model: str, default_provider: str
) -> MessageProperties:
    """Pull the model/provider prefix off a user message, falling back to defaults."""
    if message is None:
        return MessageProperties(default_model, default_provider, "")

    text = message.content
    model_match = MODEL_REGEX.search(text)
    provider_match = PROVIDER_REGEX.search(text)
    cleaned = PROVIDER_REGEX.sub("", MODEL_REGEX.sub("", text))
    return MessageProperties(
        model=model_match.group(1) if model_match else default_model,
        provider=provider_match.group(1) if provider_match else default_provider,
        content=cleaned,
    )


def with_model_prefix(model: str, provider: str, text: str) -> str:
    return f"[Model: {model}]\n\n[Provider: {provider}]\n\n{text}"


def last_user_message(messages: list[ChatMessage]) -> ChatMessage | None:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None
