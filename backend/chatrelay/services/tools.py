"""Narrow interfaces to the tool and context-selection collaborators."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from chatrelay.providers.base import ChatMessage, ResolvedCredentials, TokenUsage, ToolCall


@dataclass(frozen=True)
class ContextSelection:
    """Files chosen for the prompt and the tokens spent choosing them."""

    files: Mapping[str, str]
    usage: TokenUsage | None = None


class ToolService(Protocol):
    """Preprocesses tool invocations and reacts to tool calls."""

    @property
    def tools_catalog(self) -> list[dict[str, Any]]: ...

    async def preprocess(self, messages: list[ChatMessage]) -> list[ChatMessage]: ...

    async def on_tool_call(self, call: ToolCall) -> list[dict[str, Any]]: ...


class ContextReducer(Protocol):
    """Selects the subset of project files worth sending to the model."""

    async def reduce(
        self,
        messages: list[ChatMessage],
        files: Mapping[str, str],
        credentials: ResolvedCredentials,
    ) -> ContextSelection: ...


class PassthroughToolService:
    """No tools; messages pass through unchanged."""

    @property
    def tools_catalog(self) -> list[dict[str, Any]]:
        return []

    async def preprocess(self, messages: list[ChatMessage]) -> list[ChatMessage]:
        return list(messages)

    async def on_tool_call(self, call: ToolCall) -> list[dict[str, Any]]:
        return [
            {
                "type": "toolCall",
                "toolCallId": call.id,
                "toolName": call.name,
                "args": call.arguments,
            }
        ]


class PassthroughContextReducer:
    """Keeps every file."""

    async def reduce(
        self,
        messages: list[ChatMessage],
        files: Mapping[str, str],
        credentials: ResolvedCredentials,
    ) -> ContextSelection:
        return ContextSelection(files=dict(files))
