"""Chat orchestration: one logical turn across one or more generation segments."""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chatrelay.config import Settings, get_settings
from chatrelay.core import (
    CredentialError,
    ReductionError,
    SegmentLimitExceededError,
    ToolCallError,
    classify_error,
    get_logger,
    stream_id_ctx,
)
from chatrelay.core.metrics import metrics
from chatrelay.providers.base import (
    BaseProvider,
    ChatMessage,
    CredentialContext,
    GenerationFinish,
    GenerationRequest,
    ModelInfo,
    ReasoningDelta,
    ResolvedCredentials,
    TextDelta,
    TokenUsage,
    ToolCall,
)
from chatrelay.providers.registry import ProviderRegistry
from chatrelay.services.data_stream import (
    FINISH_MESSAGE,
    FINISH_STEP,
    START_STEP,
    TOOL_CALL,
    StreamPart,
    annotation_part,
    data_part,
    error_part,
    progress_record,
    reasoning_part,
    text_part,
)
from chatrelay.services.message_utils import (
    extract_properties_from_message,
    last_user_message,
    with_model_prefix,
)
from chatrelay.services.prompts import CONTINUE_PROMPT, build_context_prompt, strip_work_dir
from chatrelay.services.tokens import count_messages_tokens
from chatrelay.services.tools import (
    ContextReducer,
    PassthroughContextReducer,
    PassthroughToolService,
    ToolService,
)

logger = get_logger(__name__)


class TurnState(str, Enum):
    PREPARING = "preparing"
    GENERATING = "generating"
    FINISHED = "finished"
    LENGTH_REACHED = "length_reached"
    CONTINUING = "continuing"
    FATAL = "fatal"


@dataclass
class ContinuationState:
    """Counts continuation switches within one turn."""

    max_switches: int
    switches_used: int = 0

    @property
    def switches_left(self) -> int:
        return self.max_switches - self.switches_used

    def advance(self) -> None:
        if self.switches_used >= self.max_switches:
            raise SegmentLimitExceededError()
        self.switches_used += 1


@dataclass
class CumulativeUsage:
    """Token usage summed over every segment of a turn."""

    completion_tokens: int = 0
    prompt_tokens: int = 0
    total_tokens: int = 0

    def add(self, usage: TokenUsage | None) -> None:
        if usage is None:
            return
        self.completion_tokens += usage.completion_tokens
        self.prompt_tokens += usage.prompt_tokens
        self.total_tokens += usage.total

    def to_dict(self) -> dict[str, int]:
        return {
            "completionTokens": self.completion_tokens,
            "promptTokens": self.prompt_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class PreparedTurn:
    """Everything resolved before the first byte is streamed."""

    messages: list[ChatMessage]
    provider: BaseProvider
    model_name: str
    model: ModelInfo | None
    credentials: ResolvedCredentials
    context: CredentialContext
    context_window: int
    max_tokens: int | None
    files: dict[str, str] = field(default_factory=dict)
    context_optimization: bool = False
    chat_mode: str = "build"


@dataclass
class _Segment:
    text: str = ""
    finish_reason: str = "stop"
    usage: TokenUsage | None = None


def _file_contents(files: Mapping[str, Any] | None) -> dict[str, str]:
    """Flatten a client file map to ``path -> content`` for regular files."""
    contents: dict[str, str] = {}
    for path, entry in (files or {}).items():
        if isinstance(entry, str):
            contents[path] = entry
        elif isinstance(entry, Mapping) and entry.get("type", "file") == "file":
            if entry.get("isBinary"):
                continue
            contents[path] = str(entry.get("content") or "")
    return contents


class ChatTurn:
    """
    Drives one prepared turn and yields its stream parts.

    PREPARING -> GENERATING -> FINISHED, or on a length cutoff
    LENGTH_REACHED -> CONTINUING -> GENERATING again until the switch ceiling,
    after which the turn ends FATAL.
    """

    def __init__(
        self,
        prepared: PreparedTurn,
        *,
        settings: Settings,
        tool_service: ToolService,
        context_reducer: ContextReducer,
    ):
        self.prepared = prepared
        self.settings = settings
        self.tool_service = tool_service
        self.context_reducer = context_reducer
        self.state = TurnState.PREPARING
        self.continuation = ContinuationState(max_switches=settings.max_response_segments)
        self.usage = CumulativeUsage()
        self.context_files: dict[str, str] = {}
        self.stream_id = str(uuid.uuid4())
        self._progress_order = 0

    def _progress(self, label: str, status: str, message: str) -> StreamPart:
        self._progress_order += 1
        return data_part(progress_record(label, status, self._progress_order, message))

    async def stream(self) -> AsyncIterator[StreamPart]:
        """Yield stream parts for the whole turn; errors are reported in-band."""
        prepared = self.prepared
        token = stream_id_ctx.set(self.stream_id)
        started = time.monotonic()
        metrics.increment("chat_turns_total")
        metrics.adjust_gauge("active_streams", 1)
        try:
            async for part in self._select_context():
                yield part

            yield self._progress("response", "in-progress", "Generating Response")

            messages = list(prepared.messages)
            while True:
                self.state = TurnState.GENERATING
                segment = _Segment()
                async for part in self._generate(messages, segment):
                    yield part
                self.usage.add(segment.usage)

                if segment.finish_reason != "length":
                    self.state = TurnState.FINISHED
                    for part in self._finish(segment):
                        yield part
                    return

                self.state = TurnState.LENGTH_REACHED
                self.continuation.advance()
                self.state = TurnState.CONTINUING
                metrics.increment("chat_continuations_total")
                logger.info(
                    "Reached max token limit, continuing message",
                    data={
                        "max_tokens": prepared.max_tokens,
                        "switches_left": self.continuation.switches_left,
                    },
                )
                messages.append(
                    ChatMessage(role="assistant", content=segment.text, id=str(uuid.uuid4()))
                )
                messages.append(
                    ChatMessage(
                        role="user",
                        content=with_model_prefix(
                            prepared.model_name, prepared.provider.name, CONTINUE_PROMPT
                        ),
                        id=str(uuid.uuid4()),
                    )
                )
        except Exception as exc:
            self.state = TurnState.FATAL
            error = classify_error(exc, provider=prepared.provider.name)
            metrics.increment("chat_turn_failures_total")
            logger.warning(
                "Chat turn failed",
                data={
                    "stream_id": self.stream_id,
                    "code": error.code.value,
                    "error": error.message,
                    "switches_used": self.continuation.switches_used,
                },
            )
            yield data_part({"type": "error", **error.to_chat_payload()})
            yield error_part(error.message)
        finally:
            metrics.adjust_gauge("active_streams", -1)
            metrics.observe("stream_duration_seconds", time.monotonic() - started)
            logger.debug(
                "Chat turn closed",
                data={"stream_id": self.stream_id, "state": self.state.value},
            )
            stream_id_ctx.reset(token)

    async def _select_context(self) -> AsyncIterator[StreamPart]:
        prepared = self.prepared
        if not (prepared.files and prepared.context_optimization):
            yield self._progress("context", "complete", "Context ready")
            return

        yield self._progress("context", "in-progress", "Analyzing codebase")
        try:
            selection = await self.context_reducer.reduce(
                prepared.messages, prepared.files, prepared.credentials
            )
            selected = dict(selection.files)
            self.usage.add(selection.usage)
        except Exception as exc:
            error = ReductionError(details={"reason": str(exc)})
            metrics.increment("context_reduction_failures_total")
            logger.error(
                "Context optimization failed, using full file set",
                data={"code": error.code.value, "error": str(exc)},
            )
            yield self._progress("fallback", "in-progress", "Using full project context")
            selected = dict(prepared.files)

        self.context_files = selected
        logger.debug("Files in context", data={"files": list(selected)})
        yield annotation_part(
            {"type": "codeContext", "files": [strip_work_dir(path) for path in selected]}
        )
        yield self._progress("context", "complete", "Context optimization complete")

    def _request(self, messages: list[ChatMessage]) -> GenerationRequest:
        prepared = self.prepared
        request_messages = list(messages)
        if self.context_files:
            request_messages.insert(
                0, ChatMessage(role="system", content=build_context_prompt(self.context_files))
            )
        tools = self.tool_service.tools_catalog if prepared.chat_mode != "discuss" else []
        return GenerationRequest(
            model=prepared.model_name,
            messages=request_messages,
            credentials=prepared.credentials,
            max_tokens=prepared.max_tokens,
            tool_choice="auto",
            tools=list(tools),
        )

    async def _generate(
        self, messages: list[ChatMessage], segment: _Segment
    ) -> AsyncIterator[StreamPart]:
        """One generation call; fills ``segment`` with its text, finish and usage."""
        metrics.increment("chat_segments_total")
        message_id = f"msg-{uuid.uuid4().hex[:24]}"
        yield StreamPart(START_STEP, {"messageId": message_id})

        chunks: list[str] = []
        events = self.prepared.provider.stream_generation(self._request(messages))
        async with aclosing(events):
            async for event in events:
                if isinstance(event, TextDelta):
                    chunks.append(event.text)
                    yield text_part(event.text)
                elif isinstance(event, ReasoningDelta):
                    yield reasoning_part(event.text)
                elif isinstance(event, ToolCall):
                    yield StreamPart(
                        TOOL_CALL,
                        {"toolCallId": event.id, "toolName": event.name, "args": event.arguments},
                    )
                    for annotation in await self._handle_tool_call(event):
                        yield annotation_part(annotation)
                elif isinstance(event, GenerationFinish):
                    segment.finish_reason = event.finish_reason or "stop"
                    segment.usage = event.usage
                    break

        segment.text = "".join(chunks)
        usage = segment.usage or TokenUsage()
        yield StreamPart(
            FINISH_STEP,
            {
                "finishReason": segment.finish_reason,
                "usage": {
                    "promptTokens": usage.prompt_tokens,
                    "completionTokens": usage.completion_tokens,
                },
                "isContinued": segment.finish_reason == "length",
            },
        )

    async def _handle_tool_call(self, call: ToolCall) -> list[dict[str, Any]]:
        try:
            return list(await self.tool_service.on_tool_call(call))
        except Exception as exc:
            raise ToolCallError(
                f"Tool call '{call.name}' failed",
                details={"tool_call_id": call.id, "reason": str(exc)},
                provider=self.prepared.provider.name,
            ) from exc

    def _finish(self, segment: _Segment) -> list[StreamPart]:
        return [
            annotation_part({"type": "usage", "value": self.usage.to_dict()}),
            self._progress("response", "complete", "Response Generated"),
            StreamPart(
                FINISH_MESSAGE,
                {
                    "finishReason": segment.finish_reason,
                    "usage": {
                        "promptTokens": self.usage.prompt_tokens,
                        "completionTokens": self.usage.completion_tokens,
                    },
                },
            ),
        ]


class ChatService:
    """Resolves provider/model/credentials for a turn and runs it."""

    def __init__(
        self,
        registry: ProviderRegistry,
        settings: Settings | None = None,
        tool_service: ToolService | None = None,
        context_reducer: ContextReducer | None = None,
    ):
        self.registry = registry
        self.settings = settings or get_settings()
        self.tool_service = tool_service or PassthroughToolService()
        self.context_reducer = context_reducer or PassthroughContextReducer()

    async def stream_chat(
        self,
        messages: list[ChatMessage],
        *,
        context: CredentialContext,
        files: Mapping[str, Any] | None = None,
        context_optimization: bool = False,
        chat_mode: str = "build",
        prompt_id: str | None = None,
    ) -> AsyncGenerator[StreamPart, None]:
        """
        Prepare a turn and return its stream.

        Preparation runs before this returns, so credential and provider
        failures surface as exceptions instead of in-band errors.

        Raises:
            CredentialError: the selected provider needs a key and none resolves
            NoProvidersRegisteredError: the registry is empty
        """
        prepared = await self.prepare(
            messages,
            context=context,
            files=files,
            context_optimization=context_optimization,
            chat_mode=chat_mode,
            prompt_id=prompt_id,
        )
        turn = ChatTurn(
            prepared,
            settings=self.settings,
            tool_service=self.tool_service,
            context_reducer=self.context_reducer,
        )
        return turn.stream()

    async def prepare(
        self,
        messages: list[ChatMessage],
        *,
        context: CredentialContext,
        files: Mapping[str, Any] | None = None,
        context_optimization: bool = False,
        chat_mode: str = "build",
        prompt_id: str | None = None,
    ) -> PreparedTurn:
        processed = await self.tool_service.preprocess(messages)
        anchor = last_user_message(processed) or (processed[0] if processed else None)
        props = extract_properties_from_message(
            anchor, self.settings.default_model, self.settings.default_provider
        )

        provider = self.registry.get_provider(props.provider)
        if provider is None:
            provider = self.registry.get_default_provider(context)
            logger.warning(
                "Unknown provider requested, using default",
                data={"requested": props.provider, "provider": provider.name},
            )

        credentials = provider.resolve_credentials(context)
        if provider.requires_api_key and not credentials.api_key:
            raise CredentialError(
                details={"reason": f"Missing API key for {provider.name} provider"},
                provider=provider.name,
            )

        model = await self._find_model(props.model, provider, context)
        if model is None:
            logger.warning(
                "Model not in catalog, using default context window",
                data={"model": props.model, "provider": provider.name},
            )
        context_window = model.max_token_allowed if model else self.settings.default_context_window
        max_tokens = context_window
        if self.settings.max_tokens:
            max_tokens = min(context_window, self.settings.max_tokens)

        file_map = _file_contents(files)
        request_kb = len(
            json.dumps({"messages": [m.to_dict() for m in processed], "files": file_map})
        ) / 1024
        logger.info(
            "Chat turn prepared",
            data={
                "model": props.model,
                "provider": provider.name,
                "context_window": context_window,
                "message_tokens": count_messages_tokens(processed),
                "request_kb": round(request_kb, 1),
                "chat_mode": chat_mode,
                "prompt_id": prompt_id,
            },
        )
        if request_kb > self.settings.large_request_warn_kb:
            logger.warning(
                "Large request detected, consider context optimization",
                data={"request_kb": round(request_kb, 1)},
            )

        return PreparedTurn(
            messages=processed,
            provider=provider,
            model_name=props.model,
            model=model,
            credentials=credentials,
            context=context,
            context_window=context_window,
            max_tokens=max_tokens,
            files=file_map,
            context_optimization=context_optimization,
            chat_mode=chat_mode,
        )

    async def _find_model(
        self, name: str, provider: BaseProvider, context: CredentialContext
    ) -> ModelInfo | None:
        model = self.registry.find_model(name, provider.name, context)
        if model is None and provider.supports_dynamic_models:
            models = await self.registry.get_model_list_from_provider(provider, context)
            model = next((m for m in models if m.name == name), None)
        return model
