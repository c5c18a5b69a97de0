"""OpenAI-compatible provider adapter (chat completions over SSE)."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from chatrelay.core import (
    ContextLimitError,
    CredentialError,
    ProviderBadResponseError,
    ProviderError,
    get_logger,
)
from chatrelay.providers.base import (
    BaseProvider,
    CredentialContext,
    GenerationEvent,
    GenerationFinish,
    GenerationRequest,
    ModelInfo,
    ReasoningDelta,
    ResolvedCredentials,
    TextDelta,
    TokenUsage,
    ToolCall,
)
from chatrelay.providers.http_client import (
    mentions_context_limit,
    parse_json,
    raise_for_status,
    request_with_retries,
)

logger = get_logger(__name__)

DEFAULT_MAX_TOKEN_ALLOWED = 8000


class OpenAICompatProvider(BaseProvider):
    """Adapter for any backend exposing /models and /chat/completions."""

    def _api_root(self, base_url: str) -> str:
        return base_url

    def _headers(self, credentials: ResolvedCredentials) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if credentials.api_key:
            headers["Authorization"] = f"Bearer {credentials.api_key}"
        return headers

    def _root_or_raise(self, credentials: ResolvedCredentials) -> str:
        if not credentials.base_url:
            raise ProviderError(f"No base URL configured for {self.name}", provider=self.name)
        return self._api_root(credentials.base_url)

    def _include_model(self, model_id: str) -> bool:
        return True

    def _model_from_payload(self, item: dict[str, Any]) -> ModelInfo | None:
        model_id = item.get("id")
        if not model_id or not self._include_model(model_id):
            return None
        context_window = item.get("context_window") or item.get("context_length")
        return ModelInfo(
            name=model_id,
            label=model_id,
            provider=self.name,
            max_token_allowed=int(context_window or DEFAULT_MAX_TOKEN_ALLOWED),
        )

    async def fetch_dynamic_models(self, context: CredentialContext) -> list[ModelInfo]:
        """List models from {base}/models."""
        credentials = self.resolve_credentials(context)
        if self.requires_api_key and not credentials.api_key:
            raise CredentialError(f"Missing API key for {self.name} provider", provider=self.name)
        root = self._root_or_raise(credentials)

        response = await request_with_retries(
            self.client,
            "GET",
            f"{root}/models",
            headers=self._headers(credentials),
            max_retries=self.max_retries,
            provider=self.name,
        )
        raise_for_status(response, provider=self.name)
        payload = parse_json(response, provider=self.name)

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise ProviderBadResponseError(
                "Provider returned invalid response", details={"body": payload}, provider=self.name
            )

        models: list[ModelInfo] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            model = self._model_from_payload(item)
            if model is not None:
                models.append(model)
        logger.debug("Fetched dynamic models", data={"provider": self.name, "count": len(models)})
        return models

    def _build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [message.to_dict() for message in request.messages],
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.tools:
            payload["tools"] = [{"type": "function", "function": tool} for tool in request.tools]
            payload["tool_choice"] = request.tool_choice
        return payload

    async def stream_generation(self, request: GenerationRequest) -> AsyncIterator[GenerationEvent]:
        """Stream chat completion deltas parsed from SSE ``data:`` lines."""
        root = self._root_or_raise(request.credentials)
        response = await request_with_retries(
            self.client,
            "POST",
            f"{root}/chat/completions",
            headers=self._headers(request.credentials),
            json=self._build_payload(request),
            max_retries=self.max_retries,
            provider=self.name,
            stream=True,
        )

        try:
            if response.status_code >= 400:
                await response.aread()
                raise_for_status(response, provider=self.name)

            finish_reason: str | None = None
            usage: TokenUsage | None = None
            pending_tools: dict[int, dict[str, Any]] = {}

            async for line in response.aiter_lines():
                line = line.strip()
                if not line or not line.startswith("data:"):
                    continue
                data = line[5:].strip()
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError as exc:
                    raise ProviderBadResponseError(
                        "Provider returned invalid response",
                        details={"body": data[:300]},
                        provider=self.name,
                    ) from exc

                if chunk.get("error"):
                    self._raise_stream_error(chunk["error"])

                choices = chunk.get("choices") or []
                if choices:
                    choice = choices[0]
                    delta = choice.get("delta") or {}
                    reasoning = delta.get("reasoning_content") or delta.get("reasoning")
                    if reasoning:
                        yield ReasoningDelta(reasoning)
                    content = delta.get("content")
                    if content:
                        yield TextDelta(content)
                    for tool_delta in delta.get("tool_calls") or []:
                        _merge_tool_delta(pending_tools, tool_delta)
                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]

                if chunk.get("usage"):
                    usage = _parse_usage(chunk["usage"])

            for index in sorted(pending_tools):
                yield _tool_call_from_pending(pending_tools[index])

            yield GenerationFinish(finish_reason=finish_reason or "stop", usage=usage)
        finally:
            await response.aclose()

    def _raise_stream_error(self, error: Any) -> None:
        message = error.get("message") if isinstance(error, dict) else str(error)
        message = message or "Provider stream error"
        if mentions_context_limit(message):
            raise ContextLimitError(details={"reason": message}, provider=self.name)
        raise ProviderError(message, details={"error": error}, provider=self.name)


def _merge_tool_delta(pending: dict[int, dict[str, Any]], tool_delta: dict[str, Any]) -> None:
    """Accumulate a streamed tool call fragment by its index."""
    index = tool_delta.get("index", 0)
    entry = pending.setdefault(index, {"id": None, "name": "", "arguments": ""})
    if tool_delta.get("id"):
        entry["id"] = tool_delta["id"]
    function = tool_delta.get("function") or {}
    if function.get("name"):
        entry["name"] += function["name"]
    if function.get("arguments"):
        entry["arguments"] += function["arguments"]


def _tool_call_from_pending(entry: dict[str, Any]) -> ToolCall:
    raw = entry["arguments"] or "{}"
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError:
        arguments = {"raw": raw}
    if not isinstance(arguments, dict):
        arguments = {"value": arguments}
    return ToolCall(id=entry["id"] or f"call_{entry['name']}", name=entry["name"], arguments=arguments)


def _parse_usage(raw: dict[str, Any]) -> TokenUsage:
    return TokenUsage(
        prompt_tokens=int(raw.get("prompt_tokens") or 0),
        completion_tokens=int(raw.get("completion_tokens") or 0),
        total_tokens=raw.get("total_tokens"),
    )
