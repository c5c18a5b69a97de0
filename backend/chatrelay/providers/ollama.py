"""Ollama native provider adapter."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from chatrelay.core import ContextLimitError, ProviderBadResponseError, ProviderError, get_logger
from chatrelay.providers.base import (
    BaseProvider,
    ChatMessage,
    CredentialContext,
    GenerationEvent,
    GenerationFinish,
    GenerationRequest,
    ModelInfo,
    ProviderConfig,
    ReasoningDelta,
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


class OllamaProvider(BaseProvider):
    """Adapter for Ollama's native HTTP API."""

    name = "Ollama"
    config = ProviderConfig(base_url_key="OLLAMA_API_BASE_URL")
    default_base_url = "http://127.0.0.1:11434"
    supports_dynamic_models = True

    async def fetch_dynamic_models(self, context: CredentialContext) -> list[ModelInfo]:
        """List models from /api/tags."""
        credentials = self.resolve_credentials(context)
        if not credentials.base_url:
            raise ProviderError("No base URL configured for Ollama", provider=self.name)

        response = await request_with_retries(
            self.client,
            "GET",
            f"{credentials.base_url}/api/tags",
            max_retries=self.max_retries,
            provider=self.name,
        )
        raise_for_status(response, provider=self.name)
        payload = parse_json(response, provider=self.name)

        models_payload = payload.get("models") if isinstance(payload, dict) else None
        if not isinstance(models_payload, list):
            raise ProviderBadResponseError(
                "Provider returned invalid response", details={"body": payload}, provider=self.name
            )

        models: list[ModelInfo] = []
        for item in models_payload:
            model_id = item.get("name") if isinstance(item, dict) else None
            if not model_id:
                continue
            size = (item.get("details") or {}).get("parameter_size")
            models.append(
                ModelInfo(
                    name=model_id,
                    label=f"{model_id} ({size})" if size else model_id,
                    provider=self.name,
                    max_token_allowed=DEFAULT_MAX_TOKEN_ALLOWED,
                )
            )
        return models

    async def stream_generation(self, request: GenerationRequest) -> AsyncIterator[GenerationEvent]:
        """Stream chat responses as JSON lines."""
        if not request.credentials.base_url:
            raise ProviderError("No base URL configured for Ollama", provider=self.name)

        payload: dict[str, Any] = {
            "model": request.model,
            "messages": _format_messages(request.messages),
            "stream": True,
        }
        options: dict[str, Any] = {}
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if options:
            payload["options"] = options
        if request.tools:
            payload["tools"] = [{"type": "function", "function": tool} for tool in request.tools]

        response = await request_with_retries(
            self.client,
            "POST",
            f"{request.credentials.base_url}/api/chat",
            json=payload,
            max_retries=self.max_retries,
            provider=self.name,
            stream=True,
        )

        try:
            if response.status_code >= 400:
                await response.aread()
                raise_for_status(response, provider=self.name)

            finished = False
            call_count = 0
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise ProviderBadResponseError(
                        "Provider returned invalid response",
                        details={"body": line[:300]},
                        provider=self.name,
                    ) from exc

                if chunk.get("error"):
                    message = str(chunk["error"])
                    if mentions_context_limit(message):
                        raise ContextLimitError(details={"reason": message}, provider=self.name)
                    raise ProviderError(message, provider=self.name)

                message = chunk.get("message") or {}
                if message.get("thinking"):
                    yield ReasoningDelta(message["thinking"])
                if message.get("content"):
                    yield TextDelta(message["content"])
                for call in message.get("tool_calls") or []:
                    call_count += 1
                    function = call.get("function") or {}
                    arguments = function.get("arguments") or {}
                    if not isinstance(arguments, dict):
                        arguments = {"value": arguments}
                    yield ToolCall(
                        id=call.get("id") or f"call_{call_count}",
                        name=function.get("name", ""),
                        arguments=arguments,
                    )

                if chunk.get("done"):
                    finished = True
                    yield GenerationFinish(
                        finish_reason=chunk.get("done_reason") or "stop",
                        usage=TokenUsage(
                            prompt_tokens=int(chunk.get("prompt_eval_count") or 0),
                            completion_tokens=int(chunk.get("eval_count") or 0),
                        ),
                    )
                    break

            if not finished:
                logger.warning(
                    "Ollama stream ended without a done record",
                    data={"provider": self.name, "model": request.model},
                )
                yield GenerationFinish(finish_reason="stop")
        finally:
            await response.aclose()


def _format_messages(messages: list[ChatMessage]) -> list[dict[str, str]]:
    """Convert ChatMessage objects to Ollama's expected shape."""
    return [{"role": msg.role, "content": msg.content} for msg in messages]
