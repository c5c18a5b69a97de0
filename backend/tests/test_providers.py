"""Tests for provider adapters against mocked HTTP backends."""

from __future__ import annotations

import json

import httpx
import pytest

from chatrelay.core import (
    ContextLimitError,
    CredentialError,
    ErrorCode,
    ModelNotFoundError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
)
from chatrelay.providers import (
    ChatMessage,
    CredentialContext,
    GenerationFinish,
    GenerationRequest,
    LMStudioProvider,
    OllamaProvider,
    OpenAIProvider,
    ProviderSetting,
    ReasoningDelta,
    ResolvedCredentials,
    TextDelta,
    TokenUsage,
    ToolCall,
    XAIProvider,
)


def sse(*chunks: dict | str) -> bytes:
    lines = []
    for chunk in chunks:
        payload = chunk if isinstance(chunk, str) else json.dumps(chunk)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode("utf-8")


def delta(**fields) -> dict:  # noqa: ANN003
    return {"choices": [{"index": 0, "delta": fields, "finish_reason": None}]}


def request_for(model: str, base_url: str, api_key: str | None = None, **kwargs) -> GenerationRequest:  # noqa: ANN003
    return GenerationRequest(
        model=model,
        messages=[ChatMessage(role="user", content="hi")],
        credentials=ResolvedCredentials(base_url=base_url, api_key=api_key),
        **kwargs,
    )


async def collect(provider, request: GenerationRequest) -> list:  # noqa: ANN001
    return [event async for event in provider.stream_generation(request)]


@pytest.mark.asyncio
async def test_openai_lists_chat_models_with_user_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "data": [
                    {"id": "gpt-4o-mini"},
                    {"id": "whisper-1"},
                    {"id": "o3-mini", "context_window": 200000},
                ]
            },
        )

    provider = OpenAIProvider(max_retries=0, transport=httpx.MockTransport(handler))
    context = CredentialContext(api_keys={"OpenAI": "sk-user"}, server_env={"OPENAI_API_KEY": "sk-env"})

    models = await provider.fetch_dynamic_models(context)

    assert [(m.name, m.max_token_allowed) for m in models] == [("gpt-4o-mini", 8000), ("o3-mini", 200000)]
    assert all(m.provider == "OpenAI" for m in models)
    assert str(seen[0].url) == "https://api.openai.com/v1/models"
    assert seen[0].headers["Authorization"] == "Bearer sk-user"
    await provider.aclose()


@pytest.mark.asyncio
async def test_openai_fetch_without_key_raises_credential_error() -> None:
    provider = OpenAIProvider(
        max_retries=0,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"data": []})),
    )

    with pytest.raises(CredentialError) as exc:
        await provider.fetch_dynamic_models(CredentialContext())

    assert exc.value.code == ErrorCode.CREDENTIALS_MISSING
    await provider.aclose()


@pytest.mark.asyncio
async def test_openai_compat_stream_parses_deltas_tools_and_usage() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        body = sse(
            delta(reasoning_content="hmm"),
            delta(content="Hel"),
            delta(content="lo"),
            delta(tool_calls=[{"index": 0, "id": "call_1", "function": {"name": "lookup", "arguments": '{"q":'}}]),
            delta(tool_calls=[{"index": 0, "function": {"arguments": '"x"}'}}]),
            {"choices": [{"index": 0, "delta": {}, "finish_reason": "tool_calls"}]},
            {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7}},
            "[DONE]",
        )
        return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

    provider = XAIProvider(max_retries=0, transport=httpx.MockTransport(handler))
    tool = {"name": "lookup", "description": "Look up", "parameters": {"type": "object"}}

    events = await collect(
        provider,
        request_for("grok-beta", "https://api.x.ai/v1", "xai-key", max_tokens=8000, tools=[tool]),
    )

    assert events == [
        ReasoningDelta("hmm"),
        TextDelta("Hel"),
        TextDelta("lo"),
        ToolCall(id="call_1", name="lookup", arguments={"q": "x"}),
        GenerationFinish("tool_calls", TokenUsage(prompt_tokens=3, completion_tokens=4, total_tokens=7)),
    ]
    assert captured["url"] == "https://api.x.ai/v1/chat/completions"
    assert captured["body"]["stream"] is True
    assert captured["body"]["max_tokens"] == 8000
    assert captured["body"]["tools"] == [{"type": "function", "function": tool}]
    assert captured["body"]["tool_choice"] == "auto"
    await provider.aclose()


@pytest.mark.asyncio
async def test_openai_compat_stream_reports_length_cutoff() -> None:
    body = sse(
        delta(content="partial"),
        {"choices": [{"index": 0, "delta": {}, "finish_reason": "length"}]},
        "[DONE]",
    )
    provider = XAIProvider(
        max_retries=0, transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body))
    )

    events = await collect(provider, request_for("grok-beta", "https://api.x.ai/v1", "k"))

    assert events[-1] == GenerationFinish("length", None)
    await provider.aclose()


@pytest.mark.asyncio
async def test_openai_compat_in_stream_error_is_raised() -> None:
    body = sse(delta(content="a"), {"error": {"message": "This model's maximum context length is 8192"}})
    provider = XAIProvider(
        max_retries=0, transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body))
    )

    with pytest.raises(ContextLimitError):
        await collect(provider, request_for("grok-beta", "https://api.x.ai/v1", "k"))
    await provider.aclose()


@pytest.mark.parametrize(
    ("status", "body", "error_type"),
    [
        (401, {"error": "bad key"}, CredentialError),
        (404, {"error": "no such model"}, ModelNotFoundError),
        (429, {"error": "slow down"}, RateLimitError),
        (400, {"error": {"message": "maximum context length exceeded"}}, ContextLimitError),
        (400, {"error": "bad request"}, ProviderError),
        (503, {"error": "overloaded"}, ProviderUnavailableError),
    ],
)
@pytest.mark.asyncio
async def test_stream_error_status_mapping(status: int, body: dict, error_type: type) -> None:
    provider = XAIProvider(
        max_retries=0,
        transport=httpx.MockTransport(lambda request: httpx.Response(status, json=body)),
    )

    with pytest.raises(error_type) as exc:
        await collect(provider, request_for("grok-beta", "https://api.x.ai/v1", "k"))

    assert exc.value.provider == "xAI"
    await provider.aclose()


@pytest.mark.asyncio
async def test_network_timeout_maps_to_provider_unavailable() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ReadTimeout("timeout", request=request)

    provider = OllamaProvider(max_retries=1, transport=httpx.MockTransport(handler))

    with pytest.raises(ProviderUnavailableError) as exc:
        await provider.fetch_dynamic_models(CredentialContext())

    assert exc.value.code == ErrorCode.PROVIDER_UNAVAILABLE
    assert calls["count"] == 2
    await provider.aclose()


@pytest.mark.asyncio
async def test_lmstudio_uses_v1_root_and_no_auth_header() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": [{"id": "qwen2.5-coder"}]})

    provider = LMStudioProvider(max_retries=0, transport=httpx.MockTransport(handler))
    context = CredentialContext(
        provider_settings={"LMStudio": ProviderSetting(base_url="http://lmstudio.test/")}
    )

    models = await provider.fetch_dynamic_models(context)

    assert [m.name for m in models] == ["qwen2.5-coder"]
    assert str(seen[0].url) == "http://lmstudio.test/v1/models"
    assert "Authorization" not in seen[0].headers
    assert provider.requires_api_key is False
    await provider.aclose()


@pytest.mark.asyncio
async def test_ollama_lists_tags_from_env_base_url() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "models": [
                    {"name": "llama3:8b", "details": {"parameter_size": "8B"}},
                    {"name": "mistral"},
                ]
            },
        )

    provider = OllamaProvider(max_retries=0, transport=httpx.MockTransport(handler))
    context = CredentialContext(server_env={"OLLAMA_API_BASE_URL": "http://ollama.test"})

    models = await provider.fetch_dynamic_models(context)

    assert [(m.name, m.label) for m in models] == [("llama3:8b", "llama3:8b (8B)"), ("mistral", "mistral")]
    assert str(seen[0].url) == "http://ollama.test/api/tags"
    await provider.aclose()


@pytest.mark.asyncio
async def test_ollama_stream_parses_ndjson() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        lines = [
            {"message": {"role": "assistant", "content": "", "thinking": "pondering"}, "done": False},
            {"message": {"role": "assistant", "content": "Hi"}, "done": False},
            {
                "message": {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [{"function": {"name": "lookup", "arguments": {"q": "x"}}}],
                },
                "done": False,
            },
            {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "length",
             "prompt_eval_count": 12, "eval_count": 30},
        ]
        content = "\n".join(json.dumps(line) for line in lines).encode("utf-8")
        return httpx.Response(200, content=content)

    provider = OllamaProvider(max_retries=0, transport=httpx.MockTransport(handler))

    events = await collect(provider, request_for("llama3", "http://ollama.test", max_tokens=4096))

    assert events == [
        ReasoningDelta("pondering"),
        TextDelta("Hi"),
        ToolCall(id="call_1", name="lookup", arguments={"q": "x"}),
        GenerationFinish("length", TokenUsage(prompt_tokens=12, completion_tokens=30)),
    ]
    assert captured["body"]["options"] == {"num_predict": 4096}
    assert captured["body"]["stream"] is True
    await provider.aclose()


@pytest.mark.parametrize(
    ("message", "error_type"),
    [
        ("input exceeds maximum context length", ContextLimitError),
        ("model runner crashed", ProviderError),
    ],
)
@pytest.mark.asyncio
async def test_ollama_in_stream_error_mapping(message: str, error_type: type) -> None:
    content = json.dumps({"error": message}).encode("utf-8")
    provider = OllamaProvider(
        max_retries=0, transport=httpx.MockTransport(lambda request: httpx.Response(200, content=content))
    )

    with pytest.raises(error_type) as exc:
        await collect(provider, request_for("llama3", "http://ollama.test"))

    assert type(exc.value) is error_type
    assert exc.value.provider == "Ollama"
    await provider.aclose()


def test_xai_is_static_only() -> None:
    provider = XAIProvider()

    assert provider.supports_dynamic_models is False
    assert [m.name for m in provider.static_models] == ["grok-3-beta", "grok-beta", "grok-2-1212"]
    assert all(m.max_token_allowed == 8000 for m in provider.static_models)
    assert provider.config.api_token_key == "XAI_API_KEY"
