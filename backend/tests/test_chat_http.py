"""HTTP-level tests for the chat, catalog, and health routes."""

from __future__ import annotations

import json
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from chatrelay.main import create_app
from chatrelay.providers import GenerationFinish, ProviderConfig, ReasoningDelta, TextDelta, TokenUsage
from chatrelay.services import ChatService

from conftest import ScriptedProvider, model


def cookie(name: str, value: dict) -> dict[str, str]:
    return {"Cookie": f"{name}={quote(json.dumps(value))}"}


def chat_body(text: str = "hi") -> dict:
    return {
        "messages": [{"role": "user", "content": f"[Model: stub-model]\n\n[Provider: Stub]\n\n{text}"}],
        "contextOptimization": False,
        "chatMode": "build",
    }


@pytest.fixture
def build_client(make_registry, settings):
    clients: list[TestClient] = []

    def _build(*providers: ScriptedProvider, env: dict[str, str] | None = None) -> TestClient:
        registry = make_registry(*providers, env=env)
        app = create_app()
        app.state.provider_registry = registry
        app.state.chat_service = ChatService(registry, settings)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _build
    for client in clients:
        client.__exit__(None, None, None)


def test_chat_streams_data_protocol(build_client) -> None:
    provider = ScriptedProvider(
        "Stub",
        static_models=[model("stub-model", "Stub")],
        segments=[
            [
                ReasoningDelta("thinking"),
                TextDelta("Hello"),
                GenerationFinish("stop", TokenUsage(prompt_tokens=2, completion_tokens=3)),
            ]
        ],
    )
    client = build_client(provider)

    response = client.post("/api/chat", json=chat_body(), headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/event-stream; charset=utf-8"
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["X-Request-ID"] == "req-123"
    lines = response.text.splitlines()
    assert '0: "<div class=\\"__boltThought__\\">"' in lines
    assert '0:"thinking"' in lines
    assert '0: "</div>\\n"' in lines
    assert '0:"Hello"' in lines
    assert lines.index('0: "</div>\\n"') < lines.index('0:"Hello"')
    assert '8:[{"type":"usage","value":{"completionTokens":3,"promptTokens":2,"totalTokens":5}}]' in lines
    assert lines[-1].startswith("d:")


def test_chat_missing_key_returns_401_json(build_client) -> None:
    provider = ScriptedProvider(
        "Stub",
        config=ProviderConfig(api_token_key="STUB_API_KEY"),
        static_models=[model("stub-model", "Stub")],
        segments=[[GenerationFinish("stop")]],
    )
    client = build_client(provider)

    response = client.post("/api/chat", json=chat_body())

    assert response.status_code == 401
    body = response.json()
    assert body["error"] is True
    assert body["message"] == "Invalid or missing API key"
    assert body["statusCode"] == 401
    assert body["isRetryable"] is False
    assert body["provider"] == "Stub"
    assert provider.requests == []


def test_chat_uses_api_key_cookie(build_client) -> None:
    provider = ScriptedProvider(
        "Stub",
        config=ProviderConfig(api_token_key="STUB_API_KEY"),
        static_models=[model("stub-model", "Stub")],
        segments=[[TextDelta("ok"), GenerationFinish("stop")]],
    )
    client = build_client(provider)

    response = client.post(
        "/api/chat", json=chat_body(), headers=cookie("apiKeys", {"Stub": "user-key"})
    )

    assert response.status_code == 200
    assert provider.requests[0].credentials.api_key == "user-key"


def test_chat_in_band_error_keeps_status_200(build_client) -> None:
    provider = ScriptedProvider(
        "Stub",
        static_models=[model("stub-model", "Stub")],
        segments=[[TextDelta("partial"), RuntimeError("upstream blew up")]],
    )
    client = build_client(provider)

    response = client.post("/api/chat", json=chat_body())

    assert response.status_code == 200
    lines = response.text.splitlines()
    assert lines[-1] == '3:"upstream blew up"'
    error_record = json.loads(lines[-2][2:])[0]
    assert error_record["type"] == "error"
    assert error_record["statusCode"] == 500


def test_chat_rejects_empty_messages(build_client) -> None:
    client = build_client(ScriptedProvider("Stub"))

    response = client.post("/api/chat", json={"messages": []})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "E1001"


def test_models_route_returns_sorted_catalog(build_client) -> None:
    local = ScriptedProvider("Ollama", dynamic_models=[model("llama3", "Ollama")])
    hosted = ScriptedProvider(
        "Hosted",
        config=ProviderConfig(api_token_key="HOSTED_KEY"),
        static_models=[model("zeta", "Hosted"), model("alpha", "Hosted")],
    )
    client = build_client(local, hosted)

    response = client.get("/api/models")

    assert response.status_code == 200
    body = response.json()
    assert [m["name"] for m in body["modelList"]] == ["alpha", "llama3", "zeta"]
    assert body["modelList"][0] == {
        "name": "alpha",
        "label": "alpha",
        "provider": "Hosted",
        "maxTokenAllowed": 8000,
    }
    assert body["defaultProvider"] == "Ollama"
    configured = {p["name"]: p["configured"] for p in body["providers"]}
    assert configured == {"Ollama": True, "Hosted": False}


def test_provider_models_route(build_client) -> None:
    client = build_client(ScriptedProvider("Hosted", static_models=[model("alpha", "Hosted")]))

    response = client.get("/api/models/Hosted")
    missing = client.get("/api/models/Nowhere")

    assert response.status_code == 200
    assert [m["name"] for m in response.json()["modelList"]] == ["alpha"]
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "E1002"


def test_providers_route_honours_cookie_keys(build_client) -> None:
    client = build_client(ScriptedProvider("Hosted", config=ProviderConfig(api_token_key="HOSTED_KEY")))

    anonymous = client.get("/api/providers").json()
    keyed = client.get("/api/providers", headers=cookie("apiKeys", {"Hosted": "k"})).json()

    assert anonymous[0]["configured"] is False
    assert keyed[0]["configured"] is True
    assert keyed[0]["config"] == {"apiTokenKey": "HOSTED_KEY", "baseUrlKey": None}


def test_health_and_metrics(build_client) -> None:
    client = build_client(ScriptedProvider("Hosted"))

    health = client.get("/health")
    metrics_resp = client.get("/metrics")

    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert health.json()["providers"] == ["Hosted"]
    assert "X-Request-ID" in health.headers
    assert "chat_turns_total" in metrics_resp.json()["metrics"]["counters"]
