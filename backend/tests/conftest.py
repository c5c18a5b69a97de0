"""Shared fixtures: settings, scripted providers, and registry builders."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest

from chatrelay.config.settings import Settings
from chatrelay.providers import (
    BaseProvider,
    CredentialContext,
    GenerationEvent,
    GenerationRequest,
    ModelInfo,
    ProviderConfig,
    ProviderRegistry,
)


def model(name: str, provider: str, label: str | None = None, max_tokens: int = 8000) -> ModelInfo:
    return ModelInfo(name=name, label=label or name, provider=provider, max_token_allowed=max_tokens)


class ScriptedProvider(BaseProvider):
    """Provider stub that replays one scripted event list per generation call."""

    def __init__(
        self,
        name: str = "Stub",
        *,
        config: ProviderConfig | None = None,
        static_models: tuple[ModelInfo, ...] | list[ModelInfo] = (),
        segments: list[list[Any]] | None = None,
        dynamic_models: list[ModelInfo] | None = None,
        fetch_error: Exception | None = None,
    ):
        super().__init__(timeout=5, max_retries=0)
        self.name = name
        self.config = config or ProviderConfig()
        self.static_models = tuple(static_models)
        self.segments = segments or []
        self.dynamic_models = dynamic_models
        self.fetch_error = fetch_error
        self.supports_dynamic_models = dynamic_models is not None or fetch_error is not None
        self.fetch_calls = 0
        self.requests: list[GenerationRequest] = []
        self.closed = False

    async def fetch_dynamic_models(self, context: CredentialContext) -> list[ModelInfo]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.dynamic_models or [])

    async def stream_generation(self, request: GenerationRequest) -> AsyncIterator[GenerationEvent]:
        self.requests.append(request)
        script = self.segments[min(len(self.requests), len(self.segments)) - 1]
        for event in script:
            if isinstance(event, Exception):
                raise event
            yield event

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        providers_enabled="",
        default_provider="Stub",
        default_model="stub-model",
        max_response_segments=2,
        max_tokens=8000,
        default_context_window=4000,
        openai_api_key="",
        xai_api_key="",
    )


@pytest.fixture
def make_registry(settings: Settings):
    def _make(*providers: BaseProvider, env: dict[str, str] | None = None) -> ProviderRegistry:
        return ProviderRegistry(settings, providers=list(providers), env=env or {})

    return _make
