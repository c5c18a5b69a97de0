"""
Base provider interface.

Defines the data model shared by the registry and the chat orchestrator,
and the contract that every backend adapter implements.
"""

from __future__ import annotations

import hashlib
import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from chatrelay.providers.cache import DynamicModelCache
from chatrelay.providers.http_client import create_http_client


@dataclass(frozen=True)
class ModelInfo:
    """A model offered by a provider."""

    name: str
    label: str
    provider: str
    max_token_allowed: int

    def __post_init__(self) -> None:
        if self.max_token_allowed <= 0:
            raise ValueError(
                f"max_token_allowed must be positive for model '{self.name}'"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "provider": self.provider,
            "maxTokenAllowed": self.max_token_allowed,
        }


@dataclass(frozen=True)
class ProviderConfig:
    """Names of the environment keys a provider reads its credentials from."""

    api_token_key: str | None = None
    base_url_key: str | None = None


@dataclass(frozen=True)
class ProviderSetting:
    """Per-provider user settings (enable flag and optional base URL)."""

    enabled: bool = True
    base_url: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProviderSetting:
        base_url = data.get("baseUrl", data.get("base_url"))
        return cls(
            enabled=bool(data.get("enabled", True)),
            base_url=base_url or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "baseUrl": self.base_url}


@dataclass(frozen=True)
class CredentialContext:
    """Credentials for one request: user keys, provider settings, server env."""

    api_keys: Mapping[str, str] = field(default_factory=dict)
    provider_settings: Mapping[str, ProviderSetting] = field(default_factory=dict)
    server_env: Mapping[str, str] = field(default_factory=dict)

    def api_key_for(self, provider_name: str) -> str | None:
        return self.api_keys.get(provider_name)

    def setting_for(self, provider_name: str) -> ProviderSetting | None:
        return self.provider_settings.get(provider_name)

    def fingerprint(self, provider_name: str, config: ProviderConfig) -> str:
        """Stable digest of the slice of this context a provider depends on."""
        setting = self.setting_for(provider_name)
        slice_ = {
            "provider": provider_name,
            "api_key": self.api_key_for(provider_name),
            "setting": setting.to_dict() if setting else None,
            "env": {
                key: self.server_env.get(key)
                for key in (config.api_token_key, config.base_url_key)
                if key
            },
        }
        raw = json.dumps(slice_, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ResolvedCredentials:
    """Base URL and API key a provider will actually use."""

    base_url: str | None
    api_key: str | None


@dataclass
class ChatMessage:
    """A single chat message."""

    role: str  # "system", "user", "assistant"
    content: str
    id: str | None = None

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported for one generation call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int | None = None

    @property
    def total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GenerationFinish:
    finish_reason: str
    usage: TokenUsage | None = None


GenerationEvent = TextDelta | ReasoningDelta | ToolCall | GenerationFinish


@dataclass
class GenerationRequest:
    """One generation call against a provider."""

    model: str
    messages: list[ChatMessage]
    credentials: ResolvedCredentials
    max_tokens: int | None = None
    tool_choice: str = "auto"
    tools: list[dict[str, Any]] = field(default_factory=list)
    temperature: float | None = None


class BaseProvider(ABC):
    """
    Abstract base class for backend adapters.

    Subclasses are flat data tables (name, config, static models, default
    base URL) plus the calls that talk to the backend. Dynamic listing is
    optional and announced through ``supports_dynamic_models``.
    """

    name: str
    config: ProviderConfig = ProviderConfig()
    static_models: tuple[ModelInfo, ...] = ()
    default_base_url: str | None = None
    api_key_link: str | None = None
    supports_dynamic_models: bool = False

    def __init__(
        self,
        *,
        timeout: int = 120,
        max_retries: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
        cache_size: int = 64,
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._model_cache = DynamicModelCache(max_entries=cache_size)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_http_client(self.timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if one was opened."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def requires_api_key(self) -> bool:
        return bool(self.config.api_token_key)

    def resolve_credentials(self, context: CredentialContext) -> ResolvedCredentials:
        """Pick base URL and API key, user-supplied values first."""
        setting = context.setting_for(self.name)
        base_url = (setting.base_url if setting else None) or (
            context.server_env.get(self.config.base_url_key) if self.config.base_url_key else None
        )
        user_key = context.api_key_for(self.name)
        env_key = (
            context.server_env.get(self.config.api_token_key) if self.config.api_token_key else None
        )
        api_key = user_key if user_key and user_key.strip() else env_key
        if api_key and not api_key.strip():
            api_key = None
        base_url = (base_url or self.default_base_url or "").rstrip("/") or None
        return ResolvedCredentials(base_url=base_url, api_key=api_key or None)

    def cache_key(self, context: CredentialContext) -> str:
        return context.fingerprint(self.name, self.config)

    def get_models_from_cache(self, context: CredentialContext) -> list[ModelInfo] | None:
        """Cached dynamic models for this context, or None on a miss."""
        return self._model_cache.get(self.cache_key(context))

    def store_dynamic_models(self, context: CredentialContext, models: list[ModelInfo]) -> None:
        self._model_cache.set(self.cache_key(context), models)

    def clear_model_cache(self) -> None:
        self._model_cache.clear()

    async def fetch_dynamic_models(self, context: CredentialContext) -> list[ModelInfo]:
        """
        Ask the backend which models it currently serves.

        Only called when ``supports_dynamic_models`` is true.
        """
        raise NotImplementedError(f"{self.name} does not list models dynamically")

    @abstractmethod
    def stream_generation(self, request: GenerationRequest) -> AsyncIterator[GenerationEvent]:
        """
        Run one generation call and stream its events.

        Yields TextDelta/ReasoningDelta/ToolCall events as they arrive and a
        single GenerationFinish last.

        Raises:
            AppError subclasses mapped from the backend's HTTP response
        """
        ...
