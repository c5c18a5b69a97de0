"""Provider registry and merged model catalog."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping

import httpx

from chatrelay.config import Settings
from chatrelay.core import DynamicFetchError, NoProvidersRegisteredError, NotFoundError, get_logger
from chatrelay.core.metrics import metrics
from chatrelay.providers.base import BaseProvider, CredentialContext, ModelInfo, ProviderSetting
from chatrelay.providers.lmstudio import LMStudioProvider
from chatrelay.providers.ollama import OllamaProvider
from chatrelay.providers.openai import OpenAIProvider
from chatrelay.providers.xai import XAIProvider

logger = get_logger(__name__)

PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "xai": XAIProvider,
    "ollama": OllamaProvider,
    "lmstudio": LMStudioProvider,
}


def build_providers(
    settings: Settings,
    transport_overrides: Mapping[str, httpx.AsyncBaseTransport] | None = None,
) -> list[BaseProvider]:
    """Instantiate the adapters named in ``settings.providers_enabled``, in order."""
    overrides = {name.lower(): transport for name, transport in (transport_overrides or {}).items()}
    providers: list[BaseProvider] = []
    for provider_id in settings.providers_enabled_list:
        provider_cls = PROVIDER_CLASSES.get(provider_id.lower())
        if provider_cls is None:
            logger.warning("Unknown provider id in configuration", data={"id": provider_id})
            continue
        providers.append(
            provider_cls(
                timeout=settings.provider_timeout_seconds,
                max_retries=settings.provider_max_retries,
                transport=overrides.get(provider_id.lower()),
                cache_size=settings.dynamic_model_cache_size,
            )
        )
    return providers


def _dedupe_by_name(models: Iterable[ModelInfo]) -> list[ModelInfo]:
    seen: set[str] = set()
    unique: list[ModelInfo] = []
    for model in models:
        if model.name in seen:
            continue
        seen.add(model.name)
        unique.append(model)
    return unique


class ProviderRegistry:
    """
    Owns the registered providers and the merged model catalog.

    Created once per process. The catalog is a tuple replaced whole on every
    rebuild, so readers never observe a partially merged list.
    """

    def __init__(
        self,
        settings: Settings,
        providers: Iterable[BaseProvider] | None = None,
        env: Mapping[str, str] | None = None,
        transport_overrides: Mapping[str, httpx.AsyncBaseTransport] | None = None,
    ):
        self.settings = settings
        self.server_env: dict[str, str] = dict(env if env is not None else settings.server_env())
        self.providers: dict[str, BaseProvider] = {}
        self.fetch_failures: dict[str, DynamicFetchError] = {}
        self._model_list: tuple[ModelInfo, ...] = ()
        self._local_providers = settings.local_providers_set

        if providers is None:
            providers = build_providers(settings, transport_overrides)
        for provider in providers:
            self.register(provider)

        logger.info(
            "Provider registry initialized",
            data={"providers": list(self.providers.keys())},
        )

    def credential_context(
        self,
        api_keys: Mapping[str, str] | None = None,
        provider_settings: Mapping[str, ProviderSetting] | None = None,
    ) -> CredentialContext:
        """Bundle per-request user credentials with the server environment."""
        return CredentialContext(
            api_keys=dict(api_keys or {}),
            provider_settings=dict(provider_settings or {}),
            server_env=self.server_env,
        )

    def register(self, provider: BaseProvider) -> None:
        """Add a provider; a second registration under the same name is ignored."""
        if provider.name in self.providers:
            logger.warning(
                "Provider already registered, skipping", data={"provider": provider.name}
            )
            return
        self.providers[provider.name] = provider
        self._model_list = self._model_list + tuple(provider.static_models)

    def get_provider(self, name: str) -> BaseProvider | None:
        return self.providers.get(name)

    def get(self, name: str) -> BaseProvider:
        """Resolve a provider by name or raise NotFoundError."""
        provider = self.providers.get(name)
        if provider is None:
            raise NotFoundError(f"Provider '{name}' not found")
        return provider

    def list_providers(self) -> list[BaseProvider]:
        return list(self.providers.values())

    @property
    def model_list(self) -> tuple[ModelInfo, ...]:
        return self._model_list

    def get_static_model_list(self) -> list[ModelInfo]:
        return [model for provider in self.providers.values() for model in provider.static_models]

    def get_static_model_list_from_provider(self, provider: BaseProvider) -> list[ModelInfo]:
        registered = self.providers.get(provider.name)
        if registered is None:
            raise NotFoundError(f"Provider '{provider.name}' not found")
        return list(registered.static_models)

    def _is_enabled(self, provider: BaseProvider, context: CredentialContext) -> bool:
        setting = context.setting_for(provider.name)
        return setting is None or setting.enabled

    async def _dynamic_models_for(
        self,
        provider: BaseProvider,
        context: CredentialContext,
        failures: dict[str, DynamicFetchError],
    ) -> list[ModelInfo]:
        """Cached dynamic models, fetching (and caching) on a miss. Errors land in ``failures``."""
        cached = provider.get_models_from_cache(context)
        if cached is not None:
            return cached

        try:
            models = await provider.fetch_dynamic_models(context)
        except Exception as exc:
            error = DynamicFetchError(
                f"Error getting dynamic models {provider.name}",
                details={"reason": str(exc)},
                provider=provider.name,
            )
            failures[provider.name] = error
            metrics.increment("dynamic_fetch_failures_total")
            logger.warning(
                error.message,
                data={"provider": provider.name, "error": str(exc), "code": error.code.value},
            )
            return []

        provider.store_dynamic_models(context, models)
        return models

    async def rebuild_catalog(
        self, context: CredentialContext, enabled: Iterable[str] | None = None
    ) -> list[ModelInfo]:
        """
        Refresh the catalog from every enabled provider's dynamic list plus
        all static models.

        Dynamic entries win over static ones with the same name and provider.
        Fetch failures contribute no models, are not cached, and are recorded
        in ``fetch_failures``.
        """
        if enabled is None:
            targets = [p for p in self.providers.values() if self._is_enabled(p, context)]
        else:
            names = set(enabled)
            targets = [p for p in self.providers.values() if p.name in names]

        failures: dict[str, DynamicFetchError] = {}
        dynamic_targets = [p for p in targets if p.supports_dynamic_models]
        results = await asyncio.gather(
            *(self._dynamic_models_for(p, context, failures) for p in dynamic_targets)
        )
        dynamic_models = [model for models in results for model in models]

        dynamic_keys = {(model.name, model.provider) for model in dynamic_models}
        static_models = [
            model
            for model in self.get_static_model_list()
            if (model.name, model.provider) not in dynamic_keys
        ]

        catalog = tuple(sorted(dynamic_models + static_models, key=lambda m: m.name))
        self._model_list = catalog
        self.fetch_failures = failures
        logger.debug(
            "Model catalog rebuilt",
            data={
                "models": len(catalog),
                "providers": [p.name for p in targets],
                "fetch_failures": sorted(failures),
            },
        )
        return list(catalog)

    async def get_model_list_from_provider(
        self, provider: BaseProvider, context: CredentialContext
    ) -> list[ModelInfo]:
        """Dynamic plus static models for one provider, deduplicated by name and sorted."""
        registered = self.providers.get(provider.name)
        if registered is None:
            raise NotFoundError(f"Provider '{provider.name}' not found")

        dynamic_models: list[ModelInfo] = []
        if registered.supports_dynamic_models:
            failures: dict[str, DynamicFetchError] = {}
            dynamic_models = await self._dynamic_models_for(registered, context, failures)
            if failures:
                self.fetch_failures = {**self.fetch_failures, **failures}

        dynamic_names = {model.name for model in dynamic_models}
        static_models = [m for m in registered.static_models if m.name not in dynamic_names]
        return sorted(_dedupe_by_name(dynamic_models + static_models), key=lambda m: m.name)

    def find_model(
        self, name: str, provider_name: str, context: CredentialContext | None = None
    ) -> ModelInfo | None:
        """Look a model up in the catalog, then in the provider's own lists."""
        for model in self._model_list:
            if model.name == name and model.provider == provider_name:
                return model

        provider = self.providers.get(provider_name)
        if provider is None:
            return None
        candidates = list(provider.static_models)
        if context is not None:
            candidates = (provider.get_models_from_cache(context) or []) + candidates
        return next((m for m in candidates if m.name == name), None)

    def is_configured(self, provider: BaseProvider, context: CredentialContext) -> bool:
        """Whether the provider can serve requests under this credential context."""
        try:
            config = provider.config
            if not config.api_token_key:
                if provider.name.lower() not in self._local_providers:
                    return True
                if provider.static_models:
                    return True
                return bool(provider.get_models_from_cache(context))

            user_key = context.api_key_for(provider.name)
            if user_key and user_key.strip():
                return True
            env_key = context.server_env.get(config.api_token_key)
            return bool(env_key and env_key.strip())
        except Exception as exc:
            logger.error(
                "Error checking provider configuration",
                data={"provider": provider.name, "error": str(exc)},
            )
            return False

    def get_configured_providers(self, context: CredentialContext) -> list[BaseProvider]:
        return [p for p in self.providers.values() if self.is_configured(p, context)]

    def get_default_provider(self, context: CredentialContext) -> BaseProvider:
        """First configured provider, else the first registered one."""
        if not self.providers:
            raise NoProvidersRegisteredError()

        for provider in self.providers.values():
            if self.is_configured(provider, context):
                return provider

        first = next(iter(self.providers.values()))
        logger.warning(
            "No configured providers found, using first registered provider",
            data={"provider": first.name},
        )
        return first

    async def aclose(self) -> None:
        """Close all provider clients."""
        for provider in self.providers.values():
            try:
                await provider.aclose()
            except Exception as exc:
                logger.warning(
                    "Error closing provider client",
                    data={"provider": provider.name, "error": str(exc)},
                )
