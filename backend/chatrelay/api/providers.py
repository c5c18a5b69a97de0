"""Model catalog and provider listing endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from chatrelay.api.deps import get_credential_context, get_registry
from chatrelay.providers import BaseProvider, CredentialContext, ProviderRegistry

router = APIRouter(prefix="/api", tags=["providers"])


def _provider_info(
    registry: ProviderRegistry, provider: BaseProvider, context: CredentialContext
) -> dict[str, Any]:
    return {
        "name": provider.name,
        "staticModels": [model.to_dict() for model in provider.static_models],
        "supportsDynamicModels": provider.supports_dynamic_models,
        "getApiKeyLink": provider.api_key_link,
        "config": {
            "apiTokenKey": provider.config.api_token_key,
            "baseUrlKey": provider.config.base_url_key,
        },
        "configured": registry.is_configured(provider, context),
    }


@router.get("/models")
async def list_models(
    registry: ProviderRegistry = Depends(get_registry),
    context: CredentialContext = Depends(get_credential_context),
) -> dict[str, Any]:
    """Rebuild and return the merged catalog for the caller's credentials."""
    models = await registry.rebuild_catalog(context)
    default = registry.get_default_provider(context) if registry.providers else None
    return {
        "modelList": [model.to_dict() for model in models],
        "providers": [_provider_info(registry, p, context) for p in registry.list_providers()],
        "defaultProvider": default.name if default else None,
    }


@router.get("/models/{provider_name}")
async def list_provider_models(
    provider_name: str,
    registry: ProviderRegistry = Depends(get_registry),
    context: CredentialContext = Depends(get_credential_context),
) -> dict[str, Any]:
    """Models offered by one provider."""
    provider = registry.get(provider_name)
    models = await registry.get_model_list_from_provider(provider, context)
    return {"modelList": [model.to_dict() for model in models]}


@router.get("/providers")
async def list_providers(
    registry: ProviderRegistry = Depends(get_registry),
    context: CredentialContext = Depends(get_credential_context),
) -> list[dict[str, Any]]:
    """Registered providers with their configuration status."""
    return [_provider_info(registry, p, context) for p in registry.list_providers()]
