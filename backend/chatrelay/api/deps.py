"""Shared FastAPI dependencies."""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import unquote

from fastapi import Depends, Request

from chatrelay.config import get_settings
from chatrelay.core import get_logger
from chatrelay.providers import CredentialContext, ProviderRegistry, ProviderSetting
from chatrelay.services import ChatService

logger = get_logger(__name__)


def get_registry(request: Request) -> ProviderRegistry:
    """Resolve provider registry from app state (initialize if missing)."""
    registry = getattr(request.app.state, "provider_registry", None)
    if registry is None:
        registry = ProviderRegistry(get_settings())
        request.app.state.provider_registry = registry
    return registry


def get_chat_service(
    request: Request, registry: ProviderRegistry = Depends(get_registry)
) -> ChatService:
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        service = ChatService(registry)
        request.app.state.chat_service = service
    return service


def _json_cookie(request: Request, name: str) -> dict[str, Any]:
    raw = request.cookies.get(name)
    if not raw:
        return {}
    try:
        value = json.loads(unquote(raw))
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed cookie", data={"cookie": name})
        return {}
    return value if isinstance(value, dict) else {}


def get_credential_context(
    request: Request, registry: ProviderRegistry = Depends(get_registry)
) -> CredentialContext:
    """Build the request's credential context from the apiKeys/providers cookies."""
    api_keys = {
        str(name): str(key)
        for name, key in _json_cookie(request, "apiKeys").items()
        if isinstance(key, str)
    }
    provider_settings = {
        str(name): ProviderSetting.from_dict(setting)
        for name, setting in _json_cookie(request, "providers").items()
        if isinstance(setting, dict)
    }
    return registry.credential_context(api_keys=api_keys, provider_settings=provider_settings)
