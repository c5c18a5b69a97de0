"""LM Studio provider (OpenAI-compatible) adapter."""

from __future__ import annotations

from chatrelay.providers.base import ProviderConfig
from chatrelay.providers.openai_compat import OpenAICompatProvider


class LMStudioProvider(OpenAICompatProvider):
    """LM Studio uses the OpenAI-compatible API surface under /v1."""

    name = "LMStudio"
    config = ProviderConfig(base_url_key="LMSTUDIO_API_BASE_URL")
    default_base_url = "http://127.0.0.1:1234"
    supports_dynamic_models = True

    def _api_root(self, base_url: str) -> str:
        if base_url.endswith("/v1"):
            return base_url
        return f"{base_url}/v1"
