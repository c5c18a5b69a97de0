"""xAI (Grok) provider adapter."""

from __future__ import annotations

from chatrelay.providers.base import ModelInfo, ProviderConfig
from chatrelay.providers.openai_compat import OpenAICompatProvider


class XAIProvider(OpenAICompatProvider):
    """xAI speaks the OpenAI wire format and only offers a static model list."""

    name = "xAI"
    config = ProviderConfig(api_token_key="XAI_API_KEY", base_url_key="XAI_API_BASE_URL")
    default_base_url = "https://api.x.ai/v1"
    api_key_link = "https://docs.x.ai/docs/quickstart#creating-an-api-key"
    static_models = (
        ModelInfo(name="grok-3-beta", label="xAI Grok 3 Beta", provider="xAI", max_token_allowed=8000),
        ModelInfo(name="grok-beta", label="xAI Grok Beta", provider="xAI", max_token_allowed=8000),
        ModelInfo(name="grok-2-1212", label="xAI Grok2 1212", provider="xAI", max_token_allowed=8000),
    )
