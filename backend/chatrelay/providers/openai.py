"""OpenAI provider adapter."""

from __future__ import annotations

from chatrelay.providers.base import ModelInfo, ProviderConfig
from chatrelay.providers.openai_compat import OpenAICompatProvider

_CHAT_MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt-")


class OpenAIProvider(OpenAICompatProvider):
    """OpenAI's hosted API; lists chat models dynamically."""

    name = "OpenAI"
    config = ProviderConfig(api_token_key="OPENAI_API_KEY", base_url_key="OPENAI_API_BASE_URL")
    default_base_url = "https://api.openai.com/v1"
    api_key_link = "https://platform.openai.com/api-keys"
    supports_dynamic_models = True
    static_models = (
        ModelInfo(name="gpt-4o", label="GPT-4o", provider="OpenAI", max_token_allowed=8000),
        ModelInfo(name="gpt-4o-mini", label="GPT-4o Mini", provider="OpenAI", max_token_allowed=8000),
    )

    def _include_model(self, model_id: str) -> bool:
        return model_id.startswith(_CHAT_MODEL_PREFIXES) and "realtime" not in model_id
