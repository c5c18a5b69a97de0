"""Provider adapters, model catalog, and registry."""

from chatrelay.providers.base import (
    BaseProvider,
    ChatMessage,
    CredentialContext,
    GenerationEvent,
    GenerationFinish,
    GenerationRequest,
    ModelInfo,
    ProviderConfig,
    ProviderSetting,
    ReasoningDelta,
    ResolvedCredentials,
    TextDelta,
    TokenUsage,
    ToolCall,
)
from chatrelay.providers.lmstudio import LMStudioProvider
from chatrelay.providers.ollama import OllamaProvider
from chatrelay.providers.openai import OpenAIProvider
from chatrelay.providers.openai_compat import OpenAICompatProvider
from chatrelay.providers.registry import ProviderRegistry, build_providers
from chatrelay.providers.xai import XAIProvider

__all__ = [
    "BaseProvider",
    "ChatMessage",
    "CredentialContext",
    "GenerationEvent",
    "GenerationFinish",
    "GenerationRequest",
    "ModelInfo",
    "ProviderConfig",
    "ProviderSetting",
    "ReasoningDelta",
    "ResolvedCredentials",
    "TextDelta",
    "TokenUsage",
    "ToolCall",
    "LMStudioProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "OpenAICompatProvider",
    "ProviderRegistry",
    "XAIProvider",
    "build_providers",
]
