"""Application settings using Pydantic BaseSettings."""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Settings field -> environment variable name that providers look credentials up by
_SERVER_ENV_FIELDS: Dict[str, str] = {
    "openai_api_key": "OPENAI_API_KEY",
    "openai_api_base_url": "OPENAI_API_BASE_URL",
    "xai_api_key": "XAI_API_KEY",
    "xai_api_base_url": "XAI_API_BASE_URL",
    "ollama_api_base_url": "OLLAMA_API_BASE_URL",
    "lmstudio_api_base_url": "LMSTUDIO_API_BASE_URL",
}


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    environment: str = Field(default="development")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    cors_origins: str = Field(default="http://localhost:5173,http://localhost:3000")
    max_request_bytes: int = Field(default=20 * 1024 * 1024)

    # Providers, in registration order
    providers_enabled: str = Field(default="OpenAI,xAI,Ollama,LMStudio")
    local_providers: str = Field(default="ollama,lmstudio")
    provider_timeout_seconds: int = Field(default=120)
    provider_max_retries: int = Field(default=1)
    dynamic_model_cache_size: int = Field(default=64)

    # Chat turns
    default_model: str = Field(default="gpt-4o")
    default_provider: str = Field(default="OpenAI")
    max_response_segments: int = Field(default=2)
    max_tokens: int = Field(default=8000)
    default_context_window: int = Field(default=8000)
    large_request_warn_kb: float = Field(default=500.0)

    # Server-side credentials and endpoints
    openai_api_key: str = Field(default="")
    openai_api_base_url: str = Field(default="")
    xai_api_key: str = Field(default="")
    xai_api_base_url: str = Field(default="")
    ollama_api_base_url: str = Field(default="")
    lmstudio_api_base_url: str = Field(default="")

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def providers_enabled_list(self) -> List[str]:
        """Parse enabled providers from comma-separated string."""
        if not self.providers_enabled:
            return []
        return [p.strip() for p in self.providers_enabled.split(",") if p.strip()]

    @property
    def local_providers_set(self) -> frozenset[str]:
        return frozenset(
            p.strip().lower() for p in self.local_providers.split(",") if p.strip()
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() == "production"

    def server_env(self) -> Dict[str, str]:
        """Credential and base URL values keyed by their environment variable name.

        Empty values are omitted so they never count as a configured credential.
        """
        env: Dict[str, str] = {}
        for field_name, env_name in _SERVER_ENV_FIELDS.items():
            value = getattr(self, field_name)
            if value:
                env[env_name] = value
        return env

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"development", "staging", "production", "test"}:
            raise ValueError("ENVIRONMENT must be one of: development, staging, production, test")
        return vv

    @field_validator("max_response_segments", "max_tokens", "default_context_window")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("value must not be negative")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
