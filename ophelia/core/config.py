"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import BaseModel, field_validator
from typing import Literal, Optional
from pathlib import Path


ProviderName = Literal["openai", "anthropic", "github_model", "ollama"]

PROVIDER_DISPLAY_NAMES: dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "github_model": "GitHub Model",
    "ollama": "Ollama",
}


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Ophelia"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Provider Selection
    CHAT_PROVIDER: ProviderName = "openai"
    SYSTEM_PROMPT: str = ""

    # OpenAI Configuration
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_DEFAULT_MODEL: str = "gpt-4o-mini"
    OPENAI_MAX_TOKENS: int = 4096
    OPENAI_TEMPERATURE: float = 0.7

    # Anthropic Configuration
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com/v1"
    ANTHROPIC_VERSION: str = "2023-06-01"
    ANTHROPIC_DEFAULT_MODEL: str = "claude-3-5-haiku-20241022"
    ANTHROPIC_MAX_TOKENS: int = 4096

    # GitHub Models (Azure inference) Configuration
    GITHUB_TOKEN: str = ""
    GITHUB_MODELS_ENDPOINT: str = "https://models.inference.ai.azure.com"
    GITHUB_MODELS_DEFAULT_MODEL: str = "gpt-4o-mini"
    GITHUB_MODELS_MAX_TOKENS: int = 2048

    # Ollama Configuration
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_DEFAULT_MODEL: str = "llama3.2"
    OLLAMA_TIMEOUT: float = 60.0  # seconds, longer generations on local hardware

    # LLM Request Configuration
    LLM_CONNECT_TIMEOUT: float = 30.0  # seconds
    LLM_READ_TIMEOUT: float = 300.0  # seconds, whole streamed response
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_DELAY: float = 0.5  # seconds, base for exponential backoff

    # Streaming / token batching
    TOKEN_BATCH_SIZE: int = 5
    TOKEN_FLUSH_CHARS: Optional[int] = None
    TOKEN_FLUSH_INTERVAL: float = 0.2  # seconds between timed flushes
    HAPTIC_EVERY_N_DELTAS: int = 5

    # Conversation payload
    MAX_HISTORY_COUNT: int = 10
    MAX_INLINE_FACTS: int = 5
    MEMORY_TOP_K: int = 5
    MEMORY_TIMEOUT: float = 2.0  # seconds before facts degrade to none

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""  # empty disables the file handler

    @field_validator("TOKEN_BATCH_SIZE", "MAX_HISTORY_COUNT", "LLM_MAX_RETRIES")
    @classmethod
    def must_be_positive(cls, v):
        """Reject zero or negative counts."""
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    class Config:
        env_file = [
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


class ProviderConfig(BaseModel):
    """
    Credential and model selection for one conversation turn.

    Treated as opaque input by the streaming core; built by the caller or
    from settings via from_settings().
    """
    provider: ProviderName
    api_key: str = ""
    base_url: Optional[str] = None
    model: Optional[str] = None
    system_prompt: str = ""

    @field_validator("api_key", "system_prompt", mode="before")
    @classmethod
    def strip_whitespace(cls, v):
        """Treat None as empty and trim surrounding whitespace."""
        if v is None:
            return ""
        return str(v).strip()

    @property
    def display_name(self) -> str:
        """Human-readable provider name for user-facing messages."""
        return PROVIDER_DISPLAY_NAMES[self.provider]

    @classmethod
    def from_settings(cls, source: "Settings | None" = None, provider: ProviderName | None = None) -> "ProviderConfig":
        """
        Build a config from application settings.

        Args:
            source: Settings instance (defaults to module singleton)
            provider: Override for CHAT_PROVIDER

        Returns:
            ProviderConfig populated with that provider's key, URL and default model
        """
        s = source or settings
        name = provider or s.CHAT_PROVIDER

        if name == "openai":
            key, url, model = s.OPENAI_API_KEY, s.OPENAI_BASE_URL, s.OPENAI_DEFAULT_MODEL
        elif name == "anthropic":
            key, url, model = s.ANTHROPIC_API_KEY, s.ANTHROPIC_BASE_URL, s.ANTHROPIC_DEFAULT_MODEL
        elif name == "github_model":
            key, url, model = s.GITHUB_TOKEN, s.GITHUB_MODELS_ENDPOINT, s.GITHUB_MODELS_DEFAULT_MODEL
        elif name == "ollama":
            key, url, model = "", s.OLLAMA_BASE_URL, s.OLLAMA_DEFAULT_MODEL
        else:
            raise ValueError(f"Unknown chat provider: {name}")

        return cls(
            provider=name,
            api_key=key,
            base_url=url,
            model=model,
            system_prompt=s.SYSTEM_PROMPT,
        )


# Singleton instance
settings = Settings()
