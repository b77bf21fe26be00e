"""
Chat provider factory.

WHAT: Build the adapter selected by a ProviderConfig
WHY: Centralize provider selection and reuse the adapter while the config is unchanged
HOW: Explicit match on config.provider, cache keyed by the config, log selection
"""

from typing import TYPE_CHECKING

from ..core.config import ProviderConfig

if TYPE_CHECKING:
    from .provider import ChatProvider

# Cached instance and the config it was built from
_provider_instance: "ChatProvider | None" = None
_provider_config: ProviderConfig | None = None


def create_provider(config: ProviderConfig) -> "ChatProvider":
    """
    Build a fresh provider for the given config.

    Raises:
        ValueError: If provider name is unknown
    """
    from ..utils.logger import get_logger

    logger = get_logger(__name__)
    provider_name = config.provider

    if provider_name == "openai":
        from .openai import OpenAIProvider
        provider = OpenAIProvider(config.api_key, base_url=config.base_url)
    elif provider_name == "anthropic":
        from .anthropic import AnthropicProvider
        provider = AnthropicProvider(config.api_key, base_url=config.base_url)
    elif provider_name == "github_model":
        from .github_models import GitHubModelsProvider
        provider = GitHubModelsProvider(config.api_key, base_url=config.base_url)
    elif provider_name == "ollama":
        from .ollama import OllamaProvider
        provider = OllamaProvider(config.base_url)
    else:
        raise ValueError(f"Unknown chat provider: {provider_name}")

    logger.info(f"Chat provider initialized: {provider_name}")
    return provider


def get_provider(config: ProviderConfig | None = None) -> "ChatProvider":
    """
    Get the provider for a config, reusing the cached one when the config is unchanged.

    Args:
        config: Provider selection (defaults to ProviderConfig.from_settings())

    Returns:
        ChatProvider instance for config.provider
    """
    global _provider_instance, _provider_config

    if config is None:
        config = ProviderConfig.from_settings()

    if _provider_instance is None or _provider_config != config:
        _provider_instance = create_provider(config)
        _provider_config = config

    return _provider_instance


def reset_provider() -> None:
    """Reset the cached provider (useful for testing)."""
    global _provider_instance, _provider_config
    _provider_instance = None
    _provider_config = None
