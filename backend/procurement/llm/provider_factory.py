"""
LLM provider factory with singleton pattern.

WHAT: Factory to get the configured LLM provider
WHY: Centralize provider selection and avoid multiple HTTP clients
HOW: Read LLM_PROVIDER from config, cache singleton, log selection
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .provider import LLMProvider

# Singleton instance
_provider_instance: "LLMProvider | None" = None


def build_provider(provider_name: str) -> "LLMProvider":
    """
    Build a provider for a configured backend.

    Args:
        provider_name: "openrouter" or "lm_studio"

    Returns:
        ChatCompletionsProvider wired from settings

    Raises:
        ValueError: If provider name is unknown
    """
    from ..core.config import settings
    from .chat_completions import ChatCompletionsProvider
    from .types import ProviderDisabledError

    if provider_name == "lm_studio":
        return ChatCompletionsProvider(
            name="lm_studio",
            base_url=settings.LM_STUDIO_BASE_URL,
            default_model=settings.LM_STUDIO_DEFAULT_MODEL,
            timeout=settings.LM_STUDIO_TIMEOUT,
            max_retries=settings.LLM_MAX_RETRIES,
            retry_delay=settings.LLM_RETRY_DELAY,
        )
    if provider_name == "openrouter":
        enabled = settings.LLM_ENABLE_OPENROUTER
        if enabled and not (settings.OPENROUTER_API_KEY or "").strip():
            raise ProviderDisabledError(
                "OpenRouter is enabled but OPENROUTER_API_KEY is not set or empty"
            )
        return ChatCompletionsProvider(
            name="openrouter",
            base_url=settings.OPENROUTER_BASE_URL,
            default_model=settings.OPENROUTER_DEFAULT_MODEL,
            api_key=settings.OPENROUTER_API_KEY,
            max_retries=settings.LLM_MAX_RETRIES,
            retry_delay=settings.LLM_RETRY_DELAY,
            enabled=enabled,
            extra_headers={"HTTP-Referer": settings.APP_NAME, "X-Title": settings.APP_NAME},
        )
    raise ValueError(f"Unknown LLM provider: {provider_name}")


def get_provider() -> "LLMProvider":
    """
    Get the configured LLM provider singleton.

    Returns:
        LLMProvider instance based on settings.LLM_PROVIDER

    Raises:
        ValueError: If provider name is unknown
    """
    global _provider_instance

    if _provider_instance is None:
        # Import here to avoid circular dependencies
        from ..core.config import settings
        from ..utils.logger import get_logger

        _provider_instance = build_provider(settings.LLM_PROVIDER)
        get_logger(__name__).info(f"LLM provider initialized: {settings.LLM_PROVIDER}")

    return _provider_instance


def reset_provider() -> None:
    """Reset the provider singleton (useful for testing)."""
    global _provider_instance
    _provider_instance = None


async def close_provider() -> None:
    """Close the provider singleton's HTTP client, if one was built."""
    global _provider_instance
    if _provider_instance is not None:
        await _provider_instance.close()
    _provider_instance = None
